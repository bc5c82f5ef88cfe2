"""
Permission codes.

A permission is the pair (module slug, action), written ``"module:action"``.
Holding ``"module:ADMIN"`` implies every action on that module. Every
permission check in the project goes through ``has_permission``.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Union


class Action(str, Enum):
    CREATE = 'CREATE'
    READ = 'READ'
    UPDATE = 'UPDATE'
    DELETE = 'DELETE'
    EXPORT = 'EXPORT'
    ADMIN = 'ADMIN'


SEPARATOR = ':'


class MalformedPermissionError(ValueError):
    """Raised when a string is not a ``module:action`` permission code."""


@dataclass(frozen=True)
class PermissionCode:
    module: str
    action: str

    def __str__(self):
        return encode_permission(self.module, self.action)


def _action_value(action: Union[Action, str]) -> str:
    return action.value if isinstance(action, Action) else str(action)


def encode_permission(module_slug: str, action: Union[Action, str]) -> str:
    """Encode ``(module_slug, action)`` as ``"module_slug:ACTION"``."""
    return f"{module_slug}{SEPARATOR}{_action_value(action)}"


def parse_permission(code: str) -> PermissionCode:
    """
    Split a permission code on its first ``:``.

    Raises:
        MalformedPermissionError: if the separator is missing or either
            side is empty.
    """
    if not isinstance(code, str) or SEPARATOR not in code:
        raise MalformedPermissionError(f"Not a permission code: {code!r}")
    module, action = code.split(SEPARATOR, 1)
    if not module or not action:
        raise MalformedPermissionError(f"Not a permission code: {code!r}")
    return PermissionCode(module=module, action=action)


def has_permission(permissions: Iterable[str], module_slug: str, action: Union[Action, str]) -> bool:
    """
    True iff ``permissions`` contains ``module:action`` or ``module:ADMIN``.
    """
    granted = permissions if isinstance(permissions, (set, frozenset)) else set(permissions or ())
    return (
        encode_permission(module_slug, action) in granted
        or encode_permission(module_slug, Action.ADMIN) in granted
    )


@dataclass(frozen=True)
class Denial:
    """Outcome of a failed authorization check."""
    status_code: int
    message: str


UNAUTHENTICATED = Denial(status_code=401, message='No autorizado')
FORBIDDEN = Denial(status_code=403, message='No tiene permisos para realizar esta acción')


def require_permission(permissions: Iterable[str], module_slug: str,
                       action: Union[Action, str]) -> Optional[Denial]:
    """Return ``None`` when allowed, otherwise the ``FORBIDDEN`` denial."""
    if has_permission(permissions, module_slug, action):
        return None
    return FORBIDDEN


# Role slugs that skip the module check on role administration endpoints.
ADMIN_ROLE_SLUGS = frozenset({'ADMIN', 'SUPER_ADMIN'})
SUPER_ADMIN_ROLE = 'SUPER_ADMIN'


def is_admin_bypass(roles) -> bool:
    """True when the role list holds ``ADMIN`` or ``SUPER_ADMIN``."""
    return any(role in ADMIN_ROLE_SLUGS for role in roles or ())


def is_super_admin(roles) -> bool:
    return SUPER_ADMIN_ROLE in (roles or ())


def authorize(principal, module_slug: str, action,
              admin_bypass: bool = False) -> Optional[Denial]:
    """
    ``None`` if the principal may perform ``action`` on ``module_slug``,
    otherwise ``FORBIDDEN``. With ``admin_bypass`` an admin role skips the
    permission check entirely.
    """
    if admin_bypass and is_admin_bypass(principal.roles):
        return None
    return require_permission(principal.permissions, module_slug, action)
