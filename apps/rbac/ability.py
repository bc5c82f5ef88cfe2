"""
Ability: a ``can(verb, subject)`` view over a permission list.

Verbs are the reduced vocabulary used by page routing
(``create/read/update/delete/manage``). ``can`` translates the verb back to
its action and asks ``has_permission``, so the ability and the raw
permission check always agree on well-formed permission sets.
"""
import logging
from typing import FrozenSet, Iterable

from apps.rbac.permissions import (
    Action,
    MalformedPermissionError,
    encode_permission,
    has_permission,
    parse_permission,
)

logger = logging.getLogger(__name__)

# EXPORT has no verb on purpose: an EXPORT grant is kept as-is and never
# satisfies can('read', ...), so can() agrees with has_permission().
ACTION_VERBS = {
    Action.CREATE.value: 'create',
    Action.READ.value: 'read',
    Action.UPDATE.value: 'update',
    Action.DELETE.value: 'delete',
    Action.ADMIN.value: 'manage',
}

VERB_ACTIONS = {verb: action for action, verb in ACTION_VERBS.items()}

KNOWN_ACTIONS = frozenset(action.value for action in Action)


class Ability:
    """Immutable set of grants answering ``can(verb, subject)``."""

    __slots__ = ('_grants',)

    def __init__(self, grants: Iterable[str]):
        self._grants = frozenset(grants)

    @property
    def grants(self) -> FrozenSet[str]:
        """Normalized ``subject:ACTION`` codes backing this ability."""
        return self._grants

    def can(self, verb: str, subject: str) -> bool:
        action = VERB_ACTIONS.get(verb)
        if action is None:
            return False
        return has_permission(self._grants, subject, action)

    def cannot(self, verb: str, subject: str) -> bool:
        return not self.can(verb, subject)

    def __repr__(self):
        return f"Ability({sorted(self._grants)!r})"


def build_ability_from_permissions(permissions: Iterable[str]) -> Ability:
    """
    Build an ``Ability`` from ``module:ACTION`` strings.

    Known actions are kept as granted. ``EXPORT`` has no verb, so it never
    satisfies a ``can`` query. An action outside the known set is registered
    as ``READ`` on its module. Malformed entries are skipped.
    """
    grants = set()
    for code in permissions or ():
        try:
            parsed = parse_permission(code)
        except MalformedPermissionError:
            logger.debug("Skipping malformed permission", extra={'permission': code})
            continue
        if parsed.action in KNOWN_ACTIONS:
            grants.add(str(parsed))
        else:
            logger.debug("Unknown permission action, granting read", extra={'permission': code})
            grants.add(encode_permission(parsed.module, Action.READ))
    return Ability(grants)
