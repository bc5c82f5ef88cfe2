"""
Authorization gate.

Resolves the principal behind a request and checks it against a required
``module:action`` permission. Outcomes are values, not exceptions: callers
receive a ``Principal`` or the ``UNAUTHENTICATED`` denial from ``resolve``,
and ``None`` or the ``FORBIDDEN`` denial from ``authorize``.

Two credential paths exist:

1. A session token (``Authorization: Bearer`` or the session cookie). Its
   role and permission claims were computed at login and are used as-is,
   so role changes made since then are not visible until the next login.
2. The ``EmailUsuario`` identity cookie. The user is looked up by email and
   roles and permissions are resolved fresh on every request.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Union
from urllib.parse import unquote

from django.conf import settings

from apps.core.logging import SecurityLogger, get_client_ip
from apps.rbac.permissions import UNAUTHENTICATED, Denial, authorize
from apps.rbac.serializers import SessionClaimsSerializer
from apps.rbac.services import AuthService, RoleResolver
from apps.rbac.store import RoleStore, default_store

logger = logging.getLogger(__name__)

SOURCE_SESSION = 'session'
SOURCE_FALLBACK_COOKIE = 'fallback_cookie'

@dataclass(frozen=True)
class Principal:
    user_id: str
    email: Optional[str]
    roles: Tuple[str, ...]
    permissions: Tuple[str, ...]
    organization_id: Optional[str]
    organization_name: Optional[str]
    source: str

    # DRF treats the principal as request.user
    is_authenticated = True
    is_anonymous = False

    @property
    def pk(self):
        return self.user_id


def principal_from_claims(claims) -> Optional[Principal]:
    """Validate session claims; malformed claims yield None."""
    serializer = SessionClaimsSerializer(data=claims if isinstance(claims, dict) else {})
    if not serializer.is_valid():
        logger.warning("Rejected malformed session claims", extra={'errors': serializer.errors})
        return None
    data = serializer.validated_data
    return Principal(
        user_id=data['user_id'],
        email=data.get('email') or None,
        roles=tuple(data.get('roles') or ()),
        permissions=tuple(data.get('permissions') or ()),
        organization_id=data.get('organization_id') or None,
        organization_name=data.get('organization_name') or None,
        source=SOURCE_SESSION,
    )


def session_token_from_request(request) -> Optional[str]:
    """Bearer token from the Authorization header, else the session cookie."""
    header = request.META.get('HTTP_AUTHORIZATION', '')
    if header.startswith('Bearer '):
        token = header[len('Bearer '):].strip()
        if token:
            return token
    return request.COOKIES.get(settings.SESSION_TOKEN_COOKIE) or None


def jwt_session_resolver(request) -> Optional[dict]:
    """
    Default session resolver: decode the JWT session token, if any.

    Returns the claims dict or None when there is no valid token.
    """
    token = session_token_from_request(request)
    if not token:
        return None
    claims = AuthService.validate_jwt(token)
    if claims is None:
        SecurityLogger.log_invalid_session_token(
            'invalid_or_expired', ip_address=get_client_ip(request), path=request.path
        )
    return claims


class AuthorizationGate:
    """Request-time principal resolution."""

    def __init__(self, resolver: RoleResolver = None, store: RoleStore = None,
                 session_resolver: Callable = None):
        self.store = store or default_store
        self.resolver = resolver or RoleResolver(self.store)
        self.session_resolver = session_resolver or jwt_session_resolver

    def resolve(self, request) -> Union[Principal, Denial]:
        claims = self.session_resolver(request)
        if claims:
            principal = principal_from_claims(claims)
            if principal is not None:
                return principal

        principal = self._resolve_from_identity_cookie(request)
        if principal is not None:
            return principal

        return UNAUTHENTICATED

    def _resolve_from_identity_cookie(self, request) -> Optional[Principal]:
        raw_email = request.COOKIES.get(settings.RBAC_EMAIL_COOKIE)
        if not raw_email:
            return None

        email = unquote(raw_email).strip()
        user = self.store.find_user_by_email(email)
        if user is None:
            logger.info("Identity cookie does not match a user", extra={'path': request.path})
            return None
        if user.status != user.STATUS_ACTIVE:
            logger.info(
                "Identity cookie user is not active",
                extra={'user_id': str(user.id), 'status': user.status}
            )
            return None

        resolved = self.resolver.get_user_roles_and_permissions(user.id)
        organization = user.organization
        return Principal(
            user_id=str(user.id),
            email=user.email,
            roles=tuple(resolved.roles),
            permissions=tuple(resolved.permissions),
            organization_id=str(organization.id) if organization else None,
            organization_name=organization.name if organization else None,
            source=SOURCE_FALLBACK_COOKIE,
        )

    def check(self, request, module_slug: str, action,
              admin_bypass: bool = False) -> Union[Principal, Denial]:
        """Resolve and authorize in one step."""
        principal = self.resolve(request)
        if isinstance(principal, Denial):
            return principal
        denial = authorize(principal, module_slug, action, admin_bypass=admin_bypass)
        return denial or principal
