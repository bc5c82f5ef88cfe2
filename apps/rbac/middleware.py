"""
Route authorization middleware for dashboard pages.

Maps a page path to the module it belongs to and decides, before any view
runs, whether the caller may see it:

1. Protected pages need a session token or the legacy role cookie.
2. Signed-in callers visiting /login or /register go to the dashboard.
3. A page mapped to a module needs ``read`` on that module.
4. Members of the default organization cannot open forestry pages.

API, static and schema paths are left to DRF and the view layer.
"""
import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote, unquote

from django.conf import settings
from django.http import HttpResponseRedirect
from django.utils.deprecation import MiddlewareMixin

from apps.core.logging import SecurityLogger, get_client_ip
from apps.rbac.ability import Ability, build_ability_from_permissions
from apps.rbac.gate import Principal, jwt_session_resolver, principal_from_claims

logger = logging.getLogger(__name__)

PROTECTED_ROUTES = (
    '/dashboard',
    '/users',
    '/roles',
    '/organizaciones',
    '/profile',
    '/analytics',
    '/settings',
    '/audit',
    '/patrimonio-forestal',
    '/activo-biologico',
    '/configuracion-forestal',
    '/configuracion-general',
)

ROUTE_MODULES = {
    '/dashboard': 'dashboard',
    '/organizaciones': 'organizations',
    '/users': 'users',
    '/roles': 'users',
    '/patrimonio-forestal': 'forest-patrimony',
    '/activo-biologico': 'forest-biological-asset',
    '/configuracion-forestal': 'forest-config',
    '/configuracion-general': 'general-config',
    '/profile': 'profile',
    '/analytics': 'analytics',
    '/settings': 'settings',
    '/audit': 'audit',
}

DEFAULT_ORG_RESTRICTED_ROUTES = (
    '/patrimonio-forestal',
    '/activo-biologico',
    '/configuracion-forestal',
)

AUTH_PAGES = ('/login', '/register')

DEFAULT_ORGANIZATION_NAME = 'Por Defecto'

# Sidebar entries in display order; each is shown when ``read`` is granted.
NAVIGATION = (
    {'href': '/dashboard', 'label': 'Dashboard', 'module': 'dashboard'},
    {'href': '/organizaciones', 'label': 'Organizaciones', 'module': 'organizations'},
    {'href': '/users', 'label': 'Usuarios', 'module': 'users'},
    {'href': '/roles', 'label': 'Roles', 'module': 'users'},
    {'href': '/patrimonio-forestal', 'label': 'Patrimonio Forestal', 'module': 'forest-patrimony'},
    {'href': '/activo-biologico', 'label': 'Activo Biológico', 'module': 'forest-biological-asset'},
    {'href': '/configuracion-forestal', 'label': 'Configuración Forestal', 'module': 'forest-config'},
    {'href': '/configuracion-general', 'label': 'Configuración General', 'module': 'general-config'},
    {'href': '/profile', 'label': 'Perfil', 'module': 'profile'},
    {'href': '/analytics', 'label': 'Analytics', 'module': 'analytics'},
    {'href': '/settings', 'label': 'Configuración', 'module': 'settings'},
    {'href': '/audit', 'label': 'Auditoría', 'module': 'audit'},
)

# Role names understood by the static permission table.
APP_ROLES = ('SUPER_ADMIN', 'ADMIN', 'CONTADOR', 'GERENTE_CAMPO', 'USER')

# Permissions assumed for a role when the session carries none.
LEGACY_ROLE_PERMISSIONS = {
    'ADMIN': (
        'forest-patrimony:READ',
        'forest-patrimony:CREATE',
        'forest-patrimony:UPDATE',
        'forest-patrimony:DELETE',
        'forest-biological-asset:READ',
        'users:READ',
        'users:CREATE',
        'users:UPDATE',
        'users:DELETE',
    ),
    'SUPER_ADMIN': (
        'dashboard:READ',
        'users:ADMIN',
        'organizations:ADMIN',
        'forest-patrimony:ADMIN',
        'forest-biological-asset:ADMIN',
        'forest-config:ADMIN',
        'general-config:ADMIN',
        'profile:ADMIN',
        'analytics:ADMIN',
        'settings:ADMIN',
        'audit:ADMIN',
    ),
    'GERENTE_CAMPO': (
        'forest-patrimony:READ',
        'forest-biological-asset:READ',
        'users:READ',
    ),
    'CONTADOR': (
        'forest-patrimony:READ',
    ),
    'USER': (
        'dashboard:READ',
    ),
}

SKIPPED_PREFIXES = ('/api/', '/static/', '/schema', '/admin/', '/favicon.ico')

CONTINUE = 'continue'
LOGIN = 'login'
HOME = 'home'
UNAUTHORIZED = 'unauthorized'


def normalize_role(role) -> Optional[str]:
    """Upper-cased role name if it is one of ``APP_ROLES``, else None."""
    if not role:
        return None
    candidate = str(role).strip().upper()
    return candidate if candidate in APP_ROLES else None


def legacy_role_permissions(role) -> tuple:
    return LEGACY_ROLE_PERMISSIONS.get(normalize_role(role), ())


def legacy_role_from_request(request) -> Optional[str]:
    """Decoded value of the role cookie, if present."""
    raw_role = request.COOKIES.get(settings.RBAC_ROLE_COOKIE)
    return unquote(raw_role) if raw_role else None


def module_for_path(path: str) -> Optional[str]:
    """Module slug of the longest route prefix matching ``path``."""
    matches = [prefix for prefix in ROUTE_MODULES if path.startswith(prefix)]
    if not matches:
        return None
    return ROUTE_MODULES[max(matches, key=len)]


def visible_navigation(ability: Ability):
    """Sidebar entries the ability may read."""
    return [dict(item) for item in NAVIGATION if ability.can('read', item['module'])]


def effective_permissions(session: Optional[Principal], legacy_role: Optional[str]) -> tuple:
    """
    Permissions carried by the session, or the static set of the caller's
    role when the session carries none.
    """
    if session is not None and session.permissions:
        return tuple(session.permissions)
    role = session.roles[0] if session is not None and session.roles else legacy_role
    return legacy_role_permissions(role)


@dataclass(frozen=True)
class RouteDecision:
    kind: str
    location: Optional[str] = None
    reason: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.kind == CONTINUE


def _redirect(kind, location, reason):
    return RouteDecision(kind=kind, location=location, reason=reason)


def decide_route(path: str, session: Optional[Principal] = None, legacy_role: Optional[str] = None,
                 organization_name: Optional[str] = None,
                 default_organization_name: str = DEFAULT_ORGANIZATION_NAME) -> RouteDecision:
    """
    Decide whether a page request proceeds or redirects.

    ``session`` is the principal decoded from a valid session token,
    ``legacy_role`` the raw role cookie and ``organization_name`` the
    already-decoded organization name of the caller.
    """
    signed_in = session is not None or bool(legacy_role)

    if path.startswith(PROTECTED_ROUTES) and not signed_in:
        return _redirect(LOGIN, f"{settings.RBAC_LOGIN_URL}?next={quote(path)}", 'unauthenticated')

    if path in AUTH_PAGES and signed_in:
        return _redirect(HOME, settings.RBAC_HOME_URL, 'already_signed_in')

    module = module_for_path(path)
    if module is not None:
        ability = build_ability_from_permissions(effective_permissions(session, legacy_role))
        if ability.cannot('read', module):
            return _redirect(UNAUTHORIZED, settings.RBAC_UNAUTHORIZED_URL, f"missing_read:{module}")

    in_default_organization = (
        (organization_name or '').strip().lower() == default_organization_name.strip().lower()
    )
    if in_default_organization and path.startswith(DEFAULT_ORG_RESTRICTED_ROUTES):
        return _redirect(UNAUTHORIZED, settings.RBAC_UNAUTHORIZED_URL, 'default_organization')

    return RouteDecision(kind=CONTINUE)


class RouteAuthorizationMiddleware(MiddlewareMixin):
    """
    Apply ``decide_route`` to page requests.

    Attaches ``request.ability`` for the views that render navigation.
    """

    session_resolver = staticmethod(jwt_session_resolver)

    def process_request(self, request):
        path = request.path
        if path.startswith(SKIPPED_PREFIXES):
            return None

        claims = self.session_resolver(request)
        session = principal_from_claims(claims) if claims else None

        legacy_role = legacy_role_from_request(request)

        raw_organization = request.COOKIES.get(settings.RBAC_ORG_NAME_COOKIE)
        if raw_organization:
            organization_name = unquote(raw_organization)
        else:
            organization_name = session.organization_name if session is not None else None

        decision = decide_route(
            path,
            session=session,
            legacy_role=legacy_role,
            organization_name=organization_name,
            default_organization_name=settings.RBAC_DEFAULT_ORGANIZATION_NAME,
        )

        if decision.allowed:
            request.ability = build_ability_from_permissions(effective_permissions(session, legacy_role))
            return None

        if decision.kind == UNAUTHORIZED:
            SecurityLogger.log_route_denied(
                path,
                decision.reason,
                role=(session.roles[0] if session is not None and session.roles else legacy_role),
                organization_name=organization_name,
                ip_address=get_client_ip(request),
            )
        else:
            logger.debug("Page request redirected", extra={'path': path, 'reason': decision.reason})
        return HttpResponseRedirect(decision.location)
