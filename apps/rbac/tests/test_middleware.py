"""
Tests for page route authorization.
"""
from types import SimpleNamespace
from urllib.parse import quote

import pytest
from django.conf import settings
from django.http import HttpResponse

from apps.rbac.ability import build_ability_from_permissions
from apps.rbac.gate import SOURCE_SESSION, Principal
from apps.rbac.middleware import (
    CONTINUE,
    HOME,
    LOGIN,
    UNAUTHORIZED,
    RouteAuthorizationMiddleware,
    decide_route,
    effective_permissions,
    legacy_role_from_request,
    module_for_path,
    normalize_role,
    visible_navigation,
)
from apps.rbac.services import AuthService, RolesAndPermissions


def session(roles=(), permissions=(), organization_name='Forestal Norte'):
    return Principal(
        user_id='u-1',
        email='ana@example.com',
        roles=tuple(roles),
        permissions=tuple(permissions),
        organization_id='org-1',
        organization_name=organization_name,
        source=SOURCE_SESSION,
    )


class TestModuleForPath:
    """Test the route prefix table."""

    @pytest.mark.parametrize('path,module', [
        ('/dashboard', 'dashboard'),
        ('/users/42/edit', 'users'),
        ('/roles', 'users'),
        ('/organizaciones', 'organizations'),
        ('/patrimonio-forestal/lotes', 'forest-patrimony'),
        ('/activo-biologico', 'forest-biological-asset'),
        ('/configuracion-forestal', 'forest-config'),
        ('/configuracion-general', 'general-config'),
        ('/audit', 'audit'),
    ])
    def test_known_routes(self, path, module):
        assert module_for_path(path) == module

    def test_unmapped_route(self):
        assert module_for_path('/login') is None
        assert module_for_path('/') is None


class TestNormalizeRole:
    """Test legacy role names."""

    def test_trims_and_upper_cases(self):
        assert normalize_role(' gerente_campo ') == 'GERENTE_CAMPO'

    def test_unknown_role_is_none(self):
        assert normalize_role('MANAGER') is None
        assert normalize_role('') is None
        assert normalize_role(None) is None


class TestEffectivePermissions:
    """Token permissions first, then the static table."""

    def test_token_permissions_win(self):
        assert effective_permissions(session(roles=['USER'], permissions=['audit:READ']), 'ADMIN') == (
            'audit:READ',
        )

    def test_token_role_used_when_token_has_no_permissions(self):
        assert effective_permissions(session(roles=['CONTADOR']), 'SUPER_ADMIN') == ('forest-patrimony:READ',)

    def test_legacy_cookie_role_without_session(self):
        assert effective_permissions(None, 'user') == ('dashboard:READ',)

    def test_nothing_known(self):
        assert effective_permissions(None, None) == ()
        assert effective_permissions(None, 'INTRUSO') == ()


class TestLegacyRoleFromRequest:
    """The role cookie is stored URL-encoded."""

    def test_encoded_cookie_is_decoded(self, request_factory):
        request = request_factory.get('/dashboard')
        request.COOKIES[settings.RBAC_ROLE_COOKIE] = 'GERENTE%5FCAMPO'

        role = legacy_role_from_request(request)

        assert role == 'GERENTE_CAMPO'
        assert 'forest-patrimony:READ' in effective_permissions(None, role)

    def test_missing_cookie(self, request_factory):
        assert legacy_role_from_request(request_factory.get('/dashboard')) is None


class TestDecideRoute:
    """Test the ordered page checks."""

    def test_protected_route_without_session_goes_to_login(self):
        decision = decide_route('/users/new')

        assert decision.kind == LOGIN
        assert decision.location == f"{settings.RBAC_LOGIN_URL}?next={quote('/users/new')}"

    def test_public_route_without_session_continues(self):
        assert decide_route('/login').kind == CONTINUE
        assert decide_route('/').kind == CONTINUE

    def test_legacy_role_cookie_counts_as_signed_in(self):
        assert decide_route('/dashboard', legacy_role='USER').kind == CONTINUE

    def test_signed_in_user_bounced_from_login_and_register(self):
        for path in ('/login', '/register'):
            decision = decide_route(path, session=session(permissions=['dashboard:READ']))
            assert decision.kind == HOME
            assert decision.location == settings.RBAC_HOME_URL

    def test_missing_read_goes_to_unauthorized(self):
        decision = decide_route('/users', session=session(permissions=['dashboard:READ']))

        assert decision.kind == UNAUTHORIZED
        assert decision.location == settings.RBAC_UNAUTHORIZED_URL

    def test_read_grant_continues(self):
        assert decide_route('/users/42', session=session(permissions=['users:READ'])).kind == CONTINUE

    def test_admin_grant_continues(self):
        assert decide_route('/audit', session=session(permissions=['audit:ADMIN'])).kind == CONTINUE

    def test_export_grant_is_not_read(self):
        assert decide_route('/users', session=session(permissions=['users:EXPORT'])).kind == UNAUTHORIZED

    def test_static_table_used_for_legacy_role(self):
        assert decide_route('/patrimonio-forestal', legacy_role='CONTADOR').kind == CONTINUE
        assert decide_route('/users', legacy_role='CONTADOR').kind == UNAUTHORIZED

    @pytest.mark.parametrize('organization_name', ['Por Defecto', 'por defecto', 'POR DEFECTO'])
    def test_default_organization_blocked_from_forestry_pages(self, organization_name):
        principal = session(
            roles=['SUPER_ADMIN'],
            permissions=['forest-patrimony:ADMIN', 'dashboard:READ'],
            organization_name=organization_name,
        )

        decision = decide_route(
            '/patrimonio-forestal/lotes', session=principal, organization_name=organization_name
        )

        assert decision.kind == UNAUTHORIZED
        assert decision.reason == 'default_organization'

    def test_default_organization_not_restricted_elsewhere(self):
        principal = session(permissions=['dashboard:READ'], organization_name='Por Defecto')

        assert decide_route('/dashboard', session=principal, organization_name='Por Defecto').kind == CONTINUE

    def test_other_organization_reaches_forestry_pages(self):
        principal = session(permissions=['forest-patrimony:READ'])

        assert decide_route(
            '/patrimonio-forestal', session=principal, organization_name='Forestal Norte'
        ).kind == CONTINUE

    def test_authentication_checked_before_permissions(self):
        assert decide_route('/patrimonio-forestal', organization_name='Por Defecto').kind == LOGIN


class TestVisibleNavigation:
    """Sidebar entries follow ``read`` grants."""

    def test_filters_by_read(self):
        ability = build_ability_from_permissions(['users:READ', 'dashboard:READ'])

        assert [item['href'] for item in visible_navigation(ability)] == ['/dashboard', '/users', '/roles']

    def test_nothing_visible_without_grants(self):
        assert visible_navigation(build_ability_from_permissions([])) == []


def session_cookie(roles=(), permissions=(), organization_name='Forestal Norte'):
    user = SimpleNamespace(
        id='u-1',
        email='ana@example.com',
        organization=SimpleNamespace(id='org-1', name=organization_name),
    )
    return AuthService.generate_jwt(user, RolesAndPermissions(roles=list(roles), permissions=list(permissions)))


class TestRouteAuthorizationMiddleware:
    """Test the middleware against real requests."""

    @pytest.fixture
    def middleware(self):
        return RouteAuthorizationMiddleware(lambda request: HttpResponse('ok'))

    def test_anonymous_redirected_to_login(self, middleware, request_factory):
        response = middleware(request_factory.get('/roles'))

        assert response.status_code == 302
        assert response['Location'] == f"{settings.RBAC_LOGIN_URL}?next={quote('/roles')}"

    def test_api_paths_are_skipped(self, middleware, request_factory):
        assert middleware(request_factory.get('/api/roles')).status_code == 200

    def test_session_cookie_grants_page(self, middleware, request_factory):
        request = request_factory.get('/users')
        request.COOKIES[settings.SESSION_TOKEN_COOKIE] = session_cookie(permissions=['users:READ'])

        response = middleware(request)

        assert response.status_code == 200
        assert request.ability.can('read', 'users')

    def test_session_without_read_redirected_to_unauthorized(self, middleware, request_factory):
        request = request_factory.get('/audit')
        request.COOKIES[settings.SESSION_TOKEN_COOKIE] = session_cookie(permissions=['users:READ'])

        response = middleware(request)

        assert response.status_code == 302
        assert response['Location'] == settings.RBAC_UNAUTHORIZED_URL

    def test_encoded_default_organization_cookie(self, middleware, request_factory):
        request = request_factory.get('/activo-biologico')
        request.COOKIES[settings.RBAC_ROLE_COOKIE] = 'SUPER_ADMIN'
        request.COOKIES[settings.RBAC_ORG_NAME_COOKIE] = quote('Por Defecto')

        response = middleware(request)

        assert response['Location'] == settings.RBAC_UNAUTHORIZED_URL

    def test_token_organization_claim_used_without_cookie(self, middleware, request_factory):
        request = request_factory.get('/patrimonio-forestal')
        request.COOKIES[settings.SESSION_TOKEN_COOKIE] = session_cookie(
            permissions=['forest-patrimony:READ'], organization_name='Por Defecto'
        )

        assert middleware(request)['Location'] == settings.RBAC_UNAUTHORIZED_URL

    def test_invalid_token_treated_as_anonymous(self, middleware, request_factory):
        request = request_factory.get('/dashboard')
        request.COOKIES[settings.SESSION_TOKEN_COOKIE] = 'garbage'

        assert middleware(request)['Location'].startswith(settings.RBAC_LOGIN_URL)

    def test_signed_in_user_leaves_login_page(self, middleware, request_factory):
        request = request_factory.get('/login')
        request.COOKIES[settings.RBAC_ROLE_COOKIE] = 'USER'

        assert middleware(request)['Location'] == settings.RBAC_HOME_URL
