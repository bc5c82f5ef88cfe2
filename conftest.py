"""
Pytest configuration and fixtures.
"""
import pytest
from django.conf import settings
import django
from django.core.management import call_command


def pytest_configure(config):
    """Configure Django settings for tests."""
    settings.DATABASES['default'] = {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
        'ATOMIC_REQUESTS': False,
    }
    settings.RATELIMIT_ENABLE = False
    settings.PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']
    django.setup()


@pytest.fixture(scope='session')
def django_db_setup(django_db_setup, django_db_blocker):
    """Set up test database with migrations."""
    with django_db_blocker.unblock():
        call_command('migrate', '--run-syncdb', verbosity=0)


@pytest.fixture
def api_client():
    """Return DRF API client."""
    from rest_framework.test import APIClient
    return APIClient()


@pytest.fixture
def request_factory():
    from django.test import RequestFactory
    return RequestFactory()


@pytest.fixture
def organization(db):
    """Create a test organization."""
    from apps.organizations.models import Organization
    return Organization.objects.create(name='Forestal Norte', slug='forestal-norte')


@pytest.fixture
def other_organization(db):
    """Create another organization for isolation tests."""
    from apps.organizations.models import Organization
    return Organization.objects.create(name='Forestal Sur', slug='forestal-sur')


@pytest.fixture
def default_organization(db):
    """The landing organization new registrations join."""
    from apps.rbac.services import AuthService
    return AuthService.default_organization()


@pytest.fixture
def catalog(db):
    """
    Module catalog with a permission for every action.

    Returns a dict of module slug to Module.
    """
    from apps.rbac.services import ModuleService
    slugs = [
        'dashboard', 'users', 'organizations', 'forest-patrimony',
        'forest-biological-asset', 'forest-config', 'general-config',
    ]
    return {
        slug: ModuleService.upsert_module(
            slug=slug,
            name=slug.replace('-', ' ').title(),
            route_path=f'/{slug}',
            display_order=index,
        )
        for index, slug in enumerate(slugs, start=1)
    }


@pytest.fixture
def permission(catalog):
    """Look up a catalog permission by module slug and action."""
    from apps.rbac.models import Permission

    def _permission(module_slug, action):
        return Permission.objects.get(module__slug=module_slug, action=action)

    return _permission


@pytest.fixture
def make_role(db, permission):
    """Create a role holding the given ``module:action`` codes."""
    from apps.rbac.models import Role, RolePermission
    from apps.rbac.permissions import parse_permission

    def _make_role(slug, organization=None, codes=(), name=None, is_system_role=False, is_active=True):
        role = Role.objects.create(
            organization=organization,
            slug=slug,
            name=name or slug.title(),
            is_system_role=is_system_role,
            is_active=is_active,
        )
        for code in codes:
            parsed = parse_permission(code)
            RolePermission.objects.create(role=role, permission=permission(parsed.module, parsed.action))
        return role

    return _make_role


@pytest.fixture
def make_user(db):
    """Create a user, optionally assigned to roles."""
    from apps.rbac.models import User, UserRole

    def _make_user(email='user@example.com', password='Arbol-Seguro-2024', organization=None,
                   roles=(), status=User.STATUS_ACTIVE):
        user = User.objects.create_user(
            email,
            password,
            first_name='Ana',
            last_name='Pérez',
            status=status,
            organization=organization,
        )
        for role in roles:
            UserRole.objects.create(user=user, role=role)
        return user

    return _make_user


@pytest.fixture
def session_token():
    """Issue a session token for a user with freshly resolved claims."""
    from apps.rbac.services import AuthService, RoleResolver

    def _session_token(user):
        return AuthService.generate_jwt(user, RoleResolver().get_user_roles_and_permissions(user.id))

    return _session_token


@pytest.fixture
def authenticated_client(api_client, session_token):
    """API client carrying a bearer session token for ``user``."""

    def _authenticated_client(user):
        api_client.credentials(HTTP_AUTHORIZATION=f'Bearer {session_token(user)}')
        return api_client

    return _authenticated_client
