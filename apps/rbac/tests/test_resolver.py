"""
Tests for role and permission resolution.
"""
import pytest

from apps.rbac.models import UserRole
from apps.rbac.permissions import Action, has_permission
from apps.rbac.services import RoleResolver, RolesAndPermissions


@pytest.mark.django_db
class TestRoleResolver:
    """Test flattening active assignments into roles and permission codes."""

    def test_user_without_roles_resolves_empty(self, make_user):
        user = make_user()

        resolved = RoleResolver().get_user_roles_and_permissions(user.id)

        assert resolved == RolesAndPermissions(roles=[], permissions=[])
        for module in ('users', 'dashboard', 'forest-patrimony'):
            for action in Action:
                assert not has_permission(resolved.permissions, module, action)

    def test_unknown_user_resolves_empty(self, db):
        import uuid
        resolved = RoleResolver().get_user_roles_and_permissions(uuid.uuid4())
        assert resolved.roles == []
        assert resolved.permissions == []

    def test_single_role(self, make_user, make_role, organization):
        role = make_role('CONTADOR', organization, codes=['forest-patrimony:READ'])
        user = make_user(organization=organization, roles=[role])

        resolved = RoleResolver().get_user_roles_and_permissions(user.id)

        assert resolved.roles == ['CONTADOR']
        assert resolved.permissions == ['forest-patrimony:READ']

    def test_permissions_are_deduplicated_across_roles(self, make_user, make_role, organization):
        first = make_role('CONTADOR', organization, codes=['forest-patrimony:READ', 'users:READ'])
        second = make_role('AUDITOR', organization, codes=['users:READ', 'dashboard:READ'])
        user = make_user(organization=organization, roles=[first, second])

        resolved = RoleResolver().get_user_roles_and_permissions(user.id)

        assert sorted(resolved.roles) == ['AUDITOR', 'CONTADOR']
        assert sorted(resolved.permissions) == ['dashboard:READ', 'forest-patrimony:READ', 'users:READ']
        assert len(resolved.permissions) == len(set(resolved.permissions))

    def test_inactive_assignment_is_ignored(self, make_user, make_role, organization):
        role = make_role('ADMIN', organization, codes=['users:ADMIN'])
        user = make_user(organization=organization, roles=[role])
        UserRole.objects.filter(user=user).update(is_active=False)

        resolved = RoleResolver().get_user_roles_and_permissions(user.id)

        assert resolved.roles == []
        assert resolved.permissions == []

    def test_inactive_role_is_ignored(self, make_user, make_role, organization):
        active = make_role('USER', organization, codes=['dashboard:READ'])
        retired = make_role('LEGACY', organization, codes=['users:ADMIN'], is_active=False)
        user = make_user(organization=organization, roles=[active, retired])

        resolved = RoleResolver().get_user_roles_and_permissions(user.id)

        assert resolved.roles == ['USER']
        assert resolved.permissions == ['dashboard:READ']

    def test_role_without_permissions_still_listed(self, make_user, make_role, organization):
        role = make_role('VISITANTE', organization)
        user = make_user(organization=organization, roles=[role])

        resolved = RoleResolver().get_user_roles_and_permissions(user.id)

        assert resolved.roles == ['VISITANTE']
        assert resolved.permissions == []


class FakeStore:
    """In-memory stand-in exposing the store method the resolver uses."""

    def __init__(self, assignments):
        self.assignments = assignments
        self.calls = []

    def active_assignments(self, user_id):
        self.calls.append(user_id)
        return self.assignments


class TestResolverWithInjectedStore:
    """The resolver reads through whatever store it is given."""

    def test_reads_from_injected_store(self):
        store = FakeStore([])
        resolved = RoleResolver(store).get_user_roles_and_permissions('user-1')

        assert store.calls == ['user-1']
        assert resolved.roles == []
