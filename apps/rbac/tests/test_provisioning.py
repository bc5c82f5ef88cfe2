"""
Tests for role provisioning.
"""
import pytest

from apps.rbac.models import Permission, Role, RolePermission
from apps.rbac.provisioning import (
    ROLE_PERMISSIONS,
    RoleProvisioner,
    ensure_role_with_permissions,
    may_assign,
    permission_bundle,
    role_display_name,
)
from apps.rbac.services import ModuleService


def granted_codes(role):
    return sorted(
        grant.permission.code
        for grant in RolePermission.objects.filter(role=role).select_related('permission__module')
    )


class TestArchetypes:
    """Test the archetype tables."""

    def test_display_names(self):
        assert role_display_name('GERENTE_CAMPO') == 'Gerente de Campo'
        assert role_display_name('CUSTOM') == 'CUSTOM'

    def test_unknown_archetype_gets_user_bundle(self):
        assert permission_bundle('CUSTOM') == ROLE_PERMISSIONS['USER']


class TestMayAssign:
    """Privileged archetypes are granted only by equal or higher roles."""

    @pytest.mark.parametrize('assigner_roles,role_slug,expected', [
        (('SUPER_ADMIN',), 'SUPER_ADMIN', True),
        (('ADMIN',), 'SUPER_ADMIN', False),
        (('ADMIN',), 'ADMIN', True),
        (('SUPER_ADMIN',), 'ADMIN', True),
        (('AUDITOR',), 'ADMIN', False),
        ((), 'SUPER_ADMIN', False),
        (None, 'ADMIN', False),
        (('AUDITOR',), 'GERENTE_CAMPO', True),
        ((), 'JEFE_DE_CAMPO', True),
    ])
    def test_assignment_rules(self, assigner_roles, role_slug, expected):
        assert may_assign(assigner_roles, role_slug) is expected


@pytest.mark.django_db
class TestEnsureRoleWithPermissions:
    """Test idempotent provisioning."""

    def test_creates_system_role_with_bundle(self, catalog, organization):
        role = ensure_role_with_permissions('CONTADOR', organization.id)

        assert role.organization_id == organization.id
        assert role.name == 'Contador'
        assert role.is_system_role
        assert role.is_active
        assert granted_codes(role) == ['forest-patrimony:READ']

    def test_repeat_provisioning_keeps_one_role_and_one_grant_each(self, catalog, organization):
        first = ensure_role_with_permissions('USER', organization.id)
        second = ensure_role_with_permissions('USER', organization.id)

        assert first.id == second.id
        assert Role.objects.filter(organization=organization, slug='USER').count() == 1
        assert RolePermission.objects.filter(role=first).count() == 1

    def test_existing_role_only_gets_name_refreshed(self, catalog, organization, make_role):
        custom = make_role('CONTADOR', organization, name='Contabilidad', is_system_role=False)

        role = ensure_role_with_permissions('CONTADOR', organization.id)

        role.refresh_from_db()
        assert role.id == custom.id
        assert role.name == 'Contador'
        assert not role.is_system_role

    def test_all_archetype_uses_permissions_existing_at_call_time(self, catalog, organization):
        ensure_role_with_permissions('SUPER_ADMIN', organization.id)
        ModuleService.upsert_module(slug='audit', name='Audit', route_path='/audit')

        role = ensure_role_with_permissions('SUPER_ADMIN', organization.id)

        assert set(RolePermission.objects.filter(role=role).values_list('permission_id', flat=True)) == set(
            Permission.objects.values_list('id', flat=True)
        )

    def test_bundle_is_cross_product_of_modules_and_actions(self, catalog, organization):
        role = ensure_role_with_permissions('GERENTE_CAMPO', organization.id)

        assert granted_codes(role) == [
            'forest-biological-asset:CREATE',
            'forest-biological-asset:READ',
            'forest-biological-asset:UPDATE',
            'forest-patrimony:CREATE',
            'forest-patrimony:READ',
            'forest-patrimony:UPDATE',
            'users:CREATE',
            'users:READ',
            'users:UPDATE',
        ]

    def test_missing_modules_are_skipped(self, db, organization):
        role = ensure_role_with_permissions('CONTADOR', organization.id)

        assert granted_codes(role) == []

    def test_roles_are_scoped_per_organization(self, catalog, organization, other_organization):
        own = ensure_role_with_permissions('ADMIN', organization.id)
        other = ensure_role_with_permissions('ADMIN', other_organization.id)

        assert own.id != other.id


class RecordingStore:
    """Store double recording the provisioner's calls."""

    def __init__(self):
        self.granted = []

    def upsert_role(self, organization_id, slug, name):
        from types import SimpleNamespace
        return SimpleNamespace(id='role-1', slug=slug, name=name, organization_id=organization_id)

    def all_permission_ids(self):
        return ['p-1', 'p-2']

    def permission_ids_for(self, module_slugs, actions):
        return ['p-1']

    def grant_permissions(self, role_id, permission_ids, granted_by_id=None):
        self.granted.append((role_id, list(permission_ids), granted_by_id))


class TestProvisionerWithInjectedStore:
    """The provisioner works through the store it is given."""

    def test_all_bundle_grants_every_permission(self):
        store = RecordingStore()

        RoleProvisioner(store).ensure_role_with_permissions('ADMIN', 'org-1', granted_by_id='u-1')

        assert store.granted == [('role-1', ['p-1', 'p-2'], 'u-1')]
