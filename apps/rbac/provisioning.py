"""
Role provisioning.

Materializes an organization's copy of a role archetype (``ADMIN``,
``GERENTE_CAMPO``, ...) together with its default permission bundle.
Provisioning is idempotent: running it again refreshes the display name
and adds missing grants, never duplicates a role or a grant.
"""
import logging

from apps.rbac.permissions import Action
from apps.rbac.store import RoleStore, default_store

logger = logging.getLogger(__name__)

# Grant every permission that exists at provisioning time.
ALL = 'ALL'

ROLE_NAMES = {
    'SUPER_ADMIN': 'Super Admin',
    'ADMIN': 'Admin',
    'GERENTE_CAMPO': 'Gerente de Campo',
    'CONTADOR': 'Contador',
    'USER': 'Usuario',
    'MANAGER': 'Manager',
}

_FIELD_MANAGER_BUNDLE = [
    {'module': 'forest-patrimony', 'actions': [Action.READ, Action.CREATE, Action.UPDATE]},
    {'module': 'forest-biological-asset', 'actions': [Action.READ]},
    {'module': 'users', 'actions': [Action.READ]},
]

ROLE_PERMISSIONS = {
    'SUPER_ADMIN': ALL,
    'ADMIN': ALL,
    'GERENTE_CAMPO': _FIELD_MANAGER_BUNDLE,
    'MANAGER': _FIELD_MANAGER_BUNDLE,
    'CONTADOR': [
        {'module': 'forest-patrimony', 'actions': [Action.READ]},
    ],
    'USER': [
        {'module': 'dashboard', 'actions': [Action.READ]},
    ],
}

FALLBACK_ARCHETYPE = 'USER'

# Archetypes only the listed roles may hand out; every other role is open
# to anyone allowed to manage users.
RESTRICTED_ARCHETYPES = {
    'SUPER_ADMIN': frozenset({'SUPER_ADMIN'}),
    'ADMIN': frozenset({'ADMIN', 'SUPER_ADMIN'}),
}


def may_assign(assigner_roles, role_slug) -> bool:
    """True when a caller holding ``assigner_roles`` may grant ``role_slug``."""
    allowed = RESTRICTED_ARCHETYPES.get(role_slug)
    if allowed is None:
        return True
    return any(role in allowed for role in assigner_roles or ())


def role_display_name(role_slug):
    return ROLE_NAMES.get(role_slug, role_slug)


def permission_bundle(role_slug):
    """The bundle for an archetype; unknown archetypes get the USER bundle."""
    return ROLE_PERMISSIONS.get(role_slug, ROLE_PERMISSIONS[FALLBACK_ARCHETYPE])


class RoleProvisioner:
    """Creates or refreshes organization roles from archetypes."""

    def __init__(self, store: RoleStore = None):
        self.store = store or default_store

    def resolve_bundle(self, role_slug):
        """
        Permission ids for an archetype, looked up now.

        Explicit bundles are matched as (any listed module) x (any listed
        action), so a module may receive an action that another entry of
        the same bundle lists.
        """
        bundle = permission_bundle(role_slug)
        if bundle == ALL:
            return self.store.all_permission_ids()

        module_slugs = [entry['module'] for entry in bundle]
        actions = []
        for entry in bundle:
            for action in entry['actions']:
                value = action.value if isinstance(action, Action) else action
                if value not in actions:
                    actions.append(value)
        return self.store.permission_ids_for(module_slugs, actions)

    def ensure_role_with_permissions(self, role_slug, organization_id, granted_by_id=None):
        """
        Upsert the role ``(organization_id, role_slug)`` and grant its bundle.

        Returns:
            Role instance
        """
        role = self.store.upsert_role(organization_id, role_slug, role_display_name(role_slug))

        permission_ids = self.resolve_bundle(role_slug)
        if permission_ids:
            self.store.grant_permissions(role.id, permission_ids, granted_by_id=granted_by_id)

        logger.info(
            "Role provisioned",
            extra={
                'role_slug': role_slug,
                'organization_id': str(organization_id) if organization_id else None,
                'permission_count': len(permission_ids),
            }
        )
        return role


def ensure_role_with_permissions(role_slug, organization_id):
    """Provision a role using the default ORM store."""
    return RoleProvisioner().ensure_role_with_permissions(role_slug, organization_id)
