"""
ORM access for the RBAC core.

``RoleStore`` is the only place the resolver, gate and provisioner touch
the database. Each of them takes a store instance in its constructor, so
tests can hand in a different one.
"""
import logging
from typing import Iterable, List, Optional

from django.db.models import Prefetch

from apps.rbac.models import Permission, Role, RolePermission, User, UserRole

logger = logging.getLogger(__name__)


class RoleStore:
    """Repository over the RBAC tables."""

    def active_assignments(self, user_id) -> List[UserRole]:
        """
        Active role assignments of a user, oldest first, with each role's
        permissions and modules loaded.
        """
        grants = Prefetch(
            'role__role_permissions',
            queryset=RolePermission.objects.select_related('permission__module').order_by('created_at'),
        )
        return list(
            UserRole.objects.active_for_user(user_id)
            .prefetch_related(grants)
            .order_by('created_at')
        )

    def find_user_by_email(self, email: str) -> Optional[User]:
        return User.objects.by_email(email)

    def all_permission_ids(self) -> List:
        return list(Permission.objects.values_list('id', flat=True))

    def permission_ids_for(self, module_slugs: Iterable[str], actions: Iterable[str]) -> List:
        """Ids of permissions whose module is in ``module_slugs`` and action in ``actions``."""
        return list(Permission.objects.for_modules(module_slugs, actions).values_list('id', flat=True))

    def upsert_role(self, organization_id, slug: str, name: str) -> Role:
        """
        Create or update the role keyed by ``(organization_id, slug)``.

        An existing role only has its display name refreshed; a new one is
        created as an active system role.
        """
        role, created = Role.objects.update_or_create(
            organization_id=organization_id,
            slug=slug,
            defaults={'name': name},
            create_defaults={'name': name, 'is_system_role': True, 'is_active': True},
        )
        logger.debug(
            "Role upserted",
            extra={
                'role_slug': slug,
                'organization_id': str(organization_id) if organization_id else None,
                'was_created': created,
            }
        )
        return role

    def grant_permissions(self, role_id, permission_ids: Iterable, granted_by_id=None) -> None:
        """Insert ``RolePermission`` rows, skipping pairs that already exist."""
        RolePermission.objects.bulk_create(
            [
                RolePermission(role_id=role_id, permission_id=permission_id, granted_by_id=granted_by_id)
                for permission_id in permission_ids
            ],
            ignore_conflicts=True,
        )


default_store = RoleStore()
