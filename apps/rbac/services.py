"""
RBAC and Authentication services.

Implements:
- RoleResolver: effective roles and permissions of a user
- dedupe_roles_by_slug: one role per slug, preferring the caller's organization
- RoleService: role administration and user role reassignment
- UserService: user accounts created by administrators
- ModuleService: module catalog upsert
- RoleExportService: CSV export of visible roles
- AuthService: login with lockout, JWT session tokens, registration
"""
import csv
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone as dt_timezone
from io import StringIO
from typing import Any, Dict, Iterable, List, Optional

import jwt
from django.conf import settings
from django.db import transaction
from django.utils import timezone
from django.utils.text import slugify

from apps.core.logging import SecurityLogger, get_client_ip
from apps.organizations.models import Organization
from apps.rbac.exceptions import (
    OrganizationScopeError,
    RBACError,
    RegistrationConflictError,
    RoleAssignmentForbiddenError,
    RoleConflictError,
    RoleNotFoundError,
    SystemRoleProtectedError,
    UserConflictError,
    UserNotFoundError,
)
from apps.rbac.models import AuditLog, Module, Permission, Role, RolePermission, User, UserRole
from apps.rbac.permissions import Action, encode_permission
from apps.rbac.provisioning import RoleProvisioner, may_assign
from apps.rbac.store import RoleStore, default_store

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RolesAndPermissions:
    roles: List[str] = field(default_factory=list)
    permissions: List[str] = field(default_factory=list)


class RoleResolver:
    """
    Flattens a user's active role assignments into role slugs and
    ``module:action`` permission codes.
    """

    def __init__(self, store: RoleStore = None):
        self.store = store or default_store

    def get_user_roles_and_permissions(self, user_id) -> RolesAndPermissions:
        """
        Resolve roles and permissions for ``user_id``.

        Roles keep one entry per active assignment, in assignment order.
        Permissions are deduplicated, keeping first-seen order. Assignments
        whose role has been deactivated grant nothing.
        """
        roles = []
        permissions = []
        seen = set()

        for assignment in self.store.active_assignments(user_id):
            role = assignment.role
            if not role.is_active:
                logger.debug(
                    "Ignoring assignment to inactive role",
                    extra={'user_id': str(user_id), 'role_slug': role.slug}
                )
                continue
            roles.append(role.slug)
            for grant in role.role_permissions.all():
                code = encode_permission(grant.permission.module.slug, grant.permission.action)
                if code not in seen:
                    seen.add(code)
                    permissions.append(code)

        return RolesAndPermissions(roles=roles, permissions=permissions)


def _same_organization(left, right):
    if left is None or right is None:
        return left is None and right is None
    return str(left) == str(right)


def dedupe_roles_by_slug(roles: Iterable, organization_id) -> List:
    """
    Keep one role per slug.

    An entry belonging to ``organization_id`` replaces one that does not;
    otherwise the first entry seen for a slug wins. Slugs keep the order in
    which they were first seen.
    """
    by_slug: Dict[str, Any] = {}
    for role in roles:
        existing = by_slug.get(role.slug)
        if existing is None:
            by_slug[role.slug] = role
            continue
        if (not _same_organization(existing.organization_id, organization_id)
                and _same_organization(role.organization_id, organization_id)):
            by_slug[role.slug] = role
    return list(by_slug.values())


_UNSET = object()


def visible_roles(organization_id, prefer_organization_id=_UNSET):
    """
    Active roles visible from ``organization_id`` (its own plus global
    templates), deduplicated by slug and sorted by name.

    Duplicates resolve in favour of ``prefer_organization_id``, which
    defaults to ``organization_id``.
    """
    if prefer_organization_id is _UNSET:
        prefer_organization_id = organization_id
    candidates = (
        Role.objects.visible_to(organization_id)
        .select_related('organization')
        .prefetch_related('role_permissions__permission__module')
        .order_by('-is_system_role', 'name', 'created_at')
    )
    deduped = dedupe_roles_by_slug(candidates, prefer_organization_id)
    return sorted(deduped, key=lambda role: role.name.lower())


_WHITESPACE = re.compile(r'\s+')
_INVALID_SLUG_CHARS = re.compile(r'[^A-Z0-9_]')


def normalize_role_slug(slug: str) -> str:
    """Upper-case, whitespace and any non ``[A-Z0-9_]`` character become ``_``."""
    slug = _WHITESPACE.sub('_', (slug or '').strip().upper())
    return _INVALID_SLUG_CHARS.sub('_', slug)


def _parse_uuids(values: Iterable) -> List[uuid.UUID]:
    parsed = []
    for value in values:
        try:
            candidate = value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        except (TypeError, ValueError):
            continue
        if candidate not in parsed:
            parsed.append(candidate)
    return parsed


def _assignable_role_slug(role_slug, organization_id, assigner_roles=None) -> str:
    """
    Normalized role slug, checked before it is handed to a user.

    ``assigner_roles`` are the roles of the caller; ``None`` skips the
    check for internal callers such as seeding.

    Raises:
        RBACError: empty slug
        RoleAssignmentForbiddenError: the caller may not grant this role
        RoleNotFoundError: the organization deleted its copy of the role
    """
    role_slug = normalize_role_slug(role_slug)
    if not role_slug:
        raise RBACError('role_slug es obligatorio')

    if assigner_roles is not None and not may_assign(assigner_roles, role_slug):
        logger.warning(
            "Role assignment refused",
            extra={'role_slug': role_slug, 'assigner_roles': list(assigner_roles)}
        )
        raise RoleAssignmentForbiddenError('No puede asignar este rol')

    if Role.objects.filter(organization_id=organization_id, slug=role_slug, is_active=False).exists():
        raise RoleNotFoundError('Rol no encontrado')
    return role_slug


class RoleService:
    """
    Role administration: CRUD on roles, permission assignment and user
    role reassignment.
    """

    @classmethod
    def get_role(cls, role_id, active_only=True) -> Role:
        role = Role.objects.filter(pk=role_id).first() if _parse_uuids([role_id]) else None
        if role is None or (active_only and not role.is_active):
            raise RoleNotFoundError('Rol no encontrado')
        return role

    @classmethod
    def _check_scope(cls, organization_id, restrict_to_organization_id):
        """
        Restricted callers only manage roles of their own organization;
        global templates are out of their reach.
        """
        if restrict_to_organization_id is _UNSET:
            return
        if organization_id is None or not _same_organization(organization_id, restrict_to_organization_id):
            raise OrganizationScopeError('No puede modificar roles de otra organización')

    @classmethod
    def _validated(cls, name, slug):
        name = (name or '').strip()
        slug = normalize_role_slug(slug)
        if not name or not slug:
            raise RBACError('name y slug son obligatorios')
        return name, slug

    @classmethod
    @transaction.atomic
    def create_role(cls, name: str, slug: str, organization_id=None,
                    description: Optional[str] = None, actor_id=None,
                    restrict_to_organization_id=_UNSET) -> Role:
        """
        Create a custom role in ``organization_id`` (null for a global role).

        A previously deleted role with the same slug is revived in place.

        Raises:
            RoleConflictError: an active role with this slug already exists
            OrganizationScopeError: restricted caller creating outside its organization
        """
        cls._check_scope(organization_id, restrict_to_organization_id)
        name, slug = cls._validated(name, slug)
        description = (description or '').strip()

        existing = Role.objects.select_for_update().filter(
            organization_id=organization_id, slug=slug
        ).first()
        if existing is not None and existing.is_active:
            raise RoleConflictError('Ya existe un rol con ese slug')

        if existing is not None:
            existing.name = name
            existing.description = description
            existing.is_active = True
            existing.save(update_fields=['name', 'description', 'is_active', 'updated_at'])
            role = existing
        else:
            role = Role.objects.create(
                organization_id=organization_id,
                slug=slug,
                name=name,
                description=description,
                is_system_role=False,
                is_active=True,
            )

        AuditLog.log_action(
            action='CREATE',
            user_id=actor_id,
            organization_id=organization_id,
            entity_type='Role',
            entity_id=role.id,
            new_values={'name': role.name, 'slug': role.slug},
        )
        return role

    @classmethod
    @transaction.atomic
    def update_role(cls, role_id, name: str, slug: str, description: Optional[str] = None,
                    actor_id=None, restrict_to_organization_id=_UNSET) -> Role:
        """
        Rename a role.

        Raises:
            RoleNotFoundError: unknown or deleted role
            SystemRoleProtectedError: slug change on a system role
            RoleConflictError: another role in the same scope has the slug
            OrganizationScopeError: the role is outside the caller's organization
        """
        role = cls.get_role(role_id)
        cls._check_scope(role.organization_id, restrict_to_organization_id)
        name, slug = cls._validated(name, slug)

        if role.is_system_role and slug != role.slug:
            raise SystemRoleProtectedError('No puedes cambiar el slug de un rol del sistema')

        duplicated = Role.objects.filter(
            organization_id=role.organization_id, slug=slug
        ).exclude(pk=role.pk).exists()
        if duplicated:
            raise RoleConflictError('Ya existe un rol con ese slug')

        role.name = name
        role.slug = slug
        role.description = (description or '').strip()
        role.save(update_fields=['name', 'slug', 'description', 'updated_at'])

        AuditLog.log_action(
            action='UPDATE',
            user_id=actor_id,
            organization_id=role.organization_id,
            entity_type='Role',
            entity_id=role.id,
            new_values={'name': role.name, 'slug': role.slug},
        )
        return role

    @classmethod
    def delete_role(cls, role_id, actor_id=None, restrict_to_organization_id=_UNSET) -> Role:
        """
        Deactivate a role and every active assignment of it.

        Raises:
            RoleNotFoundError: unknown or deleted role
            SystemRoleProtectedError: the role is a system role
            OrganizationScopeError: the role is outside the caller's organization
        """
        role = cls.get_role(role_id)
        cls._check_scope(role.organization_id, restrict_to_organization_id)
        if role.is_system_role:
            raise SystemRoleProtectedError('No puedes eliminar un rol del sistema')

        with transaction.atomic():
            revoked = UserRole.objects.filter(role=role, is_active=True).update(
                is_active=False, updated_at=timezone.now()
            )
            role.is_active = False
            role.save(update_fields=['is_active', 'updated_at'])

        logger.info(
            "Role deleted",
            extra={'role_id': str(role.id), 'role_slug': role.slug, 'revoked_assignments': revoked}
        )
        AuditLog.log_action(
            action='DELETE',
            user_id=actor_id,
            organization_id=role.organization_id,
            entity_type='Role',
            entity_id=role.id,
        )
        return role

    @classmethod
    def set_role_permissions(cls, role_id, permission_ids: Iterable, actor_id=None,
                             restrict_to_organization_id=_UNSET) -> List[uuid.UUID]:
        """
        Replace the permission set of a role.

        Unknown ids are dropped. Runs in one transaction, so a failure
        leaves the previous grants untouched.

        Returns:
            The permission ids the role holds afterwards, in request order
        """
        role = cls.get_role(role_id, active_only=False)
        cls._check_scope(role.organization_id, restrict_to_organization_id)
        requested = _parse_uuids(permission_ids or [])
        valid = set(Permission.objects.filter(id__in=requested).values_list('id', flat=True))
        cleaned = [permission_id for permission_id in requested if permission_id in valid]

        with transaction.atomic():
            if not cleaned:
                RolePermission.objects.filter(role=role).delete()
            else:
                RolePermission.objects.filter(role=role).exclude(permission_id__in=cleaned).delete()
                RolePermission.objects.bulk_create(
                    [
                        RolePermission(role=role, permission_id=permission_id, granted_by_id=actor_id)
                        for permission_id in cleaned
                    ],
                    ignore_conflicts=True,
                )

        AuditLog.log_action(
            action='UPDATE_PERMISSIONS',
            user_id=actor_id,
            organization_id=role.organization_id,
            entity_type='Role',
            entity_id=role.id,
            new_values={'permission_ids': [str(permission_id) for permission_id in cleaned]},
        )
        return cleaned

    @classmethod
    def reassign_user_role(cls, user_id, role_slug: str, organization_id=None, actor_id=None,
                           profile: Optional[Dict[str, Any]] = None,
                           restrict_to_organization_id=_UNSET,
                           assigner_roles=None,
                           provisioner: RoleProvisioner = None) -> UserRole:
        """
        Make ``role_slug`` the user's only active role.

        The organization's role is provisioned on demand. Prior active
        assignments are deactivated and the target assignment is created or
        re-activated, together with any profile changes, in one transaction.

        Args:
            user_id: User to update
            role_slug: Role archetype slug
            organization_id: Organization the role belongs to; defaults to
                the user's organization
            actor_id: User performing the change
            profile: Optional ``first_name`` / ``last_name`` updates
            restrict_to_organization_id: When given, both the user and the
                target organization must be this organization
            assigner_roles: Roles of the caller, checked against the roles
                they may hand out
            provisioner: RoleProvisioner to use

        Raises:
            UserNotFoundError: unknown user
            OrganizationScopeError: the user belongs to another organization
            RoleAssignmentForbiddenError: the caller may not grant the role
            RoleNotFoundError: the organization deleted its copy of the role
            RBACError: no organization could be determined
        """
        provisioner = provisioner or RoleProvisioner()
        user = User.objects.filter(pk=user_id).first() if _parse_uuids([user_id]) else None
        if user is None:
            raise UserNotFoundError('Usuario no encontrado')

        organization_id = organization_id or user.organization_id

        if restrict_to_organization_id is not _UNSET and not (
            _same_organization(user.organization_id, restrict_to_organization_id)
            and _same_organization(organization_id, restrict_to_organization_id)
        ):
            raise OrganizationScopeError('No puede modificar usuarios de otra organización')

        if not organization_id:
            raise RBACError('La organización es obligatoria')

        role_slug = _assignable_role_slug(role_slug, organization_id, assigner_roles)

        with transaction.atomic():
            role = provisioner.ensure_role_with_permissions(role_slug, organization_id, granted_by_id=actor_id)

            UserRole.objects.deactivate_for_user(user.pk)
            assignment, _ = UserRole.objects.update_or_create(
                user=user,
                role=role,
                defaults={'is_active': True, 'assigned_by_id': actor_id},
            )

            update_fields = ['organization', 'updated_at']
            user.organization_id = organization_id
            for field_name in ('first_name', 'last_name'):
                if profile and profile.get(field_name) is not None:
                    setattr(user, field_name, profile[field_name].strip())
                    update_fields.append(field_name)
            user.save(update_fields=update_fields)

        AuditLog.log_action(
            action='UPDATE',
            user_id=actor_id,
            organization_id=organization_id,
            entity_type='User',
            entity_id=user.pk,
            new_values={'role_slug': role_slug, 'organization_id': str(organization_id)},
        )
        return assignment


class UserService:
    """User accounts created by administrators."""

    @classmethod
    def create_user(cls, email: str, password: str, role_slug: str, organization_id=None,
                    first_name: str = '', last_name: str = '', actor_id=None,
                    restrict_to_organization_id=_UNSET, assigner_roles=None,
                    provisioner: RoleProvisioner = None) -> User:
        """
        Create an ACTIVE user holding the organization's ``role_slug`` role.

        The role is provisioned on demand, like a reassignment, so the
        organization always has its own copy of the archetype.

        Raises:
            UserConflictError: the email is already registered
            OrganizationScopeError: restricted caller creating outside its organization
            RoleAssignmentForbiddenError: the caller may not grant the role
            RoleNotFoundError: the organization deleted its copy of the role
            RBACError: no organization could be determined
        """
        email = User.objects.normalize_email(email)
        if User.objects.filter(email__iexact=email).exists():
            raise UserConflictError('El usuario ya existe')

        if restrict_to_organization_id is not _UNSET:
            organization_id = organization_id or restrict_to_organization_id
            if not _same_organization(organization_id, restrict_to_organization_id):
                raise OrganizationScopeError('No puede crear usuarios en otra organización')
        if not organization_id:
            raise RBACError('La organización es obligatoria')

        role_slug = _assignable_role_slug(role_slug, organization_id, assigner_roles)
        provisioner = provisioner or RoleProvisioner()

        with transaction.atomic():
            role = provisioner.ensure_role_with_permissions(role_slug, organization_id, granted_by_id=actor_id)
            user = User.objects.create_user(
                email,
                password,
                first_name=(first_name or '').strip(),
                last_name=(last_name or '').strip(),
                status=User.STATUS_ACTIVE,
                organization_id=organization_id,
            )
            UserRole.objects.create(user=user, role=role, assigned_by_id=actor_id)

        logger.info(
            "User created",
            extra={'user_id': str(user.id), 'role_slug': role_slug, 'organization_id': str(organization_id)}
        )
        AuditLog.log_action(
            action='CREATE',
            user_id=actor_id,
            organization_id=organization_id,
            entity_type='User',
            entity_id=user.id,
            new_values={'email': user.email, 'role_slug': role_slug},
        )
        return user


class ModuleService:
    """Module catalog: listing and upsert by slug."""

    @classmethod
    def list_modules(cls, active_only=False) -> List[Module]:
        queryset = Module.objects.prefetch_related('permissions').order_by('display_order', 'name')
        if active_only:
            queryset = queryset.filter(is_active=True)
        return list(queryset)

    @classmethod
    @transaction.atomic
    def upsert_module(cls, slug: str, name: str, route_path: str, description: str = '',
                      display_order: int = 0, is_active: bool = True, actor_id=None) -> Module:
        """
        Create or update the module ``slug`` and make sure a permission
        exists for every action on it.
        """
        module, created = Module.objects.update_or_create(
            slug=slug,
            defaults={
                'name': name.strip(),
                'route_path': route_path,
                'description': (description or '').strip(),
                'display_order': display_order,
                'is_active': is_active,
            },
        )
        Permission.objects.bulk_create(
            [
                Permission(module=module, action=action.value, name=f"{module.name} {action.value}")
                for action in Action
            ],
            ignore_conflicts=True,
        )

        logger.info("Module upserted", extra={'module_slug': module.slug, 'was_created': created})
        AuditLog.log_action(
            action='CREATE',
            user_id=actor_id,
            entity_type='Module',
            entity_id=module.id,
            new_values={'slug': module.slug, 'name': module.name},
        )
        return module


EXPORT_HEADERS = [
    'name',
    'slug',
    'description',
    'organizationId',
    'organizationName',
    'isSystemRole',
    'permissionsCount',
]

GLOBAL_ORGANIZATION_LABEL = 'Global'


class RoleExportService:
    """Flat CSV export of the roles visible to an organization."""

    @classmethod
    def rows(cls, roles: Iterable[Role], search: str = '', sort_by: str = 'name',
             sort_order: str = 'asc', limit: int = 100) -> List[Dict[str, Any]]:
        """
        Rows for ``roles`` filtered by ``search`` (name, slug or
        organization name, case-insensitive), sorted and truncated.
        """
        rows = [
            {
                'name': role.name,
                'slug': role.slug,
                'description': role.description or '',
                'organization_id': str(role.organization_id) if role.organization_id else '',
                'organization_name': role.organization.name if role.organization_id else GLOBAL_ORGANIZATION_LABEL,
                'is_system_role': role.is_system_role,
                'permissions_count': len(role.role_permissions.all()),
            }
            for role in roles
        ]

        needle = (search or '').strip().lower()
        if needle:
            rows = [
                row for row in rows
                if needle in row['name'].lower()
                or needle in row['slug'].lower()
                or needle in row['organization_name'].lower()
            ]

        numeric = sort_by in ('is_system_role', 'permissions_count')
        rows.sort(
            key=lambda row: int(row[sort_by]) if numeric else str(row[sort_by] or '').casefold(),
            reverse=(sort_order == 'desc'),
        )
        return rows[:limit]

    @classmethod
    def to_csv(cls, rows: Iterable[Dict[str, Any]]) -> str:
        output = StringIO()
        writer = csv.writer(output, lineterminator='\n')
        writer.writerow(EXPORT_HEADERS)
        for row in rows:
            writer.writerow([
                _single_line_breaks(row['name']),
                _single_line_breaks(row['slug']),
                _single_line_breaks(row['description']),
                row['organization_id'],
                _single_line_breaks(row['organization_name']),
                'true' if row['is_system_role'] else 'false',
                row['permissions_count'],
            ])
        content = output.getvalue()
        output.close()
        # no trailing newline after the last row
        return content[:-1] if content.endswith('\n') else content

    @classmethod
    def filename(cls, today=None) -> str:
        today = today or timezone.now().date()
        return f"roles_{today.isoformat()}.csv"


def _single_line_breaks(value):
    return str(value or '').replace('\r\n', '\n').replace('\r', '\n')


class AuthService:
    """
    Session issuance: password login with lockout, JWT encoding and
    self-registration into the default organization.
    """

    @classmethod
    def generate_jwt(cls, user: User, resolved: RolesAndPermissions) -> str:
        """
        Issue a session token carrying the user's roles and permissions.

        The claims are a snapshot; later role changes are not reflected
        until a new token is issued.
        """
        now = datetime.now(dt_timezone.utc)
        organization = user.organization
        payload = {
            'user_id': str(user.id),
            'email': user.email,
            'roles': list(resolved.roles),
            'permissions': list(resolved.permissions),
            'organization_id': str(organization.id) if organization else None,
            'organization_name': organization.name if organization else None,
            'exp': now + timedelta(hours=settings.JWT_EXPIRATION_HOURS),
            'iat': now,
        }
        return jwt.encode(
            payload,
            settings.JWT_SECRET_KEY,
            algorithm=settings.JWT_ALGORITHM
        )

    @classmethod
    def validate_jwt(cls, token: str) -> Optional[Dict[str, Any]]:
        """
        Validate JWT token and return payload.

        Returns:
            Decoded payload dict or None if invalid or expired
        """
        try:
            return jwt.decode(
                token,
                settings.JWT_SECRET_KEY,
                algorithms=[settings.JWT_ALGORITHM]
            )
        except jwt.ExpiredSignatureError:
            return None
        except jwt.InvalidTokenError:
            return None

    @classmethod
    def login(cls, email: str, password: str, request=None,
              resolver: RoleResolver = None) -> Optional[Dict[str, Any]]:
        """
        Authenticate a user and issue a session token.

        Only ACTIVE, unlocked users may log in. A wrong password counts
        towards the lockout threshold.

        Returns:
            Dict with ``user``, ``token``, ``roles`` and ``permissions``, or
            None if authentication failed
        """
        ip_address = get_client_ip(request) if request is not None else None
        if not email or not password:
            return None

        user = User.objects.select_related('organization').filter(email__iexact=email.strip()).first()
        if user is None or not user.password_hash:
            SecurityLogger.log_failed_login(email, ip_address, reason='unknown_user')
            return None

        if user.status != User.STATUS_ACTIVE:
            SecurityLogger.log_failed_login(email, ip_address, reason=f"status_{user.status.lower()}")
            return None

        if user.is_locked:
            SecurityLogger.log_failed_login(email, ip_address, reason='locked')
            return None

        if not user.check_password(password):
            cls._register_failed_attempt(user, request)
            return None

        resolved = (resolver or RoleResolver()).get_user_roles_and_permissions(user.id)

        user.failed_login_attempts = 0
        user.locked_until = None
        user.last_login_at = timezone.now()
        user.save(update_fields=['failed_login_attempts', 'locked_until', 'last_login_at', 'updated_at'])

        AuditLog.log_action(
            action='LOGIN',
            user_id=user.id,
            organization_id=user.organization_id,
            entity_type='User',
            entity_id=user.id,
            request=request,
        )
        logger.info("User logged in", extra={'user_id': str(user.id), 'roles': resolved.roles})

        return {
            'user': user,
            'token': cls.generate_jwt(user, resolved),
            'roles': resolved.roles,
            'permissions': resolved.permissions,
        }

    @classmethod
    def _register_failed_attempt(cls, user: User, request=None):
        attempts = user.failed_login_attempts + 1
        locked = attempts >= settings.RBAC_MAX_FAILED_LOGINS
        user.failed_login_attempts = attempts
        user.locked_until = (
            timezone.now() + timedelta(minutes=settings.RBAC_LOCKOUT_MINUTES) if locked else None
        )
        user.save(update_fields=['failed_login_attempts', 'locked_until', 'updated_at'])

        ip_address = get_client_ip(request) if request is not None else None
        SecurityLogger.log_failed_login(user.email, ip_address, reason='invalid_password')
        if locked:
            SecurityLogger.log_account_locked(
                user.email, str(user.id), user.locked_until.isoformat(), ip_address=ip_address
            )

        AuditLog.log_action(
            action='LOGIN_FAILED',
            user_id=user.id,
            organization_id=user.organization_id,
            entity_type='User',
            entity_id=user.id,
            request=request,
        )

    @classmethod
    def default_organization(cls) -> Organization:
        """Get or create the default landing organization."""
        name = settings.RBAC_DEFAULT_ORGANIZATION_NAME
        organization, _ = Organization.objects.get_or_create(
            slug=slugify(name),
            defaults={'name': name, 'is_active': True},
        )
        return organization

    @classmethod
    def register_user(cls, email: str, password: str, first_name: str = '', last_name: str = '',
                      provisioner: RoleProvisioner = None) -> User:
        """
        Self-registration.

        The user lands in the default organization with the ``USER`` role
        and stays PENDING_VERIFICATION until an administrator activates it.

        Raises:
            RegistrationConflictError: the email is already registered
        """
        email = User.objects.normalize_email(email)
        if User.objects.filter(email__iexact=email).exists():
            raise RegistrationConflictError('El email ya existe')

        provisioner = provisioner or RoleProvisioner()
        with transaction.atomic():
            organization = cls.default_organization()
            role = provisioner.ensure_role_with_permissions('USER', organization.id)
            user = User.objects.create_user(
                email,
                password,
                first_name=(first_name or '').strip(),
                last_name=(last_name or '').strip(),
                status=User.STATUS_PENDING_VERIFICATION,
                organization=organization,
            )
            UserRole.objects.create(user=user, role=role)

        AuditLog.log_action(
            action='CREATE',
            user_id=user.id,
            organization_id=organization.id,
            entity_type='User',
            entity_id=user.id,
        )
        return user
