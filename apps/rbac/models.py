"""
RBAC models for organization-scoped access control.

Implements:
- User identity (the AUTH_USER_MODEL), attached to one organization
- Module (an application area) and Permission (module x action)
- Role (global template or organization-scoped)
- RolePermission (maps permissions to roles)
- UserRole (assigns roles to users, deactivated rather than deleted)
- AuditLog (append-only audit trail)
"""
import logging
from django.contrib.auth.hashers import make_password, check_password
from django.db import models, transaction
from django.utils import timezone

from apps.core.logging import get_client_ip
from apps.core.models import BaseModel
from apps.rbac.permissions import Action, encode_permission

logger = logging.getLogger(__name__)


class UserManager(models.Manager):
    """
    Manager for User queries.

    Compatible with Django's authentication system.
    """

    def by_email(self, email):
        """Find user by email (case-insensitive)."""
        if not email:
            return None
        return self.filter(email__iexact=email.strip()).first()

    def create_user(self, email, password=None, **extra_fields):
        """Create a new user with hashed password."""
        if not email:
            raise ValueError('Email address is required')

        email = self.normalize_email(email)
        extra_fields.setdefault('status', User.STATUS_ACTIVE)

        user = self.model(email=email, **extra_fields)
        if password:
            user.set_password(password)
        user.save(using=self._db)
        return user

    @staticmethod
    def normalize_email(email):
        """
        Normalize the email address by lowercasing the domain part.
        """
        email = email or ''
        try:
            email_name, domain_part = email.strip().rsplit('@', 1)
        except ValueError:
            pass
        else:
            email = email_name + '@' + domain_part.lower()
        return email

    def get_by_natural_key(self, email):
        return self.get(**{self.model.USERNAME_FIELD: email})


class User(BaseModel):
    """
    Back-office user.

    Authentication happens against this model; authorization is derived
    from the user's active role assignments (see ``UserRole``).
    """

    STATUS_ACTIVE = 'ACTIVE'
    STATUS_PENDING_VERIFICATION = 'PENDING_VERIFICATION'
    STATUS_SUSPENDED = 'SUSPENDED'
    STATUS_DELETED = 'DELETED'

    STATUS_CHOICES = [
        (STATUS_ACTIVE, 'Active'),
        (STATUS_PENDING_VERIFICATION, 'Pending verification'),
        (STATUS_SUSPENDED, 'Suspended'),
        (STATUS_DELETED, 'Deleted'),
    ]

    email = models.EmailField(
        unique=True,
        db_index=True,
        help_text="User email address (unique globally)"
    )
    password_hash = models.CharField(
        max_length=255,
        blank=True,
        help_text="Hashed password",
        db_column='password_hash'
    )
    first_name = models.CharField(max_length=100, blank=True)
    last_name = models.CharField(max_length=100, blank=True)

    status = models.CharField(
        max_length=32,
        choices=STATUS_CHOICES,
        default=STATUS_ACTIVE,
        db_index=True,
        help_text="Account status; only ACTIVE users may log in"
    )
    organization = models.ForeignKey(
        'organizations.Organization',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='users',
        help_text="Organization the user works in"
    )

    # Login tracking
    failed_login_attempts = models.PositiveIntegerField(default=0)
    locked_until = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Login is refused until this time"
    )
    last_login_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Last successful login"
    )

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        db_table = 'users'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['organization', 'status']),
        ]

    def __str__(self):
        return self.email

    @property
    def password(self):
        return self.password_hash

    @password.setter
    def password(self, value):
        self.password_hash = value

    def check_password(self, raw_password):
        """Check if provided password matches stored hash."""
        if not self.password_hash:
            return False
        return check_password(raw_password, self.password_hash)

    def set_password(self, raw_password):
        """Set user password (hashes automatically)."""
        self.password_hash = make_password(raw_password)

    def get_full_name(self):
        """Return full name or email if name not set."""
        if self.first_name or self.last_name:
            return f"{self.first_name} {self.last_name}".strip()
        return self.email

    @property
    def is_locked(self):
        """Whether a lockout is currently in force."""
        return self.locked_until is not None and self.locked_until > timezone.now()

    @property
    def is_authenticated(self):
        return True

    @property
    def is_anonymous(self):
        return False

    def natural_key(self):
        return (self.email,)


class Module(BaseModel):
    """
    An application area (e.g. ``users``, ``forest-patrimony``).

    ``route_path`` is the page prefix the frontend serves the module under.
    """

    slug = models.SlugField(
        max_length=100,
        unique=True,
        help_text="Module identifier used in permission codes"
    )
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    route_path = models.CharField(
        max_length=255,
        blank=True,
        help_text="Page route prefix served for this module (e.g. '/users')"
    )
    display_order = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True, db_index=True)

    class Meta:
        db_table = 'modules'
        ordering = ['display_order', 'name']

    def __str__(self):
        return self.slug


ACTION_CHOICES = [(action.value, action.value) for action in Action]


class PermissionManager(models.Manager):
    """Manager for Permission queries."""

    def by_code(self, code):
        """Find permission by ``module:action`` code."""
        module_slug, _, action = (code or '').partition(':')
        return self.filter(module__slug=module_slug, action=action).first()

    def for_modules(self, module_slugs, actions):
        """Permissions whose module slug and action are both in the given sets."""
        return self.filter(module__slug__in=list(module_slugs), action__in=list(actions))


class Permission(BaseModel):
    """
    A single action on a module. Shared across all organizations.
    """

    module = models.ForeignKey(
        Module,
        on_delete=models.CASCADE,
        related_name='permissions',
        help_text="Module this permission applies to"
    )
    action = models.CharField(
        max_length=20,
        choices=ACTION_CHOICES,
        help_text="Action granted on the module"
    )
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)

    objects = PermissionManager()

    class Meta:
        db_table = 'permissions'
        ordering = ['module__display_order', 'module__slug', 'action']
        unique_together = [('module', 'action')]

    def __str__(self):
        return self.code

    @property
    def code(self):
        """Canonical ``module:action`` string."""
        return encode_permission(self.module.slug, self.action)


class RoleManager(models.Manager):
    """Manager for Role queries with organization scoping."""

    def visible_to(self, organization_id):
        """
        Active roles visible from an organization: its own roles plus the
        global templates. Without an organization only templates are visible.
        """
        scope = models.Q(organization__isnull=True)
        if organization_id:
            scope |= models.Q(organization_id=organization_id)
        return self.filter(scope, is_active=True)


class Role(BaseModel):
    """
    A named bundle of permissions.

    ``organization`` is null for global templates. System roles are seeded
    by provisioning and cannot be deleted or renamed.
    """

    organization = models.ForeignKey(
        'organizations.Organization',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='roles',
        help_text="Owning organization (null for global templates)"
    )
    slug = models.CharField(
        max_length=100,
        help_text="Stable role identifier, e.g. 'GERENTE_CAMPO'"
    )
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    is_system_role = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Seeded by the system; protected from deletion"
    )
    is_active = models.BooleanField(default=True, db_index=True)

    objects = RoleManager()

    class Meta:
        db_table = 'roles'
        ordering = ['name']
        constraints = [
            models.UniqueConstraint(
                fields=['organization', 'slug'],
                name='unique_role_slug_per_organization',
            ),
            models.UniqueConstraint(
                fields=['slug'],
                condition=models.Q(organization__isnull=True),
                name='unique_global_role_slug',
            ),
        ]

    def __str__(self):
        return self.slug


class RolePermission(BaseModel):
    """
    Maps permissions to roles.
    """

    role = models.ForeignKey(
        Role,
        on_delete=models.CASCADE,
        related_name='role_permissions',
    )
    permission = models.ForeignKey(
        Permission,
        on_delete=models.CASCADE,
        related_name='role_permissions',
    )
    granted_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='granted_role_permissions',
    )

    class Meta:
        db_table = 'role_permissions'
        unique_together = [('role', 'permission')]
        ordering = ['role', 'permission']

    def __str__(self):
        return f"{self.role.slug} -> {self.permission_id}"


class UserRoleManager(models.Manager):
    """Manager for role assignments."""

    def active_for_user(self, user_id):
        """Active assignments of a user, with the role loaded."""
        return self.filter(user_id=user_id, is_active=True).select_related('role')

    def deactivate_for_user(self, user_id):
        """Deactivate every active assignment of a user."""
        return self.filter(user_id=user_id, is_active=True).update(
            is_active=False, updated_at=timezone.now()
        )


class UserRole(BaseModel):
    """
    Assigns a role to a user. Revocation flips ``is_active``; the row is
    reused when the same role is assigned again.
    """

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='user_roles',
    )
    role = models.ForeignKey(
        Role,
        on_delete=models.CASCADE,
        related_name='user_roles',
    )
    is_active = models.BooleanField(default=True, db_index=True)
    assigned_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='assigned_user_roles',
    )

    objects = UserRoleManager()

    class Meta:
        db_table = 'user_roles'
        unique_together = [('user', 'role')]
        ordering = ['created_at']
        indexes = [
            models.Index(fields=['user', 'is_active']),
        ]

    def __str__(self):
        return f"{self.user_id} -> {self.role_id}"


class AuditLog(BaseModel):
    """
    Append-only audit trail for logins and role administration.
    """

    organization = models.ForeignKey(
        'organizations.Organization',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='audit_logs',
    )
    user = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='audit_logs',
        help_text="User who performed the action (null for system actions)"
    )
    action = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Action performed (e.g. 'LOGIN', 'ROLE_CREATED')"
    )
    entity_type = models.CharField(max_length=50, blank=True)
    entity_id = models.CharField(max_length=64, blank=True)
    new_values = models.JSONField(default=dict, blank=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.TextField(blank=True)
    request_id = models.CharField(max_length=64, blank=True)

    class Meta:
        db_table = 'audit_logs'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['organization', 'created_at']),
            models.Index(fields=['action', 'created_at']),
        ]

    def __str__(self):
        return f"{self.action} {self.entity_type}:{self.entity_id}"

    @classmethod
    def log_action(cls, action, user_id=None, organization_id=None, entity_type='',
                   entity_id=None, new_values=None, request=None):
        """
        Record an audit entry.

        Failures are logged and swallowed; auditing never breaks the
        operation being audited. The write runs in its own savepoint so a
        failure does not poison an enclosing transaction.

        Returns:
            AuditLog instance, or None if the write failed
        """
        log_data = {
            'action': action,
            'user_id': user_id,
            'organization_id': organization_id,
            'entity_type': entity_type or '',
            'entity_id': str(entity_id) if entity_id else '',
            'new_values': new_values or {},
        }

        if request is not None:
            log_data['ip_address'] = get_client_ip(request)
            log_data['user_agent'] = request.META.get('HTTP_USER_AGENT', '')
            log_data['request_id'] = getattr(request, 'request_id', '') or ''

        try:
            with transaction.atomic():
                return cls.objects.create(**log_data)
        except Exception as e:
            logger.error(
                f"Failed to create audit log: {e}",
                extra={'action': action, 'organization_id': organization_id},
                exc_info=True
            )
            return None
