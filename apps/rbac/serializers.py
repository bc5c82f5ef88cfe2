"""
RBAC serializers for REST API endpoints.

Provides serialization for:
- Authentication (login, registration) and session claims
- Modules and their permissions
- Roles, role permission sets and role export
- User creation and role reassignment
"""
from django.conf import settings
from rest_framework import serializers
from django.contrib.auth.password_validation import validate_password

from apps.rbac.models import Module, Role, User


# ===== AUTHENTICATION SERIALIZERS =====

class LoginSerializer(serializers.Serializer):
    """Serializer for user login."""

    email = serializers.EmailField(required=True)
    password = serializers.CharField(
        required=True,
        write_only=True,
        style={'input_type': 'password'}
    )

    def validate_email(self, value):
        """Normalize email to lowercase."""
        return value.strip().lower()


class RegistrationSerializer(serializers.Serializer):
    """Serializer for self-registration."""

    email = serializers.EmailField(required=True)
    password = serializers.CharField(
        required=True,
        write_only=True,
        style={'input_type': 'password'}
    )
    first_name = serializers.CharField(required=True, max_length=100)
    last_name = serializers.CharField(required=True, max_length=100)

    def validate_email(self, value):
        return value.strip().lower()

    def validate_password(self, value):
        validate_password(value)
        return value


class SessionClaimsSerializer(serializers.Serializer):
    """
    Validates the claims carried by a session token before they become a
    principal. Missing role or permission lists default to empty.
    """

    user_id = serializers.CharField(required=True, allow_blank=False)
    email = serializers.CharField(required=False, allow_null=True, allow_blank=True, default=None)
    roles = serializers.ListField(child=serializers.CharField(), required=False, default=list)
    permissions = serializers.ListField(child=serializers.CharField(), required=False, default=list)
    organization_id = serializers.CharField(required=False, allow_null=True, allow_blank=True, default=None)
    organization_name = serializers.CharField(required=False, allow_null=True, allow_blank=True, default=None)


class UserSerializer(serializers.ModelSerializer):
    """Public view of a user."""

    organization_name = serializers.CharField(source='organization.name', read_only=True, default=None)

    class Meta:
        model = User
        fields = [
            'id', 'email', 'first_name', 'last_name', 'status',
            'organization', 'organization_name', 'last_login_at',
        ]
        read_only_fields = fields


class PrincipalSerializer(serializers.Serializer):
    """Serializer for the resolved principal (GET /api/me)."""

    user_id = serializers.CharField()
    email = serializers.CharField(allow_null=True)
    roles = serializers.ListField(child=serializers.CharField())
    permissions = serializers.ListField(child=serializers.CharField())
    organization_id = serializers.CharField(allow_null=True)
    organization_name = serializers.CharField(allow_null=True)
    source = serializers.CharField()


# ===== MODULE SERIALIZERS =====

class ModuleSerializer(serializers.ModelSerializer):
    """Module with the permissions defined on it."""

    permissions = serializers.SerializerMethodField()

    class Meta:
        model = Module
        fields = [
            'id', 'name', 'slug', 'route_path', 'display_order', 'is_active', 'permissions',
        ]
        read_only_fields = fields

    def get_permissions(self, obj):
        return [
            {'id': str(permission.id), 'action': permission.action}
            for permission in sorted(obj.permissions.all(), key=lambda item: item.action)
        ]


class ModuleUpsertSerializer(serializers.Serializer):
    """Serializer for creating or updating a module by slug."""

    name = serializers.CharField(max_length=255)
    slug = serializers.CharField(max_length=100)
    route_path = serializers.CharField(max_length=255)
    description = serializers.CharField(required=False, allow_blank=True, allow_null=True, default='')
    display_order = serializers.IntegerField(min_value=0, required=False, default=0)
    is_active = serializers.BooleanField(required=False, default=True)

    def validate_slug(self, value):
        value = value.strip().lower()
        if not value:
            raise serializers.ValidationError("slug cannot be empty.")
        return value

    def validate_route_path(self, value):
        value = value.strip()
        return value if value.startswith('/') else f"/{value}"


# ===== ROLE SERIALIZERS =====

class RoleSerializer(serializers.ModelSerializer):
    """Role with its organization and granted permissions."""

    organization_id = serializers.SerializerMethodField()
    organization_name = serializers.SerializerMethodField()
    permissions = serializers.SerializerMethodField()

    class Meta:
        model = Role
        fields = [
            'id', 'name', 'slug', 'description', 'organization_id', 'organization_name',
            'is_system_role', 'is_active', 'permissions',
        ]
        read_only_fields = fields

    def get_organization_id(self, obj):
        return str(obj.organization_id) if obj.organization_id else None

    def get_organization_name(self, obj):
        return obj.organization.name if obj.organization_id else None

    def get_permissions(self, obj):
        if not self.context.get('include_permissions', False):
            return None
        return [
            {
                'permission_id': str(grant.permission_id),
                'module_slug': grant.permission.module.slug,
                'action': grant.permission.action,
            }
            for grant in obj.role_permissions.all()
        ]


class RoleWriteSerializer(serializers.Serializer):
    """Serializer for creating and renaming roles."""

    name = serializers.CharField(max_length=255, allow_blank=True)
    slug = serializers.CharField(max_length=100, allow_blank=True)
    description = serializers.CharField(required=False, allow_blank=True, allow_null=True, default=None)


class RolePermissionsUpdateSerializer(serializers.Serializer):
    """Serializer for replacing the permission set of a role."""

    role_id = serializers.UUIDField(required=True)
    permission_ids = serializers.ListField(
        child=serializers.CharField(),
        required=False,
        default=list,
        help_text="Permission ids the role should hold; unknown ids are ignored"
    )


class RoleExportQuerySerializer(serializers.Serializer):
    """Query parameters of the role export."""

    SORT_KEYS = ['name', 'slug', 'organization_name', 'is_system_role', 'permissions_count']

    format = serializers.ChoiceField(choices=['csv'], required=False, default='csv')
    limit = serializers.IntegerField(min_value=1, required=False, default=100)
    search = serializers.CharField(required=False, allow_blank=True, default='')
    sort_by = serializers.ChoiceField(choices=SORT_KEYS, required=False, default='name')
    sort_order = serializers.ChoiceField(choices=['asc', 'desc'], required=False, default='asc')
    organization_id = serializers.UUIDField(required=False, allow_null=True, default=None)

    def validate_limit(self, value):
        maximum = settings.ROLES_EXPORT_MAX_LIMIT
        if value > maximum:
            raise serializers.ValidationError(f"El límite máximo es {maximum}.")
        return value


class UserRoleReassignSerializer(serializers.Serializer):
    """Serializer for changing a user's role."""

    role_slug = serializers.CharField(max_length=100)
    organization_id = serializers.UUIDField(required=False, allow_null=True, default=None)
    first_name = serializers.CharField(required=False, allow_blank=True, max_length=100)
    last_name = serializers.CharField(required=False, allow_blank=True, max_length=100)


class UserCreateSerializer(serializers.Serializer):
    """Serializer for users created by an administrator."""

    email = serializers.EmailField(required=True)
    password = serializers.CharField(
        required=True,
        write_only=True,
        style={'input_type': 'password'}
    )
    first_name = serializers.CharField(required=False, allow_blank=True, max_length=100, default='')
    last_name = serializers.CharField(required=False, allow_blank=True, max_length=100, default='')
    role_slug = serializers.CharField(max_length=100)
    organization_id = serializers.UUIDField(required=False, allow_null=True, default=None)

    def validate_email(self, value):
        return value.strip().lower()

    def validate_password(self, value):
        validate_password(value)
        return value


class RoleListQuerySerializer(serializers.Serializer):
    """Query parameters of the role listing."""

    organization_id = serializers.UUIDField(required=False, allow_null=True, default=None)
