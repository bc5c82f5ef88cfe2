"""
RBAC REST API views.

Implements endpoints for:
- Session management (login, logout, registration, current principal)
- Module catalog
- Role management (listing, CRUD, permission sets, CSV export)
- User creation and role reassignment

Responses use the ``{"success": true, "data": ...}`` envelope; errors are
shaped by ``apps.core.exceptions.custom_exception_handler``.
"""
import logging
from urllib.parse import quote

from django.conf import settings
from django.http import HttpResponse
from django.utils.decorators import method_decorator
from django_ratelimit.decorators import ratelimit
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status
from rest_framework.exceptions import PermissionDenied, ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.exceptions import LOGIN_RETRY_AFTER, rate_limit_error_body
from apps.core.logging import SecurityLogger, get_client_ip
from apps.rbac.ability import build_ability_from_permissions
from apps.rbac.middleware import effective_permissions, legacy_role_from_request, visible_navigation
from apps.rbac.permission_classes import IsRoleAdministrator, requires_permission
from apps.rbac.permissions import Action, authorize, is_admin_bypass, is_super_admin
from apps.rbac.serializers import (
    LoginSerializer,
    ModuleSerializer,
    ModuleUpsertSerializer,
    PrincipalSerializer,
    RegistrationSerializer,
    RoleExportQuerySerializer,
    RoleListQuerySerializer,
    RolePermissionsUpdateSerializer,
    RoleSerializer,
    RoleWriteSerializer,
    UserCreateSerializer,
    UserRoleReassignSerializer,
    UserSerializer,
)
from apps.rbac.services import (
    AuthService,
    ModuleService,
    RoleExportService,
    RoleService,
    UserService,
    visible_roles,
)

logger = logging.getLogger(__name__)

SESSION_COOKIES = (
    'SESSION_TOKEN_COOKIE',
    'RBAC_ROLE_COOKIE',
    'RBAC_ORG_NAME_COOKIE',
    'RBAC_EMAIL_COOKIE',
)


def ok(data, status_code=status.HTTP_200_OK):
    return Response({'success': True, 'data': data}, status=status_code)


def _validated(serializer):
    if not serializer.is_valid():
        raise ValidationError(serializer.errors)
    return serializer.validated_data


def _rate_limited_response(request):
    response = Response(rate_limit_error_body(request), status=status.HTTP_429_TOO_MANY_REQUESTS)
    response['Retry-After'] = str(LOGIN_RETRY_AFTER)
    return response


def _organization_scope(principal):
    """
    Organization restriction for role and user administration. Only
    SUPER_ADMIN works across organizations.
    """
    if is_super_admin(principal.roles):
        return {}
    return {'restrict_to_organization_id': principal.organization_id}


def _check_requested_organization(request, principal, requested):
    """Reading another organization's roles also needs ``organizations:READ``."""
    current = principal.organization_id
    if not requested or not current or str(requested) == str(current):
        return
    if is_admin_bypass(principal.roles):
        return
    denial = authorize(principal, 'organizations', Action.READ)
    if denial is not None:
        SecurityLogger.log_permission_denied(
            principal, 'organizations', Action.READ.value,
            ip_address=get_client_ip(request), path=request.path,
        )
        raise PermissionDenied(denial.message)


def _set_session_cookies(response, result):
    """Session token plus the identity cookies read by page routing."""
    user = result['user']
    organization = user.organization
    cookie_options = {
        'max_age': settings.JWT_EXPIRATION_HOURS * 3600,
        'secure': settings.SESSION_COOKIE_SECURE,
        'samesite': 'Lax',
    }
    response.set_cookie(settings.SESSION_TOKEN_COOKIE, result['token'], httponly=True, **cookie_options)
    response.set_cookie(settings.RBAC_ROLE_COOKIE, quote(result['roles'][0] if result['roles'] else ''),
                        **cookie_options)
    response.set_cookie(settings.RBAC_ORG_NAME_COOKIE, quote(organization.name if organization else ''),
                        **cookie_options)
    response.set_cookie(settings.RBAC_EMAIL_COOKIE, quote(user.email), **cookie_options)


# ===== SESSION =====

@extend_schema(
    tags=['Authentication'],
    summary='Log in',
    description='''
Authenticate with email and password.

Returns the session token and sets the session cookies. Five consecutive
failures lock the account for 30 minutes.

Rate limited to 5 requests per minute per IP and 10 per hour per email.
    ''',
    request=LoginSerializer,
    responses={200: OpenApiTypes.OBJECT, 401: OpenApiTypes.OBJECT, 429: OpenApiTypes.OBJECT},
)
@method_decorator(ratelimit(key='ip', rate='5/m', method='POST', block=False), name='dispatch')
@method_decorator(ratelimit(key='post:email', rate='10/h', method='POST', block=False), name='dispatch')
class LoginView(APIView):
    """POST /api/auth/login"""

    authentication_classes = []
    permission_classes = []

    def post(self, request):
        if getattr(request, 'limited', False):
            return _rate_limited_response(request)

        data = _validated(LoginSerializer(data=request.data))
        result = AuthService.login(data['email'], data['password'], request=request)
        if result is None:
            return Response(
                {'success': False, 'error': 'Credenciales inválidas'},
                status=status.HTTP_401_UNAUTHORIZED
            )

        response = ok({
            'user': UserSerializer(result['user']).data,
            'token': result['token'],
            'roles': result['roles'],
            'permissions': result['permissions'],
        })
        _set_session_cookies(response, result)
        return response


@extend_schema(
    tags=['Authentication'],
    summary='Log out',
    description='Clear the session and identity cookies. Session tokens are stateless and expire on their own.',
    request=None,
    responses={200: OpenApiTypes.OBJECT},
)
class LogoutView(APIView):
    """POST /api/auth/logout"""

    authentication_classes = []
    permission_classes = []

    def post(self, request):
        response = ok({'logged_out': True})
        for setting_name in SESSION_COOKIES:
            response.delete_cookie(getattr(settings, setting_name), samesite='Lax')
        return response


@extend_schema(
    tags=['Authentication'],
    summary='Register',
    description='''
Create an account in the default organization with the USER role.

The account stays PENDING_VERIFICATION until an administrator activates it.
Rate limited to 3 requests per hour per IP.
    ''',
    request=RegistrationSerializer,
    responses={201: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT},
)
@method_decorator(ratelimit(key='ip', rate='3/h', method='POST', block=False), name='dispatch')
class RegisterView(APIView):
    """POST /api/auth/register"""

    authentication_classes = []
    permission_classes = []

    def post(self, request):
        if getattr(request, 'limited', False):
            return _rate_limited_response(request)

        data = _validated(RegistrationSerializer(data=request.data))
        user = AuthService.register_user(
            email=data['email'],
            password=data['password'],
            first_name=data['first_name'],
            last_name=data['last_name'],
        )
        return ok(
            {
                'user': UserSerializer(user).data,
                'message': 'Cuenta creada. Pendiente de aprobacion por un ADMIN.',
            },
            status.HTTP_201_CREATED
        )


@extend_schema(
    tags=['Authentication'],
    summary='Current principal',
    description='Roles, permissions and the navigation entries the caller may see.',
    responses={200: PrincipalSerializer},
)
class MeView(APIView):
    """GET /api/me"""

    permission_classes = [IsAuthenticated]

    def get(self, request):
        principal = request.user
        legacy_role = legacy_role_from_request(request)
        ability = build_ability_from_permissions(effective_permissions(principal, legacy_role))

        data = dict(PrincipalSerializer(principal).data)
        data['navigation'] = visible_navigation(ability)
        return ok(data)


# ===== MODULES =====

class ModuleListView(APIView):
    """
    GET /api/modules
    POST /api/modules

    Module catalog administration. Restricted to ADMIN and SUPER_ADMIN.
    """

    permission_classes = [IsRoleAdministrator]

    @extend_schema(
        tags=['RBAC - Modules'],
        summary='List modules',
        responses={200: ModuleSerializer(many=True)},
    )
    def get(self, request):
        modules = ModuleService.list_modules()
        return ok(ModuleSerializer(modules, many=True).data)

    @extend_schema(
        tags=['RBAC - Modules'],
        summary='Create or update a module',
        description='Upserts the module by slug and makes sure a permission exists for every action.',
        request=ModuleUpsertSerializer,
        responses={201: ModuleSerializer},
    )
    def post(self, request):
        data = _validated(ModuleUpsertSerializer(data=request.data))
        module = ModuleService.upsert_module(actor_id=request.user.user_id, **data)
        return ok(ModuleSerializer(module).data, status.HTTP_201_CREATED)


# ===== ROLES =====

class RoleListView(APIView):
    """
    GET /api/roles
    POST /api/roles
    PATCH /api/roles

    ADMIN and SUPER_ADMIN skip the module checks.
    """

    @extend_schema(
        tags=['RBAC - Roles'],
        summary='List roles',
        description='''
Roles visible to an organization (its own and the global templates), one per
slug, sorted by name, together with the active modules and their permissions.

**Required permission:** `users:READ`. Listing another organization also
requires `organizations:READ`.
        ''',
        parameters=[
            OpenApiParameter('organization_id', OpenApiTypes.UUID, OpenApiParameter.QUERY, required=False),
        ],
        responses={200: OpenApiTypes.OBJECT},
    )
    @requires_permission('users', Action.READ, admin_bypass=True)
    def get(self, request):
        principal = request.user
        requested = _validated(RoleListQuerySerializer(data=request.query_params))['organization_id']
        current = principal.organization_id
        _check_requested_organization(request, principal, requested)

        roles = visible_roles(requested or current, prefer_organization_id=current)
        modules = ModuleService.list_modules(active_only=True)
        return ok({
            'roles': RoleSerializer(roles, many=True, context={'include_permissions': True}).data,
            'modules': ModuleSerializer(modules, many=True).data,
        })

    @extend_schema(
        tags=['RBAC - Roles'],
        summary='Create role',
        description='''
Create a custom role in the caller's organization. The slug is upper-cased
and characters outside `[A-Z0-9_]` become `_`.

**Required permission:** `users:CREATE`
        ''',
        request=RoleWriteSerializer,
        responses={201: RoleSerializer, 409: OpenApiTypes.OBJECT},
    )
    @requires_permission('users', Action.CREATE, admin_bypass=True)
    def post(self, request):
        data = _validated(RoleWriteSerializer(data=request.data))
        role = RoleService.create_role(
            name=data['name'],
            slug=data['slug'],
            organization_id=request.user.organization_id,
            description=data.get('description'),
            actor_id=request.user.user_id,
            **_organization_scope(request.user),
        )
        return ok(RoleSerializer(role).data, status.HTTP_201_CREATED)

    @extend_schema(
        tags=['RBAC - Roles'],
        summary='Replace role permissions',
        description='''
Replace the permission set of a role. Unknown permission ids are ignored.
Only SUPER_ADMIN changes roles outside the caller's organization.

**Required permission:** `users:UPDATE`
        ''',
        request=RolePermissionsUpdateSerializer,
        responses={200: OpenApiTypes.OBJECT},
    )
    @requires_permission('users', Action.UPDATE, admin_bypass=True)
    def patch(self, request):
        data = _validated(RolePermissionsUpdateSerializer(data=request.data))
        permission_ids = RoleService.set_role_permissions(
            data['role_id'], data['permission_ids'], actor_id=request.user.user_id,
            **_organization_scope(request.user),
        )
        return ok({
            'role_id': str(data['role_id']),
            'permission_ids': [str(permission_id) for permission_id in permission_ids],
        })


class RoleDetailView(APIView):
    """
    PATCH /api/roles/{role_id}
    DELETE /api/roles/{role_id}

    Restricted to ADMIN and SUPER_ADMIN. System roles keep their slug and
    cannot be deleted. Roles of other organizations and global templates
    are only changed by SUPER_ADMIN.
    """

    permission_classes = [IsRoleAdministrator]

    @extend_schema(
        tags=['RBAC - Roles'],
        summary='Update role',
        request=RoleWriteSerializer,
        responses={200: RoleSerializer, 404: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT},
    )
    def patch(self, request, role_id):
        data = _validated(RoleWriteSerializer(data=request.data))
        role = RoleService.update_role(
            role_id,
            name=data['name'],
            slug=data['slug'],
            description=data.get('description'),
            actor_id=request.user.user_id,
            **_organization_scope(request.user),
        )
        return ok(RoleSerializer(role).data)

    @extend_schema(
        tags=['RBAC - Roles'],
        summary='Delete role',
        description='Deactivates the role and every assignment of it.',
        responses={200: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    )
    def delete(self, request, role_id):
        role = RoleService.delete_role(role_id, actor_id=request.user.user_id, **_organization_scope(request.user))
        return ok({'id': str(role.id), 'deleted': True})


@extend_schema(
    tags=['RBAC - Roles'],
    summary='Export roles',
    description='''
CSV export of the roles visible to the caller's organization, or to
`organization_id` when given.

**Required permission:** `users:EXPORT`. Exporting another organization also
requires `organizations:READ`
    ''',
    parameters=[RoleExportQuerySerializer],
    responses={(200, 'text/csv'): OpenApiTypes.STR},
)
@requires_permission('users', Action.EXPORT, admin_bypass=True)
class RoleExportView(APIView):
    """GET /api/roles/export"""

    def get(self, request):
        query = _validated(RoleExportQuerySerializer(data=request.query_params))
        current = request.user.organization_id
        _check_requested_organization(request, request.user, query['organization_id'])

        roles = visible_roles(query['organization_id'] or current, prefer_organization_id=current)
        rows = RoleExportService.rows(
            roles,
            search=query['search'],
            sort_by=query['sort_by'],
            sort_order=query['sort_order'],
            limit=query['limit'],
        )
        logger.info(
            "Roles exported",
            extra={'user_id': request.user.user_id, 'row_count': len(rows), 'format': query['format']}
        )

        response = HttpResponse(RoleExportService.to_csv(rows), content_type='text/csv; charset=utf-8')
        response['Content-Disposition'] = f'attachment; filename="{RoleExportService.filename()}"'
        return response


# ===== USERS =====

@extend_schema(
    tags=['RBAC - Users'],
    summary='Create user',
    description='''
Create an active user holding the given role in the caller's organization,
or in `organization_id` for SUPER_ADMIN. The organization's copy of the role
is provisioned when needed. Only SUPER_ADMIN may grant SUPER_ADMIN, and
only ADMIN or SUPER_ADMIN may grant ADMIN.

**Required permission:** `users:CREATE`
    ''',
    request=UserCreateSerializer,
    responses={201: UserSerializer, 403: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT},
)
@requires_permission('users', Action.CREATE, admin_bypass=True)
class UserListView(APIView):
    """POST /api/users"""

    def post(self, request):
        principal = request.user
        data = _validated(UserCreateSerializer(data=request.data))

        user = UserService.create_user(
            email=data['email'],
            password=data['password'],
            role_slug=data['role_slug'],
            organization_id=data['organization_id'] or principal.organization_id,
            first_name=data['first_name'],
            last_name=data['last_name'],
            actor_id=principal.user_id,
            assigner_roles=principal.roles,
            **_organization_scope(principal),
        )
        return ok(UserSerializer(user).data, status.HTTP_201_CREATED)


@extend_schema(
    tags=['RBAC - Users'],
    summary='Reassign user role',
    description='''
Make the given role the user's only active role, provisioning the
organization's copy of the role when needed.

**Required permission:** `users:UPDATE`. Only SUPER_ADMIN may change users
of another organization. Only SUPER_ADMIN may grant SUPER_ADMIN, and only ADMIN
or SUPER_ADMIN may grant ADMIN.
    ''',
    request=UserRoleReassignSerializer,
    responses={200: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
)
@requires_permission('users', Action.UPDATE, admin_bypass=True)
class UserRoleView(APIView):
    """PATCH /api/users/{user_id}/role"""

    def patch(self, request, user_id):
        principal = request.user
        data = _validated(UserRoleReassignSerializer(data=request.data))

        assignment = RoleService.reassign_user_role(
            user_id,
            data['role_slug'],
            organization_id=data['organization_id'],
            actor_id=principal.user_id,
            profile={key: data[key] for key in ('first_name', 'last_name') if key in data},
            assigner_roles=principal.roles,
            **_organization_scope(principal),
        )
        return ok({
            'user_id': str(assignment.user_id),
            'role_id': str(assignment.role_id),
            'role_slug': assignment.role.slug,
            'organization_id': str(assignment.role.organization_id),
        })
