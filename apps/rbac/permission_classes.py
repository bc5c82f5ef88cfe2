"""
DRF permission classes and decorators for module permission enforcement.

This module provides:
- HasModulePermission: enforces the ``module:action`` declared on a view
- @requires_permission: declares the permission a view or handler needs
- IsRoleAdministrator: only callers holding the ADMIN or SUPER_ADMIN role
"""
import logging
from collections import namedtuple

from rest_framework.permissions import BasePermission

from apps.core.logging import SecurityLogger, get_client_ip
from apps.rbac.permissions import FORBIDDEN, Action, authorize, is_admin_bypass

logger = logging.getLogger(__name__)

RequiredPermission = namedtuple('RequiredPermission', ['module', 'action', 'admin_bypass'])


def _principal(request):
    user = getattr(request, 'user', None)
    return user if getattr(user, 'is_authenticated', False) else None


def required_permission_for(request, view):
    """Requirement declared on the handler for this method, else on the view."""
    handler = getattr(view, (request.method or '').lower(), None)
    return (
        getattr(handler, 'required_permission', None)
        or getattr(view, 'required_permission', None)
    )


class HasModulePermission(BasePermission):
    """
    DRF permission class that enforces module permissions on API endpoints.

    Views without a declared requirement are allowed through; pair them
    with ``IsAuthenticated`` when they need a principal. Denials are logged
    to the security log.

    Usage:
        class RoleListView(APIView):
            @requires_permission('users', 'READ', admin_bypass=True)
            def get(self, request):
                ...
    """

    message = FORBIDDEN.message

    def has_permission(self, request, view):
        required = required_permission_for(request, view)
        if required is None:
            return True

        principal = _principal(request)
        if principal is None:
            # DRF turns this into 401 because no authenticator succeeded.
            return False

        denial = authorize(principal, required.module, required.action, admin_bypass=required.admin_bypass)
        if denial is None:
            return True

        SecurityLogger.log_permission_denied(
            principal,
            required.module,
            required.action,
            ip_address=get_client_ip(request),
            path=request.path,
        )
        logger.warning(
            f"Permission denied: missing {required.module}:{required.action}",
            extra={
                'user_id': principal.user_id,
                'view': view.__class__.__name__,
                'method': request.method,
                'path': request.path,
                'request_id': getattr(request, 'request_id', None),
            }
        )
        return False


class IsRoleAdministrator(BasePermission):
    """Only principals holding the ADMIN or SUPER_ADMIN role."""

    message = FORBIDDEN.message

    def has_permission(self, request, view):
        principal = _principal(request)
        if principal is None:
            return False
        if is_admin_bypass(principal.roles):
            return True
        logger.warning(
            "Administrator role required",
            extra={'user_id': principal.user_id, 'path': request.path, 'method': request.method}
        )
        return False


def requires_permission(module, action, admin_bypass=False):
    """
    Declare the permission a view class or handler method needs.

    Checked by ``HasModulePermission`` before the handler runs. With
    ``admin_bypass`` an ADMIN or SUPER_ADMIN role skips the check.

    Usage:
        @requires_permission('users', 'EXPORT', admin_bypass=True)
        class RoleExportView(APIView):
            ...
    """
    requirement = RequiredPermission(
        module=module,
        action=action.value if isinstance(action, Action) else action,
        admin_bypass=admin_bypass,
    )

    def decorator(view_or_method):
        view_or_method.required_permission = requirement
        return view_or_method

    return decorator
