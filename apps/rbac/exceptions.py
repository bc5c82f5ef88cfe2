"""
RBAC domain errors. The DRF exception handler renders them with their
``status_code``.
"""
from apps.core.exceptions import BackOfficeException


class RBACError(BackOfficeException):
    """Base exception for role administration errors."""
    status_code = 400


class RoleNotFoundError(RBACError):
    status_code = 404


class RoleConflictError(RBACError):
    """A role with the same slug already exists in the organization."""
    status_code = 409


class SystemRoleProtectedError(RBACError):
    """System roles cannot be deleted or have their slug changed."""
    status_code = 400


class UserNotFoundError(RBACError):
    status_code = 404


class OrganizationScopeError(RBACError):
    """The caller may not act on another organization's users or roles."""
    status_code = 403


class RoleAssignmentForbiddenError(RBACError):
    """The caller's roles may not hand out the requested role."""
    status_code = 403


class UserConflictError(RBACError):
    """A user with the same email already exists."""
    status_code = 409


class RegistrationConflictError(UserConflictError):
    pass
