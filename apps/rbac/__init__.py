"""
RBAC (Role-Based Access Control) application.

Provides organization-scoped access control with:
- ``module:action`` permission codes and the ADMIN wildcard
- Role resolution and per-organization role provisioning
- Session-token and identity-cookie principals
- Route-level page authorization
- Audit logging of role administration
"""
