"""
RBAC API URLs.

Provides endpoints for:
- Session management (login, logout, register, me)
- Module catalog
- Role management (list, create, permission sets, update, delete, export)
- User creation and role reassignment
"""
from django.urls import path
from apps.rbac.views import (
    LoginView,
    LogoutView,
    MeView,
    ModuleListView,
    RegisterView,
    RoleDetailView,
    RoleExportView,
    RoleListView,
    UserListView,
    UserRoleView,
)

app_name = 'rbac'

urlpatterns = [
    # Session endpoints
    path('auth/login', LoginView.as_view(), name='login'),
    path('auth/logout', LogoutView.as_view(), name='logout'),
    path('auth/register', RegisterView.as_view(), name='register'),
    path('me', MeView.as_view(), name='me'),

    # Module endpoints
    path('modules', ModuleListView.as_view(), name='module-list'),

    # Role endpoints
    path('roles', RoleListView.as_view(), name='role-list'),
    path('roles/export', RoleExportView.as_view(), name='role-export'),
    path('roles/<uuid:role_id>', RoleDetailView.as_view(), name='role-detail'),

    # User endpoints
    path('users', UserListView.as_view(), name='user-list'),
    path('users/<uuid:user_id>/role', UserRoleView.as_view(), name='user-role'),
]
