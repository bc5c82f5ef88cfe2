"""
URL configuration for the forestry back-office.
"""
from django.urls import path, include
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView

urlpatterns = [
    # API Documentation
    path('schema/', SpectacularAPIView.as_view(), name='schema'),
    path('schema/swagger/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),

    # RBAC endpoints
    path('api/', include('apps.rbac.urls')),  # Session, modules, roles, user role reassignment
]
