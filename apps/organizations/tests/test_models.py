"""
Tests for the organization model.
"""
import pytest

from apps.organizations.models import Organization


@pytest.mark.django_db
class TestOrganization:
    """Test organization lookups and the default landing organization."""

    def test_default_lookup_is_case_insensitive(self, organization):
        landing = Organization.objects.create(name='POR DEFECTO', slug='por-defecto')

        assert Organization.objects.default() == landing
        assert landing.is_default
        assert not organization.is_default

    def test_default_missing(self, organization):
        assert Organization.objects.default() is None

    def test_active_and_by_slug(self, organization, other_organization):
        other_organization.is_active = False
        other_organization.save()

        assert list(Organization.objects.active()) == [organization]
        assert Organization.objects.by_slug('forestal-sur') == other_organization
        assert Organization.objects.by_slug('nada') is None

    def test_default_organization_service_is_idempotent(self, default_organization):
        from apps.rbac.services import AuthService

        assert AuthService.default_organization() == default_organization
        assert default_organization.slug == 'por-defecto'
        assert default_organization.is_default
