"""
Organization (tenant) model.

Roles, users and audit entries are scoped to an organization. A single
seeded organization acts as the landing tenant for users that have not
been placed in a real one yet.
"""
from django.conf import settings
from django.db import models
from apps.core.models import BaseModel


class OrganizationManager(models.Manager):
    """Manager for organization lookups."""

    def active(self):
        """Return only active organizations."""
        return self.filter(is_active=True)

    def by_slug(self, slug):
        """Find organization by slug."""
        return self.filter(slug=slug).first()

    def default(self):
        """Return the default landing organization, if seeded."""
        return self.filter(
            name__iexact=settings.RBAC_DEFAULT_ORGANIZATION_NAME
        ).first()


class Organization(BaseModel):
    """
    A tenant of the back-office.
    """

    name = models.CharField(
        max_length=255,
        help_text="Organization display name"
    )
    slug = models.SlugField(
        unique=True,
        max_length=100,
        help_text="URL-friendly identifier"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether the organization is active"
    )

    objects = OrganizationManager()

    class Meta:
        db_table = 'organizations'
        ordering = ['name']

    def __str__(self):
        return self.name

    @property
    def is_default(self):
        """Whether this is the default landing organization."""
        return self.name.strip().lower() == settings.RBAC_DEFAULT_ORGANIZATION_NAME.lower()
