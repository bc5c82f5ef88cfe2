"""
Tests for organization-scoped role deduplication.
"""
from types import SimpleNamespace

import pytest
from hypothesis import given, settings, strategies as st

from apps.rbac.services import dedupe_roles_by_slug, visible_roles


def role(slug, organization_id, name=None):
    return SimpleNamespace(slug=slug, organization_id=organization_id, name=name or slug)


class TestDedupeRolesBySlug:
    """Test the per-slug selection rule."""

    def test_organization_role_replaces_global_template(self):
        result = dedupe_roles_by_slug([role('X', None), role('X', 'org1')], 'org1')

        assert len(result) == 1
        assert result[0].organization_id == 'org1'

    def test_organization_role_kept_when_seen_first(self):
        result = dedupe_roles_by_slug([role('X', 'org1'), role('X', None)], 'org1')

        assert [item.organization_id for item in result] == ['org1']

    def test_first_wins_when_no_entry_matches(self):
        result = dedupe_roles_by_slug([role('X', None), role('X', 'org2')], 'org1')

        assert [item.organization_id for item in result] == [None]

    def test_global_caller_prefers_global_role(self):
        result = dedupe_roles_by_slug([role('X', 'org2'), role('X', None)], None)

        assert [item.organization_id for item in result] == [None]

    def test_distinct_slugs_keep_first_seen_order(self):
        result = dedupe_roles_by_slug(
            [role('B', None), role('A', None), role('B', 'org1'), role('C', 'org1')],
            'org1',
        )

        assert [item.slug for item in result] == ['B', 'A', 'C']
        assert result[0].organization_id == 'org1'

    def test_organization_ids_compared_as_strings(self):
        import uuid
        organization_id = uuid.uuid4()
        result = dedupe_roles_by_slug(
            [role('X', None), role('X', organization_id)],
            str(organization_id),
        )

        assert result[0].organization_id == organization_id

    def test_empty_input(self):
        assert dedupe_roles_by_slug([], 'org1') == []


roles_strategy = st.lists(
    st.builds(
        role,
        slug=st.sampled_from(['ADMIN', 'USER', 'CONTADOR']),
        organization_id=st.sampled_from([None, 'org1', 'org2']),
    ),
    max_size=8,
)


class TestDedupeProperties:
    """Selection rule checked against arbitrary role lists."""

    @settings(max_examples=200, deadline=None)
    @given(roles=roles_strategy, organization_id=st.sampled_from([None, 'org1', 'org2']))
    def test_one_role_per_slug_preferring_caller(self, roles, organization_id):
        result = dedupe_roles_by_slug(roles, organization_id)

        assert [item.slug for item in result] == list(dict.fromkeys(item.slug for item in roles))
        for chosen in result:
            candidates = [item for item in roles if item.slug == chosen.slug]
            if any(item.organization_id == organization_id for item in candidates):
                assert chosen.organization_id == organization_id
            else:
                assert chosen is candidates[0]


@pytest.mark.django_db
class TestVisibleRoles:
    """Test the role listing query."""

    def test_returns_own_and_global_roles_deduplicated(self, make_role, organization, other_organization):
        make_role('ADMIN', None, name='Admin global')
        own_admin = make_role('ADMIN', organization, name='Admin')
        make_role('USER', None, name='Usuario')
        make_role('ADMIN', other_organization, name='Admin Sur')

        roles = visible_roles(organization.id)

        assert [item.slug for item in roles] == ['ADMIN', 'USER']
        assert roles[0].id == own_admin.id

    def test_inactive_roles_are_hidden(self, make_role, organization):
        make_role('OLD', organization, is_active=False)
        make_role('USER', organization)

        assert [item.slug for item in visible_roles(organization.id)] == ['USER']

    def test_sorted_by_name(self, make_role, organization):
        make_role('Z_ROLE', organization, name='beta')
        make_role('A_ROLE', organization, name='Alfa')

        assert [item.name for item in visible_roles(organization.id)] == ['Alfa', 'beta']

    def test_without_organization_only_templates(self, make_role, organization):
        make_role('USER', None)
        make_role('ADMIN', organization)

        assert [item.slug for item in visible_roles(None)] == ['USER']

    def test_preferred_organization_can_differ_from_scope(self, make_role, organization, other_organization):
        template = make_role('ADMIN', None)
        make_role('ADMIN', other_organization)

        roles = visible_roles(other_organization.id, prefer_organization_id=organization.id)

        assert [item.id for item in roles] == [template.id]
