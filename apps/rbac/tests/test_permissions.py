"""
Tests for permission codes and the permission check.
"""
import pytest
from hypothesis import given, settings, strategies as st

from apps.rbac.permissions import (
    FORBIDDEN,
    UNAUTHENTICATED,
    Action,
    MalformedPermissionError,
    PermissionCode,
    encode_permission,
    has_permission,
    parse_permission,
    require_permission,
)

MODULES = ['users', 'forest-patrimony']
ACTIONS = [action.value for action in Action]
UNIVERSE = [encode_permission(module, action) for module in MODULES for action in ACTIONS]


class TestEncoding:
    """Test the ``module:action`` format."""

    def test_encode_uses_colon(self):
        assert encode_permission('users', 'READ') == 'users:READ'

    def test_encode_accepts_action_enum(self):
        assert encode_permission('forest-config', Action.ADMIN) == 'forest-config:ADMIN'

    def test_parse_splits_on_first_colon(self):
        assert parse_permission('users:READ') == PermissionCode(module='users', action='READ')
        assert parse_permission('a:b:c') == PermissionCode(module='a', action='b:c')

    def test_permission_code_str_is_encoded_form(self):
        assert str(PermissionCode('audit', 'EXPORT')) == 'audit:EXPORT'

    @pytest.mark.parametrize('code', ['users', ':READ', 'users:', '', None, 42])
    def test_parse_rejects_malformed_codes(self, code):
        with pytest.raises(MalformedPermissionError):
            parse_permission(code)

    def test_malformed_error_is_value_error(self):
        assert issubclass(MalformedPermissionError, ValueError)


class TestHasPermission:
    """Test exact matches and the ADMIN wildcard."""

    def test_exact_match(self):
        assert has_permission(['users:READ'], 'users', 'READ')

    def test_other_action_does_not_match(self):
        assert not has_permission(['users:READ'], 'users', 'UPDATE')

    def test_other_module_does_not_match(self):
        assert not has_permission(['users:READ'], 'organizations', 'READ')

    def test_admin_implies_every_action_on_its_module(self):
        for action in Action:
            assert has_permission(['users:ADMIN'], 'users', action)

    def test_admin_does_not_leak_to_other_modules(self):
        assert not has_permission(['users:ADMIN'], 'audit', 'READ')

    def test_empty_and_none_sets_grant_nothing(self):
        assert not has_permission([], 'users', 'READ')
        assert not has_permission(None, 'users', 'READ')

    def test_accepts_any_iterable(self):
        assert has_permission(('users:READ',), 'users', 'READ')
        assert has_permission(frozenset({'users:READ'}), 'users', Action.READ)
        assert has_permission(iter(['users:READ']), 'users', 'READ')

    @settings(max_examples=200, deadline=None)
    @given(
        granted=st.lists(st.sampled_from(UNIVERSE), max_size=6),
        module=st.sampled_from(MODULES),
        action=st.sampled_from(ACTIONS),
    )
    def test_matches_definition(self, granted, module, action):
        """True iff the exact code or the module's ADMIN code is present."""
        expected = f'{module}:{action}' in granted or f'{module}:ADMIN' in granted
        assert has_permission(granted, module, action) is expected


class TestRequirePermission:
    """Test the sentinel outcome of a permission requirement."""

    def test_allowed_returns_none(self):
        assert require_permission(['users:UPDATE'], 'users', Action.UPDATE) is None

    def test_denied_returns_forbidden(self):
        denial = require_permission(['users:READ'], 'users', Action.UPDATE)
        assert denial is FORBIDDEN
        assert denial.status_code == 403

    def test_unauthenticated_sentinel(self):
        assert UNAUTHENTICATED.status_code == 401
        assert UNAUTHENTICATED.message == 'No autorizado'
