"""Unit tests for the operation scope table and the scope predicate."""

import json

import pytest

from mobilizer.core import scopes as scopes_module
from mobilizer.core.config import Settings
from mobilizer.core.scopes import (
    DEFAULT_SCOPES,
    ScopeRegistry,
    init_scope_registry,
    load_scope_registry,
    missing_scopes,
    scopes_satisfied,
)
from mobilizer.core.security import create_access_token, decode_access_token, token_scopes

TABLE = {
    "reports": {
        "scopes": ["reports:read"],
        "operations": {
            "export": ["reports:read", "reports:export"],
            "ping": [],
        },
    },
    "open": {},
}


class TestScopeRegistry:
    """Tests for required-scope lookup."""

    def test_module_level_applies_to_undeclared_operations(self):
        registry = ScopeRegistry.from_mapping(TABLE)

        assert registry.required_scopes("reports.summary") == {"reports:read"}

    def test_handler_level_overrides_module(self):
        registry = ScopeRegistry.from_mapping(TABLE)

        assert registry.required_scopes("reports.export") == {"reports:read", "reports:export"}

    def test_empty_handler_level_still_overrides(self):
        registry = ScopeRegistry.from_mapping(TABLE)

        assert registry.required_scopes("reports.ping") == frozenset()

    def test_undeclared_module_requires_nothing(self):
        registry = ScopeRegistry.from_mapping(TABLE)

        assert registry.required_scopes("open.anything") == frozenset()
        assert registry.required_scopes("unknown.op") == frozenset()

    def test_operations_listing(self):
        registry = ScopeRegistry.from_mapping(TABLE)

        assert registry.operations() == ["reports.export", "reports.ping"]

    def test_default_table(self):
        registry = ScopeRegistry.from_mapping(DEFAULT_SCOPES)

        assert registry.required_scopes("auth.get_user_roles") == frozenset()
        assert registry.required_scopes("locations.check_hierarchy") == {"locations:read"}
        assert registry.required_scopes("locations.validate_delimitations") == {
            "locations:read",
            "locations:validate",
        }


class TestScopesSatisfied:
    """Tests for the scope predicate."""

    def test_nothing_required_always_passes(self):
        assert scopes_satisfied([], None)
        assert scopes_satisfied([], [])

    def test_missing_caller_denied(self):
        assert not scopes_satisfied(["a"], None)

    def test_subset_required(self):
        assert scopes_satisfied(["a"], ["a", "b"])
        assert scopes_satisfied(["a", "b"], ["b", "a"])
        assert not scopes_satisfied(["a", "c"], ["a", "b"])

    def test_missing_scopes_sorted(self):
        assert missing_scopes(["c", "a", "b"], ["b"]) == ["a", "c"]
        assert missing_scopes(["a"], None) == ["a"]


class TestLoadScopeRegistry:
    """Tests for reading the table once at start-up."""

    def test_without_path_uses_defaults(self):
        registry = load_scope_registry(None)

        assert registry.required_scopes("locations.check_hierarchy") == {"locations:read"}

    def test_reads_json_file(self, tmp_path):
        path = tmp_path / "scopes.json"
        path.write_text(json.dumps(TABLE), encoding="utf-8")

        registry = load_scope_registry(str(path))

        assert registry.required_scopes("reports.export") == {"reports:read", "reports:export"}

    def test_rejects_non_object(self, tmp_path):
        path = tmp_path / "scopes.json"
        path.write_text("[]", encoding="utf-8")

        with pytest.raises(ValueError):
            load_scope_registry(str(path))

    def test_init_replaces_process_registry(self, tmp_path, monkeypatch):
        path = tmp_path / "scopes.json"
        path.write_text(json.dumps(TABLE), encoding="utf-8")
        monkeypatch.setattr(scopes_module, "_registry", None)
        settings = Settings(DATABASE_URL="postgresql://x/y", SECRET_KEY="k", SCOPES_FILE=str(path))

        registry = init_scope_registry(settings)

        assert scopes_module.get_scope_registry() is registry
        assert registry.required_scopes("reports.summary") == {"reports:read"}


class TestTokenScopes:
    """Tests for reading scopes out of access tokens."""

    def test_list_claim(self):
        token = create_access_token({"sub": "u1", "scopes": ["locations:read", "auth:roles"]})
        payload = decode_access_token(token)

        assert payload["sub"] == "u1"
        assert token_scopes(payload) == {"locations:read", "auth:roles"}

    def test_space_separated_claim(self):
        assert token_scopes({"scope": "a b  c"}) == {"a", "b", "c"}

    def test_no_claim(self):
        assert token_scopes({"sub": "u1"}) == set()

    def test_invalid_token(self):
        assert decode_access_token("not-a-token") is None
