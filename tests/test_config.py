"""Tests for expression limits configuration."""

import pytest

from flowforge.expressions import ExpressionLimits

ENV_VARS = (
    "FLOWFORGE_MAX_FORMULA_LENGTH",
    "FLOWFORGE_MAX_NESTING_DEPTH",
    "FLOWFORGE_MAX_AST_DEPTH",
    "FLOWFORGE_MAX_NODE_COUNT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestExpressionLimits:
    """Tests for defaults, validation and environment loading."""

    def test_defaults(self):
        limits = ExpressionLimits()

        assert limits.max_formula_length == 10_000
        assert limits.max_nesting_depth == 32
        assert limits.max_ast_depth == 200
        assert limits.max_node_count == 2_000

    def test_from_env_defaults(self):
        assert ExpressionLimits.from_env() == ExpressionLimits()

    def test_from_env_overrides(self, monkeypatch):
        monkeypatch.setenv("FLOWFORGE_MAX_FORMULA_LENGTH", "500")
        monkeypatch.setenv("FLOWFORGE_MAX_NODE_COUNT", "50")

        limits = ExpressionLimits.from_env()

        assert limits.max_formula_length == 500
        assert limits.max_node_count == 50
        assert limits.max_nesting_depth == 32

    def test_blank_value_keeps_default(self, monkeypatch):
        monkeypatch.setenv("FLOWFORGE_MAX_AST_DEPTH", "  ")

        assert ExpressionLimits.from_env().max_ast_depth == 200

    def test_non_integer_value(self, monkeypatch):
        monkeypatch.setenv("FLOWFORGE_MAX_NESTING_DEPTH", "deep")

        with pytest.raises(ValueError) as exc_info:
            ExpressionLimits.from_env()

        assert "FLOWFORGE_MAX_NESTING_DEPTH" in str(exc_info.value)

    def test_zero_value(self, monkeypatch):
        monkeypatch.setenv("FLOWFORGE_MAX_NODE_COUNT", "0")

        with pytest.raises(ValueError) as exc_info:
            ExpressionLimits.from_env()

        assert "FLOWFORGE_MAX_NODE_COUNT" in str(exc_info.value)

    def test_direct_construction_is_checked(self):
        with pytest.raises(ValueError):
            ExpressionLimits(max_ast_depth=0)

    def test_limits_are_immutable(self):
        limits = ExpressionLimits()

        with pytest.raises(AttributeError):
            limits.max_node_count = 1
