"""Resource limits for formula parsing and evaluation."""

from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_MAX_FORMULA_LENGTH = 10_000
DEFAULT_MAX_NESTING_DEPTH = 32
DEFAULT_MAX_AST_DEPTH = 200
DEFAULT_MAX_NODE_COUNT = 2_000


@dataclass(frozen=True)
class ExpressionLimits:
    """Bounds applied to every formula before and during evaluation.

    Attributes:
        max_formula_length: Longest accepted source string, checked before lexing
        max_nesting_depth: Deepest grouping/unary/power nesting while parsing
        max_ast_depth: Deepest accepted tree, also bounds evaluator recursion
        max_node_count: Largest accepted tree
    """

    max_formula_length: int = DEFAULT_MAX_FORMULA_LENGTH
    max_nesting_depth: int = DEFAULT_MAX_NESTING_DEPTH
    max_ast_depth: int = DEFAULT_MAX_AST_DEPTH
    max_node_count: int = DEFAULT_MAX_NODE_COUNT

    def __post_init__(self) -> None:
        for name in (
            "max_formula_length",
            "max_nesting_depth",
            "max_ast_depth",
            "max_node_count",
        ):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be a positive integer")

    @classmethod
    def from_env(cls) -> ExpressionLimits:
        """Create limits from environment variables.

        Reads FLOWFORGE_MAX_FORMULA_LENGTH, FLOWFORGE_MAX_NESTING_DEPTH,
        FLOWFORGE_MAX_AST_DEPTH and FLOWFORGE_MAX_NODE_COUNT; unset
        variables keep their defaults.

        Raises:
            ValueError: If a variable is set to something other than a
                positive integer.
        """
        return cls(
            max_formula_length=_env_int(
                "FLOWFORGE_MAX_FORMULA_LENGTH", DEFAULT_MAX_FORMULA_LENGTH
            ),
            max_nesting_depth=_env_int(
                "FLOWFORGE_MAX_NESTING_DEPTH", DEFAULT_MAX_NESTING_DEPTH
            ),
            max_ast_depth=_env_int("FLOWFORGE_MAX_AST_DEPTH", DEFAULT_MAX_AST_DEPTH),
            max_node_count=_env_int("FLOWFORGE_MAX_NODE_COUNT", DEFAULT_MAX_NODE_COUNT),
        )


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be a positive integer, got {raw!r}") from None
    if value < 1:
        raise ValueError(f"{name} must be a positive integer, got {raw!r}")
    return value
