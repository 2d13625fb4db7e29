"""Static validation of formulas.

Checks that a formula parses and that it only references known fields and
registered functions, without evaluating anything. Used before a formula
is saved on a form or workflow definition.
"""

import logging
from collections.abc import Collection
from dataclasses import dataclass, field
from typing import Any

from flowforge.expressions.config import ExpressionLimits
from flowforge.expressions.errors import ExpressionError
from flowforge.expressions.evaluator import CONTEXT_NAMES
from flowforge.expressions.functions import FunctionRegistry
from flowforge.expressions.parser import (
    ASTNode,
    CallExpression,
    Identifier,
    child_nodes,
    parse_with_limits,
)

logger = logging.getLogger(__name__)

SYNTAX = "syntax"
UNKNOWN_FIELD = "unknown_field"
UNKNOWN_FUNCTION = "unknown_function"


@dataclass
class ValidationIssue:
    """A single validation problem.

    Attributes:
        type: "syntax", "unknown_field" or "unknown_function"
        message: Human-readable description
        position: Character offset in the formula, if known
    """

    type: str
    message: str
    position: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "message": self.message, "position": self.position}


@dataclass
class ValidationResult:
    """Result of validating a formula.

    Attributes:
        valid: True when there are no issues
        errors: Issues in source order
        referenced_fields: Root identifiers, in order of first use
        referenced_functions: Called function names (upper-case), in order of first use
    """

    valid: bool
    errors: list[ValidationIssue] = field(default_factory=list)
    referenced_fields: list[str] = field(default_factory=list)
    referenced_functions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": [issue.to_dict() for issue in self.errors],
            "referencedFields": self.referenced_fields,
            "referencedFunctions": self.referenced_functions,
        }


def collect_references(ast: ASTNode) -> tuple[list[tuple[str, int]], list[tuple[str, int]]]:
    """Collect (name, position) of field references and function calls.

    Walks the tree in source order without recursion. Each name appears
    once, at its first position. Member properties (`b` in `a.b`) are not
    field references; only the root identifier is.
    """
    fields: dict[str, int] = {}
    functions: dict[str, int] = {}
    stack = [ast]
    while stack:
        node = stack.pop()
        if isinstance(node, Identifier):
            fields.setdefault(node.name, node.position)
        elif isinstance(node, CallExpression):
            functions.setdefault(node.callee.upper(), node.position)
        stack.extend(reversed(child_nodes(node)))
    return list(fields.items()), list(functions.items())


class Validator:
    """Validates formulas against a function registry.

    Usage:
        validator = Validator(registry)
        result = validator.validate("SUM(price, tax)", known_fields={"price"})
        # result.valid is False; one unknown_field issue for "tax"
    """

    def __init__(self, registry: FunctionRegistry, limits: ExpressionLimits | None = None):
        self.registry = registry
        self.limits = limits or ExpressionLimits()

    def validate(
        self, formula: str, known_fields: Collection[str] | None = None
    ) -> ValidationResult:
        """Validate a formula.

        Args:
            formula: The formula source
            known_fields: Field names the formula may reference; None skips
                the unknown-field check. `$`-prefixed names and the context
                names (`now`, `today`, `user`, `system`) are always allowed.

        Returns:
            ValidationResult; syntax and limit problems stop validation
            after the first issue.
        """
        try:
            ast, _, _ = parse_with_limits(formula, self.limits)
        except ExpressionError as exc:
            logger.debug("Formula failed to parse: %s", exc)
            return ValidationResult(
                valid=False,
                errors=[ValidationIssue(SYNTAX, exc.message, exc.position)],
            )

        fields, functions = collect_references(ast)
        errors: list[ValidationIssue] = []

        if known_fields is not None:
            known = set(known_fields)
            for name, position in fields:
                if (
                    name not in known
                    and not name.startswith("$")
                    and name.lower() not in CONTEXT_NAMES
                ):
                    errors.append(
                        ValidationIssue(UNKNOWN_FIELD, f"Unknown field: {name}", position)
                    )

        for name, position in functions:
            if name not in self.registry:
                errors.append(
                    ValidationIssue(UNKNOWN_FUNCTION, f"Unknown function: {name}", position)
                )

        errors.sort(key=lambda issue: issue.position or 0)

        return ValidationResult(
            valid=not errors,
            errors=errors,
            referenced_fields=[name for name, _ in fields],
            referenced_functions=[name for name, _ in functions],
        )
