"""Expression service: the entry point for parsing, validating and evaluating formulas.

Every failure caused by the formula itself comes back as a result object
with `success=False` (or `valid=False`); nothing here raises for bad user
input. Errors that are not ExpressionErrors are engine defects: they are
logged and re-raised.

Usage:
    service = ExpressionService()
    result = service.evaluate(
        "ROUND(price * quantity * (1 + taxRate), 2)",
        EvaluationContext(fields={"price": 9.99, "quantity": 3, "taxRate": 0.2}),
    )
    result.value  # 35.96
"""

import logging
import re
from collections.abc import Collection, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from flowforge.expressions.builtins import default_registry
from flowforge.expressions.config import ExpressionLimits
from flowforge.expressions.errors import ExpressionError, LexerError, LimitExceededError
from flowforge.expressions.evaluator import EvaluationContext, Evaluator
from flowforge.expressions.functions import (
    FunctionCategory,
    FunctionDefinition,
    FunctionRegistry,
)
from flowforge.expressions.lexer import Lexer, TokenType
from flowforge.expressions.parser import ASTNode, parse_with_limits, to_dict
from flowforge.expressions.validator import ValidationResult, Validator
from flowforge.expressions.values import type_name

logger = logging.getLogger(__name__)

_PARTIAL_IDENTIFIER = re.compile(r"\$?[^\W\d]\w*$")

_LITERAL_WORDS = {"true", "false", "null"}

# NOW and TODAY are already suggested as functions
_CONTEXT_SUGGESTIONS = {
    "system": "System values: now, today, timezone, locale",
    "user": "The current user: id, email, name, groups, roles, metadata",
}

_OPERATOR_TOKENS = {
    TokenType.PLUS, TokenType.MINUS, TokenType.MULTIPLY, TokenType.DIVIDE,
    TokenType.MODULO, TokenType.POWER, TokenType.EQ, TokenType.NEQ,
    TokenType.LT, TokenType.GT, TokenType.LTE, TokenType.GTE,
    TokenType.AND, TokenType.OR, TokenType.NOT, TokenType.CONCAT,
}


# -----------------------------------------------------------------------------
# Result types
# -----------------------------------------------------------------------------


@dataclass
class ExpressionErrorInfo:
    """Description of a formula failure.

    Attributes:
        message: Human-readable message
        kind: "lex", "syntax", "runtime", "limit" or "dependency"
        position: Character offset in the formula, if known
        function_name: The function that failed, for runtime errors in calls
    """

    message: str
    kind: str
    position: int | None = None
    function_name: str | None = None

    @classmethod
    def from_exception(cls, exc: ExpressionError) -> "ExpressionErrorInfo":
        return cls(
            message=exc.message,
            kind=exc.kind,
            position=exc.position,
            function_name=getattr(exc, "function_name", None),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "kind": self.kind,
            "position": self.position,
            "functionName": self.function_name,
        }


@dataclass
class ParseResult:
    success: bool
    ast: ASTNode | None = None
    error: ExpressionErrorInfo | None = None
    node_count: int = 0
    depth: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "ast": to_dict(self.ast) if self.ast is not None else None,
            "error": self.error.to_dict() if self.error else None,
            "nodeCount": self.node_count,
            "depth": self.depth,
        }


@dataclass
class EvaluationResult:
    success: bool
    value: Any = None
    value_type: str = "null"
    error: ExpressionErrorInfo | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "value": self.value,
            "valueType": self.value_type,
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass
class HighlightToken:
    """A source span with its highlighting category.

    Categories: field, function, literal, operator, punctuation, and error
    for an unlexable remainder.
    """

    type: str
    value: str
    start: int
    end: int

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "value": self.value, "start": self.start, "end": self.end}


@dataclass
class Suggestion:
    """An autocomplete entry for the identifier being typed."""

    type: str
    label: str
    insert_text: str
    description: str | None = None
    category: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "label": self.label,
            "insertText": self.insert_text,
            "description": self.description,
            "category": self.category,
        }


@dataclass
class CalculatedField:
    """A form field whose value is computed from a formula.

    Attributes:
        id: Field name; other formulas reference it by this name
        formula: The formula source
        fallback_value: Value used when the formula fails
    """

    id: str
    formula: str
    fallback_value: Any = None


@dataclass
class DependencyGraph:
    """Evaluation order for calculated fields.

    Attributes:
        order: Field ids such that each comes after the fields it references
        dependencies: Field id -> calculated fields it references
        dependents: Field id -> calculated fields that reference it
        cyclic: Field ids on or behind a circular reference, excluded from order
    """

    order: list[str]
    dependencies: dict[str, list[str]]
    dependents: dict[str, list[str]]
    cyclic: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "order": self.order,
            "dependencies": self.dependencies,
            "dependents": self.dependents,
            "cyclic": self.cyclic,
        }


@dataclass
class RecalculationResult:
    values: dict[str, Any]
    errors: dict[str, ExpressionErrorInfo] = field(default_factory=dict)


# -----------------------------------------------------------------------------
# Service
# -----------------------------------------------------------------------------


class ExpressionService:
    """Facade over the lexer, parser, evaluator, validator and registry.

    Args:
        registry: Frozen function registry; defaults to the built-ins
        limits: Resource bounds; defaults to ExpressionLimits.from_env()
    """

    def __init__(
        self,
        registry: FunctionRegistry | None = None,
        limits: ExpressionLimits | None = None,
    ):
        self.registry = registry if registry is not None else default_registry()
        self.limits = limits if limits is not None else ExpressionLimits.from_env()
        self.validator = Validator(self.registry, self.limits)

    # -------------------------------------------------------------------------
    # Core operations
    # -------------------------------------------------------------------------

    def parse(self, formula: str) -> ParseResult:
        """Parse a formula into an AST, enforcing the configured limits."""
        try:
            ast, node_count, depth = parse_with_limits(formula, self.limits)
        except LimitExceededError as exc:
            logger.warning("Formula rejected: %s", exc.message)
            return ParseResult(success=False, error=ExpressionErrorInfo.from_exception(exc))
        except ExpressionError as exc:
            logger.debug("Formula failed to parse: %s", exc)
            return ParseResult(success=False, error=ExpressionErrorInfo.from_exception(exc))
        except RecursionError:
            logger.warning("Formula rejected: recursion limit reached while parsing")
            return ParseResult(success=False, error=_recursion_error())

        return ParseResult(success=True, ast=ast, node_count=node_count, depth=depth)

    def evaluate(
        self,
        formula_or_ast: str | ASTNode,
        context: EvaluationContext | None = None,
    ) -> EvaluationResult:
        """Evaluate a formula string or a previously parsed AST."""
        if isinstance(formula_or_ast, str):
            parsed = self.parse(formula_or_ast)
            if not parsed.success:
                return EvaluationResult(success=False, error=parsed.error)
            ast = parsed.ast
        else:
            ast = formula_or_ast

        evaluator = Evaluator(
            context if context is not None else EvaluationContext(),
            self.registry,
            self.limits.max_ast_depth,
        )

        try:
            value = evaluator.evaluate(ast)
        except LimitExceededError as exc:
            logger.warning("Formula evaluation stopped: %s", exc.message)
            return EvaluationResult(success=False, error=ExpressionErrorInfo.from_exception(exc))
        except ExpressionError as exc:
            logger.debug("Formula evaluation failed: %s", exc.message)
            return EvaluationResult(success=False, error=ExpressionErrorInfo.from_exception(exc))
        except RecursionError:
            logger.warning("Formula evaluation stopped: recursion limit reached")
            return EvaluationResult(success=False, error=_recursion_error())
        except Exception:
            logger.exception("Unexpected error evaluating formula %r", formula_or_ast)
            raise

        return EvaluationResult(success=True, value=value, value_type=type_name(value))

    def validate(
        self, formula: str, known_fields: Collection[str] | None = None
    ) -> ValidationResult:
        """Statically check a formula; see Validator.validate."""
        return self.validator.validate(formula, known_fields)

    def list_functions(self) -> list[FunctionDefinition]:
        return self.registry.list_all()

    def get_function(self, name: str) -> FunctionDefinition | None:
        if name not in self.registry:
            return None
        return self.registry.get(name)

    def list_functions_by_category(self, category: str) -> list[FunctionDefinition]:
        """List functions in a category given by its name (e.g. "math").

        Raises:
            ValueError: If the category does not exist
        """
        return self.registry.list_by_category(FunctionCategory(category.lower()))

    # -------------------------------------------------------------------------
    # Editor tooling
    # -------------------------------------------------------------------------

    def evaluate_batch(
        self,
        formulas: Mapping[str, str],
        context: EvaluationContext | None = None,
    ) -> dict[str, EvaluationResult]:
        """Evaluate several formulas in order against one context.

        Each successful result is visible to later formulas as a field
        named by its key; the caller's context is left untouched.
        """
        base = context if context is not None else EvaluationContext()
        values = dict(base.fields)
        scope = EvaluationContext(
            fields=values, datasets=base.datasets, variables=base.variables, now=base.now
        )

        results: dict[str, EvaluationResult] = {}
        for key, formula in formulas.items():
            result = self.evaluate(formula, scope)
            if result.success:
                values[key] = result.value
            results[key] = result
        return results

    def tokenize(self, formula: str) -> list[HighlightToken]:
        """Split a formula into highlight spans.

        Lexing stops at the first invalid character; the rest of the
        formula becomes a single "error" span.
        """
        lexer = Lexer(formula)
        tokens: list[tuple[TokenType, int, int]] = []
        error_start = None

        while True:
            try:
                token = lexer.next_token()
            except LexerError:
                error_start = lexer.position
                break
            if token.type == TokenType.EOF:
                break
            tokens.append((token.type, token.position, lexer.position))

        spans = []
        for index, (token_type, start, end) in enumerate(tokens):
            following = tokens[index + 1][0] if index + 1 < len(tokens) else None
            spans.append(
                HighlightToken(
                    _highlight_category(token_type, formula[start:end], following),
                    formula[start:end],
                    start,
                    end,
                )
            )

        if error_start is not None:
            spans.append(
                HighlightToken("error", formula[error_start:], error_start, len(formula))
            )
        return spans

    def suggest(
        self,
        formula: str,
        position: int,
        available_fields: Sequence[str] = (),
        variables: Sequence[str] = (),
    ) -> list[Suggestion]:
        """Autocomplete the identifier that ends at `position`."""
        position = max(0, min(position, len(formula)))
        match = _PARTIAL_IDENTIFIER.search(formula[:position])
        partial = match.group().lower() if match else ""

        suggestions = []
        for func_def in self.registry.list_all():
            if func_def.name.lower().startswith(partial):
                suggestions.append(
                    Suggestion(
                        type="function",
                        label=func_def.name,
                        insert_text=f"{func_def.name}(",
                        description=func_def.description,
                        category=func_def.category.value,
                    )
                )

        for name in available_fields:
            if name.lower().startswith(partial):
                suggestions.append(Suggestion(type="field", label=name, insert_text=name))

        for name in variables:
            label = name if name.startswith("$") else f"${name}"
            if label.lower().startswith(partial) or name.lower().startswith(partial):
                suggestions.append(
                    Suggestion(
                        type="variable",
                        label=label,
                        insert_text=label,
                        description=f"Variable {label}",
                    )
                )

        for name, description in _CONTEXT_SUGGESTIONS.items():
            if name.startswith(partial):
                suggestions.append(
                    Suggestion(
                        type="variable", label=name, insert_text=name, description=description
                    )
                )

        return sorted(suggestions, key=lambda s: (s.label.casefold(), s.type))

    # -------------------------------------------------------------------------
    # Calculated fields
    # -------------------------------------------------------------------------

    def build_dependency_graph(
        self, calculated_fields: Sequence[CalculatedField]
    ) -> DependencyGraph:
        """Order calculated fields so each follows the fields it references.

        Fields caught in a circular reference, and fields that depend on
        them, are reported in `cyclic` instead of `order`.
        """
        ids = [f.id for f in calculated_fields]
        known = set(ids)

        dependencies: dict[str, list[str]] = {}
        dependents: dict[str, list[str]] = {field_id: [] for field_id in ids}
        for calc in calculated_fields:
            referenced = self.validate(calc.formula).referenced_fields
            dependencies[calc.id] = [name for name in referenced if name in known]
            for name in dependencies[calc.id]:
                dependents[name].append(calc.id)

        # Kahn's algorithm, keeping declaration order among ready fields
        remaining = {field_id: len(dependencies[field_id]) for field_id in ids}
        order: list[str] = []
        ready = [field_id for field_id in ids if remaining[field_id] == 0]
        while ready:
            current = ready.pop(0)
            order.append(current)
            for dependent in dependents[current]:
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    ready.append(dependent)

        placed = set(order)
        cyclic = [field_id for field_id in ids if field_id not in placed]
        if cyclic:
            logger.warning("Circular reference among calculated fields: %s", ", ".join(cyclic))

        return DependencyGraph(
            order=order, dependencies=dependencies, dependents=dependents, cyclic=cyclic
        )

    def recalculate(
        self,
        calculated_fields: Sequence[CalculatedField],
        field_values: Mapping[str, Any],
        context: EvaluationContext | None = None,
    ) -> RecalculationResult:
        """Evaluate every calculated field in dependency order.

        Each result is visible to the fields evaluated after it. A field
        whose formula fails, or that sits in a circular reference, gets its
        fallback value and an entry in `errors`.
        """
        base = context if context is not None else EvaluationContext()
        graph = self.build_dependency_graph(calculated_fields)
        by_id = {f.id: f for f in calculated_fields}

        values = dict(base.fields)
        values.update(field_values)
        scope = EvaluationContext(
            fields=values, datasets=base.datasets, variables=base.variables, now=base.now
        )

        errors: dict[str, ExpressionErrorInfo] = {}
        for field_id in graph.order:
            calc = by_id[field_id]
            result = self.evaluate(calc.formula, scope)
            if result.success:
                values[field_id] = result.value
            else:
                values[field_id] = calc.fallback_value
                errors[field_id] = result.error

        for field_id in graph.cyclic:
            values[field_id] = by_id[field_id].fallback_value
            errors[field_id] = ExpressionErrorInfo(
                message=f"Circular reference involving '{field_id}'",
                kind="dependency",
            )

        return RecalculationResult(values=values, errors=errors)


def _recursion_error() -> ExpressionErrorInfo:
    return ExpressionErrorInfo(message="Formula is nested too deeply", kind="limit")


def _highlight_category(token_type: TokenType, text: str, following: TokenType | None) -> str:
    if token_type == TokenType.IDENTIFIER:
        if text.lower() in _LITERAL_WORDS:
            return "literal"
        if following == TokenType.LPAREN:
            return "function"
        return "field"
    if token_type in (TokenType.NUMBER, TokenType.STRING):
        return "literal"
    if token_type in _OPERATOR_TOKENS:
        return "operator"
    return "punctuation"


# -----------------------------------------------------------------------------
# Convenience functions
# -----------------------------------------------------------------------------

# Limits come from the environment at import time
_default_service = ExpressionService()


def _service() -> ExpressionService:
    return _default_service


def parse(formula: str) -> ParseResult:
    """Parse a formula with the default service."""
    return _service().parse(formula)


def evaluate(
    formula_or_ast: str | ASTNode, context: EvaluationContext | None = None
) -> EvaluationResult:
    """Evaluate a formula with the default service.

    Example:
        result = evaluate(
            'status == "open" && total > 100',
            EvaluationContext(fields={"status": "open", "total": 250}),
        )
        # result.value is True
    """
    return _service().evaluate(formula_or_ast, context)


def validate(formula: str, known_fields: Collection[str] | None = None) -> ValidationResult:
    """Validate a formula with the default service."""
    return _service().validate(formula, known_fields)


def list_functions() -> list[FunctionDefinition]:
    """List every built-in function."""
    return _service().list_functions()
