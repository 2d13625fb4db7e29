"""Evaluator for the FlowForge formula language.

Walks the AST and computes the result against an evaluation context
containing field values, bound variables, datasets and the clock.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from flowforge.expressions.config import DEFAULT_MAX_AST_DEPTH
from flowforge.expressions.errors import EvaluationError, LimitExceededError
from flowforge.expressions.functions import FunctionRegistry, check_arguments
from flowforge.expressions.parser import (
    ASTNode,
    ArrayExpression,
    BinaryExpression,
    CallExpression,
    ConditionalExpression,
    Identifier,
    Literal,
    LogicalExpression,
    MemberExpression,
    ObjectExpression,
    UnaryExpression,
)
from flowforge.expressions.values import (
    check_number,
    compare,
    is_array,
    is_number,
    is_object,
    multiply,
    power,
    strict_equals,
    to_bool,
    to_text,
    type_name,
)


# Identifiers answered by the context itself when no field or variable has the name
CONTEXT_NAMES = ("now", "today", "user", "system")


def anonymous_user() -> dict[str, Any]:
    return {"id": "", "email": "", "name": "", "groups": [], "roles": [], "metadata": {}}


@dataclass
class EvaluationContext:
    """Context for formula evaluation. Never mutated by the engine.

    Attributes:
        fields: Form field values by name; nested mappings are reached with
            member access (`customer.address.city`)
        datasets: Tabular datasets by name, each a list of record mappings,
            read by LOOKUP
        variables: Bound variables (e.g. workflow variables), consulted
            after fields; `$name` also finds a variable stored as `name`
        now: The instant NOW() and TODAY() report, captured at construction
        user: The current user (`user.email`, `user.roles`)
        timezone: Reported as `system.timezone`; None uses the zone of `now`,
            or the host's local zone when `now` is naive
        locale: Reported as `system.locale`
    """

    fields: Mapping[str, Any] = field(default_factory=dict)
    datasets: Mapping[str, list[Mapping[str, Any]]] = field(default_factory=dict)
    variables: Mapping[str, Any] = field(default_factory=dict)
    now: datetime = field(default_factory=datetime.now)
    user: Mapping[str, Any] = field(default_factory=anonymous_user)
    timezone: str | None = None
    locale: str = "en-US"

    @property
    def system(self) -> dict[str, Any]:
        return {
            "now": self.now,
            "today": self.now.date(),
            "timezone": (
                self.timezone or self.now.tzname() or self.now.astimezone().tzname()
            ),
            "locale": self.locale,
        }

    def resolve(self, name: str) -> Any:
        """Resolve an identifier.

        Fields come first, then variables, then the context names `now`,
        `today`, `user` and `system` (case-insensitive). Anything else is None.
        """
        if name in self.fields:
            return self.fields[name]
        if name in self.variables:
            return self.variables[name]
        if name.startswith("$"):
            return self.variables.get(name[1:])

        builtin = name.lower()
        if builtin == "now":
            return self.now
        if builtin == "today":
            return self.now.date()
        if builtin == "user":
            return self.user
        if builtin == "system":
            return self.system
        return None


class Evaluator:
    """Evaluates a formula AST against a context.

    Usage:
        ctx = EvaluationContext(fields={"price": 10, "quantity": 5})
        evaluator = Evaluator(ctx, registry)
        result = evaluator.evaluate(ast)  # 50 for `price * quantity`
    """

    def __init__(
        self,
        context: EvaluationContext | None = None,
        registry: FunctionRegistry | None = None,
        max_depth: int = DEFAULT_MAX_AST_DEPTH,
    ):
        if registry is None:
            from flowforge.expressions.builtins import default_registry

            registry = default_registry()
        self.context = context if context is not None else EvaluationContext()
        self.registry = registry
        self.max_depth = max_depth
        self._depth = 0

    def evaluate(self, node: ASTNode) -> Any:
        """Evaluate an AST node and return the result."""
        method = getattr(self, f"_eval_{type(node).__name__.lower()}", None)
        if method is None:
            raise EvaluationError(f"Unknown node type: {type(node).__name__}")

        self._depth += 1
        if self._depth > self.max_depth:
            self._depth -= 1
            raise LimitExceededError(
                f"Evaluation exceeds maximum depth of {self.max_depth}",
                getattr(node, "position", None),
            )
        try:
            return method(node)
        except EvaluationError as exc:
            # innermost node wins
            if exc.position is None:
                exc.position = getattr(node, "position", None)
            raise
        finally:
            self._depth -= 1

    # -------------------------------------------------------------------------
    # Node type evaluators
    # -------------------------------------------------------------------------

    def _eval_literal(self, node: Literal) -> Any:
        return node.value

    def _eval_identifier(self, node: Identifier) -> Any:
        """Evaluate an identifier (field or variable reference)."""
        return self.context.resolve(node.name)

    def _eval_memberexpression(self, node: MemberExpression) -> Any:
        """Evaluate member access (a.b) or index access (a[b])."""
        obj = self.evaluate(node.object)

        if node.computed:
            return self._index(obj, self.evaluate(node.property))

        name = node.property

        if obj is None:
            return None

        if is_object(obj):
            return obj.get(name)

        if is_array(obj):
            if name == "length":
                return len(obj)
            # Pluck the property from every record
            return [item.get(name) if is_object(item) else None for item in obj]

        if isinstance(obj, str) and name == "length":
            return len(obj)

        raise EvaluationError(f"Cannot read property '{name}' of {type_name(obj)}")

    def _index(self, obj: Any, key: Any) -> Any:
        if obj is None or key is None:
            return None

        if is_object(obj):
            return obj.get(key if isinstance(key, str) else self._text(key))

        if is_array(obj) or isinstance(obj, str):
            if not is_number(key) or (isinstance(key, float) and not key.is_integer()):
                raise EvaluationError(f"Index must be a whole number, got {self._text(key)!r}")
            index = int(key)
            if 0 <= index < len(obj):
                return obj[index]
            return None

        raise EvaluationError(f"Cannot index into {type_name(obj)}")

    def _eval_arrayexpression(self, node: ArrayExpression) -> list[Any]:
        return [self.evaluate(element) for element in node.elements]

    def _eval_objectexpression(self, node: ObjectExpression) -> dict[str, Any]:
        """Evaluate an object literal; a repeated key keeps its last value."""
        return {key: self.evaluate(value) for key, value in node.properties}

    def _eval_unaryexpression(self, node: UnaryExpression) -> Any:
        operand = self.evaluate(node.operand)

        if node.operator == "!":
            return not to_bool(operand)

        if node.operator == "-":
            if operand is None:
                return None
            if is_number(operand):
                return -operand
            raise EvaluationError(f"Cannot negate {type_name(operand)}")

        raise EvaluationError(f"Unknown unary operator: {node.operator}")

    def _eval_logicalexpression(self, node: LogicalExpression) -> bool:
        """Short-circuit && and ||; the result is always a boolean."""
        left = to_bool(self.evaluate(node.left))

        if node.operator == "&&":
            return left and to_bool(self.evaluate(node.right))
        if node.operator == "||":
            return left or to_bool(self.evaluate(node.right))

        raise EvaluationError(f"Unknown logical operator: {node.operator}")

    def _eval_conditionalexpression(self, node: ConditionalExpression) -> Any:
        """Only the taken branch is evaluated."""
        if to_bool(self.evaluate(node.test)):
            return self.evaluate(node.consequent)
        return self.evaluate(node.alternate)

    def _eval_binaryexpression(self, node: BinaryExpression) -> Any:
        op = node.operator
        left = self.evaluate(node.left)
        right = self.evaluate(node.right)

        if op == "==":
            return strict_equals(left, right)
        if op == "!=":
            return not strict_equals(left, right)
        if op == "<":
            return compare(left, right) < 0
        if op == "<=":
            return compare(left, right) <= 0
        if op == ">":
            return compare(left, right) > 0
        if op == ">=":
            return compare(left, right) >= 0

        if op == "&" or (
            op == "+" and (isinstance(left, str) or isinstance(right, str))
        ):
            return self._text(left) + self._text(right)

        if op in ("+", "-", "*", "/", "%", "**"):
            return self._arithmetic(op, left, right)

        raise EvaluationError(f"Unknown operator: {op}")

    def _eval_callexpression(self, node: CallExpression) -> Any:
        """Evaluate a function call."""
        if node.callee not in self.registry:
            raise EvaluationError(
                f"Unknown function: {node.callee}",
                node.position,
                function_name=node.callee.upper(),
            )

        func_def = self.registry.get(node.callee)
        args = [self.evaluate(arg) for arg in node.arguments]
        check_arguments(func_def, args, node.position)

        try:
            if func_def.uses_context:
                return check_number(func_def.implementation(self.context, *args))
            return check_number(func_def.implementation(*args))
        except (TypeError, ValueError, ArithmeticError) as exc:
            raise EvaluationError(
                f"{func_def.name}: {exc}", node.position, function_name=func_def.name
            ) from exc

    # -------------------------------------------------------------------------
    # Helper methods
    # -------------------------------------------------------------------------

    def _arithmetic(self, op: str, left: Any, right: Any) -> Any:
        """Numeric operators; null operands propagate null."""
        if op in ("/", "%") and is_number(right) and right == 0:
            raise EvaluationError("Division by zero" if op == "/" else "Modulo by zero")

        if left is None or right is None:
            return None

        if not (is_number(left) and is_number(right)):
            raise EvaluationError(
                f"Cannot apply '{op}' to {type_name(left)} and {type_name(right)}"
            )

        try:
            if op == "+":
                return check_number(left + right)
            if op == "-":
                return check_number(left - right)
            if op == "*":
                return multiply(left, right)
            if op == "/":
                if isinstance(left, int) and isinstance(right, int) and left % right == 0:
                    return left // right
                return check_number(left / right)
            if op == "%":
                return check_number(left % right)
            return power(left, right)
        except (ValueError, ArithmeticError) as exc:
            raise EvaluationError(f"Arithmetic error in '{op}': {exc}") from exc

    def _text(self, value: Any) -> str:
        try:
            return to_text(value)
        except ValueError as exc:
            # int-to-str digit limit for host-supplied integers
            raise EvaluationError(f"Cannot convert value to text: {exc}") from exc
