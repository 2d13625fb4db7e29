"""Function registry for the FlowForge formula language.

Functions are callable from formulas (e.g., `SUM(lineItems.lineTotal)`,
`LOOKUP("employees", "id", managerId, "name")`). Each function is registered
with metadata for documentation, editor tooling and argument checking.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from flowforge.expressions.errors import EvaluationError
from flowforge.expressions.values import type_name


class FunctionCategory(Enum):
    """Categories for organizing functions in documentation."""

    MATH = "math"
    TEXT = "text"
    LOGIC = "logic"
    DATE = "date"
    ARRAY = "array"
    LOOKUP = "lookup"  # Needs datasets from the evaluation context


@dataclass(frozen=True)
class FunctionParameter:
    """Definition of a function parameter.

    Attributes:
        name: Parameter name
        type: Expected type ("number", "string", "boolean", "date", "array",
            "object" or "any"); alternatives are joined with "|"
        description: Human-readable description
        required: Whether this parameter is required
        default: Default value if not provided
        variadic: If True, this parameter accepts multiple values
    """

    name: str
    type: str
    description: str
    required: bool = True
    default: Any = None
    variadic: bool = False

    def accepts(self, value: Any) -> bool:
        """Check a runtime value against the declared type. null always passes."""
        if value is None:
            return True
        allowed = self.type.split("|")
        if "any" in allowed:
            return True
        actual = type_name(value)
        if actual in allowed:
            return True
        # ISO strings are parsed by the date functions
        return actual == "string" and "date" in allowed


@dataclass(frozen=True)
class FunctionExample:
    """A formula using the function and the value it evaluates to."""

    formula: str
    result: Any


@dataclass(frozen=True)
class FunctionDefinition:
    """Complete definition of a formula function.

    Attributes:
        name: Function name as used in formulas (upper-case)
        description: Human-readable description
        category: Category for documentation organization
        parameters: Parameter definitions (a list is stored as a tuple)
        return_type: Type of the return value
        examples: Example formulas with their results
        implementation: The Python callable
        uses_context: If True, the implementation receives the
            EvaluationContext as its first argument
    """

    name: str
    description: str
    category: FunctionCategory
    parameters: tuple[FunctionParameter, ...]
    return_type: str
    examples: tuple[FunctionExample, ...] = ()
    implementation: Callable[..., Any] | None = None
    uses_context: bool = False

    def __post_init__(self) -> None:
        # lists passed by callers are stored as tuples
        object.__setattr__(self, "parameters", tuple(self.parameters))
        object.__setattr__(self, "examples", tuple(self.examples))

    @property
    def min_args(self) -> int:
        return sum(1 for p in self.parameters if p.required)

    @property
    def max_args(self) -> int | None:
        """Upper bound on arguments, or None for variadic functions."""
        if self.parameters and self.parameters[-1].variadic:
            return None
        return len(self.parameters)

    @property
    def signature(self) -> str:
        parts = []
        for p in self.parameters:
            text = f"{p.name}..." if p.variadic else p.name
            parts.append(text if p.required else f"[{text}]")
        return f"{self.name}({', '.join(parts)})"

    def to_dict(self) -> dict[str, Any]:
        """Export for API documentation endpoint."""
        return {
            "name": self.name,
            "description": self.description,
            "category": self.category.value,
            "signature": self.signature,
            "parameters": [
                {
                    "name": p.name,
                    "type": p.type,
                    "description": p.description,
                    "required": p.required,
                    "default": p.default,
                    "variadic": p.variadic,
                }
                for p in self.parameters
            ],
            "returnType": self.return_type,
            "examples": [
                {"formula": e.formula, "result": e.result} for e in self.examples
            ],
        }


class FunctionRegistry:
    """Registry for formula functions.

    A registry is populated once, frozen, and then shared read-only by
    evaluators and validators. Names are case-insensitive.

    Example:
        registry = FunctionRegistry()
        registry.register(FunctionDefinition(
            name="LEN",
            description="Returns the number of characters in text",
            ...
        ))
        registry.freeze()

        func = registry.get("len")
        result = func.implementation("hello")  # Returns 5
    """

    def __init__(self) -> None:
        self._functions: dict[str, FunctionDefinition] = {}
        self._frozen = False

    def __len__(self) -> int:
        return len(self._functions)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.upper() in self._functions

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        """Disallow further registrations."""
        self._frozen = True

    def register(self, func_def: FunctionDefinition) -> None:
        """Register a function definition.

        Args:
            func_def: Complete function definition with implementation

        Raises:
            RuntimeError: If the registry is frozen
            ValueError: If a function with the same name exists
        """
        if self._frozen:
            raise RuntimeError(
                f"Cannot register '{func_def.name}': function registry is frozen"
            )
        key = func_def.name.upper()
        if key in self._functions:
            raise ValueError(f"Function '{key}' is already registered")
        self._functions[key] = func_def

    def get(self, name: str) -> FunctionDefinition:
        """Get a function definition by name.

        Raises:
            KeyError: If function is not registered
        """
        func_def = self._functions.get(name.upper())
        if func_def is None:
            raise KeyError(f"Unknown function: {name}")
        return func_def

    def is_registered(self, name: str) -> bool:
        """Check if a function is registered."""
        return name in self

    def list_all(self) -> list[FunctionDefinition]:
        """List all registered functions, sorted by name."""
        return sorted(self._functions.values(), key=lambda f: f.name)

    def list_by_category(self, category: FunctionCategory) -> list[FunctionDefinition]:
        """List functions in a specific category."""
        return [f for f in self.list_all() if f.category == category]

    def categories(self) -> list[FunctionCategory]:
        """Categories that have at least one function, in declaration order."""
        used = {f.category for f in self._functions.values()}
        return [c for c in FunctionCategory if c in used]

    def export_documentation(self) -> dict[str, Any]:
        """Export full registry for documentation or API endpoint.

        Returns:
            Dict with all function definitions organized by category
        """
        by_category: dict[str, list[dict[str, Any]]] = {}
        for func_def in self.list_all():
            by_category.setdefault(func_def.category.value, []).append(
                func_def.to_dict()
            )

        return {
            "functions": {f.name: f.to_dict() for f in self.list_all()},
            "byCategory": by_category,
            "count": len(self._functions),
        }


def check_arguments(
    func_def: FunctionDefinition, args: list[Any], position: int | None = None
) -> None:
    """Check argument count, then argument types, against a definition.

    Raises:
        EvaluationError: On the first mismatch
    """
    count = len(args)
    minimum = func_def.min_args
    maximum = func_def.max_args

    if count < minimum or (maximum is not None and count > maximum):
        if maximum is None:
            expected = f"at least {minimum}"
        elif minimum == maximum:
            expected = str(minimum)
        else:
            expected = f"{minimum} to {maximum}"
        raise EvaluationError(
            f"{func_def.name} expects {expected} argument(s), got {count}",
            position,
            function_name=func_def.name,
        )

    for index, value in enumerate(args):
        param = func_def.parameters[min(index, len(func_def.parameters) - 1)]
        if not param.accepts(value):
            raise EvaluationError(
                f"{func_def.name}: argument '{param.name}' must be {param.type}, "
                f"got {type_name(value)}",
                position,
                function_name=func_def.name,
            )
