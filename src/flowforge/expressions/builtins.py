"""Built-in functions for the FlowForge formula language.

This module defines every built-in function and registers it with a
FunctionRegistry. Call build_default_registry() for a fresh, frozen
registry, or default_registry() for the shared one.

Categories:
- Math: SUM, AVERAGE, MIN, MAX, ABS, ROUND, FLOOR, CEIL, POWER, SQRT, MOD,
  COUNT, SUMIF, NUMBER
- Text: CONCAT, CONCATENATE, UPPER, LOWER, TRIM, LEFT, RIGHT, MID, LEN, FIND,
  REPLACE, SPLIT, JOIN, PROPER, TEXT, STRING, STARTSWITH, ENDSWITH,
  JSON_PARSE, JSON_STRINGIFY
- Logic: IF, IFS, SWITCH, AND, OR, NOT, ISBLANK, COALESCE, BOOLEAN
- Date: NOW, TODAY, DATE, YEAR, MONTH, DAY, WEEKDAY, HOUR, MINUTE, DATEADD,
  DATEDIFF
- Array: FIRST, LAST, INDEX, LENGTH, CONTAINS, UNIQUE, SORT, FILTER, COUNTIF
- Lookup: LOOKUP (reads context datasets), VLOOKUP

Implementations receive arguments that already passed the parameter type
check, so every parameter may still be None. Invalid input is reported by
raising TypeError or ValueError; the evaluator turns these into runtime
errors that name the function.
"""

from __future__ import annotations

import calendar
import json
import math
import re
from datetime import date, datetime, time, timedelta
from decimal import Decimal, ROUND_HALF_UP, localcontext
from functools import cmp_to_key
from typing import TYPE_CHECKING, Any

from flowforge.expressions.functions import (
    FunctionCategory,
    FunctionDefinition,
    FunctionExample,
    FunctionParameter,
    FunctionRegistry,
)
from flowforge.expressions.values import (
    compare,
    flatten,
    is_array,
    is_blank,
    is_date,
    is_number,
    is_object,
    power,
    strict_equals,
    to_bool,
    to_date,
    to_json,
    to_text,
    type_name,
)

if TYPE_CHECKING:
    from flowforge.expressions.evaluator import EvaluationContext


def build_default_registry() -> FunctionRegistry:
    """Create a registry holding every built-in function, frozen."""
    registry = FunctionRegistry()
    _register_math_functions(registry)
    _register_text_functions(registry)
    _register_logic_functions(registry)
    _register_date_functions(registry)
    _register_array_functions(registry)
    _register_lookup_functions(registry)
    registry.freeze()
    return registry


def default_registry() -> FunctionRegistry:
    """Return the shared built-in registry, built when this module is imported."""
    return _DEFAULT_REGISTRY


def _integer(value: Any, name: str) -> int:
    """Return an integral number as int, or raise ValueError."""
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"{name} must be a whole number, got {value}")
        return int(value)
    return value


def _numbers(args: tuple[Any, ...]) -> list[int | float]:
    values = flatten(args)
    for value in values:
        if not is_number(value):
            raise TypeError(f"expected numbers, got {type_name(value)}")
    return values


def _quantize(value: int | float, places: int) -> Decimal:
    """Round half away from zero to `places` decimal places, exactly."""
    number = Decimal(repr(value))
    if number.as_tuple().exponent >= -places:
        return number
    if number.is_zero() or places < -number.adjusted() - 1:
        return Decimal(0)
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, number.adjusted() + places + 2)
        return number.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


# -----------------------------------------------------------------------------
# Math Functions
# -----------------------------------------------------------------------------


def _sum(*args: Any) -> int | float:
    """Sum numbers, flattening arrays one level and skipping nulls."""
    return sum(_numbers(args))


def _average(*args: Any) -> int | float:
    values = _numbers(args)
    if not values:
        return 0
    return sum(values) / len(values)


def _min(*args: Any) -> int | float:
    values = _numbers(args)
    return min(values) if values else 0


def _max(*args: Any) -> int | float:
    values = _numbers(args)
    return max(values) if values else 0


def _abs(value: int | float | None) -> int | float | None:
    if value is None:
        return None
    return abs(value)


def _round(value: int | float | None, digits: int | float | None = 0) -> int | float | None:
    """Round half away from zero to the given number of decimal places."""
    if value is None:
        return None
    places = _integer(digits if digits is not None else 0, "digits")
    rounded = _quantize(value, places)
    if places <= 0:
        return int(rounded)
    return float(rounded)


def _floor(value: int | float | None) -> int | None:
    if value is None:
        return None
    return math.floor(value)


def _ceil(value: int | float | None) -> int | None:
    if value is None:
        return None
    return math.ceil(value)


def _power(base: int | float | None, exponent: int | float | None) -> int | float | None:
    if base is None or exponent is None:
        return None
    return power(base, exponent)


def _sqrt(value: int | float | None) -> float | None:
    if value is None:
        return None
    if value < 0:
        raise ValueError("cannot take the square root of a negative number")
    return math.sqrt(value)


def _mod(dividend: int | float | None, divisor: int | float | None) -> int | float | None:
    """Remainder with the sign of the divisor."""
    if divisor == 0:
        raise ZeroDivisionError("division by zero")
    if dividend is None or divisor is None:
        return None
    return dividend % divisor


def _count(*args: Any) -> int:
    """Count non-null values, flattening arrays one level."""
    return len(flatten(args))


def _sum_if(values: list | None, conditions: list | None, match: Any) -> int | float:
    """Sum values[i] where conditions[i] equals match."""
    total: int | float = 0
    for value, condition in zip(values or [], conditions or []):
        if is_number(value) and strict_equals(condition, match):
            total += value
    return total


def _number(value: Any) -> int | float | None:
    """Convert booleans and numeric strings to numbers."""
    if value is None or is_number(value):
        return value
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            return float(text)
    raise TypeError(f"cannot convert {type_name(value)} to a number")


def _register_math_functions(registry: FunctionRegistry) -> None:
    registry.register(
        FunctionDefinition(
            name="SUM",
            description="Adds all numbers; arrays are flattened and nulls skipped",
            category=FunctionCategory.MATH,
            parameters=[
                FunctionParameter(
                    "values", "number|array", "Numbers or arrays to add", variadic=True
                )
            ],
            return_type="number",
            examples=[
                FunctionExample("SUM(1, 2, 3)", 6),
                FunctionExample("SUM([10, 20], 5)", 35),
            ],
            implementation=_sum,
        )
    )

    registry.register(
        FunctionDefinition(
            name="AVERAGE",
            description="Returns the arithmetic mean of the non-null numbers",
            category=FunctionCategory.MATH,
            parameters=[
                FunctionParameter(
                    "values", "number|array", "Numbers or arrays to average", variadic=True
                )
            ],
            return_type="number",
            examples=[FunctionExample("AVERAGE(1, 2, 3, 4)", 2.5)],
            implementation=_average,
        )
    )

    registry.register(
        FunctionDefinition(
            name="MIN",
            description="Returns the smallest number",
            category=FunctionCategory.MATH,
            parameters=[
                FunctionParameter(
                    "values", "number|array", "Numbers or arrays to compare", variadic=True
                )
            ],
            return_type="number",
            examples=[FunctionExample("MIN(5, 2, 8, 1)", 1)],
            implementation=_min,
        )
    )

    registry.register(
        FunctionDefinition(
            name="MAX",
            description="Returns the largest number",
            category=FunctionCategory.MATH,
            parameters=[
                FunctionParameter(
                    "values", "number|array", "Numbers or arrays to compare", variadic=True
                )
            ],
            return_type="number",
            examples=[FunctionExample("MAX(5, 2, 8, 1)", 8)],
            implementation=_max,
        )
    )

    registry.register(
        FunctionDefinition(
            name="ABS",
            description="Returns the absolute value",
            category=FunctionCategory.MATH,
            parameters=[FunctionParameter("number", "number", "The number")],
            return_type="number",
            examples=[FunctionExample("ABS(-5)", 5)],
            implementation=_abs,
        )
    )

    registry.register(
        FunctionDefinition(
            name="ROUND",
            description="Rounds half away from zero to a number of decimal places",
            category=FunctionCategory.MATH,
            parameters=[
                FunctionParameter("number", "number", "Number to round"),
                FunctionParameter(
                    "digits", "number", "Decimal places (negative rounds to tens, hundreds...)",
                    required=False, default=0,
                ),
            ],
            return_type="number",
            examples=[
                FunctionExample("ROUND(3.7)", 4),
                FunctionExample("ROUND(3.14159, 2)", 3.14),
                FunctionExample("ROUND(2.5)", 3),
            ],
            implementation=_round,
        )
    )

    registry.register(
        FunctionDefinition(
            name="FLOOR",
            description="Rounds down to the nearest integer",
            category=FunctionCategory.MATH,
            parameters=[FunctionParameter("number", "number", "Number to round down")],
            return_type="number",
            examples=[FunctionExample("FLOOR(3.7)", 3)],
            implementation=_floor,
        )
    )

    registry.register(
        FunctionDefinition(
            name="CEIL",
            description="Rounds up to the nearest integer",
            category=FunctionCategory.MATH,
            parameters=[FunctionParameter("number", "number", "Number to round up")],
            return_type="number",
            examples=[FunctionExample("CEIL(3.2)", 4)],
            implementation=_ceil,
        )
    )

    registry.register(
        FunctionDefinition(
            name="POWER",
            description="Raises a number to a power",
            category=FunctionCategory.MATH,
            parameters=[
                FunctionParameter("base", "number", "Base number"),
                FunctionParameter("exponent", "number", "Exponent"),
            ],
            return_type="number",
            examples=[FunctionExample("POWER(2, 10)", 1024)],
            implementation=_power,
        )
    )

    registry.register(
        FunctionDefinition(
            name="SQRT",
            description="Returns the square root of a non-negative number",
            category=FunctionCategory.MATH,
            parameters=[FunctionParameter("number", "number", "The number")],
            return_type="number",
            examples=[FunctionExample("SQRT(16)", 4)],
            implementation=_sqrt,
        )
    )

    registry.register(
        FunctionDefinition(
            name="MOD",
            description="Returns the remainder of a division (sign of the divisor)",
            category=FunctionCategory.MATH,
            parameters=[
                FunctionParameter("dividend", "number", "Number to divide"),
                FunctionParameter("divisor", "number", "Number to divide by"),
            ],
            return_type="number",
            examples=[FunctionExample("MOD(10, 3)", 1)],
            implementation=_mod,
        )
    )

    registry.register(
        FunctionDefinition(
            name="COUNT",
            description="Counts non-null values; arrays are flattened",
            category=FunctionCategory.MATH,
            parameters=[
                FunctionParameter("values", "any", "Values to count", variadic=True)
            ],
            return_type="number",
            examples=[FunctionExample("COUNT(1, null, \"a\", [2, 3])", 4)],
            implementation=_count,
        )
    )

    registry.register(
        FunctionDefinition(
            name="SUMIF",
            description="Sums values whose parallel condition equals a match value",
            category=FunctionCategory.MATH,
            parameters=[
                FunctionParameter("values", "array", "Values to sum"),
                FunctionParameter("conditions", "array", "Parallel conditions"),
                FunctionParameter("matchValue", "any", "Value to match in conditions"),
            ],
            return_type="number",
            examples=[
                FunctionExample(
                    'SUMIF([100, 50, 25], ["approved", "rejected", "approved"], "approved")',
                    125,
                )
            ],
            implementation=_sum_if,
        )
    )

    registry.register(
        FunctionDefinition(
            name="NUMBER",
            description="Converts a numeric string or boolean to a number",
            category=FunctionCategory.MATH,
            parameters=[FunctionParameter("value", "any", "Value to convert")],
            return_type="number",
            examples=[
                FunctionExample('NUMBER("123")', 123),
                FunctionExample('NUMBER("4.5")', 4.5),
            ],
            implementation=_number,
        )
    )


# -----------------------------------------------------------------------------
# Text Functions
# -----------------------------------------------------------------------------

_NUMBER_FORMAT = re.compile(r"[#0,]+(?:\.(0+))?")
_DATE_FORMAT_TOKENS = re.compile(r"YYYY|MM|DD|HH|mm|ss")


def _concat(*args: Any) -> str:
    """Concatenate the text forms of all arguments; null is empty."""
    return "".join(to_text(arg) for arg in args)


def _upper(value: str | None) -> str:
    return to_text(value).upper()


def _lower(value: str | None) -> str:
    return to_text(value).lower()


def _trim(value: str | None) -> str:
    return to_text(value).strip()


def _count_arg(count: int | float | None, default: int = 1) -> int:
    if count is None:
        return default
    n = _integer(count, "count")
    if n < 0:
        raise ValueError("count must not be negative")
    return n


def _left(value: str | None, count: int | float | None = 1) -> str:
    return to_text(value)[: _count_arg(count)]


def _right(value: str | None, count: int | float | None = 1) -> str:
    n = _count_arg(count)
    if n == 0:
        return ""
    return to_text(value)[-n:]


def _mid(value: str | None, start: int | float | None, count: int | float | None) -> str:
    """Substring from a 1-based start position."""
    begin = _integer(start if start is not None else 1, "start")
    if begin < 1:
        raise ValueError("start must be 1 or greater")
    n = _count_arg(count, default=0)
    return to_text(value)[begin - 1 : begin - 1 + n]


def _len(value: Any) -> int:
    return len(to_text(value))


def _find(needle: str | None, haystack: str | None, start: int | float | None = 1) -> int:
    """1-based position of needle in haystack, or 0 when absent."""
    begin = _integer(start if start is not None else 1, "start")
    if begin < 1:
        raise ValueError("start must be 1 or greater")
    return to_text(haystack).find(to_text(needle), begin - 1) + 1


def _replace(value: str | None, search: str | None, replacement: str | None) -> str:
    """Replace every literal occurrence of search."""
    text = to_text(value)
    if not search:
        return text
    return text.replace(search, to_text(replacement))


def _split(value: str | None, delimiter: str | None) -> list[str]:
    if value is None:
        return []
    if not delimiter:
        return list(value)
    return value.split(delimiter)


def _join(items: list | None, delimiter: str | None = ",") -> str:
    if items is None:
        return ""
    separator = "," if delimiter is None else delimiter
    return separator.join(to_text(item) for item in items)


def _proper(value: str | None) -> str:
    """Capitalize the first letter of every word."""
    return re.sub(r"\w+", lambda m: m.group().capitalize(), to_text(value))


def _format_number(value: int | float, fmt: str) -> str | None:
    match = _NUMBER_FORMAT.fullmatch(fmt)
    if match is None:
        return None
    decimals = len(match.group(1) or "")
    rounded = _quantize(value, decimals)
    grouping = "," if "," in fmt else ""
    return format(rounded, f"{grouping}.{decimals}f")


def _format_date(value: date, fmt: str) -> str:
    moment = value if isinstance(value, datetime) else datetime.combine(value, time())
    parts = {
        "YYYY": f"{moment.year:04d}",
        "MM": f"{moment.month:02d}",
        "DD": f"{moment.day:02d}",
        "HH": f"{moment.hour:02d}",
        "mm": f"{moment.minute:02d}",
        "ss": f"{moment.second:02d}",
    }
    return _DATE_FORMAT_TOKENS.sub(lambda m: parts[m.group()], fmt)


def _text(value: Any, fmt: str | None) -> str:
    """Format a number ("#,##0.00") or a date ("YYYY-MM-DD HH:mm:ss")."""
    if fmt:
        if is_number(value):
            formatted = _format_number(value, fmt)
            if formatted is not None:
                return formatted
        elif is_date(value):
            return _format_date(value, fmt)
    return to_text(value)


def _starts_with(value: str | None, prefix: str | None) -> bool:
    if value is None:
        return False
    return value.startswith(to_text(prefix))


def _ends_with(value: str | None, suffix: str | None) -> bool:
    if value is None:
        return False
    return value.endswith(to_text(suffix))


def _json_parse(value: str | None) -> Any:
    """Parse JSON text; invalid JSON yields null."""
    if value is None:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return None


def _json_stringify(value: Any) -> str:
    return to_json(value)


def _register_text_functions(registry: FunctionRegistry) -> None:
    registry.register(
        FunctionDefinition(
            name="CONCAT",
            description="Joins the text of all arguments",
            category=FunctionCategory.TEXT,
            parameters=[
                FunctionParameter("values", "any", "Values to join", variadic=True)
            ],
            return_type="string",
            examples=[FunctionExample('CONCAT("Hello", " ", "World")', "Hello World")],
            implementation=_concat,
        )
    )

    registry.register(
        FunctionDefinition(
            name="CONCATENATE",
            description="Alias of CONCAT",
            category=FunctionCategory.TEXT,
            parameters=[
                FunctionParameter("values", "any", "Values to join", variadic=True)
            ],
            return_type="string",
            examples=[FunctionExample('CONCATENATE("Order #", 42)', "Order #42")],
            implementation=_concat,
        )
    )

    registry.register(
        FunctionDefinition(
            name="UPPER",
            description="Converts text to uppercase",
            category=FunctionCategory.TEXT,
            parameters=[FunctionParameter("text", "string", "Text to convert")],
            return_type="string",
            examples=[FunctionExample('UPPER("hello")', "HELLO")],
            implementation=_upper,
        )
    )

    registry.register(
        FunctionDefinition(
            name="LOWER",
            description="Converts text to lowercase",
            category=FunctionCategory.TEXT,
            parameters=[FunctionParameter("text", "string", "Text to convert")],
            return_type="string",
            examples=[FunctionExample('LOWER("HELLO")', "hello")],
            implementation=_lower,
        )
    )

    registry.register(
        FunctionDefinition(
            name="TRIM",
            description="Removes whitespace from both ends of text",
            category=FunctionCategory.TEXT,
            parameters=[FunctionParameter("text", "string", "Text to trim")],
            return_type="string",
            examples=[FunctionExample('TRIM("  hi  ")', "hi")],
            implementation=_trim,
        )
    )

    registry.register(
        FunctionDefinition(
            name="LEFT",
            description="Returns the first characters of text",
            category=FunctionCategory.TEXT,
            parameters=[
                FunctionParameter("text", "string", "Source text"),
                FunctionParameter(
                    "count", "number", "Number of characters", required=False, default=1
                ),
            ],
            return_type="string",
            examples=[FunctionExample('LEFT("Hello", 2)', "He")],
            implementation=_left,
        )
    )

    registry.register(
        FunctionDefinition(
            name="RIGHT",
            description="Returns the last characters of text",
            category=FunctionCategory.TEXT,
            parameters=[
                FunctionParameter("text", "string", "Source text"),
                FunctionParameter(
                    "count", "number", "Number of characters", required=False, default=1
                ),
            ],
            return_type="string",
            examples=[FunctionExample('RIGHT("Hello", 3)', "llo")],
            implementation=_right,
        )
    )

    registry.register(
        FunctionDefinition(
            name="MID",
            description="Returns characters from the middle of text",
            category=FunctionCategory.TEXT,
            parameters=[
                FunctionParameter("text", "string", "Source text"),
                FunctionParameter("start", "number", "Starting position (1-based)"),
                FunctionParameter("count", "number", "Number of characters"),
            ],
            return_type="string",
            examples=[FunctionExample('MID("Hello", 2, 3)', "ell")],
            implementation=_mid,
        )
    )

    registry.register(
        FunctionDefinition(
            name="LEN",
            description="Returns the number of characters in the text form of a value",
            category=FunctionCategory.TEXT,
            parameters=[FunctionParameter("text", "any", "Text to measure")],
            return_type="number",
            examples=[FunctionExample('LEN("Hello")', 5)],
            implementation=_len,
        )
    )

    registry.register(
        FunctionDefinition(
            name="FIND",
            description="Returns the 1-based position of text within text, 0 if absent",
            category=FunctionCategory.TEXT,
            parameters=[
                FunctionParameter("search", "string", "Text to find"),
                FunctionParameter("within", "string", "Text to search within"),
                FunctionParameter(
                    "start", "number", "Starting position (1-based)",
                    required=False, default=1,
                ),
            ],
            return_type="number",
            examples=[
                FunctionExample('FIND("l", "Hello")', 3),
                FunctionExample('FIND("z", "Hello")', 0),
            ],
            implementation=_find,
        )
    )

    registry.register(
        FunctionDefinition(
            name="REPLACE",
            description="Replaces every occurrence of a text with another",
            category=FunctionCategory.TEXT,
            parameters=[
                FunctionParameter("text", "string", "Source text"),
                FunctionParameter("search", "string", "Text to find"),
                FunctionParameter("replacement", "string", "Replacement text"),
            ],
            return_type="string",
            examples=[FunctionExample('REPLACE("a-b-c", "-", "+")', "a+b+c")],
            implementation=_replace,
        )
    )

    registry.register(
        FunctionDefinition(
            name="SPLIT",
            description="Splits text into an array on a delimiter",
            category=FunctionCategory.TEXT,
            parameters=[
                FunctionParameter("text", "string", "Text to split"),
                FunctionParameter("delimiter", "string", "Delimiter"),
            ],
            return_type="array",
            examples=[FunctionExample('SPLIT("a,b,c", ",")', ["a", "b", "c"])],
            implementation=_split,
        )
    )

    registry.register(
        FunctionDefinition(
            name="JOIN",
            description="Joins array elements into text",
            category=FunctionCategory.TEXT,
            parameters=[
                FunctionParameter("array", "array", "Array to join"),
                FunctionParameter(
                    "delimiter", "string", "Delimiter", required=False, default=","
                ),
            ],
            return_type="string",
            examples=[
                FunctionExample('JOIN(["a", "b", "c"], "-")', "a-b-c"),
                FunctionExample("JOIN([1, 2, 3])", "1,2,3"),
            ],
            implementation=_join,
        )
    )

    registry.register(
        FunctionDefinition(
            name="PROPER",
            description="Capitalizes the first letter of each word",
            category=FunctionCategory.TEXT,
            parameters=[FunctionParameter("text", "string", "Text to convert")],
            return_type="string",
            examples=[FunctionExample('PROPER("hello world")', "Hello World")],
            implementation=_proper,
        )
    )

    registry.register(
        FunctionDefinition(
            name="TEXT",
            description="Formats a number (#,##0.00) or a date (YYYY-MM-DD HH:mm:ss) as text",
            category=FunctionCategory.TEXT,
            parameters=[
                FunctionParameter("value", "any", "Value to format"),
                FunctionParameter("format", "string", "Format string"),
            ],
            return_type="string",
            examples=[
                FunctionExample('TEXT(1234.5, "#,##0.00")', "1,234.50"),
                FunctionExample('TEXT(DATE(2024, 1, 15), "YYYY-MM-DD")', "2024-01-15"),
            ],
            implementation=_text,
        )
    )

    registry.register(
        FunctionDefinition(
            name="STRING",
            description="Converts a value to its text form",
            category=FunctionCategory.TEXT,
            parameters=[FunctionParameter("value", "any", "Value to convert")],
            return_type="string",
            examples=[
                FunctionExample("STRING(123)", "123"),
                FunctionExample("STRING(true)", "true"),
            ],
            implementation=to_text,
        )
    )

    registry.register(
        FunctionDefinition(
            name="STARTSWITH",
            description="Tests whether text starts with a prefix",
            category=FunctionCategory.TEXT,
            parameters=[
                FunctionParameter("text", "string", "Text to test"),
                FunctionParameter("prefix", "string", "Prefix to check for"),
            ],
            return_type="boolean",
            examples=[FunctionExample('STARTSWITH("PRD-001", "PRD-")', True)],
            implementation=_starts_with,
        )
    )

    registry.register(
        FunctionDefinition(
            name="ENDSWITH",
            description="Tests whether text ends with a suffix",
            category=FunctionCategory.TEXT,
            parameters=[
                FunctionParameter("text", "string", "Text to test"),
                FunctionParameter("suffix", "string", "Suffix to check for"),
            ],
            return_type="boolean",
            examples=[FunctionExample('ENDSWITH("ada@example.com", "@example.com")', True)],
            implementation=_ends_with,
        )
    )

    registry.register(
        FunctionDefinition(
            name="JSON_PARSE",
            description="Parses JSON text; invalid JSON yields null",
            category=FunctionCategory.TEXT,
            parameters=[FunctionParameter("text", "string", "JSON text")],
            return_type="any",
            examples=[
                FunctionExample("JSON_PARSE('{\"a\": 1}')", {"a": 1}),
                FunctionExample('JSON_PARSE("not json")', None),
            ],
            implementation=_json_parse,
        )
    )

    registry.register(
        FunctionDefinition(
            name="JSON_STRINGIFY",
            description="Converts a value to compact JSON text",
            category=FunctionCategory.TEXT,
            parameters=[FunctionParameter("value", "any", "Value to convert")],
            return_type="string",
            examples=[FunctionExample("JSON_STRINGIFY({a: 1})", '{"a":1}')],
            implementation=_json_stringify,
        )
    )


# -----------------------------------------------------------------------------
# Logic Functions
# -----------------------------------------------------------------------------


def _if(condition: Any, when_true: Any, when_false: Any = None) -> Any:
    """Both branches are evaluated; use `? :` to evaluate only one."""
    return when_true if to_bool(condition) else when_false


def _ifs(*args: Any) -> Any:
    """Return the value paired with the first truthy condition."""
    if len(args) % 2:
        raise ValueError("expects condition/value pairs")
    for index in range(0, len(args), 2):
        if to_bool(args[index]):
            return args[index + 1]
    return None


def _switch(value: Any, *cases: Any) -> Any:
    """Match value against case/result pairs; an odd trailing case is the default."""
    for index in range(0, len(cases) - 1, 2):
        if strict_equals(value, cases[index]):
            return cases[index + 1]
    if len(cases) % 2:
        return cases[-1]
    return None


def _and(*args: Any) -> bool:
    return all(to_bool(arg) for arg in args)


def _or(*args: Any) -> bool:
    return any(to_bool(arg) for arg in args)


def _not(value: Any) -> bool:
    return not to_bool(value)


def _coalesce(*args: Any) -> Any:
    for arg in args:
        if arg is not None:
            return arg
    return None


def _register_logic_functions(registry: FunctionRegistry) -> None:
    registry.register(
        FunctionDefinition(
            name="IF",
            description="Returns one value if a condition is true and another if false",
            category=FunctionCategory.LOGIC,
            parameters=[
                FunctionParameter("condition", "any", "Condition to test"),
                FunctionParameter("trueValue", "any", "Value if true"),
                FunctionParameter(
                    "falseValue", "any", "Value if false", required=False, default=None
                ),
            ],
            return_type="any",
            examples=[
                FunctionExample('IF(5 > 3, "yes", "no")', "yes"),
                FunctionExample('IF(false, "yes")', None),
            ],
            implementation=_if,
        )
    )

    registry.register(
        FunctionDefinition(
            name="IFS",
            description="Returns the value of the first true condition",
            category=FunctionCategory.LOGIC,
            parameters=[
                FunctionParameter(
                    "pairs", "any", "Condition/value pairs", variadic=True
                )
            ],
            return_type="any",
            examples=[
                FunctionExample('IFS(85 >= 90, "A", 85 >= 80, "B", true, "C")', "B")
            ],
            implementation=_ifs,
        )
    )

    registry.register(
        FunctionDefinition(
            name="SWITCH",
            description="Matches a value against cases, with an optional default",
            category=FunctionCategory.LOGIC,
            parameters=[
                FunctionParameter("expression", "any", "Value to match"),
                FunctionParameter(
                    "cases", "any", "Case/result pairs, then an optional default",
                    variadic=True,
                ),
            ],
            return_type="any",
            examples=[
                FunctionExample('SWITCH("I", "A", "Active", "I", "Inactive", "Unknown")', "Inactive"),
                FunctionExample('SWITCH("X", "A", "Active", "Unknown")', "Unknown"),
            ],
            implementation=_switch,
        )
    )

    registry.register(
        FunctionDefinition(
            name="AND",
            description="Returns true if every argument is truthy",
            category=FunctionCategory.LOGIC,
            parameters=[
                FunctionParameter("values", "any", "Values to test", variadic=True)
            ],
            return_type="boolean",
            examples=[FunctionExample("AND(1 > 0, 2 > 0)", True)],
            implementation=_and,
        )
    )

    registry.register(
        FunctionDefinition(
            name="OR",
            description="Returns true if any argument is truthy",
            category=FunctionCategory.LOGIC,
            parameters=[
                FunctionParameter("values", "any", "Values to test", variadic=True)
            ],
            return_type="boolean",
            examples=[FunctionExample("OR(1 > 2, 2 > 1)", True)],
            implementation=_or,
        )
    )

    registry.register(
        FunctionDefinition(
            name="NOT",
            description="Returns the boolean opposite of a value",
            category=FunctionCategory.LOGIC,
            parameters=[FunctionParameter("value", "any", "Value to negate")],
            return_type="boolean",
            examples=[FunctionExample("NOT(true)", False)],
            implementation=_not,
        )
    )

    registry.register(
        FunctionDefinition(
            name="ISBLANK",
            description="Returns true for null or empty text",
            category=FunctionCategory.LOGIC,
            parameters=[FunctionParameter("value", "any", "Value to test")],
            return_type="boolean",
            examples=[
                FunctionExample('ISBLANK("")', True),
                FunctionExample("ISBLANK(0)", False),
            ],
            implementation=is_blank,
        )
    )

    registry.register(
        FunctionDefinition(
            name="COALESCE",
            description="Returns the first non-null argument",
            category=FunctionCategory.LOGIC,
            parameters=[
                FunctionParameter("values", "any", "Values to check", variadic=True)
            ],
            return_type="any",
            examples=[FunctionExample('COALESCE(null, "", "default")', "")],
            implementation=_coalesce,
        )
    )

    registry.register(
        FunctionDefinition(
            name="BOOLEAN",
            description="Converts a value to a boolean using formula truthiness",
            category=FunctionCategory.LOGIC,
            parameters=[FunctionParameter("value", "any", "Value to convert")],
            return_type="boolean",
            examples=[
                FunctionExample("BOOLEAN(1)", True),
                FunctionExample('BOOLEAN("")', False),
            ],
            implementation=to_bool,
        )
    )


# -----------------------------------------------------------------------------
# Date Functions
# -----------------------------------------------------------------------------

_UNIT_SECONDS = {
    "week": 7 * 24 * 3600,
    "day": 24 * 3600,
    "hour": 3600,
    "minute": 60,
    "second": 1,
}


def _unit(unit: str | None, default: str) -> str:
    name = (unit or default).strip().lower()
    if name.endswith("s"):
        name = name[:-1]
    if name not in _UNIT_SECONDS and name not in ("year", "month"):
        raise ValueError(f"unknown date unit '{unit}'")
    return name


def _as_datetime(value: date, like: date | None = None) -> datetime:
    if isinstance(value, datetime):
        return value
    tzinfo = like.tzinfo if isinstance(like, datetime) else None
    return datetime.combine(value, time(), tzinfo=tzinfo)


def _add_months(value: date, months: int) -> date:
    """Shift by whole months, clamping the day to the end of the month."""
    total = value.year * 12 + value.month - 1 + months
    year, month = divmod(total, 12)
    month += 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def _months_between(start: date, end: date) -> int:
    months = (end.year - start.year) * 12 + end.month - start.month
    if months > 0 and _add_months(start, months) > end:
        months -= 1
    elif months < 0 and _add_months(start, months) < end:
        months += 1
    return months


def _now(context: EvaluationContext) -> datetime:
    """The instant captured when the context was built."""
    return context.now


def _today(context: EvaluationContext) -> date:
    return context.now.date()


def _date(year: int | float | None, month: int | float | None, day: int | float | None) -> date | None:
    if year is None or month is None or day is None:
        return None
    return date(_integer(year, "year"), _integer(month, "month"), _integer(day, "day"))


def _year(value: Any) -> int | None:
    return None if value is None else to_date(value).year


def _month(value: Any) -> int | None:
    return None if value is None else to_date(value).month


def _day(value: Any) -> int | None:
    return None if value is None else to_date(value).day


def _weekday(value: Any) -> int | None:
    """Day of the week, 1 (Sunday) through 7 (Saturday)."""
    if value is None:
        return None
    return to_date(value).isoweekday() % 7 + 1


def _hour(value: Any) -> int | None:
    if value is None:
        return None
    moment = to_date(value)
    return moment.hour if isinstance(moment, datetime) else 0


def _minute(value: Any) -> int | None:
    if value is None:
        return None
    moment = to_date(value)
    return moment.minute if isinstance(moment, datetime) else 0


def _date_add(value: Any, amount: int | float | None, unit: str | None) -> date | None:
    if value is None or amount is None:
        return None
    start = to_date(value)
    name = _unit(unit, "day")

    if name in ("year", "month"):
        months = _integer(amount, "amount") * (12 if name == "year" else 1)
        return _add_months(start, months)

    if name in ("day", "week") and not isinstance(start, datetime) and not isinstance(amount, float):
        return start + timedelta(days=amount * (7 if name == "week" else 1))

    return _as_datetime(start) + timedelta(seconds=amount * _UNIT_SECONDS[name])


def _date_diff(start: Any, end: Any, unit: str | None = "days") -> int | None:
    """Whole units from start to end; negative when end is earlier."""
    if start is None or end is None:
        return None
    first = to_date(start)
    second = to_date(end)
    if isinstance(first, datetime) != isinstance(second, datetime):
        first = _as_datetime(first, second)
        second = _as_datetime(second, first)

    name = _unit(unit, "day")
    if name in ("year", "month"):
        months = _months_between(first, second)
        return int(months / 12) if name == "year" else months

    seconds = (second - first).total_seconds()
    return math.floor(seconds / _UNIT_SECONDS[name])


def _register_date_functions(registry: FunctionRegistry) -> None:
    registry.register(
        FunctionDefinition(
            name="NOW",
            description="Returns the evaluation's current date and time",
            category=FunctionCategory.DATE,
            parameters=[],
            return_type="date",
            examples=[FunctionExample("YEAR(NOW()) >= 2024", True)],
            implementation=_now,
            uses_context=True,
        )
    )

    registry.register(
        FunctionDefinition(
            name="TODAY",
            description="Returns the evaluation's current date (no time component)",
            category=FunctionCategory.DATE,
            parameters=[],
            return_type="date",
            examples=[FunctionExample("TODAY() == NOW()", True)],
            implementation=_today,
            uses_context=True,
        )
    )

    registry.register(
        FunctionDefinition(
            name="DATE",
            description="Builds a date from year, month (1-12) and day",
            category=FunctionCategory.DATE,
            parameters=[
                FunctionParameter("year", "number", "Year"),
                FunctionParameter("month", "number", "Month (1-12)"),
                FunctionParameter("day", "number", "Day of the month"),
            ],
            return_type="date",
            examples=[FunctionExample("DATE(2024, 1, 15)", date(2024, 1, 15))],
            implementation=_date,
        )
    )

    registry.register(
        FunctionDefinition(
            name="YEAR",
            description="Extracts the year from a date",
            category=FunctionCategory.DATE,
            parameters=[FunctionParameter("date", "date", "The date")],
            return_type="number",
            examples=[FunctionExample('YEAR("2024-03-05")', 2024)],
            implementation=_year,
        )
    )

    registry.register(
        FunctionDefinition(
            name="MONTH",
            description="Extracts the month (1-12) from a date",
            category=FunctionCategory.DATE,
            parameters=[FunctionParameter("date", "date", "The date")],
            return_type="number",
            examples=[FunctionExample("MONTH(DATE(2024, 3, 5))", 3)],
            implementation=_month,
        )
    )

    registry.register(
        FunctionDefinition(
            name="DAY",
            description="Extracts the day of the month from a date",
            category=FunctionCategory.DATE,
            parameters=[FunctionParameter("date", "date", "The date")],
            return_type="number",
            examples=[FunctionExample("DAY(DATE(2024, 3, 5))", 5)],
            implementation=_day,
        )
    )

    registry.register(
        FunctionDefinition(
            name="WEEKDAY",
            description="Returns the day of the week, 1 (Sunday) through 7 (Saturday)",
            category=FunctionCategory.DATE,
            parameters=[FunctionParameter("date", "date", "The date")],
            return_type="number",
            examples=[FunctionExample("WEEKDAY(DATE(2024, 1, 15))", 2)],
            implementation=_weekday,
        )
    )

    registry.register(
        FunctionDefinition(
            name="HOUR",
            description="Extracts the hour (0-23) from a date and time",
            category=FunctionCategory.DATE,
            parameters=[FunctionParameter("date", "date", "The date and time")],
            return_type="number",
            examples=[FunctionExample('HOUR("2024-01-15T10:30:00")', 10)],
            implementation=_hour,
        )
    )

    registry.register(
        FunctionDefinition(
            name="MINUTE",
            description="Extracts the minute (0-59) from a date and time",
            category=FunctionCategory.DATE,
            parameters=[FunctionParameter("date", "date", "The date and time")],
            return_type="number",
            examples=[FunctionExample('MINUTE("2024-01-15T10:30:00")', 30)],
            implementation=_minute,
        )
    )

    registry.register(
        FunctionDefinition(
            name="DATEADD",
            description="Adds an amount of years, months, weeks, days, hours, minutes or seconds",
            category=FunctionCategory.DATE,
            parameters=[
                FunctionParameter("date", "date", "Starting date"),
                FunctionParameter("amount", "number", "Amount to add (negative to subtract)"),
                FunctionParameter("unit", "string", "Unit, e.g. \"days\" or \"months\""),
            ],
            return_type="date",
            examples=[
                FunctionExample('DATEADD(DATE(2024, 1, 15), 7, "days")', date(2024, 1, 22)),
                FunctionExample('DATEADD(DATE(2024, 1, 31), 1, "months")', date(2024, 2, 29)),
            ],
            implementation=_date_add,
        )
    )

    registry.register(
        FunctionDefinition(
            name="DATEDIFF",
            description="Returns the whole number of units between two dates",
            category=FunctionCategory.DATE,
            parameters=[
                FunctionParameter("startDate", "date", "Start date"),
                FunctionParameter("endDate", "date", "End date"),
                FunctionParameter(
                    "unit", "string", "Unit, e.g. \"days\" or \"months\"",
                    required=False, default="days",
                ),
            ],
            return_type="number",
            examples=[
                FunctionExample("DATEDIFF(DATE(2024, 1, 1), DATE(2024, 1, 31))", 30),
                FunctionExample('DATEDIFF(DATE(2024, 1, 31), DATE(2024, 3, 30), "months")', 1),
            ],
            implementation=_date_diff,
        )
    )


# -----------------------------------------------------------------------------
# Array Functions
# -----------------------------------------------------------------------------

_SORTABLE_TYPES = {"number", "string", "date"}


def _first(items: list | None) -> Any:
    return items[0] if items else None


def _last(items: list | None) -> Any:
    return items[-1] if items else None


def _index(items: list | None, index: int | float | None) -> Any:
    """0-based element access; out of range yields null."""
    if items is None or index is None:
        return None
    position = _integer(index, "index")
    if 0 <= position < len(items):
        return items[position]
    return None


def _length(value: Any) -> int:
    if value is None:
        return 0
    return len(value)


def _contains(collection: Any, value: Any) -> bool:
    if collection is None:
        return False
    if isinstance(collection, str):
        return value is not None and to_text(value) in collection
    return any(strict_equals(item, value) for item in collection)


def _unique(items: list | None) -> list:
    """Drop repeated values, keeping first occurrences."""
    result: list = []
    for item in items or []:
        if not any(strict_equals(item, seen) for seen in result):
            result.append(item)
    return result


def _sort(items: list | None, descending: Any = False) -> list:
    """Sort numbers, text or dates; nulls always go last."""
    if items is None:
        return []
    present = [item for item in items if item is not None]
    kinds = {type_name(item) for item in present}
    if len(kinds) > 1 or not kinds <= _SORTABLE_TYPES:
        raise TypeError(
            f"cannot sort values of type {', '.join(sorted(kinds))}"
        )
    ordered = sorted(present, key=cmp_to_key(compare), reverse=to_bool(descending))
    return ordered + [None] * (len(items) - len(present))


def _filter(items: list | None, value: Any) -> list:
    return [item for item in items or [] if strict_equals(item, value)]


def _count_if(items: list | None, value: Any) -> int:
    return sum(1 for item in items or [] if strict_equals(item, value))


def _register_array_functions(registry: FunctionRegistry) -> None:
    registry.register(
        FunctionDefinition(
            name="FIRST",
            description="Returns the first element of an array",
            category=FunctionCategory.ARRAY,
            parameters=[FunctionParameter("array", "array", "The array")],
            return_type="any",
            examples=[FunctionExample("FIRST([1, 2, 3])", 1)],
            implementation=_first,
        )
    )

    registry.register(
        FunctionDefinition(
            name="LAST",
            description="Returns the last element of an array",
            category=FunctionCategory.ARRAY,
            parameters=[FunctionParameter("array", "array", "The array")],
            return_type="any",
            examples=[FunctionExample("LAST([1, 2, 3])", 3)],
            implementation=_last,
        )
    )

    registry.register(
        FunctionDefinition(
            name="INDEX",
            description="Returns the element at a 0-based index, null if out of range",
            category=FunctionCategory.ARRAY,
            parameters=[
                FunctionParameter("array", "array", "The array"),
                FunctionParameter("index", "number", "Index (0-based)"),
            ],
            return_type="any",
            examples=[
                FunctionExample('INDEX(["a", "b", "c"], 1)', "b"),
                FunctionExample("INDEX([1, 2], 5)", None),
            ],
            implementation=_index,
        )
    )

    registry.register(
        FunctionDefinition(
            name="LENGTH",
            description="Returns the number of elements in an array (or characters in text)",
            category=FunctionCategory.ARRAY,
            parameters=[FunctionParameter("array", "array|string|object", "The array")],
            return_type="number",
            examples=[FunctionExample("LENGTH([1, 2, 3])", 3)],
            implementation=_length,
        )
    )

    registry.register(
        FunctionDefinition(
            name="CONTAINS",
            description="Tests whether an array holds a value (or text holds a substring)",
            category=FunctionCategory.ARRAY,
            parameters=[
                FunctionParameter("array", "array|string", "Array or text to search"),
                FunctionParameter("value", "any", "Value to find"),
            ],
            return_type="boolean",
            examples=[
                FunctionExample('CONTAINS(["urgent", "billing"], "urgent")', True),
                FunctionExample("CONTAINS([1, 2], \"1\")", False),
            ],
            implementation=_contains,
        )
    )

    registry.register(
        FunctionDefinition(
            name="UNIQUE",
            description="Removes repeated values, keeping first occurrences",
            category=FunctionCategory.ARRAY,
            parameters=[FunctionParameter("array", "array", "The array")],
            return_type="array",
            examples=[FunctionExample("UNIQUE([1, 2, 2, 3, 1])", [1, 2, 3])],
            implementation=_unique,
        )
    )

    registry.register(
        FunctionDefinition(
            name="SORT",
            description="Sorts numbers, text or dates; nulls go last",
            category=FunctionCategory.ARRAY,
            parameters=[
                FunctionParameter("array", "array", "Array to sort"),
                FunctionParameter(
                    "descending", "boolean", "Sort descending", required=False, default=False
                ),
            ],
            return_type="array",
            examples=[
                FunctionExample("SORT([3, 1, 2])", [1, 2, 3]),
                FunctionExample('SORT(["b", "c", "a"], true)', ["c", "b", "a"]),
            ],
            implementation=_sort,
        )
    )

    registry.register(
        FunctionDefinition(
            name="FILTER",
            description="Keeps the elements equal to a value",
            category=FunctionCategory.ARRAY,
            parameters=[
                FunctionParameter("array", "array", "Array to filter"),
                FunctionParameter("value", "any", "Value to keep"),
            ],
            return_type="array",
            examples=[
                FunctionExample('FILTER(["active", "closed", "active"], "active")', ["active", "active"])
            ],
            implementation=_filter,
        )
    )

    registry.register(
        FunctionDefinition(
            name="COUNTIF",
            description="Counts the elements equal to a value",
            category=FunctionCategory.ARRAY,
            parameters=[
                FunctionParameter("array", "array", "Array to search"),
                FunctionParameter("value", "any", "Value to count"),
            ],
            return_type="number",
            examples=[
                FunctionExample('COUNTIF(["done", "open", "done"], "done")', 2)
            ],
            implementation=_count_if,
        )
    )


# -----------------------------------------------------------------------------
# Lookup Functions
# -----------------------------------------------------------------------------


def _lookup(
    context: EvaluationContext,
    dataset: str | None,
    key_field: str | None,
    key_value: Any,
    return_field: str | None,
) -> Any:
    """Return a field of the first dataset record whose key field equals key_value."""
    records = context.datasets.get(dataset) if dataset is not None else None
    if records is None:
        raise ValueError(f"unknown dataset '{dataset}'")
    for record in records:
        if is_object(record) and strict_equals(record.get(key_field), key_value):
            return record.get(return_field)
    return None


def _vlookup(value: Any, table: list | None, column: int | float | None, exact: Any = True) -> Any:
    """Find a row by its first cell and return a 1-based column.

    With exact=false the table must be sorted by its first column; the
    last row whose first cell is not greater than value matches.
    """
    if table is None or column is None:
        return None
    index = _integer(column, "column")
    if index < 1:
        raise ValueError("column must be 1 or greater")

    rows = [row for row in table if is_array(row) and row]
    match = None
    if exact is None or to_bool(exact):
        match = next((row for row in rows if strict_equals(row[0], value)), None)
    elif value is not None:
        for row in rows:
            if type_name(row[0]) != type_name(value):
                continue
            if compare(row[0], value) > 0:
                break
            match = row

    if match is None or index > len(match):
        return None
    return match[index - 1]


def _register_lookup_functions(registry: FunctionRegistry) -> None:
    registry.register(
        FunctionDefinition(
            name="LOOKUP",
            description="Returns a field of the first dataset record whose key field matches",
            category=FunctionCategory.LOOKUP,
            parameters=[
                FunctionParameter("datasetName", "string", "Dataset name"),
                FunctionParameter("keyField", "string", "Field to match"),
                FunctionParameter("keyValue", "any", "Value to find"),
                FunctionParameter("returnField", "string", "Field to return"),
            ],
            return_type="any",
            examples=[
                FunctionExample('LOOKUP("employees", "id", 2, "name")', "Grace"),
                FunctionExample('LOOKUP("employees", "id", 99, "name")', None),
            ],
            implementation=_lookup,
            uses_context=True,
        )
    )

    registry.register(
        FunctionDefinition(
            name="VLOOKUP",
            description="Finds a row of a table by its first column and returns another column",
            category=FunctionCategory.LOOKUP,
            parameters=[
                FunctionParameter("value", "any", "Value to find in the first column"),
                FunctionParameter("table", "array", "Array of rows"),
                FunctionParameter("column", "number", "Column to return (1-based)"),
                FunctionParameter(
                    "exact", "boolean", "Exact match only", required=False, default=True
                ),
            ],
            return_type="any",
            examples=[
                FunctionExample('VLOOKUP("b", [["a", 1], ["b", 2]], 2)', 2),
                FunctionExample("VLOOKUP(75, [[0, \"F\"], [60, \"D\"], [70, \"C\"], [80, \"B\"]], 2, false)", "C"),
            ],
            implementation=_vlookup,
        )
    )


_DEFAULT_REGISTRY = build_default_registry()
