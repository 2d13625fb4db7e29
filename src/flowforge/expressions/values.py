"""Value semantics shared by the evaluator and the built-in functions.

Formula values are plain Python objects:
- null: None
- boolean: bool
- number: int or float (bool is never a number)
- string: str
- date: datetime.date or datetime.datetime
- array: list or tuple
- object: dict (any Mapping from the host)
"""

import json
import math
from collections.abc import Mapping
from datetime import date, datetime
from typing import Any

from flowforge.expressions.errors import EvaluationError


def is_number(value: Any) -> bool:
    """True for int and float, never for bool."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_date(value: Any) -> bool:
    return isinstance(value, date)


def is_array(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def is_object(value: Any) -> bool:
    return isinstance(value, Mapping)


def type_name(value: Any) -> str:
    """Return the formula-level type name of a value."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if is_number(value):
        return "number"
    if isinstance(value, str):
        return "string"
    if is_date(value):
        return "date"
    if is_array(value):
        return "array"
    if is_object(value):
        return "object"
    return type(value).__name__


def to_bool(value: Any) -> bool:
    """Truthiness: null, false, 0, NaN, "" and empty collections are false."""
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if is_number(value):
        return value != 0 and not math.isnan(value)
    if isinstance(value, (str, list, tuple)) or is_object(value):
        return len(value) > 0
    return True


def is_blank(value: Any) -> bool:
    return value is None or value == ""


def _same_day(left: date, right: date) -> tuple[date, date]:
    """Reduce a date/datetime pair to comparable values."""
    left_is_dt = isinstance(left, datetime)
    right_is_dt = isinstance(right, datetime)
    if left_is_dt and not right_is_dt:
        return left.date(), right
    if right_is_dt and not left_is_dt:
        return left, right.date()
    return left, right


def strict_equals(left: Any, right: Any) -> bool:
    """Equality without cross-type coercion.

    Numbers compare numerically across int/float, a date equals a datetime
    on the same calendar day, and arrays/objects compare structurally.
    """
    if left is None or right is None:
        return left is None and right is None

    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right

    if is_number(left) and is_number(right):
        return left == right

    if isinstance(left, str) and isinstance(right, str):
        return left == right

    if is_date(left) and is_date(right):
        left, right = _same_day(left, right)
        try:
            return left == right
        except TypeError:
            return False

    if is_array(left) and is_array(right):
        return len(left) == len(right) and all(
            strict_equals(a, b) for a, b in zip(left, right)
        )

    if is_object(left) and is_object(right):
        return left.keys() == right.keys() and all(
            strict_equals(left[key], right[key]) for key in left
        )

    return False


def compare(left: Any, right: Any) -> int:
    """Order two values, returning -1, 0, or 1.

    null orders before every value. Only number/number, string/string and
    date/date pairs are comparable; anything else raises EvaluationError.
    """
    if left is None or right is None:
        if left is None and right is None:
            return 0
        return -1 if left is None else 1

    comparable = (
        (is_number(left) and is_number(right))
        or (isinstance(left, str) and isinstance(right, str))
        or (is_date(left) and is_date(right))
    )
    if not comparable:
        raise EvaluationError(
            f"Cannot compare {type_name(left)} with {type_name(right)}"
        )

    if is_date(left):
        left, right = _same_day(left, right)

    try:
        if left < right:
            return -1
        if left > right:
            return 1
    except TypeError:
        # naive vs aware datetimes
        raise EvaluationError(
            "Cannot compare dates with and without a timezone"
        ) from None
    return 0


# Stays below the interpreter's int-to-str digit limit
MAX_INTEGER_BITS = 10_000


def check_number(value: Any) -> Any:
    """Reject infinite or NaN floats and integers wider than MAX_INTEGER_BITS.

    Raises:
        OverflowError: If the number is out of range
    """
    if isinstance(value, float) and not math.isfinite(value):
        raise OverflowError("result is not a finite number")
    if isinstance(value, int) and value.bit_length() > MAX_INTEGER_BITS:
        raise OverflowError("integer result is too large")
    return value


def multiply(left: int | float, right: int | float) -> int | float:
    """Multiplication for the `*` operator.

    Raises:
        OverflowError: If the product is out of range
    """
    if (
        isinstance(left, int)
        and isinstance(right, int)
        and left.bit_length() + right.bit_length() > MAX_INTEGER_BITS + 1
    ):
        raise OverflowError("integer result is too large")
    return check_number(left * right)


def power(base: int | float, exponent: int | float) -> int | float:
    """Exponentiation shared by `**` and POWER.

    Integer results are sized from the operands before anything is computed.

    Raises:
        ValueError: If the result would be a complex number
        ArithmeticError: On overflow or zero raised to a negative power
    """
    if isinstance(base, int) and isinstance(exponent, int) and exponent > 0:
        # |base| ** exponent has at least (bit_length - 1) * exponent + 1 bits
        if (abs(base).bit_length() - 1) * exponent > MAX_INTEGER_BITS:
            raise OverflowError("integer result is too large")
    result = base ** exponent
    if isinstance(result, complex):
        raise ValueError("result is not a real number")
    return check_number(result)


def format_number(value: int | float) -> str:
    """Render a number; integral floats drop their fractional part."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _json_default(value: Any) -> Any:
    if is_date(value):
        return value.isoformat()
    if isinstance(value, tuple):
        return list(value)
    if is_object(value):
        return dict(value)
    return str(value)


def to_json(value: Any) -> str:
    """Compact JSON text for a formula value."""
    return json.dumps(
        value, default=_json_default, ensure_ascii=False, separators=(",", ":")
    )


def to_text(value: Any) -> str:
    """Text form used by concatenation and the text functions.

    null renders as "", booleans as true/false, dates in ISO format,
    arrays and objects as compact JSON.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if is_number(value):
        return format_number(value)
    if isinstance(value, str):
        return value
    if is_date(value):
        return value.isoformat()
    if is_array(value) or is_object(value):
        return to_json(value)
    return str(value)


def to_date(value: Any) -> date:
    """Accept a date/datetime or an ISO-8601 string.

    Raises:
        ValueError: If the value is not a date or a parseable ISO string
    """
    if is_date(value):
        return value
    if isinstance(value, str):
        text = value.strip()
        if len(text) == 10:
            return date.fromisoformat(text)
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    raise ValueError(f"Expected a date, got {type_name(value)}")


def flatten(args: tuple[Any, ...] | list[Any]) -> list[Any]:
    """Flatten array arguments one level and drop nulls."""
    result = []
    for arg in args:
        if is_array(arg):
            result.extend(item for item in arg if item is not None)
        elif arg is not None:
            result.append(arg)
    return result
