"""
Amount parsing for values coming from the platform API.

The platform serializes money either as a plain number, as a numeric string,
or (when a decimal.js instance leaks into JSON) as ``{"s": sign, "e": exponent,
"d": [digit groups]}`` where each group after the first holds seven base-10
digits. All of them are turned into a ``Decimal`` here and nowhere else.
"""
from decimal import Decimal, InvalidOperation
from typing import Any

DIGIT_GROUP_WIDTH = 7


def _from_decimal_js(value: dict) -> Decimal:
    sign = value.get("s")
    exponent = value.get("e")
    groups = value.get("d")

    if sign not in (1, -1) or not isinstance(exponent, int):
        raise ValueError(f"Malformed decimal object: {value!r}")
    if not isinstance(groups, list) or not groups:
        raise ValueError(f"Decimal object without digits: {value!r}")
    if not all(isinstance(g, int) and g >= 0 for g in groups):
        raise ValueError(f"Decimal object with invalid digit groups: {value!r}")

    digits = str(groups[0]) + "".join(str(g).zfill(DIGIT_GROUP_WIDTH) for g in groups[1:])
    # exponent is the power of ten of the most significant digit
    scale = exponent - (len(digits) - 1)
    result = Decimal(int(digits)).scaleb(scale)
    if sign < 0:
        result = -result
    return result


def parse_amount(value: Any) -> Decimal:
    """Convert any platform amount representation into a ``Decimal``.

    Raises:
        ValueError: if the value is missing or cannot represent a number
    """
    if value is None:
        raise ValueError("Amount is required")
    if isinstance(value, bool):
        raise ValueError(f"Invalid amount: {value!r}")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        # go through repr so 19.99 stays 19.99
        result = Decimal(repr(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise ValueError(f"Invalid amount: {value!r}")
    elif isinstance(value, dict):
        result = _from_decimal_js(value)
    else:
        raise ValueError(f"Unsupported amount type: {type(value).__name__}")

    if not result.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return result
