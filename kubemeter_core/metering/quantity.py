from __future__ import annotations

import re
from decimal import ROUND_CEILING, Decimal, InvalidOperation

_BINARY_SUFFIXES = {
    "Ki": Decimal(2) ** 10,
    "Mi": Decimal(2) ** 20,
    "Gi": Decimal(2) ** 30,
    "Ti": Decimal(2) ** 40,
    "Pi": Decimal(2) ** 50,
    "Ei": Decimal(2) ** 60,
}

_DECIMAL_SUFFIXES = {
    "n": Decimal("1e-9"),
    "u": Decimal("1e-6"),
    "m": Decimal("1e-3"),
    "": Decimal(1),
    "k": Decimal("1e3"),
    "M": Decimal("1e6"),
    "G": Decimal("1e9"),
    "T": Decimal("1e12"),
    "P": Decimal("1e15"),
    "E": Decimal("1e18"),
}

_QUANTITY_RE = re.compile(
    r"^(?P<number>[+-]?(?:\d+\.?\d*|\.\d+))"
    r"(?:(?P<exponent>[eE][+-]?\d+)|(?P<suffix>Ki|Mi|Gi|Ti|Pi|Ei|[numkMGTPE])?)$"
)


def parse_quantity(value: str | int | float | Decimal) -> Decimal:
    """Parse a Kubernetes-style quantity ("500m", "256Mi", "1e3") to a Decimal."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    text = str(value).strip()
    match = _QUANTITY_RE.match(text)
    if not match:
        raise ValueError(f"Invalid quantity: {value!r}")
    try:
        number = Decimal(match.group("number"))
    except InvalidOperation as exc:  # pragma: no cover - guarded by the regex
        raise ValueError(f"Invalid quantity: {value!r}") from exc
    exponent = match.group("exponent")
    if exponent:
        return number * (Decimal(10) ** int(exponent[1:]))
    suffix = match.group("suffix") or ""
    if suffix in _BINARY_SUFFIXES:
        return number * _BINARY_SUFFIXES[suffix]
    return number * _DECIMAL_SUFFIXES[suffix]


def milli_value(quantity: Decimal) -> int:
    """Return the quantity in thousandths, rounded up."""
    scaled = (quantity * 1000).to_integral_value(rounding=ROUND_CEILING)
    return int(scaled)


def billed_units(quantity: Decimal, unit: Decimal) -> int:
    """ceil(milli(quantity) / milli(unit)) in exact integer arithmetic."""
    unit_milli = milli_value(unit)
    if unit_milli <= 0:
        raise ValueError(f"Billing unit must be positive: {unit}")
    return -(-milli_value(quantity) // unit_milli)
