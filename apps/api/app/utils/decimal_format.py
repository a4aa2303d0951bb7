from __future__ import annotations

from decimal import Decimal

# Ledger columns are Numeric(18,4); responses drop the padding.
Amount = Decimal | int | float | str


def to_decimal(value: Amount | None) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def format_decimal(value: Amount | None) -> str:
    normalized = to_decimal(value).normalize()
    text = format(normalized, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    if text in ("", "-0"):
        return "0"
    return text
