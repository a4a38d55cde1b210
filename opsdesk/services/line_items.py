# opsdesk/services/line_items.py
"""
Line item validation and money recomputation.

All amounts are integer minor units (cents). Quantities may be fractional
(e.g. 1.5 hours); a line total is quantity * unitPrice rounded half-up to
the nearest minor unit.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from opsdesk.errors import InvalidInput

MAX_LINE_ITEMS = 200
MAX_DESCRIPTION_LENGTH = 500

# Client-sent line totals may differ from ours by at most this many minor units.
LINE_TOTAL_TOLERANCE = 1


@dataclass(frozen=True)
class Totals:
    subtotal: int
    tax: int
    total: int


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def parse_money(value: Any, field: str) -> int:
    """Non-negative integer amount. Integral floats (e.g. 1500.0) are accepted."""
    if not _is_number(value):
        raise InvalidInput(f"{field} must be a non-negative integer amount")
    if isinstance(value, float):
        if not value.is_integer():
            raise InvalidInput(f"{field} must be a non-negative integer amount")
        value = int(value)
    if isinstance(value, Decimal):
        if value != value.to_integral_value():
            raise InvalidInput(f"{field} must be a non-negative integer amount")
        value = int(value)
    if value < 0:
        raise InvalidInput(f"{field} must be a non-negative integer amount")
    return value


def parse_currency(value: Any, default: str) -> str:
    if value is None or value == "":
        return default
    if not isinstance(value, str) or len(value.strip()) != 3 or not value.strip().isalpha():
        raise InvalidInput("currency must be a 3-letter ISO code")
    return value.strip().upper()


def line_total(quantity, unit_price: int) -> int:
    try:
        amount = Decimal(str(quantity)) * Decimal(unit_price)
        return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    except (InvalidOperation, ValueError, OverflowError):
        raise InvalidInput("Invalid line item quantity")


def validate_line_item(item: Any, index: int) -> dict:
    label = f"Line item {index + 1}"
    if not isinstance(item, dict):
        raise InvalidInput(f"{label}: must be an object")

    description = item.get("description")
    if not isinstance(description, str) or not description.strip():
        raise InvalidInput(f"{label}: description is required")
    description = description.strip()
    if len(description) > MAX_DESCRIPTION_LENGTH:
        raise InvalidInput(f"{label}: description is too long")

    quantity = item.get("quantity")
    if not _is_number(quantity) or quantity <= 0:
        raise InvalidInput(f"{label}: quantity must be a positive number")
    if isinstance(quantity, float) and quantity.is_integer():
        quantity = int(quantity)

    unit_price = parse_money(item.get("unitPrice"), f"{label}: unitPrice")
    computed = line_total(quantity, unit_price)

    # Older clients send "total"; newer ones "lineTotal". Either is only checked, never trusted.
    sent_total = item.get("lineTotal", item.get("total"))
    if sent_total is not None:
        if not _is_number(sent_total) or abs(sent_total - computed) > LINE_TOTAL_TOLERANCE:
            raise InvalidInput(f"{label}: lineTotal does not match quantity * unitPrice")

    return {
        "description": description,
        "quantity": quantity,
        "unitPrice": unit_price,
        "lineTotal": computed,
    }


def normalize_line_items(items: Any) -> list[dict]:
    if not isinstance(items, list) or not items:
        raise InvalidInput("At least one line item is required")
    if len(items) > MAX_LINE_ITEMS:
        raise InvalidInput(f"At most {MAX_LINE_ITEMS} line items are allowed")
    return [validate_line_item(item, i) for i, item in enumerate(items)]


def compute_totals(items: list[dict], tax: int = 0) -> Totals:
    subtotal = sum(int(i["lineTotal"]) for i in items)
    return Totals(subtotal=subtotal, tax=tax, total=subtotal + tax)


def stored_line_items(raw: Any) -> list[dict]:
    """
    Line items read back from the database. Rows written by older versions may
    hold a JSON string; anything that isn't a list of objects is malformed.
    """
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            raise InvalidInput("Invalid quote data: line items are malformed")
    if not isinstance(raw, list) or not all(isinstance(i, dict) for i in raw):
        raise InvalidInput("Invalid quote data: line items are malformed")
    return [dict(i) for i in raw]
