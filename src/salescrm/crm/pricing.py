"""Line-item pricing and document numbering for quotations and invoices.

Totals are always derived from the items:
    item.total = quantity * unit_price
    subtotal   = sum(item.total)
    tax        = subtotal * tax_rate / 100
    total      = subtotal + tax
Amounts are rounded to 2 decimal places.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import date
from typing import TypeVar

from src.salescrm.crm.schemas import Invoice, LineItem, Quotation

PricedDocument = TypeVar("PricedDocument", Quotation, Invoice)

QUOTATION_PREFIX = "QT"
INVOICE_PREFIX = "INV"


def line_total(item: LineItem) -> float:
    return round(item.quantity * item.unit_price, 2)


def price_items(items: Iterable[LineItem]) -> list[LineItem]:
    """Return copies of ``items`` with their ``total`` recomputed."""
    return [item.model_copy(update={"total": line_total(item)}) for item in items]


def apply_totals(document: PricedDocument, default_tax_rate: float) -> PricedDocument:
    """Return a copy of a quotation/invoice with items and totals recomputed.

    Args:
        document: Quotation or Invoice to price.
        default_tax_rate: Percent applied when the document has no tax_rate.
    """
    tax_rate = document.tax_rate if document.tax_rate is not None else default_tax_rate
    items = price_items(document.items)
    subtotal = round(sum(item.total for item in items), 2)
    tax = round(subtotal * tax_rate / 100, 2)
    return document.model_copy(
        update={
            "items": items,
            "tax_rate": tax_rate,
            "subtotal": subtotal,
            "tax": tax,
            "total": round(subtotal + tax, 2),
        }
    )


def format_amount(value: float) -> str:
    """Render an amount with thousands separators (``15000`` -> ``"15,000"``)."""
    if float(value).is_integer():
        return f"{value:,.0f}"
    return f"{value:,.2f}"


def next_document_number(prefix: str, existing: Iterable[str], today: date) -> str:
    """Return the next free ``{prefix}-YYYYMM-NNN`` number for ``today``'s month.

    Args:
        prefix: ``"QT"`` or ``"INV"``.
        existing: Numbers already in use.
        today: Date whose year/month scope the sequence.
    """
    period = f"{prefix}-{today:%Y%m}-"
    pattern = re.compile(rf"^{re.escape(period)}(\d+)$")
    used = [int(match.group(1)) for number in existing if (match := pattern.match(number))]
    return f"{period}{max(used, default=0) + 1:03d}"
