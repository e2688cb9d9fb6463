"""Invoice numbering and amount-in-words rendering."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from ..utils.logging import get_logger

logger = get_logger(__name__)

INVOICE_NUMBER_LENGTH = 10
SEQUENCE_WIDTH = 6

SOURCE_STORED = "stored"
SOURCE_VIRTUAL = "virtual"
SOURCE_SEQUENCE = "sequence"
SOURCE_FORMATTED = "formatted"
SOURCE_ORDER_ID = "order_id"
SOURCE_FALLBACK = "fallback"


@dataclass(frozen=True)
class InvoiceNumber:
    value: str
    source: str

    @property
    def degraded(self) -> bool:
        """Placeholder number that must not be filed as a real invoice."""
        return self.source == SOURCE_FALLBACK

    def __str__(self) -> str:
        return self.value


def parse_created_at(value: Any) -> Optional[datetime]:
    """Parse a stored ``createdAt`` (datetime or ISO-8601 string)."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.warning(f"Unparseable createdAt value: {value!r}")
    return None


def derive_invoice_number(order: Mapping[str, Any], now: Optional[datetime] = None) -> InvoiceNumber:
    """
    Derive the invoice number of an order.

    Precedence (first available wins):
        1. stored ``invoiceNumber`` of exactly 10 characters
        2. stored virtual ``invoiceOrderNumber``
        3. year(createdAt) + zero-padded ``orderNumber``
        4. year(createdAt) + zero-padded ``formattedOrderNumber``
        5. year(createdAt) + last 6 characters of ``_id``
        6. current year + "000001" (flagged as degraded)

    Args:
        order: Stored order document
        now: Clock used only by the last-resort fallback

    Returns:
        InvoiceNumber with the rule that produced it
    """
    stored = order.get("invoiceNumber")
    if stored and len(str(stored)) == INVOICE_NUMBER_LENGTH:
        return InvoiceNumber(str(stored), SOURCE_STORED)

    virtual = order.get("invoiceOrderNumber")
    if virtual:
        return InvoiceNumber(str(virtual), SOURCE_VIRTUAL)

    created_at = parse_created_at(order.get("createdAt"))
    if created_at is not None:
        year = created_at.year
        if order.get("orderNumber"):
            return InvoiceNumber(f"{year}{str(order['orderNumber']).zfill(SEQUENCE_WIDTH)}", SOURCE_SEQUENCE)
        if order.get("formattedOrderNumber"):
            return InvoiceNumber(f"{year}{str(order['formattedOrderNumber']).zfill(SEQUENCE_WIDTH)}", SOURCE_FORMATTED)
        if order.get("_id"):
            return InvoiceNumber(f"{year}{str(order['_id'])[-SEQUENCE_WIDTH:]}", SOURCE_ORDER_ID)

    now = now or datetime.now(timezone.utc)
    fallback = f"{now.year}{'1'.zfill(SEQUENCE_WIDTH)}"
    logger.warning(f"Order {order.get('_id')}: no invoice identity fields, using provisional number {fallback}")
    return InvoiceNumber(fallback, SOURCE_FALLBACK)


ONES = ["", "One", "Two", "Three", "Four", "Five", "Six", "Seven", "Eight", "Nine"]
TEENS = ["Ten", "Eleven", "Twelve", "Thirteen", "Fourteen", "Fifteen", "Sixteen",
         "Seventeen", "Eighteen", "Nineteen"]
TENS = ["", "", "Twenty", "Thirty", "Forty", "Fifty", "Sixty", "Seventy", "Eighty", "Ninety"]
SCALES = [(1_000_000_000, "Billion"), (1_000_000, "Million"), (1_000, "Thousand")]


def amount_to_words(amount: float) -> str:
    """Render the integer part of an amount in English words.

    The fractional part is dropped: ``amount_to_words(118.75)`` is
    "One Hundred Eighteen".
    """
    number = int(amount)
    if number < 0:
        raise ValueError(f"Cannot render a negative amount in words: {amount}")
    if number == 0:
        return "Zero"
    return _words(number)


def _words(number: int) -> str:
    if number < 10:
        return ONES[number]
    if number < 20:
        return TEENS[number - 10]
    if number < 100:
        return TENS[number // 10] + (" " + ONES[number % 10] if number % 10 else "")
    if number < 1000:
        rest = number % 100
        return ONES[number // 100] + " Hundred" + (" " + _words(rest) if rest else "")
    for scale, label in SCALES:
        if number >= scale:
            rest = number % scale
            return _words(number // scale) + " " + label + (" " + _words(rest) if rest else "")
    raise AssertionError("unreachable")
