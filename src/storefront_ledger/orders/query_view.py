"""Read path over a user's stored orders.

Nothing here writes to the order store. Tax and totals are re-derived per
order for display; the stored grand total is always reported as settled.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from ..checkout.interfaces import OrderStore
from ..errors import DataIntegrityDegraded, ValidationError
from ..tax_calculation.invoice import derive_invoice_number, parse_created_at
from ..tax_calculation.ledger import LedgerSettings, TaxLedger, as_number
from ..tax_calculation.totals import ShippingPolicy, settled_totals
from ..utils.config import Config
from ..utils.logging import get_logger
from .invoice_document import InvoiceDocument, render_invoice

logger = get_logger(__name__)

STATUS_ALL = "all"


@dataclass(frozen=True)
class OrderFilter:
    user_id: str = ""
    search_text: str = ""
    status: str = STATUS_ALL


def _product_name(item: Mapping[str, Any]) -> str:
    product = item.get("product")
    if isinstance(product, Mapping):
        return str(product.get("name") or "")
    return str(item.get("name") or "")


def matches(order: Mapping[str, Any], search_text: str = "", status: str = STATUS_ALL) -> bool:
    """Case-insensitive substring match on order id and item names, plus status equality."""
    if status and status.lower() != STATUS_ALL:
        if str(order.get("status") or "").lower() != status.lower():
            return False
    needle = (search_text or "").strip().lower()
    if not needle:
        return True
    if needle in str(order.get("_id", "")).lower():
        return True
    return any(needle in _product_name(item).lower() for item in order.get("items") or [])


class OrderQueryView:
    def __init__(
        self,
        store: OrderStore,
        ledger: Optional[TaxLedger] = None,
        shipping_policy: Optional[ShippingPolicy] = None,
        config: Optional[Config] = None,
    ) -> None:
        self.config = config or Config()
        self.store = store
        self.ledger = ledger or TaxLedger(LedgerSettings.from_config(self.config))
        self.shipping_policy = shipping_policy or ShippingPolicy.from_config(self.config)

    def list(self, query: OrderFilter) -> List[Dict[str, Any]]:
        """
        Fetch a user's orders and apply the search and status filter.

        Args:
            query: User id, search text and status (``all`` disables the status filter)

        Returns:
            Matching stored orders, in store order (newest first)
        """
        orders = self.store.list_my_orders(query.user_id, query.status)
        result = [order for order in orders if matches(order, query.search_text, query.status)]
        logger.debug(f"{len(result)} of {len(orders)} orders match search={query.search_text!r} status={query.status!r}")
        return result

    def get_order_list_view(self, query: OrderFilter) -> List[Dict[str, Any]]:
        return [self._row(order) for order in self.list(query)]

    def _row(self, order: Mapping[str, Any]) -> Dict[str, Any]:
        created_at = parse_created_at(order.get("createdAt"))
        invoice_number = derive_invoice_number(order)
        row: Dict[str, Any] = {
            "orderId": str(order.get("_id", "")),
            "createdAt": created_at.date().isoformat() if isinstance(created_at, datetime) else None,
            "status": str(order.get("status") or "pending"),
            "itemCount": sum(int(as_number(item.get("quantity")) or 0) for item in order.get("items") or []),
            "invoiceNumber": invoice_number.value,
            "total": None,
            "gst": None,
            "degraded": invoice_number.degraded,
        }
        try:
            tax = self.ledger.compute_order_breakdown(order)
            totals = settled_totals(order, tax, self.shipping_policy)
        except ValidationError as e:
            logger.warning(f"Order {row['orderId']}: cannot derive totals for list view: {e}")
            row["degraded"] = True
            stored_total = as_number(order.get("totalAmount"))
            row["total"] = round(stored_total, 2) if stored_total is not None else None
            return row
        row["total"] = totals.grand_total
        row["gst"] = tax.to_dict()
        row["degraded"] = row["degraded"] or tax.degraded
        return row

    def export_invoice(self, order_id: str, strict: bool = False, now: Optional[datetime] = None) -> InvoiceDocument:
        """
        Re-fetch one order and render its tax invoice.

        Args:
            order_id: Order id
            strict: Refuse to produce a document resting on fallback data
            now: Clock for the last-resort invoice number

        Returns:
            InvoiceDocument

        Raises:
            OrderStoreError: Store unreachable (retryable)
            OrderNotFoundError: No such order
            DataIntegrityDegraded: ``strict`` and the invoice number or tax data is a fallback
        """
        order = self.store.get_order(order_id)
        invoice_number = derive_invoice_number(order, now=now)
        tax = self.ledger.compute_order_breakdown(order)
        totals = settled_totals(order, tax, self.shipping_policy)

        if invoice_number.degraded or tax.degraded:
            message = (
                f"Order {order_id}: invoice_number_source={invoice_number.source} "
                f"tax_source={tax.source}"
            )
            if strict:
                raise DataIntegrityDegraded(message)
            logger.warning(f"Exporting degraded invoice. {message}")

        document = render_invoice(order, invoice_number, tax, totals, self.config)
        logger.info(f"Exported invoice {invoice_number} for order {order_id}")
        return document

    def reconcile(self, order_id: str) -> Dict[str, Any]:
        """Compare stored GST and grand total with the recomputed ledger and totals."""
        order = self.store.get_order(order_id)
        tax = self.ledger.compute_order_breakdown(order)
        totals = settled_totals(order, tax, self.shipping_policy)
        stored_gst = as_number(order.get("gstAmount"))
        gst_delta = round(stored_gst - tax.total_tax_amount, 2) if stored_gst is not None else None
        return {
            "orderId": str(order.get("_id", order_id)),
            "invoiceNumber": derive_invoice_number(order).value,
            "taxSource": tax.source,
            "degraded": tax.degraded,
            "storedGst": stored_gst,
            "ledgerGst": round(tax.total_tax_amount, 2),
            "gstDelta": gst_delta,
            "storedTotal": totals.grand_total if totals.grand_total_source == "stored" else None,
            "recomputedTotal": totals.recomputed_grand_total,
            "totalDelta": totals.variance,
            "reconciled": totals.reconciled and (gst_delta is None or abs(gst_delta) < 0.01),
            "lines": [line.to_dict() for line in tax.lines],
        }
