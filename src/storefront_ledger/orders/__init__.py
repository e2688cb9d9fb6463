"""Order history: filtered list views, invoice export and reconciliation."""

from .invoice_document import InvoiceDocument, invoice_summary, render_invoice
from .query_view import OrderFilter, OrderQueryView, matches

__all__ = [
    "InvoiceDocument",
    "invoice_summary",
    "render_invoice",
    "OrderFilter",
    "OrderQueryView",
    "matches",
]
