"""Tax calculation module entry point."""

from .invoice import InvoiceNumber, amount_to_words, derive_invoice_number
from .ledger import (
    CheckoutTax,
    CheckoutTaxRates,
    LedgerSettings,
    OrderTaxBreakdown,
    TaxBreakdown,
    TaxLedger,
    compute_checkout_tax,
)
from .repository import OrderRepository
from .totals import (
    SettledTotals,
    ShippingPolicy,
    Totals,
    cart_subtotal,
    checkout_totals,
    compute_totals,
    settled_totals,
)

__all__ = [
    "CheckoutTax",
    "CheckoutTaxRates",
    "InvoiceNumber",
    "LedgerSettings",
    "OrderRepository",
    "OrderTaxBreakdown",
    "SettledTotals",
    "ShippingPolicy",
    "TaxBreakdown",
    "TaxLedger",
    "Totals",
    "amount_to_words",
    "cart_subtotal",
    "checkout_totals",
    "compute_checkout_tax",
    "compute_totals",
    "derive_invoice_number",
    "settled_totals",
]
