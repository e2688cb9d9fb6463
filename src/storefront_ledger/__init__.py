"""
Storefront Ledger - order tax ledger, totals and checkout settlement

Derives GST breakdowns, payable totals and invoice numbers for storefront
orders, drives the checkout-to-payment flow, and renders tax invoices for
historical orders stored in MongoDB.
"""

__version__ = "0.1.0"

from . import checkout
from . import orders
from . import tax_calculation
from . import utils

__all__ = ["checkout", "orders", "tax_calculation", "utils"]
