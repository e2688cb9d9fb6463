"""Payable totals: subtotal, coupon discount, GST and shipping.

Checkout preview, the order payload sent for settlement and the order store
all go through ``checkout_totals`` so that the amount shown to the shopper is
the amount charged and stored. Rounding happens once, on the grand total.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union

from ..errors import ValidationError
from ..utils.config import Config
from ..utils.logging import get_logger
from .ledger import CheckoutTax, CheckoutTaxRates, compute_checkout_tax, as_number

logger = get_logger(__name__)


@dataclass(frozen=True)
class ShippingPolicy:
    """Flat shipping fee, waived at or above the threshold."""

    threshold: float = 500.0
    fee: float = 50.0

    def fee_for(self, amount: float) -> float:
        return 0.0 if amount >= self.threshold else self.fee

    @classmethod
    def from_config(cls, config: Config) -> "ShippingPolicy":
        return cls(
            threshold=float(config.get("free_shipping_threshold", 500.0)),
            fee=float(config.get("shipping_fee", 50.0)),
        )


@dataclass(frozen=True)
class Totals:
    subtotal: float
    discount: float
    taxable_subtotal: float
    total_tax_amount: float
    shipping_fee: float
    grand_total: float

    @property
    def free_shipping(self) -> bool:
        return self.shipping_fee == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subtotal": round(self.subtotal, 2),
            "discount": round(self.discount, 2),
            "taxableSubtotal": round(self.taxable_subtotal, 2),
            "gst": round(self.total_tax_amount, 2),
            "shipping": round(self.shipping_fee, 2),
            "total": self.grand_total,
        }


@dataclass(frozen=True)
class SettledTotals(Totals):
    """Totals of a persisted order, with the stored grand total kept authoritative."""

    recomputed_grand_total: float = 0.0
    grand_total_source: str = "stored"

    @property
    def variance(self) -> float:
        return round(self.grand_total - self.recomputed_grand_total, 2)

    @property
    def reconciled(self) -> bool:
        return abs(self.variance) < 0.01

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "recomputedTotal": self.recomputed_grand_total,
            "variance": self.variance,
            "totalSource": self.grand_total_source,
        })
        return data


TaxInput = Union[float, int, Any]


def _tax_amount(tax_breakdown: TaxInput) -> float:
    if isinstance(tax_breakdown, (int, float)):
        return float(tax_breakdown)
    return float(tax_breakdown.total_tax_amount)


def taxable_subtotal(subtotal: float, discount: float = 0.0) -> float:
    """Subtotal after coupon discount.

    Raises:
        ValidationError: If subtotal or discount is negative, or the discount
            exceeds the subtotal
    """
    if subtotal < 0:
        raise ValidationError(f"Subtotal must not be negative, got {subtotal}")
    if discount < 0:
        raise ValidationError(f"Discount must not be negative, got {discount}")
    if discount > subtotal:
        raise ValidationError(f"Discount {discount:.2f} exceeds subtotal {subtotal:.2f}")
    return subtotal - discount


def compute_totals(
    subtotal: float,
    discount: float,
    shipping_policy: ShippingPolicy,
    tax_breakdown: TaxInput,
) -> Totals:
    """
    Combine subtotal, discount, shipping and GST into the payable total.

    Args:
        subtotal: Sum of line totals before discount
        discount: Coupon discount (0 <= discount <= subtotal)
        shipping_policy: Threshold/fee policy, applied to the taxable subtotal
        tax_breakdown: Anything with ``total_tax_amount``, or a plain amount

    Returns:
        Totals with the grand total rounded to 2 decimals
    """
    taxable = taxable_subtotal(subtotal, discount)
    tax = _tax_amount(tax_breakdown)
    shipping = shipping_policy.fee_for(taxable)
    grand_total = round(taxable + tax + shipping, 2)
    return Totals(
        subtotal=subtotal,
        discount=discount,
        taxable_subtotal=taxable,
        total_tax_amount=tax,
        shipping_fee=shipping,
        grand_total=grand_total,
    )


def cart_subtotal(items: Iterable[Mapping[str, Any]]) -> float:
    """Sum of price x quantity over cart entries or order items."""
    return sum((as_number(item.get("price")) or 0.0) * int(item.get("quantity") or 0) for item in items)


def checkout_totals(
    subtotal: float,
    discount: float = 0.0,
    shipping_policy: Optional[ShippingPolicy] = None,
    rates: Optional[CheckoutTaxRates] = None,
) -> Tuple[Totals, CheckoutTax]:
    """Totals as charged at checkout: flat GST on the taxable subtotal."""
    shipping_policy = shipping_policy or ShippingPolicy()
    tax = compute_checkout_tax(taxable_subtotal(subtotal, discount), rates)
    return compute_totals(subtotal, discount, shipping_policy, tax), tax


def settled_totals(
    order: Mapping[str, Any],
    tax_breakdown: TaxInput,
    shipping_policy: Optional[ShippingPolicy] = None,
) -> SettledTotals:
    """
    Totals of a persisted order for display and invoice export.

    The stored ``totalAmount`` stays authoritative; a recomputed total is
    reported next to it for audit. Stored ``shippingCharge`` and ``gstAmount``
    are used in preference to policy and ledger values.

    Args:
        order: Stored order document
        tax_breakdown: Ledger breakdown, used when no ``gstAmount`` is stored
        shipping_policy: Used when no ``shippingCharge`` is stored

    Returns:
        SettledTotals
    """
    shipping_policy = shipping_policy or ShippingPolicy()
    items = order.get("items") or []
    subtotal = cart_subtotal(items) if items else (as_number(order.get("subtotal")) or 0.0)
    discount = as_number(order.get("discount")) or 0.0
    taxable = taxable_subtotal(subtotal, discount)

    stored_shipping = as_number(order.get("shippingCharge"))
    shipping = stored_shipping if stored_shipping is not None else shipping_policy.fee_for(taxable)

    stored_tax = as_number(order.get("gstAmount"))
    tax = stored_tax if stored_tax is not None else _tax_amount(tax_breakdown)

    recomputed = round(taxable + tax + shipping, 2)
    stored_total = as_number(order.get("totalAmount"))
    if stored_total is None:
        logger.warning(f"Order {order.get('_id')}: no stored totalAmount, using recomputed total {recomputed:.2f}")
        grand_total, source = recomputed, "recomputed"
    else:
        grand_total, source = round(stored_total, 2), "stored"

    return SettledTotals(
        subtotal=subtotal,
        discount=discount,
        taxable_subtotal=taxable,
        total_tax_amount=tax,
        shipping_fee=shipping,
        grand_total=grand_total,
        recomputed_grand_total=recomputed,
        grand_total_source=source,
    )
