"""GST ledger reconstruction for order line items.

Stored orders carry their tax facts in several shapes, depending on when they
were written: some lines have a per-unit GST amount in ``gst``, older ones in
``gstAmount``, some carry ``basePrice`` and ``gstRate``, and some carry nothing
but the tax-inclusive ``price``. Each line is resolved by an ordered chain of
tiers; the first tier that recognises the line produces its breakdown.

All intermediate arithmetic uses full float precision. Rounding to two
decimals happens only in ``to_dict()``, when values are presented.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from ..errors import ValidationError
from ..utils.config import Config
from ..utils.logging import get_logger

logger = get_logger(__name__)

# Per-unit tax amount, in order of precedence
TAX_AMOUNT_FIELDS: Tuple[str, ...] = ("gst", "gstAmount")
# Tax class code lookups: item first, then the populated product document
HSN_ITEM_FIELDS: Tuple[str, ...] = ("hsn",)
HSN_PRODUCT_FIELDS: Tuple[str, ...] = ("hsn", "hsnCode")
# Fallback rate lookups for tax-inclusive prices
RATE_ITEM_FIELDS: Tuple[str, ...] = ("gstRate",)
RATE_PRODUCT_FIELDS: Tuple[str, ...] = ("gstRate", "gst")

TIER_STORED = "stored"
TIER_INCLUSIVE = "inclusive"

SOURCE_LINE_ITEMS = "line_items"
SOURCE_ORDER_TOTAL = "order_total"
SOURCE_NONE = "none"


def as_number(value: Any) -> Optional[float]:
    """Coerce a stored numeric field to float, or None when absent/unparseable."""
    if value is None or isinstance(value, bool):
        return None
    if hasattr(value, "to_decimal"):  # bson Decimal128
        value = value.to_decimal()
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _first_number(source: Mapping[str, Any], keys: Sequence[str]) -> Tuple[Optional[float], Optional[str]]:
    """Return the first non-zero number among keys, with the key it came from.

    A present-but-zero value is returned only when no later key holds a
    non-zero one.
    """
    zero_hit: Tuple[Optional[float], Optional[str]] = (None, None)
    for key in keys:
        value = as_number(source.get(key))
        if value is None:
            continue
        if value:
            return value, key
        if zero_hit[0] is None:
            zero_hit = (value, key)
    return zero_hit


def _product(item: Mapping[str, Any]) -> Mapping[str, Any]:
    product = item.get("product")
    return product if isinstance(product, Mapping) else {}


@dataclass(frozen=True)
class LedgerSettings:
    """Defaults applied when a line carries no usable tax data."""

    default_rate: float = 18.0
    default_hsn: str = "1234"

    @classmethod
    def from_config(cls, config: Config) -> "LedgerSettings":
        return cls(
            default_rate=float(config.get("default_tax_rate", 18.0)),
            default_hsn=str(config.get("default_hsn", "1234")),
        )


@dataclass(frozen=True)
class TaxBreakdown:
    """Tax breakdown of one order line. ``base_price`` is per unit."""

    quantity: int
    unit_price: float
    base_price: float
    tax_rate_percent: float
    tax_amount_per_unit: float
    total_tax_amount: float
    split_component_a: float
    split_component_b: float
    line_total: float
    tax_class_code: str
    tier: str
    name: str = ""

    @property
    def cgst(self) -> float:
        return self.split_component_a

    @property
    def sgst(self) -> float:
        return self.split_component_b

    @property
    def taxable_amount(self) -> float:
        return self.base_price * self.quantity

    def to_dict(self) -> Dict[str, Any]:
        """Presentation form: currency at 2 decimals, rate at 1 decimal."""
        return {
            "name": self.name,
            "quantity": self.quantity,
            "unitPrice": round(self.unit_price, 2),
            "basePrice": round(self.base_price, 2),
            "taxRatePercent": round(self.tax_rate_percent, 1),
            "taxAmountPerUnit": round(self.tax_amount_per_unit, 2),
            "totalTaxAmount": round(self.total_tax_amount, 2),
            "cgst": round(self.split_component_a, 2),
            "sgst": round(self.split_component_b, 2),
            "lineTotal": round(self.line_total, 2),
            "hsn": self.tax_class_code,
            "tier": self.tier,
        }


@dataclass(frozen=True)
class OrderTaxBreakdown:
    """Order-level aggregate of line breakdowns (or of the stored order total)."""

    total_tax_amount: float
    split_component_a: float
    split_component_b: float
    effective_rate: float
    taxable_amount: float
    source: str
    lines: List[TaxBreakdown] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        """Neither line-level nor order-level tax data was found."""
        return self.source == SOURCE_NONE

    @property
    def cgst_rate(self) -> float:
        return self.effective_rate / 2

    @property
    def sgst_rate(self) -> float:
        return self.effective_rate / 2

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cgst": round(self.split_component_a, 2),
            "sgst": round(self.split_component_b, 2),
            "totalTaxAmount": round(self.total_tax_amount, 2),
            "cgstRate": round(self.cgst_rate, 2),
            "sgstRate": round(self.sgst_rate, 2),
            "totalRate": round(self.effective_rate, 2),
            "taxableAmount": round(self.taxable_amount, 2),
            "source": self.source,
            "degraded": self.degraded,
            "lines": [line.to_dict() for line in self.lines],
        }


@dataclass(frozen=True)
class CheckoutTaxRates:
    """Flat GST rates charged on the taxable subtotal at checkout."""

    cgst_rate: float = 2.5
    sgst_rate: float = 2.5

    @property
    def total_rate(self) -> float:
        return self.cgst_rate + self.sgst_rate

    @classmethod
    def from_config(cls, config: Config) -> "CheckoutTaxRates":
        return cls(
            cgst_rate=float(config.get("checkout_cgst_rate", 2.5)),
            sgst_rate=float(config.get("checkout_sgst_rate", 2.5)),
        )


@dataclass(frozen=True)
class CheckoutTax:
    cgst: float
    sgst: float
    total_tax_amount: float
    rate_percent: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cgst": round(self.cgst, 2),
            "sgst": round(self.sgst, 2),
            "totalTaxAmount": round(self.total_tax_amount, 2),
            "ratePercent": self.rate_percent,
        }


# A tier returns (base_price, tax_amount_per_unit, rate_percent) or None when
# the line does not carry the data the tier needs.
TierResult = Optional[Tuple[float, float, float]]
Tier = Callable[[Mapping[str, Any], float, LedgerSettings], TierResult]


def stored_tax_tier(item: Mapping[str, Any], unit_price: float, settings: LedgerSettings) -> TierResult:
    """Use the per-unit tax amount stored on the line.

    Applies when a tax amount is stored (``gst`` or ``gstAmount``) and the line
    also carries a base price or a rate to anchor it. ``gst`` anchors itself,
    since that field has always been written together with the rate data.
    The effective rate is recomputed from amount and base price; a stored
    ``gstRate`` is only used when no base price can be derived.
    """
    amount, amount_key = _first_number(item, TAX_AMOUNT_FIELDS)
    if amount is None:
        return None

    stored_base = as_number(item.get("basePrice"))
    stored_rate, _ = _first_number(item, RATE_ITEM_FIELDS)
    if stored_base is None and stored_rate is None and amount_key != "gst":
        return None

    base_price = stored_base if stored_base else unit_price - amount
    if base_price < 0:
        raise ValidationError(
            f"Derived base price {base_price:.2f} is negative "
            f"(price {unit_price:.2f}, stored GST {amount:.2f})"
        )

    if base_price > 0:
        rate = (amount / base_price) * 100
    else:
        rate = stored_rate or settings.default_rate
    return base_price, amount, rate


def inclusive_price_tier(item: Mapping[str, Any], unit_price: float, settings: LedgerSettings) -> TierResult:
    """Treat the unit price as GST-inclusive and reverse-derive base and tax."""
    rate, _ = _first_number(item, RATE_ITEM_FIELDS)
    if not rate:
        rate, _ = _first_number(_product(item), RATE_PRODUCT_FIELDS)
    if not rate:
        rate = settings.default_rate

    base_price = unit_price / (1 + rate / 100)
    amount = unit_price - base_price
    # Same formula as the stored tier so both report comparable rates
    effective_rate = (amount / base_price) * 100 if base_price > 0 else rate
    return base_price, amount, effective_rate


DEFAULT_TIERS: Tuple[Tier, ...] = (stored_tax_tier, inclusive_price_tier)
_TIER_NAMES = {stored_tax_tier: TIER_STORED, inclusive_price_tier: TIER_INCLUSIVE}


class TaxLedger:
    """Computes line and order GST breakdowns from stored order documents."""

    def __init__(self, settings: Optional[LedgerSettings] = None, tiers: Sequence[Tier] = DEFAULT_TIERS) -> None:
        self.settings = settings or LedgerSettings()
        self.tiers = tuple(tiers)

    def tax_class_code(self, item: Mapping[str, Any]) -> str:
        for key in HSN_ITEM_FIELDS:
            if item.get(key):
                return str(item[key])
        product = _product(item)
        for key in HSN_PRODUCT_FIELDS:
            if product.get(key):
                return str(product[key])
        return self.settings.default_hsn

    def compute_line_breakdown(self, item: Mapping[str, Any]) -> TaxBreakdown:
        """
        Compute the GST breakdown of a single order line.

        Args:
            item: Stored line item (``quantity``, ``price`` and any stored tax fields)

        Returns:
            TaxBreakdown at full precision

        Raises:
            ValidationError: On non-positive quantity, negative price, negative
                derived base price, or when no tier recognises the line
        """
        raw_quantity = item.get("quantity")
        quantity = 1 if raw_quantity is None else int(as_number(raw_quantity) or 0)
        if quantity < 1:
            raise ValidationError(f"Line quantity must be at least 1, got {raw_quantity!r}")

        unit_price = as_number(item.get("price")) or 0.0
        if unit_price < 0:
            raise ValidationError(f"Line price must not be negative, got {unit_price}")

        for tier in self.tiers:
            result = tier(item, unit_price, self.settings)
            if result is None:
                continue
            base_price, amount, rate = result
            tier_name = _TIER_NAMES.get(tier, getattr(tier, "__name__", "custom"))
            logger.debug(
                f"Line {_product(item).get('name', item.get('product'))}: tier={tier_name} "
                f"base={base_price:.5f} gst={amount:.5f} rate={rate:.5f}%"
            )
            total_tax = amount * quantity
            return TaxBreakdown(
                quantity=quantity,
                unit_price=unit_price,
                base_price=base_price,
                tax_rate_percent=rate,
                tax_amount_per_unit=amount,
                total_tax_amount=total_tax,
                split_component_a=total_tax / 2,
                split_component_b=total_tax / 2,
                line_total=unit_price * quantity,
                tax_class_code=self.tax_class_code(item),
                tier=tier_name,
                name=str(_product(item).get("name") or item.get("name") or ""),
            )

        raise ValidationError("No tax tier could resolve the line item")

    def compute_order_breakdown(
        self,
        order: Mapping[str, Any],
        taxable_base: Optional[float] = None,
    ) -> OrderTaxBreakdown:
        """
        Aggregate the GST breakdown of a whole order.

        Line items are authoritative when present. Without them, the stored
        order-level ``gstAmount`` is split into its two components and its rate
        derived against the taxable base. Without either, all values are zero
        and the result is flagged as degraded.

        Args:
            order: Stored order document
            taxable_base: Subtotal after discount, used only by the order-total
                fallback when the order has no ``discountedSubtotal``

        Returns:
            OrderTaxBreakdown at full precision
        """
        items = order.get("items") or []
        if items:
            lines = [self.compute_line_breakdown(item) for item in items]
            total_tax = sum(line.total_tax_amount for line in lines)
            taxable_amount = sum(line.taxable_amount for line in lines)
            weighted = sum(line.tax_rate_percent * line.taxable_amount for line in lines)
            effective_rate = weighted / taxable_amount if taxable_amount > 0 else 0.0
            return OrderTaxBreakdown(
                total_tax_amount=total_tax,
                split_component_a=sum(line.split_component_a for line in lines),
                split_component_b=sum(line.split_component_b for line in lines),
                effective_rate=effective_rate,
                taxable_amount=taxable_amount,
                source=SOURCE_LINE_ITEMS,
                lines=lines,
            )

        stored_tax = as_number(order.get("gstAmount")) or 0.0
        if stored_tax > 0:
            base = as_number(order.get("discountedSubtotal"))
            if not base:
                base = taxable_base if taxable_base is not None else self._subtotal_after_discount(order)
            effective_rate = (stored_tax / base) * 100 if base and base > 0 else 0.0
            logger.info(f"Order {order.get('_id')}: no line items, using stored order GST {stored_tax:.2f}")
            return OrderTaxBreakdown(
                total_tax_amount=stored_tax,
                split_component_a=stored_tax / 2,
                split_component_b=stored_tax / 2,
                effective_rate=effective_rate,
                taxable_amount=base or 0.0,
                source=SOURCE_ORDER_TOTAL,
            )

        logger.warning(f"Order {order.get('_id')}: no line-level or order-level GST data, reporting zero tax")
        return OrderTaxBreakdown(
            total_tax_amount=0.0,
            split_component_a=0.0,
            split_component_b=0.0,
            effective_rate=0.0,
            taxable_amount=0.0,
            source=SOURCE_NONE,
        )

    @staticmethod
    def _subtotal_after_discount(order: Mapping[str, Any]) -> float:
        subtotal = as_number(order.get("subtotal")) or 0.0
        discount = as_number(order.get("discount")) or 0.0
        return subtotal - discount


def compute_checkout_tax(taxable_subtotal: float, rates: Optional[CheckoutTaxRates] = None) -> CheckoutTax:
    """GST charged at checkout: flat CGST + SGST on the taxable subtotal."""
    rates = rates or CheckoutTaxRates()
    cgst = taxable_subtotal * rates.cgst_rate / 100
    sgst = taxable_subtotal * rates.sgst_rate / 100
    return CheckoutTax(cgst=cgst, sgst=sgst, total_tax_amount=cgst + sgst, rate_percent=rates.total_rate)
