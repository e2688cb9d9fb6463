"""Fixed-layout HTML tax invoice for a stored order."""

from __future__ import annotations

from dataclasses import dataclass
from html import escape
from typing import Any, Dict, List, Mapping

from ..tax_calculation.invoice import InvoiceNumber, amount_to_words, parse_created_at
from ..tax_calculation.ledger import OrderTaxBreakdown, TaxBreakdown
from ..tax_calculation.totals import SettledTotals
from ..utils.config import Config

CURRENCY_SYMBOL = "₹"
DESCRIPTION_LIMIT = 60

STYLE = """
body { font-family: Arial, sans-serif; font-size: 11px; color: #333; }
.invoice-container { max-width: 800px; margin: 0 auto; padding: 20px; }
.invoice-header { display: flex; justify-content: space-between; border-bottom: 2px solid #b45309; }
.invoice-info { display: grid; grid-template-columns: 1fr 1fr; gap: 20px; margin: 15px 0; }
.section-title { font-size: 12px; text-transform: uppercase; color: #b45309; }
.status-badge { padding: 2px 8px; border-radius: 10px; background: #fef3c7; }
.provisional { border: 2px dashed #dc2626; color: #dc2626; padding: 8px; margin: 10px 0; }
.items-table { width: 100%; border-collapse: collapse; margin: 15px 0; }
.items-table th, .items-table td { border: 1px solid #e5e7eb; padding: 6px; text-align: left; }
.amount { text-align: right; }
.totals-grid { display: grid; grid-template-columns: 1fr 1fr; gap: 20px; }
.grand-total { font-weight: bold; font-size: 13px; }
.footer { margin-top: 20px; color: #666; font-size: 10px; text-align: center; }
""".strip()


@dataclass(frozen=True)
class InvoiceDocument:
    order_id: str
    invoice_number: InvoiceNumber
    html: str
    tax: OrderTaxBreakdown
    totals: SettledTotals

    @property
    def degraded(self) -> bool:
        """Provisional invoice number or missing tax data."""
        return self.invoice_number.degraded or self.tax.degraded

    @property
    def filename(self) -> str:
        return f"Invoice_{self.invoice_number.value}.html"


def _money(value: float) -> str:
    return f"{CURRENCY_SYMBOL}{value:.2f}"


def _text(value: Any, default: str = "N/A") -> str:
    return escape(str(value)) if value not in (None, "") else default


def _item_rows(items: List[Mapping[str, Any]], lines: List[TaxBreakdown]) -> str:
    if not lines:
        return '<tr><td colspan="9" style="text-align: center; color: #666;">No items found</td></tr>'
    rows = []
    for item, line in zip(items, lines):
        product = item.get("product") if isinstance(item.get("product"), Mapping) else {}
        description = str(product.get("description") or "")
        if len(description) > DESCRIPTION_LIMIT:
            description = description[:DESCRIPTION_LIMIT] + "..."
        desc_html = f'<div class="product-desc">{escape(description)}</div>' if description else ""
        rows.append(
            "<tr>"
            f'<td><div class="product-name">{_text(line.name, "Product")}</div>{desc_html}</td>'
            f'<td><span class="hsn-code">{escape(line.tax_class_code)}</span></td>'
            f"<td><strong>{line.quantity}</strong></td>"
            f'<td class="amount">{_money(line.base_price)}</td>'
            f"<td><strong>{line.tax_rate_percent:.1f}%</strong></td>"
            f'<td class="amount">{_money(line.total_tax_amount)}</td>'
            f'<td class="amount">{_money(line.split_component_a)}</td>'
            f'<td class="amount">{_money(line.split_component_b)}</td>'
            f'<td class="amount"><strong>{_money(line.line_total)}</strong></td>'
            "</tr>"
        )
    return "\n".join(rows)


def render_invoice(
    order: Mapping[str, Any],
    invoice_number: InvoiceNumber,
    tax: OrderTaxBreakdown,
    totals: SettledTotals,
    config: Config,
) -> InvoiceDocument:
    """
    Render the tax invoice of a stored order.

    The output depends only on its inputs, so the same order always renders
    to the same document. Provisional invoice numbers and missing tax data
    are called out in a visible banner.

    Args:
        order: Stored order document
        invoice_number: Derived invoice number
        tax: Ledger breakdown of the order
        totals: Settled totals (stored grand total authoritative)
        config: Seller details

    Returns:
        InvoiceDocument
    """
    order_id = str(order.get("_id", ""))
    user = order.get("user") if isinstance(order.get("user"), Mapping) else {}
    address = order.get("shippingAddress") or {}
    created_at = parse_created_at(order.get("createdAt"))
    date = created_at.strftime("%d/%m/%Y") if created_at else "N/A"
    status = str(order.get("status") or "pending")
    coupon_code = order.get("couponCode")
    payment_details = order.get("razorpayDetails") or {}

    warnings = []
    if invoice_number.degraded:
        warnings.append("PROVISIONAL: invoice number could not be derived from the order record")
    if tax.degraded:
        warnings.append("TAX DATA UNAVAILABLE: GST figures are reported as zero")
    banner = "".join(f'<div class="provisional">{escape(w)}</div>' for w in warnings)

    coupon_html = ""
    if coupon_code:
        coupon_html = (
            '<div class="coupon-section">'
            '<div class="coupon-title">Coupon Applied</div>'
            f"<div><strong>Coupon Code:</strong> {escape(str(coupon_code))}</div>"
            f"<div><strong>Discount Amount:</strong> {_money(totals.discount)}</div>"
            "</div>"
        )
    discount_row = ""
    if totals.discount > 0:
        discount_row = (
            f'<div class="total-row discount"><span>Coupon Discount ({_text(coupon_code, "")}):</span>'
            f"<span>-{_money(totals.discount)}</span></div>"
        )
    shipping = "Free" if totals.free_shipping else _money(totals.shipping_fee)
    transaction = ""
    if payment_details.get("paymentId"):
        transaction = f"<p><strong>Transaction ID:</strong> {escape(str(payment_details['paymentId']))}</p>"

    seller = escape(config.get("seller_name", ""))
    support = escape(config.get("support_email", ""))
    html = f"""<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>Invoice {escape(invoice_number.value)}</title>
<style>
{STYLE}
</style>
</head>
<body>
<div class="invoice-container">
<div class="invoice-header">
<div class="company-info">
<h1>{seller}</h1>
<p>Email: {support}</p>
<p class="gst-number">GSTIN: {escape(config.get("seller_gstin", ""))}</p>
</div>
<div class="invoice-details">
<h2>TAX INVOICE</h2>
<p><strong>Invoice #:</strong> {escape(invoice_number.value)}</p>
<p><strong>Date:</strong> {date}</p>
<p><strong>Order ID:</strong> {escape(order_id)}</p>
</div>
</div>
{banner}
<div class="invoice-info">
<div>
<h3 class="section-title">Bill To</h3>
<p><strong>{_text(user.get("name"), "Customer")}</strong></p>
<p>Email: {_text(user.get("email"))}</p>
<p>Phone: {_text(user.get("phone"))}</p>
</div>
<div>
<h3 class="section-title">Ship To</h3>
<p>{_text(address.get("address"))}</p>
<p>{_text(address.get("city"), "")}, {_text(address.get("state"), "")}</p>
<p>PIN: {_text(address.get("pincode"))}</p>
<p>Phone: {_text(address.get("phone"))}</p>
</div>
</div>
<div class="status-section">
<span class="status-badge status-{escape(status.lower())}">{escape(status)}</span>
<span>Payment: {_text(order.get("paymentStatus"), "Pending")}</span>
<span>Method: {_text(order.get("paymentMethod"), "Online")}</span>
</div>
{coupon_html}
<table class="items-table">
<thead>
<tr><th>Item Description</th><th>HSN Code</th><th>Qty</th><th>Base Rate</th><th>GST%</th><th>GST Amt</th><th>CGST</th><th>SGST</th><th>Total Amount</th></tr>
</thead>
<tbody>
{_item_rows(list(order.get("items") or []), tax.lines)}
</tbody>
</table>
<div class="totals-section">
<div class="totals-grid">
<div class="gst-breakdown">
<div class="gst-title">GST Summary</div>
<div class="gst-row"><span>Taxable Amount:</span><span>{_money(totals.taxable_subtotal)}</span></div>
<div class="gst-row"><span>CGST ({tax.cgst_rate:.2f}%):</span><span>{_money(tax.split_component_a)}</span></div>
<div class="gst-row"><span>SGST ({tax.sgst_rate:.2f}%):</span><span>{_money(tax.split_component_b)}</span></div>
<div class="gst-row gst-total"><span>Total GST:</span><span>{_money(tax.total_tax_amount)}</span></div>
</div>
<div class="total-calculation">
<div class="total-row"><span>Subtotal (Including GST):</span><span>{_money(totals.subtotal)}</span></div>
{discount_row}
<div class="total-row"><span>Shipping:</span><span>{shipping}</span></div>
<div class="total-row grand-total"><span>GRAND TOTAL:</span><span>{_money(totals.grand_total)}</span></div>
</div>
</div>
</div>
<div class="amount-words"><strong>Amount in Words:</strong> {amount_to_words(totals.grand_total)} Rupees Only</div>
<div class="payment-info">
<h3>Payment Information</h3>
<p><strong>Payment Method:</strong> {_text(order.get("paymentMethod"), "Online Payment")}</p>
<p><strong>Payment Status:</strong> {_text(order.get("paymentStatus"), "Pending")}</p>
{transaction}
</div>
<div class="footer">
<p>This is a computer-generated invoice. No signature required.</p>
<p>For any queries, please contact us at {support}</p>
</div>
</div>
</body>
</html>
"""
    return InvoiceDocument(order_id=order_id, invoice_number=invoice_number, html=html, tax=tax, totals=totals)


def invoice_summary(document: InvoiceDocument) -> Dict[str, Any]:
    return {
        "orderId": document.order_id,
        "invoiceNumber": document.invoice_number.value,
        "invoiceNumberSource": document.invoice_number.source,
        "degraded": document.degraded,
        "total": document.totals.grand_total,
    }
