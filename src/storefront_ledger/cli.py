"""
Command-line interface for Storefront Ledger.
"""

import argparse
import sys
from pathlib import Path
from typing import Any, List, Optional, Tuple

from . import __version__
from .orders import OrderFilter, OrderQueryView, invoice_summary
from .tax_calculation import CheckoutTaxRates, OrderRepository, ShippingPolicy, amount_to_words, checkout_totals
from .utils.config import Config
from .utils.logging import setup_logging


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser."""
    parser = argparse.ArgumentParser(
        description="Storefront Ledger - order GST ledger, totals and invoice export",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  storefront-ledger --version
  storefront-ledger invoice --order-id 665f1c2ab4e0d3a1f0c9e812 --output invoice.html
  storefront-ledger orders --user-id 665f1b9cb4e0d3a1f0c9e7ff --status delivered
  storefront-ledger reconcile --order-id 665f1c2ab4e0d3a1f0c9e812
  storefront-ledger totals --subtotal 1000 --discount 100
  storefront-ledger words --amount 118
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"Storefront Ledger {__version__}",
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    parser.add_argument(
        "--log-file",
        help="Log file path",
    )

    parser.add_argument(
        "--env-file",
        default=".env",
        help="Environment file with database and storefront settings (default: .env)",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        help="Available commands",
    )

    invoice_parser = subparsers.add_parser(
        "invoice",
        help="Export the tax invoice of a stored order as HTML",
    )
    invoice_parser.add_argument("--order-id", type=str, required=True, help="Order id")
    invoice_parser.add_argument("--output", type=str, help="Output file (default: Invoice_<number>.html)")
    invoice_parser.add_argument(
        "--strict",
        action="store_true",
        help="Fail instead of exporting a provisional invoice number or missing tax data",
    )

    orders_parser = subparsers.add_parser(
        "orders",
        help="List a user's orders with invoice numbers and totals",
    )
    orders_parser.add_argument("--user-id", type=str, required=True, help="User id")
    orders_parser.add_argument("--search", type=str, default="", help="Match order id or product name")
    orders_parser.add_argument("--status", type=str, default="all", help="Order status, or 'all'")

    reconcile_parser = subparsers.add_parser(
        "reconcile",
        help="Compare stored GST and total with the recomputed ledger",
    )
    reconcile_parser.add_argument("--order-id", type=str, required=True, help="Order id")

    totals_parser = subparsers.add_parser(
        "totals",
        help="Preview checkout totals for a cart subtotal",
    )
    totals_parser.add_argument("--subtotal", type=float, required=True, help="Cart subtotal")
    totals_parser.add_argument("--discount", type=float, default=0.0, help="Coupon discount")

    words_parser = subparsers.add_parser(
        "words",
        help="Render an amount in words",
    )
    words_parser.add_argument("--amount", type=float, required=True, help="Amount")

    return parser


def print_box(lines: List[Tuple[str, Any]]) -> None:
    """Print label/value pairs inside a box."""
    label_width = max(len(lbl) for lbl, _ in lines)
    inner_width = max(len(f" {lbl.ljust(label_width)} : {val}") for lbl, val in lines) + 1
    print("┌" + "─" * inner_width + "┐")
    for lbl, val in lines:
        line = f" {lbl.ljust(label_width)} : {val}"
        print(f"│{line.ljust(inner_width)}│")
    print("└" + "─" * inner_width + "┘")


def export_invoice(config: Config, order_id: str, output: Optional[str] = None, strict: bool = False) -> str:
    """
    Export the invoice of one order to an HTML file.

    Args:
        config: Loaded configuration
        order_id: Order id
        output: Output path (defaults to the invoice file name)
        strict: Refuse degraded invoices

    Returns:
        Path the invoice was written to
    """
    with OrderRepository(config=config) as repository:
        document = OrderQueryView(repository, config=config).export_invoice(order_id, strict=strict)

    path = Path(output or document.filename)
    path.write_text(document.html, encoding="utf-8")
    summary = invoice_summary(document)
    print_box([
        ("Order ID", summary["orderId"]),
        ("Invoice #", f"{summary['invoiceNumber']} ({summary['invoiceNumberSource']})"),
        ("Grand Total", f"{summary['total']:.2f}"),
        ("Degraded", "YES" if summary["degraded"] else "NO"),
        ("Written To", str(path)),
    ])
    return str(path)


def list_orders(config: Config, user_id: str, search: str = "", status: str = "all") -> int:
    with OrderRepository(config=config) as repository:
        rows = OrderQueryView(repository, config=config).get_order_list_view(
            OrderFilter(user_id=user_id, search_text=search, status=status)
        )

    if not rows:
        print("No orders found")
        return 0

    print(f"{'Order ID':<26} {'Date':<12} {'Status':<12} {'Items':>5} {'Invoice #':<12} {'GST':>10} {'Total':>12}")
    print("-" * 95)
    for row in rows:
        gst = f"{row['gst']['totalTaxAmount']:.2f}" if row["gst"] else "-"
        total = f"{row['total']:.2f}" if row["total"] is not None else "-"
        flag = " ⚠️" if row["degraded"] else ""
        print(
            f"{row['orderId']:<26} {row['createdAt'] or '-':<12} {row['status']:<12} {row['itemCount']:>5} "
            f"{row['invoiceNumber']:<12} {gst:>10} {total:>12}{flag}"
        )
    return len(rows)


def reconcile_order(config: Config, order_id: str) -> bool:
    with OrderRepository(config=config) as repository:
        report = OrderQueryView(repository, config=config).reconcile(order_id)

    print_box([
        ("Order ID", report["orderId"]),
        ("Invoice #", report["invoiceNumber"]),
        ("Tax Source", report["taxSource"] + (" (DEGRADED)" if report["degraded"] else "")),
    ])

    if report["lines"]:
        print("\nLINE LEDGER:")
        print("=" * 60)
        print(f"   {'Item':<24} {'Qty':>4} {'Base':>10} {'GST%':>6} {'GST':>10} {'Total':>10}")
        for line in report["lines"]:
            print(
                f"   {line['name'][:24]:<24} {line['quantity']:>4} {line['basePrice']:>10.2f} "
                f"{line['taxRatePercent']:>6.1f} {line['totalTaxAmount']:>10.2f} {line['lineTotal']:>10.2f}"
            )

    print("\nSTORED VS RECOMPUTED:")
    print("=" * 60)
    stored_gst = f"{report['storedGst']:.2f}" if report["storedGst"] is not None else "-"
    gst_delta = f"{report['gstDelta']:.2f}" if report["gstDelta"] is not None else "-"
    stored_total = f"{report['storedTotal']:.2f}" if report["storedTotal"] is not None else "-"
    print(f"   Stored GST:         {stored_gst}")
    print(f"   Ledger GST:         {report['ledgerGst']:.2f}")
    print(f"   GST Delta:          {gst_delta}")
    print(f"   Stored Total:       {stored_total}")
    print(f"   Recomputed Total:   {report['recomputedTotal']:.2f}")
    print(f"   Total Delta:        {report['totalDelta']:.2f}")
    print(f"   Overall Status:     {'PASS' if report['reconciled'] else 'MISMATCH'}")
    return report["reconciled"]


def preview_totals(config: Config, subtotal: float, discount: float = 0.0) -> None:
    totals, tax = checkout_totals(
        subtotal,
        discount,
        ShippingPolicy.from_config(config),
        CheckoutTaxRates.from_config(config),
    )
    print_box([
        ("Subtotal", f"{totals.subtotal:.2f}"),
        ("Discount", f"{totals.discount:.2f}"),
        ("Taxable", f"{totals.taxable_subtotal:.2f}"),
        (f"CGST ({tax.rate_percent / 2:g}%)", f"{tax.cgst:.2f}"),
        (f"SGST ({tax.rate_percent / 2:g}%)", f"{tax.sgst:.2f}"),
        ("Shipping", "Free" if totals.free_shipping else f"{totals.shipping_fee:.2f}"),
        ("Grand Total", f"{totals.grand_total:.2f}"),
    ])


def main(args: Optional[list] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        args: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    config = Config(parsed_args.env_file)
    logger = setup_logging(
        level="DEBUG" if parsed_args.verbose else None,
        log_file=parsed_args.log_file,
        config=config,
    )

    try:
        if parsed_args.command == "invoice":
            export_invoice(config, parsed_args.order_id, parsed_args.output, parsed_args.strict)

        elif parsed_args.command == "orders":
            list_orders(config, parsed_args.user_id, parsed_args.search, parsed_args.status)

        elif parsed_args.command == "reconcile":
            reconcile_order(config, parsed_args.order_id)

        elif parsed_args.command == "totals":
            preview_totals(config, parsed_args.subtotal, parsed_args.discount)

        elif parsed_args.command == "words":
            print(f"{amount_to_words(parsed_args.amount)} Rupees Only")

        elif not parsed_args.command:
            parser.print_help()
            return 1

    except Exception as e:
        logger.error(f"Error: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
