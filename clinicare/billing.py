"""Invoice arithmetic, numbering and payment settlement.

All amounts are ``Decimal``; the same functions serve invoice creation and
editing so the stored subtotal/total can always be recomputed from the items.
"""
from __future__ import annotations

import datetime as dt
import logging
import re
from collections.abc import Iterable
from decimal import Decimal

from .errors import NotFound, ValidationError
from .models import (
    BillingStats,
    Invoice,
    InvoiceLineItem,
    InvoiceStatus,
    InvoiceTotals,
    Payment,
)
from .store import ClinicStore

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
DEFAULT_DUE_DAYS = 30

_INVOICE_ID = re.compile(r"^INV-(\d{4})-(\d{2})(\d{3,})$")


def validate_item(item: InvoiceLineItem) -> None:
    if item.quantity < 1:
        raise ValidationError(f"quantity must be at least 1 for {item.description!r}, got {item.quantity}")
    if item.unit_price < 0:
        raise ValidationError(f"unit price must not be negative for {item.description!r}, got {item.unit_price}")


def validate_tax(tax: Decimal) -> None:
    if tax < 0:
        raise ValidationError(f"tax must not be negative, got {tax}")


def line_total(item: InvoiceLineItem) -> Decimal:
    validate_item(item)
    return item.quantity * item.unit_price


def subtotal(items: Iterable[InvoiceLineItem]) -> Decimal:
    return sum((line_total(item) for item in items), ZERO)


def total(items: Iterable[InvoiceLineItem], tax: Decimal) -> Decimal:
    validate_tax(tax)
    return subtotal(items) + tax


def totals(items: Iterable[InvoiceLineItem], tax: Decimal) -> InvoiceTotals:
    items = list(items)
    sub = subtotal(items)
    validate_tax(tax)
    return InvoiceTotals(subtotal=sub, tax=tax, total=sub + tax)


def invoice_totals(invoice: Invoice) -> InvoiceTotals:
    return totals(invoice.items, invoice.tax)


async def totals_for(store: ClinicStore, invoice_id: str) -> InvoiceTotals:
    """Recompute a stored invoice's totals from the line items on record."""
    invoice = await store.get_invoice(invoice_id)
    if invoice is None:
        raise NotFound(f"invoice {invoice_id} not found")
    items = await store.list_line_items(invoice_id)
    return totals(items, invoice.tax)


def validate_for_finalization(invoice: Invoice) -> InvoiceTotals:
    """Check an invoice is ready to be issued; drafts may still be empty."""
    if not invoice.items:
        raise ValidationError("an invoice needs at least one line item before it can be finalized")
    return invoice_totals(invoice)


def next_invoice_number(last_id: str | None, today: dt.date) -> str:
    """Return the next ``INV-YYYY-MMNNN`` identifier.

    The sequence restarts each month; ``last_id`` is the most recent number
    issued, or None when none exists yet.
    """
    seq = 1
    if last_id:
        match = _INVOICE_ID.match(last_id)
        if match and (int(match.group(1)), int(match.group(2))) == (today.year, today.month):
            seq = int(match.group(3)) + 1
    return f"INV-{today.year}-{today.month:02d}{seq:03d}"


def amount_paid(payments: Iterable[Payment]) -> Decimal:
    paid = ZERO
    for payment in payments:
        if payment.amount <= 0:
            raise ValidationError(f"payment amount must be positive, got {payment.amount}")
        paid += payment.amount
    return paid


def settle(invoice: Invoice, payments: Iterable[Payment]) -> Invoice:
    """Mark the invoice paid once its payments cover the total.

    Without any payment the invoice is returned unchanged, even at a zero total.
    """
    payments = list(payments)
    if not payments or invoice.status == InvoiceStatus.PAID:
        return invoice
    if amount_paid(payments) < invoice_totals(invoice).total:
        return invoice
    last = payments[-1]
    logger.info("invoice %s settled", invoice.id)
    return invoice.model_copy(update={
        "status": InvoiceStatus.PAID,
        "payment_method": last.payment_method,
        "paid_at": last.paid_at or dt.datetime.now(),
    })


def mark_overdue(invoice: Invoice, today: dt.date, due_days: int = DEFAULT_DUE_DAYS) -> Invoice:
    if invoice.status == InvoiceStatus.PENDING and (today - invoice.date).days > due_days:
        return invoice.model_copy(update={"status": InvoiceStatus.OVERDUE})
    return invoice


def billing_stats(invoices: Iterable[Invoice], today: dt.date) -> BillingStats:
    stats = BillingStats()
    for invoice in invoices:
        try:
            amount = invoice_totals(invoice).total
        except ValidationError as exc:
            logger.warning("skipping invoice %s in stats: %s", invoice.id, exc)
            continue
        stats.total_invoices += 1
        stats.total_revenue += amount
        if invoice.status == InvoiceStatus.PAID:
            stats.paid_invoices += 1
            stats.paid_amount += amount
        elif invoice.status == InvoiceStatus.PENDING:
            stats.pending_amount += amount
        elif invoice.status == InvoiceStatus.OVERDUE:
            stats.overdue_amount += amount
        if (invoice.date.year, invoice.date.month) == (today.year, today.month):
            stats.monthly_revenue += amount
    return stats
