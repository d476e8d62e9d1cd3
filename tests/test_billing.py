import datetime as dt
import logging
from decimal import Decimal

import pytest

from clinicare import billing
from clinicare.errors import NotFound, ValidationError
from clinicare.models import Invoice, InvoiceLineItem, InvoiceStatus, Payment, PaymentMethod
from clinicare.store import InMemoryStore

TODAY = dt.date(2024, 1, 20)


def item(qty, price, description="Consultation"):
    return InvoiceLineItem(description=description, quantity=qty, unit_price=Decimal(price))


def invoice(items, tax="0", status=InvoiceStatus.PENDING, date=TODAY, invoice_id="INV-2024-01001"):
    return Invoice(id=invoice_id, patient_id="pat-1", date=date, items=items, tax=Decimal(tax), status=status)


def test_subtotal_and_total():
    items = [item(2, "15000"), item(1, "5000", "Lab test")]
    assert billing.subtotal(items) == Decimal("35000")
    assert billing.total(items, Decimal("1000")) == Decimal("36000")
    sums = billing.totals(items, Decimal("1000"))
    assert sums.total == sums.subtotal + sums.tax


def test_decimal_amounts_do_not_drift():
    items = [item(3, "0.10"), item(1, "0.20")]
    assert billing.subtotal(items) == Decimal("0.50")


def test_line_total_is_derived():
    line = item(4, "2500")
    assert line.total == Decimal("10000")
    assert billing.line_total(line) == line.total


@pytest.mark.parametrize("qty,price", [(0, "10"), (-1, "10"), (1, "-0.01")])
def test_bad_items_rejected(qty, price):
    with pytest.raises(ValidationError):
        billing.subtotal([item(qty, price)])


def test_negative_tax_rejected():
    with pytest.raises(ValidationError):
        billing.total([item(1, "100")], Decimal("-1"))


def test_empty_draft_allowed_but_not_finalized():
    draft = invoice([])
    assert billing.invoice_totals(draft).total == Decimal("0")
    with pytest.raises(ValidationError):
        billing.validate_for_finalization(draft)
    assert billing.validate_for_finalization(invoice([item(1, "500")], tax="50")).total == Decimal("550")


@pytest.mark.parametrize("last,expected", [
    (None, "INV-2024-01001"),
    ("INV-2024-01007", "INV-2024-01008"),
    ("INV-2023-12042", "INV-2024-01001"),
    ("garbage", "INV-2024-01001"),
])
def test_next_invoice_number(last, expected):
    assert billing.next_invoice_number(last, TODAY) == expected


def test_settle_marks_paid_once_covered():
    inv = invoice([item(2, "15000"), item(1, "5000")], tax="1000")
    partial = [Payment(invoice_id=inv.id, amount=Decimal("20000"))]
    assert billing.settle(inv, partial).status == InvoiceStatus.PENDING

    paid_at = dt.datetime(2024, 1, 21, 10, 0)
    full = partial + [Payment(invoice_id=inv.id, amount=Decimal("16000"),
                              payment_method=PaymentMethod.MOBILE_MONEY, paid_at=paid_at)]
    settled = billing.settle(inv, full)
    assert settled.status == InvoiceStatus.PAID
    assert settled.payment_method == PaymentMethod.MOBILE_MONEY
    assert settled.paid_at == paid_at


def test_settle_without_payments_leaves_invoice_open():
    free = invoice([item(1, "0")])
    assert billing.settle(free, []).status == InvoiceStatus.PENDING
    assert billing.settle(free, []).paid_at is None

    settled = billing.settle(free, [Payment(invoice_id=free.id, amount=Decimal("1"))])
    assert settled.status == InvoiceStatus.PAID


def test_non_positive_payment_rejected():
    inv = invoice([item(1, "100")])
    with pytest.raises(ValidationError):
        billing.settle(inv, [Payment(invoice_id=inv.id, amount=Decimal("0"))])


def test_mark_overdue():
    old = invoice([item(1, "100")], date=TODAY - dt.timedelta(days=31))
    assert billing.mark_overdue(old, TODAY).status == InvoiceStatus.OVERDUE
    assert billing.mark_overdue(invoice([item(1, "100")]), TODAY).status == InvoiceStatus.PENDING
    paid = old.model_copy(update={"status": InvoiceStatus.PAID})
    assert billing.mark_overdue(paid, TODAY).status == InvoiceStatus.PAID


def test_billing_stats():
    invoices = [
        invoice([item(1, "1000")], status=InvoiceStatus.PAID),
        invoice([item(2, "500")], tax="100", status=InvoiceStatus.PENDING),
        invoice([item(1, "300")], status=InvoiceStatus.OVERDUE, date=dt.date(2023, 11, 2)),
    ]
    stats = billing.billing_stats(invoices, TODAY)
    assert stats.total_revenue == Decimal("2400")
    assert stats.paid_amount == Decimal("1000")
    assert stats.pending_amount == Decimal("1100")
    assert stats.overdue_amount == Decimal("300")
    assert stats.monthly_revenue == Decimal("2100")
    assert (stats.total_invoices, stats.paid_invoices) == (3, 1)


def test_billing_stats_skips_invalid_rows(caplog):
    caplog.set_level(logging.WARNING, logger="clinicare.billing")
    invoices = [
        invoice([item(1, "1000")], status=InvoiceStatus.PAID),
        invoice([item(0, "500")], invoice_id="INV-2024-01002"),
        invoice([item(1, "200")], tax="-5", invoice_id="INV-2024-01003"),
    ]
    stats = billing.billing_stats(invoices, TODAY)
    assert (stats.total_invoices, stats.total_revenue) == (1, Decimal("1000"))
    assert "INV-2024-01002" in caplog.text
    assert "INV-2024-01003" in caplog.text


@pytest.mark.asyncio
async def test_totals_for_reads_stored_line_items():
    stored = invoice([item(2, "15000"), item(1, "5000", "Analyse")], tax="1000")
    store = InMemoryStore(invoices=[stored])

    sums = await billing.totals_for(store, stored.id)

    assert (sums.subtotal, sums.tax, sums.total) == (Decimal("35000"), Decimal("1000"), Decimal("36000"))
    with pytest.raises(NotFound):
        await billing.totals_for(store, "INV-1999-01001")
