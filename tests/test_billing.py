"""
Billing engine tests.
- totals, numbering and cent rounding on create/update
- payments: partial, full, overpayment, closed invoices, unapplied money
- void and finalize transitions
- overdue overlay, including a due date moved forward
- balances, revenue and two-phase batch invoicing
"""
from datetime import date
from decimal import Decimal

import pytest

from cadence.billing import (
    SKIP_ALREADY_INVOICED,
    SKIP_NO_LESSONS,
    build_items_from_lessons,
    check_overdue_invoices,
    create_batch_invoices,
    create_invoice,
    finalize_all_drafts,
    finalize_invoice,
    generate_invoice_previews,
    get_invoice_revenue,
    get_lesson_revenue,
    get_monthly_revenue,
    get_outstanding_balances,
    get_overdue_invoices,
    get_student_balance,
    month_period,
    record_payment,
    record_unapplied_payment,
    update_invoice,
    void_invoice,
)
from cadence.errors import InvalidAmount, InvalidInvoiceReference, InvalidTransition
from cadence.models import InvoiceStatus, LessonStatus, Payment, PaymentMethod

ISSUED = date(2026, 10, 1)


def one_hundred(invoices, settings, student_id=1, **extra):
    data = {"student_id": student_id, "items": [{"description": "Lessons", "quantity": 1, "rate": 100}], **extra}
    return create_invoice(invoices, settings, data, today=ISSUED)


def pay(invoices, amount, invoice_id=1, payments=None, **extra):
    data = {"invoice_id": invoice_id, "amount": amount, **extra}
    return record_payment(invoices, payments or [], data, today=ISSUED)


def assert_consistent(invoice):
    assert invoice.subtotal == sum((item.amount for item in invoice.items), Decimal("0"))
    assert invoice.total == invoice.subtotal - invoice.discount + invoice.tax
    if invoice.status != InvoiceStatus.VOID:
        assert invoice.balance == max(Decimal("0"), invoice.total - invoice.amount_paid)


# ── Creation ─────────────────────────────────────────────────────────────
def test_create_invoice_computes_totals(settings):
    invoices, new_settings, invoice = create_invoice([], settings, {
        "student_id": 1,
        "items": [{"description": "Lesson", "quantity": 2, "rate": "45.50"}],
        "discount": 10,
        "tax": 5,
    }, today=ISSUED)
    assert invoice.items[0].amount == Decimal("91.00")
    assert invoice.subtotal == Decimal("91.00")
    assert invoice.total == Decimal("86.00")
    assert invoice.balance == invoice.total
    assert invoice.amount_paid == 0
    assert invoice.status == InvoiceStatus.UNPAID
    assert invoice.due_date == date(2026, 10, 31)
    assert invoice.invoice_number == "INV-1001"
    assert new_settings.next_invoice_number == 1002
    assert settings.next_invoice_number == 1001
    assert invoices == [invoice]
    assert_consistent(invoice)


def test_numbering_is_consecutive_when_settings_are_threaded(settings):
    invoices = []
    for student_id in (1, 2, 3, 1, 2):
        invoices, settings, _ = one_hundred(invoices, settings, student_id)
    assert [inv.invoice_number for inv in invoices] == [f"INV-{n}" for n in range(1001, 1006)]
    assert [inv.id for inv in invoices] == [1, 2, 3, 4, 5]
    assert settings.next_invoice_number == 1006


def test_custom_prefix_and_terms(settings):
    settings = settings.model_copy(update={"invoice_prefix": "STU", "default_payment_terms_days": 14})
    _, _, invoice = one_hundred([], settings)
    assert invoice.invoice_number == "STU-1001"
    assert invoice.due_date == date(2026, 10, 15)


@pytest.mark.parametrize(
    "data",
    [
        {"items": [{"quantity": 0, "rate": 10}]},
        {"items": [{"quantity": 1, "rate": -10}]},
        {"items": [{"quantity": 1, "rate": 10}], "discount": -1},
        {"items": [{"quantity": 1, "rate": 10}], "discount": 20},
    ],
)
def test_create_invoice_rejects_bad_amounts(settings, data):
    with pytest.raises(InvalidAmount):
        create_invoice([], settings, {"student_id": 1, **data}, today=ISSUED)


def test_new_invoice_cannot_start_paid(settings):
    with pytest.raises(InvalidTransition):
        one_hundred([], settings, status=InvoiceStatus.PAID)


def test_discount_and_tax_are_rounded_to_cents(settings):
    invoices, _, invoice = one_hundred([], settings, discount="10.004", tax="2.345")
    assert invoice.discount == Decimal("10.00")
    assert invoice.tax == Decimal("2.35")
    assert invoice.total == Decimal("92.35")
    assert_consistent(invoice)
    updated = update_invoice(invoices, 1, {"discount": "0.125"})[0]
    assert updated.discount == Decimal("0.13")
    assert_consistent(updated)


# ── Payments ─────────────────────────────────────────────────────────────
def test_full_payment(settings):
    invoices, _, _ = one_hundred([], settings)
    invoices, payments, payment = pay(invoices, 100, method=PaymentMethod.VENMO)
    invoice = invoices[0]
    assert (invoice.amount_paid, invoice.balance, invoice.status) == (100, 0, InvoiceStatus.PAID)
    assert payment.method == PaymentMethod.VENMO
    assert payment.student_id == 1
    assert payment.date == ISSUED
    assert payments == [payment]


def test_partial_then_full_payment(settings):
    invoices, _, _ = one_hundred([], settings)
    invoices, payments, _ = pay(invoices, 40)
    assert (invoices[0].balance, invoices[0].status) == (60, InvoiceStatus.PARTIAL)
    invoices, payments, _ = pay(invoices, 60, payments=payments)
    assert (invoices[0].balance, invoices[0].status) == (0, InvoiceStatus.PAID)
    assert [p.id for p in payments] == [1, 2]
    assert_consistent(invoices[0])


def test_overpayment_is_rejected(settings):
    invoices, _, _ = one_hundred([], settings)
    invoices, payments, _ = pay(invoices, 40)
    with pytest.raises(InvalidAmount):
        pay(invoices, "60.01", payments=payments)


@pytest.mark.parametrize("amount", [0, -5])
def test_non_positive_payment_is_rejected(settings, amount):
    invoices, _, _ = one_hundred([], settings)
    with pytest.raises(InvalidAmount):
        pay(invoices, amount)


def test_payment_for_unknown_invoice_or_other_student(settings):
    invoices, _, _ = one_hundred([], settings)
    with pytest.raises(InvalidInvoiceReference):
        pay(invoices, 10, invoice_id=42)
    with pytest.raises(InvalidInvoiceReference):
        pay(invoices, 10, student_id=2)


def test_payment_requires_open_invoice(settings):
    invoices, _, _ = one_hundred([], settings, status=InvoiceStatus.DRAFT)
    with pytest.raises(InvalidTransition):
        pay(invoices, 10)
    with pytest.raises(InvalidTransition):
        pay(void_invoice(invoices, 1), 10)


def test_unapplied_payment_leaves_invoice_untouched(settings):
    invoices, _, _ = one_hundred([], settings)
    voided = void_invoice(invoices, 1)
    payments = record_unapplied_payment([], voided[0], {"amount": "40", "method": PaymentMethod.CARD, "external_id": "pi_1"}, today=ISSUED)
    assert [(p.invoice_id, p.amount, p.applied, p.external_id, p.date) for p in payments] == [(1, 40, False, "pi_1", ISSUED)]
    assert voided[0].amount_paid == 0
    with pytest.raises(InvalidAmount):
        record_unapplied_payment(payments, voided[0], {"amount": 0})


# ── Void / finalize / update ─────────────────────────────────────────────
def test_void_preserves_total_and_amount_paid(settings):
    invoices, _, _ = one_hundred([], settings)
    invoices, _, _ = pay(invoices, 20)
    voided = void_invoice(invoices, 1)[0]
    assert voided.status == InvoiceStatus.VOID
    assert voided.balance == 0
    assert voided.amount_paid == 20
    assert voided.total == 100
    assert voided.items == invoices[0].items


def test_terminal_invoices_cannot_be_voided(settings):
    invoices, _, _ = one_hundred([], settings)
    with pytest.raises(InvalidTransition):
        void_invoice(void_invoice(invoices, 1), 1)
    paid, _, _ = pay(invoices, 100)
    with pytest.raises(InvalidTransition):
        void_invoice(paid, 1)


def test_finalize(settings):
    invoices, settings, _ = one_hundred([], settings, status=InvoiceStatus.DRAFT)
    invoices, settings, _ = one_hundred(invoices, settings)
    invoices, settings, _ = one_hundred(invoices, settings, status=InvoiceStatus.DRAFT)
    invoices = void_invoice(invoices, 3)
    result = finalize_all_drafts(invoices)
    assert [inv.status for inv in result] == [InvoiceStatus.UNPAID, InvoiceStatus.UNPAID, InvoiceStatus.VOID]
    with pytest.raises(InvalidTransition):
        finalize_invoice(result, 1)
    assert finalize_invoice(invoices, 1)[0].status == InvoiceStatus.UNPAID


def test_update_invoice_recomputes(settings):
    invoices, _, _ = one_hundred([], settings)
    invoices, _, _ = pay(invoices, 30)
    updated = update_invoice(invoices, 1, {"discount": "20", "notes": "sibling discount"})[0]
    assert updated.total == 80
    assert updated.balance == 50
    assert updated.status == InvoiceStatus.PARTIAL
    assert updated.notes == "sibling discount"
    assert_consistent(updated)
    with pytest.raises(InvalidAmount):
        update_invoice(invoices, 1, {"discount": "75"})


# ── Overdue ──────────────────────────────────────────────────────────────
def test_overdue_scan_is_idempotent(settings):
    invoices, settings, _ = one_hundred([], settings)
    invoices, settings, _ = one_hundred(invoices, settings, due_date=date(2026, 12, 1))
    once = check_overdue_invoices(invoices, today=date(2026, 11, 5))
    twice = check_overdue_invoices(once, today=date(2026, 11, 5))
    assert [inv.status for inv in once] == [InvoiceStatus.OVERDUE, InvoiceStatus.UNPAID]
    assert twice is once


def test_due_today_is_not_overdue(settings):
    invoices, _, _ = one_hundred([], settings)
    assert check_overdue_invoices(invoices, today=date(2026, 10, 31)) is invoices


def test_overdue_is_an_overlay(settings):
    invoices, _, _ = one_hundred([], settings)
    invoices = check_overdue_invoices(invoices, today=date(2026, 11, 5))
    invoices, payments, _ = pay(invoices, 40)
    assert invoices[0].status == InvoiceStatus.PARTIAL
    invoices = check_overdue_invoices(invoices, today=date(2026, 11, 5))
    assert invoices[0].status == InvoiceStatus.OVERDUE
    invoices, _, _ = pay(invoices, 60, payments=payments)
    assert invoices[0].status == InvoiceStatus.PAID


def test_get_overdue_invoices_sorted_by_days(settings):
    invoices, settings, _ = one_hundred([], settings, due_date=date(2026, 10, 20))
    invoices, settings, _ = one_hundred(invoices, settings, due_date=date(2026, 10, 10))
    invoices = check_overdue_invoices(invoices, today=date(2026, 10, 25))
    overdue = get_overdue_invoices(invoices, today=date(2026, 10, 25))
    assert [(inv.id, inv.days_overdue) for inv in overdue] == [(2, 15), (1, 5)]


def test_moving_due_date_forward_clears_overdue(settings):
    today = date(2026, 11, 5)
    invoices, settings, _ = one_hundred([], settings)
    invoices, settings, _ = one_hundred(invoices, settings)
    invoices = check_overdue_invoices(invoices, today=today)
    invoices, _, _ = pay(invoices, 40, invoice_id=2)
    invoices = check_overdue_invoices(invoices, today=today)
    assert [inv.status for inv in invoices] == [InvoiceStatus.OVERDUE, InvoiceStatus.OVERDUE]

    invoices = update_invoice(invoices, 1, {"due_date": date(2026, 11, 30)}, today=today)
    invoices = update_invoice(invoices, 2, {"due_date": today}, today=today)
    assert [inv.status for inv in invoices] == [InvoiceStatus.UNPAID, InvoiceStatus.PARTIAL]
    assert invoices[0].due_date == date(2026, 11, 30)
    assert check_overdue_invoices(invoices, today=today) is invoices
    assert get_overdue_invoices(invoices, today=today) == []

    # a due date still in the past keeps the overlay
    invoices = check_overdue_invoices(update_invoice(invoices, 1, {"due_date": date(2026, 11, 1)}, today=today), today=today)
    assert invoices[0].status == InvoiceStatus.OVERDUE


# ── Balances & revenue ───────────────────────────────────────────────────
def test_balances_skip_drafts_and_closed_invoices(settings, students):
    invoices, settings, _ = one_hundred([], settings, student_id=1)
    invoices, settings, _ = one_hundred(invoices, settings, student_id=1, status=InvoiceStatus.DRAFT)
    invoices, settings, _ = one_hundred(invoices, settings, student_id=2)
    invoices, settings, _ = one_hundred(invoices, settings, student_id=3)
    invoices, _, _ = pay(invoices, 100, invoice_id=4)
    invoices, _, _ = pay(invoices, 25, invoice_id=3)
    invoices = void_invoice(invoices, 1)
    invoices, settings, _ = one_hundred(invoices, settings, student_id=1, due_date=date(2026, 10, 5))

    assert get_student_balance(invoices, 1) == 100
    assert get_student_balance(invoices, 2) == 75
    assert get_student_balance(invoices, 3) == 0

    outstanding = get_outstanding_balances(invoices, students, today=date(2026, 10, 16))
    assert [(b.student.id, b.balance, b.overdue_count) for b in outstanding] == [(1, 100, 1), (2, 75, 0)]


def test_lesson_revenue(make_lesson):
    day = date(2026, 10, 20)
    lessons = [
        make_lesson(1, 1, day, rate=40, status=LessonStatus.COMPLETED),
        make_lesson(2, 1, day, rate=40),
        make_lesson(3, 1, day, rate=55),
        make_lesson(4, 1, day, rate=99, status=LessonStatus.CANCELLED),
    ]
    revenue = get_lesson_revenue(lessons)
    assert (revenue.total_earned, revenue.total_scheduled) == (40, 95)
    assert (revenue.completed_count, revenue.scheduled_count) == (1, 2)


def test_invoice_revenue(settings):
    invoices, settings, _ = one_hundred([], settings)
    invoices, settings, _ = one_hundred(invoices, settings)
    invoices, settings, _ = one_hundred(invoices, settings)
    invoices, settings, _ = one_hundred(invoices, settings, status=InvoiceStatus.DRAFT)
    invoices, _, _ = pay(invoices, 100, invoice_id=1)
    invoices, _, _ = pay(invoices, 20, invoice_id=2)
    invoices = void_invoice(invoices, 3)

    revenue = get_invoice_revenue(invoices)
    assert revenue.total_invoiced == 200
    assert revenue.total_paid == 120
    assert revenue.total_outstanding == 80
    assert revenue.invoice_count == 2
    assert revenue.paid_count == 1
    assert revenue.status_counts["draft"] == 1
    assert revenue.status_counts["void"] == 1


def test_monthly_revenue_zero_fills():
    payments = [
        Payment(id=1, invoice_id=1, student_id=1, amount=Decimal("50"), date=date(2026, 10, 2)),
        Payment(id=2, invoice_id=1, student_id=1, amount=Decimal("25"), date=date(2026, 10, 15)),
        Payment(id=3, invoice_id=2, student_id=2, amount=Decimal("80"), date=date(2026, 8, 30)),
        Payment(id=4, invoice_id=2, student_id=2, amount=Decimal("10"), date=date(2025, 10, 1)),
    ]
    months = get_monthly_revenue(payments, months=3, today=date(2026, 10, 16))
    assert [(m.label, m.total) for m in months] == [("Aug 26", 80), ("Sep 26", 0), ("Oct 26", 75)]


def test_monthly_revenue_crosses_year_boundary():
    months = get_monthly_revenue([], months=3, today=date(2026, 1, 10))
    assert [(m.year, m.month) for m in months] == [(2025, 11), (2025, 12), (2026, 1)]


# ── Invoices from lessons ────────────────────────────────────────────────
@pytest.fixture
def october_lessons(make_lesson):
    return [
        make_lesson(1, 1, date(2026, 10, 5), status=LessonStatus.COMPLETED),
        make_lesson(2, 1, date(2026, 10, 12), rate=45),
        make_lesson(3, 1, date(2026, 10, 19), status=LessonStatus.CANCELLED),
        make_lesson(4, 3, date(2026, 10, 6), rate=35),
        make_lesson(5, 4, date(2026, 10, 7), rate=30, lesson_type="Guitar"),
        make_lesson(6, 4, date(2026, 10, 14), rate=30, lesson_type="Guitar"),
        make_lesson(7, 4, date(2026, 10, 21), rate=30, lesson_type="Guitar"),
        make_lesson(8, 2, date(2026, 11, 2), rate=30),
    ]


def test_previews_per_billing_model(students, october_lessons):
    start, end, label = month_period(2026, 10)
    batch = generate_invoice_previews(students, october_lessons, [], start, end, label)
    previews = {p.student_id: p for p in batch.previews}

    ana = previews[1]
    assert [item.description for item in ana.items] == [
        "Private Lesson lesson - 10/05/2026",
        "Private Lesson lesson - 10/12/2026",
    ]
    assert ana.subtotal == Decimal("85.00")
    assert (ana.lesson_count, ana.completed_count, ana.scheduled_count) == (2, 1, 1)

    cara = previews[3]
    assert len(cara.items) == 1
    assert cara.subtotal == Decimal("150.00")
    assert "October 2026" in cara.items[0].description

    dev = previews[4]
    assert len(dev.items) == 1
    assert dev.subtotal == Decimal("90.00")
    assert dev.items[0].description.startswith("Guitar course (3 lessons")

    assert [(s.student_id, s.reason) for s in batch.skipped] == [(2, SKIP_NO_LESSONS)]


def test_batch_creates_numbered_drafts_and_blocks_reinvoicing(settings, students, october_lessons):
    start, end, label = month_period(2026, 10)
    batch = generate_invoice_previews(students, october_lessons, [], start, end, label)
    approved = [p for p in batch.previews if p.student_id != 4]
    invoices, settings, created = create_batch_invoices([], settings, approved, start, end, today=ISSUED)

    assert [inv.invoice_number for inv in created] == ["INV-1001", "INV-1002"]
    assert settings.next_invoice_number == 1003
    assert all(inv.status == InvoiceStatus.DRAFT for inv in created)
    assert created[0].notes == "Lessons for October 2026"
    assert (created[0].period_start, created[0].period_end) == (start, end)
    assert get_student_balance(invoices, 1) == 0

    again = generate_invoice_previews(students, october_lessons, invoices, date(2026, 10, 10), date(2026, 11, 15))
    skipped = {s.student_id: s.reason for s in again.skipped}
    assert skipped[1] == SKIP_ALREADY_INVOICED
    assert {p.student_id for p in again.previews} == {2, 4}


def test_voided_invoice_does_not_block_reinvoicing(settings, students, october_lessons):
    start, end, label = month_period(2026, 10)
    batch = generate_invoice_previews(students, october_lessons, [], start, end, label)
    invoices, settings, _ = create_batch_invoices([], settings, batch.previews[:1], start, end, today=ISSUED)
    invoices = void_invoice(invoices, 1)
    again = generate_invoice_previews(students, october_lessons, invoices, start, end, label)
    assert batch.previews[0].student_id in {p.student_id for p in again.previews}


def test_build_items_from_completed_lessons(make_lesson):
    day = date(2026, 10, 5)
    lessons = [
        make_lesson(1, 1, day, rate=40, status=LessonStatus.COMPLETED),
        make_lesson(2, 1, day, rate=40),
        make_lesson(3, 2, day, rate=40, status=LessonStatus.COMPLETED),
    ]
    items = build_items_from_lessons(lessons, 1)
    assert [(i.description, i.amount) for i in items] == [("Private Lesson lesson - 10/05/2026", Decimal("40.00"))]
