"""
Billing engine: invoices, payments, balances and revenue.

Every function is pure: it takes the current collections and returns new
ones (plus whatever record it created). Callers persist the result and must
thread the returned settings into the next call when creating several
invoices in a row, otherwise invoice numbers collide.

Invoice status flow::

    draft --finalize--> unpaid --payment--> partial --payment--> paid
    unpaid/partial --due date passed--> overdue --payment--> partial/paid
    any status except paid --void--> void
"""
import datetime as dt
import logging
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, List, NamedTuple, Optional

from pydantic import BaseModel

from .errors import InvalidAmount, InvalidInvoiceReference, InvalidTransition
from .lessons import get_lessons_in_range
from .models import (
    BillingModel,
    BillingSettings,
    Invoice,
    InvoiceStatus,
    Lesson,
    LessonStatus,
    LineItem,
    Payment,
    PaymentMethod,
    Student,
    next_id,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
OPEN_STATUSES = (InvoiceStatus.UNPAID, InvoiceStatus.PARTIAL, InvoiceStatus.OVERDUE)
TERMINAL_STATUSES = (InvoiceStatus.PAID, InvoiceStatus.VOID)

SKIP_NO_LESSONS = "no lessons in period"
SKIP_ALREADY_INVOICED = "already invoiced for this period"


class CreatedInvoice(NamedTuple):
    invoices: List[Invoice]
    settings: BillingSettings
    new_invoice: Invoice


class RecordedPayment(NamedTuple):
    invoices: List[Invoice]
    payments: List[Payment]
    new_payment: Payment


class BatchResult(NamedTuple):
    invoices: List[Invoice]
    settings: BillingSettings
    new_invoices: List[Invoice]


class InvoicePreview(BaseModel):
    student_id: int
    student_name: str
    billing_model: BillingModel
    lesson_count: int
    completed_count: int
    scheduled_count: int
    items: List[LineItem]
    subtotal: Decimal
    period_start: dt.date
    period_end: dt.date
    period_label: str


class SkippedStudent(BaseModel):
    student_id: int
    student_name: str
    reason: str


class PreviewBatch(BaseModel):
    previews: List[InvoicePreview]
    skipped: List[SkippedStudent]


class OverdueInvoice(Invoice):
    days_overdue: int


class StudentBalance(BaseModel):
    student: Student
    balance: Decimal
    overdue_count: int


class LessonRevenue(BaseModel):
    total_earned: Decimal
    total_scheduled: Decimal
    completed_count: int
    scheduled_count: int


class InvoiceRevenue(BaseModel):
    total_invoiced: Decimal
    total_paid: Decimal
    total_outstanding: Decimal
    invoice_count: int
    paid_count: int
    overdue_count: int
    status_counts: dict


class MonthlyRevenue(BaseModel):
    label: str
    year: int
    month: int
    total: Decimal


# ── Helpers ──────────────────────────────────────────────────────────────
def _today(today: Optional[dt.date]) -> dt.date:
    return today or dt.date.today()


def _fields(data) -> dict:
    if hasattr(data, "model_dump"):
        return data.model_dump()
    return dict(data)


def _money(value, name: str) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidAmount(f"{name} must be a number, got {value!r}")


def _cents(value, name: str) -> Decimal:
    return _money(value, name).quantize(CENT, rounding=ROUND_HALF_UP)


def _build_item(raw) -> LineItem:
    fields = _fields(raw)
    quantity = _money(fields.get("quantity", 1), "quantity")
    rate = _money(fields.get("rate"), "rate")
    if quantity <= 0:
        raise InvalidAmount("Line item quantity must be positive")
    if rate < 0:
        raise InvalidAmount("Line item rate cannot be negative")
    return LineItem(
        description=fields.get("description") or "",
        quantity=quantity,
        rate=rate,
        amount=(quantity * rate).quantize(CENT, rounding=ROUND_HALF_UP),
    )


def _totals(items: List[LineItem], discount: Decimal, tax: Decimal):
    if discount < 0 or tax < 0:
        raise InvalidAmount("Discount and tax cannot be negative")
    subtotal = sum((item.amount for item in items), Decimal("0"))
    total = subtotal - discount + tax
    if total < 0:
        raise InvalidAmount("Discount is larger than the invoice amount")
    return subtotal, total


def _find(invoices: List[Invoice], invoice_id: int) -> Invoice:
    for invoice in invoices:
        if invoice.id == invoice_id:
            return invoice
    raise InvalidInvoiceReference(f"Invoice {invoice_id} not found")


def _replace(invoices: List[Invoice], updated: Invoice) -> List[Invoice]:
    return [updated if inv.id == updated.id else inv for inv in invoices]


def _lesson_rate(lesson: Lesson, student: Optional[Student]) -> Decimal:
    if lesson.rate is not None:
        return lesson.rate
    if student is not None and student.custom_rate is not None:
        return student.custom_rate
    return Decimal("0")


def _lesson_description(lesson: Lesson) -> str:
    return f"{lesson.lesson_type} lesson - {lesson.date:%m/%d/%Y}"


def period_label(start: dt.date, end: dt.date) -> str:
    return f"{start:%m/%d/%Y} - {end:%m/%d/%Y}"


def month_period(year: int, month: int):
    """First day, last day and a label ("October 2026") for a calendar month."""
    start = dt.date(year, month, 1)
    following = dt.date(year + 1, 1, 1) if month == 12 else dt.date(year, month + 1, 1)
    end = following - dt.timedelta(days=1)
    return start, end, f"{start:%B %Y}"


# ── Invoice CRUD ─────────────────────────────────────────────────────────
def create_invoice(
    invoices: List[Invoice],
    settings: BillingSettings,
    data,
    today: Optional[dt.date] = None,
) -> CreatedInvoice:
    """
    Create an invoice numbered ``{prefix}-{next_invoice_number}``.

    The returned settings have the counter advanced by one. New invoices are
    ``unpaid`` unless ``data`` asks for ``draft``.
    """
    fields = _fields(data)
    status = InvoiceStatus(fields.get("status") or InvoiceStatus.UNPAID)
    if status not in (InvoiceStatus.DRAFT, InvoiceStatus.UNPAID):
        raise InvalidTransition(f"New invoices cannot start as {status.value}")

    items = [_build_item(item) for item in fields.get("items") or []]
    discount = _cents(fields.get("discount"), "discount")
    tax = _cents(fields.get("tax"), "tax")
    subtotal, total = _totals(items, discount, tax)

    created = fields.get("created_date") or _today(today)
    due = fields.get("due_date") or created + dt.timedelta(days=settings.default_payment_terms_days)

    invoice = Invoice(
        id=next_id(invoices),
        invoice_number=f"{settings.invoice_prefix}-{settings.next_invoice_number}",
        student_id=fields["student_id"],
        status=status,
        created_date=created,
        due_date=due,
        items=items,
        subtotal=subtotal,
        discount=discount,
        tax=tax,
        total=total,
        amount_paid=Decimal("0"),
        balance=total,
        billing_model=fields.get("billing_model") or settings.default_billing_model,
        notes=fields.get("notes") or "",
        period_start=fields.get("period_start"),
        period_end=fields.get("period_end"),
    )
    new_settings = settings.model_copy(
        update={"next_invoice_number": settings.next_invoice_number + 1}
    )
    logger.info("Invoice %s created for student %s (total %s)", invoice.invoice_number, invoice.student_id, total)
    return CreatedInvoice([*invoices, invoice], new_settings, invoice)


def update_invoice(
    invoices: List[Invoice],
    invoice_id: int,
    changes: dict,
    today: Optional[dt.date] = None,
) -> List[Invoice]:
    """
    Edit notes, due date, items, discount or tax. Totals and balance are
    recomputed; payments already recorded are kept. An overdue invoice whose
    due date moves to today or later goes back to unpaid or partial.
    """
    invoice = _find(invoices, invoice_id)
    if invoice.status in TERMINAL_STATUSES:
        raise InvalidTransition(f"Invoice {invoice.invoice_number} is {invoice.status.value}")

    items = invoice.items
    if changes.get("items") is not None:
        items = [_build_item(item) for item in changes["items"]]
    discount = _cents(changes["discount"], "discount") if changes.get("discount") is not None else invoice.discount
    tax = _cents(changes["tax"], "tax") if changes.get("tax") is not None else invoice.tax
    subtotal, total = _totals(items, discount, tax)
    if total < invoice.amount_paid:
        raise InvalidAmount("Invoice total cannot drop below the amount already paid")

    balance = max(Decimal("0"), total - invoice.amount_paid)
    status = invoice.status
    if invoice.amount_paid > 0:
        if balance <= 0:
            status = InvoiceStatus.PAID
        elif status != InvoiceStatus.OVERDUE:
            status = InvoiceStatus.PARTIAL
    due_date = changes.get("due_date") or invoice.due_date
    if status == InvoiceStatus.OVERDUE and due_date >= _today(today):
        status = InvoiceStatus.PARTIAL if invoice.amount_paid > 0 else InvoiceStatus.UNPAID

    update = {
        "items": items,
        "discount": discount,
        "tax": tax,
        "subtotal": subtotal,
        "total": total,
        "balance": balance,
        "status": status,
        "due_date": due_date,
    }
    if changes.get("notes") is not None:
        update["notes"] = changes["notes"]
    return _replace(invoices, invoice.model_copy(update=update))


def void_invoice(invoices: List[Invoice], invoice_id: int) -> List[Invoice]:
    """Cancel an invoice. Total, items and amount paid stay for reporting."""
    invoice = _find(invoices, invoice_id)
    if invoice.status in TERMINAL_STATUSES:
        raise InvalidTransition(f"Invoice {invoice.invoice_number} is already {invoice.status.value}")
    logger.info("Invoice %s voided", invoice.invoice_number)
    return _replace(invoices, invoice.model_copy(update={"status": InvoiceStatus.VOID, "balance": Decimal("0")}))


def finalize_invoice(invoices: List[Invoice], invoice_id: int) -> List[Invoice]:
    invoice = _find(invoices, invoice_id)
    if invoice.status != InvoiceStatus.DRAFT:
        raise InvalidTransition(f"Only drafts can be finalized, {invoice.invoice_number} is {invoice.status.value}")
    return _replace(invoices, invoice.model_copy(update={"status": InvoiceStatus.UNPAID}))


def finalize_all_drafts(invoices: List[Invoice]) -> List[Invoice]:
    """Turn every draft into an unpaid invoice; other statuses are untouched."""
    finalized = [
        inv.model_copy(update={"status": InvoiceStatus.UNPAID}) if inv.status == InvoiceStatus.DRAFT else inv
        for inv in invoices
    ]
    logger.info("Finalized %d draft invoices", sum(1 for inv in invoices if inv.status == InvoiceStatus.DRAFT))
    return finalized


# ── Payment recording ────────────────────────────────────────────────────
def record_payment(
    invoices: List[Invoice],
    payments: List[Payment],
    data,
    today: Optional[dt.date] = None,
) -> RecordedPayment:
    """
    Record a payment and update the invoice's amount paid, balance and
    status. Overpayments are rejected, so amount paid never exceeds the total.

    Due dates are not checked here; run ``check_overdue_invoices`` afterwards
    to put an underpaid past-due invoice back into ``overdue``.
    """
    fields = _fields(data)
    invoice = _find(invoices, fields.get("invoice_id"))
    amount = _cents(fields.get("amount"), "amount")

    if amount <= 0:
        raise InvalidAmount("Payment amount must be positive")
    if invoice.status not in OPEN_STATUSES:
        raise InvalidTransition(f"Invoice {invoice.invoice_number} is {invoice.status.value} and cannot take payments")
    if amount > invoice.balance:
        raise InvalidAmount(f"Payment of {amount} exceeds the balance of {invoice.balance}")
    student_id = fields.get("student_id") or invoice.student_id
    if student_id != invoice.student_id:
        raise InvalidInvoiceReference(f"Invoice {invoice.invoice_number} does not belong to student {student_id}")

    payment = Payment(
        id=next_id(payments),
        invoice_id=invoice.id,
        student_id=invoice.student_id,
        amount=amount,
        method=fields.get("method") or PaymentMethod.CASH,
        date=fields.get("date") or _today(today),
        notes=fields.get("notes") or "",
        external_id=fields.get("external_id"),
    )

    amount_paid = invoice.amount_paid + amount
    balance = invoice.total - amount_paid
    status = invoice.status
    if balance <= 0:
        status = InvoiceStatus.PAID
    elif amount_paid > 0:
        status = InvoiceStatus.PARTIAL

    updated = invoice.model_copy(
        update={"amount_paid": amount_paid, "balance": max(Decimal("0"), balance), "status": status}
    )
    logger.info("Payment of %s recorded on %s, now %s", amount, invoice.invoice_number, status.value)
    return RecordedPayment(_replace(invoices, updated), [*payments, payment], payment)


def record_unapplied_payment(
    payments: List[Payment],
    invoice: Invoice,
    data,
    today: Optional[dt.date] = None,
) -> List[Payment]:
    """
    Keep money that was already collected but cannot be applied to
    ``invoice`` (voided, already paid, or more than the balance). The invoice
    is left untouched; the payment is stored with ``applied=False``.
    """
    fields = _fields(data)
    amount = _cents(fields.get("amount"), "amount")
    if amount <= 0:
        raise InvalidAmount("Payment amount must be positive")
    payment = Payment(
        id=next_id(payments),
        invoice_id=invoice.id,
        student_id=invoice.student_id,
        amount=amount,
        method=fields.get("method") or PaymentMethod.CASH,
        date=fields.get("date") or _today(today),
        notes=fields.get("notes") or "",
        external_id=fields.get("external_id"),
        applied=False,
    )
    logger.warning("Unapplied payment of %s kept for %s (%s)", amount, invoice.invoice_number, invoice.status.value)
    return [*payments, payment]


# ── Overdue detection ────────────────────────────────────────────────────
def check_overdue_invoices(invoices: List[Invoice], today: Optional[dt.date] = None) -> List[Invoice]:
    """
    Mark unpaid and partial invoices whose due date has passed as overdue.
    Returns the very same list when nothing changed.
    """
    today = _today(today)
    changed = False
    updated = []
    for inv in invoices:
        if inv.status in (InvoiceStatus.UNPAID, InvoiceStatus.PARTIAL) and inv.due_date < today:
            inv = inv.model_copy(update={"status": InvoiceStatus.OVERDUE})
            changed = True
        updated.append(inv)
    if not changed:
        return invoices
    logger.info("Marked %d invoices overdue", sum(1 for a, b in zip(invoices, updated) if a is not b))
    return updated


def get_overdue_invoices(invoices: Iterable[Invoice], today: Optional[dt.date] = None) -> List[OverdueInvoice]:
    today = _today(today)
    overdue = [
        OverdueInvoice(**inv.model_dump(), days_overdue=(today - inv.due_date).days)
        for inv in invoices
        if inv.status == InvoiceStatus.OVERDUE
    ]
    return sorted(overdue, key=lambda inv: inv.days_overdue, reverse=True)


# ── Balances & revenue ───────────────────────────────────────────────────
def _open_invoices(invoices: Iterable[Invoice], student_id: int) -> List[Invoice]:
    return [inv for inv in invoices if inv.student_id == student_id and inv.status in OPEN_STATUSES]


def get_student_balance(invoices: Iterable[Invoice], student_id: int) -> Decimal:
    """Sum of balances on the student's open (not draft, paid or void) invoices."""
    return sum((inv.balance for inv in _open_invoices(invoices, student_id)), Decimal("0"))


def get_outstanding_balances(
    invoices: List[Invoice],
    students: Iterable[Student],
    today: Optional[dt.date] = None,
) -> List[StudentBalance]:
    """Students owing money, largest balance first."""
    today = _today(today)
    result = []
    for student in students:
        open_invoices = _open_invoices(invoices, student.id)
        balance = sum((inv.balance for inv in open_invoices), Decimal("0"))
        if balance <= 0:
            continue
        overdue_count = sum(1 for inv in open_invoices if inv.due_date < today)
        result.append(StudentBalance(student=student, balance=balance, overdue_count=overdue_count))
    return sorted(result, key=lambda item: item.balance, reverse=True)


def get_lesson_revenue(lessons: Iterable[Lesson]) -> LessonRevenue:
    """Earned (completed) versus projected (scheduled) lesson revenue."""
    lessons = list(lessons)
    completed = [l for l in lessons if l.status == LessonStatus.COMPLETED]
    scheduled = [l for l in lessons if l.status == LessonStatus.SCHEDULED]
    return LessonRevenue(
        total_earned=sum((l.rate or Decimal("0") for l in completed), Decimal("0")),
        total_scheduled=sum((l.rate or Decimal("0") for l in scheduled), Decimal("0")),
        completed_count=len(completed),
        scheduled_count=len(scheduled),
    )


def get_invoice_revenue(invoices: Iterable[Invoice]) -> InvoiceRevenue:
    invoices = list(invoices)
    active = [inv for inv in invoices if inv.status not in (InvoiceStatus.VOID, InvoiceStatus.DRAFT)]
    status_counts = {status.value: 0 for status in InvoiceStatus}
    for inv in invoices:
        status_counts[inv.status.value] += 1
    return InvoiceRevenue(
        total_invoiced=sum((inv.total for inv in active), Decimal("0")),
        total_paid=sum((inv.amount_paid for inv in active), Decimal("0")),
        total_outstanding=sum((inv.balance for inv in active), Decimal("0")),
        invoice_count=len(active),
        paid_count=status_counts[InvoiceStatus.PAID.value],
        overdue_count=status_counts[InvoiceStatus.OVERDUE.value],
        status_counts=status_counts,
    )


def get_monthly_revenue(
    payments: Iterable[Payment],
    months: int = 6,
    today: Optional[dt.date] = None,
) -> List[MonthlyRevenue]:
    """Payment totals for the last ``months`` calendar months, oldest first."""
    today = _today(today)
    payments = list(payments)
    result = []
    for back in range(months - 1, -1, -1):
        year, month0 = divmod(today.year * 12 + today.month - 1 - back, 12)
        month = month0 + 1
        total = sum(
            (p.amount for p in payments if p.date.year == year and p.date.month == month),
            Decimal("0"),
        )
        label = dt.date(year, month, 1).strftime("%b %y")
        result.append(MonthlyRevenue(label=label, year=year, month=month, total=total))
    return result


# ── Invoices from lessons ────────────────────────────────────────────────
def build_items_from_lessons(lessons: Iterable[Lesson], student_id: int) -> List[LineItem]:
    """One line per completed lesson of the student."""
    return [
        _build_item({"description": _lesson_description(l), "quantity": 1, "rate": l.rate or 0})
        for l in lessons
        if l.student_id == student_id and l.status == LessonStatus.COMPLETED
    ]


def _already_invoiced(invoices: Iterable[Invoice], student_id: int, start: dt.date, end: dt.date) -> bool:
    for inv in invoices:
        if inv.student_id != student_id or inv.status == InvoiceStatus.VOID:
            continue
        if inv.period_start is None or inv.period_end is None:
            continue
        if inv.period_start <= end and start <= inv.period_end:
            return True
    return False


def _preview_items(student: Student, lessons: List[Lesson], label: str) -> List[LineItem]:
    if student.billing_model == BillingModel.MONTHLY and student.monthly_rate is not None:
        return [_build_item({"description": f"Monthly tuition - {label}", "quantity": 1, "rate": student.monthly_rate})]
    if student.billing_model == BillingModel.PER_COURSE:
        lesson_type = lessons[0].lesson_type
        course_rate = sum((_lesson_rate(l, student) for l in lessons), Decimal("0"))
        return [_build_item({
            "description": f"{lesson_type} course ({len(lessons)} lessons, {label})",
            "quantity": 1,
            "rate": course_rate,
        })]
    return [
        _build_item({"description": _lesson_description(l), "quantity": 1, "rate": _lesson_rate(l, student)})
        for l in lessons
    ]


def generate_invoice_previews(
    students: Iterable[Student],
    lessons: List[Lesson],
    invoices: List[Invoice],
    start_date: dt.date,
    end_date: dt.date,
    label: Optional[str] = None,
) -> PreviewBatch:
    """
    First phase of batch invoicing: work out what each student would be
    billed for the period. Students without countable lessons, or already
    invoiced for an overlapping period, are listed in ``skipped``.
    """
    label = label or period_label(start_date, end_date)
    previews, skipped = [], []
    for student in students:
        window = [
            l for l in get_lessons_in_range(lessons, start_date, end_date, student.id)
            if l.status != LessonStatus.CANCELLED
        ]
        if not window:
            skipped.append(SkippedStudent(student_id=student.id, student_name=student.name, reason=SKIP_NO_LESSONS))
            continue
        if _already_invoiced(invoices, student.id, start_date, end_date):
            skipped.append(SkippedStudent(student_id=student.id, student_name=student.name, reason=SKIP_ALREADY_INVOICED))
            continue

        items = _preview_items(student, window, label)
        previews.append(InvoicePreview(
            student_id=student.id,
            student_name=student.name,
            billing_model=student.billing_model,
            lesson_count=len(window),
            completed_count=sum(1 for l in window if l.status == LessonStatus.COMPLETED),
            scheduled_count=sum(1 for l in window if l.status == LessonStatus.SCHEDULED),
            items=items,
            subtotal=sum((item.amount for item in items), Decimal("0")),
            period_start=start_date,
            period_end=end_date,
            period_label=label,
        ))
    logger.debug("Invoice previews for %s: %d ready, %d skipped", label, len(previews), len(skipped))
    return PreviewBatch(previews=previews, skipped=skipped)


def create_batch_invoices(
    invoices: List[Invoice],
    settings: BillingSettings,
    approved: Iterable[InvoicePreview],
    start_date: dt.date,
    end_date: dt.date,
    today: Optional[dt.date] = None,
) -> BatchResult:
    """Second phase: one draft invoice per approved preview, numbered in sequence."""
    new_invoices = []
    for preview in approved:
        invoices, settings, invoice = create_invoice(invoices, settings, {
            "student_id": preview.student_id,
            "items": preview.items,
            "billing_model": preview.billing_model,
            "status": InvoiceStatus.DRAFT,
            "notes": f"Lessons for {preview.period_label}",
            "period_start": start_date,
            "period_end": end_date,
        }, today=today)
        new_invoices.append(invoice)
    return BatchResult(invoices, settings, new_invoices)
