import datetime as dt
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, EmailStr

from .billing import InvoiceRevenue, LessonRevenue, SkippedStudent
from .models import Attendance, BillingModel, Invoice, InvoiceStatus, Lesson, PaymentMethod


# ── Students ─────────────────────────────────────────────────────────────
class StudentCreate(BaseModel):
    name: str
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    is_minor: bool = False
    parent_name: Optional[str] = None
    parent_email: Optional[EmailStr] = None
    parent_phone: Optional[str] = None
    default_lesson_type: Optional[str] = None
    custom_rate: Optional[Decimal] = None
    billing_model: BillingModel = BillingModel.PER_LESSON
    monthly_rate: Optional[Decimal] = None
    notes: str = ""


class StudentUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    is_minor: Optional[bool] = None
    parent_name: Optional[str] = None
    parent_email: Optional[EmailStr] = None
    parent_phone: Optional[str] = None
    default_lesson_type: Optional[str] = None
    custom_rate: Optional[Decimal] = None
    billing_model: Optional[BillingModel] = None
    monthly_rate: Optional[Decimal] = None
    notes: Optional[str] = None


# ── Lessons ──────────────────────────────────────────────────────────────
class LessonCreate(BaseModel):
    student_id: int
    date: dt.date
    time: dt.time
    lesson_type: str = "Private Lesson"
    duration: int = 30
    rate: Optional[Decimal] = None
    notes: str = ""


class LessonUpdate(BaseModel):
    student_id: Optional[int] = None
    lesson_type: Optional[str] = None
    duration: Optional[int] = None
    rate: Optional[Decimal] = None
    notes: Optional[str] = None


class RecurringLessonCreate(LessonCreate):
    frequency: str = "weekly"
    repeat_weekdays: List[int] = []
    end_rule: str = "never"
    count: Optional[int] = None
    end_date: Optional[dt.date] = None


class RecurrencePreviewRequest(BaseModel):
    # kept as plain strings: a bad date means "no dates", not a validation error
    start_date: Optional[str] = None
    frequency: str = "weekly"
    repeat_weekdays: List[int] = []
    end_rule: str = "never"
    count: Optional[int] = None
    end_date: Optional[str] = None


class RecurrencePreview(BaseModel):
    dates: List[dt.date]
    count: int


class LessonCandidate(BaseModel):
    id: Optional[int] = None
    date: dt.date
    time: dt.time
    duration: int = 30


class LessonsCreated(BaseModel):
    lessons: List[Lesson]
    conflicts: List[Lesson]


class LessonComplete(BaseModel):
    attendance: Attendance = Attendance.PRESENT
    notes: Optional[str] = None


class LessonReschedule(BaseModel):
    date: dt.date
    time: dt.time


class LayoutEntry(BaseModel):
    lesson_id: int
    time_label: str
    column_index: int
    total_columns: int


# ── Invoices ─────────────────────────────────────────────────────────────
class LineItemCreate(BaseModel):
    description: str = ""
    quantity: Decimal = Decimal("1")
    rate: Decimal = Decimal("0")


class InvoiceCreate(BaseModel):
    student_id: int
    items: List[LineItemCreate] = []
    discount: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")
    created_date: Optional[dt.date] = None
    due_date: Optional[dt.date] = None
    billing_model: Optional[BillingModel] = None
    notes: str = ""
    status: InvoiceStatus = InvoiceStatus.UNPAID


class InvoiceUpdate(BaseModel):
    items: Optional[List[LineItemCreate]] = None
    discount: Optional[Decimal] = None
    tax: Optional[Decimal] = None
    due_date: Optional[dt.date] = None
    notes: Optional[str] = None


class BillingPeriod(BaseModel):
    """Either an explicit date range or a calendar month."""
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    year: Optional[int] = None
    month: Optional[int] = None
    label: Optional[str] = None


class BatchCreate(BillingPeriod):
    # approved students; None approves every preview
    student_ids: Optional[List[int]] = None


class BatchCreated(BaseModel):
    invoices: List[Invoice]
    skipped: List[SkippedStudent]


# ── Payments ─────────────────────────────────────────────────────────────
class PaymentCreate(BaseModel):
    invoice_id: int
    amount: Decimal
    method: PaymentMethod = PaymentMethod.CASH
    date: Optional[dt.date] = None
    notes: str = ""
    student_id: Optional[int] = None


# ── Settings & reports ───────────────────────────────────────────────────
class BillingSettingsUpdate(BaseModel):
    default_billing_model: Optional[BillingModel] = None
    invoice_prefix: Optional[str] = None
    default_payment_terms_days: Optional[int] = None
    accepted_methods: Optional[List[PaymentMethod]] = None


class Preferences(BaseModel):
    dark_mode: bool = False
    setup_complete: bool = False


class RevenueSummary(BaseModel):
    lessons: LessonRevenue
    invoices: InvoiceRevenue


class CheckoutRead(BaseModel):
    checkout_url: str
