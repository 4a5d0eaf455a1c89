import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import Optional, List

from sqlmodel import SQLModel, Field


class BillingModel(str, Enum):
    PER_LESSON = "per-lesson"
    MONTHLY = "monthly"
    PER_COURSE = "per-course"


class LessonStatus(str, Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Attendance(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    UNPAID = "unpaid"
    PARTIAL = "partial"
    OVERDUE = "overdue"
    PAID = "paid"
    VOID = "void"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CHECK = "check"
    VENMO = "venmo"
    ZELLE = "zelle"
    CARD = "card"
    OTHER = "other"


# ── Key-value persistence ────────────────────────────────────────────────
class StoreEntry(SQLModel, table=True):
    key: str = Field(primary_key=True)
    value: str  # JSON document
    version: int = 0
    updated_at: dt.datetime = Field(default_factory=lambda: dt.datetime.now(dt.timezone.utc))


# ── Records kept in the store ────────────────────────────────────────────
class Student(SQLModel):
    id: int
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    is_minor: bool = False
    parent_name: Optional[str] = None
    parent_email: Optional[str] = None
    parent_phone: Optional[str] = None
    default_lesson_type: Optional[str] = None
    custom_rate: Optional[Decimal] = None
    billing_model: BillingModel = BillingModel.PER_LESSON
    monthly_rate: Optional[Decimal] = None
    notes: str = ""

    @property
    def contact_email(self) -> Optional[str]:
        return self.parent_email if self.is_minor else self.email

    @property
    def contact_phone(self) -> Optional[str]:
        return self.parent_phone if self.is_minor else self.phone


class Lesson(SQLModel):
    id: int
    student_id: int
    date: dt.date
    time: dt.time
    lesson_type: str = "Private Lesson"
    duration: int = 30  # minutes
    rate: Optional[Decimal] = None
    status: LessonStatus = LessonStatus.SCHEDULED
    attendance: Optional[Attendance] = None
    notes: str = ""
    completed_at: Optional[dt.datetime] = None
    # set when the lesson belongs to a recurring batch
    session_number: Optional[int] = None
    total_sessions: Optional[int] = None


class LineItem(SQLModel):
    description: str = ""
    quantity: Decimal = Decimal("1")
    rate: Decimal = Decimal("0")
    amount: Decimal = Decimal("0")


class Invoice(SQLModel):
    id: int
    invoice_number: str
    student_id: int
    status: InvoiceStatus = InvoiceStatus.UNPAID
    created_date: dt.date
    due_date: dt.date
    items: List[LineItem] = Field(default_factory=list)
    subtotal: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")
    total: Decimal = Decimal("0")
    amount_paid: Decimal = Decimal("0")
    balance: Decimal = Decimal("0")
    billing_model: BillingModel = BillingModel.PER_LESSON
    notes: str = ""
    # billing window for invoices generated from lessons
    period_start: Optional[dt.date] = None
    period_end: Optional[dt.date] = None


class Payment(SQLModel):
    id: int
    invoice_id: int
    student_id: int
    amount: Decimal
    method: PaymentMethod = PaymentMethod.CASH
    date: dt.date
    notes: str = ""
    external_id: Optional[str] = None
    # False for money received that could not be applied to its invoice
    applied: bool = True


class BillingSettings(SQLModel):
    default_billing_model: BillingModel = BillingModel.PER_LESSON
    invoice_prefix: str = "INV"
    next_invoice_number: int = 1001
    default_payment_terms_days: int = 30
    accepted_methods: List[PaymentMethod] = Field(
        default_factory=lambda: [
            PaymentMethod.CASH,
            PaymentMethod.CHECK,
            PaymentMethod.VENMO,
            PaymentMethod.ZELLE,
            PaymentMethod.CARD,
        ]
    )


def next_id(records) -> int:
    """Sequential id: one past the largest id already in the collection."""
    return max((r.id for r in records), default=0) + 1
