from typing import List, Optional

from fastapi import APIRouter, Depends

from ..billing import check_overdue_invoices, record_payment
from ..database import STORAGE_KEYS, KeyValueStore
from ..models import Payment
from ..schemas import PaymentCreate
from . import get_store

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("", response_model=Payment)
def register_payment(payload: PaymentCreate, store: KeyValueStore = Depends(get_store)):
    invoices, payments, payment = record_payment(store.invoices(), store.payments(), payload)
    # a partial payment on a past-due invoice leaves it overdue
    invoices = check_overdue_invoices(invoices)
    store.save(STORAGE_KEYS.INVOICES, invoices)
    store.save(STORAGE_KEYS.PAYMENTS, payments)
    store.session.commit()
    return payment


@router.get("", response_model=List[Payment])
def list_payments(invoice_id: Optional[int] = None, student_id: Optional[int] = None, store: KeyValueStore = Depends(get_store)):
    payments = store.payments()
    if invoice_id is not None:
        payments = [p for p in payments if p.invoice_id == invoice_id]
    if student_id is not None:
        payments = [p for p in payments if p.student_id == student_id]
    return payments
