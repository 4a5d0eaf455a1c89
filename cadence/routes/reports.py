from typing import List

from fastapi import APIRouter, Depends, Query

from ..billing import (
    MonthlyRevenue,
    StudentBalance,
    get_invoice_revenue,
    get_lesson_revenue,
    get_monthly_revenue,
    get_outstanding_balances,
)
from ..database import KeyValueStore
from ..schemas import RevenueSummary
from . import get_store
from .invoices import current_invoices

router = APIRouter(prefix="/reports", tags=["Reports"])


@router.get("/summary", response_model=RevenueSummary)
def get_summary(store: KeyValueStore = Depends(get_store)):
    return RevenueSummary(
        lessons=get_lesson_revenue(store.lessons()),
        invoices=get_invoice_revenue(current_invoices(store)),
    )


@router.get("/monthly", response_model=List[MonthlyRevenue])
def monthly_revenue(months: int = Query(6, ge=1, le=24), store: KeyValueStore = Depends(get_store)):
    return get_monthly_revenue(store.payments(), months)


@router.get("/outstanding", response_model=List[StudentBalance])
def outstanding_balances(store: KeyValueStore = Depends(get_store)):
    return get_outstanding_balances(current_invoices(store), store.students())
