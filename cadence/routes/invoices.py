import logging
import smtplib
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import HTMLResponse, PlainTextResponse, Response

from ..billing import (
    OverdueInvoice,
    PreviewBatch,
    check_overdue_invoices,
    create_batch_invoices,
    create_invoice,
    finalize_all_drafts,
    finalize_invoice,
    generate_invoice_previews,
    get_overdue_invoices,
    month_period,
    period_label,
    update_invoice,
    void_invoice,
)
from ..database import STORAGE_KEYS, KeyValueStore
from ..emailer import send_invoice
from ..errors import InvalidInvoiceReference, RecordNotFound
from ..export import build_invoice_html, build_invoice_text
from ..models import Invoice, InvoiceStatus
from ..pdf import build_invoice_pdf
from ..schemas import BatchCreate, BatchCreated, BillingPeriod, InvoiceCreate, InvoiceUpdate
from ..students import get_student_by_id
from . import get_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/invoices", tags=["Invoices"])


def current_invoices(store: KeyValueStore) -> List[Invoice]:
    """Load invoices with the overdue overlay brought up to date."""
    invoices = store.invoices()
    refreshed = check_overdue_invoices(invoices)
    if refreshed is not invoices:
        store.save(STORAGE_KEYS.INVOICES, refreshed)
        store.session.commit()
    return refreshed


def _get(invoices: List[Invoice], invoice_id: int) -> Invoice:
    for invoice in invoices:
        if invoice.id == invoice_id:
            return invoice
    raise InvalidInvoiceReference(f"Invoice {invoice_id} not found")


def _resolve_period(period: BillingPeriod):
    if period.year and period.month:
        return month_period(period.year, period.month)
    if period.start_date and period.end_date:
        if period.start_date > period.end_date:
            raise HTTPException(422, "start_date must not be after end_date")
        return period.start_date, period.end_date, period.label or period_label(period.start_date, period.end_date)
    raise HTTPException(422, "Give either start_date and end_date or year and month")


def _deliver(store: KeyValueStore, invoices: List[Invoice]):
    students = store.students()
    for invoice in invoices:
        student = get_student_by_id(students, invoice.student_id)
        try:
            send_invoice(invoice, student, build_invoice_pdf(invoice, student))
        except (smtplib.SMTPException, OSError):
            logger.exception("Could not e-mail invoice %s", invoice.invoice_number)


@router.post("", response_model=Invoice)
def new_invoice(payload: InvoiceCreate, store: KeyValueStore = Depends(get_store)):
    if get_student_by_id(store.students(), payload.student_id) is None:
        raise RecordNotFound(f"Student {payload.student_id} not found")
    invoices, settings, invoice = create_invoice(store.invoices(), store.billing_settings(), payload)
    store.save(STORAGE_KEYS.INVOICES, invoices)
    store.save_billing_settings(settings)
    store.session.commit()
    return invoice


@router.get("", response_model=List[Invoice])
def list_invoices(status: Optional[InvoiceStatus] = None, student_id: Optional[int] = None, store: KeyValueStore = Depends(get_store)):
    invoices = current_invoices(store)
    if status is not None:
        invoices = [inv for inv in invoices if inv.status == status]
    if student_id is not None:
        invoices = [inv for inv in invoices if inv.student_id == student_id]
    return invoices


@router.get("/overdue", response_model=List[OverdueInvoice])
def overdue_invoices(store: KeyValueStore = Depends(get_store)):
    return get_overdue_invoices(current_invoices(store))


@router.post("/previews", response_model=PreviewBatch)
def invoice_previews(period: BillingPeriod, store: KeyValueStore = Depends(get_store)):
    start, end, label = _resolve_period(period)
    return generate_invoice_previews(store.students(), store.lessons(), store.invoices(), start, end, label)


@router.post("/batch", response_model=BatchCreated)
def batch_invoices(payload: BatchCreate, store: KeyValueStore = Depends(get_store)):
    """Create draft invoices for the approved students of a billing period."""
    start, end, label = _resolve_period(payload)
    batch = generate_invoice_previews(store.students(), store.lessons(), store.invoices(), start, end, label)
    approved = [
        p for p in batch.previews
        if payload.student_ids is None or p.student_id in payload.student_ids
    ]
    invoices, settings, created = create_batch_invoices(
        store.invoices(), store.billing_settings(), approved, start, end
    )
    store.save(STORAGE_KEYS.INVOICES, invoices)
    store.save_billing_settings(settings)
    store.session.commit()
    return BatchCreated(invoices=created, skipped=batch.skipped)


@router.post("/finalize-drafts", response_model=List[Invoice])
def finalize_drafts(store: KeyValueStore = Depends(get_store)):
    invoices = store.invoices()
    draft_ids = {inv.id for inv in invoices if inv.status == InvoiceStatus.DRAFT}
    invoices = finalize_all_drafts(invoices)
    store.save(STORAGE_KEYS.INVOICES, invoices)
    store.session.commit()
    finalized = [inv for inv in invoices if inv.id in draft_ids]
    _deliver(store, finalized)
    return finalized


@router.get("/{invoice_id}", response_model=Invoice)
def read_invoice(invoice_id: int, store: KeyValueStore = Depends(get_store)):
    return _get(current_invoices(store), invoice_id)


@router.patch("/{invoice_id}", response_model=Invoice)
def edit_invoice(invoice_id: int, payload: InvoiceUpdate, store: KeyValueStore = Depends(get_store)):
    invoices = update_invoice(store.invoices(), invoice_id, payload.model_dump(exclude_unset=True))
    invoices = check_overdue_invoices(invoices)
    store.save(STORAGE_KEYS.INVOICES, invoices)
    store.session.commit()
    return _get(invoices, invoice_id)


@router.post("/{invoice_id}/void", response_model=Invoice)
def cancel_invoice(invoice_id: int, store: KeyValueStore = Depends(get_store)):
    invoices = void_invoice(store.invoices(), invoice_id)
    store.save(STORAGE_KEYS.INVOICES, invoices)
    store.session.commit()
    return _get(invoices, invoice_id)


@router.post("/{invoice_id}/finalize", response_model=Invoice)
def finalize(invoice_id: int, store: KeyValueStore = Depends(get_store)):
    invoices = check_overdue_invoices(finalize_invoice(store.invoices(), invoice_id))
    store.save(STORAGE_KEYS.INVOICES, invoices)
    store.session.commit()
    invoice = _get(invoices, invoice_id)
    _deliver(store, [invoice])
    return invoice


# ── Export ───────────────────────────────────────────────────────────────
def _with_student(store: KeyValueStore, invoice_id: int):
    invoice = _get(current_invoices(store), invoice_id)
    return invoice, get_student_by_id(store.students(), invoice.student_id)


@router.get("/{invoice_id}/pdf")
def invoice_pdf(invoice_id: int, store: KeyValueStore = Depends(get_store)):
    invoice, student = _with_student(store, invoice_id)
    pdf_bytes = build_invoice_pdf(invoice, student)
    return Response(content=pdf_bytes, media_type="application/pdf", headers={"Content-Disposition": f"inline; filename=invoice_{invoice.invoice_number}.pdf"})


@router.get("/{invoice_id}/html", response_class=HTMLResponse)
def invoice_html(invoice_id: int, store: KeyValueStore = Depends(get_store)):
    return build_invoice_html(*_with_student(store, invoice_id))


@router.get("/{invoice_id}/text", response_class=PlainTextResponse)
def invoice_text(invoice_id: int, store: KeyValueStore = Depends(get_store)):
    return build_invoice_text(*_with_student(store, invoice_id))
