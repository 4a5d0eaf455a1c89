import logging
import os
from decimal import ROUND_HALF_UP, Decimal

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request

from ..billing import OPEN_STATUSES, check_overdue_invoices, record_payment, record_unapplied_payment
from ..database import STORAGE_KEYS, KeyValueStore
from ..errors import InvalidAmount, InvalidInvoiceReference, InvalidTransition
from ..models import PaymentMethod
from ..schemas import CheckoutRead
from . import get_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/stripe", tags=["Stripe"])

stripe.api_key = os.getenv("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
STRIPE_SUCCESS_URL = os.getenv("STRIPE_SUCCESS_URL", "https://example.org/success")
STRIPE_CANCEL_URL = os.getenv("STRIPE_CANCEL_URL", "https://example.org/cancel")
STRIPE_CURRENCY = os.getenv("STRIPE_CURRENCY", "usd")


def amount_in_cents(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@router.post("/checkout", response_model=CheckoutRead)
def create_checkout_session(invoice_id: int, store: KeyValueStore = Depends(get_store)):
    """Open a Stripe Checkout session for the remaining balance of an invoice."""
    if not stripe.api_key:
        raise HTTPException(400, "Stripe is not configured")
    invoice = next((inv for inv in store.invoices() if inv.id == invoice_id), None)
    if invoice is None:
        raise InvalidInvoiceReference(f"Invoice {invoice_id} not found")
    if invoice.status not in OPEN_STATUSES or invoice.balance <= 0:
        raise HTTPException(400, f"Invoice {invoice.invoice_number} has nothing to pay")

    session_obj = stripe.checkout.Session.create(
        mode="payment",
        line_items=[{
            "price_data": {
                "currency": STRIPE_CURRENCY,
                "product_data": {"name": f"Invoice {invoice.invoice_number}"},
                "unit_amount": amount_in_cents(invoice.balance),
            },
            "quantity": 1,
        }],
        success_url=STRIPE_SUCCESS_URL,
        cancel_url=STRIPE_CANCEL_URL,
        metadata={"invoice_id": str(invoice.id), "student_id": str(invoice.student_id)},
    )
    return CheckoutRead(checkout_url=session_obj.url)


@router.post("/webhook")
async def stripe_webhook(request: Request, store: KeyValueStore = Depends(get_store)):
    if not STRIPE_WEBHOOK_SECRET:
        raise HTTPException(400, "STRIPE_WEBHOOK_SECRET is missing")
    payload = await request.body()
    sig = request.headers.get("stripe-signature")
    try:
        event = stripe.Webhook.construct_event(payload, sig, STRIPE_WEBHOOK_SECRET)
    except (ValueError, stripe.SignatureVerificationError) as e:
        raise HTTPException(400, f"Webhook error: {e}")

    if event["type"] == "checkout.session.completed":
        data = event["data"]["object"]
        metadata = data.get("metadata", {}) or {}
        invoice_id = metadata.get("invoice_id")
        payment_intent = data.get("payment_intent")
        if not invoice_id:
            logger.warning("Checkout session %s has no invoice_id", data.get("id"))
            return {"received": True}

        payments = store.payments()
        if payment_intent and any(p.external_id == payment_intent for p in payments):
            logger.info("Payment %s already recorded", payment_intent)
            return {"received": True}

        invoices = store.invoices()
        charge = {
            "invoice_id": int(invoice_id),
            "amount": Decimal(data.get("amount_total") or 0) / 100,
            "method": PaymentMethod.CARD,
            "notes": "Stripe Checkout",
            "external_id": payment_intent,
        }
        try:
            invoices, payments, payment = record_payment(invoices, payments, charge)
        except (InvalidTransition, InvalidAmount) as e:
            # the card was already charged; keep the money on record
            logger.warning("Stripe payment %s not applied to invoice %s: %s", payment_intent, invoice_id, e)
            if charge["amount"] <= 0:
                return {"received": True}
            invoice = next(inv for inv in invoices if inv.id == int(invoice_id))
            store.save(STORAGE_KEYS.PAYMENTS, record_unapplied_payment(payments, invoice, {**charge, "notes": f"Stripe Checkout, unapplied: {e}"}))
            store.session.commit()
            return {"received": True}
        store.save(STORAGE_KEYS.INVOICES, check_overdue_invoices(invoices))
        store.save(STORAGE_KEYS.PAYMENTS, payments)
        store.session.commit()
        logger.info("Stripe payment %s recorded on invoice %s", payment_intent, payment.invoice_id)

    return {"received": True}
