"""Gateway orders, signature verification and invoices."""
import hashlib
import hmac
import json
import logging
import time
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests

from confdesk.config import get_settings
from confdesk.models.audit import Actor
from confdesk.models.registrant import Registrant
from confdesk.services import audit_service, error_service
from confdesk.services.registration_service import (
    REGISTRATIONS_COLLECTION,
    can_transition,
    get_registration,
    quote_for,
    registrant_actor,
    transition_status,
)
from confdesk.services.storage_service import find_documents, insert_document, read_collection, update_document
from confdesk.utils.date_utils import isoformat, parse_timestamp, utc_now
from confdesk.utils.exceptions import PaymentVerificationError, RegistrantNotFoundError, ValidationError

logger = logging.getLogger(__name__)

ATTEMPTS_COLLECTION = "payment_attempts"
GATEWAY_TIMEOUT = 15

GATEWAY_ACTOR = Actor(account_id="gateway", email="gateway@localhost", role="system", name="Payment gateway")


def record_attempt(
    registration_id: str,
    order_id: Optional[str],
    status: str,
    amount: float = 0,
    error: str = "",
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Append a payment attempt (initiated, completed or failed)."""
    attempt = {
        "attempt_id": f"PA-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}",
        "registration_id": registration_id,
        "order_id": order_id,
        "status": status,
        "amount": amount,
        "error": error,
        "created_at": isoformat(now),
    }
    return insert_document(ATTEMPTS_COLLECTION, lambda _documents: attempt)


def get_payment_attempts(registration_id: str) -> List[Dict[str, Any]]:
    attempts = find_documents(ATTEMPTS_COLLECTION, registration_id=registration_id)
    return sorted(attempts, key=lambda attempt: attempt["created_at"], reverse=True)


def create_order(
    registration_id: str,
    now: datetime,
    session: Optional[requests.Session] = None,
) -> Dict[str, Any]:
    """
    Create a gateway order for the registration's current fee.

    Returns:
        {"order_id", "amount", "currency", "key_id", "registration_id"}

    Raises:
        RegistrantNotFoundError: If the registration ID is unknown
        ValidationError: If the registration cannot take a payment or a
            bank transfer is awaiting verification
        PaymentVerificationError: If the gateway rejects the order
        PricingNotConfiguredError: If pricing is unavailable
    """
    registrant = get_registration(registration_id)
    if registrant.is_settled():
        raise ValidationError("Registration is already confirmed")
    if registrant.status not in ("pending", "pending-payment"):
        raise ValidationError(f"Cannot take payment for a {registrant.status} registration")
    payment = registrant.payment
    if payment is not None and payment.method == "bank-transfer" and payment.status == "pending":
        raise ValidationError("A bank transfer is awaiting verification")

    quote = quote_for(registrant.to_dict(), now)
    amount = quote["grand_total"]
    settings = get_settings()
    http = session or requests.Session()

    try:
        response = http.post(
            f"{settings.gateway_api_url}/orders",
            auth=(settings.gateway_key_id, settings.gateway_key_secret),
            json={
                "amount": int(round(amount * 100)),
                "currency": quote["currency"],
                "receipt": registration_id,
            },
            timeout=GATEWAY_TIMEOUT,
        )
    except requests.RequestException as e:
        logger.error(f"Gateway order request failed for {registration_id}: {e}")
        error_service.log_payment_error(f"Gateway order request failed: {e}", user_email=registrant.email)
        record_attempt(registration_id, None, "failed", amount, str(e), now)
        raise PaymentVerificationError("Payment gateway unavailable") from e

    if response.status_code != 200:
        logger.error(f"Gateway rejected order for {registration_id}: {response.status_code} {response.text}")
        error_service.log_payment_error(
            "Gateway rejected order",
            user_email=registrant.email,
            response_status=response.status_code,
        )
        record_attempt(registration_id, None, "failed", amount, f"HTTP {response.status_code}", now)
        raise PaymentVerificationError("Could not create payment order")

    order_id = response.json()["id"]

    def _attach(document: Dict[str, Any]) -> None:
        document["payment"] = {
            "method": "online",
            "status": "processing",
            "amount": amount,
            "utr": None,
            "transaction_id": None,
            "order_id": order_id,
            "paid_at": None,
            "verified_by": None,
            "verified_at": None,
            "remarks": "",
            "quote": quote,
        }
        document["status"] = "pending-payment"

    update_document(REGISTRATIONS_COLLECTION, "registration_id", registration_id, _attach)
    record_attempt(registration_id, order_id, "initiated", amount, now=now)

    audit_service.log_action(
        actor=registrant_actor(registrant),
        action="payment.initiated",
        resource_type="payment",
        resource_id=order_id,
        resource_name=registration_id,
        after={"amount": amount, "currency": quote["currency"], "tier": quote["tier"]},
        description=f"Payment initiated for registration {registration_id}",
        now=now,
    )

    return {
        "order_id": order_id,
        "amount": amount,
        "currency": quote["currency"],
        "key_id": settings.gateway_key_id,
        "registration_id": registration_id,
    }


def verify_signature(order_id: str, payment_id: str, signature: str, secret: str) -> bool:
    """HMAC-SHA256 of "order_id|payment_id" with the gateway secret."""
    expected = hmac.new(
        secret.encode(),
        f"{order_id}|{payment_id}".encode(),
        hashlib.sha256
    ).hexdigest()
    return hmac.compare_digest(expected, signature or "")


def _find_by_order(order_id: str) -> Dict[str, Any]:
    for document in read_collection(REGISTRATIONS_COLLECTION):
        if (document.get("payment") or {}).get("order_id") == order_id:
            return document
    raise RegistrantNotFoundError(f"No registration for order {order_id}")


def _record_capture(document: Dict[str, Any], order_id: str, payment_id: str, moment: datetime) -> Registrant:
    """
    Store a captured gateway payment on its registration.

    A registration that may move to 'paid' does so. Any other (cancelled,
    refunded, returned to pending) keeps its status: the payment is stored
    on it and flagged in the error log and audit trail for an admin.
    """
    registration_id = document["registration_id"]
    amount = document["payment"].get("amount", 0)
    status = document.get("status", "pending")

    def _mark_paid(stored: Dict[str, Any]) -> None:
        stored["payment"]["status"] = "verified"
        stored["payment"]["transaction_id"] = payment_id
        stored["payment"]["paid_at"] = isoformat(moment)
        stored["payment"]["verified_by"] = GATEWAY_ACTOR.email
        stored["payment"]["verified_at"] = isoformat(moment)

    if can_transition(status, "paid"):
        registrant = transition_status(registration_id, "paid", GATEWAY_ACTOR, now=moment, extra=_mark_paid)
        record_attempt(registration_id, order_id, "completed", amount, now=moment)
        return registrant

    if document["payment"].get("transaction_id") == payment_id:
        # Redelivery of a capture already on record
        return Registrant.from_dict(document)

    stored = update_document(REGISTRATIONS_COLLECTION, "registration_id", registration_id, _mark_paid)
    record_attempt(registration_id, order_id, "completed", amount, f"Captured while {status}", moment)
    logger.error(f"Payment {payment_id} captured for {status} registration {registration_id}")
    error_service.log_payment_error(
        f"Payment captured for a {status} registration",
        order_id=order_id,
        user_email=document.get("email", ""),
        payment_id=payment_id,
        registration_id=registration_id,
    )
    audit_service.log_action(
        actor=GATEWAY_ACTOR,
        action="payment.completed",
        resource_type="payment",
        resource_id=order_id,
        resource_name=registration_id,
        after={"transaction_id": payment_id, "amount": amount},
        metadata={"registration_status": status, "needs_review": True},
        description=f"Payment {payment_id} captured for {status} registration {registration_id}, needs admin review",
        now=moment,
    )
    return Registrant.from_dict(stored)


def confirm_gateway_payment(
    order_id: str,
    payment_id: str,
    signature: str,
    now: Optional[datetime] = None,
) -> Registrant:
    """
    Verify a gateway callback and mark the registration paid.

    Behavior:
        - Idempotent: a registration that is already paid or confirmed is
          returned unchanged
        - A bad signature is logged to the error sink, recorded as a failed
          attempt and raised
        - A capture for a cancelled or refunded registration is stored and
          flagged for review; the status is left alone

    Raises:
        RegistrantNotFoundError: If no registration holds the order
        PaymentVerificationError: If the signature does not match
    """
    document = _find_by_order(order_id)
    registration_id = document["registration_id"]
    moment = now or utc_now()

    if document.get("status") in ("paid", "confirmed"):
        return Registrant.from_dict(document)

    if not verify_signature(order_id, payment_id, signature, get_settings().gateway_key_secret):
        logger.warning(f"Payment verification failed for order {order_id}")
        error_service.log_payment_error(
            "Invalid payment signature",
            order_id=order_id,
            user_email=document.get("email", ""),
        )
        amount = document["payment"].get("amount", 0)
        record_attempt(registration_id, order_id, "failed", amount, "Invalid signature", moment)
        audit_service.log_action(
            actor=GATEWAY_ACTOR,
            action="payment.failed",
            resource_type="payment",
            resource_id=order_id,
            resource_name=registration_id,
            description=f"Payment verification failed for registration {registration_id}",
            now=moment,
        )
        raise PaymentVerificationError("Invalid payment signature")

    return _record_capture(document, order_id, payment_id, moment)


def handle_webhook(body: bytes, signature: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Process a gateway webhook delivery.

    Only "payment.captured" events change state; others are acknowledged.
    A capture that cannot settle its registration is acknowledged with
    "needs_review" so the gateway stops redelivering it.

    Raises:
        PaymentVerificationError: If the body signature does not match
        RegistrantNotFoundError: If no registration holds the order
    """
    secret = get_settings().gateway_webhook_secret
    expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    if not secret or not hmac.compare_digest(expected, signature or ""):
        error_service.log_payment_error("Invalid webhook signature")
        raise PaymentVerificationError("Invalid webhook signature")

    event = json.loads(body.decode("utf-8"))
    if event.get("event") != "payment.captured":
        return {"handled": False, "event": event.get("event")}

    entity = event["payload"]["payment"]["entity"]
    order_id = entity["order_id"]
    try:
        document = _find_by_order(order_id)
    except RegistrantNotFoundError:
        error_service.log_payment_error(
            "Webhook capture for an unknown order",
            order_id=order_id,
            payment_id=entity["id"],
        )
        raise
    registration_id = document["registration_id"]

    if document.get("status") in ("paid", "confirmed"):
        registrant = Registrant.from_dict(document)
    else:
        registrant = _record_capture(document, order_id, entity["id"], now or utc_now())

    result = {"handled": True, "event": "payment.captured", "registration_id": registration_id}
    if not registrant.is_settled():
        result["needs_review"] = True
    return result


def build_invoice(registration_id: str) -> Dict[str, Any]:
    """
    Invoice data for a paid or confirmed registration.

    Lines and totals come from the fee calculation stored with the payment,
    so the invoice matches what was charged. Registrations settled without
    one (complimentary, sponsored) are priced on their registration date.

    Raises:
        RegistrantNotFoundError, ValidationError
    """
    registrant = get_registration(registration_id)
    if not registrant.is_settled():
        raise ValidationError("Invoice is only available for confirmed registrations")

    payment = registrant.payment
    if payment is not None and payment.quote:
        quote = payment.quote
    else:
        quote = quote_for(registrant.to_dict(), parse_timestamp(registrant.registered_at))

    lines = [{"description": quote["breakdown"]["category_label"], "amount": quote["base_amount"]}]
    lines.extend(
        {"description": f"Workshop: {workshop['name']}", "amount": workshop["amount"]}
        for workshop in quote["breakdown"]["workshops"]
    )
    if quote["accompanying_fees"]:
        lines.append({
            "description": f"Accompanying persons x{quote['breakdown']['paying_accompanying_persons']}",
            "amount": quote["accompanying_fees"],
        })

    return {
        "invoice_number": f"INV-{registration_id}",
        "registration_id": registration_id,
        "billed_to": registrant.full_name,
        "email": registrant.email,
        "tier": quote["tier"],
        "lines": lines,
        "discount": quote["discount"],
        "subtotal": quote["total"],
        "gst_percent": quote.get("gst_percent", get_settings().gst_percent),
        "gst": quote["gst"],
        "total": quote["grand_total"],
        "currency": quote["currency"],
        "amount_paid": payment.amount if payment else 0,
        "payment_method": payment.method if payment else None,
        "transaction_id": payment.transaction_id if payment else None,
    }
