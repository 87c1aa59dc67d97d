"""Pricing quotes, gateway orders, bank transfers and invoices."""
import logging

from flask import Blueprint, request

from confdesk.api.auth import current_account, role_required
from confdesk.api.mailer import mail_sender
from confdesk.api.responses import json_body, ok, require_fields
from confdesk.services import email_service, payment_service, pricing_service, registration_service
from confdesk.utils.date_utils import utc_now
from confdesk.utils.exceptions import PermissionDeniedError, ValidationError

logger = logging.getLogger(__name__)

bp = Blueprint("payment", __name__, url_prefix="/api/payment")


def _own_registration(registration_id: str) -> None:
    """Users may only act on the registration linked to their account."""
    account = current_account()
    if account.role == "user" and account.registration_id != registration_id:
        raise PermissionDeniedError("Access denied")


@bp.route("/pricing", methods=["GET"])
def pricing():
    tier = pricing_service.get_current_pricing(utc_now())
    return ok({
        "tier": tier.key,
        "name": tier.name,
        "start_date": tier.start_date,
        "end_date": tier.end_date,
        "categories": tier.price_table(),
        "workshops": pricing_service.list_workshops(),
    })


@bp.route("/calculate", methods=["POST"])
def calculate():
    data = json_body()
    require_fields(data, "category")
    quote = pricing_service.calculate_price(
        data["category"],
        utc_now(),
        workshop_ids=data.get("workshops") or [],
        accompanying_persons=data.get("accompanying_persons") or [],
        age=int(data.get("age") or 0),
        discount_code=data.get("discount_code"),
    )
    return ok(quote)


@bp.route("/create-order", methods=["POST"])
@role_required("user", "admin")
def create_order():
    data = json_body()
    require_fields(data, "registration_id")
    _own_registration(data["registration_id"])
    return ok(payment_service.create_order(data["registration_id"], utc_now()), "Order created")


@bp.route("/verify", methods=["POST"])
@role_required("user", "admin")
def verify():
    data = json_body()
    require_fields(data, "order_id", "payment_id", "signature")
    registrant = payment_service.confirm_gateway_payment(
        data["order_id"], data["payment_id"], data["signature"], utc_now()
    )
    return ok(registrant.to_dict(), "Payment verified")


@bp.route("/webhook", methods=["POST"])
def webhook():
    signature = request.headers.get("X-Razorpay-Signature", "")
    result = payment_service.handle_webhook(request.get_data(), signature, utc_now())
    return ok(result)


@bp.route("/bank-transfer", methods=["POST"])
@role_required("user", "admin")
def bank_transfer():
    data = json_body()
    require_fields(data, "registration_id")
    _own_registration(data["registration_id"])

    try:
        amount = float(data.get("amount"))
    except (TypeError, ValueError):
        raise ValidationError("Amount must be a number") from None

    success, message = registration_service.submit_bank_transfer(
        data["registration_id"],
        data.get("utr", ""),
        amount,
        workshop_ids=data.get("workshops") or [],
        accompanying_persons=data.get("accompanying_persons"),
        now=utc_now(),
    )
    if not success:
        raise ValidationError(message)
    return ok(message=message)


@bp.route("/invoice/<registration_id>", methods=["GET"])
@role_required("user", "admin")
def invoice(registration_id):
    _own_registration(registration_id)
    return ok(payment_service.build_invoice(registration_id))


@bp.route("/invoice/<registration_id>/email", methods=["POST"])
@role_required("admin")
def email_invoice(registration_id):
    data = payment_service.build_invoice(registration_id)
    lines = "\n".join(f"{line['description']}: {line['amount']}" for line in data["lines"])
    body = (
        f"Dear {data['billed_to']},\n\nInvoice {data['invoice_number']}\n\n{lines}\n"
        f"Discount: {data['discount']}\nGST ({data['gst_percent']}%): {data['gst']}\n"
        f"Total: {data['total']} {data['currency']}"
    )
    record = email_service.queue_email(
        data["email"], data["billed_to"], f"Invoice {data['invoice_number']}", body,
        template="invoice", category="payment",
    )
    email_service.dispatch(record["email_id"], mail_sender)
    return ok({"email_id": record["email_id"]}, "Invoice emailed")
