"""Admin routes: registrations, configuration, abstracts, audit, errors and email."""
import logging

from flask import Blueprint

from confdesk.api.auth import current_actor, role_required
from confdesk.api.mailer import mail_sender
from confdesk.api.responses import arg, json_body, ok, page_args, require_fields
from confdesk.services import (
    abstract_service,
    audit_service,
    auth_service,
    email_service,
    error_service,
    payment_service,
    pricing_service,
    registration_service,
)
from confdesk.services.settings_service import DEFAULTS, get_setting, save_setting
from confdesk.utils.date_utils import parse_timestamp, utc_now
from confdesk.utils.exceptions import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

bp = Blueprint("admin", __name__, url_prefix="/api/admin")

# Settings edited through their own routes
DEDICATED_SETTINGS = {"pricing_tiers"}


def _timestamp_arg(name: str):
    value = arg(name)
    if value is None:
        return None
    try:
        return parse_timestamp(value)
    except ValueError as e:
        raise ValidationError(str(e)) from e


# Registrations

@bp.route("/registrations", methods=["GET"])
@role_required("admin")
def registrations():
    documents, total = registration_service.list_registrations(
        status=arg("status"),
        category=arg("category"),
        search=arg("search"),
        **page_args(),
    )
    return ok({"registrations": documents, "total": total})


@bp.route("/registrations", methods=["POST"])
@role_required("admin")
def create_registration():
    data = json_body()
    require_fields(data, "email", "first_name", "last_name", "category")
    registrant = registration_service.create_registration(
        data, utc_now(), source="admin-created", actor=current_actor()
    )
    return ok(registrant.to_dict(), "Registration created", status=201)


@bp.route("/registrations/<registration_id>", methods=["GET"])
@role_required("admin")
def registration_detail(registration_id):
    registrant = registration_service.get_registration(registration_id)
    return ok({
        "registration": registrant.to_dict(),
        "payment_attempts": payment_service.get_payment_attempts(registration_id),
        "history": audit_service.get_audit_logs(resource_id=registration_id, limit=100)[0],
    })


@bp.route("/registrations/<registration_id>/status", methods=["POST"])
@role_required("admin")
def update_status(registration_id):
    data = json_body()
    require_fields(data, "status")
    registrant = registration_service.transition_status(
        registration_id,
        data["status"],
        current_actor(),
        remarks=data.get("remarks", ""),
        now=utc_now(),
        notify=bool(data.get("notify", True)),
        sender=mail_sender,
    )
    return ok(registrant.to_dict(), f"Status changed to {registrant.status}")


@bp.route("/registrations/<registration_id>/verify-payment", methods=["POST"])
@role_required("admin")
def verify_payment(registration_id):
    data = json_body()
    approve = bool(data.get("approve"))
    registrant = registration_service.verify_bank_transfer(
        registration_id,
        current_actor(),
        approve=approve,
        remarks=data.get("remarks", ""),
        now=utc_now(),
        sender=mail_sender,
    )
    return ok(registrant.to_dict(), "Payment approved" if approve else "Payment rejected")


@bp.route("/registrations/bulk-status", methods=["POST"])
@role_required("admin")
def bulk_status():
    data = json_body()
    require_fields(data, "ids", "status")
    return ok(registration_service.bulk_update_status(data["ids"], data["status"], current_actor()))


@bp.route("/registrations/cleanup", methods=["POST"])
@role_required("admin")
def cleanup():
    data = json_body()
    days = float(data.get("older_than_days", 7))
    cancelled = registration_service.cleanup_pending(days, utc_now(), current_actor())
    return ok({"cancelled": cancelled}, f"Cancelled {len(cancelled)} pending registration(s)")


@bp.route("/payments/<registration_id>/attempts", methods=["GET"])
@role_required("admin")
def payment_attempts(registration_id):
    return ok(payment_service.get_payment_attempts(registration_id))


# Configuration

@bp.route("/pricing-tiers", methods=["GET"])
@role_required("admin")
def pricing_tiers():
    return ok({key: tier.to_dict() for key, tier in pricing_service.get_configured_tiers().items()})


@bp.route("/pricing-tiers", methods=["PUT"])
@role_required("admin")
def update_pricing_tiers():
    tiers = pricing_service.update_pricing_tiers(json_body(), utc_now(), current_actor())
    return ok({key: tier.to_dict() for key, tier in tiers.items()}, "Pricing tiers updated")


@bp.route("/settings/<key>", methods=["GET"])
@role_required("admin")
def setting(key):
    if key not in DEFAULTS:
        raise NotFoundError(f"Unknown setting: {key}")
    return ok(get_setting(key))


@bp.route("/settings/<key>", methods=["PUT"])
@role_required("admin")
def update_setting(key):
    if key not in DEFAULTS:
        raise NotFoundError(f"Unknown setting: {key}")
    if key in DEDICATED_SETTINGS:
        raise ValidationError(f"Use the dedicated endpoint to change '{key}'")
    data = json_body()
    require_fields(data, "value")
    save_setting(key, data["value"], actor=current_actor())
    return ok(get_setting(key), "Setting updated")


@bp.route("/accounts", methods=["GET"])
@role_required("admin")
def accounts():
    return ok([account.public_dict() for account in auth_service.list_accounts(role=arg("role"))])


@bp.route("/accounts", methods=["POST"])
@role_required("admin")
def create_account():
    data = json_body()
    require_fields(data, "email", "password", "role")
    account = auth_service.create_account(
        data["email"],
        data["password"],
        role=data["role"],
        name=data.get("name", ""),
        expertise=data.get("expertise"),
        allocation=data.get("allocation"),
    )
    audit_service.log_action(
        actor=current_actor(),
        action="user.created",
        resource_type="user",
        resource_id=account.account_id,
        resource_name=account.email,
        after={"role": account.role},
        description=f"{account.role.capitalize()} account created for {account.email}",
    )
    return ok(account.public_dict(), "Account created", status=201)


@bp.route("/accounts/<account_id>/active", methods=["POST"])
@role_required("admin")
def set_account_active(account_id):
    """Activate or deactivate an account; a deactivated one loses its session."""
    data = json_body()
    require_fields(data, "is_active")
    if not isinstance(data["is_active"], bool):
        raise ValidationError("is_active must be true or false")
    before = auth_service.get_account(account_id)
    account = auth_service.set_active(account_id, data["is_active"])
    audit_service.log_action(
        actor=current_actor(),
        action="user.updated",
        resource_type="user",
        resource_id=account.account_id,
        resource_name=account.email,
        before={"is_active": before.is_active},
        after={"is_active": account.is_active},
        description=f"Account {account.email} {'activated' if account.is_active else 'deactivated'}",
    )
    return ok(account.public_dict(), "Account updated")


@bp.route("/accounts/<account_id>/activity", methods=["GET"])
@role_required("admin")
def account_activity(account_id):
    auth_service.get_account(account_id)
    entries, total = audit_service.get_user_activity(account_id, **page_args())
    return ok({"logs": entries, "total": total})


# Abstracts

@bp.route("/abstracts", methods=["GET"])
@role_required("admin")
def abstracts():
    documents, total = abstract_service.list_abstracts(
        status=arg("status"),
        category=arg("category"),
        search=arg("search"),
        **page_args(),
    )
    return ok({"abstracts": documents, "total": total})


@bp.route("/abstracts/<abstract_id>/assign", methods=["POST"])
@role_required("admin")
def assign_reviewers(abstract_id):
    data = json_body()
    reviewer_ids = data.get("reviewer_ids")
    if not isinstance(reviewer_ids, list):
        raise ValidationError("reviewer_ids must be a list")
    abstract = abstract_service.assign_reviewers(abstract_id, reviewer_ids, current_actor())
    return ok(abstract.to_dict(), "Reviewers assigned")


@bp.route("/abstracts/<abstract_id>/decision", methods=["POST"])
@role_required("admin")
def abstract_decision(abstract_id):
    data = json_body()
    require_fields(data, "decision")
    abstract = abstract_service.apply_decision(
        abstract_id,
        data["decision"],
        current_actor(),
        approved_for=data.get("approved_for"),
        now=utc_now(),
        sender=mail_sender,
    )
    return ok(abstract.to_dict(), f"Abstract {abstract.status}")


@bp.route("/abstracts/bulk-decision", methods=["POST"])
@role_required("admin")
def bulk_decision():
    data = json_body()
    require_fields(data, "ids", "decision")
    return ok(abstract_service.bulk_decision(data["ids"], data["decision"], current_actor()))


@bp.route("/abstracts/send-pending-emails", methods=["POST"])
@role_required("admin")
def send_pending_emails():
    result = abstract_service.send_pending_notifications(current_actor(), sender=mail_sender)
    return ok(result, f"Sent {len(result['sent'])} pending email(s)")


# Audit and errors

@bp.route("/audit", methods=["GET"])
@role_required("admin")
def audit_logs():
    entries, total = audit_service.get_audit_logs(
        action=arg("action"),
        resource_type=arg("resource_type"),
        resource_id=arg("resource_id"),
        actor_role=arg("actor_role"),
        actor_id=arg("actor_id"),
        start=_timestamp_arg("start"),
        end=_timestamp_arg("end"),
        search=arg("search"),
        **page_args(),
    )
    return ok({"logs": entries, "total": total})


@bp.route("/audit/stats", methods=["GET"])
@role_required("admin")
def audit_stats():
    return ok(audit_service.get_audit_stats(start=_timestamp_arg("start"), end=_timestamp_arg("end")))


@bp.route("/errors", methods=["GET"])
@role_required("admin")
def errors():
    resolved = arg("resolved")
    documents, total = error_service.get_errors(
        severity=arg("severity"),
        category=arg("category"),
        resolved=None if resolved is None else resolved.lower() == "true",
        user_email=arg("user_email"),
        **page_args(),
    )
    return ok({"errors": documents, "total": total})


@bp.route("/errors/<error_id>/resolve", methods=["POST"])
@role_required("admin")
def resolve_error(error_id):
    data = json_body()
    document = error_service.resolve_error(error_id, current_actor(), notes=data.get("notes", ""), now=utc_now())
    return ok(document, "Error resolved")


# Email outbox

@bp.route("/emails", methods=["GET"])
@role_required("admin")
def emails():
    documents, total = email_service.get_emails(
        status=arg("status"),
        recipient_email=arg("recipient"),
        **page_args(),
    )
    return ok({"emails": documents, "total": total})


@bp.route("/emails/<email_id>/requeue", methods=["POST"])
@role_required("admin")
def requeue_email(email_id):
    success, message = email_service.requeue(email_id, current_actor())
    if not success:
        if message == "Email not found":
            raise NotFoundError(message)
        raise ValidationError(message)
    return ok(message=message)


@bp.route("/emails/process", methods=["POST"])
@role_required("admin")
def process_emails():
    result = email_service.process_queue(mail_sender)
    return ok(result, f"Sent {len(result['sent'])}, failed {len(result['failed'])}")


@bp.route("/emails/bulk", methods=["POST"])
@role_required("admin")
def bulk_email():
    data = json_body()
    require_fields(data, "subject", "body")

    recipients = data.get("recipients")
    if recipients is None:
        status = data.get("status", "confirmed")
        documents, _ = registration_service.list_registrations(status=status, limit=10000)
        recipients = [
            {
                "email": document["email"],
                "name": f"{document['first_name']} {document['last_name']}",
                "registration_id": document["registration_id"],
            }
            for document in documents
        ]

    result = email_service.bulk_send(recipients, data["subject"], data["body"], mail_sender, current_actor())
    return ok(result, f"Sent {len(result['sent'])} of {len(recipients)}")
