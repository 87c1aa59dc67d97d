"""Registration lifecycle: sign-up, status transitions and admin actions."""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from confdesk.models.audit import Actor
from confdesk.models.registrant import REGISTRATION_STATUSES, Registrant
from confdesk.services import audit_service, email_service
from confdesk.services.pricing_service import calculate_price, get_current_pricing
from confdesk.services.storage_service import (
    find_one,
    insert_document,
    next_sequence_id,
    read_collection,
    update_document,
)
from confdesk.utils.date_utils import days_between, isoformat, parse_timestamp, utc_now
from confdesk.utils.exceptions import (
    InvalidTransitionError,
    PricingNotConfiguredError,
    RegistrantNotFoundError,
    ValidationError,
)
from confdesk.utils.validation import normalize_email, validate_accompanying_persons, validate_utr

logger = logging.getLogger(__name__)

REGISTRATIONS_COLLECTION = "registrations"

ALLOWED_TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    "pending": ("pending-payment", "confirmed", "cancelled"),
    "pending-payment": ("paid", "confirmed", "cancelled", "pending"),
    "paid": ("confirmed", "refunded"),
    "confirmed": ("refunded", "cancelled"),
    "cancelled": (),
    "refunded": (),
}

STATUS_ACTIONS = {
    "pending": "registration.updated",
    "pending-payment": "registration.updated",
    "paid": "payment.completed",
    "confirmed": "registration.confirmed",
    "cancelled": "registration.cancelled",
    "refunded": "payment.refunded",
}

STATUS_EMAILS = {
    "confirmed": "registration_confirmed",
    "cancelled": "registration_cancelled",
}


def can_transition(current: str, target: str) -> bool:
    """Check the status table; staying in the same status is never a transition."""
    return target in ALLOWED_TRANSITIONS.get(current, ())


def _clean_persons(persons: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "name": person["name"].strip(),
            "age": person["age"],
            "relationship": person["relationship"],
            "dietary_requirements": person.get("dietary_requirements", ""),
        }
        for person in persons
    ]


def registrant_actor(registrant: Registrant) -> Actor:
    """Audit actor representing the attendee acting on their own record."""
    return Actor(
        account_id=registrant.registration_id,
        email=registrant.email,
        role="user",
        name=f"{registrant.first_name} {registrant.last_name}",
    )


def get_registration(registration_id: str) -> Registrant:
    """
    Raises:
        RegistrantNotFoundError: If the registration ID is unknown
    """
    document = find_one(REGISTRATIONS_COLLECTION, "registration_id", registration_id)
    if document is None:
        raise RegistrantNotFoundError(f"Registration not found: {registration_id}")
    return Registrant.from_dict(document)


def find_by_email(email: str) -> Optional[Registrant]:
    """Look up a registration by normalized email."""
    document = find_one(REGISTRATIONS_COLLECTION, "email", normalize_email(email))
    return Registrant.from_dict(document) if document else None


def quote_for(document: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    """
    Fee calculation for a stored registration document.

    Raises:
        PricingNotConfiguredError, ValidationError
    """
    return calculate_price(
        document["category"],
        now,
        workshop_ids=document.get("workshop_selections", []),
        accompanying_persons=document.get("accompanying_persons", []),
        age=document.get("age") or 0,
    )


def create_registration(
    data: Dict[str, Any],
    now: datetime,
    source: str = "normal",
    actor: Optional[Actor] = None,
    status: str = "pending",
    payment: Optional[Dict[str, Any]] = None,
    sponsor_id: Optional[str] = None,
) -> Registrant:
    """
    Create a registration in the 'pending' state.

    Args:
        data: email, first_name, last_name, category and optional title,
            phone, age, institution, workshop_selections, accompanying_persons
        now: Registration time; also picks the pricing tier recorded on it
        source: "normal", "sponsor-managed" or "admin-created"
        actor: Who created it (defaults to the registrant)

    Returns:
        The stored Registrant

    Raises:
        ValidationError: On invalid fields, unknown category or duplicate email
        PricingNotConfiguredError: If pricing is unavailable
    """
    tier = get_current_pricing(now)
    category = data.get("category", "")
    if category not in tier.categories:
        raise ValidationError(f"Invalid registration type: {category}")

    persons = data.get("accompanying_persons", []) or []
    is_valid, message = validate_accompanying_persons(persons)
    if not is_valid:
        raise ValidationError(message)
    persons = _clean_persons(persons)

    email = normalize_email(data.get("email", ""))

    def _build(documents: List[Dict[str, Any]]) -> Dict[str, Any]:
        if any(doc.get("email") == email for doc in documents):
            raise ValidationError("A registration with this email already exists")
        try:
            registrant = Registrant(
                registration_id=next_sequence_id(documents, "registration_id", "REG"),
                email=email,
                first_name=(data.get("first_name") or "").strip(),
                last_name=(data.get("last_name") or "").strip(),
                category=category,
                registered_at=isoformat(now),
                title=data.get("title", ""),
                phone=data.get("phone", ""),
                age=data.get("age"),
                institution=data.get("institution", ""),
                status=status,
                source=source,
                tier=tier.key,
                workshop_selections=list(dict.fromkeys(data.get("workshop_selections", []) or [])),
                sponsor_id=sponsor_id,
            )
            document = registrant.to_dict()
            document["accompanying_persons"] = persons
            document["payment"] = payment
            Registrant.from_dict(document)
        except (TypeError, ValueError) as e:
            raise ValidationError(str(e)) from e
        if status == "confirmed":
            document["confirmed_at"] = isoformat(now)
        return document

    document = insert_document(REGISTRATIONS_COLLECTION, _build)
    registrant = Registrant.from_dict(document)
    logger.info(f"Registration {registrant.registration_id} created ({source}, tier {tier.key})")

    audit_service.log_action(
        actor=actor or registrant_actor(registrant),
        action="registration.created",
        resource_type="registration",
        resource_id=registrant.registration_id,
        resource_name=registrant.email,
        after={"status": registrant.status, "category": category, "source": source},
        description=f"Registration {registrant.registration_id} was created",
        now=now,
    )
    return registrant


def transition_status(
    registration_id: str,
    new_status: str,
    actor: Actor,
    remarks: str = "",
    now: Optional[datetime] = None,
    notify: bool = True,
    sender: Optional[email_service.Sender] = None,
    extra: Optional[Callable[[Dict[str, Any]], None]] = None,
) -> Registrant:
    """
    Move a registration to a new status.

    Args:
        registration_id: Registration to change
        new_status: Target status
        actor: Admin, gateway (system) or registrant performing the change
        remarks: Stored on the payment record when present
        notify: Queue the confirmation/cancellation email
        sender: Dispatch the notification immediately with this sender
        extra: Additional in-place changes applied in the same write

    Returns:
        The updated Registrant

    Raises:
        RegistrantNotFoundError: If the registration ID is unknown
        InvalidTransitionError: If the status table forbids the change
    """
    if new_status not in REGISTRATION_STATUSES:
        raise ValidationError(f"Unknown status: {new_status}")

    moment = now or utc_now()
    previous: Dict[str, Any] = {}

    def _apply(document: Dict[str, Any]) -> None:
        current = document.get("status", "pending")
        if not can_transition(current, new_status):
            raise InvalidTransitionError(current, new_status)
        previous["status"] = current
        document["status"] = new_status
        if new_status == "confirmed":
            document["confirmed_at"] = isoformat(moment)
        if remarks and document.get("payment"):
            document["payment"]["remarks"] = remarks
        if extra is not None:
            extra(document)

    document = update_document(REGISTRATIONS_COLLECTION, "registration_id", registration_id, _apply)
    if document is None:
        raise RegistrantNotFoundError(f"Registration not found: {registration_id}")

    registrant = Registrant.from_dict(document)
    logger.info(f"Registration {registration_id}: {previous['status']} -> {new_status} by {actor.email}")

    audit_service.log_action(
        actor=actor,
        action=STATUS_ACTIONS[new_status],
        resource_type="registration",
        resource_id=registration_id,
        resource_name=registrant.email,
        before={"status": previous["status"]},
        after={"status": new_status},
        description=f"Registration {registration_id} changed from {previous['status']} to {new_status}",
        metadata={"remarks": remarks} if remarks else None,
        now=moment,
    )

    template = STATUS_EMAILS.get(new_status)
    if notify and template:
        email_service.send_templated(
            template,
            registrant.email,
            registrant.full_name,
            {"registration_id": registration_id},
            category="registration",
            sender=sender,
        )

    return registrant


def submit_bank_transfer(
    registration_id: str,
    utr: str,
    amount: float,
    workshop_ids: Iterable[str] = (),
    accompanying_persons: Optional[List[Dict[str, Any]]] = None,
    now: Optional[datetime] = None,
) -> Tuple[bool, str]:
    """
    Record a bank transfer made by the registrant.

    Returns:
        Tuple of (success: bool, message: str)
        - (True, "Payment submitted for verification") on success
        - (False, "Registration not found")
        - (False, "Registration is already confirmed")
        - (False, "An online payment is already in progress ...")
        - (False, error_message) on validation failure

    Behavior:
        - Workshops can only be added, never removed
        - Status moves to 'pending-payment', payment status 'pending'
        - The fee calculation at submission time is stored on the payment
        - An open gateway order is never replaced, so its callback or
          webhook still finds the registration
    """
    is_valid, message = validate_utr(utr)
    if not is_valid:
        return False, message

    if amount is None or amount < 0:
        return False, "Amount must be a non-negative number"

    if accompanying_persons is not None:
        is_valid, message = validate_accompanying_persons(accompanying_persons)
        if not is_valid:
            return False, message

    moment = now or utc_now()

    def _apply(document: Dict[str, Any]) -> None:
        status = document.get("status")
        if status in ("confirmed", "paid"):
            raise ValueError("Registration is already confirmed")
        if status not in ("pending", "pending-payment"):
            raise ValueError(f"Cannot submit payment for a {status} registration")
        payment = document.get("payment") or {}
        if payment.get("method") == "online" and payment.get("status") == "processing":
            raise ValueError("An online payment is already in progress for this registration")

        existing = document.get("workshop_selections", [])
        document["workshop_selections"] = existing + [w for w in dict.fromkeys(workshop_ids) if w not in existing]
        if accompanying_persons is not None:
            document["accompanying_persons"] = _clean_persons(accompanying_persons)
        quote = quote_for(document, moment)
        document["payment"] = {
            "method": "bank-transfer",
            "status": "pending",
            "amount": amount,
            "utr": utr.strip(),
            "transaction_id": None,
            "order_id": None,
            "paid_at": isoformat(moment),
            "verified_by": None,
            "verified_at": None,
            "remarks": "",
            "quote": quote,
        }
        document["status"] = "pending-payment"

    try:
        document = update_document(REGISTRATIONS_COLLECTION, "registration_id", registration_id, _apply)
    except (ValueError, ValidationError, PricingNotConfiguredError) as e:
        return False, str(e)
    except IOError as e:
        logger.error(f"File operation failed during payment submission: {e}")
        return False, "System error, please try again later"

    if document is None:
        return False, "Registration not found"

    registrant = Registrant.from_dict(document)
    audit_service.log_action(
        actor=registrant_actor(registrant),
        action="payment.initiated",
        resource_type="payment",
        resource_id=registration_id,
        resource_name=registrant.email,
        after={"method": "bank-transfer", "amount": amount},
        description=f"Bank transfer submitted for registration {registration_id}",
        now=moment,
    )
    return True, "Payment submitted for verification"


def verify_bank_transfer(
    registration_id: str,
    actor: Actor,
    approve: bool,
    remarks: str = "",
    now: Optional[datetime] = None,
    sender: Optional[email_service.Sender] = None,
) -> Registrant:
    """
    Admin verification of a submitted bank transfer.

    Approving marks the payment verified and confirms the registration;
    rejecting marks it rejected and returns the registration to 'pending'.

    Raises:
        RegistrantNotFoundError, InvalidTransitionError
        ValidationError: If no bank transfer is awaiting verification
    """
    registrant = get_registration(registration_id)
    if registrant.payment is None or registrant.payment.method != "bank-transfer":
        raise ValidationError("No bank transfer awaiting verification")

    moment = now or utc_now()

    def _mark_payment(document: Dict[str, Any]) -> None:
        document["payment"]["status"] = "verified" if approve else "rejected"
        document["payment"]["verified_by"] = actor.email
        document["payment"]["verified_at"] = isoformat(moment)

    return transition_status(
        registration_id,
        "confirmed" if approve else "pending",
        actor,
        remarks=remarks,
        now=moment,
        sender=sender,
        extra=_mark_payment,
    )


def bulk_update_status(registration_ids: Iterable[str], new_status: str, actor: Actor) -> Dict[str, Any]:
    """
    Apply one status to many registrations, sequentially.

    Returns:
        {"updated": [ids], "errors": [{"id", "message"}]}
    """
    updated: List[str] = []
    errors: List[Dict[str, str]] = []
    for registration_id in registration_ids:
        try:
            transition_status(registration_id, new_status, actor)
            updated.append(registration_id)
        except (RegistrantNotFoundError, InvalidTransitionError, ValidationError) as e:
            errors.append({"id": registration_id, "message": str(e)})
        except Exception as e:
            logger.exception(f"Bulk status update failed for {registration_id}")
            errors.append({"id": registration_id, "message": f"{type(e).__name__}: {e}"})
    return {"updated": updated, "errors": errors}


def cleanup_pending(older_than_days: float, now: datetime, actor: Actor) -> List[str]:
    """Cancel 'pending' registrations created more than N days before now."""
    cancelled = []
    for document in read_collection(REGISTRATIONS_COLLECTION):
        if document.get("status") != "pending":
            continue
        if days_between(parse_timestamp(document["registered_at"]), now) <= older_than_days:
            continue
        transition_status(
            document["registration_id"],
            "cancelled",
            actor,
            remarks="Stale pending registration",
            now=now,
            notify=False,
        )
        cancelled.append(document["registration_id"])
    logger.info(f"Cancelled {len(cancelled)} stale pending registrations")
    return cancelled


def list_registrations(
    status: Optional[str] = None,
    category: Optional[str] = None,
    search: Optional[str] = None,
    skip: int = 0,
    limit: int = 50,
) -> Tuple[List[Dict[str, Any]], int]:
    """Filter registrations; search matches ID, email or name case-insensitively."""
    needle = search.lower() if search else None
    matching = []
    for document in read_collection(REGISTRATIONS_COLLECTION):
        if status and document.get("status") != status:
            continue
        if category and document.get("category") != category:
            continue
        if needle:
            haystack = " ".join([
                document.get("registration_id", ""),
                document.get("email", ""),
                document.get("first_name", ""),
                document.get("last_name", ""),
            ]).lower()
            if needle not in haystack:
                continue
        matching.append(document)
    matching.sort(key=lambda document: document["registration_id"])
    return matching[skip:skip + limit], len(matching)


def get_registration_status(registration_id: str) -> Dict[str, Any]:
    """Public status summary for a registration ID."""
    registrant = get_registration(registration_id)
    return {
        "registration_id": registrant.registration_id,
        "name": registrant.full_name,
        "category": registrant.category,
        "status": registrant.status,
        "payment_status": registrant.payment.status if registrant.payment else None,
        "tier": registrant.tier,
    }
