"""Email outbox: templating, queueing, dispatch and manual requeue."""
import logging
import time
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from confdesk.models.audit import Actor, EmailRecord
from confdesk.services import audit_service, error_service
from confdesk.services.settings_service import get_setting
from confdesk.services.storage_service import find_one, insert_document, read_collection, update_document
from confdesk.utils.date_utils import isoformat
from confdesk.utils.validation import validate_email

logger = logging.getLogger(__name__)

EMAILS_COLLECTION = "emails"

# Sender(to, subject, body) raises on delivery failure
Sender = Callable[[str, str, str], None]


def render_template(template: str, data: Dict[str, Any]) -> str:
    """
    Replace {placeholder} tokens with values from data.

    Unknown placeholders are left untouched; None renders as "".
    """
    result = template
    for key, value in data.items():
        result = result.replace(f"{{{key}}}", "" if value is None else str(value))
    return result


def render_named_template(template_key: str, data: Dict[str, Any]) -> Tuple[str, str]:
    """
    Render a configured template into (subject, body).

    Raises:
        KeyError: If no template with that key is configured
    """
    templates = get_setting("email_templates")
    template = templates[template_key]
    return render_template(template["subject"], data), render_template(template["body"], data)


def queue_email(
    recipient_email: str,
    recipient_name: str,
    subject: str,
    body: str,
    template: str = "custom",
    category: str = "system",
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Put an email in the outbox with status 'queued'.

    Raises:
        ValueError: If the recipient address or subject is invalid
    """
    is_valid, message = validate_email(recipient_email)
    if not is_valid:
        raise ValueError(message)

    record = EmailRecord(
        email_id=f"EQ-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}",
        recipient_email=recipient_email.strip().lower(),
        recipient_name=recipient_name,
        subject=subject,
        body=body,
        created_at=isoformat(now),
        template=template,
        category=category,
    )
    return insert_document(EMAILS_COLLECTION, lambda _documents: record.to_dict())


def dispatch(email_id: str, sender: Sender, now: Optional[datetime] = None) -> Tuple[bool, str]:
    """
    Send one queued email.

    Returns:
        Tuple of (success: bool, message: str)
        - (True, "Email sent") on delivery
        - (False, "Email not found") / (False, "Email is not queued")
        - (False, error) when the transport fails; status becomes 'failed'
    """
    record = find_one(EMAILS_COLLECTION, "email_id", email_id)
    if record is None:
        return False, "Email not found"
    if record["status"] != "queued":
        return False, "Email is not queued"

    attempted_at = isoformat(now)
    try:
        sender(record["recipient_email"], record["subject"], record["body"])
    except Exception as e:
        logger.error(f"Email {email_id} to {record['recipient_email']} failed: {e}")

        def _mark_failed(document: Dict[str, Any]) -> None:
            document["status"] = "failed"
            document["attempts"] = document.get("attempts", 0) + 1
            document["last_attempt_at"] = attempted_at
            document["error"] = str(e)

        update_document(EMAILS_COLLECTION, "email_id", email_id, _mark_failed)
        error_service.log_error(
            f"Email delivery failed: {e}",
            category="email",
            user_email=record["recipient_email"],
            metadata={"email_id": email_id, "subject": record["subject"]},
        )
        return False, str(e)

    def _mark_sent(document: Dict[str, Any]) -> None:
        document["status"] = "sent"
        document["attempts"] = document.get("attempts", 0) + 1
        document["last_attempt_at"] = attempted_at
        document["sent_at"] = attempted_at
        document["error"] = ""

    update_document(EMAILS_COLLECTION, "email_id", email_id, _mark_sent)
    logger.info(f"Email {email_id} sent to {record['recipient_email']}")
    return True, "Email sent"


def requeue(email_id: str, actor: Actor) -> Tuple[bool, str]:
    """Move a failed email back to 'queued'; the only retry path."""
    def _requeue(document: Dict[str, Any]) -> None:
        if document["status"] != "failed":
            raise ValueError("Only failed emails can be requeued")
        document["status"] = "queued"
        document["error"] = ""

    try:
        updated = update_document(EMAILS_COLLECTION, "email_id", email_id, _requeue)
    except ValueError as e:
        return False, str(e)

    if updated is None:
        return False, "Email not found"

    audit_service.log_action(
        actor=actor,
        action="email.resent",
        resource_type="email",
        resource_id=email_id,
        resource_name=updated["recipient_email"],
        before={"status": "failed"},
        after={"status": "queued"},
        description=f"Email {email_id} requeued",
    )
    return True, "Email requeued"


def process_queue(sender: Sender) -> Dict[str, Any]:
    """Send every queued email sequentially, collecting failures."""
    sent: List[str] = []
    failed: List[Dict[str, str]] = []
    for record in read_collection(EMAILS_COLLECTION):
        if record["status"] != "queued":
            continue
        success, message = dispatch(record["email_id"], sender)
        if success:
            sent.append(record["email_id"])
        else:
            failed.append({"email_id": record["email_id"], "message": message})
    return {"sent": sent, "failed": failed}


def send_templated(
    template_key: str,
    recipient_email: str,
    recipient_name: str,
    data: Dict[str, Any],
    category: str = "system",
    sender: Optional[Sender] = None,
) -> Dict[str, Any]:
    """Queue a configured template; dispatch right away when a sender is given."""
    subject, body = render_named_template(template_key, {"name": recipient_name, **data})
    record = queue_email(recipient_email, recipient_name, subject, body, template=template_key, category=category)
    if sender is not None:
        dispatch(record["email_id"], sender)
    return record


def bulk_send(
    recipients: List[Dict[str, Any]],
    subject: str,
    body: str,
    sender: Sender,
    actor: Actor,
) -> Dict[str, Any]:
    """
    Render and send one email per recipient, sequentially.

    Args:
        recipients: [{"email", "name", **placeholders}]

    Returns:
        {"sent": [emails], "errors": [{"email", "message"}]}
    """
    sent: List[str] = []
    errors: List[Dict[str, str]] = []

    for recipient in recipients:
        email = recipient.get("email", "")
        try:
            record = queue_email(
                email,
                recipient.get("name", ""),
                render_template(subject, recipient),
                render_template(body, recipient),
                template="bulk",
                category="bulk",
            )
        except ValueError as e:
            errors.append({"email": email, "message": str(e)})
            continue

        success, message = dispatch(record["email_id"], sender)
        if success:
            sent.append(email)
        else:
            errors.append({"email": email, "message": message})

    audit_service.log_action(
        actor=actor,
        action="admin.bulk_email",
        resource_type="email",
        resource_id="bulk",
        resource_name=subject,
        after={"sent": len(sent), "failed": len(errors)},
        description=f"Bulk email '{subject}' sent to {len(sent)} of {len(recipients)} recipients",
    )
    return {"sent": sent, "errors": errors}


def get_emails(
    status: Optional[str] = None,
    recipient_email: Optional[str] = None,
    skip: int = 0,
    limit: int = 50,
) -> Tuple[List[Dict[str, Any]], int]:
    """Outbox listing, newest first."""
    matching = [
        record for record in read_collection(EMAILS_COLLECTION)
        if (status is None or record["status"] == status)
        and (recipient_email is None or record["recipient_email"] == recipient_email.strip().lower())
    ]
    matching.sort(key=lambda record: record["created_at"], reverse=True)
    return matching[skip:skip + limit], len(matching)