"""Abstract submission, reviewer assignment, scoring and decisions."""
import logging
import os
import time
import uuid
from collections import Counter
from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from confdesk.models.abstract import ABSTRACT_STATUSES, Abstract, FileReference, Review
from confdesk.models.account import Account
from confdesk.models.audit import Actor
from confdesk.services import audit_service, email_service
from confdesk.services.auth_service import ACCOUNTS_COLLECTION
from confdesk.services.registration_service import get_registration, registrant_actor
from confdesk.services.settings_service import get_setting
from confdesk.services.storage_service import (
    find_documents,
    find_one,
    insert_document,
    next_sequence_id,
    read_collection,
    update_document,
)
from confdesk.utils.date_utils import has_passed, isoformat, utc_now
from confdesk.utils.exceptions import (
    AbstractNotFoundError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from confdesk.utils.validation import validate_scores, word_count

logger = logging.getLogger(__name__)

ABSTRACTS_COLLECTION = "abstracts"
REVIEWS_COLLECTION = "reviews"
PENDING_NOTIFICATIONS_COLLECTION = "pending_notifications"

FINAL_FILE_EXTENSIONS = (".pdf", ".ppt", ".pptx", ".doc", ".docx")
BLIND_FIELDS = ("author_email", "authors", "registration_id")
DECISION_TEMPLATES = {"accepted": "abstract_accepted", "rejected": "abstract_rejected"}


def get_abstract(abstract_id: str) -> Abstract:
    """
    Raises:
        AbstractNotFoundError: If the abstract ID is unknown
    """
    document = find_one(ABSTRACTS_COLLECTION, "abstract_id", abstract_id)
    if document is None:
        raise AbstractNotFoundError(f"Abstract not found: {abstract_id}")
    return Abstract.from_dict(document)


def get_reviews(abstract_id: str) -> List[Review]:
    return [Review.from_dict(doc) for doc in find_documents(REVIEWS_COLLECTION, abstract_id=abstract_id)]


def aggregate_score(reviews: Iterable[Review]) -> Optional[float]:
    """Arithmetic mean of per-review totals; None when there are no reviews."""
    totals = [review.total for review in reviews]
    if not totals:
        return None
    return sum(totals) / len(totals)


def _file_reference(data: Optional[Dict[str, Any]], now: datetime) -> Optional[FileReference]:
    if not data:
        return None
    try:
        return FileReference(
            original_name=data["original_name"],
            mime_type=data.get("mime_type", "application/octet-stream"),
            size_bytes=int(data.get("size_bytes", 0)),
            storage_path=data["storage_path"],
            uploaded_at=data.get("uploaded_at") or isoformat(now),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationError(f"Invalid file reference: {e}") from e


def submit_abstract(registration_id: str, data: Dict[str, Any], now: datetime) -> Abstract:
    """
    Submit an abstract on behalf of a registrant.

    Args:
        registration_id: Submitting registrant
        data: title, category, topic and optional authors, keywords, track,
            body, file ({"original_name", "mime_type", "size_bytes",
            "storage_path"})
        now: Submission time, checked against the configured deadline

    Raises:
        RegistrantNotFoundError: If the registrant is unknown
        ValidationError: If submissions are closed or the data is invalid
    """
    registrant = get_registration(registration_id)
    if registrant.status in ("cancelled", "refunded"):
        raise ValidationError("Registration is not active")

    config = get_setting("abstracts_config")
    if not config.get("enabled", True):
        raise ValidationError("Abstract submission is closed")
    deadline = config.get("submission_deadline")
    if deadline and has_passed(deadline, now):
        raise ValidationError(f"Abstract submission closed on {deadline}")

    topics = config.get("topics") or []
    if topics and data.get("topic") not in topics:
        raise ValidationError(f"Topic must be one of {topics}")

    word_limit = config.get("word_limit")
    if word_limit and word_count(data.get("body", "")) > word_limit:
        raise ValidationError(f"Abstract exceeds the {word_limit} word limit")

    file_ref = _file_reference(data.get("file"), now)

    def _build(documents: List[Dict[str, Any]]) -> Dict[str, Any]:
        try:
            abstract = Abstract(
                abstract_id=next_sequence_id(documents, "abstract_id", "ABS", width=3),
                registration_id=registration_id,
                author_email=registrant.email,
                title=(data.get("title") or "").strip(),
                category=data.get("category", ""),
                topic=(data.get("topic") or "").strip(),
                submitted_at=isoformat(now),
                authors=list(data.get("authors") or [registrant.full_name]),
                keywords=list(data.get("keywords") or []),
                track=data.get("track", ""),
                body=data.get("body", ""),
                file=file_ref,
            )
        except (TypeError, ValueError) as e:
            raise ValidationError(str(e)) from e
        return abstract.to_dict()

    abstract = Abstract.from_dict(insert_document(ABSTRACTS_COLLECTION, _build))
    logger.info(f"Abstract {abstract.abstract_id} submitted by {registration_id}")

    audit_service.log_action(
        actor=registrant_actor(registrant),
        action="abstract.submitted",
        resource_type="abstract",
        resource_id=abstract.abstract_id,
        resource_name=abstract.title,
        after={"status": abstract.status, "category": abstract.category},
        description=f"Abstract \"{abstract.title}\" was submitted",
        now=now,
    )
    return abstract


def assign_reviewers(abstract_id: str, reviewer_ids: List[str], actor: Actor) -> Abstract:
    """
    Replace the reviewers assigned to an abstract.

    Raises:
        AbstractNotFoundError: If the abstract ID is unknown
        ValidationError: If a reviewer is unknown, inactive or not a reviewer,
            or if the abstract already has a decision
    """
    unique_ids = list(dict.fromkeys(reviewer_ids))
    for reviewer_id in unique_ids:
        account = find_one(ACCOUNTS_COLLECTION, "account_id", reviewer_id)
        if account is None or account.get("role") != "reviewer" or not account.get("is_active", True):
            raise ValidationError(f"Not an active reviewer: {reviewer_id}")

    previous: Dict[str, Any] = {}

    def _apply(document: Dict[str, Any]) -> None:
        if document["status"] in ("accepted", "rejected", "final-submitted"):
            raise ValidationError("Abstract already has a decision")
        previous["assigned"] = list(document.get("assigned_reviewer_ids", []))
        document["assigned_reviewer_ids"] = unique_ids
        if unique_ids and document["status"] == "submitted":
            document["status"] = "under-review"

    document = update_document(ABSTRACTS_COLLECTION, "abstract_id", abstract_id, _apply)
    if document is None:
        raise AbstractNotFoundError(f"Abstract not found: {abstract_id}")

    abstract = Abstract.from_dict(document)
    audit_service.log_action(
        actor=actor,
        action="abstract.reviewers_assigned",
        resource_type="abstract",
        resource_id=abstract_id,
        resource_name=abstract.title,
        before={"assigned_reviewer_ids": previous["assigned"]},
        after={"assigned_reviewer_ids": unique_ids},
        description=f"{len(unique_ids)} reviewer(s) assigned to {abstract_id}",
    )
    return abstract


def _notify_decision(abstract: Abstract, sender: Optional[email_service.Sender] = None) -> str:
    """
    Email the author about a decision, or park it as a pending notification.

    Returns "sent"/"queued" for immediate mode and "pending" otherwise.
    """
    template = DECISION_TEMPLATES[abstract.status]
    mode = get_setting("reviewer_config").get("email_notification_mode", "immediate")

    if mode != "immediate":
        notification = {
            "notification_id": f"PN-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}",
            "abstract_id": abstract.abstract_id,
            "template": template,
            "status": "pending",
            "created_at": isoformat(),
        }
        insert_document(PENDING_NOTIFICATIONS_COLLECTION, lambda _documents: notification)
        logger.info(f"Decision email for {abstract.abstract_id} parked until admin release")
        return "pending"

    registrant = get_registration(abstract.registration_id)
    email_service.send_templated(
        template,
        abstract.author_email,
        registrant.full_name,
        {
            "abstract_id": abstract.abstract_id,
            "title": abstract.title,
            "approved_for": abstract.approved_for or "presentation",
            "registration_id": abstract.registration_id,
        },
        category="abstract",
        sender=sender,
    )
    return "sent" if sender else "queued"


def submit_review(
    abstract_id: str,
    reviewer: Account,
    scores: Dict[str, Any],
    decision: str,
    approved_for: Optional[str] = None,
    rejection_comment: str = "",
    now: Optional[datetime] = None,
    sender: Optional[email_service.Sender] = None,
) -> Dict[str, Any]:
    """
    Record one reviewer's scores and recommendation.

    Returns:
        {"review": Review, "abstract": Abstract, "consensus": bool}

    Behavior:
        - The first review moves 'submitted' to 'under-review'
        - Once reviews reach the assigned reviewer count (at least one) the
          majority recommendation decides: more approvals than rejections
          accepts, anything else rejects
        - The decision email follows email_notification_mode

    Raises:
        AbstractNotFoundError: If the abstract ID is unknown
        PermissionDeniedError: If the account may not review this abstract
        ValidationError: On invalid scores, missing comment, duplicate review
            or an abstract that is already decided
    """
    if reviewer.role not in ("reviewer", "admin"):
        raise PermissionDeniedError("Reviewer access required")

    abstract = get_abstract(abstract_id)
    if reviewer.role == "reviewer" and reviewer.account_id not in abstract.assigned_reviewer_ids:
        raise PermissionDeniedError("You are not assigned to this abstract")
    if abstract.is_decided():
        raise ValidationError("Abstract already has a decision")

    config = get_setting("reviewer_config")
    is_valid, message = validate_scores(scores, config.get("scoring_criteria", []))
    if not is_valid:
        raise ValidationError(message)
    if decision == "reject" and config.get("require_rejection_comment", True) and not (rejection_comment or "").strip():
        raise ValidationError("A comment is required when rejecting")

    moment = now or utc_now()
    allow_edit = config.get("allow_review_edit", False)

    try:
        review = Review(
            review_id=f"REV-{uuid.uuid4().hex[:10]}",
            abstract_id=abstract_id,
            reviewer_id=reviewer.account_id,
            scores=dict(scores),
            decision=decision,
            submitted_at=isoformat(moment),
            approved_for=approved_for if decision == "approve" else None,
            rejection_comment=rejection_comment if decision == "reject" else "",
        )
    except ValueError as e:
        raise ValidationError(str(e)) from e

    existing = [
        doc for doc in find_documents(REVIEWS_COLLECTION, abstract_id=abstract_id)
        if doc["reviewer_id"] == reviewer.account_id
    ]
    if existing and allow_edit:
        review.review_id = existing[0]["review_id"]

        def _replace(document: Dict[str, Any]) -> None:
            document.update(review.to_dict())

        update_document(REVIEWS_COLLECTION, "review_id", review.review_id, _replace)
    else:
        def _build(documents: List[Dict[str, Any]]) -> Dict[str, Any]:
            if any(d["abstract_id"] == abstract_id and d["reviewer_id"] == reviewer.account_id for d in documents):
                raise ValidationError("You have already reviewed this abstract")
            return review.to_dict()

        insert_document(REVIEWS_COLLECTION, _build)

    reviews = get_reviews(abstract_id)
    required = max(len(abstract.assigned_reviewer_ids), 1)
    consensus = len(reviews) >= required

    def _apply(document: Dict[str, Any]) -> None:
        if document["status"] == "submitted":
            document["status"] = "under-review"
        document["average_score"] = aggregate_score(reviews)
        if consensus:
            approvals = [r for r in reviews if r.decision == "approve"]
            if len(approvals) > len(reviews) - len(approvals):
                document["status"] = "accepted"
                document["approved_for"] = Counter(r.approved_for for r in approvals).most_common(1)[0][0]
            else:
                document["status"] = "rejected"
            document["decision_at"] = isoformat(moment)

    abstract = Abstract.from_dict(update_document(ABSTRACTS_COLLECTION, "abstract_id", abstract_id, _apply))
    logger.info(f"Review by {reviewer.account_id} on {abstract_id}: {decision} (total {review.total})")

    audit_service.log_action(
        actor=Actor(reviewer.account_id, reviewer.email, reviewer.role, reviewer.name),
        action="abstract.reviewed",
        resource_type="abstract",
        resource_id=abstract_id,
        resource_name=abstract.title,
        after={"decision": decision, "approved_for": approved_for, "scores": scores, "total": review.total},
        description=(
            f"Reviewer {'approved' if decision == 'approve' else 'rejected'} abstract \"{abstract.title}\""
            + (f" for {approved_for}" if decision == "approve" and approved_for else "")
        ),
        now=moment,
    )

    if consensus:
        _notify_decision(abstract, sender)

    return {"review": review, "abstract": abstract, "consensus": consensus}


def apply_decision(
    abstract_id: str,
    decision: str,
    actor: Actor,
    approved_for: Optional[str] = None,
    now: Optional[datetime] = None,
    sender: Optional[email_service.Sender] = None,
) -> Abstract:
    """
    Admin accept/reject of an abstract.

    Args:
        decision: "accepted" or "rejected"
        approved_for: Presentation type for accepted abstracts; defaults to
            the one already recorded

    Raises:
        AbstractNotFoundError, ValidationError
    """
    if decision not in DECISION_TEMPLATES:
        raise ValidationError(f"Decision must be 'accepted' or 'rejected', got: {decision}")

    moment = now or utc_now()
    average = aggregate_score(get_reviews(abstract_id))
    previous: Dict[str, Any] = {}

    def _apply(document: Dict[str, Any]) -> None:
        if document["status"] == "final-submitted":
            raise ValidationError("Abstract already has a final submission")
        previous["status"] = document["status"]
        document["status"] = decision
        document["average_score"] = average
        document["decision_at"] = isoformat(moment)
        if decision == "accepted":
            document["approved_for"] = approved_for or document.get("approved_for") or "podium"
        else:
            document["approved_for"] = None

    document = update_document(ABSTRACTS_COLLECTION, "abstract_id", abstract_id, _apply)
    if document is None:
        raise AbstractNotFoundError(f"Abstract not found: {abstract_id}")

    abstract = Abstract.from_dict(document)
    audit_service.log_action(
        actor=actor,
        action="abstract.decision",
        resource_type="abstract",
        resource_id=abstract_id,
        resource_name=abstract.title,
        before={"status": previous["status"]},
        after={"status": decision, "approved_for": abstract.approved_for, "average_score": average},
        description=f"Abstract {abstract_id} marked {decision}",
        now=moment,
    )
    _notify_decision(abstract, sender)
    return abstract


def bulk_decision(abstract_ids: Iterable[str], decision: str, actor: Actor) -> Dict[str, Any]:
    """
    Apply one decision to many abstracts, sequentially.

    Returns:
        {"updated": [ids], "errors": [{"id", "message"}]}
    """
    updated: List[str] = []
    errors: List[Dict[str, str]] = []
    for abstract_id in abstract_ids:
        try:
            apply_decision(abstract_id, decision, actor)
            updated.append(abstract_id)
        except (NotFoundError, ValidationError) as e:
            errors.append({"id": abstract_id, "message": str(e)})
        except Exception as e:
            logger.exception(f"Bulk decision failed for {abstract_id}")
            errors.append({"id": abstract_id, "message": f"{type(e).__name__}: {e}"})
    return {"updated": updated, "errors": errors}


def submit_final(abstract_id: str, author_email: str, data: Dict[str, Any], now: datetime) -> Abstract:
    """
    Attach the final (camera-ready) version to an accepted abstract.

    Raises:
        AbstractNotFoundError: If the abstract ID is unknown
        PermissionDeniedError: If the caller is not the author
        ValidationError: If the abstract is not accepted, the window is
            closed or the file is missing or of an unsupported type
    """
    abstract = get_abstract(abstract_id)
    if abstract.author_email != (author_email or "").strip().lower():
        raise PermissionDeniedError("Access denied")
    if abstract.status != "accepted":
        raise ValidationError("Final submission is only allowed for accepted abstracts")

    deadline = get_setting("abstracts_config").get("final_submission_deadline")
    if deadline and has_passed(deadline, now):
        raise ValidationError(f"Final submission closed on {deadline}")

    file_ref = _file_reference(data.get("file"), now)
    if file_ref is None:
        raise ValidationError("Final presentation file is required")
    if os.path.splitext(file_ref.original_name)[1].lower() not in FINAL_FILE_EXTENSIONS:
        raise ValidationError("Only PDF, PowerPoint, and Word documents are allowed")

    final = {
        "display_id": f"{abstract_id}-F",
        "submitted_at": isoformat(now),
        "file": asdict(file_ref),
        "notes": data.get("notes", ""),
    }

    def _apply(document: Dict[str, Any]) -> None:
        document["final"] = final
        document["status"] = "final-submitted"

    abstract = Abstract.from_dict(update_document(ABSTRACTS_COLLECTION, "abstract_id", abstract_id, _apply))
    audit_service.log_action(
        actor=registrant_actor(get_registration(abstract.registration_id)),
        action="abstract.final_submitted",
        resource_type="abstract",
        resource_id=abstract_id,
        resource_name=abstract.title,
        before={"status": "accepted"},
        after={"status": "final-submitted", "display_id": final["display_id"]},
        description=f"Final version {final['display_id']} submitted",
        now=now,
    )
    return abstract


def get_pending_notifications() -> List[Dict[str, Any]]:
    return find_documents(PENDING_NOTIFICATIONS_COLLECTION, status="pending")


def send_pending_notifications(actor: Actor, sender: Optional[email_service.Sender] = None) -> Dict[str, Any]:
    """
    Release decision emails parked while notification mode was not immediate.

    Returns:
        {"sent": [abstract_ids], "errors": [{"id", "message"}]}
    """
    sent: List[str] = []
    errors: List[Dict[str, str]] = []

    for notification in get_pending_notifications():
        abstract_id = notification["abstract_id"]
        try:
            abstract = get_abstract(abstract_id)
            registrant = get_registration(abstract.registration_id)
            record = email_service.send_templated(
                notification["template"],
                abstract.author_email,
                registrant.full_name,
                {
                    "abstract_id": abstract_id,
                    "title": abstract.title,
                    "approved_for": abstract.approved_for or "presentation",
                    "registration_id": abstract.registration_id,
                },
                category="abstract",
                sender=sender,
            )
        except (NotFoundError, KeyError, ValueError) as e:
            errors.append({"id": abstract_id, "message": str(e)})
            continue

        def _mark_sent(document: Dict[str, Any]) -> None:
            document["status"] = "sent"
            document["email_id"] = record["email_id"]

        update_document(PENDING_NOTIFICATIONS_COLLECTION, "notification_id", notification["notification_id"], _mark_sent)
        sent.append(abstract_id)

    audit_service.log_action(
        actor=actor,
        action="abstract.notifications_sent",
        resource_type="email",
        resource_id="pending",
        after={"sent": len(sent), "failed": len(errors)},
        description=f"Released {len(sent)} pending abstract decision email(s)",
    )
    return {"sent": sent, "errors": errors}


def list_abstracts(
    status: Optional[str] = None,
    category: Optional[str] = None,
    search: Optional[str] = None,
    skip: int = 0,
    limit: int = 50,
) -> Tuple[List[Dict[str, Any]], int]:
    """Filter abstracts; search matches ID, title or author email."""
    if status and status not in ABSTRACT_STATUSES:
        raise ValidationError(f"Unknown abstract status: {status}")

    needle = search.lower() if search else None
    matching = []
    for document in read_collection(ABSTRACTS_COLLECTION):
        if status and document.get("status") != status:
            continue
        if category and document.get("category") != category:
            continue
        if needle and needle not in " ".join([
            document.get("abstract_id", ""),
            document.get("title", ""),
            document.get("author_email", ""),
        ]).lower():
            continue
        matching.append(document)
    matching.sort(key=lambda document: document["abstract_id"])
    return matching[skip:skip + limit], len(matching)


def list_for_reviewer(reviewer: Account) -> List[Dict[str, Any]]:
    """
    Abstracts a reviewer can see, with their own review (if any) attached.

    Admins see every abstract. With blind review enabled the author fields
    are removed.
    """
    blind = get_setting("reviewer_config").get("blind_review", False)
    own_reviews = {
        doc["abstract_id"]: doc
        for doc in find_documents(REVIEWS_COLLECTION, reviewer_id=reviewer.account_id)
    }

    visible = []
    for document in read_collection(ABSTRACTS_COLLECTION):
        if reviewer.role != "admin" and reviewer.account_id not in document.get("assigned_reviewer_ids", []):
            continue
        entry = dict(document)
        if blind:
            for name in BLIND_FIELDS:
                entry.pop(name, None)
        entry["my_review"] = own_reviews.get(document["abstract_id"])
        visible.append(entry)
    return visible


def list_by_author(author_email: str) -> List[Dict[str, Any]]:
    return find_documents(ABSTRACTS_COLLECTION, author_email=(author_email or "").strip().lower())
