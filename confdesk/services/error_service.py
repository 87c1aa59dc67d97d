"""Error tracking with fingerprint-based aggregation."""
import hashlib
import logging
import time
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from confdesk.models.audit import Actor, ErrorLogEntry
from confdesk.services import audit_service
from confdesk.services.storage_service import ensure_collection, load_json, lock_file, read_collection, save_json
from confdesk.utils.date_utils import isoformat
from confdesk.utils.exceptions import NotFoundError

logger = logging.getLogger(__name__)

ERRORS_COLLECTION = "error_logs"
CRITICAL_ALERT_EVERY = 10


def fingerprint(message: str, stack: str = "", category: str = "") -> str:
    """md5 of the message, first stack line and category."""
    first_line = stack.split("\n")[0] if stack else ""
    content = f"{message}|{first_line}|{category}"
    return hashlib.md5(content.encode("utf-8")).hexdigest()


def log_error(
    message: str,
    stack: str = "",
    severity: str = "error",
    category: str = "system",
    source: str = "backend",
    endpoint: str = "",
    http_method: str = "",
    user_email: str = "",
    metadata: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Record an error, aggregating repeats of an unresolved error.

    Returns:
        {"success", "error_id", "is_new_error", "occurrences"}

    Behavior:
        - An unresolved error with the same fingerprint gets its occurrence
          count and last-occurrence time bumped instead of a new document
        - Critical errors are escalated to the log every 10th occurrence
        - Storage failures are logged and reported, never raised
    """
    key = fingerprint(message, stack, category)
    timestamp = isoformat(now)

    try:
        path = ensure_collection(ERRORS_COLLECTION)
        with lock_file(path):
            data = load_json(path)
            documents = data.setdefault("documents", [])

            for document in documents:
                if document["fingerprint"] == key and not document.get("resolved"):
                    document["occurrences"] += 1
                    document["last_occurrence"] = timestamp
                    if not document.get("user_email") and user_email:
                        document["user_email"] = user_email
                    save_json(path, data, backup=True)

                    if severity == "critical" and document["occurrences"] % CRITICAL_ALERT_EVERY == 0:
                        logger.critical(
                            f"Critical error {document['error_id']} reached "
                            f"{document['occurrences']} occurrences: {message}"
                        )

                    return {
                        "success": True,
                        "error_id": document["error_id"],
                        "is_new_error": False,
                        "occurrences": document["occurrences"],
                    }

            entry = ErrorLogEntry(
                error_id=f"ERR-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}",
                fingerprint=key,
                message=message,
                first_occurrence=timestamp,
                last_occurrence=timestamp,
                severity=severity,
                category=category,
                source=source,
                stack=stack,
                endpoint=endpoint,
                http_method=http_method,
                user_email=user_email,
                metadata=metadata or {},
            )
            documents.append(entry.to_dict())
            save_json(path, data, backup=True)

    except (OSError, TimeoutError) as e:
        logger.error(f"Failed to record error '{message}': {e}")
        return {"success": False, "error_id": None, "is_new_error": False, "occurrences": 0}

    return {"success": True, "error_id": entry.error_id, "is_new_error": True, "occurrences": 1}


def log_payment_error(message: str, order_id: str = "", user_email: str = "", **extra: Any) -> Dict[str, Any]:
    """Shortcut for payment failures."""
    return log_error(
        message,
        severity="error",
        category="payment",
        user_email=user_email,
        metadata={"order_id": order_id, **extra},
    )


def resolve_error(error_id: str, actor: Actor, notes: str = "", now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Mark an error resolved.

    Raises:
        NotFoundError: If the error does not exist
    """
    path = ensure_collection(ERRORS_COLLECTION)
    with lock_file(path):
        data = load_json(path)
        for document in data.get("documents", []):
            if document["error_id"] == error_id:
                document["resolved"] = True
                document["resolved_by"] = actor.email
                document["resolved_at"] = isoformat(now)
                document["resolution_notes"] = notes
                save_json(path, data, backup=True)
                break
        else:
            raise NotFoundError(f"Error not found: {error_id}")

    audit_service.log_action(
        actor=actor,
        action="error.resolved",
        resource_type="error",
        resource_id=error_id,
        after={"resolved": True, "notes": notes},
        description=f"Error {error_id} marked resolved",
    )
    return document


def get_errors(
    severity: Optional[str] = None,
    category: Optional[str] = None,
    resolved: Optional[bool] = None,
    user_email: Optional[str] = None,
    skip: int = 0,
    limit: int = 50,
) -> Tuple[List[Dict[str, Any]], int]:
    """Filtered errors, most recently seen first."""
    matching = [
        document for document in read_collection(ERRORS_COLLECTION)
        if (severity is None or document.get("severity") == severity)
        and (category is None or document.get("category") == category)
        and (resolved is None or bool(document.get("resolved")) == resolved)
        and (user_email is None or document.get("user_email") == user_email)
    ]
    matching.sort(key=lambda document: document["last_occurrence"], reverse=True)
    return matching[skip:skip + limit], len(matching)
