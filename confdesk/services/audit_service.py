"""Append-only audit trail for admin and system actions."""
import json
import logging
import time
import uuid
from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from confdesk.models.audit import Actor, AuditLogEntry
from confdesk.services.storage_service import insert_document, read_collection
from confdesk.utils.date_utils import isoformat, parse_timestamp

logger = logging.getLogger(__name__)

AUDIT_COLLECTION = "audit_logs"

SYSTEM_ACTOR = Actor(account_id="system", email="system@localhost", role="system", name="System")


def _new_audit_id() -> str:
    return f"AUD-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


def changed_fields(before: Dict[str, Any], after: Dict[str, Any]) -> List[str]:
    """Keys of `after` whose JSON value differs from `before`."""
    def _encode(value: Any) -> str:
        return json.dumps(value, sort_keys=True, default=str)

    return [key for key in after if _encode(before.get(key)) != _encode(after[key])]


def log_action(
    actor: Actor,
    action: str,
    resource_type: str,
    resource_id: str,
    resource_name: str = "",
    before: Optional[Dict[str, Any]] = None,
    after: Optional[Dict[str, Any]] = None,
    fields: Optional[List[str]] = None,
    metadata: Optional[Dict[str, Any]] = None,
    description: str = "",
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Append an entry to the audit trail.

    Args:
        actor: Who performed the action
        action: Namespaced action such as "registration.confirmed"
        resource_type: "registration", "payment", "abstract", "config", ...
        resource_id: ID of the affected document
        before/after: State snapshots; changed fields are derived when
            `fields` is not given
        metadata: Request context (ip, user_agent, ...)

    Returns:
        {"success": True, "audit_id": ...} or {"success": False, "error": ...}

    Behavior:
        - Storage failures are logged and reported, never raised, so an
          audit problem cannot fail the action being audited
    """
    before = before or {}
    after = after or {}
    entry = AuditLogEntry(
        audit_id=_new_audit_id(),
        timestamp=isoformat(now),
        actor=actor,
        action=action,
        resource_type=resource_type,
        resource_id=str(resource_id),
        resource_name=resource_name,
        before=before,
        after=after,
        changed_fields=fields if fields is not None else changed_fields(before, after),
        metadata=metadata or {},
        description=description,
    )

    try:
        insert_document(AUDIT_COLLECTION, lambda _documents: entry.to_dict())
    except (OSError, TimeoutError, ValueError) as e:
        logger.error(f"Failed to log audit action {action} on {resource_type}/{resource_id}: {e}")
        return {"success": False, "error": str(e)}

    return {"success": True, "audit_id": entry.audit_id}


def _matches(
    entry: Dict[str, Any],
    action: Optional[str],
    resource_type: Optional[str],
    resource_id: Optional[str],
    actor_role: Optional[str],
    actor_id: Optional[str],
    start: Optional[datetime],
    end: Optional[datetime],
    search: Optional[str],
) -> bool:
    actor = entry.get("actor", {})
    if action and entry.get("action") != action:
        return False
    if resource_type and entry.get("resource_type") != resource_type:
        return False
    if resource_id and entry.get("resource_id") != resource_id:
        return False
    if actor_role and actor.get("role") != actor_role:
        return False
    if actor_id and actor.get("account_id") != actor_id:
        return False
    if start or end:
        timestamp = parse_timestamp(entry["timestamp"])
        if start and timestamp < start:
            return False
        if end and timestamp > end:
            return False
    if search:
        needle = search.lower()
        haystack = (
            actor.get("email", ""),
            entry.get("resource_id", ""),
            entry.get("resource_name", ""),
            entry.get("description", ""),
        )
        if not any(needle in str(value).lower() for value in haystack):
            return False
    return True


def get_audit_logs(
    action: Optional[str] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    actor_role: Optional[str] = None,
    actor_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    search: Optional[str] = None,
    skip: int = 0,
    limit: int = 50,
) -> Tuple[List[Dict[str, Any]], int]:
    """
    Query the audit trail, newest first.

    Search is a literal, case-insensitive substring match over the actor
    email, resource ID/name and description.

    Returns:
        Tuple of (page of entries, total matching count)
    """
    matching = [
        entry for entry in read_collection(AUDIT_COLLECTION)
        if _matches(entry, action, resource_type, resource_id, actor_role, actor_id, start, end, search)
    ]
    matching.sort(key=lambda entry: entry["timestamp"], reverse=True)
    return matching[skip:skip + limit], len(matching)


def get_user_activity(account_id: str, skip: int = 0, limit: int = 50) -> Tuple[List[Dict[str, Any]], int]:
    """Actions performed by an account plus actions on its own user record."""
    matching = [
        entry for entry in read_collection(AUDIT_COLLECTION)
        if entry.get("actor", {}).get("account_id") == account_id
        or (entry.get("resource_type") == "user" and entry.get("resource_id") == account_id)
    ]
    matching.sort(key=lambda entry: entry["timestamp"], reverse=True)
    return matching[skip:skip + limit], len(matching)


def get_audit_stats(start: Optional[datetime] = None, end: Optional[datetime] = None) -> Dict[str, Any]:
    """Counts of audit entries by action, resource type and actor role."""
    entries = [
        entry for entry in read_collection(AUDIT_COLLECTION)
        if _matches(entry, None, None, None, None, None, start, end, None)
    ]
    return {
        "total": len(entries),
        "by_action": dict(Counter(entry["action"] for entry in entries)),
        "by_resource_type": dict(Counter(entry["resource_type"] for entry in entries)),
        "by_actor_role": dict(Counter(entry.get("actor", {}).get("role", "") for entry in entries)),
    }
