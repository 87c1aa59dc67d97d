"""Audit, error and email log data models."""
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

ERROR_SEVERITIES = ("info", "warning", "error", "critical")
ERROR_CATEGORIES = ("payment", "validation", "email", "storage", "auth", "system")
EMAIL_STATUSES = ("queued", "sent", "failed")


@dataclass
class Actor:
    """Who performed an audited action."""

    account_id: str
    email: str
    role: str
    name: str = ""


@dataclass
class AuditLogEntry:
    """Immutable record of an actor, action and before/after diff."""

    audit_id: str
    timestamp: str
    actor: Actor
    action: str
    resource_type: str
    resource_id: str
    resource_name: str = ""
    before: Dict[str, Any] = field(default_factory=dict)
    after: Dict[str, Any] = field(default_factory=dict)
    changed_fields: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    description: str = ""

    def __post_init__(self):
        if "." not in self.action:
            raise ValueError(f"Action must be namespaced like 'registration.confirmed': {self.action}")
        if not self.resource_id:
            raise ValueError("Resource ID cannot be empty")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ErrorLogEntry:
    """Aggregated system error, deduplicated by fingerprint."""

    error_id: str
    fingerprint: str
    message: str
    first_occurrence: str
    last_occurrence: str
    severity: str = "error"
    category: str = "system"
    source: str = "backend"
    stack: str = ""
    endpoint: str = ""
    http_method: str = ""
    user_email: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)
    occurrences: int = 1
    resolved: bool = False
    resolved_by: Optional[str] = None
    resolved_at: Optional[str] = None
    resolution_notes: str = ""

    def __post_init__(self):
        if self.severity not in ERROR_SEVERITIES:
            raise ValueError(f"Severity must be one of {list(ERROR_SEVERITIES)}, got: {self.severity}")
        if self.category not in ERROR_CATEGORIES:
            raise ValueError(f"Category must be one of {list(ERROR_CATEGORIES)}, got: {self.category}")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class EmailRecord:
    """Outgoing email and its delivery status."""

    email_id: str
    recipient_email: str
    recipient_name: str
    subject: str
    body: str
    created_at: str
    template: str = "custom"
    category: str = "system"
    status: str = "queued"
    attempts: int = 0
    last_attempt_at: Optional[str] = None
    sent_at: Optional[str] = None
    error: str = ""

    def __post_init__(self):
        if self.status not in EMAIL_STATUSES:
            raise ValueError(f"Email status must be one of {list(EMAIL_STATUSES)}, got: {self.status}")
        if not self.subject or not self.subject.strip():
            raise ValueError("Email subject cannot be empty")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
