"""Abstract and review data models."""
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

ABSTRACT_STATUSES = ("submitted", "under-review", "accepted", "rejected", "final-submitted")
SUBMISSION_CATEGORIES = ("award-paper", "free-paper", "poster-presentation")
APPROVAL_TYPES = ("award-paper", "podium", "poster")
REVIEW_DECISIONS = ("approve", "reject")


@dataclass
class FileReference:
    """Metadata of an uploaded file; the bytes live in external storage."""

    original_name: str
    mime_type: str
    size_bytes: int
    storage_path: str
    uploaded_at: str

    def __post_init__(self):
        if self.size_bytes < 0:
            raise ValueError("File size cannot be negative")
        if not self.storage_path:
            raise ValueError("Storage path cannot be empty")


@dataclass
class FinalSubmission:
    """Camera-ready version of an accepted abstract."""

    display_id: str
    submitted_at: str
    file: Optional[FileReference] = None
    notes: str = ""


@dataclass
class Abstract:
    """Scholarly submission subject to peer review."""

    abstract_id: str
    registration_id: str
    author_email: str
    title: str
    category: str
    topic: str
    submitted_at: str
    authors: List[str] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)
    track: str = ""
    body: str = ""
    status: str = "submitted"
    file: Optional[FileReference] = None
    final: Optional[FinalSubmission] = None
    average_score: Optional[float] = None
    decision_at: Optional[str] = None
    approved_for: Optional[str] = None
    assigned_reviewer_ids: List[str] = field(default_factory=list)

    def __post_init__(self):
        """Validate abstract data after initialization."""
        if not re.match(r"^ABS-\d{3,}$", self.abstract_id):
            raise ValueError(f"Abstract ID must match format 'ABS-XXX': {self.abstract_id}")

        if not self.title or not self.title.strip():
            raise ValueError("Title cannot be empty")

        if self.category not in SUBMISSION_CATEGORIES:
            raise ValueError(
                f"Category must be one of {list(SUBMISSION_CATEGORIES)}, got: {self.category}"
            )

        if not self.topic or not self.topic.strip():
            raise ValueError("Topic cannot be empty")

        if self.status not in ABSTRACT_STATUSES:
            raise ValueError(f"Status must be one of {list(ABSTRACT_STATUSES)}, got: {self.status}")

    def is_decided(self) -> bool:
        return self.status in ("accepted", "rejected", "final-submitted")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Abstract":
        file_data = data.get("file")
        final_data = data.get("final")
        final = None
        if final_data:
            final_file = final_data.get("file")
            final = FinalSubmission(
                display_id=final_data["display_id"],
                submitted_at=final_data["submitted_at"],
                file=FileReference(**final_file) if final_file else None,
                notes=final_data.get("notes", ""),
            )
        return cls(
            abstract_id=data["abstract_id"],
            registration_id=data["registration_id"],
            author_email=data["author_email"],
            title=data["title"],
            category=data["category"],
            topic=data["topic"],
            submitted_at=data["submitted_at"],
            authors=list(data.get("authors", [])),
            keywords=list(data.get("keywords", [])),
            track=data.get("track", ""),
            body=data.get("body", ""),
            status=data.get("status", "submitted"),
            file=FileReference(**file_data) if file_data else None,
            final=final,
            average_score=data.get("average_score"),
            decision_at=data.get("decision_at"),
            approved_for=data.get("approved_for"),
            assigned_reviewer_ids=list(data.get("assigned_reviewer_ids", [])),
        )


@dataclass
class Review:
    """One reviewer's scores and recommendation for an abstract."""

    review_id: str
    abstract_id: str
    reviewer_id: str
    scores: Dict[str, float]
    decision: str
    submitted_at: str
    approved_for: Optional[str] = None
    rejection_comment: str = ""
    total: float = 0

    def __post_init__(self):
        if self.decision not in REVIEW_DECISIONS:
            raise ValueError(f"Decision must be either 'approve' or 'reject', got: {self.decision}")

        if self.decision == "approve" and self.approved_for not in APPROVAL_TYPES:
            raise ValueError(f"Approved-for must be one of {list(APPROVAL_TYPES)} when approving")

        # Total is always derived from the per-criterion scores
        self.total = sum(self.scores.values())

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Review":
        return cls(
            review_id=data["review_id"],
            abstract_id=data["abstract_id"],
            reviewer_id=data["reviewer_id"],
            scores=dict(data.get("scores", {})),
            decision=data["decision"],
            submitted_at=data["submitted_at"],
            approved_for=data.get("approved_for"),
            rejection_comment=data.get("rejection_comment", ""),
        )
