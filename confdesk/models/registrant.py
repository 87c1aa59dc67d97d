"""Registrant data model for conference registration."""
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from confdesk.utils.date_utils import parse_timestamp
from confdesk.utils.validation import validate_category_key, validate_email, validate_name

REGISTRATION_STATUSES = ("pending", "pending-payment", "confirmed", "paid", "cancelled", "refunded")
PAYMENT_METHODS = ("bank-transfer", "online", "cash", "complimentary", "sponsored")
PAYMENT_STATUSES = ("pending", "processing", "verified", "rejected")
SOURCES = ("normal", "sponsor-managed", "admin-created")


@dataclass
class AccompanyingPerson:
    """Guest travelling with a registrant."""

    name: str
    age: int
    relationship: str
    dietary_requirements: str = ""

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise ValueError("Accompanying person name cannot be empty")
        if self.age < 0:
            raise ValueError("Accompanying person age cannot be negative")


@dataclass
class PaymentInfo:
    """Payment attached to a registration."""

    method: str
    status: str = "pending"
    amount: float = 0
    utr: Optional[str] = None
    transaction_id: Optional[str] = None
    order_id: Optional[str] = None
    paid_at: Optional[str] = None
    verified_by: Optional[str] = None
    verified_at: Optional[str] = None
    remarks: str = ""
    quote: Optional[Dict[str, Any]] = None  # fee calculation the amount was based on

    def __post_init__(self):
        if self.method not in PAYMENT_METHODS:
            raise ValueError(f"Payment method must be one of {list(PAYMENT_METHODS)}, got: {self.method}")
        if self.status not in PAYMENT_STATUSES:
            raise ValueError(f"Payment status must be one of {list(PAYMENT_STATUSES)}, got: {self.status}")
        if self.amount < 0:
            raise ValueError("Payment amount cannot be negative")


@dataclass
class Registrant:
    """Conference attendee record."""

    registration_id: str
    email: str
    first_name: str
    last_name: str
    category: str
    registered_at: str  # ISO 8601 format
    title: str = ""
    phone: str = ""
    age: Optional[int] = None
    institution: str = ""
    status: str = "pending"
    source: str = "normal"
    tier: Optional[str] = None
    workshop_selections: List[str] = field(default_factory=list)
    accompanying_persons: List[AccompanyingPerson] = field(default_factory=list)
    payment: Optional[PaymentInfo] = None
    confirmed_at: Optional[str] = None
    sponsor_id: Optional[str] = None

    def __post_init__(self):
        """Validate registrant data."""
        if not re.match(r"^REG-\d{4,}$", self.registration_id):
            raise ValueError(f"Registration ID must match format 'REG-XXXX': {self.registration_id}")

        is_valid, message = validate_email(self.email)
        if not is_valid:
            raise ValueError(message)

        for value in (self.first_name, self.last_name):
            is_valid, message = validate_name(value)
            if not is_valid:
                raise ValueError(message)

        validate_category_key(self.category)

        if self.status not in REGISTRATION_STATUSES:
            raise ValueError(f"Status must be one of {list(REGISTRATION_STATUSES)}, got: {self.status}")

        if self.source not in SOURCES:
            raise ValueError(f"Source must be one of {list(SOURCES)}, got: {self.source}")

        if self.age is not None and not 0 <= self.age <= 150:
            raise ValueError("Age must be between 0 and 150")

        parse_timestamp(self.registered_at)

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.title, self.first_name, self.last_name) if part)

    def is_settled(self) -> bool:
        """Check if the registration no longer needs payment."""
        return self.status in ("confirmed", "paid")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Registrant":
        """Build a Registrant from a stored document."""
        payment_data = data.get("payment")
        return cls(
            registration_id=data["registration_id"],
            email=data["email"],
            first_name=data["first_name"],
            last_name=data["last_name"],
            category=data["category"],
            registered_at=data["registered_at"],
            title=data.get("title", ""),
            phone=data.get("phone", ""),
            age=data.get("age"),
            institution=data.get("institution", ""),
            status=data.get("status", "pending"),
            source=data.get("source", "normal"),
            tier=data.get("tier"),
            workshop_selections=list(data.get("workshop_selections", [])),
            accompanying_persons=[
                AccompanyingPerson(**person) for person in data.get("accompanying_persons", [])
            ],
            payment=PaymentInfo(**payment_data) if payment_data else None,
            confirmed_at=data.get("confirmed_at"),
            sponsor_id=data.get("sponsor_id"),
        )
