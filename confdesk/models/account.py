"""Account data model."""
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional

from confdesk.utils.validation import validate_email

ROLES = ("user", "admin", "reviewer", "sponsor")


@dataclass
class SponsorAllocation:
    """Complimentary delegate slots granted to a sponsor."""

    total: int = 0
    used: int = 0
    category: str = "exhibitor"

    def __post_init__(self):
        if self.total < 0 or self.used < 0:
            raise ValueError("Allocation counts cannot be negative")
        if self.used > self.total:
            raise ValueError(f"Used allocation ({self.used}) cannot exceed total ({self.total})")

    def remaining(self) -> int:
        return self.total - self.used


@dataclass
class Account:
    """Login identity with a role."""

    account_id: str
    email: str
    password_hash: str
    role: str
    name: str = ""
    is_active: bool = True
    registration_id: Optional[str] = None
    expertise: list = field(default_factory=list)
    allocation: Optional[SponsorAllocation] = None

    def __post_init__(self):
        """Validate account data after initialization."""
        is_valid, message = validate_email(self.email)
        if not is_valid:
            raise ValueError(message)

        if not self.password_hash:
            raise ValueError("Password hash cannot be empty")

        if self.role not in ROLES:
            raise ValueError(f"Role must be one of {list(ROLES)}, got: {self.role}")

        if self.role == "sponsor" and self.allocation is None:
            self.allocation = SponsorAllocation()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def public_dict(self) -> Dict[str, Any]:
        """Account fields safe to return over the API."""
        data = self.to_dict()
        data.pop("password_hash")
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Account":
        allocation = data.get("allocation")
        return cls(
            account_id=data["account_id"],
            email=data["email"],
            password_hash=data["password_hash"],
            role=data["role"],
            name=data.get("name", ""),
            is_active=data.get("is_active", True),
            registration_id=data.get("registration_id"),
            expertise=list(data.get("expertise", [])),
            allocation=SponsorAllocation(**allocation) if allocation else None,
        )
