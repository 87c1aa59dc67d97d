"""Pricing tier data model."""
from dataclasses import asdict, dataclass, field
from typing import Any, Dict

from confdesk.utils.validation import validate_category_key, validate_date_format

# Resolution priority; earlier keys win when date ranges overlap
TIER_PRIORITY = ("earlyBird", "regular", "onsite")
FALLBACK_TIER = "regular"


@dataclass
class PriceCategory:
    """Price of one registration category within a tier."""

    label: str
    amount: float
    currency: str = "INR"

    def __post_init__(self):
        if self.amount < 0:
            raise ValueError("Category amount cannot be negative")


@dataclass
class PricingTier:
    """Named, date-bounded pricing configuration."""

    key: str
    name: str
    start_date: str
    end_date: str
    is_active: bool = True
    categories: Dict[str, PriceCategory] = field(default_factory=dict)

    def __post_init__(self):
        """Validate tier data after initialization."""
        if self.key not in TIER_PRIORITY:
            raise ValueError(f"Tier key must be one of {list(TIER_PRIORITY)}, got: {self.key}")

        validate_date_format(self.start_date)
        validate_date_format(self.end_date)

        if self.start_date > self.end_date:
            raise ValueError(
                f"Start date ({self.start_date}) must be on or before end date ({self.end_date})"
            )

        for category_key in self.categories:
            validate_category_key(category_key)

    def price_table(self) -> Dict[str, Dict[str, Any]]:
        """Category key → {"label", "amount", "currency"}."""
        return {key: asdict(category) for key, category in self.categories.items()}

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, key: str, data: Dict[str, Any]) -> "PricingTier":
        return cls(
            key=key,
            name=data.get("name", key),
            start_date=data["start_date"],
            end_date=data["end_date"],
            is_active=data.get("is_active", True),
            categories={
                category_key: PriceCategory(
                    label=category.get("label", category_key),
                    amount=category["amount"],
                    currency=category.get("currency", "INR"),
                )
                for category_key, category in data.get("categories", {}).items()
            },
        )
