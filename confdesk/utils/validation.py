"""Data validation utilities."""
import re
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
CATEGORY_KEY_PATTERN = re.compile(r"^[a-z0-9]+(-[a-z0-9]+)*$")
MIN_UTR_LENGTH = 12
MAX_NAME_LENGTH = 50
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def validate_date_format(date_str: str) -> bool:
    """
    Check a calendar date written as YYYY-MM-DD (tier boundaries, deadlines).

    Raises:
        ValueError: On a non-string, a different layout or an impossible date
    """
    if not isinstance(date_str, str):
        raise ValueError("Date must be a string")
    if not DATE_PATTERN.match(date_str):
        raise ValueError(f"Date must be in YYYY-MM-DD format: {date_str}")
    try:
        datetime.strptime(date_str, "%Y-%m-%d")
    except ValueError as e:
        raise ValueError(f"Invalid date value: {date_str} ({e})") from e
    return True


def validate_name(name: str) -> Tuple[bool, str]:
    """
    Validate a person's name.

    Returns:
        Tuple of (is_valid: bool, error_message: str)
        - (True, "") if valid
        - (False, "Name cannot be empty") if empty
        - (False, "Name cannot exceed 50 characters") if too long
    """
    if not name or not name.strip():
        return False, "Name cannot be empty"
    if len(name.strip()) > MAX_NAME_LENGTH:
        return False, f"Name cannot exceed {MAX_NAME_LENGTH} characters"
    return True, ""


def validate_email(email: str) -> Tuple[bool, str]:
    """Validate an email address; returns (is_valid, error_message)."""
    if not email or not email.strip():
        return False, "Email cannot be empty"
    if not EMAIL_PATTERN.match(email.strip()):
        return False, "Invalid email address"
    return True, ""


def normalize_email(email: str) -> str:
    """
    Normalize email for duplicate comparison.

    Behavior:
        - Trims leading/trailing whitespace
        - Converts to lowercase
        - Example: " Jane@Example.org " → "jane@example.org"
    """
    return email.strip().lower()


def validate_utr(utr: Optional[str]) -> Tuple[bool, str]:
    """Validate a bank transfer UTR reference."""
    if not utr or not utr.strip():
        return False, "UTR number is required for bank transfer"
    if len(utr.strip()) < MIN_UTR_LENGTH:
        return False, f"UTR number must be at least {MIN_UTR_LENGTH} characters"
    return True, ""


def validate_category_key(key: str) -> bool:
    """
    Validate a registration category key (e.g. "non-member").

    Raises:
        ValueError: If the key is not lowercase kebab-case
    """
    if not isinstance(key, str) or not CATEGORY_KEY_PATTERN.match(key):
        raise ValueError(f"Invalid category key: {key}")
    return True


def validate_accompanying_persons(persons: List[Dict[str, Any]]) -> Tuple[bool, str]:
    """Every accompanying person needs a name, an age and a relationship."""
    for index, person in enumerate(persons or [], start=1):
        if not person.get("name") or person.get("age") is None or not person.get("relationship"):
            return False, f"Incomplete details for accompanying person {index}"
        if not isinstance(person["age"], int) or person["age"] < 0:
            return False, f"Invalid age for accompanying person {index}"
    return True, ""


def validate_scores(
    scores: Dict[str, Any],
    criteria: List[Dict[str, Any]]
) -> Tuple[bool, str]:
    """
    Validate reviewer scores against the enabled scoring criteria.

    Args:
        scores: criterion key → score
        criteria: list of {"key", "label", "max_score", "enabled"}

    Returns:
        Tuple of (is_valid: bool, error_message: str)
    """
    enabled = [c for c in criteria if c.get("enabled", True)]
    for criterion in enabled:
        key = criterion["key"]
        max_score = criterion.get("max_score", 10)
        value = scores.get(key)
        if value is None:
            return False, f"Score for {key} is required"
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            return False, f"Score for {key} must be a number"
        if value < 1 or value > max_score:
            return False, f"Score for {key} must be between 1 and {max_score}"

    known = {c["key"] for c in enabled}
    unknown = [key for key in scores if key not in known]
    if unknown:
        return False, f"Unknown scoring criteria: {', '.join(sorted(unknown))}"

    return True, ""


def _same_kind(value: Any, default: Any) -> bool:
    if isinstance(default, bool):
        return isinstance(value, bool)
    if isinstance(default, (int, float)):
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    return isinstance(value, type(default))


def validate_setting_value(value: Any, default: Any, required: Iterable[str] = ()) -> Tuple[bool, str]:
    """
    Check a configuration value against the shape of its default.

    Args:
        value: Proposed value
        default: Built-in default the value replaces
        required: Keys a dict value must contain

    Returns:
        Tuple of (is_valid: bool, error_message: str)

    Behavior:
        - Dict values keep the default's value types; a None default
          accepts anything and unknown keys are allowed
        - Nested dicts must contain every key of their default
        - List values must hold objects
    """
    if not _same_kind(value, default):
        return False, f"Expected {type(default).__name__}, got {type(value).__name__}"

    if isinstance(default, list):
        if not all(isinstance(item, dict) for item in value):
            return False, "List entries must be objects"
        return True, ""

    if isinstance(default, dict):
        missing = [key for key in required if key not in value]
        if missing:
            return False, f"Missing required keys: {', '.join(missing)}"
        for key, item in value.items():
            expected = default.get(key)
            if expected is None:
                continue
            if not _same_kind(item, expected):
                return False, f"'{key}' must be {type(expected).__name__}, got {type(item).__name__}"
            if isinstance(expected, dict) and expected:
                is_valid, message = validate_setting_value(item, expected, required=expected.keys())
                if not is_valid:
                    return False, f"'{key}': {message}"

    return True, ""


def word_count(text: str) -> int:
    """Count whitespace-separated words."""
    return len((text or "").split())
