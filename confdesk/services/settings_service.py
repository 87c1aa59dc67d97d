"""Admin-editable configuration documents."""
import copy
import logging
from typing import Any, Dict, Optional

from confdesk.models.audit import Actor
from confdesk.services import audit_service
from confdesk.services.storage_service import find_one, upsert_document
from confdesk.utils.date_utils import isoformat
from confdesk.utils.exceptions import ValidationError
from confdesk.utils.validation import validate_setting_value

logger = logging.getLogger(__name__)

SETTINGS_COLLECTION = "settings"

DEFAULT_SCORING_CRITERIA = [
    {"key": "originality", "label": "Originality of the Study", "max_score": 10, "enabled": True},
    {"key": "level_of_evidence", "label": "Level of Evidence", "max_score": 10, "enabled": True},
    {"key": "scientific_impact", "label": "Scientific Impact", "max_score": 10, "enabled": True},
    {"key": "social_significance", "label": "Social Significance", "max_score": 10, "enabled": True},
    {"key": "quality_of_manuscript", "label": "Quality of Manuscript", "max_score": 10, "enabled": True},
]

DEFAULTS: Dict[str, Any] = {
    "pricing_tiers": {},
    "workshops": [],
    "accompanying_person": {"amount": 0},
    "age_exemptions": {
        "senior_citizen_age": 70,
        "senior_citizen_category": "consultant",
        "children_under_age": 10,
    },
    "discounts": [],
    "reviewer_config": {
        "blind_review": False,
        "scoring_criteria": DEFAULT_SCORING_CRITERIA,
        "require_rejection_comment": True,
        "allow_review_edit": False,
        "email_notification_mode": "immediate",
    },
    "abstracts_config": {
        "enabled": True,
        "submission_deadline": None,
        "final_submission_deadline": None,
        "word_limit": 300,
        "topics": [],
    },
    "email_templates": {
        "registration_confirmed": {
            "subject": "Registration confirmed - {registration_id}",
            "body": "Dear {name},\n\nYour registration {registration_id} is confirmed.",
        },
        "registration_cancelled": {
            "subject": "Registration cancelled - {registration_id}",
            "body": "Dear {name},\n\nYour registration {registration_id} has been cancelled.",
        },
        "abstract_accepted": {
            "subject": "Abstract accepted - {abstract_id}",
            "body": (
                "Dear {name},\n\nYour abstract \"{title}\" ({abstract_id}) has been accepted "
                "for {approved_for}. You can now submit the final version."
            ),
        },
        "abstract_rejected": {
            "subject": "Abstract decision - {abstract_id}",
            "body": (
                "Dear {name},\n\nYour abstract \"{title}\" ({abstract_id}) was not accepted. "
                "Thank you for your submission."
            ),
        },
    },
}

# Keys every stored value must keep
REQUIRED_KEYS = {
    "email_templates": tuple(DEFAULTS["email_templates"]),
}


def get_setting(key: str) -> Any:
    """
    Return a configuration value, falling back to the built-in default.

    Raises:
        KeyError: If the key is neither stored nor a known default
    """
    document = find_one(SETTINGS_COLLECTION, "key", key)
    if document is not None and document.get("is_active", True):
        return document["value"]
    if key not in DEFAULTS:
        raise KeyError(f"Unknown setting: {key}")
    return copy.deepcopy(DEFAULTS[key])


def save_setting(key: str, value: Any, actor: Optional[Actor] = None) -> Dict[str, Any]:
    """
    Upsert a configuration document and record the change.

    Raises:
        KeyError: If the key is not a known setting
        ValidationError: If the value does not have the default's shape
    """
    if key not in DEFAULTS:
        raise KeyError(f"Unknown setting: {key}")
    is_valid, message = validate_setting_value(value, DEFAULTS[key], REQUIRED_KEYS.get(key, ()))
    if not is_valid:
        raise ValidationError(f"Invalid value for '{key}': {message}")

    before = None
    existing = find_one(SETTINGS_COLLECTION, "key", key)
    if existing is not None:
        before = existing.get("value")

    document = upsert_document(
        SETTINGS_COLLECTION,
        "key",
        key,
        {"value": value, "is_active": True, "updated_at": isoformat()},
    )
    logger.info(f"Setting '{key}' updated")

    if actor is not None:
        audit_service.log_action(
            actor=actor,
            action="admin.config_changed",
            resource_type="config",
            resource_id=key,
            before={"value": before},
            after={"value": value},
            description=f"Configuration '{key}' was updated",
        )
    return document
