"""Shared fixtures: isolated data directory, pricing configuration and actors."""
from datetime import datetime, timezone

import pytest

from confdesk.models.audit import Actor
from confdesk.services.settings_service import save_setting

GATEWAY_SECRET = "test_gateway_secret"
WEBHOOK_SECRET = "test_webhook_secret"

PRICING_TIERS = {
    "earlyBird": {
        "name": "Early Bird",
        "start_date": "2025-01-01",
        "end_date": "2025-03-31",
        "is_active": True,
        "categories": {
            "consultant": {"label": "Consultant", "amount": 10000, "currency": "INR"},
            "resident": {"label": "Resident", "amount": 5000, "currency": "INR"},
            "exhibitor": {"label": "Exhibitor", "amount": 8000, "currency": "INR"},
        },
    },
    "regular": {
        "name": "Regular",
        "start_date": "2025-04-01",
        "end_date": "2025-08-31",
        "is_active": True,
        "categories": {
            "consultant": {"label": "Consultant", "amount": 12500, "currency": "INR"},
            "resident": {"label": "Resident", "amount": 6000, "currency": "INR"},
            "exhibitor": {"label": "Exhibitor", "amount": 9000, "currency": "INR"},
        },
    },
    "onsite": {
        "name": "On-site",
        "start_date": "2025-09-01",
        "end_date": "2025-09-05",
        "is_active": True,
        "categories": {
            "consultant": {"label": "Consultant", "amount": 15000, "currency": "INR"},
            "resident": {"label": "Resident", "amount": 7500, "currency": "INR"},
            "exhibitor": {"label": "Exhibitor", "amount": 11000, "currency": "INR"},
        },
    },
}

WORKSHOPS = [
    {"id": "ws-ultrasound", "name": "Ultrasound Basics", "price": 2000, "currency": "INR", "is_active": True},
    {"id": "ws-airway", "name": "Difficult Airway", "price": 1500, "currency": "INR", "is_active": True},
    {"id": "ws-retired", "name": "Retired Workshop", "price": 900, "currency": "INR", "is_active": False},
]


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Point every collection at a fresh directory and pin secrets."""
    monkeypatch.setenv("CONFDESK_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("GATEWAY_KEY_ID", "rzp_test_key")
    monkeypatch.setenv("GATEWAY_KEY_SECRET", GATEWAY_SECRET)
    monkeypatch.setenv("GATEWAY_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setenv("GATEWAY_API_URL", "https://gateway.test/v1")
    monkeypatch.setenv("GST_PERCENT", "18")
    monkeypatch.setenv("CURRENCY", "INR")
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("MAIL_SUPPRESS_SEND", "true")
    monkeypatch.delenv("ADMIN_PASSWORD", raising=False)
    return tmp_path / "data"


@pytest.fixture
def now():
    """A moment inside the early bird window."""
    return datetime(2025, 2, 15, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def pricing_config():
    """Store three tiers, a workshop catalog and the accompanying person fee."""
    save_setting("pricing_tiers", PRICING_TIERS)
    save_setting("workshops", WORKSHOPS)
    save_setting("accompanying_person", {"amount": 3000})
    return PRICING_TIERS


@pytest.fixture
def admin_actor():
    return Actor(account_id="ACC-admin", email="admin@example.org", role="admin", name="Admin")


@pytest.fixture
def registrant_data():
    return {
        "email": " Jane.Doe@Example.org ",
        "first_name": "Jane",
        "last_name": "Doe",
        "category": "consultant",
        "phone": "+91 98765 43210",
        "age": 42,
        "institution": "City Hospital",
    }
