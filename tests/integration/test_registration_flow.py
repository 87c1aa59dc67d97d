"""
Integration tests for the registration journey through the JSON API.

These tests drive the Flask app end to end against a temporary data
directory: sign-up, bank transfer, admin verification and gateway payment.
"""
import hashlib
import hmac
import json
from unittest.mock import MagicMock, patch

import pytest

from confdesk.api.app import create_app
from confdesk.api.mailer import mail
from confdesk.services import audit_service, email_service, error_service, payment_service
from confdesk.services.auth_service import create_account, find_account_by_email, set_active
from confdesk.utils.exceptions import PricingNotConfiguredError

WEBHOOK_SECRET = "test_webhook_secret"
GATEWAY_SECRET = "test_gateway_secret"


@pytest.fixture
def app(pricing_config):
    return create_app({"TESTING": True, "MAIL_SUPPRESS_SEND": True})


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture(autouse=True)
def frozen_clock(now):
    """Routes read the clock directly; pin it inside the early bird window."""
    with patch('confdesk.api.register.utc_now', return_value=now), \
            patch('confdesk.api.payment.utc_now', return_value=now), \
            patch('confdesk.api.admin.utc_now', return_value=now):
        yield now


def _login(client, email, password):
    response = client.post("/api/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.get_json()
    return response


def _register(client, registrant_data, password="jane-pass-1"):
    payload = dict(registrant_data)
    if password:
        payload["password"] = password
    response = client.post("/api/register", json=payload)
    assert response.status_code == 201, response.get_json()
    return response.get_json()["data"]


class TestPublicRoutes:
    """Routes that need no login."""

    def test_health(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        assert response.get_json()["success"] is True

    def test_current_pricing(self, client):
        data = client.get("/api/payment/pricing").get_json()["data"]

        assert data["tier"] == "earlyBird"
        assert data["categories"]["consultant"]["amount"] == 10000
        assert [w["id"] for w in data["workshops"]] == ["ws-ultrasound", "ws-airway"]

    def test_calculate(self, client):
        response = client.post(
            "/api/payment/calculate",
            json={"category": "consultant", "workshops": ["ws-airway"], "age": 42},
        )

        quote = response.get_json()["data"]
        assert quote["subtotal"] == 11500
        assert quote["gst"] == 2070
        assert quote["grand_total"] == 13570

    def test_registration_creates_pending_record(self, client, registrant_data):
        data = _register(client, registrant_data, password=None)

        assert data["registration_id"] == "REG-0001"
        assert data["email"] == "jane.doe@example.org"
        assert data["status"] == "pending"
        assert data["tier"] == "earlyBird"

    def test_duplicate_email_rejected(self, client, registrant_data):
        _register(client, registrant_data, password=None)

        response = client.post("/api/register", json=registrant_data)

        assert response.status_code == 400
        assert "already exists" in response.get_json()["message"]

    def test_invalid_name_rejected(self, client, registrant_data):
        response = client.post("/api/register", json={**registrant_data, "first_name": "J" * 51})

        assert response.status_code == 400
        assert response.get_json()["message"] == "Name cannot exceed 50 characters"

    def test_short_password_leaves_nothing_behind(self, client, registrant_data):
        response = client.post("/api/register", json={**registrant_data, "password": "short"})

        assert response.status_code == 400
        assert response.get_json()["message"] == "Password must be at least 8 characters"
        assert client.get("/api/register/status/REG-0001").status_code == 404

        data = _register(client, registrant_data)
        assert data["registration_id"] == "REG-0001"
        assert find_account_by_email("jane.doe@example.org").registration_id == "REG-0001"

    def test_status_lookup(self, client, registrant_data):
        _register(client, registrant_data, password=None)

        data = client.get("/api/register/status/REG-0001").get_json()["data"]

        assert data == {
            "registration_id": "REG-0001",
            "name": "Jane Doe",
            "category": "consultant",
            "status": "pending",
            "payment_status": None,
            "tier": "earlyBird",
        }

    def test_status_lookup_unknown_id(self, client):
        response = client.get("/api/register/status/REG-9999")

        assert response.status_code == 404
        assert response.get_json() == {"success": False, "message": "Registration not found: REG-9999"}


class TestErrorEnvelope:
    """Errors always come back as {success: false, message}."""

    def test_non_json_body(self, client):
        response = client.post("/api/register", data="not json", content_type="text/plain")

        assert response.status_code == 400
        assert response.get_json()["message"] == "Request body must be a JSON object"

    def test_missing_fields(self, client):
        response = client.post("/api/register", json={"email": "a@example.org"})

        assert response.status_code == 400
        assert "first_name" in response.get_json()["message"]

    def test_unknown_route(self, client):
        response = client.get("/api/nowhere")

        assert response.status_code == 404
        assert response.get_json()["success"] is False

    def test_unhandled_error_is_logged(self, client):
        with patch('confdesk.api.register.registration_service.get_registration_status',
                   side_effect=RuntimeError("disk on fire")):
            response = client.get("/api/register/status/REG-0001")

        assert response.status_code == 500
        assert response.get_json() == {"success": False, "message": "Internal server error"}
        errors, total = error_service.get_errors()
        assert total == 1
        assert errors[0]["message"] == "disk on fire"
        assert errors[0]["endpoint"] == "/api/register/status/REG-0001"

    def test_pricing_not_configured(self, client):
        with patch('confdesk.api.payment.pricing_service.get_current_pricing') as mock_pricing:
            mock_pricing.side_effect = PricingNotConfiguredError("Pricing tiers are not configured")
            response = client.get("/api/payment/pricing")

        assert response.status_code == 503


class TestRoleGating:
    """Protected routes answer 401 without a session and 403 for other roles."""

    def test_no_session(self, client):
        response = client.post("/api/payment/bank-transfer", json={"registration_id": "REG-0001"})

        assert response.status_code == 401
        assert response.get_json()["message"] == "Authentication required"

    def test_user_cannot_reach_admin_routes(self, client, registrant_data):
        _register(client, registrant_data)

        response = client.get("/api/admin/registrations")

        assert response.status_code == 403

    def test_user_cannot_pay_for_someone_else(self, client, registrant_data):
        _register(client, registrant_data, password=None)
        other = {**registrant_data, "email": "other@example.org", "first_name": "Olive"}
        _register(client, other)

        response = client.post(
            "/api/payment/bank-transfer",
            json={"registration_id": "REG-0001", "utr": "UTR2025021512", "amount": 11800},
        )

        assert response.status_code == 403

    def test_deactivated_account_loses_session(self, client, registrant_data):
        _register(client, registrant_data)
        set_active(find_account_by_email("jane.doe@example.org").account_id, False)

        response = client.get("/api/auth/me")

        assert response.status_code == 401


class TestBankTransferFlow:
    """Sign-up, bank transfer and admin verification."""

    def test_full_journey(self, app, client, registrant_data):
        registration = _register(client, registrant_data)
        assert client.get("/api/auth/me").get_json()["data"]["registration_id"] == registration["registration_id"]

        response = client.post(
            "/api/payment/bank-transfer",
            json={"registration_id": "REG-0001", "utr": "UTR2025021512", "amount": 11800},
        )
        assert response.status_code == 200
        assert response.get_json()["message"] == "Payment submitted for verification"
        assert client.get("/api/register/status/REG-0001").get_json()["data"]["status"] == "pending-payment"

        client.post("/api/auth/logout")
        create_account("admin@example.org", "admin-pass-1", role="admin", name="Admin")
        _login(client, "admin@example.org", "admin-pass-1")

        with mail.record_messages() as outbox:
            response = client.post(
                "/api/admin/registrations/REG-0001/verify-payment",
                json={"approve": True, "remarks": "Matched statement"},
            )

        assert response.status_code == 200
        data = response.get_json()["data"]
        assert data["status"] == "confirmed"
        assert data["payment"]["status"] == "verified"
        assert data["payment"]["verified_by"] == "admin@example.org"

        assert [msg.recipients for msg in outbox] == [["jane.doe@example.org"]]
        records, _ = email_service.get_emails(recipient_email="jane.doe@example.org")
        assert [r["status"] for r in records] == ["sent"]

        actions = {entry["action"] for entry in audit_service.get_audit_logs(resource_id="REG-0001")[0]}
        assert {"registration.created", "payment.initiated", "registration.confirmed"} <= actions

        detail = client.get("/api/admin/registrations/REG-0001").get_json()["data"]
        assert detail["registration"]["status"] == "confirmed"
        assert detail["history"]

    def test_rejection_returns_to_pending(self, client, registrant_data):
        _register(client, registrant_data)
        client.post(
            "/api/payment/bank-transfer",
            json={"registration_id": "REG-0001", "utr": "UTR2025021512", "amount": 11800},
        )
        client.post("/api/auth/logout")
        create_account("admin@example.org", "admin-pass-1", role="admin")
        _login(client, "admin@example.org", "admin-pass-1")

        response = client.post(
            "/api/admin/registrations/REG-0001/verify-payment",
            json={"approve": False, "remarks": "No matching credit"},
        )

        data = response.get_json()["data"]
        assert data["status"] == "pending"
        assert data["payment"]["status"] == "rejected"

    def test_short_utr_rejected(self, client, registrant_data):
        _register(client, registrant_data)

        response = client.post(
            "/api/payment/bank-transfer",
            json={"registration_id": "REG-0001", "utr": "UTR1", "amount": 11800},
        )

        assert response.status_code == 400

    def test_amount_must_be_numeric(self, client, registrant_data):
        _register(client, registrant_data)

        response = client.post(
            "/api/payment/bank-transfer",
            json={"registration_id": "REG-0001", "utr": "UTR2025021512", "amount": "lots"},
        )

        assert response.status_code == 400
        assert response.get_json()["message"] == "Amount must be a number"


class TestGatewayFlow:
    """Online payment through the gateway order, callback and webhook."""

    @pytest.fixture
    def order(self, client, registrant_data):
        _register(client, registrant_data)
        response = MagicMock(status_code=200)
        response.json.return_value = {"id": "order_T1"}
        with patch('confdesk.services.payment_service.requests.Session') as mock_session:
            mock_session.return_value.post.return_value = response
            result = client.post("/api/payment/create-order", json={"registration_id": "REG-0001"})
        assert result.status_code == 200, result.get_json()
        return result.get_json()["data"]

    def test_order_created(self, order):
        assert order == {
            "order_id": "order_T1",
            "amount": 11800,
            "currency": "INR",
            "key_id": "rzp_test_key",
            "registration_id": "REG-0001",
        }

    def test_callback_verification(self, client, order):
        signature = hmac.new(GATEWAY_SECRET.encode(), b"order_T1|pay_T1", hashlib.sha256).hexdigest()

        response = client.post(
            "/api/payment/verify",
            json={"order_id": "order_T1", "payment_id": "pay_T1", "signature": signature},
        )

        assert response.status_code == 200
        data = response.get_json()["data"]
        assert data["status"] == "paid"
        assert data["payment"]["transaction_id"] == "pay_T1"

    def test_callback_bad_signature(self, client, order):
        response = client.post(
            "/api/payment/verify",
            json={"order_id": "order_T1", "payment_id": "pay_T1", "signature": "forged"},
        )

        assert response.status_code == 400
        assert response.get_json()["message"] == "Invalid payment signature"
        statuses = sorted(a["status"] for a in payment_service.get_payment_attempts("REG-0001"))
        assert statuses == ["failed", "initiated"]

    def test_webhook_captured(self, client, order):
        body = json.dumps({
            "event": "payment.captured",
            "payload": {"payment": {"entity": {"id": "pay_W1", "order_id": "order_T1"}}},
        }).encode()
        signature = hmac.new(WEBHOOK_SECRET.encode(), body, hashlib.sha256).hexdigest()

        response = client.post(
            "/api/payment/webhook",
            data=body,
            content_type="application/json",
            headers={"X-Razorpay-Signature": signature},
        )

        assert response.status_code == 200
        assert response.get_json()["data"]["handled"] is True
        assert client.get("/api/register/status/REG-0001").get_json()["data"]["status"] == "paid"

    def test_webhook_bad_signature(self, client, order):
        response = client.post(
            "/api/payment/webhook",
            data=b'{"event": "payment.captured"}',
            content_type="application/json",
            headers={"X-Razorpay-Signature": "0" * 64},
        )

        assert response.status_code == 400

    def test_gateway_rejects_order(self, client, registrant_data):
        _register(client, registrant_data)
        with patch('confdesk.services.payment_service.requests.Session') as mock_session:
            mock_session.return_value.post.return_value = MagicMock(status_code=502, text="bad gateway")
            response = client.post("/api/payment/create-order", json={"registration_id": "REG-0001"})

        assert response.status_code == 400
        assert response.get_json()["message"] == "Could not create payment order"
