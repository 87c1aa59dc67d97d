"""Tests for Registrant model."""
import pytest

from confdesk.models.registrant import AccompanyingPerson, PaymentInfo, Registrant


@pytest.fixture
def valid_fields():
    return {
        "registration_id": "REG-0001",
        "email": "jane@example.org",
        "first_name": "Jane",
        "last_name": "Doe",
        "category": "consultant",
        "registered_at": "2025-02-15T10:00:00+00:00",
    }


class TestRegistrantValidation:
    """Tests for registrant data validation."""

    def test_create_valid_registrant(self, valid_fields):
        """Valid registrant should be created with pending defaults."""
        registrant = Registrant(**valid_fields)
        assert registrant.status == "pending"
        assert registrant.source == "normal"
        assert registrant.payment is None

    def test_invalid_registration_id(self, valid_fields):
        valid_fields["registration_id"] = "R-1"
        with pytest.raises(ValueError, match="REG-XXXX"):
            Registrant(**valid_fields)

    def test_empty_first_name_raises_error(self, valid_fields):
        valid_fields["first_name"] = "  "
        with pytest.raises(ValueError, match="Name cannot be empty"):
            Registrant(**valid_fields)

    def test_last_name_exceeds_50_chars_raises_error(self, valid_fields):
        valid_fields["last_name"] = "A" * 51
        with pytest.raises(ValueError, match="Name cannot exceed 50 characters"):
            Registrant(**valid_fields)

    def test_invalid_email_raises_error(self, valid_fields):
        valid_fields["email"] = "not-an-email"
        with pytest.raises(ValueError, match="Invalid email address"):
            Registrant(**valid_fields)

    def test_unknown_status_raises_error(self, valid_fields):
        valid_fields["status"] = "approved"
        with pytest.raises(ValueError, match="Status must be one of"):
            Registrant(**valid_fields)

    def test_invalid_timestamp_raises_error(self, valid_fields):
        valid_fields["registered_at"] = "last tuesday"
        with pytest.raises(ValueError, match="Invalid timestamp format"):
            Registrant(**valid_fields)

    def test_age_out_of_range(self, valid_fields):
        valid_fields["age"] = 151
        with pytest.raises(ValueError, match="Age must be between"):
            Registrant(**valid_fields)


class TestRegistrantBehaviour:
    """Tests for derived values and serialization."""

    def test_full_name_includes_title(self, valid_fields):
        registrant = Registrant(title="Dr.", **valid_fields)
        assert registrant.full_name == "Dr. Jane Doe"

    @pytest.mark.parametrize("status,settled", [
        ("pending", False),
        ("pending-payment", False),
        ("paid", True),
        ("confirmed", True),
        ("cancelled", False),
    ])
    def test_is_settled(self, valid_fields, status, settled):
        assert Registrant(status=status, **valid_fields).is_settled() is settled

    def test_dict_round_trip_keeps_nested_records(self, valid_fields):
        registrant = Registrant(
            accompanying_persons=[AccompanyingPerson(name="Sam", age=8, relationship="child")],
            payment=PaymentInfo(method="bank-transfer", amount=11800, utr="UTR123456789"),
            **valid_fields,
        )

        restored = Registrant.from_dict(registrant.to_dict())

        assert restored == registrant
        assert restored.payment.status == "pending"


class TestPaymentInfo:
    """Tests for payment validation."""

    def test_unknown_method(self):
        with pytest.raises(ValueError, match="Payment method must be one of"):
            PaymentInfo(method="cheque")

    def test_negative_amount(self):
        with pytest.raises(ValueError, match="cannot be negative"):
            PaymentInfo(method="online", amount=-5)
