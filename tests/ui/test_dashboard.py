"""Tests for dashboard UI helpers."""
import pytest

from confdesk.models.pricing import PriceCategory, PricingTier
from confdesk.services.registration_service import create_registration, get_registration
from confdesk.ui.dashboard import (
    breakdown_rows,
    format_amount,
    status_badge,
    submit_owned_bank_transfer,
    tier_rows,
)
from confdesk.ui.html_utils import html_block, pill


class TestFormatAmount:
    """Tests for price formatting."""

    def test_whole_amount_has_thousands_separator(self):
        assert format_amount(12500) == "INR 12,500"

    def test_fractional_amount_keeps_paise(self):
        assert format_amount(1234.5) == "INR 1,234.50"

    def test_custom_currency(self):
        assert format_amount(0, "USD") == "USD 0"


class TestTierRows:
    def test_sorted_cheapest_first(self):
        tier = PricingTier(
            key="regular",
            name="Regular",
            start_date="2025-04-01",
            end_date="2025-08-31",
            categories={
                "consultant": PriceCategory(label="Consultant", amount=12500),
                "resident": PriceCategory(label="Resident", amount=6000),
            },
        )

        assert tier_rows(tier) == [
            {"Category": "Resident", "Fee": "INR 6,000"},
            {"Category": "Consultant", "Fee": "INR 12,500"},
        ]


class TestStatusBadge:
    """Tests for status badge HTML."""

    def test_known_status_uses_label_and_color(self):
        html = status_badge("pending-payment")

        assert "Payment under verification" in html
        assert "#f59e0b" in html

    def test_unknown_status_falls_back_to_raw_value(self):
        html = status_badge("on-hold")

        assert "on-hold" in html
        assert "#94a3b8" in html

    def test_pill_escapes_label(self):
        assert "&lt;script&gt;" in pill("<script>", "#000000")

    def test_no_line_starts_with_indentation(self):
        """Indented lines would render as Markdown code blocks."""
        for line in status_badge("confirmed").splitlines():
            assert not line.startswith(" ")


class TestHtmlBlock:
    def test_strips_indentation(self):
        assert html_block("\n    <div>\n        <span>x</span>\n    </div>\n") == "<div>\n<span>x</span>\n</div>"


class TestBreakdownRows:
    """Tests for the fee breakdown table."""

    @pytest.fixture
    def quote(self):
        return {
            "base_amount": 10000,
            "accompanying_fees": 3000,
            "discount": 1300,
            "gst": 2106,
            "grand_total": 13806,
            "currency": "INR",
            "breakdown": {
                "category_label": "Consultant",
                "workshops": [{"id": "ws-airway", "name": "Difficult Airway", "amount": 1500}],
                "paying_accompanying_persons": 1,
            },
        }

    def test_all_lines_present_in_order(self, quote):
        rows = breakdown_rows(quote)

        assert [row["Item"] for row in rows] == [
            "Consultant",
            "Workshop: Difficult Airway",
            "Accompanying persons (1)",
            "Discount",
            "GST",
            "Total payable",
        ]
        assert rows[3]["Amount"] == "- INR 1,300"
        assert rows[-1]["Amount"] == "INR 13,806"

    def test_zero_lines_omitted(self, quote):
        quote.update(accompanying_fees=0, discount=0)
        quote["breakdown"]["workshops"] = []

        assert [row["Item"] for row in breakdown_rows(quote)] == ["Consultant", "GST", "Total payable"]


class TestOwnedBankTransfer:
    """The public form only accepts a transfer from the registration's own email."""

    UTR = "UTR2025021512"

    @pytest.fixture
    def registrant(self, pricing_config, now, registrant_data):
        return create_registration(registrant_data, now)

    def test_matching_email_submits(self, registrant):
        result = submit_owned_bank_transfer(" reg-0001 ", "JANE.DOE@example.org", self.UTR, 11800)

        assert result == (True, "Payment submitted for verification")
        assert get_registration("REG-0001").payment.utr == self.UTR

    def test_someone_elses_id_is_refused(self, registrant, now):
        create_registration(
            {"email": "sam@example.org", "first_name": "Sam", "last_name": "Lee", "category": "resident"},
            now,
        )

        result = submit_owned_bank_transfer("REG-0001", "sam@example.org", self.UTR, 11800)

        assert result == (False, "Registration ID and email do not match")
        assert get_registration("REG-0001").payment is None

    def test_blank_email_is_refused(self, registrant):
        assert submit_owned_bank_transfer("REG-0001", "  ", self.UTR, 11800)[0] is False
