"""Unit tests for pricing_service."""
from datetime import date, datetime, timedelta, timezone

import pytest

from confdesk.models.pricing import PriceCategory, PricingTier, TIER_PRIORITY
from confdesk.services import audit_service
from confdesk.services.pricing_service import (
    calculate_price,
    get_configured_tiers,
    get_current_pricing,
    list_workshops,
    resolve_tier,
    update_pricing_tiers,
)
from confdesk.services.settings_service import save_setting
from confdesk.utils.exceptions import PricingNotConfiguredError, ValidationError


def _tier(key, start, end, is_active=True):
    return PricingTier(
        key=key,
        name=key,
        start_date=start,
        end_date=end,
        is_active=is_active,
        categories={"consultant": PriceCategory(label="Consultant", amount=1000)},
    )


@pytest.fixture
def tiers():
    return {
        "earlyBird": _tier("earlyBird", "2025-01-01", "2025-03-31"),
        "regular": _tier("regular", "2025-04-01", "2025-08-31"),
        "onsite": _tier("onsite", "2025-09-01", "2025-09-05"),
    }


class TestResolveTier:
    """Tier selection by date, priority and fallback."""

    @pytest.mark.parametrize("day,expected", [
        ("2025-01-01", "earlyBird"),
        ("2025-03-31", "earlyBird"),
        ("2025-04-01", "regular"),
        ("2025-08-31", "regular"),
        ("2025-09-01", "onsite"),
        ("2025-09-05", "onsite"),
    ])
    def test_inclusive_boundaries(self, tiers, day, expected):
        assert resolve_tier(tiers, day).key == expected

    def test_end_day_applies_until_midnight(self, tiers):
        late = datetime(2025, 3, 31, 23, 59, 59, tzinfo=timezone.utc)
        assert resolve_tier(tiers, late).key == "earlyBird"

    def test_outside_all_ranges_falls_back_to_regular(self, tiers):
        assert resolve_tier(tiers, "2025-12-25").key == "regular"
        assert resolve_tier(tiers, "2024-12-31").key == "regular"

    def test_inactive_tier_is_skipped(self, tiers):
        tiers["earlyBird"].is_active = False
        assert resolve_tier(tiers, "2025-02-01").key == "regular"

    def test_fallback_applies_even_when_regular_inactive(self, tiers):
        tiers["regular"].is_active = False
        assert resolve_tier(tiers, "2025-05-01").key == "regular"

    def test_priority_wins_over_overlap(self, tiers):
        tiers["earlyBird"] = _tier("earlyBird", "2025-01-01", "2025-04-30")
        assert resolve_tier(tiers, "2025-04-15").key == "earlyBird"

    def test_no_regular_and_no_match_is_none(self, tiers):
        del tiers["regular"]
        assert resolve_tier(tiers, "2025-06-01") is None

    def test_every_day_matches_first_active_containing_tier(self, tiers):
        """Walk every day of the season and compare against the rule."""
        tiers["earlyBird"] = _tier("earlyBird", "2025-01-01", "2025-04-10")
        tiers["onsite"] = _tier("onsite", "2025-08-25", "2025-09-05", is_active=False)

        day = date(2024, 12, 20)
        while day <= date(2025, 9, 15):
            expected = "regular"
            for key in TIER_PRIORITY:
                tier = tiers[key]
                if tier.is_active and tier.start_date <= day.isoformat() <= tier.end_date:
                    expected = key
                    break
            assert resolve_tier(tiers, day).key == expected, day
            day += timedelta(days=1)


class TestGetCurrentPricing:
    """Tier lookup from stored configuration."""

    def test_unconfigured_raises(self, now):
        with pytest.raises(PricingNotConfiguredError, match="not configured"):
            get_current_pricing(now)

    def test_resolves_from_settings(self, pricing_config, now):
        tier = get_current_pricing(now)
        assert tier.key == "earlyBird"
        assert tier.categories["consultant"].amount == 10000

    def test_unknown_tier_keys_are_ignored(self, pricing_config):
        save_setting("pricing_tiers", {**pricing_config, "vip": pricing_config["regular"]})
        assert set(get_configured_tiers()) == {"earlyBird", "regular", "onsite"}


class TestCalculatePrice:
    """Fee calculation."""

    def test_base_fee_with_gst(self, pricing_config, now):
        quote = calculate_price("consultant", now)

        assert quote["base_amount"] == 10000
        assert quote["subtotal"] == 10000
        assert quote["gst"] == 1800
        assert quote["grand_total"] == 11800
        assert quote["tier"] == "earlyBird"
        assert quote["currency"] == "INR"

    def test_workshops_and_accompanying_persons(self, pricing_config, now):
        quote = calculate_price(
            "consultant",
            now,
            workshop_ids=["ws-ultrasound"],
            accompanying_persons=[{"name": "Sam", "age": 40}, {"name": "Kid", "age": 5}],
        )

        assert quote["workshop_fees"] == 2000
        assert quote["accompanying_fees"] == 3000
        assert quote["breakdown"]["paying_accompanying_persons"] == 1
        assert quote["breakdown"]["free_children"] == 1
        assert quote["subtotal"] == 15000
        assert quote["grand_total"] == 17700

    def test_child_at_age_limit_pays(self, pricing_config, now):
        quote = calculate_price("resident", now, accompanying_persons=[{"name": "Teen", "age": 10}])
        assert quote["accompanying_fees"] == 3000

    def test_unknown_and_inactive_workshops_ignored(self, pricing_config, now):
        quote = calculate_price("resident", now, workshop_ids=["ws-retired", "ws-missing"])
        assert quote["workshop_fees"] == 0
        assert quote["breakdown"]["workshops"] == []

    def test_senior_consultant_registers_free(self, pricing_config, now):
        quote = calculate_price("consultant", now, age=70, workshop_ids=["ws-airway"])

        assert quote["base_amount"] == 0
        assert quote["breakdown"]["senior_exemption"] is True
        assert quote["workshop_fees"] == 1500

    def test_senior_exemption_limited_to_category(self, pricing_config, now):
        quote = calculate_price("resident", now, age=75)
        assert quote["base_amount"] == 5000
        assert quote["breakdown"]["senior_exemption"] is False

    def test_discount_code(self, pricing_config, now):
        save_setting("discounts", [
            {"code": "EARLY10", "percentage": 10, "is_active": True, "end_date": "2025-03-01"},
        ])

        quote = calculate_price("consultant", now, discount_code="EARLY10")

        assert quote["discount"] == 1000
        assert quote["total"] == 9000
        assert quote["gst"] == 1620
        assert quote["grand_total"] == 10620

    def test_expired_or_inactive_discount_ignored(self, pricing_config, now):
        save_setting("discounts", [
            {"code": "OLD", "percentage": 10, "is_active": True, "end_date": "2025-02-01"},
            {"code": "OFF", "percentage": 10, "is_active": False},
        ])

        assert calculate_price("consultant", now, discount_code="OLD")["discount"] == 0
        assert calculate_price("consultant", now, discount_code="OFF")["discount"] == 0

    def test_gst_rounds_half_up(self, pricing_config, now, monkeypatch):
        monkeypatch.setenv("GST_PERCENT", "5")
        save_setting("discounts", [{"code": "ONE", "percentage": 1, "is_active": True}])

        quote = calculate_price("resident", now, discount_code="ONE")

        assert quote["total"] == 4950
        assert quote["gst"] == 248

    def test_unknown_category(self, pricing_config, now):
        with pytest.raises(ValidationError, match="Invalid registration type: student"):
            calculate_price("student", now)

    def test_regular_pricing_after_season(self, pricing_config):
        quote = calculate_price("consultant", datetime(2025, 12, 1, tzinfo=timezone.utc))
        assert quote["tier"] == "regular"
        assert quote["base_amount"] == 12500


class TestListWorkshops:
    def test_active_only_by_default(self, pricing_config):
        assert [w["id"] for w in list_workshops()] == ["ws-ultrasound", "ws-airway"]
        assert len(list_workshops(active_only=False)) == 3


class TestUpdatePricingTiers:
    """Admin edits of the tier configuration."""

    def test_past_tier_cannot_change(self, pricing_config, admin_actor):
        edited = {key: dict(value) for key, value in pricing_config.items()}
        edited["earlyBird"] = {**pricing_config["earlyBird"], "name": "Renamed"}

        with pytest.raises(ValidationError, match="can no longer be edited"):
            update_pricing_tiers(edited, date(2025, 4, 15), admin_actor)

    def test_past_tier_cannot_be_removed(self, pricing_config, admin_actor):
        edited = {key: value for key, value in pricing_config.items() if key != "earlyBird"}

        with pytest.raises(ValidationError, match="earlyBird"):
            update_pricing_tiers(edited, date(2025, 4, 15), admin_actor)

    def test_future_tier_can_change(self, pricing_config, admin_actor):
        onsite = dict(pricing_config["onsite"])
        onsite["categories"] = {"consultant": {"label": "Consultant", "amount": 16000, "currency": "INR"}}

        tiers = update_pricing_tiers({**pricing_config, "onsite": onsite}, date(2025, 4, 15), admin_actor)

        assert tiers["onsite"].categories["consultant"].amount == 16000
        assert get_configured_tiers()["onsite"].categories["consultant"].amount == 16000
        logs, total = audit_service.get_audit_logs(action="admin.config_changed")
        assert total == 1
        assert logs[0]["resource_id"] == "pricing_tiers"

    def test_malformed_tier(self, admin_actor, now):
        with pytest.raises(ValidationError, match="Invalid pricing tier"):
            update_pricing_tiers({"regular": {"start_date": "2025-04-01"}}, now, admin_actor)
