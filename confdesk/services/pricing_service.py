"""Pricing tier resolution and registration fee calculation."""
import logging
import math
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from confdesk.config import get_settings
from confdesk.models.audit import Actor
from confdesk.models.pricing import FALLBACK_TIER, TIER_PRIORITY, PricingTier
from confdesk.services.settings_service import get_setting, save_setting
from confdesk.utils.date_utils import DateLike, has_passed, is_within_range, to_date
from confdesk.utils.exceptions import PricingNotConfiguredError, ValidationError

logger = logging.getLogger(__name__)


def resolve_tier(tiers: Mapping[str, PricingTier], now: DateLike) -> Optional[PricingTier]:
    """
    Select the pricing tier that applies on a given day.

    Args:
        tiers: Tier key → PricingTier
        now: The day to resolve for

    Returns:
        The first tier in earlyBird → regular → onsite order that is active
        and whose [start_date, end_date] contains `now` (inclusive), else
        the regular tier, else None

    Behavior:
        - Priority comes from the tier key, never from range overlap
        - The regular fallback applies even if that tier is inactive
    """
    for key in TIER_PRIORITY:
        tier = tiers.get(key)
        if tier is not None and tier.is_active and is_within_range(now, tier.start_date, tier.end_date):
            return tier
    return tiers.get(FALLBACK_TIER)


def get_configured_tiers() -> Dict[str, PricingTier]:
    """Load the admin-configured tiers."""
    raw = get_setting("pricing_tiers") or {}
    return {
        key: PricingTier.from_dict(key, data)
        for key, data in raw.items()
        if key in TIER_PRIORITY
    }


def get_current_pricing(now: DateLike) -> PricingTier:
    """
    Resolve the tier for `now` from stored configuration.

    Raises:
        PricingNotConfiguredError: If no tier applies and no regular tier exists
    """
    tier = resolve_tier(get_configured_tiers(), now)
    if tier is None:
        raise PricingNotConfiguredError("Registration pricing is not configured")
    return tier


def list_workshops(active_only: bool = True) -> List[Dict[str, Any]]:
    """Workshop catalog entries: {"id", "name", "price", "currency", "is_active"}."""
    workshops = get_setting("workshops") or []
    if active_only:
        return [w for w in workshops if w.get("is_active", True)]
    return workshops


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _applicable_discounts(code: Optional[str], subtotal: float, now: DateLike) -> List[Dict[str, Any]]:
    if not code:
        return []

    applied = []
    for discount in get_setting("discounts") or []:
        if discount.get("code") != code or not discount.get("is_active", True):
            continue
        end_date = discount.get("end_date")
        if end_date and has_passed(end_date, now):
            continue
        percentage = discount.get("percentage", 0)
        applied.append({
            "type": discount.get("type", "code-based"),
            "code": code,
            "percentage": percentage,
            "amount": math.floor(subtotal * percentage / 100),
        })
    return applied


def calculate_price(
    category: str,
    now: DateLike,
    workshop_ids: Iterable[str] = (),
    accompanying_persons: Iterable[Dict[str, Any]] = (),
    age: int = 0,
    discount_code: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Compute the registration fee for a category on a given day.

    Args:
        category: Registration category key
        now: Day used to resolve the pricing tier
        workshop_ids: Selected workshop IDs (unknown IDs are ignored)
        accompanying_persons: [{"name", "age", ...}]
        age: Registrant age, used for the senior citizen exemption
        discount_code: Optional discount code

    Returns:
        Dict with base_amount, workshop_fees, accompanying_fees, subtotal,
        discount, total, gst_percent, gst, grand_total, currency, tier and breakdown

    Raises:
        PricingNotConfiguredError: If no pricing tier is available
        ValidationError: If the category is not priced in the active tier
    """
    tier = get_current_pricing(now)
    price = tier.categories.get(category)
    if price is None:
        raise ValidationError(f"Invalid registration type: {category}")

    exemptions = get_setting("age_exemptions")
    senior_age = exemptions.get("senior_citizen_age", 70)
    senior_category = exemptions.get("senior_citizen_category", "consultant")
    child_age = exemptions.get("children_under_age", 10)

    base_amount = price.amount
    senior_exempt = age >= senior_age and senior_category in ("all", category)
    if senior_exempt:
        base_amount = 0

    catalog = {w["id"]: w for w in list_workshops()}
    workshop_fees = []
    for workshop_id in workshop_ids:
        workshop = catalog.get(workshop_id)
        if workshop is None:
            logger.warning(f"Ignoring unknown workshop: {workshop_id}")
            continue
        workshop_fees.append({"id": workshop_id, "name": workshop["name"], "amount": workshop["price"]})
    total_workshop_fees = sum(fee["amount"] for fee in workshop_fees)

    person_fee = (get_setting("accompanying_person") or {}).get("amount", 0)
    paying_persons = 0
    free_children = 0
    for person in accompanying_persons:
        if person.get("age", 0) < child_age:
            free_children += 1
        else:
            paying_persons += 1
    accompanying_fees = paying_persons * person_fee

    subtotal = base_amount + total_workshop_fees + accompanying_fees
    discounts = _applicable_discounts(discount_code, subtotal, now)
    discount = sum(d["amount"] for d in discounts)
    total = max(subtotal - discount, 0)
    gst_percent = get_settings().gst_percent
    gst = _round_half_up(total * gst_percent / 100)

    return {
        "base_amount": base_amount,
        "workshop_fees": total_workshop_fees,
        "accompanying_fees": accompanying_fees,
        "subtotal": subtotal,
        "discount": discount,
        "total": total,
        "gst_percent": gst_percent,
        "gst": gst,
        "grand_total": total + gst,
        "currency": price.currency,
        "tier": tier.key,
        "breakdown": {
            "category": category,
            "category_label": price.label,
            "senior_exemption": senior_exempt,
            "workshops": workshop_fees,
            "paying_accompanying_persons": paying_persons,
            "free_children": free_children,
            "applied_discounts": discounts,
        },
    }


def update_pricing_tiers(tiers_data: Dict[str, Dict[str, Any]], now: DateLike, actor: Actor) -> Dict[str, PricingTier]:
    """
    Replace the tier configuration.

    Raises:
        ValidationError: If a tier is malformed, or if a tier whose end date
            has already passed would be changed or removed
    """
    try:
        new_tiers = {key: PricingTier.from_dict(key, data) for key, data in tiers_data.items()}
    except (KeyError, ValueError) as e:
        raise ValidationError(f"Invalid pricing tier: {e}") from e

    for key, existing in get_configured_tiers().items():
        if not has_passed(existing.end_date, now):
            continue
        replacement = new_tiers.get(key)
        if replacement is None or replacement.to_dict() != existing.to_dict():
            raise ValidationError(f"Tier '{key}' ended on {existing.end_date} and can no longer be edited")

    stored = {key: {k: v for k, v in tier.to_dict().items() if k != "key"} for key, tier in new_tiers.items()}
    save_setting("pricing_tiers", stored, actor=actor)
    logger.info(f"Pricing tiers updated by {actor.email} on {to_date(now)}")
    return new_tiers
