#!/usr/bin/env python3
"""
Seed the data directory with a starter configuration.

Creates three pricing tiers around today, a small workshop catalog, the
accompanying person fee and the bootstrap admin account (ADMIN_EMAIL /
ADMIN_PASSWORD). Existing pricing is left alone unless --force is given.
"""
import logging
import sys
from datetime import timedelta

from confdesk.config import get_settings
from confdesk.services.auth_service import ensure_bootstrap_admin
from confdesk.services.pricing_service import get_configured_tiers
from confdesk.services.settings_service import save_setting
from confdesk.utils.date_utils import utc_now

logger = logging.getLogger("seed_data")

CATEGORIES = {
    "consultant": {"label": "Consultant", "amount": 12000, "currency": "INR"},
    "resident": {"label": "Resident / PG", "amount": 7000, "currency": "INR"},
    "exhibitor": {"label": "Exhibitor", "amount": 5000, "currency": "INR"},
}

WORKSHOPS = [
    {"id": "ws-hand-surgery", "name": "Hand Surgery Cadaveric Workshop", "price": 4000, "currency": "INR", "is_active": True},
    {"id": "ws-microsurgery", "name": "Microsurgery Skills Lab", "price": 3500, "currency": "INR", "is_active": True},
]


def build_tiers(today):
    """Early bird for 30 days, regular for 60, on-site for 5."""
    def _day(offset):
        return (today + timedelta(days=offset)).strftime("%Y-%m-%d")

    def _scaled(factor):
        return {key: {**value, "amount": int(value["amount"] * factor)} for key, value in CATEGORIES.items()}

    return {
        "earlyBird": {"name": "Early Bird", "start_date": _day(0), "end_date": _day(29),
                      "is_active": True, "categories": _scaled(0.8)},
        "regular": {"name": "Regular", "start_date": _day(30), "end_date": _day(89),
                    "is_active": True, "categories": _scaled(1.0)},
        "onsite": {"name": "On-site", "start_date": _day(90), "end_date": _day(94),
                   "is_active": True, "categories": _scaled(1.25)},
    }


def main(argv):
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    force = "--force" in argv

    print(f"🌱 Seeding {get_settings().data_dir}/")

    if get_configured_tiers() and not force:
        print("   ℹ️  Pricing tiers already configured (use --force to overwrite)")
    else:
        save_setting("pricing_tiers", build_tiers(utc_now().date()))
        save_setting("workshops", WORKSHOPS)
        save_setting("accompanying_person", {"amount": 3000})
        print("   ✅ Pricing tiers, workshops and accompanying fee saved")

    admin = ensure_bootstrap_admin()
    if admin is None:
        print("   ⚠️  ADMIN_PASSWORD not set; no admin account created")
    else:
        print(f"   ✅ Admin account: {admin.email}")

    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
