"""Sponsor-managed delegate registrations."""
import logging
from datetime import datetime
from typing import Any, Dict

from confdesk.models.account import Account
from confdesk.services import audit_service
from confdesk.services.auth_service import ACCOUNTS_COLLECTION, actor_for, get_account
from confdesk.services.registration_service import REGISTRATIONS_COLLECTION, create_registration
from confdesk.services.storage_service import find_documents, update_document
from confdesk.utils.exceptions import PermissionDeniedError, ValidationError

logger = logging.getLogger(__name__)


def _require_sponsor(sponsor_id: str) -> Account:
    sponsor = get_account(sponsor_id)
    if sponsor.role != "sponsor" or not sponsor.is_active:
        raise PermissionDeniedError("Sponsor access required")
    return sponsor


def register_delegate(sponsor_id: str, data: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    """
    Register a delegate against a sponsor's complimentary allocation.

    The registration is created confirmed, with a 'sponsored' payment and
    source 'sponsor-managed'.

    Returns:
        {"registration": Registrant, "allocation": SponsorAllocation}

    Raises:
        NotFoundError: If the sponsor account is unknown
        PermissionDeniedError: If the account is not an active sponsor
        ValidationError: If the allocation is exhausted or the delegate data
            is invalid
    """
    sponsor = _require_sponsor(sponsor_id)

    # Reserve a slot first so two delegates cannot take the last one
    def _reserve(document: Dict[str, Any]) -> None:
        allocation = document.get("allocation") or {}
        if allocation.get("used", 0) >= allocation.get("total", 0):
            raise ValidationError("Sponsor allocation exhausted")
        allocation["used"] = allocation.get("used", 0) + 1
        document["allocation"] = allocation

    update_document(ACCOUNTS_COLLECTION, "account_id", sponsor_id, _reserve)

    delegate = {**data, "category": data.get("category") or sponsor.allocation.category}
    try:
        registrant = create_registration(
            delegate,
            now,
            source="sponsor-managed",
            actor=actor_for(sponsor),
            status="confirmed",
            payment={
                "method": "sponsored",
                "status": "verified",
                "amount": 0,
                "utr": None,
                "transaction_id": None,
                "order_id": None,
                "paid_at": None,
                "verified_by": sponsor.email,
                "verified_at": None,
                "remarks": f"Sponsored by {sponsor.name or sponsor.email}",
            },
            sponsor_id=sponsor_id,
        )
    except Exception:
        def _release(document: Dict[str, Any]) -> None:
            document["allocation"]["used"] -= 1

        update_document(ACCOUNTS_COLLECTION, "account_id", sponsor_id, _release)
        raise

    sponsor = get_account(sponsor_id)
    logger.info(
        f"Sponsor {sponsor_id} registered {registrant.registration_id} "
        f"({sponsor.allocation.used}/{sponsor.allocation.total})"
    )
    audit_service.log_action(
        actor=actor_for(sponsor),
        action="sponsor.delegate_registered",
        resource_type="registration",
        resource_id=registrant.registration_id,
        resource_name=registrant.email,
        after={"used": sponsor.allocation.used, "total": sponsor.allocation.total},
        description=f"Sponsor registered delegate {registrant.full_name}",
        now=now,
    )
    return {"registration": registrant, "allocation": sponsor.allocation}


def sponsor_dashboard(sponsor_id: str) -> Dict[str, Any]:
    """Allocation summary and the sponsor's delegates."""
    sponsor = _require_sponsor(sponsor_id)
    delegates = find_documents(REGISTRATIONS_COLLECTION, sponsor_id=sponsor_id)
    return {
        "sponsor": sponsor.public_dict(),
        "allocation": {
            "total": sponsor.allocation.total,
            "used": sponsor.allocation.used,
            "remaining": sponsor.allocation.remaining(),
            "category": sponsor.allocation.category,
        },
        "delegates": [
            {
                "registration_id": d["registration_id"],
                "name": f"{d.get('first_name', '')} {d.get('last_name', '')}".strip(),
                "email": d["email"],
                "status": d["status"],
            }
            for d in delegates
        ],
    }
