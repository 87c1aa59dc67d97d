"""Reviewer routes: assigned abstracts and score submission."""
from flask import Blueprint

from confdesk.api.auth import current_account, role_required
from confdesk.api.mailer import mail_sender
from confdesk.api.responses import json_body, ok, require_fields
from confdesk.services import abstract_service
from confdesk.services.settings_service import get_setting
from confdesk.utils.date_utils import utc_now

bp = Blueprint("reviewer", __name__, url_prefix="/api/reviewer")


@bp.route("/config", methods=["GET"])
@role_required("reviewer", "admin")
def config():
    reviewer_config = get_setting("reviewer_config")
    return ok({
        "blind_review": reviewer_config.get("blind_review", False),
        "scoring_criteria": [c for c in reviewer_config.get("scoring_criteria", []) if c.get("enabled", True)],
        "require_rejection_comment": reviewer_config.get("require_rejection_comment", True),
    })


@bp.route("/abstracts", methods=["GET"])
@role_required("reviewer", "admin")
def abstracts():
    return ok(abstract_service.list_for_reviewer(current_account()))


@bp.route("/abstracts/<abstract_id>/review", methods=["POST"])
@role_required("reviewer", "admin")
def review(abstract_id):
    data = json_body()
    require_fields(data, "decision", "scores")
    result = abstract_service.submit_review(
        abstract_id,
        current_account(),
        data["scores"],
        data["decision"],
        approved_for=data.get("approved_for"),
        rejection_comment=data.get("rejection_comment", ""),
        now=utc_now(),
        sender=mail_sender,
    )
    return ok({
        "review": result["review"].to_dict(),
        "abstract_status": result["abstract"].status,
        "consensus": result["consensus"],
    }, "Review submitted")
