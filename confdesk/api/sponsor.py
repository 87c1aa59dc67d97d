"""Sponsor routes: allocation dashboard and delegate registration."""
from flask import Blueprint

from confdesk.api.auth import current_account, role_required
from confdesk.api.responses import json_body, ok, require_fields
from confdesk.services import sponsor_service
from confdesk.utils.date_utils import utc_now

bp = Blueprint("sponsor", __name__, url_prefix="/api/sponsor")


@bp.route("/dashboard", methods=["GET"])
@role_required("sponsor")
def dashboard():
    return ok(sponsor_service.sponsor_dashboard(current_account().account_id))


@bp.route("/delegates", methods=["POST"])
@role_required("sponsor")
def register_delegate():
    data = json_body()
    require_fields(data, "email", "first_name", "last_name")
    result = sponsor_service.register_delegate(current_account().account_id, data, utc_now())
    allocation = result["allocation"]
    return ok({
        "registration": result["registration"].to_dict(),
        "allocation": {"total": allocation.total, "used": allocation.used, "remaining": allocation.remaining()},
    }, "Delegate registered", status=201)
