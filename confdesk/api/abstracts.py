"""Author-facing abstract routes."""
from flask import Blueprint

from confdesk.api.auth import current_account, role_required
from confdesk.api.responses import json_body, ok, require_fields
from confdesk.services import abstract_service
from confdesk.services.settings_service import get_setting
from confdesk.utils.date_utils import utc_now
from confdesk.utils.exceptions import PermissionDeniedError, ValidationError

bp = Blueprint("abstracts", __name__, url_prefix="/api/abstracts")


def _linked_registration() -> str:
    account = current_account()
    if not account.registration_id:
        raise ValidationError("Register for the conference before submitting an abstract")
    return account.registration_id


@bp.route("/config", methods=["GET"])
def config():
    return ok(get_setting("abstracts_config"))


@bp.route("", methods=["POST"])
@role_required("user")
def submit():
    data = json_body()
    require_fields(data, "title", "category", "topic")
    abstract = abstract_service.submit_abstract(_linked_registration(), data, utc_now())
    return ok(abstract.to_dict(), "Abstract submitted", status=201)


@bp.route("/mine", methods=["GET"])
@role_required("user")
def mine():
    own = abstract_service.list_by_author(current_account().email)
    return ok({"abstracts": own, "total": len(own)})


@bp.route("/<abstract_id>", methods=["GET"])
@role_required("user", "admin")
def detail(abstract_id):
    abstract = abstract_service.get_abstract(abstract_id)
    account = current_account()
    if account.role == "user" and abstract.author_email != account.email:
        raise PermissionDeniedError("Access denied")
    return ok(abstract.to_dict())


@bp.route("/<abstract_id>/final", methods=["POST"])
@role_required("user")
def submit_final(abstract_id):
    data = json_body()
    abstract = abstract_service.submit_final(abstract_id, current_account().email, data, utc_now())
    return ok(abstract.to_dict(), "Final version submitted")
