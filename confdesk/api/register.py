"""Public registration routes."""
import logging

from flask import Blueprint, session

from confdesk.api.responses import json_body, ok, require_fields
from confdesk.services import auth_service, registration_service
from confdesk.utils.date_utils import utc_now
from confdesk.utils.exceptions import ValidationError
from confdesk.utils.validation import validate_email, validate_name

logger = logging.getLogger(__name__)

bp = Blueprint("register", __name__, url_prefix="/api/register")


@bp.route("", methods=["POST"])
def create():
    """
    Create a registration and, when a password is given, a login account
    linked to it. The new account is logged in.
    """
    data = json_body()
    require_fields(data, "email", "first_name", "last_name", "category")

    for field in ("first_name", "last_name"):
        is_valid, message = validate_name(data[field])
        if not is_valid:
            raise ValidationError(message)
    is_valid, message = validate_email(data["email"])
    if not is_valid:
        raise ValidationError(message)

    # Account problems are rejected before anything is stored
    password = data.pop("password", None)
    if password:
        is_valid, message = auth_service.validate_password(password)
        if not is_valid:
            raise ValidationError(message)
        if auth_service.find_account_by_email(data["email"]) is not None:
            raise ValidationError("An account with this email already exists")

    registrant = registration_service.create_registration(data, utc_now())

    if password:
        account = auth_service.create_account(
            registrant.email,
            password,
            role="user",
            name=registrant.full_name,
            registration_id=registrant.registration_id,
        )
        session.clear()
        session["account_id"] = account.account_id
        session["role"] = account.role

    return ok(registrant.to_dict(), "Registration created", status=201)


@bp.route("/status/<registration_id>", methods=["GET"])
def status(registration_id):
    return ok(registration_service.get_registration_status(registration_id))
