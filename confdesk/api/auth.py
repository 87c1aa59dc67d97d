"""Session login routes and role gating for the JSON API."""
import logging
from functools import wraps

from flask import Blueprint, g, session

from confdesk.api.responses import json_body, ok, require_fields
from confdesk.models.account import Account
from confdesk.services import audit_service
from confdesk.services.auth_service import actor_for, authenticate, get_account
from confdesk.utils.exceptions import AuthenticationError, NotFoundError, PermissionDeniedError

logger = logging.getLogger(__name__)

bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def role_required(*roles):
    """
    Require a logged-in account whose role is in `roles`.

    No session (or a deleted/deactivated account) gives 401, any other role
    gives 403. The account is available as flask.g.account.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            account_id = session.get("account_id")
            if not account_id:
                raise AuthenticationError("Authentication required")
            try:
                account = get_account(account_id)
            except NotFoundError:
                session.clear()
                raise AuthenticationError("Authentication required")
            if not account.is_active:
                session.clear()
                raise AuthenticationError("Account is deactivated")
            if account.role not in roles:
                raise PermissionDeniedError("Access denied")
            g.account = account
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def current_account() -> Account:
    return g.account


def current_actor():
    return actor_for(g.account)


@bp.route("/login", methods=["POST"])
def login():
    data = json_body()
    require_fields(data, "email", "password")
    account = authenticate(data["email"], data["password"])

    session.clear()
    session["account_id"] = account.account_id
    session["role"] = account.role

    audit_service.log_action(
        actor=actor_for(account),
        action="user.login",
        resource_type="user",
        resource_id=account.account_id,
        resource_name=account.email,
        description=f"{account.email} logged in",
    )
    return ok(account.public_dict(), "Login successful")


@bp.route("/logout", methods=["POST"])
def logout():
    session.clear()
    return ok(message="Logged out")


@bp.route("/me", methods=["GET"])
@role_required("user", "admin", "reviewer", "sponsor")
def me():
    return ok(current_account().public_dict())
