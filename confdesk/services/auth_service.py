"""Account authentication and Streamlit admin session state."""
import logging
import uuid
from typing import Any, Dict, List, Optional, Tuple

import streamlit as st
from werkzeug.security import check_password_hash, generate_password_hash

from confdesk.config import get_settings
from confdesk.models.account import ROLES, Account, SponsorAllocation
from confdesk.models.audit import Actor
from confdesk.services.storage_service import find_one, insert_document, read_collection, update_document
from confdesk.utils.exceptions import AuthenticationError, NotFoundError, ValidationError
from confdesk.utils.validation import normalize_email

logger = logging.getLogger(__name__)

ACCOUNTS_COLLECTION = "accounts"
MIN_PASSWORD_LENGTH = 8


def validate_password(password: Optional[str]) -> Tuple[bool, str]:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        return False, f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
    return True, ""


def create_account(
    email: str,
    password: str,
    role: str = "user",
    name: str = "",
    expertise: Optional[List[str]] = None,
    allocation: Optional[Dict[str, Any]] = None,
    registration_id: Optional[str] = None,
) -> Account:
    """
    Create a login account.

    Raises:
        ValidationError: On a short password, unknown role, bad email or
            an email that already has an account
    """
    is_valid, message = validate_password(password)
    if not is_valid:
        raise ValidationError(message)
    if role not in ROLES:
        raise ValidationError(f"Role must be one of {list(ROLES)}, got: {role}")

    normalized = normalize_email(email)

    def _build(documents: List[Dict[str, Any]]) -> Dict[str, Any]:
        if any(doc.get("email") == normalized for doc in documents):
            raise ValidationError("An account with this email already exists")
        try:
            account = Account(
                account_id=f"ACC-{uuid.uuid4().hex[:12]}",
                email=normalized,
                password_hash=generate_password_hash(password),
                role=role,
                name=name,
                registration_id=registration_id,
                expertise=list(expertise or []),
                allocation=SponsorAllocation(**allocation) if allocation else None,
            )
        except (TypeError, ValueError) as e:
            raise ValidationError(str(e)) from e
        return account.to_dict()

    account = Account.from_dict(insert_document(ACCOUNTS_COLLECTION, _build))
    logger.info(f"Account {account.account_id} created with role {role}")
    return account


def get_account(account_id: str) -> Account:
    """
    Raises:
        NotFoundError: If the account ID is unknown
    """
    document = find_one(ACCOUNTS_COLLECTION, "account_id", account_id)
    if document is None:
        raise NotFoundError(f"Account not found: {account_id}")
    return Account.from_dict(document)


def find_account_by_email(email: str) -> Optional[Account]:
    document = find_one(ACCOUNTS_COLLECTION, "email", normalize_email(email))
    return Account.from_dict(document) if document else None


def list_accounts(role: Optional[str] = None) -> List[Account]:
    return [
        Account.from_dict(document)
        for document in read_collection(ACCOUNTS_COLLECTION)
        if role is None or document.get("role") == role
    ]


def set_active(account_id: str, is_active: bool) -> Account:
    def _apply(document: Dict[str, Any]) -> None:
        document["is_active"] = is_active

    document = update_document(ACCOUNTS_COLLECTION, "account_id", account_id, _apply)
    if document is None:
        raise NotFoundError(f"Account not found: {account_id}")
    return Account.from_dict(document)


def authenticate(email: str, password: str) -> Account:
    """
    Check credentials and return the account.

    Raises:
        AuthenticationError: On unknown email, wrong password or a
            deactivated account; the message never says which
    """
    account = find_account_by_email(email or "")
    if account is None or not check_password_hash(account.password_hash, password or ""):
        logger.warning(f"Failed login for {email}")
        raise AuthenticationError("Invalid email or password")
    if not account.is_active:
        logger.warning(f"Login attempt for inactive account {account.account_id}")
        raise AuthenticationError("Invalid email or password")
    return account


def ensure_bootstrap_admin() -> Optional[Account]:
    """
    Create the admin account from ADMIN_EMAIL / ADMIN_PASSWORD if missing.

    Returns None when no admin password is configured.
    """
    settings = get_settings()
    if not settings.admin_password:
        return None

    existing = find_account_by_email(settings.admin_email)
    if existing is not None:
        return existing

    logger.info(f"Creating bootstrap admin {settings.admin_email}")
    return create_account(settings.admin_email, settings.admin_password, role="admin", name="Administrator")


def actor_for(account: Account) -> Actor:
    """Audit actor for a logged-in account."""
    return Actor(account_id=account.account_id, email=account.email, role=account.role, name=account.name)


def is_admin_authenticated() -> bool:
    """
    Check if an admin is logged in to the Streamlit session.

    Returns:
        True if st.session_state['admin_account_id'] is set
    """
    return bool(st.session_state.get("admin_account_id"))


def current_admin_actor() -> Optional[Actor]:
    """Actor for the admin logged in to the Streamlit session, if any."""
    account_id = st.session_state.get("admin_account_id")
    if not account_id:
        return None
    try:
        return actor_for(get_account(account_id))
    except NotFoundError:
        logout_admin()
        return None


def login_admin(email: str, password: str) -> Tuple[bool, str]:
    """
    Log in to the Streamlit admin panel.

    Returns:
        Tuple of (success: bool, message: str)
        - (True, "Login successful") on success
        - (False, "Invalid email or password") on bad credentials
        - (False, "Admin access required") for non-admin accounts
    """
    try:
        account = authenticate(email, password)
    except AuthenticationError as e:
        return False, str(e)

    if account.role != "admin":
        return False, "Admin access required"

    st.session_state["admin_account_id"] = account.account_id
    return True, "Login successful"


def logout_admin() -> None:
    """Clear the admin login from the Streamlit session."""
    if "admin_account_id" in st.session_state:
        del st.session_state["admin_account_id"]
