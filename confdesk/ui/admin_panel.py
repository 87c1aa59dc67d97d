"""Admin panel UI: registrations, pricing, abstracts, email outbox, audit and errors."""
import html
import json
import logging
import traceback
from collections import Counter
from typing import Any, Dict, List

import streamlit as st

from confdesk.api.app import create_app
from confdesk.api.mailer import mail_sender
from confdesk.services import abstract_service, audit_service, email_service, error_service
from confdesk.services.auth_service import (
    current_admin_actor,
    is_admin_authenticated,
    list_accounts,
    login_admin,
    logout_admin,
)
from confdesk.services.pricing_service import get_configured_tiers, update_pricing_tiers
from confdesk.services.registration_service import (
    ALLOWED_TRANSITIONS,
    cleanup_pending,
    list_registrations,
    transition_status,
    verify_bank_transfer,
)
from confdesk.ui.html_utils import html_block
from confdesk.utils.date_utils import utc_now
from confdesk.utils.exceptions import InvalidTransitionError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

PAGE_SIZE = 25


def _show_admin_exception(error: Exception, context: str) -> None:
    """Display error details in UI and log full traceback."""
    logger.exception("Admin panel error during %s", context)

    st.error(f"❌ {context} failed: {error}")
    with st.expander("🔍 Error details"):
        st.code("".join(traceback.format_exception(type(error), error, error.__traceback__)))


@st.cache_resource
def _mail_app():
    return create_app()


def _send_with_flask_mail(to: str, subject: str, body: str) -> None:
    """Outbox sender for the panel; Flask-Mail needs an app context."""
    with _mail_app().app_context():
        mail_sender(to, subject, body)


def registration_rows(documents: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Flatten registration documents for st.dataframe."""
    rows = []
    for document in documents:
        payment = document.get("payment") or {}
        rows.append({
            "ID": document["registration_id"],
            "Name": f"{document.get('first_name', '')} {document.get('last_name', '')}".strip(),
            "Email": document["email"],
            "Category": document["category"],
            "Status": document["status"],
            "Payment": f"{payment.get('method', '-')}/{payment.get('status', '-')}" if payment else "-",
            "UTR": payment.get("utr") or "",
            "Source": document.get("source", "normal"),
        })
    return rows


def parse_tiers_json(text: str) -> Dict[str, Dict[str, Any]]:
    """
    Parse the pricing tier editor contents.

    Raises:
        ValueError: If the text is not a JSON object of tier objects
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON: {e.msg} (line {e.lineno})") from e
    if not isinstance(data, dict) or not all(isinstance(value, dict) for value in data.values()):
        raise ValueError("Pricing tiers must be an object of tier objects")
    return data


def email_status_counts(records: List[Dict[str, Any]]) -> Dict[str, int]:
    """Outbox counts per status, always including queued/sent/failed."""
    counts = Counter(record["status"] for record in records)
    return {status: counts.get(status, 0) for status in ("queued", "sent", "failed")}


ADMIN_CSS = """
<style>
.desk-banner { display:flex; justify-content:space-between; align-items:baseline;
  border-left: 6px solid #0ea5e9; background: #0f172a; padding: 18px 24px; border-radius: 10px; margin-bottom: 18px; }
.desk-banner h2 { color: #e2e8f0; margin: 0; font-size: 24px; }
.desk-banner span { color: #94a3b8; font-size: 13px; }
.desk-login { color: #e2e8f0; text-align: center; font-size: 26px; margin-bottom: 8px; }
</style>
"""


def _inject_admin_styles():
    st.markdown(html_block(ADMIN_CSS), unsafe_allow_html=True)


def render_login_page():
    """Render admin login page."""
    _inject_admin_styles()

    with st.form("admin_login_form", clear_on_submit=False):
        st.markdown("<h2 class='desk-login'>🔐 Admin login</h2>", unsafe_allow_html=True)

        email = st.text_input("Email", key="admin_email_input")
        password = st.text_input("Password", type="password", key="admin_password_input")

        submit_col, cancel_col = st.columns(2, gap="small")
        with submit_col:
            submit = st.form_submit_button("Log in", width='stretch', type="primary")
        with cancel_col:
            cancel = st.form_submit_button("Back", width='stretch')

        if submit:
            if not email or not password:
                st.error("❌ Enter email and password")
            else:
                success, message = login_admin(email, password)
                if success:
                    st.success(f"✅ {message}")
                    st.rerun()
                else:
                    st.error(f"❌ {message}")

        if cancel:
            st.session_state.current_page = "dashboard"


def _render_registrations_tab(actor) -> None:
    col1, col2, col3 = st.columns([1, 1, 2])
    with col1:
        status = st.selectbox("Status", ["", *ALLOWED_TRANSITIONS.keys()], key="reg_filter_status")
    with col2:
        page = st.number_input("Page", min_value=1, value=1, key="reg_page")
    with col3:
        search = st.text_input("Search ID, email or name", key="reg_search")

    documents, total = list_registrations(
        status=status or None,
        search=search or None,
        skip=(int(page) - 1) * PAGE_SIZE,
        limit=PAGE_SIZE,
    )
    st.caption(f"{total} registration(s)")
    st.dataframe(registration_rows(documents), width='stretch', hide_index=True)

    st.markdown("#### Change status")
    with st.form("registration_status_form"):
        registration_id = st.text_input("Registration ID")
        new_status = st.selectbox("New status", list(ALLOWED_TRANSITIONS.keys()))
        remarks = st.text_input("Remarks")
        submit = st.form_submit_button("Apply", type="primary")
    if submit:
        try:
            registrant = transition_status(
                registration_id.strip().upper(), new_status, actor, remarks=remarks, now=utc_now(),
                sender=_send_with_flask_mail,
            )
            st.success(f"✅ {registrant.registration_id} is now {registrant.status}")
        except (NotFoundError, InvalidTransitionError, ValidationError) as e:
            st.error(f"❌ {e}")

    st.markdown("#### Verify bank transfer")
    with st.form("bank_transfer_verify_form"):
        registration_id = st.text_input("Registration ID", key="verify_registration_id")
        decision = st.radio("Decision", ["Approve", "Reject"], horizontal=True)
        remarks = st.text_input("Remarks", key="verify_remarks")
        submit = st.form_submit_button("Submit")
    if submit:
        try:
            registrant = verify_bank_transfer(
                registration_id.strip().upper(), actor, approve=decision == "Approve", remarks=remarks,
                now=utc_now(), sender=_send_with_flask_mail,
            )
            st.success(f"✅ {registrant.registration_id} is now {registrant.status}")
        except (NotFoundError, InvalidTransitionError, ValidationError) as e:
            st.error(f"❌ {e}")

    days = st.number_input("Cancel pending registrations older than (days)", min_value=1, value=7)
    if st.button("🧹 Clean up pending"):
        cancelled = cleanup_pending(float(days), utc_now(), actor)
        st.info(f"Cancelled {len(cancelled)} registration(s)")


def _render_pricing_tab(actor) -> None:
    tiers = {key: {k: v for k, v in tier.to_dict().items() if k != "key"} for key, tier in get_configured_tiers().items()}
    st.caption("Tiers whose end date has passed cannot be changed.")
    text = st.text_area("Pricing tiers (JSON)", json.dumps(tiers, indent=2), height=360)
    if st.button("💾 Save pricing tiers", type="primary"):
        try:
            update_pricing_tiers(parse_tiers_json(text), utc_now(), actor)
            st.success("✅ Pricing tiers updated")
        except (ValueError, ValidationError) as e:
            st.error(f"❌ {e}")


def _render_abstracts_tab(actor) -> None:
    status = st.selectbox(
        "Status",
        ["", "submitted", "under-review", "accepted", "rejected", "final-submitted"],
        key="abstract_filter_status",
    )
    documents, total = abstract_service.list_abstracts(status=status or None, limit=200)
    st.caption(f"{total} abstract(s)")
    st.dataframe(
        [
            {
                "ID": d["abstract_id"],
                "Title": d["title"],
                "Category": d["category"],
                "Status": d["status"],
                "Average": d.get("average_score"),
                "Reviewers": len(d.get("assigned_reviewer_ids", [])),
            }
            for d in documents
        ],
        width='stretch',
        hide_index=True,
    )

    reviewers = {account.account_id: account.name or account.email for account in list_accounts(role="reviewer")}
    with st.form("assign_reviewers_form"):
        abstract_id = st.text_input("Abstract ID")
        selected = st.multiselect("Reviewers", list(reviewers.keys()), format_func=lambda key: reviewers[key])
        submit = st.form_submit_button("Assign")
    if submit:
        try:
            abstract_service.assign_reviewers(abstract_id.strip().upper(), selected, actor)
            st.success("✅ Reviewers assigned")
        except (NotFoundError, ValidationError) as e:
            st.error(f"❌ {e}")

    with st.form("abstract_decision_form"):
        abstract_id = st.text_input("Abstract ID", key="decision_abstract_id")
        decision = st.selectbox("Decision", ["accepted", "rejected"])
        approved_for = st.selectbox("Approved for", ["podium", "poster", "award-paper"])
        submit = st.form_submit_button("Apply decision", type="primary")
    if submit:
        try:
            abstract = abstract_service.apply_decision(
                abstract_id.strip().upper(), decision, actor, approved_for=approved_for,
                now=utc_now(), sender=_send_with_flask_mail,
            )
            st.success(f"✅ {abstract.abstract_id} {abstract.status}")
        except (NotFoundError, ValidationError) as e:
            st.error(f"❌ {e}")

    pending = abstract_service.get_pending_notifications()
    if st.button(f"📨 Send {len(pending)} pending decision email(s)", disabled=not pending):
        result = abstract_service.send_pending_notifications(actor, sender=_send_with_flask_mail)
        st.info(f"Sent {len(result['sent'])}, failed {len(result['errors'])}")


def _render_emails_tab(actor) -> None:
    records, _ = email_service.get_emails(limit=500)
    counts = email_status_counts(records)
    metric_cols = st.columns(3)
    for column, (status, count) in zip(metric_cols, counts.items()):
        column.metric(status.capitalize(), count)

    if st.button("▶️ Send queued emails", disabled=counts["queued"] == 0):
        result = email_service.process_queue(_send_with_flask_mail)
        st.info(f"Sent {len(result['sent'])}, failed {len(result['failed'])}")

    for record in records:
        if record["status"] != "failed":
            continue
        col1, col2 = st.columns([4, 1])
        with col1:
            st.markdown(f"**{record['subject']}** to {record['recipient_email']}")
            st.caption(record.get("error") or "")
        with col2:
            if st.button("↻ Requeue", key=f"requeue_{record['email_id']}"):
                success, message = email_service.requeue(record["email_id"], actor)
                (st.success if success else st.error)(message)


def _render_audit_tab() -> None:
    search = st.text_input("Search audit log", key="audit_search")
    entries, total = audit_service.get_audit_logs(search=search or None, limit=100)
    st.caption(f"{total} entr{'y' if total == 1 else 'ies'}")
    st.dataframe(
        [
            {
                "Time": e["timestamp"],
                "Actor": e["actor"]["email"],
                "Action": e["action"],
                "Resource": f"{e['resource_type']}:{e['resource_id']}",
                "Description": e.get("description", ""),
            }
            for e in entries
        ],
        width='stretch',
        hide_index=True,
    )


def _render_errors_tab(actor) -> None:
    show_resolved = st.checkbox("Show resolved", value=False)
    documents, total = error_service.get_errors(resolved=None if show_resolved else False, limit=100)
    st.caption(f"{total} error(s)")
    for document in documents:
        with st.expander(f"[{document['severity']}] {document['message']} × {document['occurrences']}"):
            st.caption(f"{document['category']} · last seen {document['last_occurrence']}")
            if document.get("stack"):
                st.code(document["stack"])
            if not document.get("resolved"):
                notes = st.text_input("Resolution notes", key=f"notes_{document['error_id']}")
                if st.button("Mark resolved", key=f"resolve_{document['error_id']}"):
                    error_service.resolve_error(document["error_id"], actor, notes=notes, now=utc_now())
                    st.rerun()


def render_admin_panel():
    """Render admin management panel."""
    try:
        if not is_admin_authenticated():
            render_login_page()
            return

        actor = current_admin_actor()
        if actor is None:
            render_login_page()
            return

        _inject_admin_styles()
        st.markdown(
            html_block(
                f"""
                <div class="desk-banner">
                    <h2>📊 Admin panel</h2>
                    <span>Signed in as {html.escape(actor.email)}</span>
                </div>
                """
            ),
            unsafe_allow_html=True,
        )

        _, home_col, logout_col = st.columns([4, 1, 1], gap="small")
        with home_col:
            if st.button("🏠 Home", width='stretch'):
                st.session_state.current_page = "dashboard"
                st.rerun()
        with logout_col:
            if st.button("🚪 Log out", width='stretch'):
                logout_admin()
                st.session_state.current_page = "dashboard"
                st.rerun()

        tabs = st.tabs(["Registrations", "Pricing", "Abstracts", "Emails", "Audit log", "Errors"])
        with tabs[0]:
            _render_registrations_tab(actor)
        with tabs[1]:
            _render_pricing_tab(actor)
        with tabs[2]:
            _render_abstracts_tab(actor)
        with tabs[3]:
            _render_emails_tab(actor)
        with tabs[4]:
            _render_audit_tab()
        with tabs[5]:
            _render_errors_tab(actor)

    except Exception as error:
        _show_admin_exception(error, "Rendering admin panel")
