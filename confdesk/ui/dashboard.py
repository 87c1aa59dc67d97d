"""Public dashboard: current pricing, fee calculator, sign-up and status lookup."""
import html
import logging
from typing import Any, Dict, List, Tuple

import streamlit as st

from confdesk.models.pricing import PricingTier
from confdesk.services.pricing_service import calculate_price, get_current_pricing, list_workshops
from confdesk.services.registration_service import (
    create_registration,
    find_by_email,
    get_registration_status,
    submit_bank_transfer,
)
from confdesk.ui.html_utils import html_block, pill
from confdesk.utils.date_utils import utc_now
from confdesk.utils.exceptions import (
    PricingNotConfiguredError,
    RegistrantNotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

TIER_STYLES = {
    "earlyBird": {
        "label": "Early Bird",
        "badge": "linear-gradient(135deg, #60a5fa 0%, #a855f7 100%)",
    },
    "regular": {
        "label": "Regular",
        "badge": "linear-gradient(135deg, #a855f7 0%, #ec4899 100%)",
    },
    "onsite": {
        "label": "On-site",
        "badge": "linear-gradient(135deg, #f97316 0%, #ef4444 100%)",
    },
}

STATUS_CONFIG = {
    "pending": {"label": "Pending", "color": "#fbbf24"},
    "pending-payment": {"label": "Payment under verification", "color": "#f59e0b"},
    "paid": {"label": "Paid", "color": "#22d3ee"},
    "confirmed": {"label": "Confirmed", "color": "#10b981"},
    "cancelled": {"label": "Cancelled", "color": "#f87171"},
    "refunded": {"label": "Refunded", "color": "#94a3b8"},
}

FEEDBACK_KEY = "dashboard_feedback"


def format_amount(amount: float, currency: str = "INR") -> str:
    """Format a price such as 'INR 12,500'."""
    if float(amount).is_integer():
        return f"{currency} {int(amount):,}"
    return f"{currency} {amount:,.2f}"


def tier_rows(tier: PricingTier) -> List[Dict[str, str]]:
    """Rows for the price table, cheapest first."""
    rows = [
        {"Category": category.label, "Fee": format_amount(category.amount, category.currency)}
        for category in tier.categories.values()
    ]
    amounts = [category.amount for category in tier.categories.values()]
    return [row for _, row in sorted(zip(amounts, rows), key=lambda pair: pair[0])]


def status_badge(status: str) -> str:
    """HTML badge for a registration status."""
    config = STATUS_CONFIG.get(status, {"label": status, "color": "#94a3b8"})
    return pill(config["label"], config["color"])


def breakdown_rows(quote: Dict[str, Any]) -> List[Dict[str, str]]:
    """Line items of a fee quote for display."""
    currency = quote["currency"]
    rows = [{"Item": quote["breakdown"]["category_label"], "Amount": format_amount(quote["base_amount"], currency)}]
    for workshop in quote["breakdown"]["workshops"]:
        rows.append({"Item": f"Workshop: {workshop['name']}", "Amount": format_amount(workshop["amount"], currency)})
    if quote["accompanying_fees"]:
        rows.append({
            "Item": f"Accompanying persons ({quote['breakdown']['paying_accompanying_persons']})",
            "Amount": format_amount(quote["accompanying_fees"], currency),
        })
    if quote["discount"]:
        rows.append({"Item": "Discount", "Amount": f"- {format_amount(quote['discount'], currency)}"})
    rows.append({"Item": "GST", "Amount": format_amount(quote["gst"], currency)})
    rows.append({"Item": "Total payable", "Amount": format_amount(quote["grand_total"], currency)})
    return rows


def _render_tier_card(tier: PricingTier) -> None:
    style = TIER_STYLES.get(tier.key, TIER_STYLES["regular"])
    st.markdown(
        html_block(
            f"""
            <div style="background:#16213e;border-radius:16px;padding:20px;margin-bottom:16px;">
                <span style="background:{style['badge']};color:white;border-radius:999px;padding:4px 14px;font-weight:700;">
                {style['label']}
                </span>
                <h3 style="color:#f1f5f9;margin:12px 0 4px 0;">{html.escape(tier.name)}</h3>
                <div style="color:#94a3b8;">{tier.start_date} to {tier.end_date}</div>
            </div>
            """
        ),
        unsafe_allow_html=True,
    )
    st.table(tier_rows(tier))


def _render_calculator(tier: PricingTier) -> None:
    st.markdown("### 🧮 Fee calculator")
    workshops = list_workshops()
    with st.form("fee_calculator_form"):
        category = st.selectbox(
            "Registration category",
            options=list(tier.categories.keys()),
            format_func=lambda key: tier.categories[key].label,
        )
        age = st.number_input("Your age", min_value=0, max_value=120, value=30)
        selected = st.multiselect(
            "Workshops",
            options=[w["id"] for w in workshops],
            format_func=lambda workshop_id: next(w["name"] for w in workshops if w["id"] == workshop_id),
        )
        adults = st.number_input("Accompanying adults", min_value=0, max_value=10, value=0)
        children = st.number_input("Accompanying children (under 10)", min_value=0, max_value=10, value=0)
        discount_code = st.text_input("Discount code")
        submit = st.form_submit_button("Calculate", type="primary")

    if submit:
        persons = [{"name": "adult", "age": 30}] * int(adults) + [{"name": "child", "age": 5}] * int(children)
        try:
            quote = calculate_price(
                category,
                utc_now(),
                workshop_ids=selected,
                accompanying_persons=persons,
                age=int(age),
                discount_code=discount_code.strip() or None,
            )
        except (ValidationError, PricingNotConfiguredError) as e:
            st.error(f"❌ {e}")
            return
        st.table(breakdown_rows(quote))


def _render_signup(tier: PricingTier) -> None:
    st.markdown("### 📝 Register")
    with st.form("registration_form", clear_on_submit=False):
        col1, col2 = st.columns(2)
        with col1:
            first_name = st.text_input("First name", max_chars=50)
            email = st.text_input("Email")
            institution = st.text_input("Institution")
        with col2:
            last_name = st.text_input("Last name", max_chars=50)
            phone = st.text_input("Phone")
            age = st.number_input("Age", min_value=0, max_value=120, value=30)
        category = st.selectbox(
            "Category",
            options=list(tier.categories.keys()),
            format_func=lambda key: tier.categories[key].label,
            key="registration_category",
        )
        submit = st.form_submit_button("Register", type="primary")

    if submit:
        try:
            registrant = create_registration(
                {
                    "email": email,
                    "first_name": first_name,
                    "last_name": last_name,
                    "institution": institution,
                    "phone": phone,
                    "age": int(age),
                    "category": category,
                },
                utc_now(),
            )
        except (ValidationError, PricingNotConfiguredError) as e:
            st.error(f"❌ {e}")
            return
        st.session_state[FEEDBACK_KEY] = (
            f"🎉 Registered! Your registration ID is {registrant.registration_id}. "
            "Keep it to submit payment and check your status."
        )
        st.rerun()


def submit_owned_bank_transfer(registration_id: str, email: str, utr: str, amount: float) -> Tuple[bool, str]:
    """Submit a bank transfer only when the email owns the registration ID."""
    registration_id = registration_id.strip().upper()
    registrant = find_by_email(email) if email.strip() else None
    if registrant is None or registrant.registration_id != registration_id:
        return False, "Registration ID and email do not match"
    return submit_bank_transfer(registration_id, utr, amount, now=utc_now())


def _render_bank_transfer() -> None:
    st.markdown("### 🏦 Submit bank transfer")
    with st.form("bank_transfer_form"):
        registration_id = st.text_input("Registration ID", placeholder="REG-0001")
        email = st.text_input("Email used to register", key="bank_transfer_email")
        utr = st.text_input("UTR / transaction reference", help="At least 12 characters")
        amount = st.number_input("Amount paid", min_value=0.0, step=100.0)
        submit = st.form_submit_button("Submit payment")

    if submit:
        success, message = submit_owned_bank_transfer(registration_id, email, utr, float(amount))
        if success:
            st.success(f"✅ {message}")
        else:
            st.error(f"❌ {message}")


def _render_status_lookup() -> None:
    st.markdown("### 🔎 Check registration status")
    with st.form("status_lookup_form"):
        registration_id = st.text_input("Registration ID", placeholder="REG-0001", key="status_lookup_id")
        submit = st.form_submit_button("Check")

    if submit:
        try:
            status = get_registration_status(registration_id.strip().upper())
        except RegistrantNotFoundError:
            st.error("❌ Registration not found")
            return
        st.markdown(f"**{html.escape(status['name'])}** · {status['category']}")
        st.markdown(status_badge(status["status"]), unsafe_allow_html=True)
        if status["payment_status"]:
            st.caption(f"Payment: {status['payment_status']}")


def render_dashboard():
    """Render the public dashboard page."""
    st.markdown("<h1 style='color:#f1f5f9;'>🎟️ Conference Registration</h1>", unsafe_allow_html=True)

    feedback = st.session_state.pop(FEEDBACK_KEY, None)
    if feedback:
        st.success(feedback)

    try:
        tier = get_current_pricing(utc_now())
    except PricingNotConfiguredError:
        st.warning("Registration pricing has not been published yet. Please check back later.")
        _render_status_lookup()
        return

    left, right = st.columns([3, 2], gap="large")
    with left:
        _render_tier_card(tier)
        _render_signup(tier)
    with right:
        _render_calculator(tier)
        _render_bank_transfer()
        _render_status_lookup()
