"""
Conference registration desk.

Streamlit entry point. Two pages share one session: the public dashboard
and the admin panel (deep link with ?page=admin).
"""
import logging

import streamlit as st

from confdesk.services.auth_service import ensure_bootstrap_admin
from confdesk.ui.admin_panel import render_admin_panel
from confdesk.ui.dashboard import render_dashboard
from confdesk.ui.html_utils import html_block

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

PAGES = {
    "dashboard": render_dashboard,
    "admin": render_admin_panel,
}

THEME_CSS = """
<style>
.stApp { background: radial-gradient(circle at top left, #1e293b 0%, #0b1120 70%); }
#MainMenu, footer { visibility: hidden; }
[data-testid="stHeader"] { background: transparent; height: 0; }
.block-container { padding-top: 1.25rem; max-width: 1200px; }
.stButton > button, .stFormSubmitButton > button { border-radius: 10px; font-weight: 600; }
.stButton > button[kind="primary"], .stFormSubmitButton > button[kind="primary"] {
    background: linear-gradient(120deg, #0ea5e9 0%, #6366f1 100%);
    border: none;
}
</style>
"""

st.set_page_config(
    page_title="Conference Registration",
    page_icon="🎟️",
    layout="wide",
    initial_sidebar_state="collapsed",
)


def _go_to(page: str) -> None:
    st.session_state.current_page = page


def init_session() -> None:
    """First-run setup for a browser session."""
    if "current_page" in st.session_state:
        return
    requested = st.query_params.get("page", "dashboard")
    _go_to(requested if requested in PAGES else "dashboard")
    # Once per session; a no-op without ADMIN_PASSWORD
    ensure_bootstrap_admin()


def render_top_bar() -> None:
    brand, _, admin = st.columns([2, 5, 1], gap="small")
    with brand:
        st.button("🎟️ Registration desk", key="nav_home", on_click=_go_to, args=("dashboard",))
    with admin:
        st.button("👤 Admin", width='stretch', key="nav_admin", on_click=_go_to, args=("admin",))


def render_page() -> None:
    """Render the selected page behind an error boundary."""
    page = st.session_state.current_page
    try:
        PAGES[page]()
    except Exception as e:
        logger.exception(f"Page '{page}' failed to render")
        st.error("Something went wrong, please try again later")
        with st.expander("🔍 Error details"):
            st.code(f"{type(e).__name__}: {e}")
        st.button("Back to home", on_click=_go_to, args=("dashboard",))


def main():
    init_session()
    st.markdown(html_block(THEME_CSS), unsafe_allow_html=True)
    render_top_bar()
    render_page()


if __name__ == "__main__":
    main()
