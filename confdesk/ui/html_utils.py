"""HTML snippets rendered through st.markdown(unsafe_allow_html=True)."""
import html
from textwrap import dedent


def html_block(template: str) -> str:
    """
    Flatten indented markup for Streamlit.

    Lines with four or more leading spaces would otherwise be rendered as
    Markdown code blocks.
    """
    return "\n".join(line.lstrip() for line in dedent(template).splitlines()).strip()


def pill(label: str, color: str) -> str:
    """Rounded label in the given hex color; the label is escaped."""
    return html_block(
        f"""
        <span style="background:{color}33;color:{color};border:1px solid {color};
        border-radius:999px;padding:2px 12px;font-weight:600;">{html.escape(label)}</span>
        """
    )
