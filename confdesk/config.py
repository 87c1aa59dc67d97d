"""Application settings loaded from the environment and an optional .env file."""
import os
from dataclasses import dataclass
from pathlib import Path
from threading import Lock

_ENV_LOADED = False
_ENV_LOCK = Lock()

ENV_KEYS = {
    "CONFDESK_DATA_DIR",
    "SECRET_KEY",
    "ADMIN_EMAIL",
    "ADMIN_PASSWORD",
    "GATEWAY_KEY_ID",
    "GATEWAY_KEY_SECRET",
    "GATEWAY_API_URL",
    "GATEWAY_WEBHOOK_SECRET",
    "GST_PERCENT",
    "CURRENCY",
    "MAIL_SERVER",
    "MAIL_PORT",
    "MAIL_USE_TLS",
    "MAIL_USERNAME",
    "MAIL_PASSWORD",
    "MAIL_DEFAULT_SENDER",
    "MAIL_SUPPRESS_SEND",
}


def load_env(env_path: str = ".env") -> None:
    """Load known settings from .env file if present; real env vars win."""
    global _ENV_LOADED

    if _ENV_LOADED:
        return

    with _ENV_LOCK:
        if _ENV_LOADED:
            return

        path = Path(env_path)
        if path.exists():
            for raw_line in path.read_text(encoding="utf-8").splitlines():
                line = raw_line.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue

                key, value = line.split("=", 1)
                key = key.strip()
                value = value.strip().strip('"\'')

                if key in ENV_KEYS and key not in os.environ:
                    os.environ[key] = value

        _ENV_LOADED = True


def _flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class Settings:
    """Resolved runtime settings."""

    data_dir: str
    secret_key: str
    admin_email: str
    admin_password: str
    gateway_key_id: str
    gateway_key_secret: str
    gateway_api_url: str
    gateway_webhook_secret: str
    gst_percent: float
    currency: str
    mail_server: str
    mail_port: int
    mail_use_tls: bool
    mail_username: str
    mail_password: str
    mail_default_sender: str
    mail_suppress_send: bool


def get_settings() -> Settings:
    """Read settings fresh from the environment (after loading .env once)."""
    load_env()
    return Settings(
        data_dir=os.getenv("CONFDESK_DATA_DIR", "data"),
        secret_key=os.getenv("SECRET_KEY", "dev-secret-key"),
        admin_email=os.getenv("ADMIN_EMAIL", "admin@example.org"),
        admin_password=os.getenv("ADMIN_PASSWORD", ""),
        gateway_key_id=os.getenv("GATEWAY_KEY_ID", ""),
        gateway_key_secret=os.getenv("GATEWAY_KEY_SECRET", ""),
        gateway_api_url=os.getenv("GATEWAY_API_URL", "https://api.razorpay.com/v1"),
        gateway_webhook_secret=os.getenv("GATEWAY_WEBHOOK_SECRET", ""),
        gst_percent=float(os.getenv("GST_PERCENT", "18")),
        currency=os.getenv("CURRENCY", "INR"),
        mail_server=os.getenv("MAIL_SERVER", "localhost"),
        mail_port=int(os.getenv("MAIL_PORT", "25")),
        mail_use_tls=_flag("MAIL_USE_TLS", False),
        mail_username=os.getenv("MAIL_USERNAME", ""),
        mail_password=os.getenv("MAIL_PASSWORD", ""),
        mail_default_sender=os.getenv("MAIL_DEFAULT_SENDER", "noreply@example.org"),
        mail_suppress_send=_flag("MAIL_SUPPRESS_SEND", True),
    )


def collection_path(name: str) -> str:
    """Path of the JSON file backing a collection."""
    return os.path.join(get_settings().data_dir, f"{name}.json")
