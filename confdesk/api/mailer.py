"""Flask-Mail backed sender for the email outbox."""
from flask_mail import Mail, Message

mail = Mail()


def configure_mail(app, settings) -> None:
    """Copy mail settings onto the app config and bind Flask-Mail."""
    app.config.setdefault("MAIL_SERVER", settings.mail_server)
    app.config.setdefault("MAIL_PORT", settings.mail_port)
    app.config.setdefault("MAIL_USE_TLS", settings.mail_use_tls)
    app.config.setdefault("MAIL_USERNAME", settings.mail_username or None)
    app.config.setdefault("MAIL_PASSWORD", settings.mail_password or None)
    app.config.setdefault("MAIL_DEFAULT_SENDER", settings.mail_default_sender)
    app.config.setdefault("MAIL_SUPPRESS_SEND", settings.mail_suppress_send)
    mail.init_app(app)


def mail_sender(to: str, subject: str, body: str) -> None:
    """Send one plain-text email; must run inside an app context."""
    msg = Message(subject=subject, recipients=[to], body=body)
    mail.send(msg)
