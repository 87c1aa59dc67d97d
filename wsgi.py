"""WSGI entry point for the JSON API: `flask --app wsgi run` or any WSGI server."""
import logging

from confdesk.api.app import create_app
from confdesk.services.auth_service import ensure_bootstrap_admin

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = create_app()
ensure_bootstrap_admin()

if __name__ == "__main__":
    app.run(debug=False)
