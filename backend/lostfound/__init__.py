import click
from flask import Flask
from dotenv import load_dotenv
from sqlalchemy import text
from werkzeug.middleware.proxy_fix import ProxyFix

from .clock import Clock
from .config import get_config
from .errors import register_error_handlers
from .extensions import db, migrate, cors
from .logging_config import setup_logging
from .modules.notifications.bus import Notifier


def create_app(
    config_name: str | None = None,
    notifier: Notifier | None = None,
    clock: Clock | None = None,
    overrides: dict | None = None,
) -> Flask:
    app = Flask(__name__)

    # Ensure .env is loaded before reading env vars
    load_dotenv()
    app.config.from_object(get_config(config_name))
    if overrides:
        app.config.update(overrides)

    setup_logging(app.config.get("LOG_LEVEL", "INFO"), json_logs=not app.config.get("DEBUG", False))

    # Honor proxy headers from Nginx for correct url_for(_external=True) scheme/host
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1, x_prefix=1)  # type: ignore[assignment]

    # Init extensions
    cors.init_app(app)
    db.init_app(app)
    migrate.init_app(app, db)
    from . import models  # noqa: F401  register tables with the metadata

    from .modules.matches.service import build_match_resolution
    build_match_resolution(app, notifier=notifier, clock=clock)

    register_error_handlers(app)

    # Register blueprints (v1 API)
    from .apis.v1 import register_api
    register_api(app)

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    @app.get("/db-check")
    def db_check():
        try:
            db.session.execute(text("SELECT 1"))
            return {"db": "ok"}
        except Exception as e:
            return {"db": "error", "message": str(e)}, 500

    @app.cli.command("expire-matches")
    def expire_matches_command() -> None:
        """Expire every active match whose handover window has elapsed."""
        from .modules.matches.service import get_match_resolution
        expired = get_match_resolution().scheduler.sweep()
        click.echo(f"expired {len(expired)} match(es)")

    @app.cli.command("reschedule-expirations")
    def reschedule_expirations_command() -> None:
        """Re-arm in-process expiration timers after a restart."""
        from .modules.matches.service import get_match_resolution
        count = get_match_resolution().scheduler.reschedule_pending()
        click.echo(f"armed {count} timer(s)")

    return app
