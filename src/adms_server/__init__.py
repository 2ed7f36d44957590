import atexit
import logging
import os

from dotenv import load_dotenv
from flask import Flask
from flask_cors import CORS
import sentry_sdk
from sentry_sdk.integrations.flask import FlaskIntegration

load_dotenv()

from adms_server.config import settings  # noqa: E402  settings read the environment loaded above
from adms_server.shared import logger as _logger_setup  # noqa: E402,F401  handlers must exist before app.logger

# Terminals poll every few seconds; dashboards hold /live-events open
QUIET_PATHS = ('/iclock/getrequest', '/live-events')


class QuietPathFilter(logging.Filter):
    """Drops werkzeug access-log lines for polling endpoints"""

    def __init__(self, paths):
        super().__init__()
        self.paths = tuple(paths)

    def filter(self, record):
        return not any(path in record.getMessage() for path in self.paths)


def create_app():
    """Application factory for the ADMS push server"""
    init_sentry()

    app = Flask(__name__)
    app.config.from_object("adms_server.config.settings")
    CORS(app,
         origins=["*"],
         allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
         methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"])

    logging.getLogger('werkzeug').addFilter(QuietPathFilter(QUIET_PATHS))

    _register_blueprints(app)
    _register_db_teardown(app)
    _seed_settings(app)

    if settings.SCHEDULER_ENABLED:
        _start_scheduler(app)

    return app


def _register_blueprints(app):
    from adms_server.api.events import bp as live_events_bp
    from adms_server.api.management import bp as management_bp
    from adms_server.api.push_devices import push_devices_bp

    for blueprint in (push_devices_bp, management_bp, live_events_bp):
        app.register_blueprint(blueprint)
    app.logger.info(f"ADMS routes registered ({len(app.blueprints)} blueprints)")


def _register_db_teardown(app):
    from adms_server.database.connection import db_manager

    @app.teardown_appcontext
    def close_request_connection(exception=None):
        try:
            db_manager.close_connection()
        except Exception as e:
            app.logger.debug(f"Error closing request connection: {e}")


def _seed_settings(app):
    from adms_server.repositories import setting_repo

    try:
        setting_repo.initialize_defaults()
    except Exception as e:
        app.logger.error(f"Failed to seed default settings: {e}")


def _start_scheduler(app):
    from adms_server.database.connection import db_manager
    from adms_server.services.scheduler_service import scheduler_service

    # Under the reloader only the child process (WERKZEUG_RUN_MAIN == "true") runs jobs
    if os.environ.get('WERKZEUG_RUN_MAIN') not in ('true', None):
        app.logger.info("[CRON] Reloader parent process, scheduler not started")
        return

    try:
        scheduler_service.start()
    except Exception as e:
        app.logger.error(f"[CRON] Scheduler failed to start: {e}")
        return

    @atexit.register
    def shutdown():
        try:
            scheduler_service.stop()
        except Exception as e:
            app.logger.error(f"[CRON] Error stopping scheduler: {e}")
        db_manager.close_all_connections()
        app.logger.info("ADMS server stopped")


def init_sentry():
    """Report errors to Sentry when SENTRY_DSN is set"""
    if not settings.SENTRY_DSN:
        return
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        integrations=[FlaskIntegration()],
        traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.1")),
    )
