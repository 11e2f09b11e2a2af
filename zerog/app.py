"""Flask application factory for the Zero-G planner.

Wires the planner session into a small HTTP surface for UI clients:

- ConfigService: config.yaml loading and env overrides
- PlannerSession: TaskStore, SyncGateway, NotificationScheduler, EventBus
- Routes: /api task operations and the /api/events SSE stream

Usage:
    from zerog.app import create_app
    app = create_app()
    app.run(port=5050)
"""

import atexit
import logging
import os
from pathlib import Path

from flask import Flask, jsonify

from zerog.models.identity import UserIdentity
from zerog.routes import register_blueprints
from zerog.services import PlannerSession, get_config_service

logger = logging.getLogger(__name__)


def _load_dotenv(env_file: str | Path = ".env") -> None:
    """Load environment variables from .env file if it exists."""
    env_file = Path(env_file)
    if env_file.exists():
        with open(env_file) as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#") and "=" in line:
                    key, value = line.split("=", 1)
                    key = key.strip()
                    value = value.strip().strip('"').strip("'")
                    if key and key not in os.environ:
                        os.environ[key] = value


def create_app(
    config_path: str = "config.yaml",
    session: PlannerSession | None = None,
) -> Flask:
    """Create and configure the Flask application.

    Args:
        config_path: Path to the configuration file.
        session: Pre-built session (tests); one is built from config otherwise.

    Returns:
        Configured Flask application. The session is not started here.
    """
    config_service = get_config_service(config_path)
    config = session.config if session is not None else config_service.get_config()

    app = Flask(__name__)
    app.config["TESTING"] = False

    app.extensions["config"] = config
    app.extensions["config_service"] = config_service
    app.extensions["planner_session"] = session or PlannerSession(config)

    register_blueprints(app)

    @app.route("/health")
    def health():
        planner = app.extensions["planner_session"]
        return jsonify(
            {
                "status": "ok",
                "session_started": planner.started,
                "sync_pending": planner.gateway.pending,
                "reminders_pending": len(planner.scheduler.pending_ids),
            }
        )

    return app


def _identity_from_env() -> UserIdentity | None:
    email = os.environ.get("ZEROG_USER_EMAIL")
    if not email:
        return None
    return UserIdentity(email=email, name=os.environ.get("ZEROG_USER_NAME"))


def main():
    """Run the Flask application."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    _load_dotenv()

    app = create_app()
    config = app.extensions["config"]
    session = app.extensions["planner_session"]

    session.identity = _identity_from_env()
    session.start()
    atexit.register(session.close)

    logger.info(f"Starting Zero-G planner on port {config.port}")
    app.run(host="0.0.0.0", port=config.port, debug=config.debug, threaded=True)


if __name__ == "__main__":
    main()
