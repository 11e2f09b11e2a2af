"""Flask routes for the Zero-G planner."""

from zerog.routes.events import events_bp
from zerog.routes.tasks import tasks_bp

__all__ = [
    "events_bp",
    "tasks_bp",
]


def register_blueprints(app):
    """Register all blueprints with the Flask app.

    Args:
        app: The Flask application instance.
    """
    app.register_blueprint(tasks_bp, url_prefix="/api")
    app.register_blueprint(events_bp, url_prefix="/api")
