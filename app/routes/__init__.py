"""
Routes package
Registers all blueprints
"""
from .api_capture import capture_api_bp
from .api_events import events_api_bp
from .api_verify import attendance_api_bp
from .api_system import system_api_bp


def register_blueprints(app):
    """Register every blueprint with the Flask app."""
    app.register_blueprint(capture_api_bp)
    app.register_blueprint(events_api_bp)
    app.register_blueprint(attendance_api_bp)
    app.register_blueprint(system_api_bp)

    app.logger.info("✅ All blueprints registered")
