"""Flask route registration for the panel API."""

from gamepanel.routes.schedule_routes import register_schedule_routes
from gamepanel.routes.server_routes import register_server_routes


def register_routes(app, state):
    """Register every panel API route on ``app``."""
    register_server_routes(app, state)
    register_schedule_routes(app, state)
