"""App factory and runtime wiring entrypoint."""


def create_app():
    """Return the Flask app instance used by WSGI entrypoints."""
    from gamepanel.main import app

    return app
