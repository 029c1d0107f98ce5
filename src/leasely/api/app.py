"""ASGI entrypoint. Routes depend on APP_ROLE (public or worker)."""

from .factory import create_app

app = create_app()
