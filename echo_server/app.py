from typing import Optional

from fastapi import FastAPI

from echo_server import __version__
from echo_server.access_log import install_access_log
from echo_server.config import EchoSettings
from echo_server.metrics import install_metrics
from echo_server.routes import echo


def create_app(settings: Optional[EchoSettings] = None) -> FastAPI:
    """Build the echo app. Settings default to the current environment."""
    settings = settings or EchoSettings.from_env()

    app = FastAPI(
        title="Echo Server",
        description="Reflects request metadata back to the caller",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.settings = settings

    # Metrics route must be registered before the echo catch-all
    install_metrics(app, settings)
    install_access_log(app, settings)

    app.include_router(echo.router, tags=["echo"])
    return app
