import weakref
from typing import Optional

import typer
from aiohttp import web

from .api import SERVICE_KEY, SETTINGS_KEY, WEBSOCKETS_KEY, close_websockets, error_middleware, setup_routes
from .config import Settings
from .repo import JsonFileStore, Store
from .service import ChatService, logger  # Reuse the same logger

cli = typer.Typer(help="Group chat and WebRTC signaling relay server")


def build_app(settings: Optional[Settings] = None, store: Optional[Store] = None) -> web.Application:
    """Assemble the chat server application.

    Initializes all required components:
    - Document store (JSON file unless one is passed in)
    - Chat service with its repositories, session registry and hub
    - HTTP routes and the WebSocket endpoint

    Args:
        settings (Settings, optional): Server settings. Defaults to Settings()
        store (Store, optional): Store to use instead of settings.data_path

    Returns:
        web.Application: Ready to run aiohttp application
    """
    settings = settings or Settings()
    if store is None:
        store = JsonFileStore(settings.data_path)
    app = web.Application(middlewares=[error_middleware])
    app[SETTINGS_KEY] = settings
    app[SERVICE_KEY] = ChatService(
        store,
        bcrypt_rounds=settings.bcrypt_rounds,
        strict_membership=settings.strict_membership,
    )
    app[WEBSOCKETS_KEY] = weakref.WeakSet()
    app.on_shutdown.append(close_websockets)
    setup_routes(app)
    return app


@cli.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Interface to bind, overrides CHATRELAY_HOST"),
    port: Optional[int] = typer.Option(None, help="Port to listen on, overrides CHATRELAY_PORT"),
    data_path: Optional[str] = typer.Option(None, help="JSON store path, overrides CHATRELAY_DATA_PATH"),
):
    """Start the chat server."""
    overrides = {k: v for k, v in {"host": host, "port": port, "data_path": data_path}.items() if v is not None}
    settings = Settings(**overrides)
    app = build_app(settings)
    logger.info(f"Server starting, listening on {settings.host}:{settings.port}")
    web.run_app(app, host=settings.host, port=settings.port, print=None)
    logger.info("Server stopped")


if __name__ == "__main__":
    cli()
