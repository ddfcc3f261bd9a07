"""
Process entry point: load settings, bind the port, serve with uvicorn.

The socket is bound before uvicorn starts so a busy port is reported as a
`BindError` and the process exits non-zero without serving anything.
"""

from __future__ import annotations

import socket

import structlog
import uvicorn
from fastapi import FastAPI
from pydantic import ValidationError

from demo_app.config import Settings, get_settings
from demo_app.errors import BindError, DemoAppError
from demo_app.main import create_app
from demo_app.observability.logging import configure_logging


logger = structlog.get_logger(__name__)


def bind_socket(host: str, port: int) -> socket.socket:
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((host, port))
    except OSError as exc:
        sock.close()
        raise BindError(host, port, exc.strerror or str(exc)) from exc
    sock.set_inheritable(True)
    return sock


def build_server(app: FastAPI, settings: Settings) -> uvicorn.Server:
    config = uvicorn.Config(
        app,
        host=settings.host,
        port=settings.port,
        log_config=None,
        access_log=False,
        timeout_keep_alive=settings.keep_alive_timeout,
    )
    return uvicorn.Server(config)


def main() -> int:
    try:
        settings = get_settings()
    except ValidationError as exc:
        configure_logging()
        logger.error("invalid_configuration", error=str(exc))
        return 1

    configure_logging(settings.log_level)

    try:
        app = create_app(settings)
        sock = bind_socket(settings.host, settings.port)
    except DemoAppError as exc:
        logger.error("startup_failed", error_kind=type(exc).__name__, error=str(exc))
        return 1
    except Exception as exc:
        logger.exception("startup_failed", error_kind=type(exc).__name__, error=str(exc))
        return 1

    host, port = sock.getsockname()[:2]
    logger.info("server_started", host=host, port=port)

    server = build_server(app, settings)
    try:
        # uvicorn handles SIGINT/SIGTERM and returns once connections drain.
        server.run(sockets=[sock])
    finally:
        sock.close()

    if not server.started:
        logger.error("startup_failed", error_kind="ServerStartupError", error="uvicorn did not start")
        return 1

    logger.info("server_stopped")
    return 0
