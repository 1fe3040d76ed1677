"""
Application assembly.

Builds the FastAPI app around an explicit connection pool and wraps it in a
uvicorn server bound to a pre-bound listener. Nothing runs until the caller
awaits ``Application.serve()``, so the server can be driven alongside other
tasks (the test harness runs it as a background task).
"""

import logging
import socket
from contextlib import asynccontextmanager
from dataclasses import dataclass

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from sqlalchemy.ext.asyncio import AsyncEngine

from newsletter.config import ServerSettings
from newsletter.models.subscription import SubscriptionOutcome
from newsletter.routes.greet import router as greet_router
from newsletter.routes.health_check import router as health_check_router
from newsletter.routes.subscriptions import outcome_response
from newsletter.routes.subscriptions import router as subscriptions_router

logger = logging.getLogger(__name__)


class BindError(RuntimeError):
    """Raised when the listener cannot be bound. Always fatal at startup."""


# ---------------------------------------------------------------------------
# Application lifespan (startup / shutdown)
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Log startup and release the pool on shutdown."""
    logger.info("Application is ready.")

    yield

    logger.info("Shutting down …")
    await app.state.pool.dispose()
    logger.info("Shutdown complete.")


# ---------------------------------------------------------------------------
# FastAPI app instance
# ---------------------------------------------------------------------------

def build_app(pool: AsyncEngine) -> FastAPI:
    """Create the application with *pool* attached as shared state."""
    app = FastAPI(
        title="Newsletter Subscription Service",
        description="Validates and stores mailing-list subscribers.",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.pool = pool

    app.include_router(health_check_router)
    app.include_router(greet_router)
    app.include_router(subscriptions_router)

    @app.exception_handler(RequestValidationError)
    async def rejected_request_handler(request: Request, exc: RequestValidationError) -> Response:
        """Extraction failures never reach a handler; answer 400 with no body."""
        return outcome_response(SubscriptionOutcome.REJECTED)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> Response:
        """Catch-all so unhandled errors never leak details to the client."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return Response(status_code=500)

    return app


# ---------------------------------------------------------------------------
# Listener / server
# ---------------------------------------------------------------------------

def bind_listener(settings: ServerSettings) -> socket.socket:
    """
    Bind and listen on ``settings.address``.

    Connections arriving before the server starts wait in the backlog.

    Raises:
        BindError: If the address is in use or not permitted.
    """
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        listener.bind((settings.host, settings.port))
        listener.listen()
    except OSError as exc:
        listener.close()
        raise BindError(f"Failed to bind to {settings.address}") from exc

    logger.info("Listening on %s:%d", *listener.getsockname()[:2])
    return listener


@dataclass
class Application:
    """A configured server and the listener it will serve on."""

    server: uvicorn.Server
    listener: socket.socket

    @property
    def port(self) -> int:
        return self.listener.getsockname()[1]

    @property
    def address(self) -> str:
        host = self.listener.getsockname()[0]
        return f"http://{host}:{self.port}"

    async def serve(self) -> None:
        """Run until ``stop()`` is called or the process is signalled."""
        await self.server.serve(sockets=[self.listener])

    def stop(self) -> None:
        self.server.should_exit = True


def run(listener: socket.socket, pool: AsyncEngine) -> Application:
    """Wire routes and *pool* into a server for *listener* without starting it."""
    config = uvicorn.Config(
        build_app(pool),
        log_config=None,
        lifespan="on",
    )
    return Application(server=uvicorn.Server(config), listener=listener)
