"""HomeGuard controller entrypoint."""

import base64
import binascii
import logging
import secrets
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from homeguard.config import load_config, settings
from homeguard.controller import Controller, build_controller
from homeguard.database import init_db, new_session
from homeguard.registry.store import seed_default_devices

logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)


async def start_controller(app: FastAPI) -> Controller | None:
    """Build and start the peer controller from fresh configuration."""
    controller = build_controller(load_config(), new_session)
    if controller is None:
        logger.info("No peer controller running")
    else:
        await controller.start()
        logger.info("Peer controller started (%s)", controller.client.transport.base_url)
    app.state.controller = controller
    return controller


async def stop_controller(app: FastAPI) -> None:
    controller = getattr(app.state, "controller", None)
    if controller is not None:
        await controller.stop()
        logger.info("Peer controller stopped")
    app.state.controller = None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application startup/shutdown lifecycle."""
    init_db()
    logger.info("Database initialized")
    with new_session() as session:
        seed_default_devices(session)

    await start_controller(app)

    yield

    await stop_controller(app)


app = FastAPI(
    title="HomeGuard",
    description="Controller for a HomeGuard peer: commands, automation rules, sensors",
    version="0.1.0",
    lifespan=lifespan,
)


# Applied to every response; the service only ever returns JSON.
SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "Cache-Control": "no-store",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers.update(SECURITY_HEADERS)
        return response


def parse_basic_credentials(header: str) -> tuple[str, str] | None:
    """Split an ``Authorization: Basic`` header into (username, password)."""
    scheme, _, encoded = header.partition(" ")
    if scheme.lower() != "basic" or not encoded:
        return None
    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    username, sep, password = decoded.partition(":")
    return (username, password) if sep else None


class BasicAuthMiddleware(BaseHTTPMiddleware):
    """HTTP Basic Authentication for the local API.

    Paths in ``exempt`` (by default only /health) pass without credentials.
    """

    def __init__(
        self,
        app,
        username: str,
        password: str,
        realm: str = "HomeGuard",
        exempt: frozenset[str] = frozenset({"/health"}),
    ):
        super().__init__(app)
        self.username = username
        self.password = password
        self.realm = realm
        self.exempt = exempt

    def _authorized(self, header: str) -> bool:
        credentials = parse_basic_credentials(header)
        if credentials is None:
            return False
        username, password = credentials
        # Constant-time, and both are always compared
        user_ok = secrets.compare_digest(username.encode(), self.username.encode())
        pass_ok = secrets.compare_digest(password.encode(), self.password.encode())
        return user_ok and pass_ok

    async def dispatch(self, request, call_next):
        if request.url.path in self.exempt:
            return await call_next(request)
        if not self._authorized(request.headers.get("Authorization", "")):
            logger.debug("Rejected unauthenticated request to %s", request.url.path)
            return JSONResponse(
                {"detail": "Unauthorized"},
                status_code=401,
                headers={"WWW-Authenticate": f'Basic realm="{self.realm}"'},
            )
        return await call_next(request)


if settings.auth_password:
    app.add_middleware(
        BasicAuthMiddleware, username=settings.auth_username, password=settings.auth_password
    )
    logger.info("HTTP Basic Auth enabled")

# Added last so it wraps auth and 401s get the headers too
app.add_middleware(SecurityHeadersMiddleware)


from homeguard.api.routes import router as api_router  # noqa: E402

app.include_router(api_router)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


def main() -> None:
    import uvicorn

    logger.info("Starting HomeGuard on %s:%d", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
