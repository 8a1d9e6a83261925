"""Single-request transport to the peer with outcome classification.

Every call ends in exactly one of ``Success``, ``PeerUnreachable`` or
``InvalidResponse``; nothing raises past ``TransportClient.execute``.
Retrying is the caller's decision (see ``homeguard.peer.retry``).
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from homeguard.peer.requests import PeerRequest

logger = logging.getLogger(__name__)

AUTH_REJECTED = "auth_rejected"
BAD_STATUS = "bad_status"
MALFORMED_BODY = "malformed_body"
UNEXPECTED_SHAPE = "unexpected_shape"


@dataclass(frozen=True)
class Success:
    """Peer answered with HTTP 200 and, where expected, a JSON body."""

    payload: Any = None
    status_code: int = 200

    ok = True


@dataclass(frozen=True)
class PeerUnreachable:
    """No usable response: timeout, refused connection, network error."""

    reason: str

    ok = False


@dataclass(frozen=True)
class InvalidResponse:
    """Peer was reachable but the status or body was not what the operation expects."""

    reason: str
    status_code: int | None = None
    detail: str = ""

    ok = False

    @property
    def auth_rejected(self) -> bool:
        return self.reason == AUTH_REJECTED


PeerOutcome = Success | PeerUnreachable | InvalidResponse


class TransportClient:
    """Executes one ``PeerRequest`` against the peer's base URL."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "TransportClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def execute(self, request: PeerRequest) -> PeerOutcome:
        """Perform exactly one network call and classify the result."""
        logger.debug(
            "%s /%s %s", request.method, request.path, request.redacted_params()
        )
        try:
            # httpx timeouts are per phase; this bounds the whole exchange.
            async with asyncio.timeout(self.timeout):
                resp = await self._client.request(
                    request.method,
                    "/" + request.path,
                    params=request.params,
                    json=request.json,
                )
        except (TimeoutError, httpx.TimeoutException):
            return self._unreachable(request, "timeout")
        except httpx.TransportError as e:
            return self._unreachable(request, f"{type(e).__name__}: {e}")
        except httpx.HTTPError as e:
            return self._invalid(request, InvalidResponse(MALFORMED_BODY, detail=str(e)))

        if resp.status_code in (401, 403):
            return self._invalid(
                request, InvalidResponse(AUTH_REJECTED, resp.status_code, resp.text[:200])
            )
        if resp.status_code != 200:
            return self._invalid(
                request, InvalidResponse(BAD_STATUS, resp.status_code, resp.text[:200])
            )
        if not request.expect_json:
            return Success(status_code=resp.status_code)

        try:
            payload = resp.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return self._invalid(
                request, InvalidResponse(MALFORMED_BODY, resp.status_code, resp.text[:200])
            )
        return Success(payload=payload, status_code=resp.status_code)

    @staticmethod
    def _unreachable(request: PeerRequest, reason: str) -> PeerUnreachable:
        logger.warning("Peer unreachable on /%s: %s", request.path, reason)
        return PeerUnreachable(reason)

    @staticmethod
    def _invalid(request: PeerRequest, outcome: InvalidResponse) -> InvalidResponse:
        logger.warning(
            "Invalid response on /%s: %s (HTTP %s)",
            request.path,
            outcome.reason,
            outcome.status_code,
        )
        return outcome
