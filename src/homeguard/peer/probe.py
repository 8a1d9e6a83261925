"""Peer connectivity probe and the loop that projects it onto devices."""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from sqlmodel import Session

from homeguard.peer.client import PeerClient
from homeguard.peer.transport import InvalidResponse, PeerUnreachable, Success
from homeguard.registry.store import set_online

logger = logging.getLogger(__name__)


@dataclass
class ConnectionResult:
    """Result of one authenticated ``/ping``."""

    success: bool
    message: str
    latency_ms: float | None = None


async def probe_peer(client: PeerClient) -> ConnectionResult:
    """Ping the peer once; never raises for protocol failures."""
    started = time.monotonic()
    outcome = await client.ping()
    latency = (time.monotonic() - started) * 1000.0
    match outcome:
        case Success():
            return ConnectionResult(success=True, message="Connected", latency_ms=latency)
        case InvalidResponse(auth_rejected=True):
            return ConnectionResult(success=False, message="Peer rejected credentials")
        case InvalidResponse(reason=reason, status_code=status):
            return ConnectionResult(success=False, message=f"Invalid response ({reason}, {status})")
        case PeerUnreachable(reason=reason):
            return ConnectionResult(success=False, message=f"Unreachable: {reason}")
    return ConnectionResult(success=False, message="Unknown outcome")


class ConnectionMonitor:
    """Periodically probes the peer and marks every device online/offline."""

    def __init__(
        self,
        client: PeerClient,
        session_factory: Callable[[], Session],
        interval: float = 5,
    ) -> None:
        self.client = client
        self.session_factory = session_factory
        self.interval = interval
        self.last_result: ConnectionResult | None = None
        self._running = False
        self._task: asyncio.Task[None] | None = None

    @property
    def connected(self) -> bool:
        return self.last_result is not None and self.last_result.success

    async def start(self) -> None:
        logger.info("Starting connection monitor (interval=%ss)", self.interval)
        self._running = True
        self._task = asyncio.create_task(self._check_loop())

    async def stop(self) -> None:
        logger.info("Stopping connection monitor")
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def check_once(self) -> ConnectionResult:
        result = await probe_peer(self.client)
        was_connected = self.connected
        self.last_result = result
        if result.success != was_connected:
            logger.info("Peer %s: %s", "connected" if result.success else "lost", result.message)
        with self.session_factory() as session:
            set_online(session, result.success)
        return result

    async def _check_loop(self) -> None:
        while self._running:
            try:
                await self.check_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Connection monitor error")

            await asyncio.sleep(self.interval)
