"""Periodic ``/sensor`` polling that keeps the device projection current."""

import asyncio
import logging
from collections import deque
from collections.abc import Callable

from sqlmodel import Session

from homeguard.peer.client import PeerClient
from homeguard.peer.transport import PeerOutcome, Success
from homeguard.registry.store import apply_sensor_snapshot, set_online
from homeguard.sensors.models import SensorReading

logger = logging.getLogger(__name__)


class SensorPoller:
    """Reads the peer's sensor snapshot on a fixed interval.

    Every read is numbered in issue order. A result, success or failure, is
    applied only if no later-issued read has been applied already, and only
    if the poller was not stopped or restarted while the read was in flight.
    The numbering lives in this object only; nothing about it is persisted.
    """

    def __init__(
        self,
        client: PeerClient,
        session_factory: Callable[[], Session],
        interval: float = 2,
        history_size: int = 50,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.client = client
        self.session_factory = session_factory
        self.interval = interval
        self._history: deque[SensorReading] = deque(maxlen=history_size)
        self._latest: SensorReading | None = None
        self._issued = 0
        self._applied = 0
        self._generation = 0
        self._running = False
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        logger.info("Starting sensor poller (interval=%ss)", self.interval)
        self._generation += 1
        self._running = True
        self._task = asyncio.create_task(self._poll_loop())

    async def stop(self) -> None:
        logger.info("Stopping sensor poller")
        self._running = False
        # Reads still in flight see a new generation and are discarded.
        self._generation += 1
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    def latest(self) -> SensorReading | None:
        return self._latest

    def history(self) -> list[SensorReading]:
        """Readings oldest first, bounded by ``history_size``."""
        return list(self._history)

    def sim_time_ms(self) -> float | None:
        return self._latest.sim_time_ms if self._latest else None

    async def poll_once(self) -> PeerOutcome | None:
        """Issue one read and apply it. Returns None if the result was discarded."""
        generation = self._generation
        self._issued += 1
        seq = self._issued

        outcome = await self.client.read_sensor(seq=seq)

        if generation != self._generation:
            logger.debug("Discarding sensor read #%d issued before stop", seq)
            return None
        if seq < self._applied:
            logger.debug("Discarding sensor read #%d, #%d already applied", seq, self._applied)
            return None
        # Failures count as applied so an older success cannot revive the devices.
        self._applied = seq
        if not isinstance(outcome, Success):
            # Offline, but keep the last reading visible.
            with self.session_factory() as session:
                set_online(session, False)
            return outcome

        reading: SensorReading = outcome.payload
        with self.session_factory() as session:
            apply_sensor_snapshot(session, reading)
        self._latest = reading
        self._history.append(reading)
        return outcome

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Sensor poller error")

            await asyncio.sleep(self.interval)
