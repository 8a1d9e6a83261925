"""Event log: local entries stamped with the peer's simulated clock."""

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from sqlmodel import Field, Session, SQLModel, select

from homeguard.peer.client import PeerClient
from homeguard.peer.transport import Success

logger = logging.getLogger(__name__)

_DAY_SYMBOLS = ("M", "Tu", "W", "Th", "F", "Sa", "Su")
_SECONDS_PER_DAY = 24 * 3600
UNKNOWN_TIME_LABEL = "--"


def sim_time_label(sim_time_ms: float) -> str:
    """Format peer ``simTime`` as ``"<Day> h:mm AM|PM"``.

    Day 0 of the simulated clock is a Monday.
    """
    total = int(sim_time_ms / 1000.0)
    day = _DAY_SYMBOLS[(total // _SECONDS_PER_DAY) % 7]
    leftover = total % _SECONDS_PER_DAY
    hour24, minute = leftover // 3600, (leftover % 3600) // 60
    hour = hour24 % 12 or 12
    return f"{day} {hour}:{minute:02d} {'AM' if hour24 < 12 else 'PM'}"


class EventLogEntry(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    message: str
    sim_label: str = UNKNOWN_TIME_LABEL
    sim_time_ms: float | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC), index=True)

    @property
    def text(self) -> str:
        return f"[{self.sim_label}] {self.message}"


class EventLog:
    """Append-only log of controller actions, newest first when read."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        client: PeerClient | None = None,
        sim_clock: Callable[[], float | None] | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.client = client
        # Latest known peer simTime, usually SensorPoller.sim_time_ms
        self.sim_clock = sim_clock

    def add(self, message: str, sim_time_ms: float | None = None) -> EventLogEntry:
        if sim_time_ms is None and self.sim_clock is not None:
            sim_time_ms = self.sim_clock()
        label = UNKNOWN_TIME_LABEL if sim_time_ms is None else sim_time_label(sim_time_ms)
        entry = EventLogEntry(message=message, sim_time_ms=sim_time_ms, sim_label=label)
        with self.session_factory() as session:
            session.add(entry)
            session.commit()
            session.refresh(entry)
        logger.info("Event: %s", entry.text)
        return entry

    def entries(self, limit: int = 100) -> list[EventLogEntry]:
        with self.session_factory() as session:
            newest = (
                EventLogEntry.created_at.desc(),  # type: ignore[attr-defined]
                EventLogEntry.id.desc(),  # type: ignore[union-attr]
            )
            stmt = select(EventLogEntry).order_by(*newest).limit(limit)
            return list(session.exec(stmt).all())

    def clear(self) -> int:
        with self.session_factory() as session:
            rows = session.exec(select(EventLogEntry)).all()
            for row in rows:
                session.delete(row)
            session.commit()
        return len(rows)

    async def fetch_peer_logs(self) -> list[str]:
        """The peer's own ``/logs``; empty when unavailable."""
        if self.client is None:
            return []
        outcome = await self.client.fetch_logs()
        if not isinstance(outcome, Success):
            logger.warning("Could not fetch peer logs: %s", outcome)
            return []
        return outcome.payload
