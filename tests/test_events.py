"""Tests for the event log and simulated-clock labels."""

import pytest

from homeguard.events.log import UNKNOWN_TIME_LABEL, EventLog, sim_time_label

DAY_MS = 86_400_000
HOUR_MS = 3_600_000


class TestSimTimeLabel:
    @pytest.mark.parametrize(
        ("ms", "label"),
        [
            (0, "M 12:00 AM"),
            (12 * HOUR_MS, "M 12:00 PM"),
            (13 * HOUR_MS + 5 * 60_000, "M 1:05 PM"),
            (DAY_MS + 9 * HOUR_MS + 30 * 60_000, "Tu 9:30 AM"),
            (6 * DAY_MS + 23 * HOUR_MS + 59 * 60_000, "Su 11:59 PM"),
            (7 * DAY_MS, "M 12:00 AM"),
            (59_999, "M 12:00 AM"),
        ],
    )
    def test_labels(self, ms, label):
        assert sim_time_label(ms) == label


class TestEventLog:
    def test_add_with_explicit_time(self, session_factory):
        log = EventLog(session_factory)
        entry = log.add("Fan turned On", sim_time_ms=2 * DAY_MS + 8 * HOUR_MS)
        assert entry.sim_label == "W 8:00 AM"
        assert entry.text == "[W 8:00 AM] Fan turned On"

    def test_unknown_clock(self, session_factory):
        entry = EventLog(session_factory).add("Booted")
        assert entry.sim_label == UNKNOWN_TIME_LABEL
        assert entry.sim_time_ms is None

    def test_uses_sim_clock(self, session_factory):
        log = EventLog(session_factory, sim_clock=lambda: float(HOUR_MS))
        assert log.add("x").sim_label == "M 1:00 AM"

    def test_sim_clock_without_reading(self, session_factory):
        log = EventLog(session_factory, sim_clock=lambda: None)
        assert log.add("x").sim_label == UNKNOWN_TIME_LABEL

    def test_entries_newest_first_and_limited(self, session_factory):
        log = EventLog(session_factory)
        for i in range(5):
            log.add(f"event {i}")
        assert [e.message for e in log.entries(limit=3)] == ["event 4", "event 3", "event 2"]

    def test_clear(self, session_factory):
        log = EventLog(session_factory)
        log.add("a")
        log.add("b")
        assert log.clear() == 2
        assert log.entries() == []


class TestPeerLogs:
    @pytest.mark.asyncio
    async def test_fetch(self, session_factory, peer_client):
        await peer_client.set_state("GPIO26", "on")
        log = EventLog(session_factory, client=peer_client)
        assert await log.fetch_peer_logs() == ["GPIO26 on -> On"]

    @pytest.mark.asyncio
    async def test_offline_is_empty(self, session_factory, peer_client, mock_peer):
        mock_peer.online = False
        assert await EventLog(session_factory, client=peer_client).fetch_peer_logs() == []

    @pytest.mark.asyncio
    async def test_without_client(self, session_factory):
        assert await EventLog(session_factory).fetch_peer_logs() == []
