"""Tests for bounded retry with backoff."""

from unittest.mock import AsyncMock

import pytest

from homeguard.peer.requests import PeerRequest
from homeguard.peer.retry import RetryPolicy
from homeguard.peer.transport import InvalidResponse, PeerUnreachable, Success


def _sequence(*outcomes):
    """Operation returning the given outcomes in order, counting calls."""
    return AsyncMock(side_effect=list(outcomes))


class TestDelays:
    def test_strictly_increasing(self):
        delays = RetryPolicy(attempts=4, base_delay=0.5, backoff_factor=2.0).delays()
        assert delays == [0.5, 1.0, 2.0, 4.0]
        assert all(a < b for a, b in zip(delays, delays[1:]))

    def test_last_delay_capped_at_max_delay(self):
        delays = RetryPolicy(attempts=4, base_delay=1, backoff_factor=3, max_delay=10).delays()
        assert delays == [1, 3, 9, 10]
        assert all(a < b for a, b in zip(delays, delays[1:]))

    @pytest.mark.parametrize("attempts", [6, 7])
    def test_rejects_schedule_that_plateaus(self, attempts):
        with pytest.raises(ValueError, match="plateau"):
            RetryPolicy(attempts=attempts, base_delay=0.5, backoff_factor=2.0, max_delay=8.0)

    def test_cap_reached_exactly_on_last_retry(self):
        delays = RetryPolicy(attempts=5, base_delay=0.5, backoff_factor=2.0, max_delay=8.0).delays()
        assert delays == [0.5, 1.0, 2.0, 4.0, 8.0]

    def test_default_schedule_increases(self):
        delays = RetryPolicy().delays()
        assert delays == [0.5, 1.0, 2.0]

    def test_zero_attempts(self):
        assert RetryPolicy(attempts=0).delays() == []

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"attempts": -1},
            {"base_delay": 0},
            {"backoff_factor": 1.0},
            {"base_delay": 2.0, "max_delay": 1.0},
        ],
    )
    def test_rejects_invalid_configuration(self, kwargs):
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)


class TestRun:
    @pytest.mark.asyncio
    async def test_timeout_retries_exactly_n_times_then_unreachable(self):
        sleep = AsyncMock()
        policy = RetryPolicy(attempts=3, base_delay=0.5, backoff_factor=2.0, sleep=sleep)
        op = _sequence(*[PeerUnreachable("timeout")] * 4)

        outcome = await policy.run(op)

        assert isinstance(outcome, PeerUnreachable)
        assert "after 3 retries" in outcome.reason
        assert op.await_count == 4  # first attempt + 3 retries
        assert [c.args[0] for c in sleep.await_args_list] == [0.5, 1.0, 2.0]

    @pytest.mark.asyncio
    async def test_stops_on_success(self):
        sleep = AsyncMock()
        policy = RetryPolicy(attempts=3, sleep=sleep)
        op = _sequence(PeerUnreachable("timeout"), Success(payload="ok"))

        outcome = await policy.run(op)

        assert outcome == Success(payload="ok")
        assert op.await_count == 2
        assert sleep.await_count == 1

    @pytest.mark.asyncio
    async def test_invalid_response_is_not_retried(self):
        sleep = AsyncMock()
        policy = RetryPolicy(attempts=3, sleep=sleep)
        op = _sequence(InvalidResponse("bad_status", 500))

        outcome = await policy.run(op)

        assert isinstance(outcome, InvalidResponse)
        assert op.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_zero_attempts_returns_first_outcome(self):
        policy = RetryPolicy(attempts=0, sleep=AsyncMock())
        outcome = await policy.run(_sequence(PeerUnreachable("refused")))
        assert outcome == PeerUnreachable("refused")


class TestExecute:
    @pytest.mark.asyncio
    async def test_rebuilds_request_for_each_attempt(self):
        built: list[PeerRequest] = []

        def build() -> PeerRequest:
            request = PeerRequest("GET", "command", {"code": str(len(built))}, idempotent=True)
            built.append(request)
            return request

        transport = AsyncMock()
        transport.execute = AsyncMock(
            side_effect=[PeerUnreachable("timeout"), PeerUnreachable("timeout"), Success()]
        )
        policy = RetryPolicy(attempts=3, sleep=AsyncMock())

        outcome = await policy.execute(transport, build)

        assert isinstance(outcome, Success)
        sent = [c.args[0].params["code"] for c in transport.execute.await_args_list]
        assert sent == ["0", "1", "2"]

    @pytest.mark.asyncio
    async def test_refuses_non_idempotent_request(self):
        transport = AsyncMock()
        policy = RetryPolicy(sleep=AsyncMock())
        with pytest.raises(ValueError, match="non-idempotent"):
            await policy.execute(transport, lambda: PeerRequest("GET", "command"))
        transport.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_allow_unsafe_retries_non_idempotent(self):
        transport = AsyncMock()
        transport.execute = AsyncMock(side_effect=[PeerUnreachable("timeout"), Success()])
        policy = RetryPolicy(sleep=AsyncMock())

        outcome = await policy.execute(
            transport, lambda: PeerRequest("GET", "command"), allow_unsafe=True
        )

        assert isinstance(outcome, Success)
        assert transport.execute.await_count == 2
