"""Bounded retry with increasing backoff for idempotent peer operations."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from homeguard.peer.requests import PeerRequest
from homeguard.peer.transport import PeerOutcome, PeerUnreachable, TransportClient

logger = logging.getLogger(__name__)


class RetryPolicy:
    """Retries operations whose outcome is ``PeerUnreachable``.

    ``InvalidResponse`` is returned immediately: the peer answered, so
    repeating the call cannot change the result.

    The first attempt runs at once; retry ``i`` waits
    ``min(base_delay * backoff_factor ** i, max_delay)`` seconds first.
    Configurations where more than the last wait would be capped are
    rejected, so every retry waits longer than the one before.
    """

    def __init__(
        self,
        attempts: int = 3,
        base_delay: float = 0.5,
        backoff_factor: float = 2.0,
        max_delay: float = 8.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if attempts < 0:
            raise ValueError(f"attempts must be >= 0, got {attempts}")
        if base_delay <= 0:
            raise ValueError(f"base_delay must be positive, got {base_delay}")
        if backoff_factor <= 1:
            raise ValueError(f"backoff_factor must be > 1, got {backoff_factor}")
        if max_delay < base_delay:
            raise ValueError(f"max_delay {max_delay} is below base_delay {base_delay}")
        # Only the last retry may hit the cap.
        if attempts >= 2 and base_delay * backoff_factor ** (attempts - 2) >= max_delay:
            raise ValueError(
                f"{attempts} retries would plateau at max_delay {max_delay}; "
                "raise max_delay or lower attempts"
            )
        self.attempts = attempts
        self.base_delay = base_delay
        self.backoff_factor = backoff_factor
        self.max_delay = max_delay
        self._sleep = sleep

    def delays(self) -> list[float]:
        """Wait before each retry, in order."""
        return [
            min(self.base_delay * self.backoff_factor**i, self.max_delay)
            for i in range(self.attempts)
        ]

    async def run(self, operation: Callable[[], Awaitable[PeerOutcome]]) -> PeerOutcome:
        """Run ``operation`` until it reaches the peer or retries are exhausted."""
        outcome = await operation()
        for retry, delay in enumerate(self.delays(), start=1):
            if not isinstance(outcome, PeerUnreachable):
                return outcome
            logger.info(
                "Peer unreachable (%s), retry %d/%d in %.2fs",
                outcome.reason,
                retry,
                self.attempts,
                delay,
            )
            await self._sleep(delay)
            outcome = await operation()

        if isinstance(outcome, PeerUnreachable) and self.attempts:
            logger.warning("Giving up after %d retries: %s", self.attempts, outcome.reason)
            return PeerUnreachable(f"{outcome.reason} (after {self.attempts} retries)")
        return outcome

    async def execute(
        self,
        transport: TransportClient,
        build: Callable[[], PeerRequest],
        allow_unsafe: bool = False,
    ) -> PeerOutcome:
        """Build and send a request under this policy.

        ``build`` runs once per attempt so each try carries a fresh rolling code.
        State-flipping requests are refused unless ``allow_unsafe`` is set,
        since a retried toggle whose first response was lost flips twice.
        """
        first = build()
        if not first.idempotent and not allow_unsafe:
            raise ValueError(
                f"Refusing to retry non-idempotent request /{first.path}; "
                "send it unwrapped or pass allow_unsafe=True"
            )

        pending = [first]

        async def _attempt() -> PeerOutcome:
            request = pending.pop() if pending else build()
            return await transport.execute(request)

        return await self.run(_attempt)
