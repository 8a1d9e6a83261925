"""High-level peer operations with typed results.

Every method returns a ``PeerOutcome``. On ``Success`` the payload is
already validated and converted: a state string for commands, a
``SensorReading`` for sensor reads, ``AutomationRule`` objects for the
rule list, log lines for ``/logs``.
"""

import asyncio
import logging
from collections import defaultdict
from collections.abc import Callable, Iterable

import httpx

from homeguard.config import Settings
from homeguard.peer.auth import RollingCodeGenerator
from homeguard.peer.requests import PeerRequest, RequestBuilder, normalize_hex
from homeguard.peer.retry import RetryPolicy
from homeguard.peer.transport import (
    UNEXPECTED_SHAPE,
    InvalidResponse,
    PeerOutcome,
    Success,
    TransportClient,
)
from homeguard.rules.codec import rule_from_wire, rule_to_wire
from homeguard.rules.models import AutomationRule
from homeguard.sensors.models import parse_sensor_payload

logger = logging.getLogger(__name__)

STATE_ACTIONS = ("on", "off", "open", "close")
DEFAULT_RETRY_ACTIONS = frozenset({*STATE_ACTIONS, "status", "setColor"})
_READ_ONLY_ACTIONS = frozenset({"status"})


class PeerClient:
    """Command surface of the single configured peer."""

    def __init__(
        self,
        builder: RequestBuilder,
        transport: TransportClient,
        retry: RetryPolicy | None = None,
        retry_actions: Iterable[str] = DEFAULT_RETRY_ACTIONS,
    ) -> None:
        self.builder = builder
        self.transport = transport
        self.retry = retry or RetryPolicy()
        self.retry_actions = frozenset(retry_actions)
        if "toggle" in self.retry_actions:
            logger.warning("toggle is configured as retry-safe; a lost reply may flip twice")
        self._port_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._queued: defaultdict[str, int] = defaultdict(int)

    @classmethod
    def from_settings(
        cls,
        cfg: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "PeerClient":
        """Build the full stack from configuration.

        Raises:
            ValueError: If the token or rolling-code secret is missing.
        """
        if not cfg.has_peer_credentials() or cfg.peer_token is None or cfg.peer_secret is None:
            raise ValueError("peer_token and peer_secret must be configured")
        codes = RollingCodeGenerator(
            cfg.peer_secret.get_secret_value(),
            window=cfg.code_window,
            digits=cfg.code_digits,
        )
        builder = RequestBuilder(cfg.peer_token.get_secret_value(), codes)
        return cls(
            builder,
            TransportClient(cfg.peer_base_url, timeout=cfg.request_timeout, transport=transport),
            RetryPolicy(
                attempts=cfg.retry_attempts,
                base_delay=cfg.retry_base_delay,
                backoff_factor=cfg.retry_backoff_factor,
                max_delay=cfg.retry_max_delay,
            ),
            retry_actions=cfg.retry_safe_actions,
        )

    async def aclose(self) -> None:
        await self.transport.aclose()

    async def _send(self, request: PeerRequest) -> PeerOutcome:
        return await self.transport.execute(request)

    async def _send_retried(self, build: Callable[[], PeerRequest]) -> PeerOutcome:
        return await self.retry.execute(self.transport, build)

    # --- Device commands ---

    def pending_commands(self, port: str) -> int:
        """Mutating commands queued or in flight for ``port``."""
        return self._queued.get(port, 0)

    async def command(
        self,
        port: str,
        action: str,
        extra: dict[str, object] | None = None,
        retry: bool | None = None,
    ) -> PeerOutcome:
        """Send ``command?port=&act=`` and return the reported state.

        Mutating commands on one port run one at a time, in call order.
        ``retry`` defaults to membership in ``retry_actions`` (state-setting
        actions, not ``toggle``); forcing it on for ``toggle`` accepts a
        possible double flip.
        """
        first = self.builder.command(port, action, extra)
        use_retry = action in self.retry_actions if retry is None else retry

        async def _dispatch() -> PeerOutcome:
            if use_retry:
                return await self.retry.execute(
                    self.transport,
                    lambda: self.builder.command(port, action, extra),
                    allow_unsafe=not first.idempotent,
                )
            return await self._send(self.builder.command(port, action, extra))

        if action in _READ_ONLY_ACTIONS:
            outcome = await _dispatch()
        else:
            self._queued[port] += 1
            try:
                async with self._port_locks[port]:
                    outcome = await _dispatch()
            finally:
                self._queued[port] -= 1
                if not self._queued[port]:
                    del self._queued[port]

        if not isinstance(outcome, Success):
            return outcome
        payload = outcome.payload
        state = payload.get("state") if isinstance(payload, dict) else None
        if not isinstance(state, str):
            logger.warning("Command %s on %s: response has no state: %r", action, port, payload)
            return InvalidResponse(UNEXPECTED_SHAPE, outcome.status_code, repr(payload)[:200])
        logger.info("Command %s on %s -> %s", action, port, state)
        return Success(payload=state, status_code=outcome.status_code)

    async def set_state(self, port: str, state: str) -> PeerOutcome:
        """Drive a port to an absolute state; retried under the policy."""
        if state not in STATE_ACTIONS:
            raise ValueError(f"state must be one of {STATE_ACTIONS}, got {state!r}")
        return await self.command(port, state)

    async def toggle(self, port: str) -> PeerOutcome:
        """Flip a port; sent exactly once."""
        return await self.command(port, "toggle", retry=False)

    async def status(self, port: str) -> PeerOutcome:
        return await self.command(port, "status")

    async def set_color(self, port: str, color: str) -> PeerOutcome:
        return await self.command(port, "setColor", {"color": normalize_hex(color)})

    # --- Reads ---

    async def read_sensor(self, seq: int = 0) -> PeerOutcome:
        outcome = await self._send(self.builder.sensor())
        if not isinstance(outcome, Success):
            return outcome
        try:
            reading = parse_sensor_payload(outcome.payload, seq=seq)
        except ValueError as e:
            logger.warning("Sensor read: %s", e)
            return InvalidResponse(UNEXPECTED_SHAPE, outcome.status_code, str(e))
        return Success(payload=reading, status_code=outcome.status_code)

    async def ping(self) -> PeerOutcome:
        return await self._send(self.builder.ping())

    async def fetch_logs(self) -> PeerOutcome:
        outcome = await self._send(self.builder.logs())
        if not isinstance(outcome, Success):
            return outcome
        if not isinstance(outcome.payload, list):
            return InvalidResponse(UNEXPECTED_SHAPE, outcome.status_code, "logs is not a list")
        return Success(payload=[str(line) for line in outcome.payload])

    # --- Automation rules ---

    async def upload_rule(self, rule: AutomationRule) -> PeerOutcome:
        payload = rule_to_wire(rule)
        return await self._send_retried(lambda: self.builder.add_rule(payload))

    async def fetch_rules(self) -> PeerOutcome:
        """Fetch the authoritative rule list.

        Entries without a ``uid`` cannot be reconciled and are skipped;
        entries with unparseable condition/action are kept (``is_structured``
        is False on them).
        """
        outcome = await self._send(self.builder.get_rules())
        if not isinstance(outcome, Success):
            return outcome
        if not isinstance(outcome.payload, list):
            return InvalidResponse(
                UNEXPECTED_SHAPE, outcome.status_code, "rule list is not an array"
            )
        rules: list[AutomationRule] = []
        for entry in outcome.payload:
            try:
                rules.append(rule_from_wire(entry))
            except ValueError as e:
                logger.warning("Skipping rule entry: %s", e)
        return Success(payload=rules, status_code=outcome.status_code)

    async def delete_rule(self, uid: str) -> PeerOutcome:
        return await self._send_retried(lambda: self.builder.delete_rule(uid))

    async def toggle_rule(self, uid: str) -> PeerOutcome:
        return await self._send(self.builder.toggle_rule(uid))

    # --- Peripherals ---

    async def display_message(self, message: str, duration: int) -> PeerOutcome:
        return await self._send_retried(lambda: self.builder.lcd(message, duration))

    async def configure_security(
        self,
        good_card: str,
        bad_card: str,
        granted_message: str,
        denied_message: str,
        buzzer_ms: int,
    ) -> PeerOutcome:
        return await self._send_retried(
            lambda: self.builder.security(
                good_card, bad_card, granted_message, denied_message, buzzer_ms
            )
        )

    async def set_led(self, strip: int, color: str) -> PeerOutcome:
        return await self._send_retried(lambda: self.builder.led(strip, color))
