"""Runtime wiring: one peer client shared by every background component."""

import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass

from pydantic import SecretStr
from sqlmodel import Session

from homeguard.config import Settings
from homeguard.events.log import EventLog
from homeguard.peer.client import PeerClient
from homeguard.peer.mock import MockPeer
from homeguard.peer.probe import ConnectionMonitor
from homeguard.rules.sync import RuleSyncCoordinator
from homeguard.sensors.poller import SensorPoller

logger = logging.getLogger(__name__)


@dataclass
class Controller:
    client: PeerClient
    rules: RuleSyncCoordinator
    poller: SensorPoller
    monitor: ConnectionMonitor
    events: EventLog
    mock: MockPeer | None = None

    async def start(self) -> None:
        await self.monitor.start()
        await self.poller.start()
        # Initial projection of the peer's rules; failures leave the local list as is.
        await self.rules.refresh()

    async def stop(self) -> None:
        await self.poller.stop()
        await self.monitor.stop()
        await self.client.aclose()


def build_controller(
    cfg: Settings,
    session_factory: Callable[[], Session],
    client: PeerClient | None = None,
    mock: MockPeer | None = None,
) -> Controller | None:
    """Instantiate the configured peer backend, or None if it cannot run."""
    if client is None:
        if cfg.peer_mode == "none":
            logger.info("Peer mode 'none': controller disabled")
            return None
        if cfg.peer_mode == "mock":
            if cfg.has_peer_credentials() and cfg.peer_token and cfg.peer_secret:
                token = cfg.peer_token.get_secret_value()
                secret = cfg.peer_secret.get_secret_value()
            else:
                # Throwaway credentials shared only with the in-process peer.
                token, secret = secrets.token_hex(16), secrets.token_hex(20)
                cfg = cfg.model_copy(
                    update={"peer_token": SecretStr(token), "peer_secret": SecretStr(secret)}
                )
            mock = MockPeer(
                token,
                secret,
                window=cfg.code_window,
                digits=cfg.code_digits,
            )
            client = PeerClient.from_settings(cfg, transport=mock.transport())
        elif not cfg.has_peer_credentials():
            logger.warning("Peer mode 'http' selected but token/secret not configured")
            return None
        else:
            client = PeerClient.from_settings(cfg)

    poller = SensorPoller(
        client,
        session_factory,
        interval=cfg.sensor_poll_interval,
        history_size=cfg.reading_history_size,
    )
    return Controller(
        client=client,
        rules=RuleSyncCoordinator(client, session_factory),
        poller=poller,
        monitor=ConnectionMonitor(client, session_factory, interval=cfg.connection_check_interval),
        events=EventLog(session_factory, client=client, sim_clock=poller.sim_time_ms),
        mock=mock,
    )
