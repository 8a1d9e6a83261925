"""Authenticated request construction for every peer endpoint."""

from dataclasses import dataclass, field
from typing import Any

from homeguard.peer.auth import RollingCodeGenerator

TOKEN_PARAM = "token"
CODE_PARAM = "code"
_AUTH_KEYS = frozenset({TOKEN_PARAM, CODE_PARAM})

COMMAND_ACTIONS = ("on", "off", "toggle", "open", "close", "status", "setColor")


@dataclass(frozen=True)
class PeerRequest:
    """One fully parameterized request to the peer."""

    method: str
    path: str
    params: dict[str, str] = field(default_factory=dict)
    json: dict[str, Any] | None = None
    # Commands that set an absolute state can be retried safely.
    idempotent: bool = False
    # Success carries a JSON body rather than a bare 200.
    expect_json: bool = False

    def redacted_params(self) -> dict[str, str]:
        """Query params with authentication values masked, for logging."""
        return {k: ("***" if k in _AUTH_KEYS else v) for k, v in self.params.items()}


class RequestBuilder:
    """Attaches token + rolling code to operation-specific parameters."""

    def __init__(self, token: str, codes: RollingCodeGenerator) -> None:
        self._token = token
        self._codes = codes

    def _auth_params(self) -> dict[str, str]:
        return {TOKEN_PARAM: self._token, CODE_PARAM: self._codes.code()}

    def build(
        self,
        method: str,
        path: str,
        params: dict[str, object] | None = None,
        json: dict[str, Any] | None = None,
        idempotent: bool = False,
        expect_json: bool = False,
    ) -> PeerRequest:
        """Build a request, refusing operation params that collide with auth keys."""
        extra = {k: _param_str(v) for k, v in (params or {}).items() if v is not None}
        clash = _AUTH_KEYS & extra.keys()
        if clash:
            raise ValueError(f"Parameters collide with authentication keys: {sorted(clash)}")
        return PeerRequest(
            method=method.upper(),
            path=path.lstrip("/"),
            params={**extra, **self._auth_params()},
            json=json,
            idempotent=idempotent,
            expect_json=expect_json,
        )

    # --- Device commands ---

    def command(
        self,
        port: str,
        action: str,
        extra: dict[str, object] | None = None,
    ) -> PeerRequest:
        if action not in COMMAND_ACTIONS:
            raise ValueError(f"Unknown command action: {action!r}")
        params: dict[str, object] = {"port": port, "act": action}
        for key, value in (extra or {}).items():
            if key in params:
                raise ValueError(f"Extra parameter {key!r} collides with a command parameter")
            params[key] = value
        return self.build(
            "GET", "command", params, idempotent=action != "toggle", expect_json=True
        )

    def sensor(self) -> PeerRequest:
        return self.build("GET", "sensor", idempotent=True, expect_json=True)

    def ping(self) -> PeerRequest:
        return self.build("GET", "ping", idempotent=True)

    def logs(self) -> PeerRequest:
        return self.build("GET", "logs", idempotent=True, expect_json=True)

    # --- Automation rules ---

    def add_rule(self, payload: dict[str, Any]) -> PeerRequest:
        # Re-uploading the same uid replaces the peer's copy.
        return self.build("POST", "add_rule", json=payload, idempotent=True)

    def get_rules(self) -> PeerRequest:
        return self.build("GET", "get_rules", idempotent=True, expect_json=True)

    def delete_rule(self, uid: str) -> PeerRequest:
        return self.build("GET", "delete_rule", {"uid": uid}, idempotent=True)

    def toggle_rule(self, uid: str) -> PeerRequest:
        return self.build("GET", "toggle_rule", {"uid": uid})

    # --- Peripherals ---

    def lcd(self, message: str, duration: int) -> PeerRequest:
        return self.build("GET", "lcd", {"msg": message, "duration": duration}, idempotent=True)

    def security(
        self,
        good: str,
        bad: str,
        granted: str,
        denied: str,
        buzzer_ms: int,
    ) -> PeerRequest:
        params = {
            "good": good,
            "bad": bad,
            "granted": granted,
            "denied": denied,
            "buzzerMs": buzzer_ms,
        }
        return self.build("GET", "security", params, idempotent=True)

    def led(self, strip: int, color: str) -> PeerRequest:
        return self.build(
            "GET", "led", {"strip": strip, "color": normalize_hex(color)}, idempotent=True
        )


def normalize_hex(color: str) -> str:
    """Normalize ``#rrggbb`` / ``rrggbb`` to uppercase ``RRGGBB``."""
    cleaned = color.strip().lstrip("#").upper()
    if len(cleaned) != 6 or any(c not in "0123456789ABCDEF" for c in cleaned):
        raise ValueError(f"Invalid hex color: {color!r}")
    return cleaned


def _param_str(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
