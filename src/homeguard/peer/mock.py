"""Simulated peer firmware for development and testing.

Serves every peer endpoint in-process through ``httpx.MockTransport``,
validating token + rolling code like the board does, with a clock that
runs ``time_acceleration`` times faster than wall time for ``simTime``.
"""

import json
import logging
import random
import time
from collections import Counter
from collections.abc import Callable
from typing import Any

import httpx

from homeguard.peer.auth import rolling_code, window_counter

logger = logging.getLogger(__name__)

# Ports driven by servos report Opened/Closed instead of On/Off.
_SERVO_PORTS = {"GPIO14": "servo2", "GPIO27": "servo1"}
_FLAG_PORTS = {"GPIO26": "fanOn", "GPIO17": "buzzerOn", "GPIO2": "statusLedOn"}
_STRIP_PORTS = {"GPIO32": 1, "GPIO33": 2}

FAULT_TIMEOUT = "timeout"
FAULT_REFUSED = "refused"
FAULT_SERVER_ERROR = "server_error"
FAULT_GARBAGE = "garbage"


class MockPeer:
    """In-memory firmware state plus an httpx request handler."""

    def __init__(
        self,
        token: str,
        secret: str,
        window: int = 10,
        digits: int = 6,
        accept_adjacent_windows: bool = False,
        time_acceleration: float = 1440.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.token = token
        self.secret = secret
        self.window = window
        self.digits = digits
        self.accept_adjacent_windows = accept_adjacent_windows
        self.time_acceleration = time_acceleration
        self._clock = clock
        self._booted_at = clock()

        self.temperature_c = 22.0
        self.humidity = 55.0
        self.pir = "No motion"
        self.flags = {"fanOn": False, "buzzerOn": False, "statusLedOn": False}
        self.strips = {1: "000000", 2: "000000"}
        self.servos = {"servo1": 0, "servo2": 0}
        self.lcd = "Ready"
        self.security: dict[str, str] = {}
        self.rules: dict[str, dict[str, Any]] = {}
        self.logs: list[str] = []

        self.calls: Counter[str] = Counter()
        self._faults: list[str] = []
        self.online = True

    # --- Test hooks ---

    def inject_faults(self, *faults: str) -> None:
        """Queue faults consumed one per request, in order."""
        self._faults.extend(faults)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def sim_time_ms(self) -> float:
        elapsed = self._clock() - self._booted_at
        return (self._booted_at + elapsed * self.time_acceleration) * 1000.0

    # --- Request handling ---

    def _authorized(self, params: httpx.QueryParams) -> bool:
        if params.get("token") != self.token:
            return False
        code = params.get("code", "")
        now = self._clock()
        current = window_counter(now, self.window)
        offsets = (-1, 0, 1) if self.accept_adjacent_windows else (0,)
        return any(
            code == rolling_code(self.secret, (current + o) * self.window, self.window, self.digits)
            for o in offsets
        )

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.strip("/")
        self.calls[path] += 1

        if not self.online:
            raise httpx.ConnectError("peer offline", request=request)
        if self._faults:
            fault = self._faults.pop(0)
            if fault == FAULT_TIMEOUT:
                raise httpx.ReadTimeout("simulated timeout", request=request)
            if fault == FAULT_REFUSED:
                raise httpx.ConnectError("connection refused", request=request)
            if fault == FAULT_SERVER_ERROR:
                return httpx.Response(500, text="internal error")
            if fault == FAULT_GARBAGE:
                return httpx.Response(200, text="<html>not json</html>")

        params = request.url.params
        if not self._authorized(params):
            return httpx.Response(401, text="unauthorized")

        handler = getattr(self, f"_do_{path}", None)
        if handler is None:
            return httpx.Response(404, text="not found")
        return handler(request, params)

    def _log(self, message: str) -> None:
        self.logs.append(message)

    def _do_ping(self, request: httpx.Request, params: httpx.QueryParams) -> httpx.Response:
        return httpx.Response(200, text="pong")

    def _do_command(self, request: httpx.Request, params: httpx.QueryParams) -> httpx.Response:
        port = params.get("port", "")
        act = params.get("act", "")
        if port in _SERVO_PORTS:
            key = _SERVO_PORTS[port]
            if act in ("open", "on") or (act == "toggle" and self.servos[key] <= 5):
                self.servos[key] = 90
            elif act in ("close", "off", "toggle"):
                self.servos[key] = 0
            elif act != "status":
                return httpx.Response(400, text="bad act")
            state = "Opened" if self.servos[key] > 5 else "Closed"
        elif port in _FLAG_PORTS:
            key = _FLAG_PORTS[port]
            if act == "on":
                self.flags[key] = True
            elif act == "off":
                self.flags[key] = False
            elif act == "toggle":
                self.flags[key] = not self.flags[key]
            elif act != "status":
                return httpx.Response(400, text="bad act")
            state = "On" if self.flags[key] else "Off"
        elif port in _STRIP_PORTS:
            strip = _STRIP_PORTS[port]
            if act == "on":
                self.strips[strip] = "FFFFFF"
            elif act == "off":
                self.strips[strip] = "000000"
            elif act == "toggle":
                self.strips[strip] = "000000" if self.strips[strip] != "000000" else "FFFFFF"
            elif act == "setColor":
                self.strips[strip] = params.get("color", "000000").upper()
            elif act != "status":
                return httpx.Response(400, text="bad act")
            state = "On" if self.strips[strip] != "000000" else "Off"
        else:
            return httpx.Response(400, text="unknown port")
        self._log(f"{port} {act} -> {state}")
        return httpx.Response(200, json={"state": state})

    def _do_sensor(self, request: httpx.Request, params: httpx.QueryParams) -> httpx.Response:
        self.temperature_c += random.uniform(-0.2, 0.2)
        self.humidity = min(100.0, max(0.0, self.humidity + random.uniform(-0.5, 0.5)))
        return httpx.Response(
            200,
            json={
                # Firmware sends temperature as a string, humidity as a number.
                "temperature": f"{self.temperature_c:.1f}",
                "humidity": round(self.humidity, 1),
                "simTime": self.sim_time_ms(),
                "pir": self.pir,
                "rfid": "Active",
                "lcd": self.lcd,
                "strip1Color": self.strips[1],
                "strip2Color": self.strips[2],
                **self.flags,
                **self.servos,
            },
        )

    def _do_add_rule(self, request: httpx.Request, params: httpx.QueryParams) -> httpx.Response:
        if request.method != "POST":
            return httpx.Response(405, text="method not allowed")
        try:
            body = json.loads(request.content or b"{}")
        except json.JSONDecodeError:
            return httpx.Response(400, text="bad json")
        uid = body.get("uid") if isinstance(body, dict) else None
        if not uid:
            return httpx.Response(400, text="missing uid")
        self.rules[uid] = body
        self._log(f"rule saved: {body.get('name', uid)}")
        return httpx.Response(200, text="ok")

    def _do_get_rules(self, request: httpx.Request, params: httpx.QueryParams) -> httpx.Response:
        return httpx.Response(200, json=list(self.rules.values()))

    def _do_delete_rule(self, request: httpx.Request, params: httpx.QueryParams) -> httpx.Response:
        removed = self.rules.pop(params.get("uid", ""), None)
        if removed is not None:
            self._log(f"rule deleted: {removed.get('name', '')}")
        return httpx.Response(200, text="ok")

    def _do_toggle_rule(self, request: httpx.Request, params: httpx.QueryParams) -> httpx.Response:
        rule = self.rules.get(params.get("uid", ""))
        if rule is None:
            return httpx.Response(404, text="no such rule")
        rule["triggerEnabled"] = not rule.get("triggerEnabled", False)
        return httpx.Response(200, text="ok")

    def _do_lcd(self, request: httpx.Request, params: httpx.QueryParams) -> httpx.Response:
        self.lcd = params.get("msg", "")
        self._log(f"lcd: {self.lcd} ({params.get('duration', '0')}s)")
        return httpx.Response(200, text="ok")

    def _do_security(self, request: httpx.Request, params: httpx.QueryParams) -> httpx.Response:
        self.security = {
            k: params.get(k, "") for k in ("good", "bad", "granted", "denied", "buzzerMs")
        }
        return httpx.Response(200, text="ok")

    def _do_led(self, request: httpx.Request, params: httpx.QueryParams) -> httpx.Response:
        try:
            strip = int(params.get("strip", ""))
        except ValueError:
            return httpx.Response(400, text="bad strip")
        if strip not in self.strips:
            return httpx.Response(400, text="bad strip")
        self.strips[strip] = params.get("color", "000000").upper()
        return httpx.Response(200, text="ok")

    def _do_logs(self, request: httpx.Request, params: httpx.QueryParams) -> httpx.Response:
        return httpx.Response(200, json=list(self.logs))
