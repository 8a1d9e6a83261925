"""Sensor readings parsed from the peer's ``/sensor`` snapshot."""

import math
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


@dataclass(frozen=True)
class SensorReading:
    """One parsed ``/sensor`` snapshot.

    ``temperature_c`` / ``humidity`` are None when the peer reports a
    value that is not a number (the DHT driver sends "NaN" on read errors).
    """

    temperature_c: float | None
    humidity: float | None
    sim_time_ms: float | None
    raw: dict[str, Any] = field(default_factory=dict)
    received_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    # Issue order of the request that produced this reading.
    seq: int = 0

    @property
    def temperature_f(self) -> float | None:
        if self.temperature_c is None:
            return None
        return celsius_to_fahrenheit(self.temperature_c)


def parse_number(value: Any) -> float | None:
    """Accept numbers or numeric strings; anything else (incl. NaN) is None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def celsius_to_fahrenheit(celsius: float) -> float:
    return celsius * 9.0 / 5.0 + 32.0


def parse_sensor_payload(payload: Any, seq: int = 0) -> SensorReading:
    """Build a reading from the decoded JSON body.

    Raises:
        ValueError: If the body is not an object or lacks both
            ``temperature`` and ``humidity``.
    """
    if not isinstance(payload, dict):
        raise ValueError(f"Sensor payload is not an object: {type(payload).__name__}")
    if "temperature" not in payload and "humidity" not in payload:
        raise ValueError("Sensor payload has neither temperature nor humidity")
    return SensorReading(
        temperature_c=parse_number(payload.get("temperature")),
        humidity=parse_number(payload.get("humidity")),
        sim_time_ms=parse_number(payload.get("simTime")),
        raw=dict(payload),
        seq=seq,
    )
