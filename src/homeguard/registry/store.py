"""Device projection: seeding, lookups, and applying peer results."""

import logging
from datetime import UTC, datetime

from sqlmodel import Session, select

from homeguard.registry.models import (
    AVAILABLE_PORTS,
    SENSOR_TYPES,
    Device,
    DeviceType,
)
from homeguard.sensors.models import SensorReading, celsius_to_fahrenheit

logger = logging.getLogger(__name__)

_IMMUTABLE_FIELDS = frozenset({"id"})

# Snapshot keys for on/off peripherals, by port.
_FLAG_PORTS = {"fanOn": "GPIO26", "buzzerOn": "GPIO17", "statusLedOn": "GPIO2"}
_STRIP_PORTS = {"strip1Color": "GPIO32", "strip2Color": "GPIO33"}
_SERVO_PORTS = {"servo1": "GPIO27", "servo2": "GPIO14"}
_SERVO_OPEN_ANGLE = 5


def _port(device_type: DeviceType, index: int = 0) -> str:
    ports = AVAILABLE_PORTS.get(device_type, [])
    return ports[index] if index < len(ports) else ""


def default_devices() -> list[Device]:
    """The fixed device set wired to the reference board."""
    specs = [
        ("Living Room Lights", "Off", DeviceType.light, _port(DeviceType.light, 0)),
        ("Kitchen Lights", "Off", DeviceType.light, _port(DeviceType.light, 1)),
        (
            "Security Status LED",
            "Off",
            DeviceType.status_indicator,
            _port(DeviceType.status_indicator),
        ),
        ("PIR Sensor", "Idle", DeviceType.motion, _port(DeviceType.motion)),
        ("DHT11 Sensor", "", DeviceType.temperature, _port(DeviceType.temperature)),
        ("Garage Door", "Closed", DeviceType.servo, _port(DeviceType.servo, 0)),
        ("Front Door", "Closed", DeviceType.servo, _port(DeviceType.servo, 1)),
        ("RFID Sensor", "Active", DeviceType.rfid, _port(DeviceType.rfid)),
        ("LCD Screen", "Ready", DeviceType.lcd, _port(DeviceType.lcd)),
        ("Buzzer", "Off", DeviceType.buzzer, _port(DeviceType.buzzer)),
        ("Fan", "Off", DeviceType.fan, _port(DeviceType.fan)),
        ("ESP-CAM", "Streaming", DeviceType.camera, _port(DeviceType.camera)),
    ]
    return [
        Device(name=name, status=status, device_type=dtype, port=port, sort_order=i)
        for i, (name, status, dtype, port) in enumerate(specs)
    ]


def seed_default_devices(session: Session) -> list[Device]:
    """Insert the default devices if the registry is empty."""
    existing = get_all_devices(session)
    if existing:
        return existing
    for device in default_devices():
        session.add(device)
    session.commit()
    logger.info("Seeded default device set")
    return get_all_devices(session)


def get_all_devices(
    session: Session,
    device_type: DeviceType | None = None,
) -> list[Device]:
    stmt = select(Device)
    if device_type is not None:
        stmt = stmt.where(Device.device_type == device_type)
    stmt = stmt.order_by(Device.sort_order, Device.name)  # type: ignore[arg-type]
    return list(session.exec(stmt).all())


def get_device(session: Session, device_id: str) -> Device | None:
    return session.get(Device, device_id)


def get_devices_by_port(session: Session, port: str) -> list[Device]:
    """Several devices may share a port (e.g. the DHT11 exposes two readings)."""
    stmt = (
        select(Device)
        .where(Device.port == port)
        .order_by(Device.sort_order)  # type: ignore[arg-type]
    )
    return list(session.exec(stmt).all())


def update_device(session: Session, device_id: str, **kwargs: object) -> Device | None:
    """Update user-editable fields. Return None if not found.

    Raises:
        ValueError: If an immutable field such as ``id`` is passed.
    """
    bad = _IMMUTABLE_FIELDS & kwargs.keys()
    if bad:
        raise ValueError(f"Cannot modify immutable field(s): {sorted(bad)}")
    device = session.get(Device, device_id)
    if device is None:
        return None
    if "device_type" in kwargs and isinstance(kwargs["device_type"], str):
        kwargs["device_type"] = DeviceType(kwargs["device_type"])
    for key, value in kwargs.items():
        if hasattr(device, key):
            setattr(device, key, value)
    device.updated_at = datetime.now(UTC)
    session.commit()
    session.refresh(device)
    return device


def set_online(
    session: Session,
    online: bool,
    device_ids: list[str] | None = None,
) -> int:
    """Mark devices online/offline without touching their last reading."""
    stmt = select(Device)
    if device_ids is not None:
        stmt = stmt.where(Device.id.in_(device_ids))  # type: ignore[attr-defined]
    changed = 0
    for device in session.exec(stmt).all():
        if device.is_online != online:
            device.is_online = online
            changed += 1
    session.commit()
    if changed:
        logger.info("Marked %d device(s) %s", changed, "online" if online else "offline")
    return changed


def apply_command_state(
    session: Session,
    device: Device,
    state: str,
    action: str = "toggle",
) -> Device:
    """Project the peer's reply to a ``command`` onto the device."""
    if device.device_type in (DeviceType.door, DeviceType.servo):
        device.status = state
        device.is_on = state == "Opened"
    elif state in ("On", "Off"):
        device.is_on = state == "On"
        device.status = state
    elif action in ("on", "off"):
        device.is_on = action == "on"
        device.status = "On" if device.is_on else "Off"
    elif action == "toggle":
        device.is_on = not device.is_on
        device.status = "On" if device.is_on else "Off"
    else:
        device.status = state
    device.is_online = True
    device.updated_at = datetime.now(UTC)
    session.add(device)
    session.commit()
    session.refresh(device)
    return device


def _fmt(value: float | None, raw: object, spec: str) -> str:
    if value is not None:
        return format(value, spec)
    return raw if isinstance(raw, str) and raw else "NaN"


def apply_sensor_snapshot(session: Session, reading: SensorReading) -> list[Device]:
    """Apply a ``/sensor`` snapshot to every device it describes.

    Ordering of concurrent reads is the caller's job (see ``SensorPoller``).
    """
    raw = reading.raw
    hum_str = _fmt(reading.humidity, raw.get("humidity"), ".1f")
    fahrenheit = (
        format(celsius_to_fahrenheit(reading.temperature_c), ".0f")
        if reading.temperature_c is not None
        else "NaN"
    )
    now = datetime.now(UTC)

    by_port: dict[str, bool] = {}
    for key, port in _STRIP_PORTS.items():
        if isinstance(raw.get(key), str):
            by_port[port] = raw[key].lstrip("#").upper() != "000000"
    for key, port in _FLAG_PORTS.items():
        if isinstance(raw.get(key), bool):
            by_port[port] = raw[key]
    servos: dict[str, bool] = {}
    for key, port in _SERVO_PORTS.items():
        angle = raw.get(key)
        if isinstance(angle, int) and not isinstance(angle, bool):
            servos[port] = angle > _SERVO_OPEN_ANGLE

    updated: list[Device] = []
    for device in get_all_devices(session):
        match device.device_type:
            case DeviceType.temperature:
                device.status = f"{fahrenheit}°F, {hum_str}%"
            case DeviceType.humidity:
                device.status = f"{hum_str}%"
            case DeviceType.motion:
                device.status = raw.get("pir") if isinstance(raw.get("pir"), str) else "No motion"
            case DeviceType.rfid:
                device.status = raw.get("rfid") if isinstance(raw.get("rfid"), str) else "Active"
            case DeviceType.lcd:
                device.status = raw.get("lcd") if isinstance(raw.get("lcd"), str) else "Ready"

        if device.device_type in SENSOR_TYPES:
            device.temperature_c = reading.temperature_c
            device.humidity = reading.humidity
            device.reading_at = reading.received_at
        if device.port in servos and device.device_type in (DeviceType.servo, DeviceType.door):
            device.is_on = servos[device.port]
            device.status = "Opened" if device.is_on else "Closed"
        elif device.port in by_port and device.device_type not in SENSOR_TYPES:
            device.is_on = by_port[device.port]
            device.status = "On" if device.is_on else "Off"

        device.is_online = True
        device.updated_at = now
        updated.append(device)

    session.commit()
    for device in updated:
        session.refresh(device)
    return updated
