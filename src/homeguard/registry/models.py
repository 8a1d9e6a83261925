"""Device model and type enum."""

import enum
import uuid
from datetime import UTC, datetime

from sqlmodel import Field, SQLModel


class DeviceType(enum.StrEnum):
    light = "light"
    fan = "fan"
    door = "door"
    sensor = "sensor"
    motion = "motion"
    servo = "servo"
    temperature = "temperature"
    humidity = "humidity"
    rfid = "rfid"
    lcd = "lcd"
    buzzer = "buzzer"
    camera = "camera"
    status_indicator = "status_indicator"


# Ports (peer GPIO channels) each device type may be wired to.
AVAILABLE_PORTS: dict[DeviceType, list[str]] = {
    DeviceType.light: ["GPIO32", "GPIO33"],
    DeviceType.status_indicator: ["GPIO2"],
    DeviceType.fan: ["GPIO26"],
    DeviceType.door: ["GPIO14"],
    DeviceType.sensor: ["GPIO4"],
    DeviceType.motion: ["GPIO16"],
    DeviceType.servo: ["GPIO14", "GPIO27"],
    DeviceType.temperature: ["GPIO4"],
    DeviceType.humidity: ["GPIO4"],
    DeviceType.rfid: ["GPIO5", "GPIO19"],
    DeviceType.lcd: ["GPIO21/22"],
    DeviceType.buzzer: ["GPIO17"],
    DeviceType.camera: ["(Handled by ESP32-CAM board)"],
}

# Types that can drive a rule's condition / be switched by a rule's action.
INPUT_TYPES = frozenset(
    {DeviceType.sensor, DeviceType.temperature, DeviceType.humidity, DeviceType.motion}
)
OUTPUT_TYPES = frozenset(
    {
        DeviceType.fan,
        DeviceType.light,
        DeviceType.servo,
        DeviceType.buzzer,
        DeviceType.status_indicator,
        DeviceType.door,
    }
)
# Types whose state a command can change (power button shown).
CONTROLLABLE_TYPES = OUTPUT_TYPES
# Types whose reading feeds the sensor poller.
SENSOR_TYPES = frozenset({DeviceType.temperature, DeviceType.humidity, DeviceType.sensor})


def new_device_id() -> str:
    return str(uuid.uuid4()).upper()


class Device(SQLModel, table=True):
    id: str = Field(default_factory=new_device_id, primary_key=True)
    name: str
    device_type: DeviceType
    port: str = Field(index=True)  # used verbatim in /command?port=
    status: str = ""
    is_on: bool = False
    is_online: bool = False
    group: str | None = None
    is_favorite: bool = False
    sort_order: int = 0
    # Last known reading; kept when the peer goes offline.
    temperature_c: float | None = None
    humidity: float | None = None
    reading_at: datetime | None = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
