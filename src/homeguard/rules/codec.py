"""Codec between rule variants and the peer's flat string/JSON encoding.

Condition grammar::

    ""                        -> NoCondition
    "Motion Detected"         -> MotionCondition
    "<Greater|Less> Than <n>" -> ComparisonCondition
    anything else             -> UnstructuredCondition (kept verbatim)

Action grammar::

    "<device name> <On|Off>"  -> DeviceAction
    anything else             -> FreeTextAction

Only exact canonical spellings decode to structured variants, so
``encode(decode(s)) == s`` holds for every string.
"""

import logging
import re
from collections.abc import Iterable
from datetime import UTC, datetime, time
from typing import Any

from homeguard.rules.models import (
    WEEKDAYS,
    Action,
    AutomationRule,
    ComparisonCondition,
    ComparisonOp,
    Condition,
    DeviceAction,
    FreeTextAction,
    MotionCondition,
    NoCondition,
    UnstructuredCondition,
    Weekday,
)

logger = logging.getLogger(__name__)

MOTION_DETECTED = "Motion Detected"

_OPS = "|".join(re.escape(op.value) for op in ComparisonOp)
_COMPARISON_RE = re.compile(rf"^(?P<op>{_OPS}) (?P<n>0|-?[1-9]\d*)$")
_ON, _OFF = "On", "Off"


# --- Condition ---


def encode_condition(condition: Condition) -> str:
    match condition:
        case NoCondition():
            return ""
        case MotionCondition():
            return MOTION_DETECTED
        case ComparisonCondition(op=op, threshold=threshold):
            return f"{op.value} {int(threshold)}"
        case UnstructuredCondition(text=text):
            return text
    raise TypeError(f"Not a condition: {condition!r}")


def decode_condition(text: str | None) -> Condition:
    if not text:
        return NoCondition()
    if text == MOTION_DETECTED:
        return MotionCondition()
    m = _COMPARISON_RE.match(text)
    if m:
        return ComparisonCondition(ComparisonOp(m.group("op")), int(m.group("n")))
    return UnstructuredCondition(text)


# --- Action ---


def encode_action(action: Action) -> str:
    match action:
        case DeviceAction(device_name=name, turn_on=turn_on):
            return f"{name} {_ON if turn_on else _OFF}"
        case FreeTextAction(text=text):
            return text
    raise TypeError(f"Not an action: {action!r}")


def decode_action(text: str | None) -> Action:
    text = text or ""
    name, sep, state = text.rpartition(" ")
    if sep and name.strip() and state in (_ON, _OFF):
        return DeviceAction(name, state == _ON)
    return FreeTextAction(text)


# --- Active days ---


def _coerce_day(day: Weekday | str) -> Weekday | None:
    try:
        return Weekday(day.strip() if isinstance(day, str) else day)
    except ValueError:
        return None


def encode_days(days: Iterable[Weekday | str]) -> str:
    """Join present days in canonical weekday order, deduplicated."""
    present = {d for d in (_coerce_day(day) for day in days) if d is not None}
    return ",".join(d.value for d in WEEKDAYS if d in present)


def decode_days(text: str | None) -> tuple[Weekday, ...]:
    if not text:
        return ()
    tokens = [t for t in text.split(",") if t.strip()]
    present = set()
    for token in tokens:
        day = _coerce_day(token)
        if day is None:
            logger.debug("Ignoring unknown day symbol %r", token)
            continue
        present.add(day)
    return tuple(d for d in WEEKDAYS if d in present)


def has_day(text: str | None, day: Weekday | str) -> bool:
    wanted = _coerce_day(day)
    return wanted is not None and wanted in decode_days(text)


def day_flags(text: str | None) -> list[bool]:
    """One flag per weekday, Monday first."""
    present = decode_days(text)
    return [d in present for d in WEEKDAYS]


def days_from_flags(flags: Iterable[bool]) -> str:
    return encode_days(d for d, on in zip(WEEKDAYS, flags) if on)


# --- Trigger time ---


def as_utc(value: datetime) -> datetime:
    # SQLite stores naive datetimes; treat them as UTC
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)


def encode_time(value: datetime) -> int:
    return int(as_utc(value).timestamp())


def decode_time(value: Any) -> datetime:
    """Epoch seconds (int, float or numeric string) to an aware UTC datetime."""
    try:
        return datetime.fromtimestamp(int(float(value)), UTC)
    except (TypeError, ValueError, OverflowError, OSError):
        logger.debug("Unparseable triggerTime %r, using epoch", value)
        return datetime.fromtimestamp(0, UTC)


def time_of_day(value: datetime) -> time:
    """The only part of a trigger time that carries scheduling meaning."""
    utc = as_utc(value)
    return time(utc.hour, utc.minute)


# --- Whole rule ---


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _optional_id(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def rule_to_wire(rule: AutomationRule) -> dict[str, Any]:
    """Body for ``POST add_rule``."""
    payload: dict[str, Any] = {
        "uid": rule.id,
        "name": rule.name,
        "condition": rule.condition,
        "action": rule.action,
        "activeDays": encode_days(decode_days(rule.active_days)),
        "triggerEnabled": bool(rule.trigger_enabled),
        "triggerTime": encode_time(rule.trigger_time),
    }
    if rule.input_device_id:
        payload["inputDeviceID"] = rule.input_device_id
    if rule.output_device_id:
        payload["outputDeviceID"] = rule.output_device_id
    return payload


def rule_from_wire(data: dict[str, Any]) -> AutomationRule:
    """Decode one entry of ``get_rules``.

    Raises:
        ValueError: If the entry is not an object or has no ``uid``.
    """
    if not isinstance(data, dict):
        raise ValueError(f"Rule entry is not an object: {data!r}")
    uid = _optional_id(data.get("uid"))
    if uid is None:
        raise ValueError(f"Rule entry has no uid: {data!r}")

    condition = data.get("condition")
    action = data.get("action")
    return AutomationRule(
        id=uid,
        name=str(data.get("name") or ""),
        condition=condition if isinstance(condition, str) else "",
        action=action if isinstance(action, str) else "",
        active_days=encode_days(decode_days(str(data.get("activeDays") or ""))),
        trigger_enabled=_coerce_bool(data.get("triggerEnabled", False)),
        trigger_time=decode_time(data.get("triggerTime", 0)),
        input_device_id=_optional_id(data.get("inputDeviceID")),
        output_device_id=_optional_id(data.get("outputDeviceID")),
    )


WIRE_FIELDS = (
    "name",
    "condition",
    "action",
    "active_days",
    "trigger_enabled",
    "trigger_time",
    "input_device_id",
    "output_device_id",
)


def same_content(a: AutomationRule, b: AutomationRule) -> bool:
    """Compare the fields that travel over the wire, trigger time by hour:minute."""
    for name in WIRE_FIELDS:
        left, right = getattr(a, name), getattr(b, name)
        if name == "trigger_time":
            if time_of_day(left) != time_of_day(right):
                return False
        elif left != right:
            return False
    return True
