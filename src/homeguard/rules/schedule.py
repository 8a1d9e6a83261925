"""Building rules from device choices and placing them on the peer's clock.

The peer runs an accelerated simulated clock (``simTime``, milliseconds).
A time-only rule fires at its trigger time on that clock, so a picked
hour:minute is re-based to its next occurrence there.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime, time, timedelta

from homeguard.registry.models import Device, DeviceType
from homeguard.rules.codec import (
    as_utc,
    day_flags,
    days_from_flags,
    encode_action,
    encode_condition,
    encode_days,
)
from homeguard.rules.models import (
    DEFAULT_ACTION_TEXT,
    AutomationRule,
    ComparisonCondition,
    ComparisonOp,
    DeviceAction,
    MotionCondition,
    Weekday,
)

logger = logging.getLogger(__name__)

MS_PER_DAY = 86_400_000
EPOCH = datetime.fromtimestamp(0, UTC)

_COMPARISON_TYPES = (DeviceType.temperature, DeviceType.humidity)
_CONDITION_TYPES = (*_COMPARISON_TYPES, DeviceType.motion)


def _ms_of_day(picked: datetime | time) -> int:
    if isinstance(picked, datetime):
        picked = as_utc(picked).time()
    return ((picked.hour * 60 + picked.minute) * 60 + picked.second) * 1000


def align_to_peer_clock(picked: datetime | time, peer_now_ms: float) -> datetime:
    """Next occurrence of ``picked``'s time of day on the peer clock.

    If that time has already passed in the peer's current day, the
    result is the same time tomorrow.
    """
    day_ms = peer_now_ms % MS_PER_DAY
    delta = _ms_of_day(picked) - day_ms
    if delta < 0:
        delta += MS_PER_DAY
    return EPOCH + timedelta(milliseconds=peer_now_ms + delta)


def build_rule(
    name: str,
    input_device: Device | None = None,
    output_device: Device | None = None,
    comparison: ComparisonOp = ComparisonOp.greater_than,
    threshold: int = 70,
    output_on: bool = True,
    use_trigger_time: bool = False,
    trigger_time: datetime | time | None = None,
    active_days: Iterable[Weekday | str] = (),
    peer_now_ms: float | None = None,
) -> AutomationRule:
    """Derive condition and action from the chosen devices.

    A temperature or humidity input gives a comparison condition, a motion
    input gives ``Motion Detected``. Without an output device the action is
    ``Execute``. Condition-based rules are always trigger-enabled; a
    time-only rule is enabled when ``use_trigger_time`` is set, and its
    time is aligned to the peer clock when ``peer_now_ms`` is known.
    """
    condition = ""
    condition_based = False
    if input_device is not None and input_device.device_type in _CONDITION_TYPES:
        condition_based = True
        if input_device.device_type in _COMPARISON_TYPES:
            condition = encode_condition(
                ComparisonCondition(ComparisonOp(comparison), int(threshold))
            )
        else:
            condition = encode_condition(MotionCondition())

    action = DEFAULT_ACTION_TEXT
    if output_device is not None:
        action = encode_action(DeviceAction(output_device.name, output_on))

    when = EPOCH
    if not condition_based and use_trigger_time and trigger_time is not None:
        if peer_now_ms is not None:
            when = align_to_peer_clock(trigger_time, peer_now_ms)
        elif isinstance(trigger_time, datetime):
            when = as_utc(trigger_time)
        else:
            when = datetime.combine(EPOCH.date(), trigger_time, tzinfo=UTC)
            logger.debug("No peer clock; trigger time kept as %s", when)

    return AutomationRule(
        name=name,
        condition=condition,
        action=action,
        active_days=encode_days(active_days),
        trigger_enabled=condition_based or use_trigger_time,
        trigger_time=when,
        input_device_id=input_device.id if input_device else None,
        output_device_id=output_device.id if output_device else None,
    )


@dataclass
class RuleForm:
    """Editable fields of a rule, as an edit form shows them."""

    name: str
    input_device_id: str | None
    output_device_id: str | None
    comparison: ComparisonOp = ComparisonOp.greater_than
    threshold: int = 70
    output_on: bool = True
    use_trigger_time: bool = False
    trigger_time: datetime = EPOCH
    day_flags: list[bool] = field(default_factory=lambda: [False] * 7)

    @property
    def active_days(self) -> str:
        return days_from_flags(self.day_flags)


def prefill(rule: AutomationRule, input_devices: Iterable[Device] = ()) -> RuleForm:
    """Decode a rule back into form values.

    The comparison and threshold are only taken from the condition when
    the linked input device is a temperature or humidity sensor.
    """
    form = RuleForm(
        name=rule.name,
        input_device_id=rule.input_device_id,
        output_device_id=rule.output_device_id,
        trigger_time=as_utc(rule.trigger_time),
        day_flags=day_flags(rule.active_days),
    )
    action = rule.parsed_action
    if isinstance(action, DeviceAction):
        form.output_on = action.turn_on

    sensor = next((d for d in input_devices if d.id == rule.input_device_id), None)
    condition = rule.parsed_condition
    if (
        sensor is not None
        and sensor.device_type in _COMPARISON_TYPES
        and isinstance(condition, ComparisonCondition)
    ):
        form.comparison = condition.op
        form.threshold = condition.threshold

    form.use_trigger_time = rule.trigger_enabled and form.trigger_time != EPOCH
    return form
