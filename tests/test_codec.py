"""Tests for the rule condition/action/day/time codec."""

from datetime import UTC, datetime

import pytest

from homeguard.rules.codec import (
    day_flags,
    days_from_flags,
    decode_action,
    decode_condition,
    decode_days,
    decode_time,
    encode_action,
    encode_condition,
    encode_days,
    encode_time,
    has_day,
    rule_from_wire,
    rule_to_wire,
    same_content,
    time_of_day,
)
from homeguard.rules.models import (
    AutomationRule,
    ComparisonCondition,
    ComparisonOp,
    DeviceAction,
    FreeTextAction,
    MotionCondition,
    NoCondition,
    UnstructuredCondition,
    Weekday,
)


class TestCondition:
    def test_comparison(self):
        cond = decode_condition("Greater Than 75")
        assert cond == ComparisonCondition(ComparisonOp.greater_than, 75)

    def test_less_than_negative(self):
        assert decode_condition("Less Than -5") == ComparisonCondition(ComparisonOp.less_than, -5)

    def test_motion(self):
        assert decode_condition("Motion Detected") == MotionCondition()

    @pytest.mark.parametrize("text", ["", None])
    def test_empty_is_time_only(self, text):
        assert decode_condition(text) == NoCondition()

    @pytest.mark.parametrize(
        "text",
        ["Time is 8:00 PM", "Greater Than", "Greater Than 7.5", "greater than 75", "Greater Than 075"],
    )
    def test_unknown_shapes_are_unstructured(self, text):
        assert decode_condition(text) == UnstructuredCondition(text)

    @pytest.mark.parametrize(
        "text",
        ["", "Motion Detected", "Greater Than 75", "Less Than 0", "Time is 8:00 PM", "Greater Than 075"],
    )
    def test_encode_decode_is_lossless(self, text):
        assert encode_condition(decode_condition(text)) == text

    def test_comparison_matches(self):
        assert ComparisonCondition(ComparisonOp.greater_than, 75).matches(80)
        assert not ComparisonCondition(ComparisonOp.greater_than, 75).matches(75)
        assert ComparisonCondition(ComparisonOp.less_than, 30).matches(29.5)

    def test_encode_rejects_non_condition(self):
        with pytest.raises(TypeError):
            encode_condition("Greater Than 5")  # type: ignore[arg-type]


class TestAction:
    def test_device_action(self):
        assert decode_action("Kitchen Lights On") == DeviceAction("Kitchen Lights", True)
        assert decode_action("Fan Off") == DeviceAction("Fan", False)

    @pytest.mark.parametrize("text", ["Execute", "On", "Turn on living room lights", ""])
    def test_free_text(self, text):
        assert decode_action(text) == FreeTextAction(text)

    @pytest.mark.parametrize("text", ["Kitchen Lights On", "Execute", "Garage Door Off"])
    def test_encode_decode_is_lossless(self, text):
        assert encode_action(decode_action(text)) == text


class TestDays:
    def test_canonical_order_and_dedup(self):
        assert encode_days(["F", "M", "Tu", "M"]) == "M,Tu,F"

    def test_accepts_enum_members(self):
        assert encode_days([Weekday.sunday, Weekday.monday]) == "M,Su"

    def test_decode_ignores_unknown_symbols(self):
        assert decode_days("M, X ,Sa") == (Weekday.monday, Weekday.saturday)

    def test_membership(self):
        assert has_day("M,Tu,W,Th,F", "M")
        assert not has_day("M,Tu,W,Th,F", "Sa")
        assert not has_day("M,Tu", "Funday")

    def test_flags_round_trip(self):
        flags = day_flags("Su,M,W")
        assert flags == [True, False, True, False, False, False, True]
        assert days_from_flags(flags) == "M,W,Su"

    def test_empty(self):
        assert decode_days("") == ()
        assert encode_days([]) == ""


class TestTime:
    def test_encode_epoch_seconds(self):
        assert encode_time(datetime(1970, 1, 1, 0, 1, tzinfo=UTC)) == 60

    def test_naive_is_treated_as_utc(self):
        assert encode_time(datetime(1970, 1, 1, 0, 1)) == 60

    @pytest.mark.parametrize("raw", [3600, 3600.7, "3600"])
    def test_decode(self, raw):
        assert decode_time(raw) == datetime(1970, 1, 1, 1, 0, tzinfo=UTC)

    @pytest.mark.parametrize("raw", [None, "soon", float("nan"), 1e30])
    def test_unparseable_falls_back_to_epoch(self, raw):
        assert decode_time(raw) == datetime.fromtimestamp(0, UTC)

    def test_time_of_day(self):
        t = time_of_day(datetime(2024, 1, 2, 18, 45, 59, tzinfo=UTC))
        assert (t.hour, t.minute, t.second) == (18, 45, 0)


class TestWire:
    def _rule(self, **kwargs) -> AutomationRule:
        defaults = {
            "id": "ABC",
            "name": "Hot day",
            "condition": "Greater Than 80",
            "action": "Fan On",
            "active_days": "Sa,M,M",
            "trigger_enabled": False,
            "trigger_time": datetime(2024, 7, 4, 14, 5, tzinfo=UTC),
            "input_device_id": "SENSOR",
            "output_device_id": "FAN",
        }
        defaults.update(kwargs)
        return AutomationRule(**defaults)

    def test_to_wire_shape(self):
        wire = rule_to_wire(self._rule())
        assert wire == {
            "uid": "ABC",
            "name": "Hot day",
            "condition": "Greater Than 80",
            "action": "Fan On",
            "activeDays": "M,Sa",
            "triggerEnabled": False,
            "triggerTime": int(datetime(2024, 7, 4, 14, 5, tzinfo=UTC).timestamp()),
            "inputDeviceID": "SENSOR",
            "outputDeviceID": "FAN",
        }

    def test_optional_ids_omitted(self):
        wire = rule_to_wire(self._rule(input_device_id=None, output_device_id=None))
        assert "inputDeviceID" not in wire
        assert "outputDeviceID" not in wire

    def test_round_trip_preserves_fields(self):
        rule = self._rule(active_days="M,Sa")
        back = rule_from_wire(rule_to_wire(rule))
        assert back.id == rule.id
        assert same_content(rule, back)
        # Disabled trigger still carries its time
        assert not back.trigger_enabled
        assert time_of_day(back.trigger_time) == time_of_day(rule.trigger_time)

    def test_from_wire_tolerates_loose_types(self):
        rule = rule_from_wire(
            {
                "uid": "X",
                "name": None,
                "condition": 5,
                "action": "Execute",
                "activeDays": "Tu,M",
                "triggerEnabled": "true",
                "triggerTime": "60",
                "inputDeviceID": "",
            }
        )
        assert rule.name == ""
        assert rule.condition == ""
        assert rule.active_days == "M,Tu"
        assert rule.trigger_enabled is True
        assert rule.input_device_id is None
        assert rule.output_device_id is None

    @pytest.mark.parametrize("entry", [{"name": "x"}, {"uid": ""}, ["uid"]])
    def test_from_wire_requires_uid(self, entry):
        with pytest.raises(ValueError):
            rule_from_wire(entry)

    def test_unparseable_fields_are_kept_but_unstructured(self):
        rule = rule_from_wire({"uid": "X", "condition": "Time is 8:00 PM", "action": "Do it"})
        assert rule.condition == "Time is 8:00 PM"
        assert not rule.is_structured

    def test_free_text_action_with_output_device_is_unstructured(self):
        assert not self._rule(action="Turn it on").is_structured
        assert self._rule().is_structured

    def test_same_content_ignores_date(self):
        a = self._rule(trigger_time=datetime(2024, 1, 1, 7, 30, tzinfo=UTC))
        b = self._rule(trigger_time=datetime(1999, 6, 6, 7, 30, tzinfo=UTC))
        assert same_content(a, b)
        assert not same_content(a, self._rule(name="Other"))
