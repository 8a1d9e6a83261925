"""Automation rule model, its condition/action variants, and sync states."""

import enum
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlmodel import Field, SQLModel


class Weekday(enum.StrEnum):
    """Day symbols as the peer spells them, in canonical order."""

    monday = "M"
    tuesday = "Tu"
    wednesday = "W"
    thursday = "Th"
    friday = "F"
    saturday = "Sa"
    sunday = "Su"


WEEKDAYS: tuple[Weekday, ...] = tuple(Weekday)


class ComparisonOp(enum.StrEnum):
    greater_than = "Greater Than"
    less_than = "Less Than"


class SyncState(enum.StrEnum):
    draft = "draft"
    uploading = "uploading"
    synced = "synced"
    deleting = "deleting"
    deleted = "deleted"


# --- Condition variants ---


@dataclass(frozen=True)
class NoCondition:
    """Time-only trigger."""


@dataclass(frozen=True)
class ComparisonCondition:
    op: ComparisonOp
    threshold: int

    def matches(self, value: float) -> bool:
        if self.op is ComparisonOp.greater_than:
            return value > self.threshold
        return value < self.threshold


@dataclass(frozen=True)
class MotionCondition:
    """Discrete motion event."""


@dataclass(frozen=True)
class UnstructuredCondition:
    """A condition string outside the known grammar, kept verbatim for display."""

    text: str


Condition = NoCondition | ComparisonCondition | MotionCondition | UnstructuredCondition


# --- Action variants ---


@dataclass(frozen=True)
class DeviceAction:
    device_name: str
    turn_on: bool


@dataclass(frozen=True)
class FreeTextAction:
    """Label used when no structured output device is attached (e.g. "Execute")."""

    text: str


Action = DeviceAction | FreeTextAction

DEFAULT_ACTION_TEXT = "Execute"
PROTECTED_RULE_NAME = "Security System"


def new_rule_id() -> str:
    return str(uuid.uuid4()).upper()


class AutomationRule(SQLModel, table=True):
    """Local projection of one rule; the peer holds the authoritative copy."""

    id: str = Field(default_factory=new_rule_id, primary_key=True)
    name: str = ""
    condition: str = ""
    action: str = DEFAULT_ACTION_TEXT
    active_days: str = ""
    trigger_enabled: bool = False
    trigger_time: datetime = Field(default_factory=lambda: datetime.fromtimestamp(0, UTC))
    input_device_id: str | None = None
    output_device_id: str | None = None
    sync_state: SyncState = SyncState.draft
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def parsed_condition(self) -> Condition:
        from homeguard.rules.codec import decode_condition

        return decode_condition(self.condition)

    @property
    def parsed_action(self) -> Action:
        from homeguard.rules.codec import decode_action

        return decode_action(self.action)

    @property
    def days(self) -> tuple[Weekday, ...]:
        from homeguard.rules.codec import decode_days

        return decode_days(self.active_days)

    @property
    def is_structured(self) -> bool:
        """False when the condition or action could not be parsed (partial rule data)."""
        if isinstance(self.parsed_condition, UnstructuredCondition):
            return False
        return not (
            self.output_device_id and isinstance(self.parsed_action, FreeTextAction)
        )

    @property
    def is_protected(self) -> bool:
        return self.name == PROTECTED_RULE_NAME
