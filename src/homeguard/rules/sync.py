"""Rule synchronization with the peer.

Each rule moves through an explicit state machine::

    draft ──upload──> uploading ──ok──> synced ──delete──> deleting ──ok──> deleted
      ^                  │  ^              │                   │
      └─────failure──────┘  └────edit──────┘<─────failure──────┘

A failed upload or delete reverts the rule to the state it had before,
and the caller gets a ``SyncResult`` carrying the peer outcome. The local
table is a projection of the peer's list: ``refresh`` reconciles it by
rule id, updating matched rows in place.
"""

import asyncio
import logging
from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlmodel import Session, select

from homeguard.peer.client import PeerClient
from homeguard.peer.transport import PeerOutcome, Success
from homeguard.rules.codec import (
    WIRE_FIELDS,
    decode_condition,
    decode_time,
    encode_action,
    encode_condition,
    encode_days,
    same_content,
)
from homeguard.rules.models import (
    Action,
    AutomationRule,
    Condition,
    SyncState,
    UnstructuredCondition,
)

logger = logging.getLogger(__name__)

# Allowed moves; anything else raises RuleStateError.
TRANSITIONS: dict[SyncState, frozenset[SyncState]] = {
    SyncState.draft: frozenset({SyncState.uploading, SyncState.deleted}),
    SyncState.uploading: frozenset({SyncState.synced, SyncState.draft}),
    SyncState.synced: frozenset({SyncState.uploading, SyncState.deleting}),
    SyncState.deleting: frozenset({SyncState.deleted, SyncState.synced}),
    SyncState.deleted: frozenset(),
}


_REQUIRED_FIELDS = frozenset(WIRE_FIELDS) - {"input_device_id", "output_device_id"}


class RuleStateError(ValueError):
    """An operation is not valid for the rule's current sync state."""


@dataclass
class SyncResult:
    ok: bool
    rule: AutomationRule | None = None
    error: PeerOutcome | None = None


def check_transition(current: SyncState, target: SyncState) -> None:
    if target not in TRANSITIONS[current]:
        raise RuleStateError(f"Cannot move rule from {current} to {target}")


def _normalize_fields(fields: dict[str, Any]) -> dict[str, Any]:
    unknown = set(fields) - set(WIRE_FIELDS)
    if unknown:
        raise ValueError(f"Not editable rule field(s): {sorted(unknown)}")
    nulls = sorted(k for k in _REQUIRED_FIELDS & fields.keys() if fields[k] is None)
    if nulls:
        raise ValueError(f"Rule field(s) cannot be null: {nulls}")
    out = dict(fields)
    if "condition" in out:
        condition = out["condition"]
        if isinstance(condition, str):
            condition = decode_condition(condition)
        if isinstance(condition, UnstructuredCondition):
            raise ValueError(f"Condition {condition.text!r} is not a comparison or motion trigger")
        out["condition"] = encode_condition(condition)
    if "action" in out and not isinstance(out["action"], str):
        out["action"] = encode_action(out["action"])
    if "active_days" in out:
        days = out["active_days"]
        out["active_days"] = encode_days(days.split(",") if isinstance(days, str) else days)
    if "trigger_time" in out and not isinstance(out["trigger_time"], datetime):
        out["trigger_time"] = decode_time(out["trigger_time"])
    return out


class RuleSyncCoordinator:
    """Create, edit, delete and toggle rules against the peer.

    At most one mutation per rule runs at a time; later calls for the same
    rule wait their turn. Database sessions are never held across a
    network call.
    """

    def __init__(
        self,
        client: PeerClient,
        session_factory: Callable[[], Session],
        reconcile_after_mutation: bool = True,
    ) -> None:
        self.client = client
        self.session_factory = session_factory
        self.reconcile_after_mutation = reconcile_after_mutation
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._refresh_lock = asyncio.Lock()
        self._removed: set[str] = set()

    # --- Local projection ---

    def rules(self) -> list[AutomationRule]:
        with self.session_factory() as session:
            stmt = select(AutomationRule).order_by(AutomationRule.name)  # type: ignore[arg-type]
            return list(session.exec(stmt).all())

    def get(self, rule_id: str) -> AutomationRule | None:
        with self.session_factory() as session:
            return session.get(AutomationRule, rule_id)

    def state_of(self, rule_id: str) -> SyncState | None:
        """Current state, ``deleted`` for rules removed this session, else None."""
        rule = self.get(rule_id)
        if rule is not None:
            return rule.sync_state
        return SyncState.deleted if rule_id in self._removed else None

    def _require(self, session: Session, rule_id: str) -> AutomationRule:
        rule = session.get(AutomationRule, rule_id)
        if rule is None:
            if rule_id in self._removed:
                raise RuleStateError(f"Rule {rule_id} is deleted")
            raise KeyError(rule_id)
        return rule

    def _move(
        self,
        rule_id: str,
        target: SyncState,
        **fields: Any,
    ) -> AutomationRule:
        with self.session_factory() as session:
            rule = self._require(session, rule_id)
            check_transition(rule.sync_state, target)
            for key, value in fields.items():
                setattr(rule, key, value)
            rule.sync_state = target
            rule.updated_at = datetime.now(UTC)
            session.add(rule)
            session.commit()
            session.refresh(rule)
            logger.debug("Rule %s -> %s", rule_id, target)
            return rule

    def _remove(self, rule_id: str) -> AutomationRule:
        with self.session_factory() as session:
            rule = self._require(session, rule_id)
            check_transition(rule.sync_state, SyncState.deleted)
            # Detached copy; the row itself is gone after commit.
            gone = AutomationRule.model_validate(rule.model_dump())
            session.delete(rule)
            session.commit()
        gone.sync_state = SyncState.deleted
        self._removed.add(rule_id)
        return gone

    # --- Operations ---

    def create_draft(
        self,
        name: str,
        condition: Condition | str = "",
        action: Action | str = "",
        active_days: Iterable[str] | str = "",
        trigger_enabled: bool = False,
        trigger_time: datetime | int | None = None,
        input_device_id: str | None = None,
        output_device_id: str | None = None,
    ) -> AutomationRule:
        """Persist a new local rule with a fresh id; nothing is sent yet."""
        raw: dict[str, Any] = {
            "name": name,
            "condition": condition,
            "active_days": active_days,
            "trigger_enabled": trigger_enabled,
            "input_device_id": input_device_id,
            "output_device_id": output_device_id,
        }
        if action:
            raw["action"] = action
        if trigger_time is not None:
            raw["trigger_time"] = trigger_time
        fields = _normalize_fields(raw)
        return self.add_draft(AutomationRule(**fields))

    def add_draft(self, rule: AutomationRule) -> AutomationRule:
        """Persist an already built rule (see ``rules.schedule.build_rule``) as a draft."""
        if self.get(rule.id) is not None:
            raise RuleStateError(f"Rule {rule.id} already exists")
        rule.sync_state = SyncState.draft
        with self.session_factory() as session:
            session.add(rule)
            session.commit()
            session.refresh(rule)
        logger.info("Created draft rule %s (%s)", rule.name, rule.id)
        return rule

    async def upload(self, rule_id: str) -> SyncResult:
        """Send the rule to the peer (create or overwrite by id)."""
        async with self._locks[rule_id]:
            return await self._upload(rule_id, snapshot=None)

    async def save(self, rule_id: str, **changes: Any) -> SyncResult:
        """Edit a draft or synced rule and upload it.

        If the upload fails, a synced rule gets its previous field values
        back; a draft keeps the edits.
        """
        fields = _normalize_fields(changes)
        async with self._locks[rule_id]:
            with self.session_factory() as session:
                rule = self._require(session, rule_id)
                if rule.sync_state not in (SyncState.draft, SyncState.synced):
                    raise RuleStateError(f"Cannot edit rule in state {rule.sync_state}")
                snapshot = (
                    {name: getattr(rule, name) for name in WIRE_FIELDS}
                    if rule.sync_state is SyncState.synced
                    else None
                )
                for key, value in fields.items():
                    setattr(rule, key, value)
                rule.updated_at = datetime.now(UTC)
                session.add(rule)
                session.commit()
            return await self._upload(rule_id, snapshot=snapshot)

    async def _upload(self, rule_id: str, snapshot: dict[str, Any] | None) -> SyncResult:
        with self.session_factory() as session:
            prior = self._require(session, rule_id).sync_state
        rule = self._move(rule_id, SyncState.uploading)

        outcome = await self.client.upload_rule(rule)
        if not isinstance(outcome, Success):
            logger.warning("Upload of rule %s failed: %s", rule_id, outcome)
            rule = self._move(rule_id, prior, **(snapshot or {}))
            return SyncResult(ok=False, rule=rule, error=outcome)

        rule = self._move(rule_id, SyncState.synced)
        logger.info("Rule %s (%s) synced", rule.name, rule_id)
        if self.reconcile_after_mutation:
            await self.refresh()
            rule = self.get(rule_id) or rule
        return SyncResult(ok=True, rule=rule)

    async def delete(self, rule_id: str) -> SyncResult:
        """Remove a rule. Drafts are dropped locally without a peer call."""
        async with self._locks[rule_id]:
            with self.session_factory() as session:
                rule = self._require(session, rule_id)
                prior = rule.sync_state
                if rule.is_protected:
                    raise RuleStateError(f"Rule {rule.name!r} cannot be deleted")

            if prior is SyncState.draft:
                return SyncResult(ok=True, rule=self._remove(rule_id))

            self._move(rule_id, SyncState.deleting)
            outcome = await self.client.delete_rule(rule_id)
            if not isinstance(outcome, Success):
                logger.warning("Delete of rule %s failed: %s", rule_id, outcome)
                rule = self._move(rule_id, SyncState.synced)
                return SyncResult(ok=False, rule=rule, error=outcome)

            rule = self._remove(rule_id)
            logger.info("Rule %s deleted", rule_id)
        if self.reconcile_after_mutation:
            await self.refresh()
        return SyncResult(ok=True, rule=rule)

    async def toggle(self, rule_id: str) -> SyncResult:
        """Flip ``trigger_enabled``. Synced rules are flipped on the peer, once."""
        async with self._locks[rule_id]:
            with self.session_factory() as session:
                rule = self._require(session, rule_id)
                state = rule.sync_state
                enabled = rule.trigger_enabled
            if state is SyncState.draft:
                return SyncResult(ok=True, rule=self._set_enabled(rule_id, not enabled))
            if state is not SyncState.synced:
                raise RuleStateError(f"Cannot toggle rule in state {state}")

            outcome = await self.client.toggle_rule(rule_id)
            if not isinstance(outcome, Success):
                logger.warning("Toggle of rule %s failed: %s", rule_id, outcome)
                return SyncResult(ok=False, rule=self.get(rule_id), error=outcome)
            rule = self._set_enabled(rule_id, not enabled)
        if self.reconcile_after_mutation:
            await self.refresh()
            rule = self.get(rule_id) or rule
        return SyncResult(ok=True, rule=rule)

    def _set_enabled(self, rule_id: str, enabled: bool) -> AutomationRule:
        with self.session_factory() as session:
            rule = self._require(session, rule_id)
            rule.trigger_enabled = enabled
            rule.updated_at = datetime.now(UTC)
            session.add(rule)
            session.commit()
            session.refresh(rule)
            return rule

    async def refresh(self) -> SyncResult:
        """Reconcile the local table with the peer's rule list.

        Matched ids are updated in place and marked synced. Synced rules the
        peer no longer lists are removed. Drafts and rules with an upload or
        delete in flight are left alone. On failure nothing changes.
        """
        async with self._refresh_lock:
            outcome = await self.client.fetch_rules()
            if not isinstance(outcome, Success):
                logger.warning("Rule refresh failed, keeping local rules: %s", outcome)
                return SyncResult(ok=False, error=outcome)

            fetched: dict[str, AutomationRule] = {}
            for remote in outcome.payload:
                fetched[remote.id] = remote

            added = updated = removed = 0
            with self.session_factory() as session:
                for local in session.exec(select(AutomationRule)).all():
                    remote = fetched.pop(local.id, None)
                    if local.sync_state in (SyncState.uploading, SyncState.deleting):
                        continue
                    if remote is None:
                        if local.sync_state is SyncState.synced:
                            session.delete(local)
                            self._removed.add(local.id)
                            removed += 1
                        continue
                    if local.sync_state is not SyncState.synced or not same_content(
                        local, remote
                    ):
                        for name in WIRE_FIELDS:
                            setattr(local, name, getattr(remote, name))
                        local.sync_state = SyncState.synced
                        local.updated_at = datetime.now(UTC)
                        session.add(local)
                        updated += 1
                for remote in fetched.values():
                    remote.sync_state = SyncState.synced
                    session.add(remote)
                    self._removed.discard(remote.id)
                    added += 1
                session.commit()

            if added or updated or removed:
                logger.info(
                    "Rules reconciled: %d added, %d updated, %d removed", added, updated, removed
                )
            return SyncResult(ok=True)
