"""REST API endpoints."""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from sqlmodel import Session

from homeguard.controller import Controller
from homeguard.database import get_session
from homeguard.events.log import EventLogEntry, sim_time_label
from homeguard.peer.client import STATE_ACTIONS
from homeguard.peer.transport import InvalidResponse, PeerOutcome, PeerUnreachable, Success
from homeguard.registry.models import CONTROLLABLE_TYPES, INPUT_TYPES, Device, DeviceType
from homeguard.registry.store import (
    apply_command_state,
    get_all_devices,
    get_device,
    set_online,
    update_device,
)
from homeguard.rules.codec import WIRE_FIELDS
from homeguard.rules.models import AutomationRule, ComparisonOp
from homeguard.rules.schedule import RuleForm, build_rule, prefill
from homeguard.rules.sync import RuleStateError, SyncResult
from homeguard.sensors.models import SensorReading

router = APIRouter(prefix="/api")


def get_controller(request: Request) -> Controller:
    controller = getattr(request.app.state, "controller", None)
    if controller is None:
        raise HTTPException(status_code=503, detail="Peer not configured")
    return controller


def describe(outcome: PeerOutcome) -> str:
    match outcome:
        case PeerUnreachable(reason=reason):
            return f"Peer unreachable: {reason}"
        case InvalidResponse(reason=reason, status_code=status):
            return f"Invalid peer response: {reason} (HTTP {status})"
    return "ok"


def _require_success(outcome: PeerOutcome) -> Success:
    if not isinstance(outcome, Success):
        raise HTTPException(status_code=502, detail=describe(outcome))
    return outcome


def _require_device(session: Session, device_id: str) -> Device:
    device = get_device(session, device_id)
    if device is None:
        raise HTTPException(status_code=404, detail="Device not found")
    return device


# Request models
class UpdateDeviceRequest(BaseModel):
    name: str | None = None
    group: str | None = None
    is_favorite: bool | None = None
    sort_order: int | None = None


class CommandRequest(BaseModel):
    action: str = Field(pattern="^(on|off|toggle|open|close|status)$")


class ColorRequest(BaseModel):
    color: str


class LedRequest(BaseModel):
    strip: int = Field(ge=1, le=2)
    color: str


class LcdRequest(BaseModel):
    message: str = Field(max_length=32)
    duration: int = Field(default=5, ge=0)


class SecurityRequest(BaseModel):
    good_card: str
    bad_card: str
    granted_message: str = "Access Granted"
    denied_message: str = "Access Denied"
    buzzer_ms: int = Field(default=1000, ge=0)


class RuleFormRequest(BaseModel):
    name: str
    input_device_id: str | None = None
    output_device_id: str | None = None
    comparison: ComparisonOp = ComparisonOp.greater_than
    threshold: int = 70
    output_on: bool = True
    use_trigger_time: bool = False
    trigger_time: datetime | None = None
    active_days: list[str] = []


class CreateRuleRequest(RuleFormRequest):
    upload: bool = True


class RuleResponse(BaseModel):
    ok: bool
    rule: AutomationRule | None = None
    error: str | None = None


def _rule_response(result: SyncResult) -> RuleResponse:
    if not result.ok and result.error is not None:
        raise HTTPException(status_code=502, detail=describe(result.error))
    return RuleResponse(ok=result.ok, rule=result.rule)


def _rule_from_form(
    form: RuleFormRequest,
    session: Session,
    controller: Controller,
) -> AutomationRule:
    """Derive condition and action from the chosen devices, never from raw text."""
    sensor = output = None
    if form.input_device_id:
        sensor = _require_device(session, form.input_device_id)
    if form.output_device_id:
        output = _require_device(session, form.output_device_id)
    return build_rule(
        form.name,
        input_device=sensor,
        output_device=output,
        comparison=form.comparison,
        threshold=form.threshold,
        output_on=form.output_on,
        use_trigger_time=form.use_trigger_time,
        trigger_time=form.trigger_time,
        active_days=form.active_days,
        peer_now_ms=controller.poller.sim_time_ms(),
    )


# --- Devices ---


@router.get("/devices")
def list_devices(
    device_type: DeviceType | None = None,
    session: Session = Depends(get_session),
) -> list[Device]:
    return get_all_devices(session, device_type=device_type)


@router.get("/devices/{device_id}")
def device_detail(
    device_id: str,
    session: Session = Depends(get_session),
) -> Device:
    return _require_device(session, device_id)


@router.patch("/devices/{device_id}")
def edit_device(
    device_id: str,
    request: UpdateDeviceRequest,
    session: Session = Depends(get_session),
) -> Device:
    changes = request.model_dump(exclude_none=True)
    device = update_device(session, device_id, **changes)
    if device is None:
        raise HTTPException(status_code=404, detail="Device not found")
    return device


@router.post("/devices/{device_id}/command")
async def command_device(
    device_id: str,
    request: CommandRequest,
    session: Session = Depends(get_session),
    controller: Controller = Depends(get_controller),
) -> Device:
    device = _require_device(session, device_id)
    if request.action != "status" and device.device_type not in CONTROLLABLE_TYPES:
        raise HTTPException(status_code=409, detail=f"{device.device_type} is not controllable")

    client = controller.client
    if request.action == "toggle":
        outcome = await client.toggle(device.port)
    elif request.action in STATE_ACTIONS:
        outcome = await client.set_state(device.port, request.action)
    else:
        outcome = await client.status(device.port)

    if isinstance(outcome, PeerUnreachable):
        set_online(session, False, device_ids=[device.id])
    success = _require_success(outcome)
    device = apply_command_state(session, device, success.payload, request.action)
    if request.action != "status":
        controller.events.add(f"{device.name} turned {device.status}")
    return device


@router.post("/devices/{device_id}/color")
async def color_device(
    device_id: str,
    request: ColorRequest,
    session: Session = Depends(get_session),
    controller: Controller = Depends(get_controller),
) -> Device:
    device = _require_device(session, device_id)
    try:
        outcome = await controller.client.set_color(device.port, request.color)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    success = _require_success(outcome)
    device = apply_command_state(session, device, success.payload, "setColor")
    controller.events.add(f"{device.name} color set to {request.color}")
    return device


# --- Peripherals ---


@router.post("/peer/led")
async def set_led(
    request: LedRequest,
    controller: Controller = Depends(get_controller),
) -> dict[str, bool]:
    try:
        outcome = await controller.client.set_led(request.strip, request.color)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    _require_success(outcome)
    controller.events.add(f"LED strip {request.strip} set to {request.color}")
    return {"ok": True}


@router.post("/peer/lcd")
async def display_message(
    request: LcdRequest,
    controller: Controller = Depends(get_controller),
) -> dict[str, bool]:
    _require_success(await controller.client.display_message(request.message, request.duration))
    controller.events.add(f"LCD: {request.message}")
    return {"ok": True}


@router.post("/peer/security")
async def configure_security(
    request: SecurityRequest,
    controller: Controller = Depends(get_controller),
) -> dict[str, bool]:
    outcome = await controller.client.configure_security(
        request.good_card,
        request.bad_card,
        request.granted_message,
        request.denied_message,
        request.buzzer_ms,
    )
    _require_success(outcome)
    controller.events.add("Security settings updated")
    return {"ok": True}


@router.get("/peer/status")
def peer_status(
    controller: Controller = Depends(get_controller),
) -> dict[str, Any]:
    result = controller.monitor.last_result
    sim = controller.poller.sim_time_ms()
    return {
        "connected": controller.monitor.connected,
        "message": result.message if result else "Not checked yet",
        "latency_ms": result.latency_ms if result else None,
        "base_url": controller.client.transport.base_url,
        "peer_clock": sim_time_label(sim) if sim is not None else None,
    }


# --- Sensors ---


@router.get("/sensors/latest")
def latest_reading(
    controller: Controller = Depends(get_controller),
) -> SensorReading:
    reading = controller.poller.latest()
    if reading is None:
        raise HTTPException(status_code=404, detail="No reading yet")
    return reading


@router.get("/sensors/history")
def reading_history(
    controller: Controller = Depends(get_controller),
) -> list[SensorReading]:
    return controller.poller.history()


@router.post("/sensors/poll")
async def poll_now(
    controller: Controller = Depends(get_controller),
) -> SensorReading:
    outcome = await controller.poller.poll_once()
    if outcome is None:
        raise HTTPException(status_code=409, detail="Reading superseded")
    return _require_success(outcome).payload


# --- Automation rules ---


@router.get("/rules")
def list_rules(
    controller: Controller = Depends(get_controller),
) -> list[AutomationRule]:
    return controller.rules.rules()


# Literal path must come before {rule_id} parametric path
@router.post("/rules/refresh")
async def refresh_rules(
    controller: Controller = Depends(get_controller),
) -> list[AutomationRule]:
    result = await controller.rules.refresh()
    if not result.ok and result.error is not None:
        raise HTTPException(status_code=502, detail=describe(result.error))
    return controller.rules.rules()


@router.get("/rules/{rule_id}")
def rule_detail(
    rule_id: str,
    controller: Controller = Depends(get_controller),
) -> AutomationRule:
    rule = controller.rules.get(rule_id)
    if rule is None:
        raise HTTPException(status_code=404, detail="Rule not found")
    return rule


@router.get("/rules/{rule_id}/form")
def rule_form(
    rule_id: str,
    session: Session = Depends(get_session),
    controller: Controller = Depends(get_controller),
) -> RuleForm:
    rule = controller.rules.get(rule_id)
    if rule is None:
        raise HTTPException(status_code=404, detail="Rule not found")
    sensors = [d for d in get_all_devices(session) if d.device_type in INPUT_TYPES]
    return prefill(rule, sensors)


@router.post("/rules", status_code=201)
async def create_rule(
    request: CreateRuleRequest,
    session: Session = Depends(get_session),
    controller: Controller = Depends(get_controller),
) -> RuleResponse:
    rule = controller.rules.add_draft(_rule_from_form(request, session, controller))
    if not request.upload:
        return RuleResponse(ok=True, rule=rule)
    result = await controller.rules.upload(rule.id)
    if result.ok:
        controller.events.add(f"Automation '{rule.name}' saved")
    return _rule_response(result)


@router.put("/rules/{rule_id}")
async def save_rule(
    rule_id: str,
    request: RuleFormRequest,
    session: Session = Depends(get_session),
    controller: Controller = Depends(get_controller),
) -> RuleResponse:
    if controller.rules.state_of(rule_id) is None:
        raise HTTPException(status_code=404, detail="Rule not found")
    built = _rule_from_form(request, session, controller)
    changes = {name: getattr(built, name) for name in WIRE_FIELDS}
    try:
        result = await controller.rules.save(rule_id, **changes)
    except KeyError as e:
        raise HTTPException(status_code=404, detail="Rule not found") from e
    except RuleStateError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return _rule_response(result)


@router.delete("/rules/{rule_id}")
async def delete_rule(
    rule_id: str,
    controller: Controller = Depends(get_controller),
) -> RuleResponse:
    try:
        result = await controller.rules.delete(rule_id)
    except KeyError as e:
        raise HTTPException(status_code=404, detail="Rule not found") from e
    except RuleStateError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    if result.ok and result.rule is not None:
        controller.events.add(f"Automation '{result.rule.name}' deleted")
    return _rule_response(result)


@router.post("/rules/{rule_id}/toggle")
async def toggle_rule(
    rule_id: str,
    controller: Controller = Depends(get_controller),
) -> RuleResponse:
    try:
        result = await controller.rules.toggle(rule_id)
    except KeyError as e:
        raise HTTPException(status_code=404, detail="Rule not found") from e
    except RuleStateError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return _rule_response(result)


# --- Event log ---


@router.get("/events")
def list_events(
    limit: int = 100,
    controller: Controller = Depends(get_controller),
) -> list[EventLogEntry]:
    return controller.events.entries(limit=limit)


@router.get("/events/peer")
async def peer_logs(
    controller: Controller = Depends(get_controller),
) -> list[str]:
    return await controller.events.fetch_peer_logs()
