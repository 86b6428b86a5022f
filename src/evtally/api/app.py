"""Starlette application exposing the engine to the UI/API layer."""

import json
import logging
from datetime import UTC, datetime

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from ..engine import (
    AvailabilitySnapshot,
    ChargingEngine,
    ChargingError,
    DuplicateActiveSession,
    InternalFault,
    InvalidReading,
    InvoiceNotFound,
    InvoiceStateError,
    PointNotFound,
    PointUnavailable,
    SessionNotActive,
    SessionNotCompleted,
    SessionNotFound,
    StationNotFound,
)
from ..logging_utils import log_error
from ..models import PointStatus, SessionStatus
from .serializers import (
    invoice_to_dict,
    reading_to_dict,
    snapshot_to_dict,
    update_to_dict,
)

logger = logging.getLogger(__name__)

STATUS_CODES: dict[type[ChargingError], int] = {
    SessionNotFound: 404,
    PointNotFound: 404,
    StationNotFound: 404,
    InvoiceNotFound: 404,
    PointUnavailable: 409,
    DuplicateActiveSession: 409,
    SessionNotActive: 409,
    SessionNotCompleted: 409,
    InvoiceStateError: 409,
    InvalidReading: 422,
    InternalFault: 500,
}


def _engine(request: Request) -> ChargingEngine:
    return request.app.state.engine


async def _body(request: Request) -> dict:
    raw = await request.body()
    if not raw:
        return {}
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("request body must be a JSON object")
    return data


def _require(data: dict, *names: str) -> None:
    missing = [name for name in names if data.get(name) is None]
    if missing:
        raise ValueError(f"missing required field(s): {', '.join(missing)}")


def _int_param(request: Request, name: str, default: int) -> int:
    raw = request.query_params.get(name)
    if raw is None:
        return default
    value = int(raw)
    if value < 0:
        raise ValueError(f"{name} must be >= 0")
    return value


async def charging_error(request: Request, exc: ChargingError) -> JSONResponse:
    status_code = 400
    for cls in type(exc).__mro__:
        if cls in STATUS_CODES:
            status_code = STATUS_CODES[cls]
            break
    if status_code >= 500:
        log_error(logger, "request_fault", exc.message, session_id=exc.details.get("session_id"))
    return JSONResponse(exc.to_dict(), status_code=status_code)


async def bad_request(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse({"error": "BadRequest", "message": str(exc)}, status_code=400)


async def health(request: Request):
    return JSONResponse({"ok": True})


# Sessions


async def start_session(request: Request):
    data = await _body(request)
    _require(data, "user_id", "point_id", "meter_start")
    battery = data.get("battery") or {}
    engine = _engine(request)
    session = await engine.sessions.start(
        user_id=data["user_id"],
        point_id=data["point_id"],
        meter_start=data["meter_start"],
        booking_id=data.get("booking_id"),
        vehicle_id=data.get("vehicle_id"),
        battery_capacity_kwh=battery.get("capacity_kwh"),
        initial_battery_percent=battery.get("initial_percent"),
        target_battery_percent=battery.get("target_percent"),
    )
    snapshot = engine.sessions.project(session, session.start_time)
    return JSONResponse(snapshot_to_dict(snapshot), status_code=201)


async def update_meter(request: Request):
    data = await _body(request)
    _require(data, "reading")
    update = await _engine(request).sessions.update_meter(
        request.path_params["session_id"], data["reading"]
    )
    return JSONResponse(update_to_dict(update))


async def stop_session(request: Request):
    data = await _body(request)
    idle_override = data.get("idle_minutes")
    engine = _engine(request)
    session = await engine.sessions.stop(
        request.path_params["session_id"],
        meter_end=data.get("meter_end"),
        idle_minutes_override=float(idle_override) if idle_override is not None else None,
    )
    return JSONResponse(snapshot_to_dict(engine.sessions.project(session, session.end_time)))


async def get_session(request: Request):
    snapshot = await _engine(request).sessions.snapshot(request.path_params["session_id"])
    return JSONResponse(snapshot_to_dict(snapshot))


async def get_session_readings(request: Request):
    readings = await _engine(request).sessions.get_readings(request.path_params["session_id"])
    return JSONResponse({"readings": [reading_to_dict(r) for r in readings]})


async def list_sessions(request: Request):
    params = request.query_params
    status = params.get("status")
    engine = _engine(request)
    now = datetime.now(UTC)
    sessions, total = await engine.sessions.list_sessions(
        user_id=params.get("user_id"),
        status=SessionStatus(status) if status else None,
        point_id=params.get("point_id"),
        limit=min(_int_param(request, "limit", 50), 500),
        offset=_int_param(request, "offset", 0),
    )
    return JSONResponse(
        {
            "total": total,
            "sessions": [snapshot_to_dict(engine.sessions.project(s, now)) for s in sessions],
        }
    )


async def active_session_for_user(request: Request):
    user_id = request.path_params["user_id"]
    engine = _engine(request)
    session = await engine.sessions.get_active_for_user(user_id)
    if session is None:
        return JSONResponse(
            {"error": "NoActiveSession", "message": f"User {user_id} has no active charging session"},
            status_code=404,
        )
    return JSONResponse(snapshot_to_dict(await engine.sessions.snapshot(session.id)))


# Invoices


async def issue_invoice(request: Request):
    invoice = await _engine(request).invoices.issue_or_get(request.path_params["session_id"])
    return JSONResponse(invoice_to_dict(invoice))


async def get_invoice(request: Request):
    invoice = await _engine(request).invoices.get(request.path_params["invoice_id"])
    return JSONResponse(invoice_to_dict(invoice))


async def list_user_invoices(request: Request):
    invoices = await _engine(request).invoices.list_for_user(
        request.path_params["user_id"], limit=min(_int_param(request, "limit", 50), 500)
    )
    return JSONResponse({"invoices": [invoice_to_dict(i) for i in invoices]})


async def pay_invoice(request: Request):
    data = await _body(request)
    _require(data, "payment_id")
    invoice = await _engine(request).invoices.mark_paid(
        request.path_params["invoice_id"], str(data["payment_id"])
    )
    return JSONResponse(invoice_to_dict(invoice))


async def cancel_invoice(request: Request):
    invoice = await _engine(request).invoices.cancel(request.path_params["invoice_id"])
    return JSONResponse(invoice_to_dict(invoice))


# Availability


async def point_availability(request: Request):
    result = await _engine(request).availability.classify_point(
        request.path_params["point_id"], request.query_params.get("vehicle_type")
    )
    return JSONResponse(result.to_dict())


async def station_availability(request: Request):
    result = await _engine(request).availability.classify_station(
        request.path_params["station_id"], request.query_params.get("vehicle_type")
    )
    return JSONResponse(result.to_dict())


async def all_stations_availability(request: Request):
    results = await _engine(request).availability.classify_all_stations(
        request.query_params.get("vehicle_type")
    )
    return JSONResponse({"stations": [r.to_dict() for r in results]})


async def classify_snapshot(request: Request):
    data = await _body(request)
    _require(data, "status", "available_spots")
    available = int(data["available_spots"])
    next_available = data.get("next_available_minutes")
    snapshot = AvailabilitySnapshot(
        status=PointStatus(data["status"]),
        available_spots=available,
        total_spots=int(data.get("total_spots", available)),
        next_available_minutes=int(next_available) if next_available is not None else None,
        vehicle_compatibility=tuple(data.get("vehicle_compatibility") or ()),
        subject_id=data.get("id"),
        name=data.get("name", ""),
    )
    result = _engine(request).availability.classifier.classify(snapshot, data.get("vehicle_type"))
    return JSONResponse(result.to_dict())


routes = [
    Route("/health", endpoint=health),
    Route("/sessions", endpoint=start_session, methods=["POST"]),
    Route("/sessions", endpoint=list_sessions, methods=["GET"]),
    Route("/sessions/{session_id}", endpoint=get_session, methods=["GET"]),
    Route("/sessions/{session_id}/meter", endpoint=update_meter, methods=["PUT"]),
    Route("/sessions/{session_id}/stop", endpoint=stop_session, methods=["PUT"]),
    Route("/sessions/{session_id}/readings", endpoint=get_session_readings, methods=["GET"]),
    Route("/sessions/{session_id}/invoice", endpoint=issue_invoice, methods=["POST"]),
    Route("/users/{user_id}/active-session", endpoint=active_session_for_user, methods=["GET"]),
    Route("/users/{user_id}/invoices", endpoint=list_user_invoices, methods=["GET"]),
    Route("/invoices/{invoice_id}", endpoint=get_invoice, methods=["GET"]),
    Route("/invoices/{invoice_id}/pay", endpoint=pay_invoice, methods=["PUT"]),
    Route("/invoices/{invoice_id}/cancel", endpoint=cancel_invoice, methods=["PUT"]),
    Route("/points/{point_id}/availability", endpoint=point_availability, methods=["GET"]),
    Route("/stations/availability", endpoint=all_stations_availability, methods=["GET"]),
    Route("/stations/{station_id}/availability", endpoint=station_availability, methods=["GET"]),
    Route("/availability/classify", endpoint=classify_snapshot, methods=["POST"]),
]


def create_app(engine: ChargingEngine, debug: bool = False) -> Starlette:
    """Build the application around an already initialized engine."""
    app = Starlette(
        debug=debug,
        routes=routes,
        exception_handlers={
            ChargingError: charging_error,
            ValueError: bad_request,
        },
    )
    app.state.engine = engine
    return app
