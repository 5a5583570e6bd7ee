"""
Hive Monitor - API Server

Provides endpoints for:
- Reading ingestion from edge devices (answers with the LVD policy)
- LVD threshold policy fetch / update
- Dashboard queries (device status, series, aggregates, charts)
- Device management and bulk export (operators only)
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime

from fastapi import Depends, FastAPI, Header, Query, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.exc import DBAPIError, TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession

from hive_monitor import __version__
from hive_monitor.api.schemas import ChangePasswordIn, DeviceIn, LoginIn, PolicyUpdate, ReadingIn
from hive_monitor.core.config import settings
from hive_monitor.core.database import async_session_maker, get_db, to_naive_utc
from hive_monitor.core.errors import HiveMonitorError, InvalidPayload, Transient, Unauthorized
from hive_monitor.models.operator import Operator
from hive_monitor.services.auth import OperatorService
from hive_monitor.services.bootstrap import run_bootstrap
from hive_monitor.services.charts import generate_device_chart
from hive_monitor.services.export import ExportService, export_filename
from hive_monitor.services.ingestion import IngestionService
from hive_monitor.services.policy import ThresholdPolicyStore
from hive_monitor.services.query import DEFAULT_RANGE, QueryService, device_to_dict, range_to_delta
from hive_monitor.services.readings import ReadingStore, reading_to_dict
from hive_monitor.services.registry import DeviceRegistry

# Setup logging
logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 1000
MAX_LVD_HISTORY_LIMIT = 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.seed_on_startup:
        await run_bootstrap(async_session_maker)
    logger.info(f"🐝 Hive Monitor API v{__version__} ready")
    yield


# ==================== APP ====================

app = FastAPI(
    title="Hive Monitor API",
    description="Telemetry ingestion and LVD threshold control for hive sensor nodes",
    version=__version__,
    lifespan=lifespan,
)


@app.middleware("http")
async def request_timeout(request, call_next):
    """Fail requests that exceed the timeout with a retryable error."""
    try:
        return await asyncio.wait_for(call_next(request), timeout=settings.request_timeout_seconds)
    except asyncio.TimeoutError:
        logger.error(f"⏱️ Request timed out: {request.method} {request.url.path}")
        error = Transient("Request timed out, retry")
        return JSONResponse(error.to_dict(), status_code=error.status_code)


# ==================== ERRORS ====================

@app.exception_handler(HiveMonitorError)
async def handle_service_error(request, exc: HiveMonitorError):
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    location = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
    field = location[-1] if location else None
    error = InvalidPayload(f"Malformed request: {first.get('msg', 'invalid input')}", field=field)
    return JSONResponse(error.to_dict(), status_code=error.status_code)


@app.exception_handler(DBAPIError)
@app.exception_handler(PoolTimeoutError)
async def handle_storage_error(request, exc: Exception):
    # Driver details go to the log only
    logger.error(f"❌ Storage error on {request.method} {request.url.path}: {exc}")
    error = Transient("Storage temporarily unavailable, retry")
    return JSONResponse(error.to_dict(), status_code=error.status_code)


# ==================== AUTH DEPENDENCIES ====================

def _bearer_token(authorization: str | None) -> str | None:
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip()
    return None


async def require_operator(
    authorization: str | None = Header(None),
    session: AsyncSession = Depends(get_db),
) -> Operator:
    return await OperatorService(session).from_token(_bearer_token(authorization))


async def optional_operator(
    authorization: str | None = Header(None),
    session: AsyncSession = Depends(get_db),
) -> Operator | None:
    token = _bearer_token(authorization)
    if not token:
        return None
    try:
        return await OperatorService(session).from_token(token)
    except Unauthorized:
        return None


def _parse_device_filter(device_id: str | None) -> int | None:
    if device_id is None or device_id == "all":
        return None
    try:
        return int(device_id)
    except ValueError:
        raise InvalidPayload("device_id must be an integer or 'all'", field="device_id")


# ==================== INGESTION ====================

@app.post("/readings")
async def submit_reading(body: ReadingIn, session: AsyncSession = Depends(get_db)):
    """
    Device posts a reading here (credential in body, no operator auth).
    Response carries the live LVD policy.
    """
    result = await IngestionService(session).submit(
        body.credential,
        body.reading_fields(),
        recorded_at=body.recorded_at_utc(),
    )
    return result.to_dict()


# ==================== LVD POLICY ====================

@app.get("/lvd/settings")
async def get_lvd_settings(session: AsyncSession = Depends(get_db)):
    """Policy fetch for simple devices (no auth, read-only)."""
    policy = await ThresholdPolicyStore(session).get()
    return {"status": "ok", **policy.to_wire()}


@app.put("/lvd/settings")
async def update_lvd_settings(
    body: PolicyUpdate,
    session: AsyncSession = Depends(get_db),
    operator: Operator = Depends(require_operator),
):
    policy = await ThresholdPolicyStore(session).update(body.changes())
    logger.info(f"⚡ Policy changed by '{operator.username}'")
    return {"status": "ok", "message": "Settings updated", "settings": policy.to_dict()}


@app.get("/lvd")
async def get_lvd_status(session: AsyncSession = Depends(get_db)):
    """Latest battery/relay telemetry plus current settings."""
    return {"status": "ok", **await QueryService(session).lvd_status()}


@app.get("/lvd/history")
async def get_lvd_history(
    hours: float = Query(24, gt=0),
    limit: int = Query(100, ge=1),
    device_id: int | None = Query(None),
    session: AsyncSession = Depends(get_db),
):
    """Battery/relay readings, newest first."""
    readings = await QueryService(session).lvd_history(
        hours=hours, limit=min(limit, MAX_LVD_HISTORY_LIMIT), device_id=device_id
    )
    return {"status": "ok", "count": len(readings), "readings": readings}


# ==================== DEVICES ====================

@app.get("/devices")
async def list_devices(
    session: AsyncSession = Depends(get_db),
    operator: Operator | None = Depends(optional_operator),
):
    devices = await QueryService(session).list_devices_with_status(
        include_credential=operator is not None
    )
    return {"status": "ok", "devices": devices}


@app.post("/devices", status_code=201)
async def create_device(
    body: DeviceIn,
    session: AsyncSession = Depends(get_db),
    operator: Operator = Depends(require_operator),
):
    device = await DeviceRegistry(session).create(body.name)
    return {"status": "ok", "device": device_to_dict(device, include_credential=True)}


@app.get("/devices/{device_id}")
async def get_device(
    device_id: int,
    range: str = Query(DEFAULT_RANGE),
    max_points: int | None = Query(None, ge=1),
    session: AsyncSession = Depends(get_db),
    operator: Operator | None = Depends(optional_operator),
):
    detail = await QueryService(session).detail_for(
        device_id,
        range_key=range,
        max_points=max_points,
        include_credential=operator is not None,
    )
    return {"status": "ok", "device": detail}


@app.get("/devices/{device_id}/chart.png")
async def get_device_chart(
    device_id: int,
    range: str = Query(DEFAULT_RANGE),
    session: AsyncSession = Depends(get_db),
):
    hours = range_to_delta(range).total_seconds() / 3600
    service = QueryService(session)
    device = await service.registry.get(device_id)
    readings = await service.chart_series(device.id, hours=hours)

    buf = await run_in_threadpool(generate_device_chart, readings, device.name, range, settings.tz)
    return StreamingResponse(buf, media_type="image/png")


@app.put("/devices/{device_id}")
async def rename_device(
    device_id: int,
    body: DeviceIn,
    session: AsyncSession = Depends(get_db),
    operator: Operator = Depends(require_operator),
):
    device = await DeviceRegistry(session).rename(device_id, body.name)
    return {"status": "ok", "message": "Device updated", "device": device_to_dict(device)}


@app.post("/devices/{device_id}/regenerate-key")
async def regenerate_device_key(
    device_id: int,
    session: AsyncSession = Depends(get_db),
    operator: Operator = Depends(require_operator),
):
    credential = await DeviceRegistry(session).regenerate_credential(device_id)
    return {"status": "ok", "message": "API key regenerated", "credential": credential}


@app.delete("/devices/{device_id}")
async def deactivate_device(
    device_id: int,
    session: AsyncSession = Depends(get_db),
    operator: Operator = Depends(require_operator),
):
    device = await DeviceRegistry(session).deactivate(device_id)
    return {"status": "ok", "message": "Device deactivated", "device": device_to_dict(device)}


# ==================== READINGS ====================

@app.get("/readings")
async def list_readings(
    device_id: int | None = Query(None),
    start: datetime | None = Query(None),
    end: datetime | None = Query(None),
    limit: int = Query(100, ge=1),
    session: AsyncSession = Depends(get_db),
):
    readings = await ReadingStore(session).search(
        device_id=device_id,
        start=to_naive_utc(start),
        end=to_naive_utc(end),
        limit=min(limit, MAX_LIST_LIMIT),
    )
    return {"status": "ok", "count": len(readings), "readings": [reading_to_dict(r) for r in readings]}


@app.get("/readings/chart")
async def chart_readings(
    device_id: int | None = Query(None),
    hours: float = Query(24, gt=0),
    session: AsyncSession = Depends(get_db),
):
    readings = await QueryService(session).chart_series(device_id, hours=hours)
    return {"status": "ok", "count": len(readings), "readings": [reading_to_dict(r) for r in readings]}


@app.get("/readings/stats")
async def reading_stats(
    device_id: int | None = Query(None),
    hours: float = Query(24, gt=0),
    session: AsyncSession = Depends(get_db),
):
    stats = await QueryService(session).stats(device_id, hours=hours)
    return {"status": "ok", "stats": stats}


# ==================== EXPORT ====================

@app.get("/export")
async def export_readings(
    export_format: str = Query("csv", alias="format", pattern="^(csv|json)$"),
    device_id: str | None = Query("all"),
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    session: AsyncSession = Depends(get_db),
    operator: Operator = Depends(require_operator),
):
    filters = {
        "device_id": _parse_device_filter(device_id),
        "start_date": start_date,
        "end_date": end_date,
    }
    service = ExportService(session)
    filename = export_filename(export_format)
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}

    if export_format == "json":
        return JSONResponse(await service.to_json(**filters), headers=headers)

    return Response(
        content=await service.to_csv(**filters),
        media_type="text/csv",
        headers=headers,
    )


@app.get("/export/stats")
async def export_stats(
    session: AsyncSession = Depends(get_db),
    operator: Operator = Depends(require_operator),
):
    return {"status": "ok", "stats": await ExportService(session).stats()}


# ==================== AUTH ====================

@app.post("/auth/login")
async def login(body: LoginIn, session: AsyncSession = Depends(get_db)):
    token, operator = await OperatorService(session).login(body.username, body.password)
    return {
        "status": "ok",
        "message": "Login successful",
        "token": token,
        "user": {"id": operator.id, "username": operator.username},
    }


@app.get("/auth/me")
async def me(operator: Operator = Depends(require_operator)):
    return {
        "status": "ok",
        "user": {
            "id": operator.id,
            "username": operator.username,
            "created_at": operator.created_at.isoformat() if operator.created_at else None,
        },
    }


@app.post("/auth/change-password")
async def change_password(
    body: ChangePasswordIn,
    session: AsyncSession = Depends(get_db),
    operator: Operator = Depends(require_operator),
):
    await OperatorService(session).change_password(operator, body.current_password, body.new_password)
    return {"status": "ok", "message": "Password updated successfully"}


# ==================== HEALTH CHECK ====================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "version": __version__}


@app.get("/")
async def root():
    """Root endpoint with endpoint overview."""
    return {
        "service": "Hive Monitor API",
        "version": __version__,
        "endpoints": {
            "ingest": "POST /readings",
            "lvd_settings": "GET|PUT /lvd/settings",
            "lvd_status": "/lvd",
            "lvd_history": "/lvd/history",
            "devices": "/devices",
            "device_detail": "/devices/{id}?range=24h|7d|30d",
            "device_chart": "/devices/{id}/chart.png",
            "readings": "/readings",
            "export": "/export?format=csv|json",
            "login": "POST /auth/login",
            "health": "/health",
        }
    }


# ==================== MAIN ====================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
