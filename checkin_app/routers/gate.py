"""네트워크 게이트(IP/위치/비밀번호) API 라우터입니다."""

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.orm import Session

from checkin_app.config import settings
from checkin_app.database import get_db, get_session_factory
from checkin_app.dependencies import get_backend
from checkin_app.middleware.auth_middleware import get_client_ip, get_current_device
from checkin_app.schemas.gate import GateCheckIn, GateStateOut, LocationReport, PermissionUpdate, SecretSubmit
from checkin_app.services.access_gate import (
    AccessGate,
    GateEnvironment,
    GeolocationError,
    LocationReason,
    Position,
    gate_registry,
)
from checkin_app.services.cache import LocalCache
from checkin_app.services.network_service import NetworkAllowList
from checkin_app.services.revalidate import revalidate
from checkin_app.services.sheets_client import SheetsClient
from checkin_app.services.storage import SqlStorage

router = APIRouter(prefix="/api/gate", tags=["gate"])


def _locator(report: LocationReport | None):
    async def locate() -> Position:
        if report is None:
            raise GeolocationError(LocationReason.UNSUPPORTED)
        if report.error:
            raise GeolocationError(LocationReason(report.error))
        return Position(latitude=report.latitude, longitude=report.longitude, accuracy=report.accuracy)
    return locate


def _environment(
    request: Request,
    allow_list: NetworkAllowList,
    report: LocationReport | None,
) -> GateEnvironment:
    async def resolve_ip() -> str:
        return get_client_ip(request)

    return GateEnvironment(
        allow_list=allow_list,
        resolve_ip=resolve_ip,
        locate=_locator(report),
        office=settings.office_coordinates(),
        radius_m=float(settings.LOCATION_RADIUS),
        wifi_password=settings.OFFICE_WIFI_PASSWORD,
        client_agent=request.headers.get("User-Agent", ""),
    )


def _state_out(gate: AccessGate) -> dict:
    return {**gate.snapshot(), "radius_m": float(settings.LOCATION_RADIUS)}


@router.get("", response_model=GateStateOut)
def get_gate_state(device_id: str = Depends(get_current_device)):
    return _state_out(gate_registry.get(device_id))


@router.post("/check", response_model=GateStateOut)
async def check_gate(
    data: GateCheckIn,
    request: Request,
    background_tasks: BackgroundTasks,
    device_id: str = Depends(get_current_device),
    db: Session = Depends(get_db),
    backend: SheetsClient = Depends(get_backend),
    session_factory=Depends(get_session_factory),
):
    gate = gate_registry.get(device_id)
    allow_list = NetworkAllowList(backend, LocalCache(SqlStorage(db, device_id)))
    await gate.check(_environment(request, allow_list, data.location))
    if allow_list.served_from_cache:
        background_tasks.add_task(
            revalidate,
            device_id,
            session_factory,
            lambda cache: NetworkAllowList(backend, cache).list_networks(skip_cache=True),
        )
    return _state_out(gate)


@router.post("/location/retry", response_model=GateStateOut)
async def retry_location(
    data: LocationReport,
    request: Request,
    device_id: str = Depends(get_current_device),
    db: Session = Depends(get_db),
    backend: SheetsClient = Depends(get_backend),
):
    gate = gate_registry.get(device_id)
    allow_list = NetworkAllowList(backend, LocalCache(SqlStorage(db, device_id)))
    await gate.retry_location(_environment(request, allow_list, data))
    return _state_out(gate)


@router.post("/secret", response_model=GateStateOut)
async def submit_secret(
    data: SecretSubmit,
    request: Request,
    device_id: str = Depends(get_current_device),
    db: Session = Depends(get_db),
    backend: SheetsClient = Depends(get_backend),
):
    gate = gate_registry.get(device_id)
    allow_list = NetworkAllowList(backend, LocalCache(SqlStorage(db, device_id)))
    await gate.submit_secret(data.secret, _environment(request, allow_list, None))
    return _state_out(gate)


@router.put("/permission", response_model=GateStateOut)
def update_permission(
    data: PermissionUpdate,
    device_id: str = Depends(get_current_device),
):
    gate = gate_registry.get(device_id)
    gate.update_permission(data.state)
    return _state_out(gate)
