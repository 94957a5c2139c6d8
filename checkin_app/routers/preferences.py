from datetime import datetime
from typing import Callable

from fastapi import APIRouter, Depends, HTTPException

from checkin_app.dependencies import get_attendance_session, get_backend, get_clock
from checkin_app.schemas.attendance import PreferencesOut, PreferencesUpdate
from checkin_app.services import preference_service
from checkin_app.services.attendance_service import AttendanceSession
from checkin_app.services.sheets_client import SheetsClient

router = APIRouter(prefix="/api/preferences", tags=["preferences"])


def _signed_in_email(session: AttendanceSession) -> str:
    identity = session.identity
    if not identity:
        raise HTTPException(status_code=401, detail="로그인이 필요합니다.")
    return identity


@router.get("", response_model=PreferencesOut)
async def get_preferences(
    session: AttendanceSession = Depends(get_attendance_session),
    backend: SheetsClient = Depends(get_backend),
):
    return await preference_service.get_preferences(backend, _signed_in_email(session))


@router.put("", response_model=PreferencesOut)
async def update_preferences(
    data: PreferencesUpdate,
    session: AttendanceSession = Depends(get_attendance_session),
    backend: SheetsClient = Depends(get_backend),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    return await preference_service.update_preferences(
        backend,
        _signed_in_email(session),
        data.enabled,
        data.time_slot,
        clock(),
    )
