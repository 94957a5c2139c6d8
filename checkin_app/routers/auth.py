from fastapi import APIRouter, Depends, HTTPException

from checkin_app.config import settings
from checkin_app.dependencies import get_attendance_session
from checkin_app.middleware.auth_middleware import create_device_token
from checkin_app.schemas.attendance import (
    AttendanceStateOut,
    DeviceTokenOut,
    IdentityOut,
    SignInRequest,
    SuggestionsOut,
)
from checkin_app.services.attendance_service import AttendanceSession, recent_local_parts

router = APIRouter(prefix="/api", tags=["auth"])


@router.post("/devices", response_model=DeviceTokenOut)
def register_device():
    return DeviceTokenOut(device_token=create_device_token())


@router.post("/auth/sign-in", response_model=AttendanceStateOut)
async def sign_in(data: SignInRequest, session: AttendanceSession = Depends(get_attendance_session)):
    return await session.sign_in(data.local_part, data.domain)


@router.post("/auth/sign-out")
def sign_out(session: AttendanceSession = Depends(get_attendance_session)):
    session.sign_out()
    return {"message": "Logged out successfully"}


@router.get("/auth/me", response_model=IdentityOut)
def get_me(session: AttendanceSession = Depends(get_attendance_session)):
    identity = session.identity
    if not identity:
        raise HTTPException(status_code=401, detail="로그인이 필요합니다.")
    return IdentityOut(email=identity)


@router.get("/auth/suggestions", response_model=SuggestionsOut)
def get_suggestions(session: AttendanceSession = Depends(get_attendance_session)):
    return SuggestionsOut(
        local_parts=recent_local_parts(session.storage),
        domains=list(settings.ALLOWED_EMAIL_DOMAINS),
    )
