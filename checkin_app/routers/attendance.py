"""오늘 출근 체크인/초기화/퇴근 알림 API 라우터입니다."""

import logging
from datetime import datetime
from typing import Callable

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect
from sqlalchemy.orm import Session

from checkin_app.database import get_db, get_session_factory
from checkin_app.dependencies import get_attendance_session, get_backend, get_clock, get_notifier
from checkin_app.middleware.auth_middleware import device_id_from_token, require_authorized_device
from checkin_app.schemas.attendance import (
    AttendanceStateOut,
    CheckoutCheckOut,
    ManualCheckInRequest,
    ResetResultOut,
)
from checkin_app.services.access_gate import gate_registry
from checkin_app.services.attendance_service import AttendanceSession
from checkin_app.services.notify_service import WebhookNotifier
from checkin_app.services.revalidate import revalidate
from checkin_app.services.scheduler import AsyncioScheduler
from checkin_app.services.sheets_client import SheetsClient
from checkin_app.services.storage import SqlStorage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/attendance", tags=["attendance"])


@router.get("/today", response_model=AttendanceStateOut)
async def get_today(
    background_tasks: BackgroundTasks,
    fresh: bool = Query(False),
    device_id: str = Depends(require_authorized_device),
    session: AttendanceSession = Depends(get_attendance_session),
    backend: SheetsClient = Depends(get_backend),
    notifier: WebhookNotifier = Depends(get_notifier),
    clock: Callable[[], datetime] = Depends(get_clock),
    session_factory=Depends(get_session_factory),
):
    await session.load(skip_cache=fresh)
    if session.served_from_cache:
        identity = session.identity
        background_tasks.add_task(
            revalidate,
            device_id,
            session_factory,
            lambda cache: AttendanceSession(cache.storage, backend, notifier, clock).fetch_today(identity, skip_cache=True),
        )
    return {**session.snapshot(), "cached": session.served_from_cache}


@router.post("/checkin-now", response_model=AttendanceStateOut)
async def check_in_now(session: AttendanceSession = Depends(get_attendance_session)):
    await session.check_in_now()
    return session.snapshot()


@router.post("/checkin-manual", response_model=AttendanceStateOut)
async def check_in_manual(
    data: ManualCheckInRequest,
    session: AttendanceSession = Depends(get_attendance_session),
):
    await session.check_in_manual(data.time)
    return session.snapshot()


@router.post("/reset", response_model=ResetResultOut)
async def reset_today(session: AttendanceSession = Depends(get_attendance_session)):
    return ResetResultOut(deleted=await session.reset_today())


@router.post("/checkout-check", response_model=CheckoutCheckOut)
async def checkout_check(session: AttendanceSession = Depends(get_attendance_session)):
    await session.load()
    return CheckoutCheckOut(notified=await session.check_checkout_notification())


@router.websocket("/ws")
async def attendance_stream(
    websocket: WebSocket,
    token: str = Query(...),
    db: Session = Depends(get_db),
    backend: SheetsClient = Depends(get_backend),
    notifier: WebhookNotifier = Depends(get_notifier),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Live check-in view: clock tick, record poll and checkout latch while connected."""
    try:
        device_id = device_id_from_token(token)
    except HTTPException:
        await websocket.close(code=4401)
        return
    if not gate_registry.is_authorized(device_id):
        await websocket.close(code=4403)
        return
    session = AttendanceSession(SqlStorage(db, device_id), backend, notifier, clock)
    if not session.identity:
        await websocket.close(code=4401)
        return

    await websocket.accept()

    async def publish(kind: str, snapshot: dict) -> None:
        payload = AttendanceStateOut(**snapshot).model_dump(mode="json")
        await websocket.send_json({"type": kind, **payload})

    try:
        await session.load()
    except HTTPException as exc:
        await websocket.send_json({"type": "error", "detail": exc.detail})
    await publish("state", session.snapshot())
    await session.start(AsyncioScheduler(), publish)
    try:
        while True:
            message = await websocket.receive_text()
            if message == "refresh":
                await session.refresh()
                await publish("state", session.snapshot())
    except WebSocketDisconnect:
        logger.info("[attendance] live view closed for %s", session.identity)
    finally:
        session.stop()
