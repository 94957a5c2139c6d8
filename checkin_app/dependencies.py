"""라우터 공용 의존성입니다. 테스트에서는 app.dependency_overrides로 교체합니다."""

from datetime import datetime
from typing import Callable

from fastapi import Depends
from sqlalchemy.orm import Session

from checkin_app.database import get_db
from checkin_app.middleware.auth_middleware import require_authorized_device
from checkin_app.services.attendance_service import AttendanceSession
from checkin_app.services.notify_service import WebhookNotifier
from checkin_app.services.sheets_client import SheetsClient
from checkin_app.services.storage import SqlStorage
from checkin_app.services.time_policy import office_now

_backend = SheetsClient()
_notifier = WebhookNotifier()


def get_backend() -> SheetsClient:
    return _backend


def get_notifier() -> WebhookNotifier:
    return _notifier


def get_clock() -> Callable[[], datetime]:
    return office_now


def get_attendance_session(
    device_id: str = Depends(require_authorized_device),
    db: Session = Depends(get_db),
    backend: SheetsClient = Depends(get_backend),
    notifier: WebhookNotifier = Depends(get_notifier),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> AttendanceSession:
    return AttendanceSession(SqlStorage(db, device_id), backend, notifier, clock)
