"""서비스 레이어 패키지 초기화 모듈입니다."""

from checkin_app.services import (
    access_gate,
    attendance_service,
    cache,
    network_service,
    notify_service,
    preference_service,
    records_service,
    sheets_client,
    time_policy,
)
