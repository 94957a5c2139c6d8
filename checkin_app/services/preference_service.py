"""Preference Service 일일 알림 설정 조회/저장 서비스입니다."""

import logging
from datetime import datetime
from typing import Any, Dict

from fastapi import HTTPException

from checkin_app.services.sheets_client import DEFAULT_TIME_SLOT, SheetsClient, SheetsError

logger = logging.getLogger(__name__)


def _default_preferences(email: str) -> Dict[str, Any]:
    return {"email": email, "enabled": True, "time_slot": DEFAULT_TIME_SLOT, "last_updated": None}


async def get_preferences(backend: SheetsClient, email: str) -> Dict[str, Any]:
    try:
        prefs = await backend.get_preferences(email)
    except SheetsError as exc:
        logger.warning("[preferences] failed to load for %s: %s", email, exc)
        raise HTTPException(status_code=503, detail="설정을 불러오지 못했습니다. 다시 시도하세요.")
    return prefs or _default_preferences(email)


async def update_preferences(backend: SheetsClient, email: str, enabled: bool, time_slot: str, now: datetime) -> Dict[str, Any]:
    try:
        return await backend.set_preferences(email, enabled, time_slot, now.isoformat())
    except SheetsError as exc:
        logger.warning("[preferences] failed to save for %s: %s", email, exc)
        raise HTTPException(status_code=503, detail="설정을 저장하지 못했습니다.")
