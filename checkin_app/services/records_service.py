"""Records Service 관리자 출근 기록 조회 서비스입니다."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from checkin_app.services.cache import ALL_RECORDS_KEY, LocalCache
from checkin_app.services.sheets_client import SheetsClient
from checkin_app.services.attendance_service import parse_timestamp
from checkin_app.services.time_policy import estimated_end_time

logger = logging.getLogger(__name__)

RECORD_FIELDS = ("email", "check_in_time", "date")


def _is_record_list(payload: Any) -> bool:
    return isinstance(payload, list) and all(
        isinstance(record, dict) and all(isinstance(record.get(name), str) for name in RECORD_FIELDS)
        for record in payload
    )


async def fetch_all_records(backend: SheetsClient, cache: LocalCache, skip_cache: bool = False) -> Dict[str, Any]:
    if not skip_cache:
        entry = cache.get_entry(ALL_RECORDS_KEY)
        if entry and _is_record_list(entry.payload):
            return {"records": entry.payload, "cached": True}
        if entry:
            logger.warning("[cache] ignoring malformed %s entry", ALL_RECORDS_KEY)

    records = await backend.list_attendance()
    cache.set(ALL_RECORDS_KEY, records)
    return {"records": records, "cached": False}


def present_records(records: List[Dict[str, str]], tz, query: Optional[str] = None) -> List[Dict[str, Any]]:
    needle = (query or "").strip().lower()
    result = []
    for record in records:
        email = record.get("email") or ""
        if needle and needle not in email.lower():
            continue
        check_in: Optional[datetime] = parse_timestamp(record["check_in_time"], tz) if record.get("check_in_time") else None
        result.append({
            "email": email,
            "check_in_time": check_in,
            "estimated_end_time": estimated_end_time(check_in) if check_in else None,
            "date": record.get("date") or "",
        })
    return result
