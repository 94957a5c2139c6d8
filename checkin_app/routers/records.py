"""관리자 출근 기록 조회 API 라우터입니다."""

import logging
from datetime import datetime
from typing import Callable, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from checkin_app.database import get_db, get_session_factory
from checkin_app.dependencies import get_backend, get_clock
from checkin_app.middleware.auth_middleware import require_authorized_device
from checkin_app.schemas.attendance import RecordListOut, SheetLinkOut
from checkin_app.services import records_service
from checkin_app.services.cache import LocalCache
from checkin_app.services.revalidate import revalidate
from checkin_app.services.sheets_client import SheetsClient, SheetsError
from checkin_app.services.storage import SqlStorage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/records", tags=["records"])


@router.get("", response_model=RecordListOut)
async def list_records(
    background_tasks: BackgroundTasks,
    q: Optional[str] = Query(None),
    fresh: bool = Query(False),
    device_id: str = Depends(require_authorized_device),
    db: Session = Depends(get_db),
    backend: SheetsClient = Depends(get_backend),
    clock: Callable[[], datetime] = Depends(get_clock),
    session_factory=Depends(get_session_factory),
):
    cache = LocalCache(SqlStorage(db, device_id), clock)
    try:
        result = await records_service.fetch_all_records(backend, cache, skip_cache=fresh)
    except SheetsError as exc:
        logger.warning("[records] failed to fetch records: %s", exc)
        raise HTTPException(status_code=503, detail="출근 기록을 불러오지 못했습니다.")
    if result["cached"]:
        background_tasks.add_task(
            revalidate,
            device_id,
            session_factory,
            lambda c: records_service.fetch_all_records(backend, c, skip_cache=True),
        )
    return {
        "records": records_service.present_records(result["records"], clock().tzinfo, q),
        "cached": result["cached"],
    }


@router.get("/sheet-link", response_model=SheetLinkOut)
async def get_sheet_link(
    _: str = Depends(require_authorized_device),
    backend: SheetsClient = Depends(get_backend),
):
    return SheetLinkOut(url=await backend.get_sheet_link())
