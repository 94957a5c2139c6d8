"""캐시 적중 후 백그라운드에서 최신 데이터로 캐시를 다시 채웁니다 (stale-while-revalidate)."""

import logging
from typing import Any, Awaitable, Callable

from checkin_app.services.cache import LocalCache
from checkin_app.services.sheets_client import SheetsError
from checkin_app.services.storage import SqlStorage

logger = logging.getLogger(__name__)


async def revalidate(
    device_id: str,
    session_factory: Callable[[], Any],
    refresh: Callable[[LocalCache], Awaitable[Any]],
) -> None:
    db = session_factory()
    try:
        await refresh(LocalCache(SqlStorage(db, device_id)))
    except SheetsError as exc:
        logger.warning("[cache] background refresh failed for %s: %s", device_id, exc)
    finally:
        db.close()
