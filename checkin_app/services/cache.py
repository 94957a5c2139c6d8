"""기기 저장소 위의 읽기 캐시 레이어입니다. TTL 없이 쓰기 시 무효화하며, 캐시 실패는 항상 캐시 미스로 취급합니다."""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from checkin_app.services.storage import KeyValueStorage

logger = logging.getLogger(__name__)

NETWORKS_KEY = "cigro_networks"
ALL_RECORDS_KEY = "cigro_all_records"
ATTENDANCE_KEY_PREFIX = "cigro_attendance"
# 키 접두사가 한 번 바뀌었으므로 두 접두사를 함께 정리한다.
NAMESPACE_PREFIXES = ("cigro_", "cigr_")


def attendance_key(email: str, date_str: str) -> str:
    return f"{ATTENDANCE_KEY_PREFIX}_{email}_{date_str}"


@dataclass
class CachedEntry:
    payload: Any
    fetched_at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LocalCache:
    def __init__(self, storage: KeyValueStorage, clock: Callable[[], datetime] = _utcnow):
        self.storage = storage
        self.clock = clock

    def get_entry(self, key: str) -> Optional[CachedEntry]:
        try:
            raw = self.storage.get(key)
            if raw is None:
                return None
            envelope = json.loads(raw)
            return CachedEntry(
                payload=envelope["payload"],
                fetched_at=datetime.fromisoformat(envelope["fetched_at"]),
            )
        except Exception as exc:
            logger.warning("[cache] failed to read %s: %s", key, exc)
            return None

    def get(self, key: str) -> Any:
        entry = self.get_entry(key)
        return entry.payload if entry else None

    def set(self, key: str, payload: Any) -> None:
        try:
            envelope = {"fetched_at": self.clock().isoformat(), "payload": payload}
            self.storage.set(key, json.dumps(envelope))
        except Exception as exc:
            logger.warning("[cache] failed to write %s: %s", key, exc)

    def invalidate(self, key: str) -> None:
        self.storage.remove(key)

    def purge_namespace(self, prefixes=NAMESPACE_PREFIXES) -> int:
        removed = 0
        for key in self.storage.keys():
            if key.startswith(tuple(prefixes)):
                self.storage.remove(key)
                removed += 1
        logger.info("[cache] purged %d keys", removed)
        return removed
