"""Attendance Service 도메인 서비스 레이어입니다. 로그인 정보와 오늘의 체크인 기록, 체크인/초기화/퇴근 알림 흐름을 담당합니다."""

import json
import logging
import re
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from fastapi import HTTPException

from checkin_app.config import settings
from checkin_app.services.cache import ALL_RECORDS_KEY, LocalCache, attendance_key
from checkin_app.services.notify_service import WebhookNotifier
from checkin_app.services.scheduler import CancelHandle, Scheduler
from checkin_app.services.sheets_client import SheetsClient, SheetsError
from checkin_app.services.storage import KeyValueStorage
from checkin_app.services.time_policy import (
    AUTO_CHECKIN_CUTOFF_HOUR,
    DAY_CLOSE_HOUR,
    can_auto_check_in,
    can_check_in,
    estimated_end_time,
    office_now,
    progress_percent,
)

logger = logging.getLogger(__name__)

IDENTITY_KEY = "cigr_email"
NOTIFIED_KEY_PREFIX = "cigr_notified"
# 로그아웃 시 캐시 네임스페이스 정리 대상이 아니므로 입력 추천이 유지된다.
RECENT_LOCAL_PARTS_KEY = "checkin_recent_local_parts"
RECENT_LOCAL_PARTS_LIMIT = 5

CLOCK_TICK_SECONDS = 1
POLL_INTERVAL_SECONDS = 30
CHECKOUT_CHECK_INTERVAL_SECONDS = 60

MANUAL_TIME_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})$")

Publish = Callable[[str, Dict[str, Any]], Awaitable[None]]


def parse_timestamp(raw: str, tz) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=tz)
    return parsed.astimezone(tz)


def build_identity(local_part: str, domain: str) -> str:
    local_part = (local_part or "").strip().lower()
    domain = (domain or "").strip().lower().lstrip("@")
    if not local_part or "@" in local_part or any(ch.isspace() for ch in local_part):
        raise HTTPException(status_code=400, detail="이메일 아이디 형식이 올바르지 않습니다.")
    if domain not in [d.lower() for d in settings.ALLOWED_EMAIL_DOMAINS]:
        raise HTTPException(status_code=400, detail=f"허용되지 않은 이메일 도메인입니다: {domain}")
    return f"{local_part}@{domain}"


def recent_local_parts(storage: KeyValueStorage) -> List[str]:
    raw = storage.get(RECENT_LOCAL_PARTS_KEY)
    if not raw:
        return []
    try:
        values = json.loads(raw)
    except ValueError:
        return []
    return [str(v) for v in values][:RECENT_LOCAL_PARTS_LIMIT] if isinstance(values, list) else []


def remember_local_part(storage: KeyValueStorage, local_part: str) -> List[str]:
    values = [local_part] + [v for v in recent_local_parts(storage) if v != local_part]
    values = values[:RECENT_LOCAL_PARTS_LIMIT]
    storage.set(RECENT_LOCAL_PARTS_KEY, json.dumps(values))
    return values


class AttendanceSession:
    """One device's signed-in identity and today's check-in.

    Every mutating action applies the time-window policy first, and every
    write invalidates the per-day and all-records cache entries.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        backend: SheetsClient,
        notifier: WebhookNotifier,
        clock: Callable[[], datetime] = office_now,
    ):
        self.storage = storage
        self.backend = backend
        self.notifier = notifier
        self.clock = clock
        self.cache = LocalCache(storage, clock)
        self.check_in_time: Optional[datetime] = None
        self.display_name: Optional[str] = None
        self.served_from_cache = False
        self._handles: List[CancelHandle] = []

    @property
    def identity(self) -> Optional[str]:
        return self.storage.get(IDENTITY_KEY)

    def _require_identity(self) -> str:
        identity = self.identity
        if not identity:
            raise HTTPException(status_code=401, detail="로그인이 필요합니다.")
        return identity

    def _today(self) -> str:
        return self.clock().date().isoformat()

    def _invalidate(self, identity: str, date_str: str) -> None:
        self.cache.invalidate(attendance_key(identity, date_str))
        self.cache.invalidate(ALL_RECORDS_KEY)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def fetch_today(self, identity: str, skip_cache: bool = False) -> Optional[datetime]:
        """Today's check-in for ``identity``; raises ``SheetsError`` when the backend fails."""
        tz = self.clock().tzinfo
        date_str = self._today()
        key = attendance_key(identity, date_str)
        self.served_from_cache = False
        if not skip_cache:
            cached = self.cache.get(key)
            if cached:
                parsed = parse_timestamp(cached, tz)
                if parsed is not None:
                    self.served_from_cache = True
                    return parsed

        raw = await self.backend.find_attendance(identity, date_str)
        parsed = parse_timestamp(raw, tz) if raw else None
        if parsed is None:
            self.cache.invalidate(key)
        else:
            self.cache.set(key, parsed.isoformat())
        return parsed

    async def load(self, skip_cache: bool = False) -> Optional[datetime]:
        identity = self._require_identity()
        try:
            self.check_in_time = await self.fetch_today(identity, skip_cache=skip_cache)
        except SheetsError as exc:
            logger.warning("[attendance] failed to load today's record for %s: %s", identity, exc)
            raise HTTPException(status_code=503, detail="클라우드와 동기화하지 못했습니다. 잠시 후 다시 시도하세요.")
        return self.check_in_time

    async def refresh(self) -> Optional[datetime]:
        """Poll step: refetch bypassing the cache, keep the last state on failure."""
        identity = self.identity
        if not identity:
            return None
        previous = self.check_in_time
        try:
            self.check_in_time = await self.fetch_today(identity, skip_cache=True)
        except SheetsError as exc:
            logger.warning("[attendance] poll failed for %s: %s", identity, exc)
            return self.check_in_time
        if self.check_in_time != previous:
            await self.check_checkout_notification()
        return self.check_in_time

    # ------------------------------------------------------------------
    # Sign in / out
    # ------------------------------------------------------------------

    async def sign_in(self, local_part: str, domain: str) -> Dict[str, Any]:
        identity = build_identity(local_part, domain)

        verdict = await self.notifier.validate_user(identity)
        if verdict is not None and not verdict["valid"]:
            raise HTTPException(status_code=403, detail=f"'{identity}' 사용자를 조직 디렉터리에서 찾을 수 없습니다.")
        self.display_name = (verdict or {}).get("name")

        try:
            self.check_in_time = await self.fetch_today(identity)
        except SheetsError as exc:
            logger.warning("[attendance] sign-in sync failed for %s: %s", identity, exc)
            raise HTTPException(status_code=503, detail="로그인/동기화에 실패했습니다. 다시 시도하세요.")

        self.storage.set(IDENTITY_KEY, identity)
        remember_local_part(self.storage, identity.split("@", 1)[0])
        logger.info("[attendance] %s signed in", identity)
        return self.snapshot()

    def sign_out(self) -> None:
        identity = self.identity
        self.stop()
        self.storage.remove(IDENTITY_KEY)
        self.cache.purge_namespace()
        self.check_in_time = None
        self.display_name = None
        logger.info("[attendance] %s signed out", identity)

    # ------------------------------------------------------------------
    # Check-in / reset
    # ------------------------------------------------------------------

    async def check_in(self, when: datetime) -> datetime:
        identity = self._require_identity()
        if not can_check_in(when):
            raise HTTPException(status_code=400, detail=f"{DAY_CLOSE_HOUR}:00 이후에는 체크인할 수 없습니다.")

        date_str = when.date().isoformat()
        try:
            existing = await self.backend.find_attendance(identity, date_str)
            if existing:
                raise HTTPException(status_code=409, detail="이미 오늘 체크인 처리되었습니다.")
            await self.backend.append_attendance(identity, when.isoformat(), date_str)
        except SheetsError as exc:
            logger.warning("[attendance] failed to save check-in for %s: %s", identity, exc)
            raise HTTPException(status_code=503, detail="체크인을 저장하지 못했습니다. 다시 시도하세요.")

        self._invalidate(identity, date_str)
        self.check_in_time = when
        logger.info("[attendance] %s checked in at %s", identity, when.isoformat())

        await self.notifier.notify({
            "type": "check-in",
            "email": identity,
            "checkInTime": when.isoformat(),
            "estimatedEndTime": estimated_end_time(when).isoformat(),
        })
        await self.check_checkout_notification()
        return when

    async def check_in_now(self) -> datetime:
        now = self.clock()
        if not can_auto_check_in(now):
            raise HTTPException(
                status_code=400,
                detail=f"자동 체크인은 {AUTO_CHECKIN_CUTOFF_HOUR}:00 이전에만 가능합니다. 수동 입력을 사용하세요.",
            )
        return await self.check_in(now)

    async def check_in_manual(self, hhmm: str) -> datetime:
        match = MANUAL_TIME_PATTERN.match((hhmm or "").strip())
        if not match or int(match.group(1)) > 23 or int(match.group(2)) > 59:
            raise HTTPException(status_code=400, detail="시간은 HH:MM 형식이어야 합니다.")
        when = self.clock().replace(
            hour=int(match.group(1)),
            minute=int(match.group(2)),
            second=0,
            microsecond=0,
        )
        return await self.check_in(when)

    async def reset_today(self) -> bool:
        identity = self._require_identity()
        date_str = self._today()
        try:
            deleted = await self.backend.delete_attendance(identity, date_str)
        except SheetsError as exc:
            logger.warning("[attendance] failed to delete check-in for %s: %s", identity, exc)
            raise HTTPException(status_code=503, detail="클라우드에서 삭제하지 못했습니다. 다시 시도하세요.")

        self._invalidate(identity, date_str)
        self.check_in_time = None
        logger.info("[attendance] %s reset today's check-in (deleted=%s)", identity, deleted)
        return deleted

    # ------------------------------------------------------------------
    # Checkout notification latch
    # ------------------------------------------------------------------

    def _notified_key(self, identity: str, check_in_time: datetime) -> str:
        return f"{NOTIFIED_KEY_PREFIX}_{identity}_{check_in_time.date().isoformat()}"

    async def check_checkout_notification(self) -> bool:
        identity = self.identity
        if not identity or self.check_in_time is None:
            return False
        end = estimated_end_time(self.check_in_time)
        if self.clock() < end:
            return False
        key = self._notified_key(identity, self.check_in_time)
        if self.storage.get(key):
            return False

        logger.info("[attendance] sending checkout notification for %s", identity)
        await self.notifier.notify({
            "type": "checkout",
            "email": identity,
            "checkInTime": self.check_in_time.isoformat(),
            "estimatedEndTime": end.isoformat(),
        })
        self.storage.set(key, "true")
        return True

    # ------------------------------------------------------------------
    # Live view
    # ------------------------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        now = self.clock()
        end = estimated_end_time(self.check_in_time) if self.check_in_time else None
        return {
            "email": self.identity,
            "name": self.display_name,
            "now": now,
            "check_in_time": self.check_in_time,
            "estimated_end_time": end,
            "progress_percent": progress_percent(now, self.check_in_time, end),
            "can_auto_check_in": can_auto_check_in(now),
            "can_manual_check_in": can_check_in(now),
        }

    async def start(self, scheduler: Scheduler, publish: Publish) -> None:
        """Register the clock tick, record poll and checkout check until ``stop``."""
        self.stop()

        async def tick() -> None:
            await publish("tick", self.snapshot())

        async def poll() -> None:
            await self.refresh()
            await publish("state", self.snapshot())

        async def checkout() -> None:
            if await self.check_checkout_notification():
                await publish("checkout", self.snapshot())

        await checkout()
        self._handles = [
            scheduler.every(CLOCK_TICK_SECONDS, tick),
            scheduler.every(POLL_INTERVAL_SECONDS, poll),
            scheduler.every(CHECKOUT_CHECK_INTERVAL_SECONDS, checkout),
        ]

    def stop(self) -> None:
        for cancel in self._handles:
            cancel()
        self._handles = []
