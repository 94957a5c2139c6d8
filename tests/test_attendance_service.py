"""Attendance Service 체크인/초기화/퇴근 알림 흐름 검증 테스트입니다."""

import asyncio
from datetime import datetime

import pytest
from fastapi import HTTPException

from checkin_app.services.attendance_service import (
    IDENTITY_KEY,
    RECENT_LOCAL_PARTS_KEY,
    AttendanceSession,
    build_identity,
    recent_local_parts,
)
from checkin_app.services.cache import ALL_RECORDS_KEY, attendance_key
from tests.fakes import KST, FakeNotifier, FakeSheetsBackend, FixedClock, InMemoryStorage, VirtualScheduler

EMAIL = "alice@litmers.com"
TODAY = "2026-10-19"


@pytest.fixture
def parts():
    storage = InMemoryStorage()
    backend = FakeSheetsBackend()
    notifier = FakeNotifier()
    clock = FixedClock(datetime(2026, 10, 19, 9, 45, tzinfo=KST))
    session = AttendanceSession(storage, backend, notifier, clock)
    return session, storage, backend, notifier, clock


def signed_in(parts):
    session = parts[0]
    asyncio.run(session.sign_in("Alice", "litmers.com"))
    return parts


def test_build_identity_normalizes_and_checks_domain():
    assert build_identity(" Alice ", "@LITMERS.com") == EMAIL
    with pytest.raises(HTTPException) as exc_info:
        build_identity("alice", "example.com")
    assert exc_info.value.status_code == 400
    with pytest.raises(HTTPException):
        build_identity("al ice", "litmers.com")


def test_sign_in_stores_identity_and_recent_local_part(parts):
    session, storage, backend, notifier, clock = signed_in(parts)
    assert storage.get(IDENTITY_KEY) == EMAIL
    assert recent_local_parts(storage) == ["alice"]
    assert session.check_in_time is None


def test_sign_in_rejected_by_directory(parts):
    session, storage, backend, notifier, clock = parts
    notifier.validate_result = {"valid": False, "name": None}
    with pytest.raises(HTTPException) as exc_info:
        asyncio.run(session.sign_in("alice", "litmers.com"))
    assert exc_info.value.status_code == 403
    assert storage.get(IDENTITY_KEY) is None


def test_sign_in_uses_directory_name(parts):
    session, storage, backend, notifier, clock = parts
    notifier.validate_result = {"valid": True, "name": "Alice Kim"}
    state = asyncio.run(session.sign_in("alice", "litmers.com"))
    assert state["name"] == "Alice Kim"


def test_sign_in_backend_failure_keeps_signed_out(parts):
    session, storage, backend, notifier, clock = parts
    backend.fail = True
    with pytest.raises(HTTPException) as exc_info:
        asyncio.run(session.sign_in("alice", "litmers.com"))
    assert exc_info.value.status_code == 503
    assert storage.get(IDENTITY_KEY) is None


def test_recent_local_parts_keep_five_most_recent(parts):
    session, storage, backend, notifier, clock = parts
    for name in ["a1", "a2", "a3", "a4", "a5", "a6", "a3"]:
        asyncio.run(session.sign_in(name, "litmers.com"))
    assert recent_local_parts(storage) == ["a3", "a6", "a5", "a4", "a2"]


def test_manual_check_in_then_reset(parts):
    session, storage, backend, notifier, clock = signed_in(parts)

    when = asyncio.run(session.check_in_manual("09:30"))

    assert when == datetime(2026, 10, 19, 9, 30, tzinfo=KST)
    state = session.snapshot()
    assert state["estimated_end_time"] == datetime(2026, 10, 19, 18, 30, tzinfo=KST)
    assert backend.attendance == [[EMAIL, when.isoformat(), TODAY]]
    check_in = notifier.of_type("check-in")
    assert check_in == [{
        "type": "check-in",
        "email": EMAIL,
        "checkInTime": "2026-10-19T09:30:00+09:00",
        "estimatedEndTime": "2026-10-19T18:30:00+09:00",
    }]

    assert asyncio.run(session.reset_today()) is True
    assert session.check_in_time is None
    assert asyncio.run(backend.find_attendance(EMAIL, TODAY)) is None
    assert asyncio.run(session.load()) is None


def test_reset_without_record_is_not_an_error(parts):
    session, storage, backend, notifier, clock = signed_in(parts)
    assert asyncio.run(session.reset_today()) is False


def test_check_in_invalidates_caches(parts):
    session, storage, backend, notifier, clock = signed_in(parts)
    session.cache.set(ALL_RECORDS_KEY, [])
    asyncio.run(session.check_in_now())
    assert session.cache.get(ALL_RECORDS_KEY) is None
    assert session.cache.get(attendance_key(EMAIL, TODAY)) is None


def test_duplicate_check_in_conflicts(parts):
    session, storage, backend, notifier, clock = signed_in(parts)
    asyncio.run(session.check_in_now())
    with pytest.raises(HTTPException) as exc_info:
        asyncio.run(session.check_in_manual("09:00"))
    assert exc_info.value.status_code == 409
    assert len(backend.attendance) == 1


def test_auto_check_in_closed_after_ten(parts):
    session, storage, backend, notifier, clock = signed_in(parts)
    clock.set(10, 0)
    with pytest.raises(HTTPException) as exc_info:
        asyncio.run(session.check_in_now())
    assert exc_info.value.status_code == 400
    assert backend.attendance == []


def test_no_check_in_from_nineteen(parts):
    session, storage, backend, notifier, clock = signed_in(parts)
    with pytest.raises(HTTPException) as exc_info:
        asyncio.run(session.check_in_manual("19:10"))
    assert exc_info.value.status_code == 400
    assert backend.attendance == []

    # 마감 여부는 입력한 시각 기준으로 판단한다.
    clock.set(19, 5)
    asyncio.run(session.check_in_manual("09:00"))
    assert len(backend.attendance) == 1


def test_manual_time_must_be_valid(parts):
    session, storage, backend, notifier, clock = signed_in(parts)
    with pytest.raises(HTTPException) as exc_info:
        asyncio.run(session.check_in_manual("24:00"))
    assert exc_info.value.status_code == 400


def test_check_in_requires_identity(parts):
    session = parts[0]
    with pytest.raises(HTTPException) as exc_info:
        asyncio.run(session.check_in_now())
    assert exc_info.value.status_code == 401


def test_checkout_notification_fires_once(parts):
    session, storage, backend, notifier, clock = signed_in(parts)
    asyncio.run(session.check_in_manual("09:00"))
    assert asyncio.run(session.check_checkout_notification()) is False

    clock.set(18, 0)
    assert asyncio.run(session.check_checkout_notification()) is True
    assert asyncio.run(session.check_checkout_notification()) is False
    assert len(notifier.of_type("checkout")) == 1

    # 새 세션(페이지 새로고침)에서도 같은 날은 다시 보내지 않는다.
    reloaded = AttendanceSession(storage, backend, notifier, clock)
    asyncio.run(reloaded.load())
    assert asyncio.run(reloaded.check_checkout_notification()) is False


def test_late_manual_check_in_notifies_checkout_immediately(parts):
    session, storage, backend, notifier, clock = signed_in(parts)
    clock.set(18, 30)
    asyncio.run(session.check_in_manual("09:00"))
    assert [p["type"] for p in notifier.payloads] == ["check-in", "checkout"]


def test_load_serves_cache_then_backend_failure_is_503(parts):
    session, storage, backend, notifier, clock = signed_in(parts)
    asyncio.run(session.check_in_manual("09:30"))

    fresh = AttendanceSession(storage, backend, notifier, clock)
    assert asyncio.run(fresh.load()) == datetime(2026, 10, 19, 9, 30, tzinfo=KST)
    assert fresh.served_from_cache is False
    asyncio.run(fresh.load())
    assert fresh.served_from_cache is True

    backend.fail = True
    with pytest.raises(HTTPException) as exc_info:
        asyncio.run(fresh.load(skip_cache=True))
    assert exc_info.value.status_code == 503


def test_refresh_keeps_last_state_on_failure(parts):
    session, storage, backend, notifier, clock = signed_in(parts)
    asyncio.run(session.check_in_manual("09:30"))
    backend.fail = True
    assert asyncio.run(session.refresh()) == datetime(2026, 10, 19, 9, 30, tzinfo=KST)


def test_sign_out_purges_namespace_but_keeps_suggestions(parts):
    session, storage, backend, notifier, clock = signed_in(parts)
    asyncio.run(session.check_in_manual("09:30"))

    session.sign_out()

    assert storage.keys() == [RECENT_LOCAL_PARTS_KEY]
    assert session.identity is None


def test_live_view_schedule(parts):
    session, storage, backend, notifier, clock = signed_in(parts)
    scheduler = VirtualScheduler()
    events = []

    async def publish(kind, snapshot):
        events.append((kind, snapshot["check_in_time"]))

    async def scenario():
        await session.start(scheduler, publish)
        assert scheduler.active_jobs == 3
        # 다른 기기에서 체크인한 기록이 폴링으로 반영된다.
        backend.attendance.append([EMAIL, "2026-10-19T00:15:00Z", TODAY])
        await scheduler.advance(30)

    asyncio.run(scenario())

    assert [kind for kind, _ in events].count("tick") == 30
    assert events[-1] == ("state", datetime(2026, 10, 19, 9, 15, tzinfo=KST))
    assert session.check_in_time == datetime(2026, 10, 19, 9, 15, tzinfo=KST)

    session.stop()
    assert scheduler.active_jobs == 0


def test_live_view_sends_checkout_when_due(parts):
    session, storage, backend, notifier, clock = signed_in(parts)
    asyncio.run(session.check_in_manual("09:00"))
    scheduler = VirtualScheduler()
    events = []

    async def publish(kind, snapshot):
        events.append(kind)

    async def scenario():
        await session.start(scheduler, publish)
        clock.set(18, 0)
        await scheduler.advance(60)
        await scheduler.advance(60)

    asyncio.run(scenario())

    assert events.count("checkout") == 1
    assert len(notifier.of_type("checkout")) == 1
    session.stop()
