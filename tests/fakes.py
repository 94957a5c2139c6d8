"""테스트용 인메모리 저장소, 백엔드, 알림, 가상 시간 스케줄러입니다."""

import itertools
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from checkin_app.services.sheets_client import DEFAULT_TIME_SLOT, SheetsError

KST = timezone(timedelta(hours=9))


class InMemoryStorage:
    def __init__(self):
        self.data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def remove(self, key: str) -> None:
        self.data.pop(key, None)

    def keys(self) -> List[str]:
        return list(self.data)


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, hour: int, minute: int = 0) -> None:
        self.now = self.now.replace(hour=hour, minute=minute, second=0, microsecond=0)

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeSheetsBackend:
    def __init__(self):
        self.attendance: List[List[str]] = []
        self.networks: List[List[str]] = []
        self.preferences: Dict[str, Dict[str, Any]] = {}
        self.calls: List[str] = []
        self.fail = False

    def _call(self, op: str) -> None:
        self.calls.append(op)
        if self.fail:
            raise SheetsError(f"{op} unavailable")

    async def append_attendance(self, email: str, check_in_time: str, date_str: str) -> None:
        self._call("append_attendance")
        self.attendance.append([email, check_in_time, date_str])

    async def find_attendance(self, email: str, date_str: str) -> Optional[str]:
        self._call("find_attendance")
        for row in self.attendance:
            if row[0] == email and row[2] == date_str:
                return row[1]
        return None

    async def delete_attendance(self, email: str, date_str: str) -> bool:
        self._call("delete_attendance")
        for index, row in enumerate(self.attendance):
            if row[0] == email and row[2] == date_str:
                del self.attendance[index]
                return True
        return False

    async def list_attendance(self) -> List[Dict[str, str]]:
        self._call("list_attendance")
        return [
            {"email": row[0], "check_in_time": row[1], "date": row[2]}
            for row in reversed(self.attendance)
        ]

    async def list_authorized_ips(self) -> List[str]:
        self._call("list_authorized_ips")
        return [row[0] for row in self.networks]

    async def append_authorized_ip(self, ip: str, authorized_at: str, client_agent: str) -> None:
        self._call("append_authorized_ip")
        self.networks.append([ip, authorized_at, client_agent])

    async def get_preferences(self, email: str) -> Optional[Dict[str, Any]]:
        self._call("get_preferences")
        return self.preferences.get(email)

    async def set_preferences(self, email: str, enabled: bool, time_slot: str, updated_at: str) -> Dict[str, Any]:
        self._call("set_preferences")
        prefs = {"email": email, "enabled": enabled, "time_slot": time_slot or DEFAULT_TIME_SLOT, "last_updated": updated_at}
        self.preferences[email] = prefs
        return prefs

    async def get_sheet_link(self) -> str:
        return "https://docs.google.com/spreadsheets/d/test-sheet/edit#gid=7"


class FakeNotifier:
    def __init__(self):
        self.payloads: List[Dict[str, Any]] = []
        self.validate_result: Optional[Dict[str, Any]] = None

    async def notify(self, payload: Dict[str, Any]) -> None:
        self.payloads.append(payload)

    async def validate_user(self, email: str) -> Optional[Dict[str, Any]]:
        return self.validate_result

    def of_type(self, kind: str) -> List[Dict[str, Any]]:
        return [p for p in self.payloads if p.get("type") == kind]


class VirtualScheduler:
    """Scheduler driven by ``advance`` instead of wall-clock sleeps."""

    def __init__(self):
        self.now = 0.0
        self._ids = itertools.count()
        self._jobs: Dict[int, list] = {}

    def every(self, seconds, callback):
        job_id = next(self._ids)
        self._jobs[job_id] = [seconds, self.now + seconds, callback]
        return lambda: self._jobs.pop(job_id, None)

    @property
    def active_jobs(self) -> int:
        return len(self._jobs)

    async def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [(job[1], job_id) for job_id, job in self._jobs.items() if job[1] <= target]
            if not due:
                break
            due_at, job_id = min(due)
            job = self._jobs[job_id]
            self.now = due_at
            job[1] += job[0]
            await job[2]()
        self.now = target
