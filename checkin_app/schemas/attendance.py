"""출근 체크인 요청/응답 스키마입니다."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class DeviceTokenOut(BaseModel):
    device_token: str
    token_type: str = "bearer"


class SignInRequest(BaseModel):
    local_part: str = Field(min_length=1, max_length=64)
    domain: str


class SuggestionsOut(BaseModel):
    local_parts: List[str]
    domains: List[str]


class IdentityOut(BaseModel):
    email: str


class ManualCheckInRequest(BaseModel):
    time: str = Field(pattern=r"^\d{1,2}:\d{2}$")


class AttendanceStateOut(BaseModel):
    email: Optional[str] = None
    name: Optional[str] = None
    now: datetime
    check_in_time: Optional[datetime] = None
    estimated_end_time: Optional[datetime] = None
    progress_percent: float
    can_auto_check_in: bool
    can_manual_check_in: bool
    cached: bool = False


class ResetResultOut(BaseModel):
    deleted: bool


class CheckoutCheckOut(BaseModel):
    notified: bool


class AttendanceRecordOut(BaseModel):
    email: str
    check_in_time: Optional[datetime] = None
    estimated_end_time: Optional[datetime] = None
    date: str


class RecordListOut(BaseModel):
    records: List[AttendanceRecordOut]
    cached: bool


class SheetLinkOut(BaseModel):
    url: str


class PreferencesOut(BaseModel):
    email: str
    enabled: bool
    time_slot: str
    last_updated: Optional[str] = None


class PreferencesUpdate(BaseModel):
    enabled: bool
    time_slot: str = Field(default="8", pattern=r"^(8|9)$")
