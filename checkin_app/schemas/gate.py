"""Access Gate 요청/응답 계약을 위한 Pydantic 스키마입니다."""

from pydantic import BaseModel, model_validator
from typing import Literal, Optional


class GeolocationOptions(BaseModel):
    enable_high_accuracy: bool
    timeout_ms: int
    maximum_age_ms: int


class LocationReport(BaseModel):
    """Result of the browser's geolocation request: coordinates or a typed error."""

    latitude: Optional[float] = None
    longitude: Optional[float] = None
    accuracy: Optional[float] = None
    error: Optional[Literal["permission-denied", "position-unavailable", "timeout"]] = None

    @model_validator(mode="after")
    def _coordinates_or_error(self):
        if self.error is None and (self.latitude is None or self.longitude is None):
            raise ValueError("latitude/longitude or error is required")
        return self


class GateCheckIn(BaseModel):
    # None이면 기기가 위치 기능을 지원하지 않는 것으로 본다.
    location: Optional[LocationReport] = None


class SecretSubmit(BaseModel):
    secret: str


class PermissionUpdate(BaseModel):
    state: Literal["granted", "prompt", "denied"]


class GateStateOut(BaseModel):
    status: Literal["pending", "authorized", "needs-secret", "needs-location", "error"]
    ip: Optional[str] = None
    reason: Optional[str] = None
    message: Optional[str] = None
    distance_m: Optional[float] = None
    accuracy_m: Optional[float] = None
    radius_m: float
    incorrect_secret: bool = False
    permission_state: str
    retry_allowed: bool
    geolocation_options: GeolocationOptions
