"""Access Gate 상태 머신입니다. IP 허용 목록, 사무실 반경, 공유 비밀번호로 앱 접근을 결정합니다.

상태는 기기별로 프로세스 메모리에만 보관하며, 매 확인(앱 로드/창 포커스)마다 Pending에서 다시 시작합니다.
"""

import hmac
import logging
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Awaitable, Callable, ClassVar, Dict, Optional, Tuple, Union

from fastapi import HTTPException

from checkin_app.config import settings
from checkin_app.services.network_service import NetworkAllowList
from checkin_app.services.sheets_client import SheetsError
from checkin_app.utils.geo import distance_m

logger = logging.getLogger(__name__)

# 브라우저 geolocation 요청 옵션. 클라이언트는 이 값으로 위치를 측정해 보고한다.
GEOLOCATION_OPTIONS = {"enable_high_accuracy": True, "timeout_ms": 10000, "maximum_age_ms": 0}

PERMISSION_STATES = ("granted", "prompt", "denied")


class LocationReason(str, Enum):
    UNSUPPORTED = "unsupported"
    PERMISSION_DENIED = "permission-denied"
    POSITION_UNAVAILABLE = "position-unavailable"
    TIMEOUT = "timeout"
    OUT_OF_RANGE = "out-of-range"


LOCATION_MESSAGES = {
    LocationReason.UNSUPPORTED: "Geolocation not supported by browser.",
    LocationReason.PERMISSION_DENIED: "Location permission denied.",
    LocationReason.POSITION_UNAVAILABLE: "Location unavailable.",
    LocationReason.TIMEOUT: "Location request timed out.",
}


@dataclass(frozen=True)
class Position:
    latitude: float
    longitude: float
    accuracy: Optional[float] = None


class IpLookupError(RuntimeError):
    pass


class GeolocationError(RuntimeError):
    def __init__(self, reason: LocationReason, message: Optional[str] = None):
        self.reason = reason
        super().__init__(message or LOCATION_MESSAGES.get(reason, reason.value))


# ----------------------------------------------------------------------
# States
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class Pending:
    ip: Optional[str] = None
    status: ClassVar[str] = "pending"


@dataclass(frozen=True)
class Authorized:
    ip: str
    status: ClassVar[str] = "authorized"


@dataclass(frozen=True)
class NeedsSecret:
    ip: str
    distance_m: Optional[float] = None
    accuracy_m: Optional[float] = None
    incorrect_secret: bool = False
    message: Optional[str] = None
    status: ClassVar[str] = "needs-secret"


@dataclass(frozen=True)
class NeedsLocation:
    ip: str
    reason: LocationReason
    distance_m: Optional[float] = None
    accuracy_m: Optional[float] = None
    message: Optional[str] = None
    status: ClassVar[str] = "needs-location"


@dataclass(frozen=True)
class GateError:
    message: str
    status: ClassVar[str] = "error"


GateState = Union[Pending, Authorized, NeedsSecret, NeedsLocation, GateError]


# ----------------------------------------------------------------------
# Events
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class Refocus:
    pass


@dataclass(frozen=True)
class IpResolved:
    ip: str


@dataclass(frozen=True)
class IpLookupFailed:
    message: str


@dataclass(frozen=True)
class IpAllowListed:
    pass


@dataclass(frozen=True)
class LocationConfigMissing:
    pass


@dataclass(frozen=True)
class LocationFailed:
    reason: LocationReason
    message: Optional[str] = None


@dataclass(frozen=True)
class LocationMeasured:
    distance_m: float
    radius_m: float
    accuracy_m: Optional[float] = None


@dataclass(frozen=True)
class SecretAccepted:
    pass


@dataclass(frozen=True)
class SecretRejected:
    pass


@dataclass(frozen=True)
class AuthorizationFailed:
    message: str


GateEvent = Union[
    Refocus, IpResolved, IpLookupFailed, IpAllowListed, LocationConfigMissing,
    LocationFailed, LocationMeasured, SecretAccepted, SecretRejected, AuthorizationFailed,
]


class InvalidGateTransition(ValueError):
    def __init__(self, state: GateState, event: GateEvent):
        self.state = state
        self.event = event
        super().__init__(f"{type(event).__name__} is not valid in state {state.status}")


def _location_outcome(ip: str, event: GateEvent) -> Optional[GateState]:
    if isinstance(event, LocationConfigMissing):
        return GateError("Location configuration missing.")
    if isinstance(event, LocationFailed):
        return NeedsLocation(ip=ip, reason=event.reason, message=event.message)
    if isinstance(event, LocationMeasured):
        if event.distance_m <= event.radius_m:
            return NeedsSecret(ip=ip, distance_m=event.distance_m, accuracy_m=event.accuracy_m)
        return NeedsLocation(
            ip=ip,
            reason=LocationReason.OUT_OF_RANGE,
            distance_m=event.distance_m,
            accuracy_m=event.accuracy_m,
        )
    return None


def transition(state: GateState, event: GateEvent) -> GateState:
    if isinstance(event, Refocus):
        return Pending()

    next_state: Optional[GateState] = None
    if isinstance(state, Pending):
        if state.ip is None:
            if isinstance(event, IpResolved):
                next_state = Pending(ip=event.ip)
            elif isinstance(event, IpLookupFailed):
                next_state = GateError(event.message)
        elif isinstance(event, IpAllowListed):
            next_state = Authorized(ip=state.ip)
        else:
            next_state = _location_outcome(state.ip, event)
    elif isinstance(state, NeedsLocation):
        next_state = _location_outcome(state.ip, event)
    elif isinstance(state, NeedsSecret):
        if isinstance(event, SecretAccepted):
            next_state = Authorized(ip=state.ip)
        elif isinstance(event, SecretRejected):
            next_state = replace(state, incorrect_secret=True, message=None)
        elif isinstance(event, AuthorizationFailed):
            next_state = replace(state, incorrect_secret=False, message=event.message)

    if next_state is None:
        raise InvalidGateTransition(state, event)
    return next_state


# ----------------------------------------------------------------------
# Runner
# ----------------------------------------------------------------------

@dataclass
class GateEnvironment:
    """Per-request collaborators for one gate run."""

    allow_list: NetworkAllowList
    resolve_ip: Callable[[], Awaitable[str]]
    locate: Callable[[], Awaitable[Position]]
    office: Optional[Tuple[float, float]]
    radius_m: float
    wifi_password: str
    client_agent: str = ""


class AccessGate:
    """One device's gate.

    Each run advances a local copy of the state and stores it once when it
    finishes. When runs overlap, the last one to finish wins.
    """

    def __init__(self):
        self.state: GateState = Pending()
        self.permission_state = "prompt"

    @staticmethod
    def _step(state: GateState, event: GateEvent) -> GateState:
        next_state = transition(state, event)
        if state.status != next_state.status:
            logger.info("[gate] %s -> %s", state.status, next_state.status)
        return next_state

    def _commit(self, state: GateState) -> GateState:
        self.state = state
        return state

    @property
    def authorized(self) -> bool:
        return isinstance(self.state, Authorized)

    @property
    def retry_allowed(self) -> bool:
        return isinstance(self.state, NeedsLocation) and self.permission_state != "denied"

    async def check(self, env: GateEnvironment) -> GateState:
        """Full sequence from Pending: IP, allow-list, then location."""
        state = self._step(self.state, Refocus())
        try:
            ip = await env.resolve_ip()
        except IpLookupError as exc:
            logger.warning("[gate] ip lookup failed: %s", exc)
            return self._commit(self._step(state, IpLookupFailed(str(exc))))
        state = self._step(state, IpResolved(ip))

        if await env.allow_list.contains(ip):
            return self._commit(self._step(state, IpAllowListed()))

        logger.info("[gate] ip %s not authorized, checking location", ip)
        return self._commit(await self._locate(state, env))

    async def _locate(self, state: GateState, env: GateEnvironment) -> GateState:
        if env.office is None:
            logger.warning("[gate] office location is not configured")
            return self._step(state, LocationConfigMissing())
        try:
            position = await env.locate()
        except GeolocationError as exc:
            return self._step(state, LocationFailed(exc.reason, str(exc)))

        distance = distance_m(position.latitude, position.longitude, env.office[0], env.office[1])
        logger.info("[gate] location check: %.0fm (limit %.0fm)", distance, env.radius_m)
        return self._step(state, LocationMeasured(distance_m=distance, radius_m=env.radius_m, accuracy_m=position.accuracy))

    async def retry_location(self, env: GateEnvironment) -> GateState:
        state = self.state
        if not isinstance(state, NeedsLocation):
            raise HTTPException(status_code=409, detail="위치 재확인은 위치 확인이 필요한 상태에서만 가능합니다.")
        if self.permission_state == "denied":
            raise HTTPException(status_code=409, detail="위치 권한이 거부되어 재시도할 수 없습니다. 브라우저 설정에서 위치 접근을 허용하세요.")
        return self._commit(await self._locate(state, env))

    async def submit_secret(self, secret: str, env: GateEnvironment) -> GateState:
        state = self.state
        if not isinstance(state, NeedsSecret):
            raise HTTPException(status_code=409, detail="비밀번호 인증이 필요한 상태가 아닙니다.")
        if not hmac.compare_digest(secret.encode(), env.wifi_password.encode()):
            return self._commit(self._step(state, SecretRejected()))
        try:
            await env.allow_list.authorize(state.ip, env.client_agent)
        except SheetsError as exc:
            logger.warning("[gate] authorization failed: %s", exc)
            return self._commit(self._step(state, AuthorizationFailed(str(exc) or "Authorization failed")))
        return self._commit(self._step(state, SecretAccepted()))

    def update_permission(self, permission_state: str) -> None:
        if permission_state not in PERMISSION_STATES:
            raise HTTPException(status_code=400, detail=f"알 수 없는 권한 상태입니다: {permission_state}")
        self.permission_state = permission_state

    def snapshot(self) -> Dict[str, Any]:
        state = self.state
        return {
            "status": state.status,
            "ip": getattr(state, "ip", None),
            "reason": state.reason.value if isinstance(state, NeedsLocation) else None,
            "message": getattr(state, "message", None),
            "distance_m": getattr(state, "distance_m", None),
            "accuracy_m": getattr(state, "accuracy_m", None),
            "incorrect_secret": getattr(state, "incorrect_secret", False),
            "permission_state": self.permission_state,
            "retry_allowed": self.retry_allowed,
            "geolocation_options": dict(GEOLOCATION_OPTIONS),
        }


@dataclass
class GateRegistry:
    """In-memory gates keyed by device, least recently used evicted first."""

    max_entries: int = 10000
    _gates: "OrderedDict[str, AccessGate]" = field(default_factory=OrderedDict)

    def get(self, device_id: str) -> AccessGate:
        gate = self.find(device_id)
        if gate is None:
            gate = self._gates[device_id] = AccessGate()
            while len(self._gates) > self.max_entries:
                evicted, _ = self._gates.popitem(last=False)
                logger.info("[gate] evicted idle gate for %s", evicted)
        return gate

    def find(self, device_id: str) -> Optional[AccessGate]:
        """Lookup without creating a gate."""
        gate = self._gates.get(device_id)
        if gate is not None:
            self._gates.move_to_end(device_id)
        return gate

    def is_authorized(self, device_id: str) -> bool:
        gate = self.find(device_id)
        return gate is not None and gate.authorized

    def clear(self) -> None:
        self._gates.clear()

    def __len__(self) -> int:
        return len(self._gates)


gate_registry = GateRegistry(max_entries=settings.GATE_REGISTRY_MAX_DEVICES)
