import ipaddress
import uuid
from datetime import datetime, timedelta, timezone

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt

from checkin_app.config import settings
from checkin_app.services.access_gate import IpLookupError, gate_registry

security = HTTPBearer()

ALGORITHM = "HS256"


def create_device_token() -> str:
    expire = datetime.now(timezone.utc) + timedelta(days=settings.DEVICE_TOKEN_EXPIRE_DAYS)
    payload = {"sub": uuid.uuid4().hex, "exp": expire}
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
        return payload
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )


def device_id_from_token(token: str) -> str:
    device_id = decode_token(token).get("sub")
    if not device_id:
        raise HTTPException(status_code=401, detail="Invalid token payload")
    return str(device_id)


def get_current_device(credentials: HTTPAuthorizationCredentials = Depends(security)) -> str:
    return device_id_from_token(credentials.credentials)


def require_authorized_device(device_id: str = Depends(get_current_device)) -> str:
    if not gate_registry.is_authorized(device_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="네트워크 인증이 필요합니다.",
        )
    return device_id


def get_client_ip(request: Request) -> str:
    """Client address; forwarded hops are honored only behind a trusted proxy."""
    trusted = set(settings.TRUSTED_PROXIES)
    candidate = request.client.host if request.client else ""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for and candidate in trusted:
        hops = [hop.strip() for hop in forwarded_for.split(",") if hop.strip()]
        # 오른쪽부터 신뢰하지 않는 첫 주소가 실제 클라이언트다.
        candidate = next((hop for hop in reversed(hops) if hop not in trusted), hops[0] if hops else candidate)
    try:
        return str(ipaddress.ip_address(candidate))
    except ValueError:
        raise IpLookupError(f"Failed to resolve client IP: {candidate or 'unknown'}")
