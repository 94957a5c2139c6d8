"""환경 변수 기반 애플리케이션 설정을 중앙에서 관리합니다."""

from pydantic_settings import BaseSettings
from typing import List, Optional, Tuple
from pathlib import Path


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./office_checkin.db"
    SECRET_KEY: str = "change-me-to-a-random-secret-key"
    ALLOWED_ORIGINS: List[str] = ["http://localhost:5173", "http://localhost:8000"]
    LOG_LEVEL: str = "INFO"

    # Device token (JWT)
    DEVICE_TOKEN_EXPIRE_DAYS: int = 365
    GATE_REGISTRY_MAX_DEVICES: int = 10000

    # X-Forwarded-For는 이 주소에서 온 요청일 때만 사용한다.
    TRUSTED_PROXIES: List[str] = ["127.0.0.1", "::1"]

    # Office
    OFFICE_TIMEZONE: str = "Asia/Seoul"
    # "위도,경도" 형식. 비어 있으면 게이트가 위치 설정 오류를 보고한다.
    OFFICE_LOCATION: str = ""
    LOCATION_RADIUS: int = 300  # meters
    OFFICE_WIFI_PASSWORD: str = "change-me"
    ALLOWED_EMAIL_DOMAINS: List[str] = ["litmers.com", "cigro.io"]

    # Google Sheets
    GOOGLE_SHEET_ID: str = ""
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""
    GOOGLE_REFRESH_TOKEN: str = ""
    GOOGLE_TOKEN_URL: str = "https://oauth2.googleapis.com/token"
    GOOGLE_SHEETS_API_URL: str = "https://sheets.googleapis.com/v4/spreadsheets"

    # Notification webhook (Flow bot). 비어 있으면 알림을 조용히 건너뛴다.
    NOTIFY_WEBHOOK_URL: str = ""

    HTTP_TIMEOUT_SECONDS: float = 10.0

    def office_coordinates(self) -> Optional[Tuple[float, float]]:
        parts = [p.strip() for p in str(self.OFFICE_LOCATION or "").split(",")]
        if len(parts) != 2:
            return None
        try:
            return float(parts[0]), float(parts[1])
        except ValueError:
            return None

    def google_credentials_configured(self) -> bool:
        return bool(self.GOOGLE_CLIENT_ID and self.GOOGLE_CLIENT_SECRET and self.GOOGLE_REFRESH_TOKEN)

    class Config:
        env_file = str(Path(__file__).resolve().parents[1] / ".env")


settings = Settings()
