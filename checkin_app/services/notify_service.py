"""Notify Service 웹훅 알림 클라이언트입니다. 최대 1회 전송, 실패는 기록 후 무시합니다."""

import logging
from typing import Any, Dict, Optional

import httpx

from checkin_app.config import settings

logger = logging.getLogger(__name__)


class WebhookNotifier:
    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=settings.HTTP_TIMEOUT_SECONDS)

    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        async with self._client() as client:
            response = await client.post(settings.NOTIFY_WEBHOOK_URL, json=payload)
        response.raise_for_status()
        return response

    async def notify(self, payload: Dict[str, Any]) -> None:
        if not settings.NOTIFY_WEBHOOK_URL:
            logger.debug("[notify] no webhook configured, skipped %s", payload.get("type"))
            return
        try:
            await self._post(payload)
        except httpx.HTTPError as exc:
            logger.warning("[notify] %s notification failed: %s", payload.get("type"), exc)

    async def validate_user(self, email: str) -> Optional[Dict[str, Any]]:
        """Directory check. ``None`` means the check could not be made."""
        if not settings.NOTIFY_WEBHOOK_URL:
            return None
        try:
            response = await self._post({"type": "validate-user", "email": email})
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("[notify] validate-user failed for %s: %s", email, exc)
            return None
        if not isinstance(body, dict) or "valid" not in body:
            return None
        return {"valid": bool(body["valid"]), "name": body.get("name")}
