"""Network Service 허용 IP 목록 서비스입니다. 캐시를 먼저 읽고 필요하면 백엔드에서 새로 가져옵니다."""

import logging
from datetime import datetime, timezone
from typing import Any, List

from checkin_app.services.cache import NETWORKS_KEY, LocalCache
from checkin_app.services.sheets_client import SheetsClient, SheetsError

logger = logging.getLogger(__name__)


def _is_network_list(payload: Any) -> bool:
    return isinstance(payload, list) and bool(payload) and all(isinstance(ip, str) for ip in payload)


class NetworkAllowList:
    def __init__(self, backend: SheetsClient, cache: LocalCache):
        self.backend = backend
        self.cache = cache
        self.served_from_cache = False

    async def list_networks(self, skip_cache: bool = False) -> List[str]:
        self.served_from_cache = False
        if not skip_cache:
            cached = self.cache.get(NETWORKS_KEY)
            if _is_network_list(cached):
                self.served_from_cache = True
                return list(cached)
            if cached is not None:
                logger.warning("[cache] ignoring malformed %s entry", NETWORKS_KEY)
        networks = await self.backend.list_authorized_ips()
        if networks:
            self.cache.set(NETWORKS_KEY, networks)
        else:
            self.cache.invalidate(NETWORKS_KEY)
        return networks

    async def contains(self, ip: str) -> bool:
        """Membership test that never fails: lookup errors count as "not listed"."""
        try:
            if ip in await self.list_networks():
                return True
            if self.served_from_cache:
                # 다른 기기가 방금 승인했을 수 있으므로 캐시를 건너뛰고 다시 조회한다.
                return ip in await self.list_networks(skip_cache=True)
            return False
        except SheetsError as exc:
            logger.warning("[gate] allow-list lookup failed, falling back to location: %s", exc)
            return False

    async def authorize(self, ip: str, client_agent: str) -> None:
        await self.backend.append_authorized_ip(ip, datetime.now(timezone.utc).isoformat(), client_agent)
        self.cache.invalidate(NETWORKS_KEY)
