"""Google Sheets 기반 영속 저장소 클라이언트입니다. 시트는 첫 쓰기 시 헤더 행과 함께 생성됩니다."""

import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from checkin_app.config import settings

logger = logging.getLogger(__name__)

ATTENDANCE_SHEET = "ATTENDANCE_LOG"
NETWORKS_SHEET = "AUTHORIZED_NETWORKS"
PREFERENCES_SHEET = "USER_PREFERENCES"

ATTENDANCE_HEADER = ["Email", "Check In Time", "Date"]
NETWORKS_HEADER = ["IP Address", "Date Authorized", "User Agent"]
PREFERENCES_HEADER = ["Email", "Enabled", "TimeSlot", "LastUpdated", "LastNotifiedDate"]

DEFAULT_TIME_SLOT = "8"


class SheetsError(RuntimeError):
    pass


def _is_truthy(raw: Any) -> bool:
    return raw is True or str(raw).strip().upper() == "TRUE"


class SheetsClient:
    """Spreadsheet-shaped backend: append logs plus a small key/value table.

    Without configured credentials every read degrades to empty/absent and
    every write raises ``SheetsError``.
    """

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._transport = transport
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=settings.HTTP_TIMEOUT_SECONDS)

    def _spreadsheet_url(self, suffix: str = "") -> str:
        return f"{settings.GOOGLE_SHEETS_API_URL}/{settings.GOOGLE_SHEET_ID}{suffix}"

    def _public_url(self) -> str:
        return f"https://docs.google.com/spreadsheets/d/{settings.GOOGLE_SHEET_ID}"

    async def _request(self, client: httpx.AsyncClient, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return await client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise SheetsError(f"{method} {url} failed: {exc}") from exc

    def _raise_for_status(self, response: httpx.Response, action: str) -> None:
        if response.is_success:
            return
        raise SheetsError(f"Failed to {action}: {response.status_code} {response.text}")

    async def _access_token(self, client: httpx.AsyncClient) -> Optional[str]:
        if not (settings.GOOGLE_SHEET_ID and settings.google_credentials_configured()):
            return None
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token
        try:
            response = await client.post(
                settings.GOOGLE_TOKEN_URL,
                data={
                    "client_id": settings.GOOGLE_CLIENT_ID,
                    "client_secret": settings.GOOGLE_CLIENT_SECRET,
                    "refresh_token": settings.GOOGLE_REFRESH_TOKEN,
                    "grant_type": "refresh_token",
                },
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("[sheets] token refresh failed: %s", exc)
            return None
        token = body.get("access_token")
        if not token:
            logger.warning("[sheets] token response without access_token")
            return None
        self._token = token
        # 만료 1분 전에 미리 갱신한다.
        self._token_expires_at = time.monotonic() + max(int(body.get("expires_in", 3600)) - 60, 0)
        return token

    async def _require_token(self, client: httpx.AsyncClient) -> str:
        token = await self._access_token(client)
        if not token:
            raise SheetsError("No access token")
        return token

    async def _sheet_properties(self, client: httpx.AsyncClient, token: str) -> List[dict]:
        response = await self._request(
            client,
            "GET",
            self._spreadsheet_url(),
            params={"fields": "sheets.properties"},
            headers={"Authorization": f"Bearer {token}"},
        )
        self._raise_for_status(response, "fetch spreadsheet metadata")
        return [sheet.get("properties", {}) for sheet in response.json().get("sheets", [])]

    async def _find_sheet_id(self, client: httpx.AsyncClient, token: str, title: str) -> Optional[int]:
        for props in await self._sheet_properties(client, token):
            if props.get("title") == title:
                return props.get("sheetId")
        return None

    async def _ensure_sheet(self, client: httpx.AsyncClient, token: str, title: str, header: List[str]) -> int:
        sheet_id = await self._find_sheet_id(client, token, title)
        if sheet_id is not None:
            return sheet_id

        logger.info("[sheets] creating sheet %s", title)
        response = await self._request(
            client,
            "POST",
            self._spreadsheet_url(":batchUpdate"),
            headers={"Authorization": f"Bearer {token}"},
            json={
                "requests": [{
                    "addSheet": {
                        "properties": {
                            "title": title,
                            "gridProperties": {"rowCount": 1000, "columnCount": len(header)},
                        }
                    }
                }]
            },
        )
        self._raise_for_status(response, f"create sheet {title}")
        sheet_id = response.json()["replies"][0]["addSheet"]["properties"]["sheetId"]
        await self._append_rows(client, token, title, [header])
        return sheet_id

    async def _read_rows(
        self,
        client: httpx.AsyncClient,
        token: str,
        range_: str,
        missing_ok: bool = False,
    ) -> List[List[Any]]:
        response = await self._request(
            client,
            "GET",
            self._spreadsheet_url(f"/values/{range_}"),
            headers={"Authorization": f"Bearer {token}", "Cache-Control": "no-store"},
        )
        if missing_ok and response.status_code in (400, 404):
            # 시트가 아직 없으면 "Unable to parse range"로 응답한다.
            return []
        self._raise_for_status(response, f"read {range_}")
        return response.json().get("values", [])

    async def _append_rows(self, client: httpx.AsyncClient, token: str, range_: str, rows: List[List[Any]]) -> None:
        response = await self._request(
            client,
            "POST",
            self._spreadsheet_url(f"/values/{range_}:append"),
            params={"valueInputOption": "RAW"},
            headers={"Authorization": f"Bearer {token}"},
            json={"values": rows},
        )
        self._raise_for_status(response, f"append to {range_}")

    # ------------------------------------------------------------------
    # Attendance
    # ------------------------------------------------------------------

    async def append_attendance(self, email: str, check_in_time: str, date_str: str) -> None:
        async with self._client() as client:
            token = await self._require_token(client)
            await self._ensure_sheet(client, token, ATTENDANCE_SHEET, ATTENDANCE_HEADER)
            await self._append_rows(client, token, f"{ATTENDANCE_SHEET}!A:C", [[email, check_in_time, date_str]])
        logger.info("[sheets] attendance appended for %s on %s", email, date_str)

    async def find_attendance(self, email: str, date_str: str) -> Optional[str]:
        async with self._client() as client:
            token = await self._access_token(client)
            if not token:
                return None
            rows = await self._read_rows(client, token, f"{ATTENDANCE_SHEET}!A:C", missing_ok=True)
        for row in rows[1:]:
            if len(row) >= 3 and row[0] == email and row[2] == date_str:
                return row[1]
        return None

    async def delete_attendance(self, email: str, date_str: str) -> bool:
        async with self._client() as client:
            token = await self._require_token(client)
            sheet_id = await self._find_sheet_id(client, token, ATTENDANCE_SHEET)
            if sheet_id is None:
                return False
            rows = await self._read_rows(client, token, f"{ATTENDANCE_SHEET}!A:C")
            row_index = next(
                (
                    index for index, row in enumerate(rows)
                    if index > 0 and len(row) >= 3 and row[0] == email and row[2] == date_str
                ),
                None,
            )
            if row_index is None:
                return False

            logger.info("[sheets] deleting attendance row %d for %s", row_index, email)
            response = await self._request(
                client,
                "POST",
                self._spreadsheet_url(":batchUpdate"),
                headers={"Authorization": f"Bearer {token}"},
                json={
                    "requests": [{
                        "deleteDimension": {
                            "range": {
                                "sheetId": sheet_id,
                                "dimension": "ROWS",
                                "startIndex": row_index,
                                "endIndex": row_index + 1,
                            }
                        }
                    }]
                },
            )
            self._raise_for_status(response, "delete attendance row")
        return True

    async def list_attendance(self) -> List[Dict[str, str]]:
        async with self._client() as client:
            token = await self._access_token(client)
            if not token:
                return []
            rows = await self._read_rows(client, token, f"{ATTENDANCE_SHEET}!A:C", missing_ok=True)
        records = [
            {
                "email": row[0] if len(row) > 0 else "",
                "check_in_time": row[1] if len(row) > 1 else "",
                "date": row[2] if len(row) > 2 else "",
            }
            for row in rows[1:]
        ]
        records.reverse()  # newest first
        return records

    # ------------------------------------------------------------------
    # Authorized networks
    # ------------------------------------------------------------------

    async def list_authorized_ips(self) -> List[str]:
        async with self._client() as client:
            token = await self._access_token(client)
            if not token:
                return []
            rows = await self._read_rows(client, token, f"{NETWORKS_SHEET}!A:A", missing_ok=True)
        return [row[0] for row in rows[1:] if row and row[0]]

    async def append_authorized_ip(self, ip: str, authorized_at: str, client_agent: str) -> None:
        async with self._client() as client:
            token = await self._require_token(client)
            await self._ensure_sheet(client, token, NETWORKS_SHEET, NETWORKS_HEADER)
            await self._append_rows(client, token, f"{NETWORKS_SHEET}!A:C", [[ip, authorized_at, client_agent]])
        logger.info("[sheets] authorized ip %s", ip)

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    async def get_preferences(self, email: str) -> Optional[Dict[str, Any]]:
        async with self._client() as client:
            token = await self._access_token(client)
            if not token:
                return None
            rows = await self._read_rows(client, token, f"{PREFERENCES_SHEET}!A:D", missing_ok=True)
        for row in rows[1:]:
            if row and row[0] == email:
                return {
                    "email": row[0],
                    "enabled": _is_truthy(row[1]) if len(row) > 1 else False,
                    "time_slot": str(row[2]) if len(row) > 2 and row[2] else DEFAULT_TIME_SLOT,
                    "last_updated": row[3] if len(row) > 3 else None,
                }
        return None

    async def set_preferences(self, email: str, enabled: bool, time_slot: str, updated_at: str) -> Dict[str, Any]:
        async with self._client() as client:
            token = await self._require_token(client)
            await self._ensure_sheet(client, token, PREFERENCES_SHEET, PREFERENCES_HEADER)
            rows = await self._read_rows(client, token, f"{PREFERENCES_SHEET}!A:D")
            values = [[email, enabled, str(time_slot), updated_at]]

            row_number = next(
                (index + 1 for index, row in enumerate(rows) if index > 0 and row and row[0] == email),
                None,
            )
            if row_number is None:
                await self._append_rows(client, token, f"{PREFERENCES_SHEET}!A:D", values)
            else:
                response = await self._request(
                    client,
                    "PUT",
                    self._spreadsheet_url(f"/values/{PREFERENCES_SHEET}!A{row_number}:D{row_number}"),
                    params={"valueInputOption": "RAW"},
                    headers={"Authorization": f"Bearer {token}"},
                    json={"values": values},
                )
                self._raise_for_status(response, "update preferences")
        return {"email": email, "enabled": enabled, "time_slot": str(time_slot), "last_updated": updated_at}

    async def get_sheet_link(self) -> str:
        try:
            async with self._client() as client:
                token = await self._access_token(client)
                if not token:
                    return self._public_url()
                sheet_id = await self._find_sheet_id(client, token, ATTENDANCE_SHEET)
        except SheetsError as exc:
            logger.warning("[sheets] failed to resolve sheet gid: %s", exc)
            return self._public_url()
        if sheet_id is None:
            return self._public_url()
        return f"{self._public_url()}/edit#gid={sheet_id}"
