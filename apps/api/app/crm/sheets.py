from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from urllib.parse import quote
from zoneinfo import ZoneInfo

import httpx
from jose import jwt

from app.core.config import Settings, get_settings

logger = logging.getLogger("app.crm.sheets")

JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
DEFAULT_SOURCE = "Google Sheets"

NAME_HEADERS = ("nome completo", "nome", "name")
EMAIL_HEADERS = ("email", "e-mail")
PHONE_HEADERS = ("whatsapp", "telefone", "phone")
SOURCE_HEADERS = ("fonte", "source")
BUSINESS_HEADERS = ("negócio", "negocio", "business")
NICHE_HEADERS = ("nicho", "niche")
REVENUE_HEADERS = ("faturamento", "revenue")


class SheetsSyncError(Exception):
    pass


@dataclass
class ColumnMap:
    name: int | None = None
    email: int | None = None
    phone: int | None = None
    source: int | None = None
    business: int | None = None
    niche: int | None = None
    revenue: int | None = None
    submitted_at: int = 0


@dataclass
class SheetLead:
    row_number: int
    name: str
    email: str | None = None
    phone: str | None = None
    source: str = DEFAULT_SOURCE
    notes: str | None = None
    business: str | None = None
    business_niche: str | None = None
    monthly_revenue: str | None = None
    submitted_raw: str | None = None
    submitted_at: datetime | None = None


def _find_column(headers: Sequence[str], fragments: Sequence[str], *, exact: bool = False) -> int | None:
    normalized = [str(header or "").strip().lower() for header in headers]
    for fragment in fragments:
        for index, header in enumerate(normalized):
            if (header == fragment) if exact else (fragment in header):
                return index
    return None


def map_columns(headers: Sequence[str]) -> ColumnMap:
    return ColumnMap(
        name=_find_column(headers, NAME_HEADERS),
        email=_find_column(headers, EMAIL_HEADERS),
        phone=_find_column(headers, PHONE_HEADERS),
        source=_find_column(headers, SOURCE_HEADERS, exact=True),
        business=_find_column(headers, BUSINESS_HEADERS),
        niche=_find_column(headers, NICHE_HEADERS),
        revenue=_find_column(headers, REVENUE_HEADERS),
    )


def _cell(row: Sequence[str], index: int | None) -> str | None:
    if index is None or index >= len(row):
        return None
    value = str(row[index] or "").strip()
    return value or None


def parse_sheet_rows(values: Sequence[Sequence[str]]) -> list[SheetLead]:
    """Turn a raw ``values`` grid into lead candidates.

    The first row holds headers and column A holds the form submission
    timestamp. Rows without a name cell are ignored.
    """
    if not values:
        return []

    columns = map_columns(values[0])
    if columns.name is None:
        logger.warning("sheets.name_column_missing", extra={"total": len(values) - 1})
        return []

    leads: list[SheetLead] = []
    for offset, row in enumerate(values[1:], start=2):
        name = _cell(row, columns.name)
        if not name:
            continue

        business = _cell(row, columns.business)
        niche = _cell(row, columns.niche)
        revenue = _cell(row, columns.revenue)
        notes_parts = []
        if business:
            notes_parts.append(f"Negócio: {business}")
        if niche:
            notes_parts.append(f"Nicho: {niche}")
        if revenue:
            notes_parts.append(f"Faturamento: {revenue}")

        leads.append(
            SheetLead(
                row_number=offset,
                name=name,
                email=_cell(row, columns.email),
                phone=_cell(row, columns.phone),
                source=_cell(row, columns.source) or DEFAULT_SOURCE,
                notes=" | ".join(notes_parts) if notes_parts else None,
                business=business,
                business_niche=niche,
                monthly_revenue=revenue,
                submitted_raw=_cell(row, columns.submitted_at),
            )
        )
    return leads


def parse_submitted_at(raw: str | None, formats: Sequence[str], timezone_name: str) -> datetime | None:
    if not raw:
        return None
    zone = ZoneInfo(timezone_name)
    for fmt in formats:
        try:
            parsed = datetime.strptime(raw.strip(), fmt)
        except ValueError:
            continue
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=zone)
        return parsed
    return None


class GoogleSheetsClient:
    def __init__(self, settings: Settings | None = None, transport: httpx.BaseTransport | None = None) -> None:
        self.settings = settings or get_settings()
        self.transport = transport

    def build_assertion(self, now: int | None = None) -> str:
        client_email = self.settings.google_sheets_client_email
        private_key = self.settings.google_sheets_private_key
        if not client_email or not private_key:
            raise SheetsSyncError("Missing Google Sheets credentials")

        issued_at = int(now if now is not None else time.time())
        claims = {
            "iss": client_email,
            "scope": self.settings.google_sheets_scope,
            "aud": self.settings.google_token_url,
            "iat": issued_at,
            "exp": issued_at + 3600,
        }
        return jwt.encode(claims, private_key.replace("\\n", "\n"), algorithm="RS256")

    def fetch_values(self, sheet_id: str, tab_name: str) -> list[list[str]]:
        with httpx.Client(timeout=self.settings.google_http_timeout_seconds, transport=self.transport) as client:
            access_token = self._exchange_token(client)
            url = f"{self.settings.google_sheets_api_url}/{sheet_id}/values/{quote(tab_name, safe='')}!A:Z"
            try:
                response = client.get(url, headers={"Authorization": f"Bearer {access_token}"})
            except httpx.HTTPError as exc:
                raise SheetsSyncError(f"Failed to fetch sheet data: {exc}") from exc

            if response.status_code >= 400:
                logger.error(
                    "sheets.fetch_failed",
                    extra={"sheet_id": sheet_id, "status_code": response.status_code, "error": response.text[:500]},
                )
                raise SheetsSyncError("Failed to fetch sheet data")

            values = response.json().get("values") or []
            logger.info("sheets.fetched", extra={"sheet_id": sheet_id, "total": max(len(values) - 1, 0)})
            return values

    def _exchange_token(self, client: httpx.Client) -> str:
        assertion = self.build_assertion()
        try:
            response = client.post(
                self.settings.google_token_url,
                data={"grant_type": JWT_BEARER_GRANT, "assertion": assertion},
            )
        except httpx.HTTPError as exc:
            raise SheetsSyncError(f"Failed to get access token: {exc}") from exc

        if response.status_code >= 400:
            logger.error("sheets.token_failed", extra={"status_code": response.status_code, "error": response.text[:500]})
            raise SheetsSyncError("Failed to get access token")

        access_token = response.json().get("access_token")
        if not access_token:
            raise SheetsSyncError("Failed to get access token")
        return access_token
