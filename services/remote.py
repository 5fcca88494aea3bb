"""Minimal async PostgREST client for the Supabase tables used by Stamp."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import httpx

from core.settings import SUPABASE, SYNC, SupabaseSettings
from datetime_utils import to_rfc3339_utc
from services.errors import RemoteRequestError, RemoteUnavailable


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Filter:
    column: str
    operator: str
    value: str

    def as_param(self) -> tuple[str, str]:
        return self.column, f"{self.operator}.{self.value}"


def _literal(value: Any) -> str:
    if isinstance(value, datetime):
        return to_rfc3339_utc(value) or ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _quoted(value: Any) -> str:
    text = _literal(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{text}"'


def gte(column: str, value: Any) -> Filter:
    return Filter(column, "gte", _literal(value))


def eq(column: str, value: Any) -> Filter:
    return Filter(column, "eq", _literal(value))


def in_(column: str, values: Iterable[Any]) -> Filter:
    return Filter(column, "in", "(" + ",".join(_quoted(v) for v in values) + ")")


def build_client(settings: SupabaseSettings = SUPABASE, *, timeout: float = SYNC.request_timeout_sec) -> httpx.AsyncClient:
    """Shared HTTP client carrying the project key on every request."""

    return httpx.AsyncClient(
        base_url=settings.url,
        headers={
            "apikey": settings.key,
            "Authorization": f"Bearer {settings.key}",
            "User-Agent": SYNC.user_agent,
        },
        timeout=timeout,
    )


def raise_for_response(response: httpx.Response, action: str) -> None:
    if response.is_success:
        return
    message = response.reason_phrase or "request failed"
    code: Optional[str] = None
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        message = str(body.get("message") or body.get("error") or message)
        code = body.get("code")
        logger.error(
            "%s failed: status=%s code=%s message=%s details=%s hint=%s",
            action,
            response.status_code,
            code,
            message,
            body.get("details"),
            body.get("hint"),
        )
    else:
        logger.error("%s failed: status=%s %s", action, response.status_code, message)
    raise RemoteRequestError(response.status_code, message, code=code)


class SupabaseTable:
    """Rows of one table behind ``/rest/v1``."""

    def __init__(self, client: httpx.AsyncClient, table: str) -> None:
        self.client = client
        self.table = table

    @property
    def path(self) -> str:
        return f"/rest/v1/{self.table}"

    async def _send(self, method: str, action: str, **kwargs) -> httpx.Response:
        try:
            response = await self.client.request(method, self.path, **kwargs)
        except httpx.TransportError as exc:
            logger.warning("%s on %s: transport error %s", action, self.table, exc)
            raise RemoteUnavailable(f"{action} {self.table}: {exc}") from exc
        raise_for_response(response, f"{action} {self.table}")
        return response

    async def select(
        self,
        filters: Sequence[Filter] = (),
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        columns: str = "*",
    ) -> List[Dict[str, Any]]:
        params: List[tuple[str, str]] = [("select", columns)]
        params.extend(f.as_param() for f in filters)
        if order_by:
            params.append(("order", f"{order_by}.{'desc' if descending else 'asc'}"))
        response = await self._send("GET", "select", params=params)
        try:
            rows = response.json()
        except ValueError as exc:
            raise RemoteRequestError(response.status_code, f"invalid JSON body: {exc}") from exc
        if not isinstance(rows, list):
            raise RemoteRequestError(response.status_code, "expected a JSON array of rows")
        return rows

    async def upsert(self, rows: Sequence[Mapping[str, Any]], *, on_conflict: str = "id") -> None:
        if not rows:
            return
        await self._send(
            "POST",
            "upsert",
            params={"on_conflict": on_conflict},
            json=list(rows),
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )

    async def insert(self, rows: Sequence[Mapping[str, Any]]) -> None:
        if not rows:
            return
        await self._send("POST", "insert", json=list(rows), headers={"Prefer": "return=minimal"})

    async def delete_where(self, filters: Sequence[Filter]) -> None:
        if not filters:
            raise ValueError("Refusing to delete without a filter")
        await self._send("DELETE", "delete", params=[f.as_param() for f in filters])

    async def delete(self, entry_id: str) -> None:
        await self.delete_where([eq("id", entry_id)])


__all__ = [
    "Filter",
    "SupabaseTable",
    "build_client",
    "eq",
    "gte",
    "in_",
    "raise_for_response",
]
