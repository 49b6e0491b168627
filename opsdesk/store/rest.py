"""Async httpx record store for PostgREST-style endpoints (e.g. a Supabase project).

Endpoint shapes:
    GET   {base_url}/{collection}?select=*&col=eq.v&col=in.("a","b")&order=col.desc
    POST  {base_url}/{collection}             body: [record]
    PATCH {base_url}/{collection}?id=eq.{id}  body: patch
Auth: `apikey` header plus bearer token.

Timeouts on writes raise WriteTimeoutError; the server may still have applied
the write, so the caller must not report it as a failure.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic_core import to_jsonable_python

from opsdesk.config import settings
from opsdesk.errors import FetchError, WriteError, WriteTimeoutError
from opsdesk.models.enums import Collection
from opsdesk.store.base import Eq, Filters, In, Record, matches_nothing

logger = logging.getLogger(__name__)


def _quote(value: Any) -> str:
    """Quote a value for a PostgREST `in.(...)` list."""
    text = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{text}"'


def build_params(
    filters: Filters | None,
    order_by: str | None = None,
    descending: bool = False,
) -> list[tuple[str, str]]:
    """Translate Eq/In filters into PostgREST query parameters."""
    params: list[tuple[str, str]] = [("select", "*")]
    for name, flt in (filters or {}).items():
        if isinstance(flt, Eq):
            params.append((name, "is.null" if flt.value is None else f"eq.{flt.value}"))
        elif isinstance(flt, In):
            params.append((name, f"in.({','.join(_quote(v) for v in flt.values)})"))
    if order_by:
        params.append(("order", f"{order_by}.{'desc' if descending else 'asc'}"))
    return params


class RestRecordStore:
    """Thin async wrapper around a PostgREST API."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        read_timeout: float | None = None,
        write_timeout: float | None = None,
    ) -> None:
        self._base_url = (base_url or settings.store.store_rest_url).rstrip("/")
        self._api_key = api_key if api_key is not None else settings.store.store_rest_api_key
        self._read_timeout = httpx.Timeout(read_timeout or settings.store.store_read_timeout, connect=5.0)
        self._write_timeout_s = write_timeout or settings.store.store_write_timeout
        self._write_timeout = httpx.Timeout(self._write_timeout_s, connect=5.0)

    @property
    def _headers(self) -> dict[str, str]:
        headers = {"Prefer": "return=representation"}
        if self._api_key:
            headers["apikey"] = self._api_key
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def fetch_by(
        self,
        collection: Collection,
        filters: Filters | None = None,
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[Record]:
        collection = Collection(collection)
        if matches_nothing(filters):
            return []

        try:
            async with httpx.AsyncClient(timeout=self._read_timeout) as client:
                response = await client.get(
                    f"{self._base_url}/{collection.value}",
                    params=build_params(filters, order_by, descending),
                    headers=self._headers,
                )
                response.raise_for_status()
                payload = response.json()
        except httpx.TimeoutException as exc:
            logger.warning("Fetch timeout for %s", collection.value)
            raise FetchError(collection.value, f"Timed out loading {collection.value}") from exc
        except httpx.HTTPStatusError as exc:
            logger.warning("Fetch HTTP %s for %s", exc.response.status_code, collection.value)
            raise FetchError(
                collection.value,
                f"Failed to load {collection.value}: HTTP {exc.response.status_code}",
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("Fetch transport error for %s: %s", collection.value, exc)
            raise FetchError(collection.value, f"Failed to load {collection.value}: {exc}") from exc
        except ValueError as exc:
            # 2xx with a non-JSON body, e.g. a proxy error page
            logger.warning("Fetch for %s returned a non-JSON body", collection.value)
            raise FetchError(collection.value, f"Unreadable response loading {collection.value}") from exc

        if not isinstance(payload, list):
            raise FetchError(collection.value, f"Unexpected payload for {collection.value}")
        return payload

    async def insert(self, collection: Collection, record: Record) -> Record:
        collection = Collection(collection)
        rows = await self._write(
            "POST",
            collection,
            None,
            params=None,
            body=[record],
        )
        if not rows:
            raise WriteError(collection.value, message=f"{collection.value} insert returned no row")
        logger.info("Inserted %s id=%s", collection.value, rows[0].get("id"))
        return rows[0]

    async def update(self, collection: Collection, record_id: str, patch: Record) -> Record | None:
        collection = Collection(collection)
        rows = await self._write(
            "PATCH",
            collection,
            record_id,
            params=[("id", f"eq.{record_id}")],
            body=patch,
        )
        if not rows:
            raise WriteError(collection.value, record_id, f"{collection.value}/{record_id} not found")
        logger.info("Updated %s id=%s fields=%s", collection.value, record_id, sorted(patch))
        return rows[0]

    async def _write(
        self,
        method: str,
        collection: Collection,
        record_id: str | None,
        params: list[tuple[str, str]] | None,
        body: Any,
    ) -> list[Record]:
        try:
            async with httpx.AsyncClient(timeout=self._write_timeout) as client:
                response = await client.request(
                    method,
                    f"{self._base_url}/{collection.value}",
                    params=params,
                    json=to_jsonable_python(body),
                    headers=self._headers,
                )
                response.raise_for_status()
                payload = response.json() if response.content else []
        except httpx.TimeoutException as exc:
            logger.warning("Write timeout for %s/%s: outcome unknown", collection.value, record_id)
            raise WriteTimeoutError(collection.value, record_id, self._write_timeout_s) from exc
        except httpx.HTTPStatusError as exc:
            detail = _error_message(exc.response)
            logger.warning("Write HTTP %s for %s/%s: %s", exc.response.status_code, collection.value, record_id, detail)
            raise WriteError(collection.value, record_id, detail) from exc
        except httpx.HTTPError as exc:
            logger.warning("Write transport error for %s/%s: %s", collection.value, record_id, exc)
            raise WriteError(collection.value, record_id, str(exc)) from exc
        except ValueError as exc:
            logger.warning("Write for %s/%s returned a non-JSON body", collection.value, record_id)
            raise WriteError(collection.value, record_id, "Unreadable response from the record store") from exc

        return payload if isinstance(payload, list) else [payload]


def _error_message(response: httpx.Response) -> str:
    """Extract PostgREST's `message` field, falling back to the status code."""
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return f"HTTP {response.status_code}"
