"""Baseline REST client.

Fetches analytics snapshots over HTTP and normalizes loosely-shaped backend
payloads (``{"data": ...}`` envelopes, string-encoded numbers, aliased field
names) before they reach the reducer.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Iterable, Mapping

import httpx

from ..errors import BaselineFetchError, ErrorCode

logger = logging.getLogger(__name__)


def unwrap(payload: Any) -> Any:
    """Strip a single ``{"data": ...}`` envelope if present."""
    if isinstance(payload, Mapping) and set(payload.keys()) <= {"data", "meta", "success"}:
        if "data" in payload:
            return payload["data"]
    return payload


def coerce_number(value: Any, default: float = 0.0) -> float:
    """Numeric value from ints, floats or numeric strings ("1 200,5" included)."""
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else default
    if isinstance(value, str):
        cleaned = value.strip().replace(" ", "").replace("\u00a0", "").rstrip("%")
        if "," in cleaned and "." not in cleaned:
            cleaned = cleaned.replace(",", ".")
        try:
            number = float(cleaned)
        except ValueError:
            return default
        return number if math.isfinite(number) else default
    return default


def pick(record: Mapping[str, Any], *aliases: str, default: Any = None) -> Any:
    """First present value among several candidate field names."""
    for alias in aliases:
        if alias in record and record[alias] is not None:
            return record[alias]
    return default


def as_list(payload: Any, *keys: str) -> list[Any]:
    """A list from a bare list or from the first list-valued key of a mapping."""
    payload = unwrap(payload)
    if isinstance(payload, list):
        return payload
    if isinstance(payload, Mapping):
        for key in keys:
            value = payload.get(key)
            if isinstance(value, list):
                return value
    return []


def numeric_map(payload: Any, skip: Iterable[str] = ()) -> dict[str, float]:
    """Scalar metrics of a mapping, coerced to floats; non-numeric values dropped."""
    result: dict[str, float] = {}
    if not isinstance(payload, Mapping):
        return result
    skipped = set(skip)
    for key, value in payload.items():
        if key in skipped or isinstance(value, (Mapping, list)) or value is None:
            continue
        number = coerce_number(value, default=math.nan)
        if not math.isnan(number):
            result[key] = number
    return result


class BaselineClient:
    """Async JSON client for baseline snapshot endpoints.

    Usage:
        async with BaselineClient("http://localhost:4000") as client:
            summary = await client.get_json("/api/events/analytics", {"range": "30d"})
    """

    def __init__(
        self,
        base_url: str | None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = (base_url or "").rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    async def get_json(self, path: str, params: Mapping[str, Any] | None = None) -> Any:
        """GET ``path`` and return the unwrapped JSON body.

        Raises:
            BaselineFetchError: On transport failure, non-2xx status or invalid JSON.
        """
        try:
            response = await self._client.get(path, params=dict(params or {}))
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise BaselineFetchError(
                f"GET {path} returned {e.response.status_code}",
                path=path,
                status=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise BaselineFetchError(f"GET {path} failed: {e}", path=path) from e

        try:
            body = response.json()
        except ValueError as e:
            raise BaselineFetchError(
                f"GET {path} returned invalid JSON",
                code=ErrorCode.BAD_RESPONSE,
                path=path,
            ) from e
        logger.debug("Fetched %s", path)
        return unwrap(body)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> BaselineClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
