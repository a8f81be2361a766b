"""
Analytics API client — authoritative metrics and trends over HTTP.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import httpx
from pydantic import ValidationError as SchemaError

from app.errors import DependencyError, ValidationError
from app.models.payments import Metrics, TrendPoint

logger = logging.getLogger(__name__)

_TENANT_HEADER = "X-Tenant-Id"


def _json(resp: httpx.Response, path: str) -> Any:
    try:
        return resp.json()
    except ValueError as e:
        logger.warning(
            "GET %s returned a non-JSON body (%s)",
            path,
            resp.headers.get("content-type", "no content type"),
        )
        raise DependencyError(f"{path} returned an unreadable response") from e


class AnalyticsClient:
    """Tenant-bound client for /api/analytics/*."""

    def __init__(
        self,
        base_url: str,
        tenant_id: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.tenant_id = tenant_id
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            headers={_TENANT_HEADER: tenant_id},
            timeout=timeout,
        )

    async def _get(self, path: str, params: dict[str, str] | None = None) -> Any:
        try:
            resp = await self._client.get(path, params=params)
        except httpx.HTTPError as e:
            logger.warning("GET %s failed: %s", path, e)
            raise DependencyError(f"Request to {path} failed: {e}") from e

        if resp.status_code == 400:
            try:
                body = resp.json()
            except ValueError:
                body = None
            detail = body.get("detail") if isinstance(body, dict) else None
            raise ValidationError(detail or "Bad request")
        if resp.status_code >= 400:
            logger.warning("GET %s returned %d", path, resp.status_code)
            raise DependencyError(f"{path} returned HTTP {resp.status_code}")
        return _json(resp, path)

    async def get_metrics(
        self, start: datetime | None = None, end: datetime | None = None
    ) -> Metrics:
        params: dict[str, str] = {}
        if start is not None and end is not None:
            params = {"startDate": start.isoformat(), "endDate": end.isoformat()}
        path = "/api/analytics/metrics"
        data = await self._get(path, params or None)
        try:
            return Metrics.model_validate(data)
        except SchemaError as e:
            logger.warning("GET %s returned an unexpected shape: %s", path, e)
            raise DependencyError(f"{path} returned an unexpected response") from e

    async def get_trends(self, period: str) -> list[TrendPoint]:
        path = "/api/analytics/trends"
        data = await self._get(path, {"period": period})
        if data is None:
            return []
        if not isinstance(data, list):
            raise DependencyError(f"{path} returned an unexpected response")
        try:
            return [TrendPoint.model_validate(item) for item in data]
        except SchemaError as e:
            logger.warning("GET %s returned an unexpected shape: %s", path, e)
            raise DependencyError(f"{path} returned an unexpected response") from e

    async def aclose(self) -> None:
        await self._client.aclose()
