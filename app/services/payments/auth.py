"""
Tenant Auth — header-based tenant identification.

The tenant id is trusted as sent; the only check is its format. Used by
every HTTP route (X-Tenant-Id header) and by the gateway handshake
(tenantId query parameter).
"""

from __future__ import annotations

import logging
import re

from fastapi import Request

from app.errors import AuthError
from app.models.payments import TENANT_ID_PATTERN

logger = logging.getLogger(__name__)

TENANT_HEADER = "X-Tenant-Id"

_TENANT_RE = re.compile(TENANT_ID_PATTERN)


def is_valid_tenant_id(tenant_id: str | None) -> bool:
    """True for ids of the form tenant-{alphanumerics and dashes}."""
    return bool(tenant_id) and _TENANT_RE.fullmatch(tenant_id) is not None


def check_tenant_id(tenant_id: str | None) -> str:
    """Return the tenant id or raise AuthError describing what is wrong."""
    if not tenant_id or not tenant_id.strip():
        raise AuthError(
            "X-Tenant-Id header is required. Please provide a valid tenant identifier."
        )
    if not is_valid_tenant_id(tenant_id):
        raise AuthError(
            "X-Tenant-Id header has invalid format. Expected format: tenant-{name}"
        )
    return tenant_id


async def require_tenant(request: Request) -> str:
    """FastAPI dependency: extract and validate the request's tenant.

    Raises AuthError (401) on a missing or malformed header.
    """
    tenant_id = request.headers.get(TENANT_HEADER)
    try:
        return check_tenant_id(tenant_id)
    except AuthError:
        logger.warning(
            "Request rejected: bad X-Tenant-Id %r | Path: %s",
            tenant_id,
            request.url.path,
        )
        raise
