"""
Payment Gateway — Socket.IO fan-out of payment events to tenant rooms.

Clients connect with ?tenantId=tenant-xyz. A valid handshake joins the
session to that tenant's room and receives `connection_status`; an invalid
one receives `error` and is disconnected. Every `payment.created` message
is delivered as `payment_event` to each session currently in the room.

Session lifecycle: opening -> authenticated -> open -> closing -> closed,
or opening -> closed on a rejected handshake.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from urllib.parse import parse_qs

import socketio

from app.config import settings
from app.errors import AuthError, StreamError
from app.models.payments import ConnectionStatusEvent, PaymentEvent, StreamErrorEvent
from app.services.payments.auth import is_valid_tenant_id
from app.services.payments.events import PAYMENT_CREATED, EventBus, PaymentCreated

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    OPENING = "opening"
    AUTHENTICATED = "authenticated"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass
class Session:
    sid: str
    tenant_id: str | None = None
    state: SessionState = SessionState.OPENING
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class RoomRegistry:
    """Tenant -> session ids, stored as immutable snapshots.

    Mutations replace the frozenset for a room, so a fan-out iterating over
    `members()` never sees a set change underneath it. Mutations contain no
    awaits and are therefore atomic on the event loop.
    """

    def __init__(self) -> None:
        self._rooms: dict[str, frozenset[str]] = {}
        self._sessions: dict[str, Session] = {}

    def open(self, sid: str) -> Session:
        session = Session(sid=sid)
        self._sessions[sid] = session
        return session

    def get(self, sid: str) -> Session | None:
        return self._sessions.get(sid)

    def join(self, sid: str, tenant_id: str) -> int:
        """Add a session to a tenant room; returns the new room size."""
        session = self._sessions.setdefault(sid, Session(sid=sid))
        session.tenant_id = tenant_id
        room = self._rooms.get(tenant_id, frozenset()) | {sid}
        self._rooms[tenant_id] = room
        return len(room)

    def remove(self, sid: str) -> Session | None:
        """Forget a session; empty rooms are collapsed."""
        session = self._sessions.pop(sid, None)
        if session is None or session.tenant_id is None:
            return session
        room = self._rooms.get(session.tenant_id, frozenset()) - {sid}
        if room:
            self._rooms[session.tenant_id] = room
        else:
            self._rooms.pop(session.tenant_id, None)
        return session

    def members(self, tenant_id: str) -> frozenset[str]:
        return self._rooms.get(tenant_id, frozenset())

    def rooms(self) -> dict[str, frozenset[str]]:
        return dict(self._rooms)

    def stats(self) -> dict[str, Any]:
        rooms = self.rooms()
        return {
            "total_connections": sum(len(m) for m in rooms.values()),
            "tenants": [
                {"tenant_id": tenant_id, "connections": len(members)}
                for tenant_id, members in sorted(rooms.items())
            ],
        }


def _tenant_from_environ(environ: dict[str, Any]) -> str | None:
    query = parse_qs(environ.get("QUERY_STRING", ""))
    values = query.get("tenantId") or []
    return values[0] if values else None


def _now() -> datetime:
    return datetime.now(timezone.utc)


class PaymentGateway:
    """Owns the Socket.IO server and the tenant room registry."""

    def __init__(
        self,
        sio: socketio.AsyncServer | None = None,
        registry: RoomRegistry | None = None,
        send_timeout: float | None = None,
    ) -> None:
        self.sio = sio or socketio.AsyncServer(
            async_mode="asgi",
            cors_allowed_origins=settings.cors_origin_list,
            # Lets the connect handler emit before accepting or rejecting
            always_connect=True,
        )
        self.registry = registry or RoomRegistry()
        self.send_timeout = (
            send_timeout if send_timeout is not None else settings.ws_send_timeout_seconds
        )
        self.sio.on("connect", self.handle_connect)
        self.sio.on("disconnect", self.handle_disconnect)

    def attach(self, bus: EventBus) -> Callable[[], None]:
        """Subscribe to payment.created; returns the unsubscribe callable."""
        return bus.subscribe(PAYMENT_CREATED, self.handle_payment_created)

    # =========================================================================
    # SESSION LIFECYCLE
    # =========================================================================

    async def handle_connect(
        self, sid: str, environ: dict[str, Any], auth: Any = None
    ) -> bool:
        session = self.registry.open(sid)
        tenant_id = _tenant_from_environ(environ)

        try:
            if not tenant_id or not tenant_id.strip():
                raise AuthError("tenantId is required in query parameters")
            if not is_valid_tenant_id(tenant_id):
                raise AuthError("Invalid tenantId format. Expected format: tenant-{name}")
        except AuthError as e:
            logger.warning("Connection rejected: %s (client: %s)", e.message, sid)
            self.registry.remove(sid)
            session.state = SessionState.CLOSED
            await self.sio.emit(
                "error", StreamErrorEvent(message=e.message).model_dump(), to=sid
            )
            return False

        session.state = SessionState.AUTHENTICATED
        room_size = self.registry.join(sid, tenant_id)
        session.state = SessionState.OPEN

        logger.info(
            "Client connected: %s | Tenant: %s | Total in room: %d",
            sid,
            tenant_id,
            room_size,
        )
        status = ConnectionStatusEvent(
            status="connected",
            message=f"Connected to payment stream for tenant: {tenant_id}",
            timestamp=_now(),
        )
        await self.sio.emit(
            "connection_status", status.model_dump(by_alias=True, mode="json"), to=sid
        )
        return True

    async def handle_disconnect(self, sid: str, reason: Any = None) -> None:
        session = self.registry.get(sid)
        if session is not None:
            session.state = SessionState.CLOSING
        removed = self.registry.remove(sid)
        if removed is not None:
            removed.state = SessionState.CLOSED
        logger.info(
            "Client disconnected: %s%s",
            sid,
            f" | Tenant: {removed.tenant_id}" if removed and removed.tenant_id else "",
        )

    # =========================================================================
    # FAN-OUT
    # =========================================================================

    async def _drop(self, sid: str) -> None:
        self.registry.remove(sid)
        try:
            await self.sio.disconnect(sid)
        except Exception as e:
            logger.debug("Disconnect of %s after failed delivery raised: %s", sid, e)

    async def _deliver(self, sid: str, data: dict[str, Any]) -> bool:
        try:
            await asyncio.wait_for(
                self.sio.emit("payment_event", data, to=sid),
                timeout=self.send_timeout,
            )
            return True
        except Exception as e:
            error = StreamError(f"Delivery to {sid} failed: {e!r}")
            logger.warning("%s; dropping session", error.message)
            await self._drop(sid)
            return False

    async def handle_payment_created(self, message: PaymentCreated) -> int:
        """Send a payment_event to every session in the tenant's room.

        Returns the number of sessions the event reached.
        """
        members = self.registry.members(message.tenant_id)
        if not members:
            return 0

        event = PaymentEvent(
            type=message.event_type,  # type: ignore[arg-type]
            payment=message.payment,
            timestamp=_now(),
        )
        data = event.model_dump(by_alias=True, mode="json")
        results = await asyncio.gather(*(self._deliver(sid, data) for sid in members))
        delivered = sum(1 for ok in results if ok)

        logger.debug(
            "Broadcast %s to %d/%d clients of %s | Amount: %.2f",
            message.event_type,
            delivered,
            len(members),
            message.tenant_id,
            message.payment.amount,
        )
        return delivered

    def connection_stats(self) -> dict[str, Any]:
        return self.registry.stats()


# Singleton
_gateway: PaymentGateway | None = None


def get_gateway() -> PaymentGateway:
    """Get or create the singleton gateway."""
    global _gateway
    if _gateway is None:
        _gateway = PaymentGateway()
    return _gateway


def reset_gateway() -> None:
    """Reset the singleton (for testing)."""
    global _gateway
    _gateway = None
