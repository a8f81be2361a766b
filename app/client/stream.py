"""
Payment Stream — Socket.IO client for a tenant's live payment events.

Connection status is mirrored into the read model; payment events are
handed to a callback (normally BatchingDispatcher.push). Reconnection is
owned here: bounded attempts with exponential back-off from a fixed base
delay. A handshake rejected by the server is final.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any
from urllib.parse import urlencode

import socketio
from socketio.exceptions import ConnectionError as SocketConnectionError
from pydantic import ValidationError as PydanticValidationError

from app.client.read_model import DashboardStore, SetConnectionStatus
from app.errors import StreamError
from app.models.payments import PaymentEvent

logger = logging.getLogger(__name__)


def backoff_delay(attempt: int, base: float, maximum: float) -> float:
    """Delay before reconnect attempt `attempt` (1-based)."""
    return min(base * (2 ** max(0, attempt - 1)), maximum)


class PaymentStream:
    """Long-lived live session for one tenant."""

    def __init__(
        self,
        url: str,
        tenant_id: str,
        store: DashboardStore,
        on_event: Callable[[PaymentEvent], None],
        socketio_path: str = "/ws/payments/socket.io",
        max_attempts: int = 10,
        base_delay: float = 3.0,
        max_delay: float = 30.0,
        sio: socketio.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self.tenant_id = tenant_id
        self.store = store
        self.on_event = on_event
        self.socketio_path = socketio_path.strip("/")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.sio = sio or socketio.AsyncClient(reconnection=False)
        self._closing = False
        self._rejected = False

        self.sio.on("connect", self._on_connect)
        self.sio.on("disconnect", self._on_disconnect)
        self.sio.on("connect_error", self._on_connect_error)
        self.sio.on("connection_status", self._on_connection_status)
        self.sio.on("error", self._on_error)
        self.sio.on("payment_event", self._on_payment_event)

    @property
    def endpoint(self) -> str:
        return f"{self.url}?{urlencode({'tenantId': self.tenant_id})}"

    # =========================================================================
    # HANDLERS
    # =========================================================================

    async def _on_connect(self) -> None:
        logger.info("Stream connected for %s", self.tenant_id)
        self.store.dispatch(SetConnectionStatus("connected"))

    async def _on_disconnect(self, reason: Any = None) -> None:
        logger.info("Stream disconnected for %s: %s", self.tenant_id, reason)
        if not self._rejected:
            self.store.dispatch(
                SetConnectionStatus("disconnected", str(reason) if reason else None)
            )

    async def _on_connect_error(self, data: Any = None) -> None:
        self.store.dispatch(SetConnectionStatus("error", str(data) if data else None))

    async def _on_connection_status(self, data: dict[str, Any]) -> None:
        self.store.dispatch(
            SetConnectionStatus(data.get("status", "connected"), data.get("message"))
        )

    async def _on_error(self, data: dict[str, Any]) -> None:
        message = (data or {}).get("message", "Stream error")
        logger.warning("Stream rejected for %s: %s", self.tenant_id, message)
        self._rejected = True
        self.store.dispatch(SetConnectionStatus("error", message))

    async def _on_payment_event(self, data: dict[str, Any]) -> None:
        try:
            event = PaymentEvent.model_validate(data)
        except PydanticValidationError as e:
            logger.warning("Dropping malformed payment_event: %s", e)
            return
        self.on_event(event)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def run(self) -> None:
        """Connect and stay connected until close() or attempts run out."""
        attempt = 0
        while not self._closing:
            if attempt:
                if attempt > self.max_attempts:
                    raise StreamError(
                        f"Gave up reconnecting after {self.max_attempts} attempts"
                    )
                delay = backoff_delay(attempt, self.base_delay, self.max_delay)
                logger.info("Reconnect attempt %d in %.1fs", attempt, delay)
                await asyncio.sleep(delay)

            try:
                await self.sio.connect(
                    self.endpoint,
                    transports=["websocket"],
                    socketio_path=self.socketio_path,
                )
            except SocketConnectionError as e:
                self.store.dispatch(SetConnectionStatus("error", str(e)))
                attempt += 1
                continue

            attempt = 0
            await self.sio.wait()
            if self._rejected:
                raise StreamError(
                    self.store.state.connection.message or "Handshake rejected"
                )
            attempt = 1

    async def close(self) -> None:
        self._closing = True
        if self.sio.connected:
            await self.sio.disconnect()
