"""Resilient stream connection: connect, reconnect with backoff, fan-out.

Responsible for:
- Owning at most one live socket per manager
- Reconnecting after unplanned closes with linear, capped backoff
- Delivering every inbound frame to subscribers in registration order
- Cancelling pending reconnects on close/disable (no timers after teardown)
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Protocol

import websockets
from websockets.exceptions import ConnectionClosed

from ...errors import NotConnectedError, StreamConnectionError

logger = logging.getLogger(__name__)

NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006


class ReadyState(str, Enum):
    """Socket lifecycle states."""

    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass(frozen=True)
class CloseInfo:
    """Why a connection ended."""

    code: int | None
    reason: str = ""

    @property
    def was_clean(self) -> bool:
        return self.code == NORMAL_CLOSURE


class StreamSocket(Protocol):
    """The transport surface the manager wraps (a websockets client connection)."""

    close_code: int | None

    def __aiter__(self) -> AsyncIterator[str | bytes]: ...

    async def send(self, message: Any) -> None: ...

    async def close(self) -> None: ...


MessageHandler = Callable[[Any], None]
SocketFactory = Callable[[str], Awaitable[StreamSocket]]
ReconnectPredicate = Callable[[CloseInfo], bool]


async def open_websocket(url: str) -> StreamSocket:
    """Default transport: a websockets client connection."""
    return await websockets.connect(url)


def compute_backoff(attempts: int, base_interval: float, max_interval: float) -> float:
    """Delay before the next attempt: linear in the attempt count, capped."""
    return min(max_interval, base_interval * max(1, attempts))


def default_should_reconnect(info: CloseInfo) -> bool:
    """Reconnect after every close except a normal closure."""
    return not info.was_clean


class Subscription:
    """Disposer returned by ConnectionManager.subscribe().

    Calling it (or unsubscribe()) more than once is harmless, including after
    the manager has been closed.
    """

    def __init__(self, registry: dict[int, MessageHandler], token: int) -> None:
        self._registry = registry
        self._token = token

    @property
    def token(self) -> int:
        return self._token

    @property
    def active(self) -> bool:
        return self._token in self._registry

    def unsubscribe(self) -> None:
        self._registry.pop(self._token, None)

    def __call__(self) -> None:
        self.unsubscribe()


class ConnectionManager:
    """Own one logical streaming connection and fan messages out.

    Usage:
        manager = ConnectionManager("ws://localhost:5000/ws/events")
        unsubscribe = manager.subscribe(lambda raw: print(raw))
        manager.start()
        ...
        unsubscribe()
        await manager.close()

    A manager without a URL, or disabled, is inert: it never connects.
    """

    def __init__(
        self,
        url: str | None,
        *,
        enabled: bool = True,
        base_interval: float = 2.0,
        max_interval: float = 15.0,
        should_reconnect: ReconnectPredicate | None = None,
        on_open: Callable[[], None] | None = None,
        on_close: Callable[[CloseInfo], None] | None = None,
        on_error: Callable[[StreamConnectionError], None] | None = None,
        connect: SocketFactory | None = None,
    ) -> None:
        self._url = url
        self._enabled = enabled
        self._base_interval = base_interval
        self._max_interval = max_interval
        self._should_reconnect = should_reconnect or default_should_reconnect
        self._on_open = on_open
        self._on_close = on_close
        self._on_error = on_error
        self._connect_factory = connect or open_websocket

        self._socket: StreamSocket | None = None
        self._task: asyncio.Task[None] | None = None
        self._reconnect_handle: asyncio.TimerHandle | None = None
        self._manual_close = False
        self._attempts = 0
        self._reconnect_delay: float | None = None
        self._ready_state = ReadyState.CLOSED
        self._subscribers: dict[int, MessageHandler] = {}
        self._tokens = itertools.count(1)

    @property
    def url(self) -> str | None:
        return self._url

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def ready_state(self) -> ReadyState:
        return self._ready_state

    @property
    def attempt_count(self) -> int:
        """Consecutive connection attempts since the last successful open."""
        return self._attempts

    @property
    def reconnect_delay(self) -> float | None:
        """Delay (seconds) of the most recently scheduled reconnect."""
        return self._reconnect_delay

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    # Subscribers

    def subscribe(self, handler: MessageHandler) -> Subscription:
        """Register a handler for every inbound frame; returns its disposer."""
        token = next(self._tokens)
        self._subscribers[token] = handler
        return Subscription(self._subscribers, token)

    def _dispatch(self, raw: Any) -> None:
        for token, handler in list(self._subscribers.items()):
            if token not in self._subscribers:
                # Unsubscribed by an earlier handler during this dispatch
                continue
            try:
                handler(raw)
            except Exception:
                logger.exception("Stream subscriber %d failed", token)

    # Lifecycle

    def start(self) -> None:
        """Begin connecting in the background (requires a running event loop)."""
        if not self._url or not self._enabled:
            logger.debug("Streaming disabled; connection manager stays idle")
            return
        self._manual_close = False
        if self._task is not None and not self._task.done():
            return
        self._connect()

    def _connect(self) -> None:
        self._cancel_reconnect()
        if self._manual_close or not self._enabled:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        assert self._url is not None
        self._attempts += 1
        self._ready_state = ReadyState.CONNECTING
        logger.info("Connecting to %s (attempt %d)", self._url, self._attempts)

        try:
            socket = await self._connect_factory(self._url)
        except asyncio.CancelledError:
            self._ready_state = ReadyState.CLOSED
            raise
        except Exception as e:
            logger.warning("Failed to open stream %s: %s", self._url, e)
            self._report_error(
                StreamConnectionError(f"Failed to open stream: {e}", url=self._url)
            )
            self._handle_close(CloseInfo(ABNORMAL_CLOSURE, str(e)))
            return

        if self._manual_close or not self._enabled:
            await self._close_socket(socket)
            self._ready_state = ReadyState.CLOSED
            return

        self._socket = socket
        self._ready_state = ReadyState.OPEN
        self._attempts = 0
        self._reconnect_delay = None
        logger.info("Stream open: %s", self._url)
        if self._on_open is not None:
            try:
                self._on_open()
            except Exception:
                logger.exception("on_open callback failed")

        try:
            async for raw in socket:
                self._dispatch(raw)
        except ConnectionClosed:
            pass
        except Exception as e:
            logger.warning("Stream error on %s: %s", self._url, e)
            self._report_error(StreamConnectionError(f"Stream error: {e}", url=self._url))
        finally:
            self._socket = None

        code = getattr(socket, "close_code", None)
        reason = getattr(socket, "close_reason", None) or ""
        self._handle_close(
            CloseInfo(code if code is not None else ABNORMAL_CLOSURE, reason)
        )

    def _report_error(self, error: StreamConnectionError) -> None:
        if self._on_error is None:
            return
        try:
            self._on_error(error)
        except Exception:
            logger.exception("on_error callback failed")

    def _handle_close(self, info: CloseInfo) -> None:
        self._ready_state = ReadyState.CLOSED
        logger.info("Stream closed: %s (code=%s)", self._url, info.code)
        if self._on_close is not None:
            try:
                self._on_close(info)
            except Exception:
                logger.exception("on_close callback failed")

        if self._manual_close or not self._enabled:
            return
        try:
            reconnect = self._should_reconnect(info)
        except Exception:
            logger.exception("should_reconnect failed; not reconnecting to %s", self._url)
            return
        if not reconnect:
            logger.info("Not reconnecting to %s after code %s", self._url, info.code)
            return

        delay = compute_backoff(self._attempts, self._base_interval, self._max_interval)
        self._reconnect_delay = delay
        logger.info("Reconnecting to %s in %.1fs", self._url, delay)
        self._reconnect_handle = asyncio.get_running_loop().call_later(
            delay, self._reconnect
        )

    def _reconnect(self) -> None:
        self._reconnect_handle = None
        if self._manual_close or not self._enabled:
            return
        self._connect()

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    async def _close_socket(self, socket: StreamSocket) -> None:
        try:
            await socket.close()
        except Exception as e:
            logger.warning("Error while closing stream %s: %s", self._url, e)

    async def _shutdown(self) -> None:
        self._cancel_reconnect()
        socket = self._socket
        if socket is not None:
            self._ready_state = ReadyState.CLOSING
            await self._close_socket(socket)

        task = self._task
        if task is not None and task is not asyncio.current_task() and not task.done():
            if socket is None:
                # Still connecting
                task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._socket = None
        self._ready_state = ReadyState.CLOSED

    async def send(self, payload: Any) -> None:
        """Forward ``payload`` verbatim.

        Raises:
            NotConnectedError: If the socket is not open.
        """
        socket = self._socket
        if socket is None or self._ready_state != ReadyState.OPEN:
            raise NotConnectedError(
                "Cannot send message while socket is not open", url=self._url
            )
        await socket.send(payload)

    async def close(self) -> None:
        """Close for good: no reconnect will be attempted afterwards. Idempotent."""
        self._manual_close = True
        await self._shutdown()

    async def set_enabled(self, enabled: bool) -> None:
        """Disable (tears down, no reconnect) or re-enable (connects again)."""
        if enabled == self._enabled:
            return
        self._enabled = enabled
        if enabled:
            self.start()
        else:
            await self._shutdown()
