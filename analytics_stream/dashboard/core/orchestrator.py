"""Dashboard orchestrator: baseline + stream → live state.

Responsible for:
- Deriving the stream URL and owning the dashboard's ConnectionManager
- Fetching the baseline snapshot, discarding superseded or late results
- Running raw frames through classifier and reducer
- Notifying renderers when state changes
"""

from __future__ import annotations

import itertools
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Iterable

from ...config_schema import StreamConfig
from ...errors import (
    BaselineFetchError,
    ErrorCode,
    NotConnectedError,
    ParseError,
    StreamConnectionError,
)
from ..client import BaselineClient
from ..models.actions import Action
from ..models.state import AnalyticsState
from ..models.views import ConnectionStatus, to_plain
from .classifier import MessageClassifier
from .connection import CloseInfo, ConnectionManager, ReadyState, SocketFactory
from .reducer import reduce
from .transforms import ViewEngine, connection_status

if TYPE_CHECKING:
    from ..profiles import DashboardProfile

logger = logging.getLogger(__name__)

ChangeListener = Callable[["DashboardOrchestrator"], None]


def build_stream_url(
    ws_base_url: str | None, api_base_url: str | None, path: str
) -> str | None:
    """Stream URL for ``path``, or None when no base is configured.

    An explicit WebSocket base wins; otherwise the REST base is converted
    (http → ws, https → wss, bare host → ws://).
    """
    path = path if path.startswith("/") else f"/{path}"

    ws_base = (ws_base_url or "").rstrip("/")
    if ws_base:
        return f"{ws_base}{path}"

    api_base = (api_base_url or "").rstrip("/")
    if not api_base:
        return None
    if api_base.startswith("http"):
        return f"ws{api_base[len('http'):]}{path}"
    if api_base.startswith("ws"):
        return f"{api_base}{path}"
    return f"ws://{api_base}{path}"


class DashboardOrchestrator:
    """Drive one dashboard instance.

    Usage:
        orchestrator = DashboardOrchestrator(EVENTS, client, config.stream)
        orchestrator.on_change(lambda o: print(o.state.summary))
        await orchestrator.mount()
        ...
        await orchestrator.unmount()
    """

    def __init__(
        self,
        profile: DashboardProfile,
        client: BaselineClient,
        settings: StreamConfig | None = None,
        *,
        connection_factory: SocketFactory | None = None,
        stream_path: str | None = None,
        range: str | None = None,
    ) -> None:
        self._profile = profile
        self._client = client
        self._settings = settings or StreamConfig()
        self._connection_factory = connection_factory
        self._stream_path = stream_path
        self._range = range

        self._state = AnalyticsState()
        self._views = ViewEngine(profile.build_views)
        self._classifier = MessageClassifier(profile.messages)
        self._connection: ConnectionManager | None = None
        self._unsubscribe: Callable[[], None] | None = None
        self._listeners: dict[int, ChangeListener] = {}
        self._listener_tokens = itertools.count(1)

        self._request_token = 0
        self._loading = False
        self._error: BaselineFetchError | None = None
        self._stream_error: StreamConnectionError | None = None
        self._mounted = False
        self._unmounted = False

    # Accessors

    @property
    def name(self) -> str:
        return self._profile.name

    @property
    def profile(self) -> DashboardProfile:
        return self._profile

    @property
    def state(self) -> AnalyticsState:
        return self._state

    @property
    def views(self) -> dict[str, Any]:
        """Derived views, recomputed only when the state changed."""
        return self._views.compute(self._state)

    @property
    def view_engine(self) -> ViewEngine:
        return self._views

    @property
    def classifier(self) -> MessageClassifier:
        return self._classifier

    @property
    def connection(self) -> ConnectionManager | None:
        return self._connection

    @property
    def range(self) -> str | None:
        """Time window sent with baseline requests; None uses the API default."""
        return self._range

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def error(self) -> BaselineFetchError | None:
        """Last baseline failure; cleared by the next successful refresh."""
        return self._error

    @property
    def stream_error(self) -> StreamConnectionError | None:
        return self._stream_error

    @property
    def mounted(self) -> bool:
        return self._mounted

    @property
    def connection_status(self) -> ConnectionStatus:
        if self._connection is None:
            return connection_status(ReadyState.CLOSED)
        return connection_status(
            self._connection.ready_state, self._connection.attempt_count
        )

    # Listeners

    def on_change(self, listener: ChangeListener) -> Callable[[], None]:
        """Call ``listener(self)`` after every state or status change."""
        token = next(self._listener_tokens)
        self._listeners[token] = listener

        def unsubscribe() -> None:
            self._listeners.pop(token, None)

        return unsubscribe

    def _notify(self) -> None:
        for token, listener in list(self._listeners.items()):
            if token not in self._listeners:
                continue
            try:
                listener(self)
            except Exception:
                logger.exception("Change listener for %s failed", self.name)

    # Lifecycle

    async def mount(self) -> None:
        """Open the stream (when configured) and load the baseline."""
        if self._mounted or self._unmounted:
            return
        self._mounted = True

        url = None
        if self._settings.enabled:
            path = self._stream_path or await self._profile.resolve_stream_path(
                self._client, self._profile.stream_path
            )
            if self._unmounted:
                return
            url = build_stream_url(
                self._settings.ws_base_url, self._settings.api_base_url, path
            )
        if url is None:
            logger.info("No stream configured for %s; baseline only", self.name)

        self._connection = ConnectionManager(
            url,
            enabled=url is not None,
            base_interval=self._settings.base_interval,
            max_interval=self._settings.max_interval,
            on_open=self._handle_open,
            on_close=self._handle_close,
            on_error=self._handle_stream_error,
            connect=self._connection_factory,
        )
        self._unsubscribe = self._connection.subscribe(self._handle_raw)
        self._connection.start()

        await self.refresh()

    async def unmount(self) -> None:
        """Stop streaming; later baseline results and frames are ignored."""
        if self._unmounted:
            return
        self._unmounted = True
        self._mounted = False
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._connection is not None:
            await self._connection.close()
        self._listeners.clear()
        logger.info("Dashboard %s unmounted", self.name)

    async def refresh(self, range: str | None = None) -> bool:
        """Fetch the baseline snapshot.

        A given ``range`` becomes the dashboard's window for this and later
        refreshes. Returns True if the result was applied. A result superseded
        by a newer refresh, or arriving after unmount, is discarded.
        """
        if self._unmounted:
            return False
        if range:
            self._range = range
        self._request_token += 1
        token = self._request_token
        self._loading = True
        self._notify()

        try:
            try:
                action = await self._profile.fetch_baseline(self._client, self._range)
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                raise BaselineFetchError(
                    f"Malformed baseline for {self.name}: {e}",
                    code=ErrorCode.BAD_RESPONSE,
                    dashboard=self.name,
                ) from e
        except BaselineFetchError as e:
            if not self._is_current(token):
                return False
            logger.warning("Baseline fetch for %s failed: %s", self.name, e)
            self._error = e
            self._loading = False
            self._notify()
            return False

        if not self._is_current(token):
            logger.debug("Discarding stale baseline for %s (request %d)", self.name, token)
            return False

        self._error = None
        self._loading = False
        if not self._apply([action]):
            self._notify()
        return True

    def _is_current(self, token: int) -> bool:
        return not self._unmounted and token == self._request_token

    # Pipeline

    def dispatch(self, action: Action) -> AnalyticsState:
        """Reduce one action into the state and notify listeners."""
        self._apply([action])
        return self._state

    def _apply(self, actions: Iterable[Action], now: datetime | None = None) -> bool:
        if self._unmounted:
            return False
        previous = self._state
        state = previous
        for action in actions:
            try:
                state = reduce(state, action, now)
            except ValueError as e:
                logger.warning("Dropping %s for %s: %s", type(action).__name__, self.name, e)
        if state is previous:
            return False
        self._state = state
        self._notify()
        return True

    def _handle_raw(self, raw: Any) -> None:
        result = self._classifier.classify(raw)
        if isinstance(result, ParseError):
            return
        self._apply(result.to_actions())

    def _handle_open(self) -> None:
        self._stream_error = None
        self._notify()

    def _handle_close(self, info: CloseInfo) -> None:
        self._notify()

    def _handle_stream_error(self, error: StreamConnectionError) -> None:
        self._stream_error = error
        self._notify()

    async def send(self, payload: Any) -> None:
        """Send ``payload`` over the dashboard's stream.

        Raises:
            NotConnectedError: If the dashboard has no open stream.
        """
        if self._connection is None:
            raise NotConnectedError(f"Dashboard {self.name} is not mounted")
        await self._connection.send(payload)

    def snapshot(self) -> dict[str, Any]:
        """Plain-data view of the dashboard for serialization."""
        return {
            "name": self.name,
            "state": self._state.to_dict(),
            "views": to_plain(self.views),
            "connection": to_plain(self.connection_status),
            "loading": self._loading,
            "error": self._error.to_dict() if self._error is not None else None,
            "stream_error": (
                self._stream_error.to_dict() if self._stream_error is not None else None
            ),
        }
