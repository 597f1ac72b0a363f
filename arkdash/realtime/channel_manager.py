"""Push-channel connection manager.

Owns at most one Socket.IO connection to the backend and multiplexes named
topic subscriptions over it:
- Fast-fail /health probe before the handshake (degrades to poll-only)
- At most one callback per topic; wire messages translated to typed shapes
- Exponential-backoff reconnection with a fixed attempt ceiling
- Explicit teardown that leaves no subscriptions and no timers behind

Connection and protocol errors go to error listeners; nothing here raises
out of subscribe/unsubscribe/disconnect or the socket event handlers.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine, Mapping
from enum import Enum
from typing import Any

import httpx
import socketio
from socketio.exceptions import ConnectionError as SocketIOConnectionError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from arkdash.api.client import ArkApiClient
from arkdash.core.config import get_settings
from arkdash.core.exceptions import (
    ArkDashError,
    ChannelConnectionError,
    ProbeUnavailableError,
    ProtocolError,
    ReconnectExhaustedError,
)
from arkdash.core.logging import get_logger
from arkdash.realtime.topics import KIND_BY_DATA_EVENT, Topic, TopicCallback

logger = get_logger(__name__)

ErrorListener = Callable[[ArkDashError], None]
StateListener = Callable[["ConnectionState"], None]
SocketFactory = Callable[[], socketio.AsyncClient]


class ConnectionState(str, Enum):
    """Push-channel connection states."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


def backoff_delay(attempt: int, initial: float, maximum: float) -> float:
    """Delay before reconnect attempt ``attempt`` (0-based)."""
    return min(initial * (2**attempt), maximum)


def _default_socket_factory() -> socketio.AsyncClient:
    # Reconnection is driven here, not by python-socketio
    return socketio.AsyncClient(
        reconnection=False,
        logger=False,
        engineio_logger=False,
    )


class ChannelManager:
    """Manages the single push connection and its topic subscriptions.

    Example:
        >>> manager = get_channel_manager()
        >>> await manager.connect("http://localhost:4000", token)
        >>> manager.subscribe(Topic.job_progress("J1"), on_progress)
        >>> manager.unsubscribe(Topic.job_progress("J1"))
        >>> manager.disconnect()
    """

    def __init__(
        self,
        *,
        socket_path: str | None = None,
        transports: list[str] | None = None,
        handshake_timeout: float | None = None,
        probe_timeout: float | None = None,
        max_reconnect_attempts: int | None = None,
        reconnect_initial_delay: float | None = None,
        reconnect_max_delay: float | None = None,
        socket_factory: SocketFactory | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the manager. Unset parameters come from settings."""
        settings = get_settings()
        self._socket_path = socket_path or settings.socket_path
        self._transports = list(transports or settings.socket_transports)
        self._handshake_timeout = handshake_timeout or settings.handshake_timeout
        self._probe_timeout = probe_timeout or settings.probe_timeout
        self._max_attempts = max_reconnect_attempts or settings.reconnect_max_attempts
        self._initial_delay = (
            reconnect_initial_delay
            if reconnect_initial_delay is not None
            else settings.reconnect_initial_delay
        )
        self._max_delay = (
            reconnect_max_delay
            if reconnect_max_delay is not None
            else settings.reconnect_max_delay
        )
        self._socket_factory = socket_factory or _default_socket_factory
        self._http_transport = http_transport

        self._socket: socketio.AsyncClient | None = None
        self._state = ConnectionState.DISCONNECTED
        self._endpoint: str | None = None
        self._auth_token = ""
        # topic name -> (topic, callback); at most one listener per topic
        self._subscriptions: dict[str, tuple[Topic, TopicCallback]] = {}
        self._error_listeners: list[ErrorListener] = []
        self._state_listeners: list[StateListener] = []
        self._reconnect_task: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()
        self._attempt = 0
        # Bumped by connect/disconnect so stale awaits and handlers back off
        self._generation = 0
        self.degraded = False

    # =========================================================================
    # Introspection
    # =========================================================================

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED and self._socket is not None

    @property
    def endpoint(self) -> str | None:
        return self._endpoint

    @property
    def reconnect_attempt(self) -> int:
        """Number of reconnect attempts made since the last success."""
        return self._attempt

    @property
    def has_pending_reconnect(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    @property
    def active_topics(self) -> list[str]:
        return list(self._subscriptions)

    # =========================================================================
    # Listeners
    # =========================================================================

    def add_error_listener(self, listener: ErrorListener) -> None:
        if listener not in self._error_listeners:
            self._error_listeners.append(listener)

    def remove_error_listener(self, listener: ErrorListener) -> None:
        if listener in self._error_listeners:
            self._error_listeners.remove(listener)

    def add_state_listener(self, listener: StateListener) -> None:
        if listener not in self._state_listeners:
            self._state_listeners.append(listener)

    def remove_state_listener(self, listener: StateListener) -> None:
        if listener in self._state_listeners:
            self._state_listeners.remove(listener)

    def _report_error(self, error: ArkDashError) -> None:
        logger.warning(
            "push_channel_error",
            code=error.code,
            error=error.message,
            endpoint=self._endpoint,
        )
        for listener in list(self._error_listeners):
            try:
                listener(error)
            except Exception:
                logger.exception("error_listener_failed", code=error.code)

    def _set_state(self, new_state: ConnectionState) -> None:
        if new_state is self._state:
            return
        old_state = self._state
        self._state = new_state
        logger.debug(
            "connection_state_change",
            old_state=old_state.value,
            new_state=new_state.value,
        )
        for listener in list(self._state_listeners):
            try:
                listener(new_state)
            except Exception:
                logger.exception("state_listener_failed", new_state=new_state.value)

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    async def connect(self, endpoint: str, auth_token: str = "") -> None:
        """Open the push connection.

        Tears down any existing connection first. Never raises for
        network trouble: an unreachable backend leaves the manager
        disconnected and degraded, a failed handshake schedules reconnects.

        Args:
            endpoint: Backend base URL (no trailing slash needed).
            auth_token: Bearer token attached at handshake time.
        """
        if self._socket is not None or self._state is not ConnectionState.DISCONNECTED:
            self.disconnect()

        self._generation += 1
        generation = self._generation
        self._endpoint = endpoint.rstrip("/")
        self._auth_token = auth_token
        self._attempt = 0
        self.degraded = False
        self._set_state(ConnectionState.CONNECTING)

        logger.info(
            "push_channel_connecting",
            endpoint=self._endpoint,
            has_token=bool(auth_token),
        )

        reachable = await self._probe()
        if generation != self._generation:
            return

        if not reachable:
            self.degraded = True
            logger.warning(
                "push_channel_degraded",
                endpoint=self._endpoint,
                detail="backend unreachable; live updates disabled, polling only",
            )
            self._set_state(ConnectionState.DISCONNECTED)
            self._report_error(ProbeUnavailableError(self._endpoint, "health probe failed"))
            return

        try:
            opened = await self._open_socket(generation)
        except ChannelConnectionError as e:
            if generation != self._generation:
                return
            logger.error(
                "push_channel_connect_failed",
                endpoint=self._endpoint,
                error=e.message,
            )
            self._report_error(e)
            self._schedule_reconnect()
            return

        if opened:
            self._mark_connected()

    def disconnect(self) -> asyncio.Task | None:
        """Tear down the connection and all manager-owned state.

        Synchronous: on return there are no subscriptions, no pending
        reconnect timer, and state is DISCONNECTED. Stop signals and the
        socket close happen in a background task, which is returned so
        callers may await it.

        Returns:
            The close task, or None if no socket was open or no event
            loop is running.
        """
        self._generation += 1

        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None

        topics = [topic for topic, _ in self._subscriptions.values()]
        self._subscriptions.clear()
        sock, self._socket = self._socket, None
        self._attempt = 0
        self._set_state(ConnectionState.DISCONNECTED)

        close_task = None
        if sock is not None:
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                # Called from sync code; the socket is dropped without stop signals
                logger.warning("socket_close_skipped", reason="no running event loop")
            else:
                close_task = self._spawn(self._close_socket(sock, topics))

        logger.info(
            "push_channel_disconnected",
            endpoint=self._endpoint,
            stopped_topics=[topic.name for topic in topics],
        )
        return close_task

    async def _probe(self) -> bool:
        """Lightweight reachability check against /health."""
        api = ArkApiClient(
            self._endpoint,
            self._auth_token,
            timeout=self._probe_timeout,
            transport=self._http_transport,
        )
        try:
            return await api.check_health(timeout=self._probe_timeout)
        finally:
            await api.aclose()

    async def _open_socket(self, generation: int) -> bool:
        """Create a fresh socket and perform the handshake.

        Returns:
            True if connected, False if superseded while connecting.

        Raises:
            ChannelConnectionError: If the handshake fails.
        """
        sock = self._socket_factory()
        self._bind_handlers(sock)
        self._socket = sock

        headers = {}
        if self._auth_token:
            headers["Authorization"] = f"Bearer {self._auth_token}"

        try:
            await sock.connect(
                self._endpoint,
                headers=headers,
                auth={"token": self._auth_token},
                transports=self._transports,
                socketio_path=self._socket_path,
                wait_timeout=self._handshake_timeout,
            )
        except (SocketIOConnectionError, OSError, asyncio.TimeoutError) as e:
            if self._socket is sock:
                self._socket = None
            raise ChannelConnectionError(
                f"Socket.IO handshake failed: {e or type(e).__name__}",
                endpoint=self._endpoint,
            ) from e
        except Exception as e:
            logger.warning("socket_handshake_error", endpoint=self._endpoint, exc_info=True)
            if self._socket is sock:
                self._socket = None
            raise ChannelConnectionError(
                f"Socket.IO handshake failed: {e or type(e).__name__}",
                endpoint=self._endpoint,
            ) from e

        if generation != self._generation or self._socket is not sock:
            self._spawn(self._close_socket(sock, []))
            return False
        return True

    def _mark_connected(self) -> None:
        self._attempt = 0
        self.degraded = False
        self._set_state(ConnectionState.CONNECTED)
        logger.info(
            "push_channel_connected",
            endpoint=self._endpoint,
            sid=getattr(self._socket, "sid", None),
        )

    async def _close_socket(self, sock: socketio.AsyncClient, topics: list[Topic]) -> None:
        for topic in topics:
            try:
                await sock.emit(topic.kind.stop_event, dict(topic.payload))
            except Exception as e:
                logger.debug("stop_signal_failed", topic=topic.name, error=str(e))
        try:
            await sock.disconnect()
        except Exception as e:
            logger.warning("socket_close_failed", error=str(e))

    # =========================================================================
    # Reconnection
    # =========================================================================

    def _schedule_reconnect(self) -> None:
        """Start the reconnect loop, superseding any pending one."""
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        self._set_state(ConnectionState.RECONNECTING)
        self._reconnect_task = asyncio.get_running_loop().create_task(
            self._reconnect_loop(self._generation)
        )

    async def _reconnect_loop(self, generation: int) -> None:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._max_attempts),
                retry=retry_if_exception_type(ChannelConnectionError),
                reraise=True,
            ):
                with attempt:
                    number = attempt.retry_state.attempt_number
                    delay = backoff_delay(number - 1, self._initial_delay, self._max_delay)
                    self._attempt = number
                    logger.info(
                        "reconnect_scheduled",
                        attempt=number,
                        max_attempts=self._max_attempts,
                        delay_seconds=delay,
                    )
                    await asyncio.sleep(delay)
                    try:
                        opened = await self._open_socket(generation)
                    except ChannelConnectionError as e:
                        self._report_error(e)
                        raise
                    except Exception as e:
                        logger.warning("reconnect_attempt_failed", attempt=number, exc_info=True)
                        error = ChannelConnectionError(
                            f"Reconnect attempt failed: {e or type(e).__name__}",
                            endpoint=self._endpoint,
                        )
                        self._report_error(error)
                        raise error from e
                    if not opened:
                        return
        except ChannelConnectionError:
            if generation == self._generation:
                self._reconnect_task = None
                self._give_up()
            return

        if generation == self._generation:
            self._reconnect_task = None
            logger.info("push_channel_reconnected", attempts=self._attempt)
            self._mark_connected()

    def _give_up(self) -> None:
        attempts = self._attempt
        logger.error(
            "reconnect_exhausted",
            attempts=attempts,
            endpoint=self._endpoint,
        )
        self._subscriptions.clear()
        self._set_state(ConnectionState.DISCONNECTED)
        self._report_error(ReconnectExhaustedError(attempts, endpoint=self._endpoint))

    # =========================================================================
    # Socket event handlers
    # =========================================================================

    def _bind_handlers(self, sock: socketio.AsyncClient) -> None:
        """Attach handlers that only act while ``sock`` is the live socket."""

        async def on_disconnect(*args: Any) -> None:
            reason = args[0] if args else None
            self._handle_socket_lost(sock, reason)

        async def on_any(event: str, *args: Any) -> None:
            self._dispatch(sock, event, args[0] if args else None)

        sock.on("disconnect", on_disconnect)
        sock.on("*", on_any)

    def _handle_socket_lost(self, sock: socketio.AsyncClient, reason: Any) -> None:
        # Caller-initiated disconnects detach the socket first
        if sock is not self._socket:
            return
        self._socket = None
        # A drop mid-handshake is handled by whoever is connecting
        if self._state is not ConnectionState.CONNECTED:
            return
        logger.warning("push_channel_lost", endpoint=self._endpoint, reason=str(reason))
        self._report_error(
            ChannelConnectionError(f"Connection lost: {reason}", endpoint=self._endpoint)
        )
        self._schedule_reconnect()

    def _dispatch(self, sock: socketio.AsyncClient, event: str, data: Any) -> None:
        """Route a server message to the matching topic callbacks."""
        if sock is not self._socket:
            return

        if event == "error":
            self._report_error(
                ChannelConnectionError(f"Server error: {data}", endpoint=self._endpoint)
            )
            return

        kind = KIND_BY_DATA_EVENT.get(event)
        if kind is None:
            logger.debug("unhandled_push_event", push_event=event)
            return

        entries = [
            entry for entry in self._subscriptions.values() if entry[0].kind is kind
        ]
        if not entries:
            return
        if not isinstance(data, Mapping):
            self._report_error(ProtocolError(event, "expected an object payload"))
            return

        for entry in entries:
            topic, callback = entry
            # An earlier callback may have unsubscribed or replaced this topic
            if self._subscriptions.get(topic.name) is not entry:
                continue
            if not topic.accepts(data):
                continue
            try:
                message = topic.parse(data)
            except ProtocolError as e:
                self._report_error(e)
                continue
            try:
                callback(message)
            except Exception:
                logger.exception("subscription_callback_failed", topic=topic.name)

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def subscribe(self, topic: Topic, callback: TopicCallback) -> bool:
        """Register the callback for a topic and send its start signal.

        A new callback for an existing topic replaces the old one.

        Returns:
            True if registered, False if the channel is not connected.
        """
        if not self.is_connected:
            logger.info(
                "subscribe_skipped",
                topic=topic.name,
                state=self._state.value,
            )
            return False

        replaced = topic.name in self._subscriptions
        self._subscriptions[topic.name] = (topic, callback)
        self._send(topic.kind.start_event, dict(topic.payload))
        logger.debug("topic_subscribed", topic=topic.name, replaced=replaced)
        return True

    def unsubscribe(self, topic: Topic | str) -> bool:
        """Remove a topic's callback and send its stop signal.

        Idempotent: unknown topics are ignored.

        Returns:
            True if a subscription was removed.
        """
        name = topic if isinstance(topic, str) else topic.name
        entry = self._subscriptions.pop(name, None)
        if entry is None:
            return False

        registered, _ = entry
        self._send(registered.kind.stop_event, dict(registered.payload))
        logger.debug("topic_unsubscribed", topic=name)
        return True

    # =========================================================================
    # Background emits
    # =========================================================================

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def _send(self, event: str, payload: dict[str, Any]) -> None:
        sock = self._socket
        if sock is None:
            return
        self._spawn(self._emit(sock, event, payload))

    async def _emit(
        self,
        sock: socketio.AsyncClient,
        event: str,
        payload: dict[str, Any],
    ) -> None:
        try:
            await sock.emit(event, payload)
        except Exception as e:
            if sock is self._socket:
                self._report_error(
                    ChannelConnectionError(
                        f"Failed to send '{event}': {e}",
                        endpoint=self._endpoint,
                    )
                )
            else:
                logger.debug("stale_emit_failed", push_event=event, error=str(e))


# =============================================================================
# Singleton Factory
# =============================================================================

_manager: ChannelManager | None = None


def get_channel_manager() -> ChannelManager:
    """Get the process-wide channel manager instance.

    Returns:
        ChannelManager singleton instance.
    """
    global _manager
    if _manager is None:
        _manager = ChannelManager()
    return _manager


def reset_channel_manager() -> None:
    """Tear down and forget the process-wide instance.

    Safe to call without a running event loop; an open socket is then
    released without sending stop signals.
    """
    global _manager
    if _manager is not None:
        _manager.disconnect()
    _manager = None
