"""Samsung Tizen control channel.

Owns one logical session to one TV over the ``samsung.remote.control``
WebSocket channel:

  connect → Connecting → (ms.channel.connect)      → Connected
                       → (ms.channel.unauthorized) → Unauthorized (sticky)
                       → (no verdict in time)      → Disconnected + reconnect

Transport close/failure drops a Connected session back to Disconnected and
starts a reconnect episode (exponential backoff, bounded attempts). A new
``connect()`` or ``close()`` cancels the episode; every asynchronous
continuation carries the generation it was started for and is ignored once a
newer attempt exists.

Uses :mod:`aiohttp` for the WebSocket transport. TVs present self-signed
certificates, so TLS verification is disabled.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
from dataclasses import dataclass
from typing import Callable

import aiohttp

from tvremote.control import protocol
from tvremote.control.state import (
    AppInfo,
    Connected,
    Connecting,
    ConnectionState,
    Disconnected,
    KeyMode,
    LaunchMode,
    SessionConfig,
    Unauthorized,
)

logger = logging.getLogger(__name__)

_HANDSHAKE_TIMEOUT = 45.0        # no token: the TV shows an approval prompt
_TOKEN_HANDSHAKE_TIMEOUT = 15.0  # token supplied: verdict should be immediate
_BACKOFF_BASE = 1.0
_BACKOFF_MAX = 30.0
_MAX_RECONNECT_ATTEMPTS = 12
_CONNECT_TIMEOUT = 6.0
_HEARTBEAT = 15.0

StateCallback = Callable[[ConnectionState], None]
TokenCallback = Callable[[str], None]
EventHandler = Callable[[dict], None]


@dataclass
class PendingAppList:
    """The single outstanding ``ed.installedApp.get`` request."""

    future: asyncio.Future
    deadline: float


class ControlChannel:
    """Reconnecting control session to a Samsung TV.

    Parameters
    ----------
    session:
        Optional shared :class:`aiohttp.ClientSession`. One is created lazily
        (and closed by :meth:`aclose`) when omitted.
    handshake_timeout / token_handshake_timeout:
        Seconds to wait for the handshake verdict without / with a token.
    backoff_base / backoff_max / max_reconnect_attempts:
        Reconnect episode policy.

    All methods must be called from the event loop that runs the channel.
    Command methods never raise: they return ``False`` when the channel is
    not connected or the frame could not be written.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession | None = None,
        *,
        handshake_timeout: float = _HANDSHAKE_TIMEOUT,
        token_handshake_timeout: float = _TOKEN_HANDSHAKE_TIMEOUT,
        backoff_base: float = _BACKOFF_BASE,
        backoff_max: float = _BACKOFF_MAX,
        max_reconnect_attempts: int = _MAX_RECONNECT_ATTEMPTS,
        connect_timeout: float = _CONNECT_TIMEOUT,
    ) -> None:
        self._session = session
        self._owns_session = session is None
        self._handshake_timeout = handshake_timeout
        self._token_handshake_timeout = token_handshake_timeout
        self._backoff_base = backoff_base
        self._backoff_max = backoff_max
        self._max_reconnect_attempts = max_reconnect_attempts
        self._connect_timeout = connect_timeout

        self._state: ConnectionState = Disconnected()
        self._config: SessionConfig | None = None
        self._token: str | None = None
        self._want_connected = False
        self._generation = 0
        self._lock = asyncio.Lock()

        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._reader_task: asyncio.Task | None = None
        self._watchdog_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None

        self._pending_apps: PendingAppList | None = None
        self._handshake_done = False
        self._first_text_sent = False
        self._send_seq = 0
        self._last_launch: str | None = None

        self._state_callbacks: list[StateCallback] = []
        self._token_callbacks: list[TokenCallback] = []
        self._event_handlers: dict[str, list[EventHandler]] = {}
        self._state_waiters: list[asyncio.Future] = []

    # ------------------------------------------------------------------ #
    # Observation
    # ------------------------------------------------------------------ #

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def token(self) -> str | None:
        """Token of the current session (captured from the TV or supplied)."""
        return self._token

    @property
    def reconnecting(self) -> bool:
        """``True`` while a reconnect episode is running."""
        return self._reconnect_task is not None and not self._reconnect_task.done()

    def is_alive(self) -> bool:
        return self._ws is not None and self._state.is_connected

    def on_state_change(self, callback: StateCallback) -> None:
        """Register a callback invoked with every new :class:`ConnectionState`."""
        self._state_callbacks.append(callback)

    def on_token(self, callback: TokenCallback) -> None:
        """Register a callback invoked when the TV issues a new token.

        This is how first-time pairing yields a reusable credential; callers
        persist it (see :meth:`tvremote.config.RemoteConfig.remember_token`).
        """
        self._token_callbacks.append(callback)

    def on_event(self, event: str, handler: EventHandler) -> None:
        """Register a handler for a post-handshake event (``"*"`` for all)."""
        self._event_handlers.setdefault(event, []).append(handler)

    async def wait_for_state(
        self,
        predicate: Callable[[ConnectionState], bool],
        timeout: float | None = None,
    ) -> bool:
        """Wait until ``predicate(state)`` holds. Returns ``False`` on timeout."""
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while not predicate(self._state):
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                return False
            waiter = loop.create_future()
            self._state_waiters.append(waiter)
            try:
                await asyncio.wait_for(waiter, remaining)
            except asyncio.TimeoutError:
                return predicate(self._state)
            finally:
                if waiter in self._state_waiters:
                    self._state_waiters.remove(waiter)
        return True

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def connect(
        self,
        host: str,
        port: int = protocol.SECURE_PORT,
        name: str = "SamsungTvRemote",
        token: str | None = None,
    ) -> None:
        """Start a fresh connect attempt, superseding any previous one."""
        await self.connect_config(SessionConfig(host=host, port=port, name=name, token=token))

    async def connect_config(self, config: SessionConfig) -> None:
        self._want_connected = True
        self._config = dataclasses.replace(config)
        await self._cancel_reconnect()
        await self._open(self._config, manual=True)

    async def close(self) -> None:
        """Stop the session and all retry activity. Safe to call repeatedly."""
        self._want_connected = False
        await self._cancel_reconnect()
        async with self._lock:
            await self._teardown()
            await self._cancel_reconnect()

    async def aclose(self) -> None:
        """:meth:`close` plus releasing an internally created HTTP session."""
        await self.close()
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "ControlChannel":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------ #
    # Commands
    # ------------------------------------------------------------------ #

    async def send_key(self, key: str, mode: KeyMode = KeyMode.CLICK, times: int = 1) -> bool:
        """Send ``times`` key frames (at least one), in order."""
        try:
            mode = KeyMode(mode)
        except ValueError:
            logger.error("send_key key=%s rejected: unknown mode %r", key, mode)
            return False
        if not self._require_connected(f"send_key key={key} cmd={mode.value}"):
            return False
        for _ in range(max(1, times)):
            if not await self._send(f"key:{key}/{mode.value}", protocol.key_frame(key, mode)):
                return False
        return True

    async def hold_key(self, key: str, seconds: float) -> bool:
        """Press, wait ``seconds`` without blocking the channel, release."""
        if not await self.send_key(key, KeyMode.PRESS):
            return False
        await asyncio.sleep(max(0.0, seconds))
        return await self.send_key(key, KeyMode.RELEASE)

    async def move_cursor(self, dx: int, dy: int, duration_ms: int = 0) -> bool:
        """Send one pointer move. Callers batch drag input themselves."""
        if not self._require_connected("move_cursor"):
            return False
        return await self._send("mouse:move", protocol.move_frame(dx, dy, duration_ms))

    async def send_text(self, text: str, end: bool = False) -> bool:
        """Type ``text`` into the TV's focused input field."""
        if not self._require_connected("send_text"):
            return False
        if not text.strip():
            return False
        if not self._first_text_sent:
            self._first_text_sent = True
            if not await self._send("ime:broadcast", protocol.text_start_frame()):
                return False
        if not await self._send("ime:text", protocol.text_frame(text)):
            return False
        if end:
            return await self.end_text()
        return True

    async def end_text(self) -> bool:
        if not self._require_connected("end_text"):
            return False
        ok = await self._send("ime:end", protocol.text_end_frame())
        self._first_text_sent = False
        return ok

    async def run_app(
        self,
        app_id: str,
        launch_mode: LaunchMode = LaunchMode.DEEP_LINK,
        meta_tag: str = "",
    ) -> bool:
        try:
            launch_mode = LaunchMode(launch_mode)
        except ValueError:
            logger.error("run_app app_id=%s rejected: unknown launch mode %r", app_id, launch_mode)
            return False
        if not self._require_connected(f"run_app app_id={app_id} type={launch_mode.value}"):
            return False
        self._last_launch = f"appId={app_id} type={launch_mode.value} meta={meta_tag}"
        return await self._send("app:launch", protocol.launch_frame(app_id, launch_mode, meta_tag))

    async def open_browser(self, url: str) -> bool:
        """Open ``url`` in the TV's built-in browser."""
        if not self._require_connected(f"open_browser url={url}"):
            return False
        return await self.run_app(protocol.BROWSER_APP_ID, LaunchMode.NATIVE_LAUNCH, url)

    async def list_installed_apps(self, timeout: float = 12.0) -> list[AppInfo] | None:
        """Ask the TV for its installed apps.

        Returns the parsed list, or ``None`` on timeout, when not connected,
        or when a newer request (or a teardown) superseded this one.
        """
        if not self._require_connected("list_installed_apps"):
            return None
        loop = asyncio.get_running_loop()
        self._resolve_pending_apps(None)
        pending = PendingAppList(future=loop.create_future(), deadline=loop.time() + timeout)
        self._pending_apps = pending

        try:
            if not await self._send("app:list", protocol.app_list_frame()):
                return None
            remaining = max(0.0, pending.deadline - loop.time())
            return await asyncio.wait_for(pending.future, remaining)
        except asyncio.TimeoutError:
            logger.warning("App list timed out after %.1fs", timeout)
            return None
        finally:
            if self._pending_apps is pending:
                self._pending_apps = None

    # ------------------------------------------------------------------ #
    # Connection internals
    # ------------------------------------------------------------------ #

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def _open(self, config: SessionConfig, manual: bool = False) -> None:
        """Tear down the current attempt and launch a new one.

        A ``manual`` open also cancels any reconnect episode scheduled while
        it waited for the lock, so a caller's attempt always wins over backoff.
        """
        async with self._lock:
            await self._teardown()
            if manual:
                await self._cancel_reconnect()
            self._generation += 1
            generation = self._generation
            self._token = config.token
            self._handshake_done = False
            self._first_text_sent = False
            self._set_state(Connecting())

            url = protocol.build_url(config.host, config.port, config.name, config.token)
            logger.info(
                "Connecting to %s:%d (token %s)",
                config.host, config.port, "supplied" if config.token else "absent",
            )
            self._reader_task = asyncio.create_task(
                self._run_transport(generation, config, url)
            )
            wait = self._token_handshake_timeout if config.token else self._handshake_timeout
            self._watchdog_task = asyncio.create_task(
                self._handshake_watchdog(generation, config, wait)
            )

    async def _teardown(self) -> None:
        """Drop the current transport and its tasks. Idempotent."""
        current = asyncio.current_task()
        tasks = [
            task for task in (self._watchdog_task, self._reader_task)
            if task is not None and task is not current and not task.done()
        ]
        ws = self._ws
        self._watchdog_task = None
        self._reader_task = None
        self._ws = None
        self._handshake_done = False
        self._first_text_sent = False
        self._resolve_pending_apps(None)
        self._drop_to_disconnected()

        for task in tasks:
            task.cancel()
        if ws is not None and not ws.closed:
            try:
                await ws.close()
            except (aiohttp.ClientError, OSError, RuntimeError) as exc:
                logger.debug("Error closing control socket: %s", exc)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _drop_transport(self, generation: int, reason: str) -> None:
        """Tear down ``generation`` (if still current) and schedule a reconnect."""
        async with self._lock:
            if generation != self._generation:
                return
            await self._teardown()
        if not self._state.is_unauthorized:
            self._schedule_reconnect(reason)

    def _drop_to_disconnected(self) -> bool:
        """Move to Disconnected unless Unauthorized. Returns whether it moved."""
        if self._state.is_unauthorized:
            return False
        self._set_state(Disconnected())
        return True

    async def _run_transport(self, generation: int, config: SessionConfig, url: str) -> None:
        """Reader task: open the socket and process frames in arrival order."""
        detail = "closed"
        ws: aiohttp.ClientWebSocketResponse | None = None
        try:
            session = self._ensure_session()
            ws = await asyncio.wait_for(
                session.ws_connect(url, ssl=False, heartbeat=_HEARTBEAT),
                timeout=self._connect_timeout,
            )
            if generation != self._generation:
                await ws.close()
                return
            self._ws = ws
            logger.debug("Control socket open host=%s port=%d", config.host, config.port)

            async for msg in ws:
                if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                    self._handle_frame(generation, config, msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    detail = f"failure: {ws.exception()}"
                    break
                if generation != self._generation or self._state.is_unauthorized:
                    break
            else:
                detail = f"closed code={ws.close_code}"
        except asyncio.CancelledError:
            raise
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as exc:
            detail = f"failure: {exc!r}"
            logger.warning("Control socket to %s:%d failed: %r", config.host, config.port, exc)
        except Exception as exc:  # noqa: BLE001
            detail = f"failure: {exc!r}"
            logger.exception("Unexpected control socket error")

        if ws is not None and not ws.closed:
            try:
                await ws.close()
            except (aiohttp.ClientError, OSError, RuntimeError):
                pass
        self._on_transport_lost(generation, detail)

    def _on_transport_lost(self, generation: int, detail: str) -> None:
        if generation != self._generation:
            return
        logger.info("Control socket ended (%s)", detail)
        self._ws = None
        self._handshake_done = False
        self._first_text_sent = False
        self._cancel_watchdog()
        self._resolve_pending_apps(None)
        if self._drop_to_disconnected():
            self._schedule_reconnect(detail)

    async def _handshake_watchdog(self, generation: int, config: SessionConfig, wait: float) -> None:
        await asyncio.sleep(wait)
        if generation != self._generation or self._handshake_done:
            return
        if not isinstance(self._state, Connecting):
            return
        logger.error(
            "Handshake timeout host=%s port=%d token_empty=%s",
            config.host, config.port, config.token is None,
        )
        await self._drop_transport(generation, "handshake-timeout")

    def _cancel_watchdog(self) -> None:
        task = self._watchdog_task
        self._watchdog_task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    # ------------------------------------------------------------------ #
    # Reconnect episode
    # ------------------------------------------------------------------ #

    def _schedule_reconnect(self, reason: str) -> None:
        if not self._want_connected or self._config is None:
            return
        if self.reconnecting:
            return
        self._reconnect_task = asyncio.create_task(self._reconnect_episode(reason))

    async def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task is None or task is asyncio.current_task() or task.done():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def _reconnect_episode(self, reason: str) -> None:
        """Retry with exponential backoff until Connected/Unauthorized or exhausted."""
        delay = self._backoff_base
        for attempt in range(1, self._max_reconnect_attempts + 1):
            if not self._want_connected or self._config is None:
                return
            logger.warning(
                "Reconnect attempt %d/%d in %.1fs (%s)",
                attempt, self._max_reconnect_attempts, delay, reason,
            )
            await asyncio.sleep(delay)
            if not self._want_connected or self._config is None:
                return
            config = dataclasses.replace(self._config, token=self._token or self._config.token)
            await self._open(config)
            await self.wait_for_state(lambda s: not isinstance(s, Connecting))
            if self._state.is_connected or self._state.is_unauthorized:
                return
            delay = min(delay * 2, self._backoff_max)
        logger.error("Giving up after %d reconnect attempts", self._max_reconnect_attempts)

    # ------------------------------------------------------------------ #
    # Frames
    # ------------------------------------------------------------------ #

    def _handle_frame(self, generation: int, config: SessionConfig, raw: str | bytes) -> None:
        if generation != self._generation:
            return
        try:
            frame = protocol.parse_frame(raw)
        except protocol.ProtocolError as exc:
            logger.debug("Dropping malformed frame: %s", exc)
            return
        event = frame["event"]
        logger.debug("RECV %s", event)

        if not self._handshake_done:
            self._handle_handshake(config, frame, event)
        else:
            self._dispatch(frame, event)

    def _handle_handshake(self, config: SessionConfig, frame: dict, event: str) -> None:
        if event == protocol.EVENT_UNAUTHORIZED:
            self._handshake_done = True
            self._cancel_watchdog()
            self._resolve_pending_apps(None)
            logger.warning("TV rejected the session host=%s", config.host)
            self._set_state(Unauthorized(json.dumps(frame)))
            return

        if event == protocol.EVENT_CONNECT:
            self._handshake_done = True
            self._cancel_watchdog()
            data = frame.get("data")
            token = data.get("token") if isinstance(data, dict) else None
            token = str(token).strip() if token is not None else ""
            if token and token != self._token:
                self._token = token
                if self._config is not None:
                    self._config = dataclasses.replace(self._config, token=token)
                self._emit_token(token)
            logger.info("Handshake OK host=%s port=%d", config.host, config.port)
            self._set_state(Connected(config.host, config.port))
            return

        if event not in protocol.HANDSHAKE_NOISE:
            logger.debug("Ignoring %s before handshake", event)

    def _dispatch(self, frame: dict, event: str) -> None:
        data = frame.get("data")
        if event == protocol.EVENT_ERROR:
            message = data.get("message") if isinstance(data, dict) else None
            logger.error("ms.error msg=%s last_launch=%s", message or "", self._last_launch or "")
        elif event == protocol.EVENT_D2D:
            logger.debug("D2D %s", frame)
        elif event in (protocol.EVENT_IME_START, protocol.EVENT_IME_END):
            self._first_text_sent = False
        elif event == protocol.EVENT_APP_LIST:
            self._resolve_pending_apps(protocol.parse_app_list(frame))

        handlers = self._event_handlers.get(event, []) + self._event_handlers.get("*", [])
        for handler in handlers:
            try:
                handler(frame)
            except Exception:  # noqa: BLE001
                logger.exception("Handler error for %s", event)

    async def _send(self, label: str, payload: str) -> bool:
        self._send_seq += 1
        seq = self._send_seq
        generation = self._generation
        ws = self._ws
        if ws is None:
            logger.error("SEND#%d %s failed: no socket state=%s", seq, label, self._state)
            return False
        try:
            if ws.closed:
                raise ConnectionResetError("socket already closed")
            await ws.send_str(payload)
        except (aiohttp.ClientError, OSError, RuntimeError) as exc:
            logger.error("SEND#%d %s failed: %r state=%s", seq, label, exc, self._state)
            if generation == self._generation:
                self._drop_to_disconnected()
                await self._drop_transport(generation, f"send-failed label={label}")
            return False
        logger.debug("SEND#%d %s payload=%s", seq, label, payload)
        return True

    def _require_connected(self, what: str) -> bool:
        if self._state.is_connected:
            return True
        logger.warning("%s ignored (not connected) state=%s", what, self._state)
        return False

    def _resolve_pending_apps(self, result: list[AppInfo] | None) -> None:
        pending = self._pending_apps
        self._pending_apps = None
        if pending is not None and not pending.future.done():
            pending.future.set_result(result)

    # ------------------------------------------------------------------ #
    # Notifications
    # ------------------------------------------------------------------ #

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        previous, self._state = self._state, state
        logger.debug("State %s -> %s", previous, state)
        for waiter in self._state_waiters:
            if not waiter.done():
                waiter.set_result(state)
        for callback in list(self._state_callbacks):
            try:
                callback(state)
            except Exception:  # noqa: BLE001
                logger.exception("Error in state callback")

    def _emit_token(self, token: str) -> None:
        for callback in list(self._token_callbacks):
            try:
                callback(token)
            except Exception:  # noqa: BLE001
                logger.exception("Error in token callback")
