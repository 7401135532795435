"""
POS side of the scanner relay channel.

One `ChannelManager` owns at most one live `ChannelConnection`. Every timer a
connection starts (connect timeout, keep-alive, reconnect) is stored on the
connection and cancelled when it leaves the state that started it.
"""

from __future__ import annotations

import asyncio
import enum
import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Set

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed

from .config import ChannelTimings
from .decoder import decode_message
from .jsonlog import json_log
from .messages import ping_message
from .notices import NoticeBoard

NORMAL_CLOSE = 1000
ABNORMAL_CLOSE = 1006
# 1006 is never sent on the wire; a failed reader closes with 1011.
INTERNAL_ERROR_CLOSE = 1011
# Normal close, going away, policy violation (relay rejected the session id).
NO_RECONNECT_CODES = frozenset({1000, 1001, 1008})


class ChannelState(str, enum.Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


@dataclass(eq=False)
class ChannelConnection:
    session_id: str
    url: str
    state: ChannelState = ChannelState.CONNECTING
    is_manual_close: bool = False
    transport: Any = None
    close_code: Optional[int] = None
    connection_timeout_handle: Optional[asyncio.TimerHandle] = None
    ping_task: Optional[asyncio.Task] = None
    reconnect_timeout_handle: Optional[asyncio.TimerHandle] = None
    run_task: Optional[asyncio.Task] = None


async def websocket_connector(url: str):
    # The JSON ping below is the keep-alive; the library's own ping and
    # open timeout are disabled so only one set of timers exists.
    return await ws_connect(url, ping_interval=None, open_timeout=None)


def _close_details(exc: ConnectionClosed) -> tuple[int, str]:
    frame = exc.rcvd or exc.sent
    if frame is None:
        return ABNORMAL_CLOSE, ""
    return frame.code, frame.reason


class ChannelManager:
    def __init__(
        self,
        *,
        url_for: Callable[[str], str],
        notices: NoticeBoard,
        timings: ChannelTimings = ChannelTimings(),
        connector: Callable[[str], Awaitable[Any]] = websocket_connector,
        on_event: Optional[Callable[[Any], Awaitable[None]]] = None,
    ) -> None:
        self.url_for = url_for
        self.notices = notices
        self.timings = timings
        self.connector = connector
        self.on_event = on_event
        self.current: Optional[ChannelConnection] = None
        self._closing: Set[asyncio.Task] = set()

    @property
    def state(self) -> ChannelState:
        if self.current is None:
            return ChannelState.IDLE
        return self.current.state

    @property
    def connected(self) -> bool:
        return self.state is ChannelState.OPEN

    @property
    def session_id(self) -> Optional[str]:
        return self.current.session_id if self.current else None

    def connect(self, session_id: str) -> ChannelConnection:
        """Start a connection for `session_id`, replacing any previous one."""
        loop = asyncio.get_running_loop()
        if self.current is not None:
            self._teardown(self.current)

        conn = ChannelConnection(session_id=session_id, url=self.url_for(session_id))
        self.current = conn
        json_log("info", "scanner.channel.connecting", session_id=session_id, url=conn.url)
        conn.connection_timeout_handle = loop.call_later(
            self.timings.connection_timeout_ms / 1000.0, self._on_connect_timeout, conn
        )
        conn.run_task = loop.create_task(self._run(conn))
        return conn

    async def close(self) -> None:
        """Operator-initiated close; suppresses the automatic reconnect."""
        conn = self.current
        if conn is not None:
            self._teardown(conn)
        if self._closing:
            await asyncio.gather(*list(self._closing), return_exceptions=True)

    async def send(self, message: dict) -> bool:
        conn = self.current
        if conn is None or conn.state is not ChannelState.OPEN or conn.transport is None:
            json_log("info", "scanner.channel.send_skipped", type=message.get("type"))
            return False
        try:
            await conn.transport.send(json.dumps(message))
            return True
        except Exception as exc:
            json_log("warning", "scanner.channel.send_failed", session_id=conn.session_id, type=message.get("type"), error=str(exc))
            return False

    async def _run(self, conn: ChannelConnection) -> None:
        try:
            transport = await self.connector(conn.url)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._report_error(conn, exc)
            self._handle_closed(conn, ABNORMAL_CLOSE, str(exc))
            return

        if conn.state is not ChannelState.CONNECTING:
            # Torn down or timed out while the handshake was in flight.
            self._close_transport(transport, NORMAL_CLOSE, "superseded")
            return

        conn.transport = transport
        self._on_open(conn)

        code, reason = ABNORMAL_CLOSE, ""
        try:
            while True:
                payload = await transport.recv()
                await self._on_message(conn, payload)
        except ConnectionClosed as exc:
            code, reason = _close_details(exc)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._report_error(conn, exc)
            conn.transport = None
            self._close_transport(transport, INTERNAL_ERROR_CLOSE, "read error")
        self._handle_closed(conn, code, reason)

    def _on_open(self, conn: ChannelConnection) -> None:
        self._cancel_timeout(conn)
        conn.state = ChannelState.OPEN
        conn.ping_task = asyncio.get_running_loop().create_task(self._keep_alive(conn))
        json_log("info", "scanner.channel.open", session_id=conn.session_id)

    async def _keep_alive(self, conn: ChannelConnection) -> None:
        interval = self.timings.keep_alive_interval_ms / 1000.0
        while conn.state is ChannelState.OPEN:
            await asyncio.sleep(interval)
            if conn.state is not ChannelState.OPEN or conn is not self.current:
                return
            await self.send(ping_message())

    async def _on_message(self, conn: ChannelConnection, payload: Any) -> None:
        event = decode_message(payload)
        if event is None or self.on_event is None:
            return
        try:
            await self.on_event(event)
        except Exception as exc:
            json_log("error", "scanner.channel.handler_failed", session_id=conn.session_id, type=getattr(event, "type", None), error=str(exc))

    def _on_connect_timeout(self, conn: ChannelConnection) -> None:
        conn.connection_timeout_handle = None
        if conn.state is not ChannelState.CONNECTING:
            return
        json_log("warning", "scanner.channel.timeout", session_id=conn.session_id, timeout_ms=self.timings.connection_timeout_ms)
        self.notices.error("Could not reach the scanner relay (timeout)", notice_id="ws-timeout")
        if conn.run_task is not None:
            conn.run_task.cancel()
        self._handle_closed(conn, ABNORMAL_CLOSE, "connect timeout")

    def _handle_closed(self, conn: ChannelConnection, code: int, reason: str) -> None:
        if conn.state is ChannelState.CLOSED:
            return
        conn.state = ChannelState.CLOSED
        conn.close_code = code
        self._cancel_timeout(conn)
        self._cancel_ping(conn)
        json_log(
            "info",
            "scanner.channel.closed",
            session_id=conn.session_id,
            code=code,
            reason=reason,
            manual=conn.is_manual_close,
        )
        if conn.is_manual_close or code in NO_RECONNECT_CODES or conn is not self.current:
            return
        delay = self.timings.reconnect_delay_ms / 1000.0
        json_log("info", "scanner.channel.reconnect_scheduled", session_id=conn.session_id, delay_ms=self.timings.reconnect_delay_ms)
        conn.reconnect_timeout_handle = asyncio.get_running_loop().call_later(delay, self._reconnect, conn)

    def _reconnect(self, conn: ChannelConnection) -> None:
        conn.reconnect_timeout_handle = None
        if conn.is_manual_close or conn is not self.current:
            return
        self.connect(conn.session_id)

    def _teardown(self, conn: ChannelConnection) -> None:
        conn.is_manual_close = True
        self._cancel_timeout(conn)
        self._cancel_ping(conn)
        if conn.reconnect_timeout_handle is not None:
            conn.reconnect_timeout_handle.cancel()
            conn.reconnect_timeout_handle = None
        if conn.run_task is not None and not conn.run_task.done():
            conn.run_task.cancel()
        if conn.state is not ChannelState.CLOSED:
            conn.state = ChannelState.CLOSED
            conn.close_code = NORMAL_CLOSE
            json_log("info", "scanner.channel.closed", session_id=conn.session_id, code=NORMAL_CLOSE, reason="manual", manual=True)
        if conn.transport is not None:
            self._close_transport(conn.transport, NORMAL_CLOSE, "closed by operator")
            conn.transport = None

    def _close_transport(self, transport: Any, code: int, reason: str) -> None:
        async def _close():
            try:
                await transport.close(code, reason)
            except Exception as exc:
                json_log("info", "scanner.channel.close_failed", error=str(exc))

        task = asyncio.get_running_loop().create_task(_close())
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    def _report_error(self, conn: ChannelConnection, exc: BaseException) -> None:
        json_log("error", "scanner.channel.error", session_id=conn.session_id, error=str(exc))
        self.notices.error("Scanner relay connection error", notice_id="ws-error")

    @staticmethod
    def _cancel_timeout(conn: ChannelConnection) -> None:
        if conn.connection_timeout_handle is not None:
            conn.connection_timeout_handle.cancel()
            conn.connection_timeout_handle = None

    @staticmethod
    def _cancel_ping(conn: ChannelConnection) -> None:
        task = conn.ping_task
        conn.ping_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
