from __future__ import annotations

import asyncio
import platform
import time
from typing import Awaitable, Callable, Dict, Optional, Set

from .config import ChannelTimings
from .jsonlog import json_log
from .messages import (
    INBOUND_EVENT_TYPES,
    BarcodeEvent,
    ConnectionEvent,
    ErrorEvent,
    HeartbeatEvent,
    ScannerStatusEvent,
    ServerShutdownEvent,
    connection_confirmed_message,
    heartbeat_response_message,
)
from .notices import NoticeBoard


def default_device_info(version: str = "0.1.0") -> dict:
    return {
        "userAgent": f"scanner-bridge/{version} python/{platform.python_version()}",
        "platform": platform.platform(),
        "type": "pos",
    }


class EventDispatcher:
    """
    Routes decoded relay events to their side effect.

    `channel` needs `async send(message) -> bool` and a `session_id`;
    `on_scan` is the scan consumer entry point.
    """

    def __init__(
        self,
        *,
        channel,
        on_scan: Callable[[str], Awaitable[None]],
        notices: NoticeBoard,
        timings: ChannelTimings = ChannelTimings(),
        device_info: Optional[dict] = None,
        clock: Callable[[], float] = lambda: time.monotonic() * 1000.0,
    ) -> None:
        self.channel = channel
        self.on_scan = on_scan
        self.notices = notices
        self.timings = timings
        self.device_info = device_info or default_device_info()
        self.clock = clock
        self.scanner_connected = False
        self._last_status_notice: Dict[str, float] = {}
        self._scan_tasks: Set[asyncio.Task] = set()
        self._handlers = {
            BarcodeEvent: self._on_barcode,
            ScannerStatusEvent: self._on_scanner_status,
            ConnectionEvent: self._on_connection,
            HeartbeatEvent: self._on_heartbeat,
            ErrorEvent: self._on_error,
            ServerShutdownEvent: self._on_server_shutdown,
        }
        missing = [t.__name__ for t in INBOUND_EVENT_TYPES if t not in self._handlers]
        if missing:
            raise RuntimeError(f"no dispatcher handler for: {', '.join(missing)}")

    async def dispatch(self, event) -> None:
        handler = self._handlers.get(type(event))
        if handler is None:
            raise TypeError(f"unsupported event: {type(event).__name__}")
        await handler(event)

    @property
    def pending_scans(self) -> int:
        return len(self._scan_tasks)

    async def wait_scans(self) -> None:
        if self._scan_tasks:
            await asyncio.gather(*list(self._scan_tasks), return_exceptions=True)

    async def cancel_scans(self) -> None:
        for task in list(self._scan_tasks):
            task.cancel()
        await self.wait_scans()

    async def _on_barcode(self, event: BarcodeEvent) -> None:
        # Catalog lookups run beside the reader so heartbeats and status
        # events are handled while a search is in flight.
        task = asyncio.get_running_loop().create_task(self._scan(event.code))
        self._scan_tasks.add(task)
        task.add_done_callback(self._scan_tasks.discard)

    async def _scan(self, code: str) -> None:
        try:
            await self.on_scan(code)
        except Exception as exc:
            json_log("error", "scanner.scan.failed", code=code, error=str(exc))

    async def _on_scanner_status(self, event: ScannerStatusEvent) -> None:
        polarity = event.status
        self.scanner_connected = polarity == "connected"
        json_log("info", "scanner.status", status=polarity, session_id=self.channel.session_id)

        now = self.clock()
        last = self._last_status_notice.get(polarity)
        if last is not None and (now - last) <= self.timings.duplicate_notification_window_ms:
            return
        self._last_status_notice[polarity] = now
        if self.scanner_connected:
            self.notices.success("Mobile scanner connected", notice_id="scanner-status")
        else:
            self.notices.warning("Mobile scanner disconnected", notice_id="scanner-status")

    async def _on_connection(self, event: ConnectionEvent) -> None:
        if event.status != "connected":
            json_log("info", "scanner.connection.ignored", status=event.status)
            return
        session_id = self.channel.session_id or event.session_id
        self.notices.info("Connected to scanner relay", notice_id="ws-connected")
        await self.channel.send(connection_confirmed_message(session_id, self.device_info))

    async def _on_heartbeat(self, event: HeartbeatEvent) -> None:
        await self.channel.send(heartbeat_response_message())

    async def _on_error(self, event: ErrorEvent) -> None:
        json_log("warning", "scanner.relay.error", message=event.message, details=event.details)
        self.notices.error(event.message or "Scanner relay error", notice_id="relay-error")

    async def _on_server_shutdown(self, event: ServerShutdownEvent) -> None:
        json_log("warning", "scanner.relay.shutdown", message=event.message)
        self.notices.warning("Scanner relay is shutting down", notice_id="relay-shutdown")
