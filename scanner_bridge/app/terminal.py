from __future__ import annotations

import random
from typing import Any, Awaitable, Callable, Optional

from .catalog import CatalogClient
from .channel import ChannelManager, websocket_connector
from .config import ChannelTimings
from .dispatcher import EventDispatcher, default_device_info
from .jsonlog import json_log
from .notices import NoticeBoard
from .order import ActiveOrder
from .pairing import PairingSession, relay_url
from .scan_consumer import ScanConsumer


class PosTerminal:
    """
    One POS screen with its paired phone scanner.

    Use as `async with PosTerminal(...) as term:` so the channel is closed
    (as a manual close) and every timer cleared however the block exits.
    """

    def __init__(
        self,
        *,
        origin: str,
        catalog,
        timings: ChannelTimings = ChannelTimings(),
        relay_override: Optional[str] = None,
        connector: Callable[[str], Awaitable[Any]] = websocket_connector,
        play_cue: Optional[Callable[[], None]] = None,
        device_info: Optional[dict] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.origin = origin
        self.relay_override = relay_override
        self.rng = rng
        self.catalog = catalog
        self.notices = NoticeBoard()
        self.order = ActiveOrder()
        self.session: Optional[PairingSession] = None
        self.mounted = False
        self.channel = ChannelManager(
            url_for=self.relay_url_for,
            notices=self.notices,
            timings=timings,
            connector=connector,
        )
        self.scans = ScanConsumer(
            catalog=catalog,
            order=self.order,
            notices=self.notices,
            timings=timings,
            play_cue=play_cue,
        )
        self.dispatcher = EventDispatcher(
            channel=self.channel,
            on_scan=self.scans.on_scan,
            notices=self.notices,
            timings=timings,
            device_info=device_info or default_device_info(),
        )
        self.channel.on_event = self.dispatcher.dispatch

    def relay_url_for(self, session_id: str) -> str:
        return relay_url(self.origin, session_id, override=self.relay_override)

    async def mount(self) -> PairingSession:
        self.mounted = True
        return self._start_session()

    async def reset(self) -> PairingSession:
        json_log("info", "scanner.session.reset", previous=self.session.session_id if self.session else None)
        return self._start_session()

    async def unmount(self) -> None:
        self.mounted = False
        await self.channel.close()
        await self.dispatcher.cancel_scans()
        if isinstance(self.catalog, CatalogClient):
            await self.catalog.aclose()
        json_log("info", "scanner.terminal.unmounted", session_id=self.session.session_id if self.session else None)

    def _start_session(self) -> PairingSession:
        self.session = PairingSession.create(self.origin, rng=self.rng)
        self.dispatcher.scanner_connected = False
        self.channel.connect(self.session.session_id)
        json_log("info", "scanner.session.created", session_id=self.session.session_id, pairing_url=self.session.pairing_url)
        return self.session

    def snapshot(self) -> dict:
        session = self.session
        return {
            "session_id": session.session_id if session else None,
            "pairing_url": session.pairing_url if session else None,
            "qr_image_url": session.qr_image_url() if session else None,
            "relay_url": self.relay_url_for(session.session_id) if session else None,
            "channel_state": self.channel.state.value,
            "connected": self.channel.connected,
            "scanner_connected": self.dispatcher.scanner_connected,
        }

    async def __aenter__(self) -> "PosTerminal":
        await self.mount()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.unmount()
