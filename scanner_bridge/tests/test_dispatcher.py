import asyncio

import pytest

from scanner_bridge.app.dispatcher import EventDispatcher
from scanner_bridge.app.messages import (
    BarcodeEvent,
    ConnectionEvent,
    ErrorEvent,
    HeartbeatEvent,
    ScannerStatusEvent,
    ServerShutdownEvent,
)
from scanner_bridge.app.notices import NoticeBoard


class _FakeChannel:
    session_id = "Ab12Cd34"

    def __init__(self):
        self.sent = []

    async def send(self, message):
        self.sent.append(message)
        return True


class _Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def _dispatcher(clock=None):
    channel = _FakeChannel()
    scans = []
    notices = NoticeBoard()

    async def _on_scan(code):
        scans.append(code)

    d = EventDispatcher(
        channel=channel,
        on_scan=_on_scan,
        notices=notices,
        clock=clock or _Clock(),
        device_info={"userAgent": "pytest", "platform": "linux", "type": "pos"},
    )
    return d, channel, scans, notices


def test_barcode_goes_to_scan_consumer():
    d, channel, scans, _ = _dispatcher()

    async def scenario():
        await d.dispatch(BarcodeEvent(type="barcode", code="X123"))
        await d.wait_scans()

    asyncio.run(scenario())
    assert scans == ["X123"]
    assert channel.sent == []


def test_heartbeat_gets_immediate_response_without_scan():
    d, channel, scans, notices = _dispatcher()
    asyncio.run(d.dispatch(HeartbeatEvent(type="heartbeat")))

    assert len(channel.sent) == 1
    reply = channel.sent[0]
    assert reply["type"] == "heartbeat_response"
    assert isinstance(reply["timestamp"], str) and "T" in reply["timestamp"]
    assert scans == []
    assert len(notices) == 0


def test_connection_ack_sends_confirmation_once_per_event():
    d, channel, _, notices = _dispatcher()
    asyncio.run(d.dispatch(ConnectionEvent(type="connection", status="connected", sessionId="Ab12Cd34")))

    assert channel.sent[0]["type"] == "connection_confirmed"
    assert channel.sent[0]["sessionId"] == "Ab12Cd34"
    assert channel.sent[0]["deviceInfo"] == {"userAgent": "pytest", "platform": "linux", "type": "pos"}
    assert notices.get("ws-connected") is not None

    asyncio.run(d.dispatch(ConnectionEvent(type="connection", status="connected")))
    assert len([n for n in notices.list() if n.id == "ws-connected"]) == 1


def test_connection_with_other_status_is_ignored():
    d, channel, _, notices = _dispatcher()
    asyncio.run(d.dispatch(ConnectionEvent(type="connection", status="pending")))
    assert channel.sent == []
    assert len(notices) == 0


def test_scanner_status_notices_are_rate_limited_per_polarity():
    clock = _Clock()
    d, _, _, notices = _dispatcher(clock)
    connected = ScannerStatusEvent(type="scanner_status", status="connected")
    disconnected = ScannerStatusEvent(type="scanner_status", status="disconnected")
    pushed = []
    original_push = notices.push

    def _record(kind, message, notice_id=None):
        pushed.append((kind, message))
        return original_push(kind, message, notice_id)

    notices.push = _record

    asyncio.run(d.dispatch(connected))
    assert d.scanner_connected is True
    clock.now = 1000
    asyncio.run(d.dispatch(disconnected))
    assert d.scanner_connected is False
    clock.now = 3000
    asyncio.run(d.dispatch(connected))
    # indicator flips even when the notice is suppressed
    assert d.scanner_connected is True
    clock.now = 5001
    asyncio.run(d.dispatch(connected))

    assert [k for k, _ in pushed] == ["success", "warning", "success"]


def test_relay_error_and_shutdown_become_notices():
    d, channel, _, notices = _dispatcher()
    asyncio.run(d.dispatch(ErrorEvent(type="error", message="No POS connected")))
    asyncio.run(d.dispatch(ServerShutdownEvent(type="server_shutdown")))

    assert notices.get("relay-error").message == "No POS connected"
    assert notices.get("relay-shutdown").kind == "warning"
    assert channel.sent == []


def test_unknown_event_type_raises():
    d, _, _, _ = _dispatcher()
    with pytest.raises(TypeError):
        asyncio.run(d.dispatch(object()))
