from __future__ import annotations

from typing import Annotated, Literal, Optional, Union, get_args

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from .jsonlog import utc_now_iso
from .validation import ScannerStatus


class _Inbound(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    timestamp: Optional[str] = None


class BarcodeEvent(_Inbound):
    type: Literal["barcode"]
    code: str


class ScannerStatusEvent(_Inbound):
    type: Literal["scanner_status"]
    status: ScannerStatus


class ConnectionEvent(_Inbound):
    type: Literal["connection"]
    status: str
    session_id: Optional[str] = Field(default=None, alias="sessionId")


class HeartbeatEvent(_Inbound):
    type: Literal["heartbeat"]


class ErrorEvent(_Inbound):
    type: Literal["error"]
    message: str = ""
    details: Optional[str] = None


class ServerShutdownEvent(_Inbound):
    type: Literal["server_shutdown"]
    message: Optional[str] = None


InboundEvent = Annotated[
    Union[
        BarcodeEvent,
        ScannerStatusEvent,
        ConnectionEvent,
        HeartbeatEvent,
        ErrorEvent,
        ServerShutdownEvent,
    ],
    Field(discriminator="type"),
]

INBOUND_EVENT_TYPES = (
    BarcodeEvent,
    ScannerStatusEvent,
    ConnectionEvent,
    HeartbeatEvent,
    ErrorEvent,
    ServerShutdownEvent,
)
KNOWN_INBOUND_TYPES = frozenset(
    get_args(m.model_fields["type"].annotation)[0] for m in INBOUND_EVENT_TYPES
)

inbound_event_adapter = TypeAdapter(InboundEvent)


def ping_message() -> dict:
    return {"type": "ping", "timestamp": utc_now_iso()}


def heartbeat_response_message() -> dict:
    return {"type": "heartbeat_response", "timestamp": utc_now_iso()}


def connection_confirmed_message(session_id: str, device_info: dict) -> dict:
    return {
        "type": "connection_confirmed",
        "sessionId": session_id,
        "deviceInfo": dict(device_info),
        "timestamp": utc_now_iso(),
    }
