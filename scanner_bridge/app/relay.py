"""
Relay between a POS screen and the phone paired with it.

Both sides connect to `/api/ws/{role}/{session_id}`. Scanner barcodes are
forwarded to the POS of the same session, POS commands to the scanner, and
each side is told when its peer comes and goes.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, Optional

from .jsonlog import json_log, utc_now_iso
from .validation import RelayRole

ROLES = ("pos", "scanner")
PEER_ROLE = {"pos": "scanner", "scanner": "pos"}
# What each side is told about its peer.
PEER_STATUS_TYPE = {"pos": "scanner_status", "scanner": "pos_status"}


def _msg(msg_type: str, **fields) -> dict:
    return {"type": msg_type, **fields, "timestamp": utc_now_iso()}


class RelayHub:
    def __init__(self) -> None:
        self.connections: Dict[str, Dict[str, Any]] = {role: {} for role in ROLES}

    def get(self, role: RelayRole, session_id: str):
        return self.connections[role].get(session_id)

    def counts(self) -> dict:
        return {role: len(conns) for role, conns in self.connections.items()}

    async def send(self, ws, message: dict) -> bool:
        if ws is None:
            return False
        try:
            await ws.send_text(json.dumps(message))
            return True
        except Exception as exc:
            json_log("warning", "relay.send_failed", type=message.get("type"), error=str(exc))
            return False

    async def register(self, role: RelayRole, session_id: str, ws) -> None:
        existing = self.connections[role].get(session_id)
        self.connections[role][session_id] = ws
        if existing is not None and existing is not ws:
            json_log("info", "relay.connection_replaced", role=role, session_id=session_id)
            try:
                await existing.close(code=1000, reason="replaced by a new connection for this session")
            except Exception as exc:
                json_log("info", "relay.close_failed", role=role, session_id=session_id, error=str(exc))
        json_log("info", "relay.connected", role=role, session_id=session_id, **self.counts())

        await self.send(ws, _msg("connection", status="connected", sessionId=session_id))
        peer = self.get(PEER_ROLE[role], session_id)
        if peer is not None:
            await self.send(ws, _msg(PEER_STATUS_TYPE[role], status="connected"))
            await self.send(peer, _msg(PEER_STATUS_TYPE[PEER_ROLE[role]], status="connected"))

    async def unregister(self, role: RelayRole, session_id: str, ws, code: Optional[int] = None) -> None:
        if self.connections[role].get(session_id) is not ws:
            # Already replaced by a newer connection; the peer stays paired.
            return
        del self.connections[role][session_id]
        json_log("info", "relay.disconnected", role=role, session_id=session_id, code=code, **self.counts())
        peer = self.get(PEER_ROLE[role], session_id)
        if peer is not None:
            await self.send(peer, _msg(PEER_STATUS_TYPE[PEER_ROLE[role]], status="disconnected", code=code))

    async def handle_message(self, role: RelayRole, session_id: str, ws, raw) -> None:
        try:
            text = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else str(raw)
            data = json.loads(text)
            if not isinstance(data, dict):
                raise ValueError("message is not an object")
        except ValueError as exc:
            json_log("warning", "relay.message_invalid", role=role, session_id=session_id, error=str(exc))
            await self.send(ws, _msg("error", message="Could not process message", details=str(exc)))
            return

        msg_type = data.get("type")
        if msg_type == "barcode" and role == "scanner":
            await self._forward_barcode(session_id, ws, data, text)
        elif msg_type == "command" and role == "pos":
            await self._forward_command(session_id, ws, data, text)
        elif msg_type in {"ping", "heartbeat_response"}:
            await self.send(ws, _msg("heartbeat"))
        elif msg_type == "connection_confirmed":
            json_log("info", "relay.connection_confirmed", role=role, session_id=session_id, device_info=data.get("deviceInfo"))
        else:
            json_log("info", "relay.message_ignored", role=role, session_id=session_id, type=msg_type)

    async def _forward_barcode(self, session_id: str, scanner, data: dict, text: str) -> None:
        pos = self.get("pos", session_id)
        if pos is None:
            json_log("info", "relay.barcode_no_pos", session_id=session_id)
            await self.send(scanner, _msg("error", message="No POS connected to receive the code"))
            return
        try:
            await pos.send_text(text)
        except Exception as exc:
            json_log("warning", "relay.barcode_forward_failed", session_id=session_id, error=str(exc))
            await self.send(scanner, _msg("error", message="Could not deliver the code to the POS", details=str(exc)))
            return
        json_log("info", "relay.barcode_forwarded", session_id=session_id, code=data.get("code"))
        await self.send(scanner, _msg("barcode_received", code=data.get("code")))

    async def _forward_command(self, session_id: str, pos, data: dict, text: str) -> None:
        scanner = self.get("scanner", session_id)
        if scanner is None:
            json_log("info", "relay.command_no_scanner", session_id=session_id, command=data.get("command"))
            await self.send(pos, _msg("error", message="No scanner connected to receive the command"))
            return
        try:
            await scanner.send_text(text)
        except Exception as exc:
            json_log("warning", "relay.command_forward_failed", session_id=session_id, error=str(exc))
            await self.send(pos, _msg("error", message="Could not deliver the command to the scanner", details=str(exc)))

    async def broadcast(self, message: dict) -> None:
        for role in ROLES:
            for ws in list(self.connections[role].values()):
                await self.send(ws, message)

    async def run_heartbeat_forever(self, interval_seconds: float = 30.0) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.broadcast(_msg("heartbeat"))
                json_log("info", "relay.heartbeat", **self.counts())
            except Exception as exc:
                json_log("error", "relay.heartbeat_failed", error=str(exc))

    async def shutdown(self) -> None:
        for role in ROLES:
            for session_id, ws in list(self.connections[role].items()):
                await self.send(ws, _msg("server_shutdown", message="Relay is shutting down"))
                try:
                    await ws.close(code=1000, reason="server shutting down")
                except Exception as exc:
                    json_log("info", "relay.close_failed", role=role, session_id=session_id, error=str(exc))
            self.connections[role].clear()
