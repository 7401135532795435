from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import TypeAdapter, ValidationError

from ..deps import get_relay_hub
from ..jsonlog import json_log
from ..relay import ROLES, RelayHub
from ..validation import SessionId

router = APIRouter(tags=["relay"])
_session_id = TypeAdapter(SessionId)


@router.get("/api/relay/sessions/{session_id}")
def relay_session(session_id: str, hub: RelayHub = Depends(get_relay_hub)):
    return {
        "session_id": session_id,
        "pos": hub.get("pos", session_id) is not None,
        "scanner": hub.get("scanner", session_id) is not None,
        "connections": hub.counts(),
    }


@router.websocket("/api/ws/{role}/{session_id}")
async def relay_socket(ws: WebSocket, role: str, session_id: str):
    hub: RelayHub = getattr(ws.app.state, "relay_hub", None)
    try:
        session_id = _session_id.validate_python(session_id)
    except ValidationError:
        session_id = None
    if hub is None or role not in ROLES or not session_id:
        json_log("warning", "relay.rejected", role=role, path=ws.url.path)
        await ws.close(code=1008, reason="invalid connection type or session id")
        return

    await ws.accept()
    await hub.register(role, session_id, ws)
    code = None
    try:
        while True:
            message = await ws.receive()
            if message["type"] == "websocket.disconnect":
                code = message.get("code")
                break
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes")
            await hub.handle_message(role, session_id, ws, raw)
    except WebSocketDisconnect as exc:
        code = exc.code
    finally:
        await hub.unregister(role, session_id, ws, code=code)
