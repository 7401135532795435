from fastapi import HTTPException, Request

from .relay import RelayHub
from .terminal import PosTerminal


def get_terminal(request: Request) -> PosTerminal:
    terminal = getattr(request.app.state, "terminal", None)
    if terminal is None or not terminal.mounted:
        raise HTTPException(status_code=409, detail="scanner terminal not running")
    return terminal


def get_relay_hub(request: Request) -> RelayHub:
    hub = getattr(request.app.state, "relay_hub", None)
    if hub is None:
        raise HTTPException(status_code=503, detail="relay not ready")
    return hub
