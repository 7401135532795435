from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BeforeValidator, StringConstraints


def _to_stripped_str(v):
    if v is None:
        return v
    return str(v).strip()


def _to_lower_str(v):
    if v is None:
        return v
    return str(v).strip().lower()


# The relay only routes alphanumeric session ids (`/api/ws/{role}/[a-zA-Z0-9]+`).
SessionId = Annotated[
    str,
    BeforeValidator(_to_stripped_str),
    StringConstraints(min_length=1, max_length=64, pattern=r"^[A-Za-z0-9]+$"),
]

ScannerStatus = Annotated[Literal["connected", "disconnected"], BeforeValidator(_to_lower_str)]
NoticeKind = Annotated[Literal["success", "error", "info", "warning"], BeforeValidator(_to_lower_str)]
RelayRole = Literal["pos", "scanner"]
