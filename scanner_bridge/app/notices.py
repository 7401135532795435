from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from .jsonlog import json_log
from .validation import NoticeKind

_LOG_LEVELS = {"success": "info", "info": "info", "warning": "warning", "error": "error"}
_KINDS = {"success", "error", "info", "warning"}


@dataclass
class Notice:
    id: str
    kind: NoticeKind
    message: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> dict:
        return {"id": self.id, "kind": self.kind, "message": self.message, "created_at": self.created_at.isoformat()}


class NoticeBoard:
    """
    Operator-facing notices, keyed by a stable id per category so a repeated
    notice replaces the previous one instead of stacking.
    """

    def __init__(self, limit: int = 50) -> None:
        self._notices: Dict[str, Notice] = {}
        self._limit = limit

    def push(self, kind: str, message: str, notice_id: Optional[str] = None) -> Notice:
        kind = str(kind or "").strip().lower()
        if kind not in _KINDS:
            raise ValueError(f"unknown notice kind: {kind}")
        nid = notice_id or uuid.uuid4().hex
        # Re-insert so a replaced notice moves to the end.
        self._notices.pop(nid, None)
        notice = Notice(id=nid, kind=kind, message=message)
        self._notices[nid] = notice
        while len(self._notices) > self._limit:
            self._notices.pop(next(iter(self._notices)))
        json_log(_LOG_LEVELS[kind], "scanner.notice", notice_id=nid, kind=kind, message=message)
        return notice

    def success(self, message: str, notice_id: Optional[str] = None) -> Notice:
        return self.push("success", message, notice_id)

    def error(self, message: str, notice_id: Optional[str] = None) -> Notice:
        return self.push("error", message, notice_id)

    def info(self, message: str, notice_id: Optional[str] = None) -> Notice:
        return self.push("info", message, notice_id)

    def warning(self, message: str, notice_id: Optional[str] = None) -> Notice:
        return self.push("warning", message, notice_id)

    def get(self, notice_id: str) -> Optional[Notice]:
        return self._notices.get(notice_id)

    def list(self) -> List[Notice]:
        return list(self._notices.values())

    def clear(self) -> None:
        self._notices.clear()

    def __len__(self) -> int:
        return len(self._notices)
