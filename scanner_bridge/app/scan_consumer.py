from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from .catalog import CatalogError, CatalogProduct
from .config import ChannelTimings
from .jsonlog import json_log
from .notices import NoticeBoard
from .order import ActiveOrder


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass(frozen=True)
class ScanRecord:
    code: str
    received_at: float


class ScanConsumer:
    """
    Turns codes from the paired phone into order lines.

    `catalog` needs an async `search(query) -> list[CatalogProduct]`.
    `play_cue` is an optional zero-arg callable for the audible beep.
    """

    def __init__(
        self,
        *,
        catalog,
        order: ActiveOrder,
        notices: NoticeBoard,
        timings: ChannelTimings = ChannelTimings(),
        play_cue: Optional[Callable[[], None]] = None,
        clock: Callable[[], float] = monotonic_ms,
    ) -> None:
        self.catalog = catalog
        self.order = order
        self.notices = notices
        self.timings = timings
        self.play_cue = play_cue
        self.clock = clock
        self.last_scan: Optional[ScanRecord] = None
        self.pending_matches: List[CatalogProduct] = []

    def _is_duplicate(self, code: str, now: float) -> bool:
        last = self.last_scan
        if last is None or last.code != code:
            return False
        return (now - last.received_at) < self.timings.duplicate_scan_window_ms

    def _cue(self) -> None:
        if self.play_cue is None:
            return
        try:
            self.play_cue()
        except Exception as exc:
            json_log("info", "scanner.scan.cue_failed", error=str(exc))

    async def on_scan(self, code: str) -> None:
        code = (code or "").strip()
        if not code:
            json_log("info", "scanner.scan.empty")
            return

        now = self.clock()
        if self._is_duplicate(code, now):
            json_log("info", "scanner.scan.duplicate", code=code)
            return

        self.last_scan = ScanRecord(code=code, received_at=now)
        self.notices.success(f"Code received: {code}", notice_id="scan-received")
        self._cue()

        try:
            matches = await self.catalog.search(code)
        except CatalogError as exc:
            json_log("warning", "scanner.scan.lookup_failed", code=code, error=str(exc))
            self.notices.error("Error searching products", notice_id="scan-search-error")
            return
        except Exception as exc:
            json_log("error", "scanner.scan.lookup_error", code=code, error=str(exc))
            self.notices.error("Error searching products", notice_id="scan-search-error")
            return

        self._apply_matches(code, matches)

    def _apply_matches(self, code: str, matches: List[CatalogProduct]) -> None:
        if not matches:
            self.pending_matches = []
            json_log("info", "scanner.scan.not_found", code=code)
            self.notices.error(f"No product found for code {code}", notice_id="scan-not-found")
            return

        if len(matches) == 1:
            self.pending_matches = []
            product = matches[0]
            line = self.order.add_product(product)
            json_log("info", "scanner.scan.added", code=code, product_id=product.id, quantity=line.quantity)
            self.notices.success(f"Added: {product.name}", notice_id="scan-added")
            return

        self.pending_matches = list(matches)
        json_log("info", "scanner.scan.ambiguous", code=code, matches=len(matches))
        self.notices.info(
            f"{len(matches)} products match code {code}, select one",
            notice_id="scan-ambiguous",
        )

    def select_match(self, product_id: str) -> Optional[CatalogProduct]:
        for product in self.pending_matches:
            if str(product.id) == str(product_id):
                self.order.add_product(product)
                self.pending_matches = []
                self.notices.success(f"Added: {product.name}", notice_id="scan-added")
                return product
        return None
