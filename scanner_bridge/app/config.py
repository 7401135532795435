import os
from dataclasses import dataclass
from typing import List


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except Exception:
        return default


def _truthy(raw: str) -> bool:
    return str(raw or "").strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class ChannelTimings:
    connection_timeout_ms: int = 8000
    reconnect_delay_ms: int = 5000
    keep_alive_interval_ms: int = 30000
    duplicate_scan_window_ms: int = 2000
    duplicate_notification_window_ms: int = 5000


class Settings:
    def _split_csv(self, raw: str, *, default: List[str]) -> List[str]:
        parts = [p.strip() for p in (raw or "").split(",")]
        return [p for p in parts if p] or default

    def __init__(self) -> None:
        self.env = os.getenv('APP_ENV', 'local')
        self.api_version = os.getenv("APP_VERSION", "0.1.0").strip() or "0.1.0"
        self.cors_origins = self._split_csv(
            os.getenv("CORS_ORIGINS", "").strip(),
            default=["http://localhost:3000", "http://127.0.0.1:3000"],
        )
        # Origin the POS screen is served from. The pairing URL and the relay
        # address are both derived from it.
        self.public_origin = (os.getenv("POS_PUBLIC_ORIGIN") or "").strip() or "http://localhost:8000"
        self.api_base_url = (os.getenv("POS_API_BASE_URL") or "").strip() or "http://localhost:8000/api"
        # Only set this when the relay does not live on the serving origin.
        self.relay_url = (os.getenv("SCANNER_RELAY_URL") or "").strip() or None
        self.scanner_autostart = _truthy(os.getenv("SCANNER_AUTOSTART", "1"))
        self.relay_heartbeat_seconds = _env_int("RELAY_HEARTBEAT_SECONDS", 30)
        self.timings = ChannelTimings(
            connection_timeout_ms=_env_int("SCANNER_CONNECT_TIMEOUT_MS", 8000),
            reconnect_delay_ms=_env_int("SCANNER_RECONNECT_DELAY_MS", 5000),
            keep_alive_interval_ms=_env_int("SCANNER_KEEPALIVE_MS", 30000),
            duplicate_scan_window_ms=_env_int("SCANNER_DUP_SCAN_MS", 2000),
            duplicate_notification_window_ms=_env_int("SCANNER_DUP_NOTICE_MS", 5000),
        )

settings = Settings()
