import io
import random
import string
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import quote, urlencode, urlparse

import qrcode

SESSION_ID_LENGTH = 8
SESSION_ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits
QR_SERVICE_URL = "https://api.qrserver.com/v1/create-qr-code/"


def new_session_id(rng: Optional[random.Random] = None) -> str:
    # Not a secret: it only pairs one attended screen with one phone.
    r = rng or random
    return "".join(r.choice(SESSION_ALPHABET) for _ in range(SESSION_ID_LENGTH))


def pairing_url(origin: str, session_id: str) -> str:
    base = str(origin or "").rstrip("/")
    return f"{base}/scanner?session={quote(str(session_id or ''), safe='')}"


def qr_image_url(url: str, size: int = 200) -> str:
    return QR_SERVICE_URL + "?" + urlencode({"size": f"{size}x{size}", "data": url})


def render_qr_png(url: str) -> bytes:
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=8,
        border=4,
    )
    qr.add_data(url)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf)
    return buf.getvalue()


def relay_url(origin: str, session_id: str, override: Optional[str] = None) -> str:
    """
    Relay address for the POS side of a session.

    Derived from the serving origin (`https` pages get `wss`). `override`
    replaces the derived base, e.g. "ws://10.0.0.5:3000" or a full
    "wss://relay.example.com/api/ws".
    """
    if override:
        base = override.rstrip("/")
        if not base.endswith("/api/ws"):
            base = base + "/api/ws"
        return f"{base}/pos/{session_id}"
    u = urlparse(str(origin or "").strip())
    scheme = "wss" if u.scheme == "https" else "ws"
    netloc = u.netloc or "localhost"
    return f"{scheme}://{netloc}/api/ws/pos/{session_id}"


@dataclass(frozen=True)
class PairingSession:
    session_id: str
    pairing_url: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def create(cls, origin: str, rng: Optional[random.Random] = None) -> "PairingSession":
        sid = new_session_id(rng)
        return cls(session_id=sid, pairing_url=pairing_url(origin, sid))

    def qr_image_url(self, size: int = 200) -> str:
        return qr_image_url(self.pairing_url, size=size)
