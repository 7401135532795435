import asyncio

from fastapi.testclient import TestClient

from scanner_bridge.app import main
from scanner_bridge.app.catalog import CatalogProduct
from scanner_bridge.app.config import ChannelTimings
from scanner_bridge.app.terminal import PosTerminal


async def _never_connects(url):
    await asyncio.Event().wait()


class _FakeCatalog:
    def __init__(self, results):
        self.results = results

    async def search(self, query):
        return list(self.results)


def _products():
    return [
        CatalogProduct.model_validate({"id": "1", "name": "Agua 1L", "sellingPrice": "12.00", "stock": 10, "sku": "AG1"}),
        CatalogProduct.model_validate({"id": "2", "name": "Agua 2L", "sellingPrice": "20.00", "stock": 4, "sku": "AG2"}),
    ]


def _client(monkeypatch, holder):
    def _build():
        term = PosTerminal(
            origin="http://pos.test:8000",
            catalog=_FakeCatalog(_products()),
            timings=ChannelTimings(connection_timeout_ms=600_000),
            connector=_never_connects,
        )
        holder.append(term)
        return term

    monkeypatch.setattr(main.settings, "scanner_autostart", True)
    monkeypatch.setattr(main, "build_terminal", _build)
    return TestClient(main.app)


def test_pairing_endpoints(monkeypatch):
    holder = []
    with _client(monkeypatch, holder) as client:
        res = client.get("/pos/scanner/pairing")
        assert res.status_code == 200
        body = res.json()
        sid = body["session_id"]
        assert len(sid) == 8
        assert body["pairing_url"] == f"http://pos.test:8000/scanner?session={sid}"
        assert body["relay_url"] == f"ws://pos.test:8000/api/ws/pos/{sid}"
        assert body["channel_state"] == "connecting"
        assert body["connected"] is False
        assert "qrserver" in body["qr_image_url"]
        assert res.headers["X-Request-Id"]

        png = client.get("/pos/scanner/pairing/qr.png")
        assert png.status_code == 200
        assert png.headers["content-type"] == "image/png"
        assert png.content[:4] == b"\x89PNG"

        reset = client.post("/pos/scanner/pairing/reset").json()
        assert reset["session_id"] != sid

    assert holder[0].mounted is False
    assert holder[0].channel.current.is_manual_close is True


def test_manual_selection_after_ambiguous_scan(monkeypatch):
    holder = []
    with _client(monkeypatch, holder) as client:
        term = holder[0]
        client.portal.call(term.scans.on_scan, "AGUA")

        order = client.get("/pos/order").json()
        assert order["lines"] == []
        assert [p["id"] for p in order["pending_matches"]] == ["1", "2"]

        notices = client.get("/pos/scanner/notices").json()["notices"]
        assert any(n["id"] == "scan-ambiguous" for n in notices)

        assert client.post("/pos/order/select", json={"product_id": "9"}).status_code == 404
        picked = client.post("/pos/order/select", json={"product_id": "2"})
        assert picked.status_code == 200
        assert picked.json()["lines"][0]["product_id"] == "2"
        assert picked.json()["lines"][0]["quantity"] == 1

        assert client.delete("/pos/order/lines/3").status_code == 404
        assert client.delete("/pos/order/lines/0").json()["lines"] == []
        assert client.post("/pos/order/select", json={"product_id": ""}).status_code == 422


def test_routes_answer_409_without_terminal(monkeypatch):
    monkeypatch.setattr(main.settings, "scanner_autostart", False)
    with TestClient(main.app) as client:
        assert client.get("/pos/scanner/pairing").status_code == 409
        health = client.get("/health").json()
        assert health["status"] == "ok"
        assert health["channel_state"] is None
        assert health["relay"] == {"pos": 0, "scanner": 0}
