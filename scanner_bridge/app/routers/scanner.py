from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from pydantic import BaseModel, Field

from ..deps import get_terminal
from ..pairing import render_qr_png
from ..terminal import PosTerminal

router = APIRouter(prefix="/pos", tags=["pos-scanner"])


class SelectMatchIn(BaseModel):
    product_id: str = Field(min_length=1)


@router.get("/scanner/pairing")
def get_pairing(terminal: PosTerminal = Depends(get_terminal)):
    return terminal.snapshot()


@router.get("/scanner/pairing/qr.png")
def get_pairing_qr(terminal: PosTerminal = Depends(get_terminal)):
    if terminal.session is None:
        raise HTTPException(status_code=409, detail="no pairing session")
    png = render_qr_png(terminal.session.pairing_url)
    return Response(content=png, media_type="image/png", headers={"Cache-Control": "no-store"})


@router.post("/scanner/pairing/reset")
async def reset_pairing(terminal: PosTerminal = Depends(get_terminal)):
    await terminal.reset()
    return terminal.snapshot()


@router.get("/scanner/notices")
def list_notices(terminal: PosTerminal = Depends(get_terminal)):
    return {"notices": [n.as_dict() for n in terminal.notices.list()]}


@router.get("/order")
def get_order(terminal: PosTerminal = Depends(get_terminal)):
    out = terminal.order.as_dict()
    out["pending_matches"] = [p.model_dump() for p in terminal.scans.pending_matches]
    return out


@router.post("/order/select")
def select_match(data: SelectMatchIn, terminal: PosTerminal = Depends(get_terminal)):
    product = terminal.scans.select_match(data.product_id)
    if product is None:
        raise HTTPException(status_code=404, detail="product is not a pending match")
    return terminal.order.as_dict()


@router.delete("/order/lines/{index}")
def remove_order_line(index: int, terminal: PosTerminal = Depends(get_terminal)):
    try:
        terminal.order.remove_line(index)
    except IndexError:
        raise HTTPException(status_code=404, detail="order line not found")
    return terminal.order.as_dict()


@router.delete("/order")
def clear_order(terminal: PosTerminal = Depends(get_terminal)):
    terminal.order.clear()
    terminal.scans.pending_matches = []
    return terminal.order.as_dict()
