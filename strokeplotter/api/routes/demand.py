"""
Demand Routes - gifts, paper changes, gift map reload
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from strokeplotter.controller import PlotterController
from strokeplotter.mapping.gift_map import GiftMapError
from ..dependencies import get_controller

router = APIRouter(tags=["demand"])


class SimulateGiftRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    row_id: str = Field(alias="rowId", min_length=1)
    count: int = Field(gt=0)


class GiftEventRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    gift_id: Optional[int] = Field(default=None, alias="giftId")
    gift_name: Optional[str] = Field(default=None, alias="giftName")
    count: Optional[int] = Field(default=None, gt=0)
    repeat_count: Optional[int] = Field(default=None, alias="repeatCount", ge=0)
    gift_count: Optional[int] = Field(default=None, alias="giftCount", ge=0)
    repeat_end: Optional[bool] = Field(default=None, alias="repeatEnd")


@router.post("/simulate/gift")
async def simulate_gift(req: SimulateGiftRequest, ctrl: PlotterController = Depends(get_controller)):
    """Queue strokes for a row directly (unknown rows are ignored)."""
    applied = await ctrl.apply_gift(req.row_id, req.count, source="simulate")
    return {"ok": True, "applied": applied}


@router.post("/gifts/event")
async def gift_event(req: GiftEventRequest, ctrl: PlotterController = Depends(get_controller)):
    """Queue strokes for a gift resolved through the gift map."""
    if req.gift_id is None and not req.gift_name:
        raise HTTPException(status_code=400, detail="giftId or giftName required")
    row_id = await ctrl.apply_gift_event(
        req.count,
        gift_id=req.gift_id,
        gift_name=req.gift_name,
        source="event",
        repeat_count=req.repeat_count,
        gift_count=req.gift_count,
        repeat_end=req.repeat_end,
    )
    return {"ok": True, "rowId": row_id, "applied": row_id is not None}


@router.post("/paper/changed")
async def paper_changed(ctrl: PlotterController = Depends(get_controller)):
    """New sheet loaded: reset rows to their start offsets and resume."""
    state = await ctrl.paper_changed()
    return {"ok": True, "state": state.to_dict()}


@router.post("/mapping/reload")
def reload_mapping(ctrl: PlotterController = Depends(get_controller)):
    """Reload the gift map from disk."""
    try:
        entries = ctrl.reload_gift_map()
    except GiftMapError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"ok": True, "entries": entries}
