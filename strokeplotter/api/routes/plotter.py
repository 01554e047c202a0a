"""
Plotter Routes - connection, raw G-code, position, dry-run
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from strokeplotter.controller import PlotterController
from strokeplotter.core.logger import log_critical
from strokeplotter.core.serial_transport import (
    SerialBusyError,
    SerialError,
    SerialNotConnectedError,
)
from ..dependencies import get_controller, require_connection

router = APIRouter(prefix="/plotter", tags=["plotter"])


class ConnectRequest(BaseModel):
    port: Optional[str] = None
    baud: Optional[int] = Field(default=None, gt=0)


class GCodeRequest(BaseModel):
    lines: List[str] = Field(min_length=1)


class DryRunRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    dry_run: bool = Field(alias="dryRun")


def _serial_http_error(e: SerialError) -> HTTPException:
    """Busy is retryable (409); a closed link is a client error (400)."""
    if isinstance(e, SerialBusyError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, SerialNotConnectedError):
        return HTTPException(status_code=400, detail=str(e))
    return HTTPException(status_code=502, detail=str(e))


@router.post("/connect")
async def connect(req: ConnectRequest, ctrl: PlotterController = Depends(get_controller)):
    """Open the serial link (configured port unless one is given)."""
    try:
        port, baud = await ctrl.connect(req.port, req.baud)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SerialError as e:
        raise _serial_http_error(e)
    return {"ok": True, "port": port, "baud": baud}


@router.post("/disconnect")
async def disconnect(ctrl: PlotterController = Depends(get_controller)):
    """Close the serial link."""
    try:
        await ctrl.disconnect()
    except SerialError as e:
        raise _serial_http_error(e)
    return {"ok": True}


@router.post("/gcode")
async def send_gcode(req: GCodeRequest, ctrl: PlotterController = Depends(get_controller)):
    """Send raw lines; competes with the worker for the serial link."""
    if any(not line.strip() for line in req.lines):
        raise HTTPException(status_code=400, detail="Empty G-code line")
    try:
        sent = await ctrl.send_raw(req.lines)
    except SerialError as e:
        log_critical("G-code send failed", {"error": str(e)})
        raise _serial_http_error(e)
    return {"ok": True, "lines": sent}


@router.post("/position")
async def request_position(ctrl: PlotterController = Depends(require_connection)):
    """Query position (M114) and return the last known report."""
    try:
        await ctrl.request_position()
    except SerialError as e:
        raise _serial_http_error(e)
    return {"ok": True, **ctrl.streamer.position_snapshot().to_dict()}


@router.post("/dry-run")
async def set_dry_run(req: DryRunRequest, ctrl: PlotterController = Depends(get_controller)):
    """Toggle simulated mode."""
    try:
        await ctrl.set_dry_run(req.dry_run)
    except SerialError as e:
        raise _serial_http_error(e)
    return {"ok": True, "dryRun": ctrl.streamer.dry_run}
