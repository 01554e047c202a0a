"""
Status Routes - plotter state and available ports
"""

from fastapi import APIRouter, Depends

from strokeplotter.controller import PlotterController
from strokeplotter.core.transport import list_ports
from ..dependencies import get_controller

router = APIRouter(tags=["status"])


@router.get("/status")
async def get_status(ctrl: PlotterController = Depends(get_controller)):
    """Current state, worker/serial flags and last known position."""
    return await ctrl.get_status()


@router.get("/ports")
def get_ports():
    """List available serial ports."""
    return {"ports": list_ports()}
