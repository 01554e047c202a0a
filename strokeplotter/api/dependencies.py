"""
API Dependencies - Dependency injection for FastAPI
"""

from typing import Optional

from fastapi import HTTPException

from strokeplotter.config import load_config
from strokeplotter.controller import PlotterController
from strokeplotter.core.logger import set_log_level


# Global instance
_controller: Optional[PlotterController] = None


def get_controller() -> PlotterController:
    """Get the global controller, building it from config on first use."""
    global _controller
    if _controller is None:
        config = load_config()
        set_log_level(config.logging.level)
        _controller = PlotterController(config)
    return _controller


def set_controller(controller: Optional[PlotterController]) -> None:
    """Install (or clear) the global controller."""
    global _controller
    _controller = controller


def require_connection() -> PlotterController:
    """Get controller, raising error if neither connected nor in dry-run."""
    ctrl = get_controller()
    if not ctrl.streamer.is_connected and not ctrl.streamer.dry_run:
        raise HTTPException(status_code=400, detail="Not connected to plotter")
    return ctrl
