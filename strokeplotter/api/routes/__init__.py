"""API Routes - Domain-based routing"""

from .status import router as status_router
from .plotter import router as plotter_router
from .demand import router as demand_router

__all__ = [
    'status_router',
    'plotter_router',
    'demand_router',
]
