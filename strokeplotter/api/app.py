"""
FastAPI App Factory - Creates and configures the app
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from strokeplotter import __version__
from strokeplotter.core.logger import log_critical
from .dependencies import get_controller
from .routes import (
    status_router,
    plotter_router,
    demand_router,
)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""

    app = FastAPI(
        title="Stroke Plotter API",
        description="REST API for the demand-driven stroke plotter",
        version=__version__,
    )

    # CORS - must be added first
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Global exception handler so unexpected errors still come back as JSON
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        log_critical("Unhandled API error", {"path": request.url.path, "error": repr(exc)})
        return JSONResponse(
            status_code=500,
            content={"detail": str(exc)},
        )

    @app.on_event("startup")
    async def startup_event():
        await get_controller().start()

    @app.on_event("shutdown")
    async def shutdown_event():
        await get_controller().stop()

    @app.get("/health")
    def health_check():
        return {"ok": True, "version": __version__}

    # Register routers with /api prefix
    app.include_router(status_router, prefix="/api")
    app.include_router(plotter_router, prefix="/api")
    app.include_router(demand_router, prefix="/api")

    return app
