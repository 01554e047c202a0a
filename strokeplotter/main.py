"""
Stroke Plotter - Main Entry Point

Run with: uvicorn strokeplotter.main:app --port 3000
or:       strokeplotter   (console script; port from config)
"""

import sys

import uvicorn

from strokeplotter.api.app import create_app
from strokeplotter.api.dependencies import get_controller
from strokeplotter.config import ConfigError


# Create app instance
app = create_app()


def run() -> None:
    """Validate config up front, then serve."""
    try:
        controller = get_controller()
    except ConfigError as e:
        print(f"[STARTUP] Invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)

    print("=" * 50)
    print("  Stroke Plotter")
    print("=" * 50)
    print(f"  Rows:    {', '.join(controller.config.rows)}")
    print(f"  Dry run: {controller.config.dry_run}")
    print(f"  Serial:  {controller.config.serial.port or 'not configured'}")
    print(f"  State:   {controller.config.files.state_path}")
    print()

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=controller.config.http.port,
    )


# === Run directly ===

if __name__ == "__main__":
    run()
