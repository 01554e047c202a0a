"""
Plotter Controller - Main facade for the system.

Wires the State Store, Serial Streamer and Worker together and exposes
the operations the outside world uses: queue demand, paper changed,
status, raw G-code, connection and dry-run control.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from strokeplotter.config import AppConfig
from strokeplotter.core.logger import log_gift, log_ok, log_warn, log_critical, log_info
from strokeplotter.core.serial_transport import SerialStreamer, SerialError
from strokeplotter.core.state_store import StateStore, create_default_state
from strokeplotter.core.types import MachinePosition, PlotterState
from strokeplotter.mapping.gift_map import GiftMap, GiftMapError, resolve_gift_count
from strokeplotter.workflows.plotter_worker import PlotterWorker


class PlotterController:
    """
    Main controller for the stroke plotter.

    All state mutation goes through the StateStore; all device I/O goes
    through the SerialStreamer. Every operation that adds demand or clears
    the paper flag kicks the worker afterwards.
    """

    def __init__(
        self,
        config: AppConfig,
        store: Optional[StateStore] = None,
        streamer: Optional[SerialStreamer] = None,
        gift_map: Optional[GiftMap] = None,
    ):
        self.config = config
        self.store = store or StateStore(Path(config.files.state_path), config)
        self.streamer = streamer or SerialStreamer(dry_run=config.dry_run)
        self.gift_map = gift_map or GiftMap(Path(config.files.gift_map_path))
        self.worker = PlotterWorker(
            store=self.store,
            geometry=config.plotter,
            row_order=list(config.rows),
            streamer=self.streamer,
            tick_interval=config.worker.tick_ms / 1000.0,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self, run_worker: bool = True) -> None:
        """Load state and gift map, start the worker, connect if a port is set."""
        await self.store.load_or_create(create_default_state(self.config))

        try:
            self.gift_map.load()
        except GiftMapError as e:
            log_warn("Gift map unavailable; gift events will be ignored", {"error": str(e)})

        if run_worker:
            self.worker.start()

        port = self.config.serial.port
        if port and not self.streamer.dry_run:
            try:
                await self.streamer.connect(port, self.config.serial.baud_rate)
            except SerialError as e:
                log_critical("Startup connect failed; worker will wait", {"error": str(e)})

        log_ok("Plotter controller started", {
            "rows": list(self.config.rows),
            "dry_run": self.streamer.dry_run,
        })

    async def stop(self) -> None:
        """Stop the worker and close the link."""
        await self.worker.stop()
        try:
            await self.streamer.disconnect()
        except SerialError as e:
            log_warn("Error during disconnect", {"error": str(e)})
        log_info("Plotter controller stopped")

    # =========================================================================
    # Demand
    # =========================================================================

    async def apply_gift(self, row_id: str, count: int, source: str = "simulate") -> bool:
        """
        Add count strokes to a row and kick the worker.

        Unknown rows and non-positive counts are logged no-ops.
        Returns True when demand was added.
        """
        if isinstance(count, bool) or not isinstance(count, int) or count <= 0:
            log_warn("Invalid gift count; ignored", {"row": row_id, "count": count})
            return False

        applied = False

        def add_demand(state: PlotterState) -> None:
            nonlocal applied
            row = state.rows.get(row_id)
            if row is None:
                log_warn("Unknown row id; gift ignored", {"row": row_id})
                return
            row.pending_strokes += count
            applied = True

        await self.store.update(add_demand)

        if applied:
            log_gift("Gift queued", {"row": row_id, "count": count, "source": source})
        self.worker.kick()
        return applied

    async def apply_gift_event(
        self,
        count: Optional[int] = None,
        gift_id: Optional[int] = None,
        gift_name: Optional[str] = None,
        source: str = "event",
        repeat_count: Optional[int] = None,
        gift_count: Optional[int] = None,
        repeat_end: Optional[bool] = None,
    ) -> Optional[str]:
        """
        Resolve a gift through the gift map and queue it. Returns the row id.

        Without an explicit count, the count comes from the event's
        repeat/gift counters (see resolve_gift_count).
        """
        row_id = self.gift_map.resolve_row_id(gift_id=gift_id, gift_name=gift_name)
        if row_id is None:
            log_warn("Unmapped gift; ignored", {"gift_id": gift_id, "gift_name": gift_name})
            return None
        if count is None:
            count = resolve_gift_count(repeat_count, gift_count, repeat_end)
        applied = await self.apply_gift(row_id, count, source=source)
        return row_id if applied else None

    async def paper_changed(self) -> PlotterState:
        """Reset every row to its start offset, clear the paper flag, kick."""
        config = self.config

        def reset_rows(state: PlotterState) -> None:
            for row_id, row_config in config.rows.items():
                row = state.rows.get(row_id)
                if row is None:
                    continue
                row.x = config.row_start_x(row_id)
                row.y = row_config.y
            state.paper_run.needs_new_paper = False

        state = await self.store.update(reset_rows)
        log_ok("Paper changed; rows reset")
        self.worker.kick()
        return state

    def reload_gift_map(self) -> int:
        return self.gift_map.load()

    # =========================================================================
    # Device
    # =========================================================================

    async def connect(self, port: Optional[str] = None,
                      baud_rate: Optional[int] = None) -> Tuple[str, int]:
        """Connect using the given or configured port. Kicks the worker."""
        port = port or self.config.serial.port
        baud_rate = baud_rate or self.config.serial.baud_rate
        if not port:
            raise ValueError("Missing serial port")
        await self.streamer.connect(port, baud_rate)
        self.worker.kick()
        return port, baud_rate

    async def disconnect(self) -> None:
        await self.streamer.disconnect()

    async def send_raw(self, lines: List[str]) -> int:
        """Pass lines straight to the streamer (contends with the worker)."""
        await self.streamer.send_lines(lines)
        return len(lines)

    async def request_position(self) -> Optional[MachinePosition]:
        return await self.streamer.request_position()

    async def set_dry_run(self, value: bool) -> None:
        await self.streamer.set_dry_run(value)
        self.config.dry_run = value

    # =========================================================================
    # Status
    # =========================================================================

    async def get_status(self) -> Dict[str, Any]:
        """Get current status for API."""
        state = await self.store.get_state()
        return {
            "state": state.to_dict(),
            "worker_paused": self.worker.is_paused,
            "serial_connected": self.streamer.is_connected,
            "dry_run": self.streamer.dry_run,
            **self.streamer.position_snapshot().to_dict(),
        }
