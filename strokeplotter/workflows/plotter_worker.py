"""
Plotter Worker - turns pending demand into stroke batches on a timer

One tick at a time: a tick already in progress absorbs kicks, and the
next timer tick still sees any new demand. Rows are served strictly in
configured order.
"""

from __future__ import annotations

import asyncio
import contextlib
from enum import Enum, auto
from typing import List, Optional, Set

from strokeplotter.config import PlotterGeometry
from strokeplotter.core.planner import BatchPlan, plan_row
from strokeplotter.core.state_store import StateStore, StateWriteError
from strokeplotter.core.serial_transport import SerialStreamer, SerialError, SerialBusyError
from strokeplotter.core.logger import log_worker, log_warn, log_critical, log_debug
from strokeplotter.core.types import PlotterState


class WorkerState(Enum):
    """Observable worker state"""
    RUNNING = auto()
    PAUSED = auto()


class TickOutcome(Enum):
    """What a single tick did"""
    SKIPPED = auto()   # Another tick was already in progress
    PAUSED = auto()    # Waiting for new paper
    OFFLINE = auto()   # Not connected and not in dry-run
    IDLE = auto()      # No demand, or nothing to send
    SENT = auto()      # Batch acknowledged and committed
    FAILED = auto()    # Send failed; state untouched


class PlotterWorker:
    """Scheduler: picks a row, plans a batch, streams it, commits the result"""

    def __init__(
        self,
        store: StateStore,
        geometry: PlotterGeometry,
        row_order: List[str],
        streamer: SerialStreamer,
        tick_interval: float = 1.0,
    ):
        self._store = store
        self._geometry = geometry
        self._row_order = list(row_order)
        self._streamer = streamer
        self.tick_interval = tick_interval

        self._state = WorkerState.RUNNING
        self._processing = False
        self._timer: Optional[asyncio.Task] = None
        self._kicks: Set[asyncio.Task] = set()

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def is_paused(self) -> bool:
        return self._state is WorkerState.PAUSED

    @property
    def is_processing(self) -> bool:
        return self._processing

    @property
    def is_started(self) -> bool:
        return self._timer is not None and not self._timer.done()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Start the timer loop (ticks immediately, then every tick_interval)."""
        if self.is_started:
            return
        self._timer = asyncio.get_running_loop().create_task(self._run())
        log_worker("Worker started", {"tick_interval": self.tick_interval})

    async def stop(self) -> None:
        """Stop the timer loop and any kicked ticks."""
        tasks = list(self._kicks)
        if self._timer is not None:
            tasks.append(self._timer)
            self._timer = None
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        log_worker("Worker stopped")

    def kick(self) -> None:
        """Tick as soon as possible. Dropped if a tick is running."""
        if self._processing:
            log_debug("Kick dropped; tick in progress")
            return
        task = asyncio.get_running_loop().create_task(self.tick())
        self._kicks.add(task)
        task.add_done_callback(self._kicks.discard)

    async def wait_for_kicks(self) -> None:
        """Wait until every kicked tick has finished."""
        while self._kicks:
            await asyncio.gather(*list(self._kicks), return_exceptions=True)

    async def _run(self) -> None:
        while True:
            await self.tick()
            await asyncio.sleep(self.tick_interval)

    # =========================================================================
    # Tick
    # =========================================================================

    async def tick(self) -> TickOutcome:
        """Run one scheduling step. Never raises except on cancellation."""
        if self._processing:
            return TickOutcome.SKIPPED
        self._processing = True

        try:
            return await self._tick()
        except Exception as e:
            log_critical("Worker tick failed", {"error": repr(e)})
            return TickOutcome.FAILED
        finally:
            self._processing = False

    async def _tick(self) -> TickOutcome:
        state = await self._store.get_state()
        if state.paper_run.needs_new_paper:
            self._state = WorkerState.PAUSED
            return TickOutcome.PAUSED

        self._state = WorkerState.RUNNING

        if not self._streamer.is_connected and not self._streamer.dry_run:
            log_debug("Plotter not connected; skipping")
            return TickOutcome.OFFLINE

        row_id = self.find_next_row_id(state)
        if row_id is None:
            return TickOutcome.IDLE

        plan = plan_row(row_id, state.rows[row_id], self._geometry)
        if plan.is_empty:
            return TickOutcome.IDLE

        log_worker("Sending batch", {
            "row": row_id,
            "strokes": plan.n_do,
            "fit": plan.fit,
            "lines": len(plan.lines),
            "end_run": plan.end_run,
            "end_no_fit": plan.end_no_fit,
        })

        try:
            await self._streamer.send_lines(plan.lines)
        except SerialBusyError:
            log_warn("Serial busy; retrying next tick", {"row": row_id})
            return TickOutcome.FAILED
        except SerialError as e:
            log_critical("Batch send failed; state unchanged", {"row": row_id, "error": str(e)})
            return TickOutcome.FAILED

        try:
            await self._store.update(lambda draft: self._commit(draft, plan))
        except StateWriteError as e:
            # Memory already reflects the drawn strokes; only durability lags
            log_critical("Batch drawn but state not persisted", {"row": row_id, "error": str(e)})

        if plan.ends_paper_run:
            self._state = WorkerState.PAUSED
            log_worker("Paper run ended; waiting for new paper", {"row": row_id})

        return TickOutcome.SENT

    def find_next_row_id(self, state: PlotterState) -> Optional[str]:
        """First row, in configured order, with pending demand."""
        for row_id in self._row_order:
            row = state.rows.get(row_id)
            if row is not None and row.pending_strokes > 0:
                return row_id
        return None

    @staticmethod
    def _commit(draft: PlotterState, plan: BatchPlan) -> PlotterState:
        row = draft.rows.get(plan.row_id)
        if row is None:
            return draft

        if plan.n_do > 0:
            row.x = plan.x_end
            row.pending_strokes = max(0, row.pending_strokes - plan.n_do)

        if plan.ends_paper_run:
            draft.paper_run.needs_new_paper = True

        return draft
