"""
State Store - Single responsibility: own and persist PlotterState

All operations run one at a time, in arrival order, behind an
asyncio.Lock. Every mutation is written to disk with a temp-file +
rename so a crash mid-write leaves the previous document intact.
"""

from __future__ import annotations

import asyncio
import json
import os
import time
from pathlib import Path
from typing import Callable, Optional

from ..config import AppConfig
from .logger import log_state, log_warn, log_critical
from .types import PaperRunState, PlotterState, RowState


Mutator = Callable[[PlotterState], Optional[PlotterState]]


def _reject_constant(name: str) -> None:
    raise ValueError(f"Non-finite number {name} in state document")


class StateNotLoadedError(RuntimeError):
    """Raised when state is read or updated before load_or_create"""
    pass


class StateWriteError(OSError):
    """
    Raised when the durable document could not be written.

    The in-memory state has already been updated when this is raised.
    """
    pass


def create_default_state(config: AppConfig) -> PlotterState:
    """Fresh state: every configured row at its start offset, no demand."""
    rows = {
        row_id: RowState(x=config.row_start_x(row_id), y=row.y, pending_strokes=0)
        for row_id, row in config.rows.items()
    }
    return PlotterState(rows=rows, paper_run=PaperRunState(needs_new_paper=False))


def merge_state_with_config(state: PlotterState, config: AppConfig) -> PlotterState:
    """
    Reconcile a loaded document with the current row configuration.

    Known rows keep x and pending strokes but take y from config. New rows
    start at their default offset. Rows no longer configured are dropped.
    """
    dropped = [row_id for row_id in state.rows if row_id not in config.rows]
    if dropped:
        log_warn("Dropping rows missing from config", {"rows": dropped})

    rows = {}
    for row_id, row_config in config.rows.items():
        existing = state.rows.get(row_id)
        rows[row_id] = RowState(
            x=existing.x if existing else config.row_start_x(row_id),
            y=row_config.y,
            pending_strokes=existing.pending_strokes if existing else 0,
        )
    return PlotterState(rows=rows, paper_run=PaperRunState(state.paper_run.needs_new_paper))


def atomic_write(file_path: Path, data: str) -> None:
    """
    Write data to a temp file beside file_path, then rename over it.

    The rename is the only step a concurrent reader can observe.
    """
    file_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = file_path.parent / f".{file_path.name}.{time.time_ns()}.tmp"
    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, file_path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


class StateStore:
    """Serialized, durable store for PlotterState (JSON file)"""

    def __init__(self, file_path: Path, config: AppConfig):
        self.file_path = Path(file_path)
        self._config = config
        self._state: Optional[PlotterState] = None
        self._lock = asyncio.Lock()  # FIFO: waiters are woken in arrival order

    @property
    def is_loaded(self) -> bool:
        return self._state is not None

    async def load_or_create(self, default_state: PlotterState) -> PlotterState:
        """
        Load the durable document, falling back to default_state.

        Any read, parse or schema failure is logged and recovered by
        adopting (and persisting) default_state.
        """
        async with self._lock:
            try:
                raw = await asyncio.to_thread(self.file_path.read_text, encoding="utf-8")
                loaded = PlotterState.from_dict(json.loads(raw, parse_constant=_reject_constant))
            except (OSError, ValueError) as e:
                # json.JSONDecodeError is a ValueError
                log_warn("State missing or invalid, creating default",
                         {"path": str(self.file_path), "error": str(e)})
                self._state = default_state.copy()
                await self._persist(self._state)
                return self._state.copy()

            self._state = merge_state_with_config(loaded, self._config)
            log_state("State loaded", {"path": str(self.file_path), "rows": len(self._state.rows)})
            return self._state.copy()

    async def get_state(self) -> PlotterState:
        """Independent copy of the current state."""
        async with self._lock:
            return self._require_state().copy()

    async def update(self, mutator: Mutator) -> PlotterState:
        """
        Apply mutator, persist, and return a copy of the new state.

        The mutator gets a private copy; it may edit it in place and return
        None, or return a replacement. If it raises, nothing changes.

        Raises:
            StateWriteError: persisting failed (memory already updated)
        """
        async with self._lock:
            draft = self._require_state().copy()
            result = mutator(draft)
            next_state = draft if result is None else result
            self._state = next_state
            await self._persist(next_state)
            return next_state.copy()

    def _require_state(self) -> PlotterState:
        if self._state is None:
            raise StateNotLoadedError("State not initialized; call load_or_create first")
        return self._state

    async def _persist(self, state: PlotterState) -> None:
        data = json.dumps(state.to_dict(), indent=2, allow_nan=False)
        try:
            await asyncio.to_thread(atomic_write, self.file_path, data)
        except OSError as e:
            log_critical("State write failed", {"path": str(self.file_path), "error": str(e)})
            raise StateWriteError(f"Failed to write state to {self.file_path}: {e}") from e
