"""
Stroke planner - decides what one scheduler tick does for a row.

Pure: takes a row snapshot and the geometry, returns the lines to send
and the state change to commit once they are acknowledged.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import List

from ..config import PlotterGeometry
from .gcode import build_return_home, build_stroke_batch
from .types import RowState


def stroke_capacity(x: float, geometry: PlotterGeometry) -> int:
    """
    Number of strokes that still fit in a row starting at x.

    0 once x is past xMax - strokeLength; otherwise
    floor((xMax - strokeLength - x) / strokeSpacing) + 1.
    """
    max_start = geometry.max_stroke_start
    if x > max_start:
        return 0
    return math.floor((max_start - x) / geometry.stroke_spacing) + 1


@dataclass(frozen=True)
class BatchPlan:
    """
    Outcome of planning one row.

    n_do strokes are drawn. end_run means the row filled up with demand
    left over; end_no_fit means not even one stroke fits. Either one ends
    the paper run and appends the return-home lines.
    """
    row_id: str
    n_do: int
    fit: int
    end_run: bool
    end_no_fit: bool
    x_end: float
    lines: List[str] = field(default_factory=list)

    @property
    def ends_paper_run(self) -> bool:
        return self.end_run or self.end_no_fit

    @property
    def is_empty(self) -> bool:
        return not self.lines


def plan_row(row_id: str, row: RowState, geometry: PlotterGeometry) -> BatchPlan:
    """Plan the next batch for a row with pending demand."""
    fit = stroke_capacity(row.x, geometry)
    pending = row.pending_strokes
    n_do = min(pending, fit)
    end_run = pending > fit and fit > 0
    end_no_fit = pending > 0 and fit == 0

    lines: List[str] = []
    x_end = row.x

    if n_do > 0:
        batch = build_stroke_batch(row.x, row.y, n_do, geometry)
        lines.extend(batch.lines)
        x_end = batch.x_end

    if end_run or end_no_fit:
        lines.extend(build_return_home(geometry))

    return BatchPlan(
        row_id=row_id,
        n_do=n_do,
        fit=fit,
        end_run=end_run,
        end_no_fit=end_no_fit,
        x_end=x_end,
        lines=lines,
    )
