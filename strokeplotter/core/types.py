"""
Core data types for the stroke plotter.

PlotterState and its parts are plain mutable dataclasses: the State Store
hands out deep copies and mutators edit those copies. MachinePosition is
frozen since it is a device observation.
"""

from __future__ import annotations

import copy
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


# =============================================================================
# Durable State
# =============================================================================


def _require_number(value: Any, name: str) -> float:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{name} must be a number, got {value!r}")
    try:
        number = float(value)
    except OverflowError:
        number = math.inf
    if not math.isfinite(number):
        raise ValueError(f"{name} must be finite, got {value!r}")
    return number


@dataclass
class RowState:
    """
    Progress of one row.

    x is where the next stroke starts, y is fixed by configuration,
    pending_strokes is demand not yet drawn (never negative).
    """
    x: float
    y: float
    pending_strokes: int = 0

    def to_dict(self) -> dict:
        """Serialize to document form."""
        return {"x": self.x, "y": self.y, "pendingStrokes": self.pending_strokes}

    @classmethod
    def from_dict(cls, d: dict) -> RowState:
        """Deserialize from document form, validating every field."""
        if not isinstance(d, dict):
            raise ValueError(f"row must be an object, got {d!r}")
        pending = d.get("pendingStrokes")
        if isinstance(pending, bool) or not isinstance(pending, int) or pending < 0:
            raise ValueError(f"pendingStrokes must be a non-negative integer, got {pending!r}")
        return cls(
            x=_require_number(d.get("x"), "x"),
            y=_require_number(d.get("y"), "y"),
            pending_strokes=pending,
        )


@dataclass
class PaperRunState:
    """When needs_new_paper is set, no motion is emitted until paper is changed."""
    needs_new_paper: bool = False

    def to_dict(self) -> dict:
        return {"needsNewPaper": self.needs_new_paper}

    @classmethod
    def from_dict(cls, d: dict) -> PaperRunState:
        if not isinstance(d, dict) or not isinstance(d.get("needsNewPaper"), bool):
            raise ValueError(f"paperRun.needsNewPaper must be a boolean, got {d!r}")
        return cls(needs_new_paper=d["needsNewPaper"])


@dataclass
class PlotterState:
    """Whole durable document: rows keyed by row id plus the paper run flag."""
    rows: Dict[str, RowState] = field(default_factory=dict)
    paper_run: PaperRunState = field(default_factory=PaperRunState)

    def copy(self) -> PlotterState:
        """Independent deep copy."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict:
        return {
            "rows": {row_id: row.to_dict() for row_id, row in self.rows.items()},
            "paperRun": self.paper_run.to_dict(),
        }

    @classmethod
    def from_dict(cls, d: Any) -> PlotterState:
        """
        Deserialize a stored document.

        Raises:
            ValueError: document does not match the schema
        """
        if not isinstance(d, dict):
            raise ValueError("state document must be an object")
        rows = d.get("rows")
        if not isinstance(rows, dict):
            raise ValueError("state.rows must be an object")
        return cls(
            rows={str(row_id): RowState.from_dict(row) for row_id, row in rows.items()},
            paper_run=PaperRunState.from_dict(d.get("paperRun")),
        )


# =============================================================================
# Device Observations
# =============================================================================


@dataclass(frozen=True)
class MachinePosition:
    """Last position reported by the device (or synthesized in dry-run)."""
    x: float
    y: float
    z: float
    e: Optional[float] = None

    def to_dict(self) -> dict:
        d = {"x": self.x, "y": self.y, "z": self.z}
        if self.e is not None:
            d["e"] = self.e
        return d

    def with_axes(
        self,
        x: Optional[float] = None,
        y: Optional[float] = None,
        z: Optional[float] = None,
    ) -> MachinePosition:
        """Create new position with any given axes replaced."""
        return MachinePosition(
            x=self.x if x is None else x,
            y=self.y if y is None else y,
            z=self.z if z is None else z,
            e=self.e,
        )


@dataclass(frozen=True)
class PositionSnapshot:
    """Position plus when it was observed."""
    position: Optional[MachinePosition]
    updated_at: Optional[datetime]

    def to_dict(self) -> dict:
        return {
            "position": self.position.to_dict() if self.position else None,
            "position_updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
