"""
Unit tests for G-code building and stroke planning.
"""

import pytest

from strokeplotter.core.gcode import (
    GCodeBuilder,
    build_return_home,
    build_stroke_batch,
    fmt,
)
from strokeplotter.core.planner import plan_row, stroke_capacity
from strokeplotter.core.types import RowState


class TestNumberFormatting:
    """Numbers carry at most 3 decimals, no trailing zeros."""

    @pytest.mark.parametrize("value,expected", [
        (10, "10"),
        (10.0, "10"),
        (12.5, "12.5"),
        (1 / 3, "0.333"),
        (2 / 3, "0.667"),
        (0.0004, "0"),
        (-0.0004, "0"),
        (-7.25, "-7.25"),
        (1500, "1500"),
        (99.9999, "100"),
    ])
    def test_fmt(self, value, expected):
        assert fmt(value) == expected


class TestGCodeBuilder:

    def test_rapid(self):
        assert GCodeBuilder.rapid(1.5, 20, 5) == "G0 X1.5 Y20 Z5"

    def test_move_z(self):
        assert GCodeBuilder.move_z(0, 300) == "G1 Z0 F300"

    def test_move_x(self):
        assert GCodeBuilder.move_x(11.25, 1500) == "G1 X11.25 F1500"

    def test_position_query(self):
        assert GCodeBuilder.get_position() == "M114"


class TestStrokeBatch:

    def test_single_stroke_sequence(self, geometry):
        """Travel pen-up, plunge, drag, lift."""
        batch = build_stroke_batch(20, 10, 1, geometry)

        assert batch.lines == [
            "G90",
            "G21",
            "G0 X20 Y10 Z5",
            "G1 Z0 F300",
            "G1 X30 F1500",
            "G1 Z5 F300",
        ]
        assert batch.x_end == 25

    def test_cursor_advances_by_spacing(self, geometry):
        batch = build_stroke_batch(0, 10, 3, geometry)

        starts = [line for line in batch.lines if line.startswith("G0")]
        assert starts == ["G0 X0 Y10 Z5", "G0 X5 Y10 Z5", "G0 X10 Y10 Z5"]
        assert batch.x_end == 15

    def test_zero_strokes_is_preamble_only(self, geometry):
        batch = build_stroke_batch(42, 10, 0, geometry)
        assert batch.lines == ["G90", "G21"]
        assert batch.x_end == 42

    def test_line_count(self, geometry):
        batch = build_stroke_batch(0, 10, 7, geometry)
        assert len(batch.lines) == 2 + 4 * 7

    def test_return_home(self, geometry):
        assert build_return_home(geometry) == ["G1 Z5 F300", "G0 X0 Y0"]


class TestCapacity:

    def test_room_for_several(self, geometry):
        # floor((90 - 0) / 5) + 1
        assert stroke_capacity(0, geometry) == 19

    def test_exactly_at_last_start(self, geometry):
        assert stroke_capacity(90, geometry) == 1

    def test_past_last_start(self, geometry):
        assert stroke_capacity(90.001, geometry) == 0
        assert stroke_capacity(91, geometry) == 0


class TestPlanRow:
    """Scenarios from the scheduler contract (xMax=100, len=10, spacing=5)."""

    def test_partial_fill_ends_run(self, geometry):
        plan = plan_row("a", RowState(x=85, y=10, pending_strokes=5), geometry)

        assert plan.fit == 2
        assert plan.n_do == 2
        assert plan.end_run is True
        assert plan.end_no_fit is False
        assert plan.x_end == 95
        assert plan.lines[-2:] == build_return_home(geometry)

    def test_no_room_only_returns_home(self, geometry):
        plan = plan_row("a", RowState(x=91, y=10, pending_strokes=1), geometry)

        assert plan.fit == 0
        assert plan.n_do == 0
        assert plan.end_no_fit is True
        assert plan.end_run is False
        assert plan.lines == build_return_home(geometry)
        assert plan.x_end == 91

    def test_demand_fits(self, geometry):
        plan = plan_row("a", RowState(x=0, y=10, pending_strokes=3), geometry)

        assert plan.n_do == 3
        assert not plan.ends_paper_run
        assert plan.x_end == 15
        assert "G0 X0 Y0" not in plan.lines

    def test_demand_exactly_fills_row_does_not_end(self, geometry):
        """pending == fit draws everything without ending the run."""
        plan = plan_row("a", RowState(x=85, y=10, pending_strokes=2), geometry)

        assert plan.n_do == 2
        assert not plan.ends_paper_run

    def test_no_demand_is_empty(self, geometry):
        plan = plan_row("a", RowState(x=0, y=10, pending_strokes=0), geometry)
        assert plan.is_empty
