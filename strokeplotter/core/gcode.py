"""
G-Code Builder - Single responsibility: building G-code command lines

Pure functions only. Every number is rounded to 3 decimals before it is
embedded in a line; the firmware parser expects that precision.
"""

from dataclasses import dataclass
from typing import List

from ..config import PlotterGeometry


def fmt(value: float) -> str:
    """Round to 3 decimals and drop trailing zeros: 10 -> '10', 12.5 -> '12.5'."""
    text = f"{value:.3f}".rstrip("0").rstrip(".")
    if text in ("-0", ""):
        return "0"
    return text


class GCodeBuilder:
    """Builds G-code command strings"""

    @staticmethod
    def absolute_mode() -> str:
        """Set absolute positioning"""
        return "G90"

    @staticmethod
    def millimeters() -> str:
        """Set units to millimeters"""
        return "G21"

    @staticmethod
    def rapid(x: float, y: float, z: float) -> str:
        """G0 travel to XYZ"""
        return f"G0 X{fmt(x)} Y{fmt(y)} Z{fmt(z)}"

    @staticmethod
    def rapid_xy(x: float, y: float) -> str:
        """G0 travel in XY only"""
        return f"G0 X{fmt(x)} Y{fmt(y)}"

    @staticmethod
    def move_z(z: float, feedrate: float) -> str:
        """Build Z-only move command"""
        return f"G1 Z{fmt(z)} F{fmt(feedrate)}"

    @staticmethod
    def move_x(x: float, feedrate: float) -> str:
        """Build X-only move command"""
        return f"G1 X{fmt(x)} F{fmt(feedrate)}"

    @staticmethod
    def get_position() -> str:
        """Query current position"""
        return "M114"


@dataclass(frozen=True)
class StrokeBatch:
    """Lines for a run of strokes and the offset after the last one."""
    lines: List[str]
    x_end: float


def build_stroke_batch(x_start: float, y: float, count: int,
                       geometry: PlotterGeometry) -> StrokeBatch:
    """
    Build `count` strokes along X starting at x_start.

    Each stroke: travel (pen up) to start, plunge, drag strokeLength,
    lift. The cursor then advances by strokeSpacing.
    """
    g = GCodeBuilder
    lines = [g.absolute_mode(), g.millimeters()]
    x = x_start

    for _ in range(count):
        lines.append(g.rapid(x, y, geometry.z_up))
        lines.append(g.move_z(geometry.z_down, geometry.plunge_rate))
        lines.append(g.move_x(x + geometry.stroke_length, geometry.feed_rate))
        lines.append(g.move_z(geometry.z_up, geometry.plunge_rate))
        x += geometry.stroke_spacing

    return StrokeBatch(lines=lines, x_end=x)


def build_return_home(geometry: PlotterGeometry) -> List[str]:
    """Lift the pen, then travel to the parking origin."""
    return [
        GCodeBuilder.move_z(geometry.z_up, geometry.plunge_rate),
        GCodeBuilder.rapid_xy(geometry.x0, geometry.y0),
    ]
