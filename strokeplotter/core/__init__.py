"""Core infrastructure layer - gcode, serial streaming, state storage"""

from .serial_transport import SerialStreamer
from .state_store import StateStore
from .planner import plan_row, stroke_capacity

__all__ = ['SerialStreamer', 'StateStore', 'plan_row', 'stroke_capacity']
