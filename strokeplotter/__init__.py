"""Stroke Plotter - streams demand-driven pen strokes to a G-code plotter"""

__version__ = "1.0.0"
