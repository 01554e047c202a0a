"""Workflows - the scheduler that drives the plotter"""

from .plotter_worker import PlotterWorker, TickOutcome, WorkerState

__all__ = ['PlotterWorker', 'TickOutcome', 'WorkerState']
