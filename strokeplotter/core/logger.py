"""
Structured logging for the stroke plotter.

Prefixes:
  ⚡ CRITICAL - Errors, failures
  ⚠️  WARN     - Warnings, unexpected behavior
  ✓  OK       - Success confirmations
  ℹ  INFO     - General information
  ·  DEBUG    - Noisy diagnostics
  ⬡  SERIAL   - Raw serial I/O
  📍 POS      - Position reports
  💾 STATE    - Durable state operations
  ⚙  WORKER   - Scheduler ticks
  🎁 GIFT     - Incoming demand
"""

from enum import Enum
from typing import Optional
from datetime import datetime


class LogLevel(Enum):
    CRITICAL = "⚡ CRITICAL"
    WARN = "⚠️  WARN    "
    OK = "✓  OK      "
    INFO = "ℹ  INFO    "
    DEBUG = "·  DEBUG   "
    SERIAL = "⬡  SERIAL  "
    POS = "📍 POS     "
    STATE = "💾 STATE   "
    WORKER = "⚙  WORKER  "
    GIFT = "🎁 GIFT    "


# Severity per category; lines below the threshold are dropped
_SEVERITY = {
    LogLevel.DEBUG: 10,
    LogLevel.SERIAL: 10,
    LogLevel.POS: 10,
    LogLevel.INFO: 20,
    LogLevel.OK: 20,
    LogLevel.STATE: 20,
    LogLevel.WORKER: 20,
    LogLevel.GIFT: 20,
    LogLevel.WARN: 30,
    LogLevel.CRITICAL: 40,
}

_THRESHOLDS = {
    "debug": 10,
    "trace": 10,
    "info": 20,
    "warn": 30,
    "warning": 30,
    "error": 40,
    "fatal": 40,
    "silent": 100,
}

_threshold = 20


def set_log_level(name: str) -> None:
    """Set the minimum level by name (debug, info, warn, error, silent)."""
    global _threshold
    key = name.strip().lower()
    if key not in _THRESHOLDS:
        raise ValueError(f"Unknown log level: {name!r}")
    _threshold = _THRESHOLDS[key]


def log(level: LogLevel, message: str, data: Optional[dict] = None):
    """Log a message with structured prefix."""
    if _SEVERITY[level] < _threshold:
        return

    timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]
    prefix = level.value

    line = f"[{timestamp}] {prefix} | {message}"
    if data:
        line += f" | {data}"

    print(line, flush=True)


# Convenience functions
def log_critical(msg: str, data: Optional[dict] = None):
    log(LogLevel.CRITICAL, msg, data)

def log_warn(msg: str, data: Optional[dict] = None):
    log(LogLevel.WARN, msg, data)

def log_ok(msg: str, data: Optional[dict] = None):
    log(LogLevel.OK, msg, data)

def log_info(msg: str, data: Optional[dict] = None):
    log(LogLevel.INFO, msg, data)

def log_debug(msg: str, data: Optional[dict] = None):
    log(LogLevel.DEBUG, msg, data)

def log_serial(direction: str, data: str):
    """Log serial I/O. direction is '>>>' (send), '<<<' (recv) or 'DRY' (simulated)"""
    log(LogLevel.SERIAL, f"{direction} {data}")

def log_pos(msg: str, data: Optional[dict] = None):
    log(LogLevel.POS, msg, data)

def log_state(msg: str, data: Optional[dict] = None):
    log(LogLevel.STATE, msg, data)

def log_worker(msg: str, data: Optional[dict] = None):
    log(LogLevel.WORKER, msg, data)

def log_gift(msg: str, data: Optional[dict] = None):
    log(LogLevel.GIFT, msg, data)
