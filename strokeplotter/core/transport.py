"""
Transport layer - the byte-level link under the serial protocol engine.

Provides:
- Link protocol (interface)
- SerialLink: pyserial port with a reader thread that frames lines
- MockLink: in-process simulated device for running without hardware
- open_link: factory choosing between them ("mock" selects MockLink)

Every observer callback is delivered on the asyncio event loop, never on
the reader thread.
"""

from __future__ import annotations

import asyncio
import functools
import re
from typing import Awaitable, Callable, List, Optional, Protocol

import serial
import serial.threaded
import serial.tools.list_ports

from .logger import log_debug
from .types import MachinePosition


LineHandler = Callable[[str], None]
ErrorHandler = Callable[[Exception], None]
CloseHandler = Callable[[Optional[Exception]], None]

MOCK_PORT = "mock"
READ_TIMEOUT = 1.0


class Link(Protocol):
    """An open, line-oriented connection to the device."""

    @property
    def is_open(self) -> bool:
        ...

    async def write_line(self, line: str) -> None:
        """Write one command line (terminator appended)."""
        ...

    async def close(self) -> None:
        """Close the link; the close observer fires once."""
        ...


LinkFactory = Callable[[str, int, LineHandler, ErrorHandler, CloseHandler], Awaitable[Link]]


def list_ports() -> List[str]:
    """List available serial ports"""
    return [port.device for port in serial.tools.list_ports.comports()]


# =============================================================================
# Serial Link
# =============================================================================


class _LineProtocol(serial.threaded.LineReader):
    """Frames incoming bytes into lines and hands them to the event loop."""

    TERMINATOR = b"\n"

    def __init__(self, loop: asyncio.AbstractEventLoop,
                 on_line: LineHandler, on_error: ErrorHandler, on_close: CloseHandler):
        super().__init__()
        self._loop = loop
        self._on_line = on_line
        self._on_error = on_error
        self._on_close = on_close

    def handle_line(self, line: str) -> None:
        self._post(self._on_line, line)

    def connection_lost(self, exc: Optional[BaseException]) -> None:
        # Base class re-raises exc on the reader thread; report it instead
        self.transport = None
        if isinstance(exc, Exception):
            self._post(self._on_error, exc)
        self._post(self._on_close, exc if isinstance(exc, Exception) else None)

    def _post(self, callback, *args) -> None:
        if not self._loop.is_closed():
            self._loop.call_soon_threadsafe(callback, *args)


class SerialLink:
    """
    pyserial port plus a ReaderThread.

    Blocking calls (open, write, close) run in a worker thread so the
    event loop never stalls on the port.
    """

    def __init__(self, port: serial.SerialBase, reader: serial.threaded.ReaderThread):
        self._port = port
        self._reader = reader

    @classmethod
    async def open(cls, port: str, baud_rate: int, on_line: LineHandler,
                   on_error: ErrorHandler, on_close: CloseHandler) -> "SerialLink":
        loop = asyncio.get_running_loop()
        ser = await asyncio.to_thread(
            serial.serial_for_url, port, baudrate=baud_rate, timeout=READ_TIMEOUT
        )
        reader = serial.threaded.ReaderThread(
            ser, functools.partial(_LineProtocol, loop, on_line, on_error, on_close)
        )
        reader.start()
        try:
            await asyncio.to_thread(reader.connect)
        except RuntimeError as e:
            # Reader thread died before the protocol came up
            await asyncio.to_thread(reader.stop)
            await asyncio.to_thread(ser.close)
            raise serial.SerialException(f"Reader for {port} failed to start: {e}") from e
        return cls(ser, reader)

    @property
    def is_open(self) -> bool:
        return self._port.is_open and self._reader.alive

    async def write_line(self, line: str) -> None:
        await asyncio.to_thread(self._reader.write, f"{line}\n".encode("ascii"))

    async def close(self) -> None:
        await asyncio.to_thread(self._reader.close)


# =============================================================================
# Mock Link
# =============================================================================


class MockLink:
    """
    Simulated device for testing without hardware.

    Acknowledges every line with 'ok' on the next loop iteration, answers
    M114 with a position report first, and tracks position from G0/G1.
    """

    def __init__(self, on_line: LineHandler, on_close: CloseHandler):
        self.sent_commands: List[str] = []
        self.position = MachinePosition(0.0, 0.0, 0.0, 0.0)
        self._on_line = on_line
        self._on_close = on_close
        self._open = True

    @classmethod
    async def open(cls, port: str, baud_rate: int, on_line: LineHandler,
                   on_error: ErrorHandler, on_close: CloseHandler) -> "MockLink":
        log_debug("Opening mock link", {"port": port, "baud": baud_rate})
        return cls(on_line, on_close)

    @property
    def is_open(self) -> bool:
        return self._open

    async def write_line(self, line: str) -> None:
        if not self._open:
            raise serial.SerialException("mock link closed")
        self.sent_commands.append(line)
        loop = asyncio.get_running_loop()

        if line.startswith(("G0", "G1")):
            self._simulate_move(line)
        elif line == "M114":
            p = self.position
            loop.call_soon(self._on_line, f"X:{p.x:.2f} Y:{p.y:.2f} Z:{p.z:.2f} E:{p.e or 0:.2f}")

        loop.call_soon(self._on_line, "ok")

    async def close(self) -> None:
        if not self._open:
            return
        self._open = False
        asyncio.get_running_loop().call_soon(self._on_close, None)

    def _simulate_move(self, gcode: str) -> None:
        """Parse G0/G1 axis words and update simulated position."""
        self.position = parse_axis_words(gcode, self.position)


_AXIS_WORD = re.compile(r"\b([XYZ])(-?\d+(?:\.\d+)?)")


def parse_axis_words(gcode: str, current: MachinePosition) -> MachinePosition:
    """Apply X/Y/Z words of a motion line to current."""
    axes = {axis.lower(): float(value) for axis, value in _AXIS_WORD.findall(gcode)}
    return current.with_axes(**axes)


async def open_link(port: str, baud_rate: int, on_line: LineHandler,
                    on_error: ErrorHandler, on_close: CloseHandler) -> Link:
    """Open MockLink for the 'mock' port, a real SerialLink otherwise."""
    if port == MOCK_PORT:
        return await MockLink.open(port, baud_rate, on_line, on_error, on_close)
    return await SerialLink.open(port, baud_rate, on_line, on_error, on_close)
