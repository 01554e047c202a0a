"""
Serial Streamer - Single responsibility: stream G-code lines with ack flow control

Ack matching is FIFO without sequence numbers: every written line pushes
a pending future, the next 'ok' resolves the oldest, the next 'error'
rejects the oldest. The device must answer in order.

Sends are single-flight. A second send_lines while one is in flight fails
immediately with SerialBusyError instead of queueing.
"""

from __future__ import annotations

import asyncio
import functools
import re
from collections import deque
from datetime import datetime
from typing import Callable, Deque, Iterable, List, Optional

import serial

from .gcode import GCodeBuilder
from .logger import log_serial, log_critical, log_ok, log_info, log_warn, log_debug, log_pos
from .transport import Link, LinkFactory, open_link, parse_axis_words
from .types import MachinePosition, PositionSnapshot


BAUD_RATE = 115200
DEFAULT_TIMEOUT = 10.0

ACK_TOKEN = "ok"
ERROR_TOKEN = "error"

POSITION_REPORT = re.compile(
    r"X:\s*(-?\d+(?:\.\d+)?)\s+Y:\s*(-?\d+(?:\.\d+)?)\s+Z:\s*(-?\d+(?:\.\d+)?)"
    r"(?:\s+E:\s*(-?\d+(?:\.\d+)?))?"
)


class SerialError(Exception):
    """Base class for serial streaming failures"""
    pass


class SerialNotConnectedError(SerialError):
    """Send attempted while the link is closed"""
    pass


class SerialBusyError(SerialError):
    """Another send_lines call is in flight; retry later"""
    pass


class SerialTimeoutError(SerialError):
    """No ack arrived for a line within its deadline"""
    pass


class SerialClosedError(SerialError):
    """Link closed while lines were awaiting ack"""
    pass


class SerialLinkError(SerialError):
    """Opening, writing or closing the link failed"""
    pass


class DeviceError(SerialError):
    """Device answered a line with an error response"""
    pass


def parse_position_report(line: str) -> Optional[MachinePosition]:
    """Parse 'X:<n> Y:<n> Z:<n> [E:<n>]' telemetry, None if not a report."""
    match = POSITION_REPORT.search(line)
    if not match:
        return None
    x, y, z, e = match.groups()
    return MachinePosition(
        x=float(x),
        y=float(y),
        z=float(z),
        e=float(e) if e is not None else None,
    )


class SerialStreamer:
    """
    Streams command lines to the plotter and tracks its reported position.

    In dry-run mode no link is ever opened: each line is logged, motion
    words move a synthetic position, and every send succeeds at once.
    """

    def __init__(
        self,
        dry_run: bool = False,
        link_factory: LinkFactory = open_link,
        default_timeout: float = DEFAULT_TIMEOUT,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._dry_run = dry_run
        self._link_factory = link_factory
        self.default_timeout = default_timeout
        self._clock = clock

        self._link: Optional[Link] = None
        self._generation = 0
        self._pending: Deque[asyncio.Future] = deque()
        self._busy = False

        self._position: Optional[MachinePosition] = None
        self._position_updated_at: Optional[datetime] = None

        # Incoming lines go through each handler until one consumes it
        self._line_handlers: List[Callable[[str], bool]] = [
            self._match_ack,
            self._match_position,
        ]

    # =========================================================================
    # Observers
    # =========================================================================

    @property
    def is_connected(self) -> bool:
        return self._link is not None and self._link.is_open

    @property
    def dry_run(self) -> bool:
        return self._dry_run

    @property
    def is_busy(self) -> bool:
        return self._busy

    @property
    def position(self) -> Optional[MachinePosition]:
        """Last known position (device report or dry-run synthesis)."""
        return self._position

    @property
    def position_updated_at(self) -> Optional[datetime]:
        return self._position_updated_at

    def position_snapshot(self) -> PositionSnapshot:
        return PositionSnapshot(self._position, self._position_updated_at)

    @property
    def pending_count(self) -> int:
        """Lines written but not yet acknowledged."""
        return len(self._pending)

    # =========================================================================
    # Connection
    # =========================================================================

    async def connect(self, port: str, baud_rate: int = BAUD_RATE) -> None:
        """
        Open the link. No-op in dry-run or when already connected.

        Raises:
            SerialLinkError: the port could not be opened
        """
        if self._dry_run:
            log_info("Dry-run mode: skipping serial connect", {"port": port, "baud": baud_rate})
            return

        if self.is_connected:
            log_info("Serial already connected")
            return

        # Close events from an earlier link must not tear down this one
        self._generation += 1
        on_close = functools.partial(self._handle_link_closed, self._generation)

        try:
            self._link = await self._link_factory(
                port, baud_rate, self._handle_line, self._handle_error, on_close
            )
        except (serial.SerialException, OSError, ValueError) as e:
            self._link = None
            log_critical("Serial connect failed", {"port": port, "error": str(e)})
            raise SerialLinkError(f"Failed to connect to {port}: {e}") from e

        log_ok("Serial connected", {"port": port, "baud": baud_rate})

    async def disconnect(self) -> None:
        """Close the link. No-op in dry-run or when already closed."""
        if self._dry_run:
            log_info("Dry-run mode: skipping serial disconnect")
            return

        if not self.is_connected:
            log_info("Serial already disconnected")
            return

        link = self._link
        try:
            await link.close()
        except (serial.SerialException, OSError) as e:
            log_critical("Serial disconnect failed", {"error": str(e)})
            raise SerialLinkError(f"Failed to disconnect: {e}") from e
        finally:
            # Close observer may not have run yet; reject now, it is idempotent
            self._handle_close(None)

    async def set_dry_run(self, value: bool) -> None:
        """
        Switch simulated mode. Entering it while connected disconnects
        first; leaving it does not reconnect.
        """
        if value and self.is_connected:
            await self.disconnect()
        self._dry_run = value
        log_info("Dry-run mode updated", {"dry_run": value})

    # =========================================================================
    # Sending
    # =========================================================================

    async def send_lines(self, lines: Iterable[str], timeout: Optional[float] = None) -> None:
        """
        Send lines in order, waiting for each ack before the next.

        Raises:
            SerialNotConnectedError: link closed (live mode)
            SerialBusyError: another send is in flight
            SerialTimeoutError: a line got no ack in time; rest aborted
            DeviceError: device answered a line with 'error'
            SerialClosedError: link closed mid-batch
            SerialLinkError: write failed
        """
        lines = list(lines)
        if self._dry_run:
            for line in lines:
                log_serial("DRY", line)
                self._simulate(line)
            return

        if not self.is_connected:
            raise SerialNotConnectedError("Serial not connected")

        if self._busy:
            raise SerialBusyError("Serial streamer busy")

        self._busy = True
        try:
            for line in lines:
                await self._send_line(line, self.default_timeout if timeout is None else timeout)
        finally:
            self._busy = False

    async def request_position(self, timeout: Optional[float] = None) -> Optional[MachinePosition]:
        """Query position (M114) and return whatever is known once it is acked."""
        await self.send_lines([GCodeBuilder.get_position()], timeout)
        return self._position

    async def _send_line(self, line: str, timeout: float) -> None:
        link = self._link
        if link is None:
            raise SerialNotConnectedError("Serial not connected")

        ack = asyncio.get_running_loop().create_future()
        self._pending.append(ack)
        try:
            log_serial(">>>", line)
            try:
                await link.write_line(line)
            except (serial.SerialException, OSError) as e:
                raise SerialLinkError(f"Write failed for {line!r}: {e}") from e

            try:
                await asyncio.wait_for(ack, timeout)
            except asyncio.TimeoutError:
                log_critical(f"Timeout waiting for '{ACK_TOKEN}' after {timeout}s", {"line": line})
                raise SerialTimeoutError(f"Timeout waiting for ok: {line}") from None
        finally:
            self._discard(ack)

    def _discard(self, ack: asyncio.Future) -> None:
        try:
            self._pending.remove(ack)
        except ValueError:
            pass

    def _simulate(self, line: str) -> None:
        if not line.startswith(("G0", "G1")):
            return
        current = self._position or MachinePosition(0.0, 0.0, 0.0)
        self._set_position(parse_axis_words(line, current))

    def _set_position(self, position: MachinePosition) -> None:
        self._position = position
        self._position_updated_at = self._clock()

    # =========================================================================
    # Incoming lines (called on the event loop)
    # =========================================================================

    def _handle_line(self, line: str) -> None:
        trimmed = line.strip()
        if not trimmed:
            return
        log_serial("<<<", trimmed)
        for handler in self._line_handlers:
            if handler(trimmed):
                return
        log_debug("Serial output", {"line": trimmed})

    def _match_ack(self, line: str) -> bool:
        lower = line.lower()
        if lower.startswith(ACK_TOKEN):
            ack = self._pop_pending()
            if ack is None:
                log_debug("Unsolicited ack", {"line": line})
            else:
                ack.set_result(None)
            return True

        if lower.startswith(ERROR_TOKEN):
            ack = self._pop_pending()
            if ack is None:
                log_warn("Device error with nothing pending", {"line": line})
            else:
                ack.set_exception(DeviceError(line))
            return True

        return False

    def _match_position(self, line: str) -> bool:
        position = parse_position_report(line)
        if position is None:
            return False
        self._set_position(position)
        log_pos("Position report", position.to_dict())
        return True

    def _pop_pending(self) -> Optional[asyncio.Future]:
        while self._pending:
            ack = self._pending.popleft()
            if not ack.done():
                return ack
        return None

    def _handle_error(self, error: Exception) -> None:
        log_critical("Serial error", {"error": str(error)})

    def _handle_link_closed(self, generation: int, error: Optional[Exception]) -> None:
        if generation == self._generation:
            self._handle_close(error)

    def _handle_close(self, error: Optional[Exception]) -> None:
        if self._link is None and not self._pending:
            return
        self._link = None
        self._reject_all(SerialClosedError("Serial connection closed"))
        log_warn("Serial connection closed")

    def _reject_all(self, error: Exception) -> None:
        while self._pending:
            ack = self._pending.popleft()
            if not ack.done():
                ack.set_exception(error)
