"""Pytest configuration and shared fixtures."""

import asyncio
import json
from pathlib import Path
from typing import Callable, List, Optional

import pytest

from strokeplotter.config import AppConfig, PlotterGeometry


def build_config(tmp_path: Path, **overrides) -> AppConfig:
    """Two-row config on a 100mm travel axis, state files under tmp_path."""
    data = {
        "files": {
            "statePath": str(tmp_path / "state.json"),
            "giftMapPath": str(tmp_path / "gift-map.json"),
        },
        "plotter": {
            "x0": 0,
            "y0": 0,
            "xMax": 100,
            "strokeLength": 10,
            "strokeSpacing": 5,
            "zUp": 5,
            "zDown": 0,
            "feedRate": 1500,
            "plungeRate": 300,
            "rowStartX": 0,
        },
        "rows": {
            "a": {"y": 10},
            "b": {"y": 20, "startX": 5},
        },
        "worker": {"tickMs": 60000},
        "dryRun": False,
    }
    data.update(overrides)
    return AppConfig.model_validate(data)


class ScriptedLink:
    """
    In-test link: records written lines, replies only when told to
    (or immediately with 'ok' when auto_ack is set).
    """

    def __init__(self, on_line, on_close, auto_ack: bool = False):
        self.written: List[str] = []
        self.auto_ack = auto_ack
        self.fail_writes = False
        self._on_line = on_line
        self._on_close = on_close
        self._open = True

    @property
    def is_open(self) -> bool:
        return self._open

    async def write_line(self, line: str) -> None:
        if self.fail_writes:
            raise OSError("write failed")
        self.written.append(line)
        if self.auto_ack:
            asyncio.get_running_loop().call_soon(self._on_line, "ok")

    async def close(self) -> None:
        self._open = False
        asyncio.get_running_loop().call_soon(self._on_close, None)

    def respond(self, line: str) -> None:
        """Deliver a device line as the reader would."""
        self._on_line(line)

    def drop(self) -> None:
        """Simulate the device going away."""
        self._open = False
        self._on_close(None)


class LinkRecorder:
    """Link factory that hands out ScriptedLinks and remembers them."""

    def __init__(self, auto_ack: bool = False, fail_open: bool = False):
        self.auto_ack = auto_ack
        self.fail_open = fail_open
        self.links: List[ScriptedLink] = []
        self.opened_with: List[tuple] = []

    async def __call__(self, port, baud_rate, on_line, on_error, on_close) -> ScriptedLink:
        self.opened_with.append((port, baud_rate))
        if self.fail_open:
            raise OSError(f"could not open port {port}")
        link = ScriptedLink(on_line, on_close, auto_ack=self.auto_ack)
        self.links.append(link)
        return link

    @property
    def last(self) -> Optional[ScriptedLink]:
        return self.links[-1] if self.links else None


async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(0.001)
    await asyncio.wait_for(poll(), timeout)


@pytest.fixture
def make_config(tmp_path):
    """Build the standard config with top-level overrides."""
    return lambda **overrides: build_config(tmp_path, **overrides)


@pytest.fixture
def config(tmp_path) -> AppConfig:
    """Standard two-row configuration."""
    return build_config(tmp_path)


@pytest.fixture
def geometry(config) -> PlotterGeometry:
    """x0=0, xMax=100, strokeLength=10, strokeSpacing=5."""
    return config.plotter


@pytest.fixture
def link_recorder() -> LinkRecorder:
    return LinkRecorder()


@pytest.fixture
def acking_recorder() -> LinkRecorder:
    return LinkRecorder(auto_ack=True)


@pytest.fixture
def failing_recorder() -> LinkRecorder:
    return LinkRecorder(fail_open=True)


@pytest.fixture
def wait_until():
    """Poll a predicate on the running loop until true (or time out)."""
    return _wait_until


@pytest.fixture
def write_gift_map(tmp_path):
    def write(entries: dict) -> Path:
        path = tmp_path / "gift-map.json"
        path.write_text(json.dumps(entries), encoding="utf-8")
        return path
    return write
