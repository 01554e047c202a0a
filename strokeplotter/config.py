"""
Configuration - plotter geometry, rows, serial and worker settings.

Loaded from a JSON file (camelCase keys) with environment overrides.
An invalid configuration is fatal: the plotter must never run with a
broken physical model.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Dict, Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel


DEFAULT_CONFIG_PATH = "./config/default.config.json"
DOTENV_PATH = "./.env"


class ConfigError(Exception):
    """Raised when configuration is missing or invalid"""
    pass


class _Model(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class HttpConfig(_Model):
    port: int = Field(default=3000, gt=0)


class FilesConfig(_Model):
    gift_map_path: str = "./gift-map.json"
    state_path: str = "./state.json"


class PlotterGeometry(_Model):
    """
    Physical model of the plotter.

    Strokes run along X starting at a row's offset; every row has a fixed Y.
    x0/y0 is the parking origin used at the end of a paper run.
    """
    x0: float
    y0: float
    x_max: float
    stroke_length: float = Field(gt=0)
    stroke_spacing: float = Field(gt=0)
    z_up: float
    z_down: float
    feed_rate: float = Field(gt=0)
    plunge_rate: float = Field(gt=0)
    row_start_x: float

    @model_validator(mode="after")
    def _check_travel(self) -> "PlotterGeometry":
        if self.x_max <= self.x0:
            raise ValueError(f"xMax ({self.x_max}) must be greater than x0 ({self.x0})")
        return self

    @property
    def max_stroke_start(self) -> float:
        """Largest X at which a full stroke still fits."""
        return self.x_max - self.stroke_length


class RowConfig(_Model):
    y: float
    start_x: Optional[float] = None


class SerialConfig(_Model):
    port: str = ""
    baud_rate: int = Field(default=115200, gt=0)


class WorkerConfig(_Model):
    tick_ms: int = Field(default=1000, gt=0)


LogLevelName = Literal["trace", "debug", "info", "warn", "warning", "error", "fatal", "silent"]


class LoggingConfig(_Model):
    level: LogLevelName = "info"

    @field_validator("level", mode="before")
    @classmethod
    def _normalize_level(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value


class AppConfig(_Model):
    http: HttpConfig = Field(default_factory=HttpConfig)
    files: FilesConfig = Field(default_factory=FilesConfig)
    plotter: PlotterGeometry
    rows: Dict[str, RowConfig]
    serial: SerialConfig = Field(default_factory=SerialConfig)
    worker: WorkerConfig = Field(default_factory=WorkerConfig)
    dry_run: bool = False
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def _check_rows(self) -> "AppConfig":
        if not self.rows:
            raise ValueError("at least one row must be configured")
        return self

    def row_start_x(self, row_id: str) -> float:
        """Configured start offset for a row (row override, else plotter default)."""
        row = self.rows[row_id]
        if row.start_x is not None:
            return row.start_x
        return self.plotter.row_start_x


# =============================================================================
# Loading
# =============================================================================


def _env_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {value!r}")


def _apply_env_overrides(raw: dict, env: Dict[str, str]) -> dict:
    """Overlay environment variables onto the raw JSON document."""
    merged = dict(raw)

    def section(name: str) -> dict:
        value = dict(merged.get(name) or {})
        merged[name] = value
        return value

    if env.get("HTTP_PORT"):
        section("http")["port"] = _env_int("HTTP_PORT", env["HTTP_PORT"])
    if "GIFT_MAP_PATH" in env:
        section("files")["giftMapPath"] = env["GIFT_MAP_PATH"]
    if "STATE_PATH" in env:
        section("files")["statePath"] = env["STATE_PATH"]
    if "SERIAL_PORT" in env:
        section("serial")["port"] = env["SERIAL_PORT"]
    if env.get("SERIAL_BAUD"):
        section("serial")["baudRate"] = _env_int("SERIAL_BAUD", env["SERIAL_BAUD"])
    if "DRY_RUN" in env:
        merged["dryRun"] = _env_bool(env["DRY_RUN"])
    if "LOG_LEVEL" in env:
        section("logging")["level"] = env["LOG_LEVEL"]
    return merged


def _resolve(base_dir: Path, target: str) -> str:
    path = Path(target)
    if path.is_absolute():
        return str(path)
    return str((base_dir / path).resolve())


def load_config(
    path: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
) -> AppConfig:
    """
    Load and validate configuration.

    Path comes from the argument, else CONFIG_PATH, else the default.
    With no explicit env, a .env file in the working directory is loaded
    into the process environment first.
    Relative file paths are resolved against the config file's directory.

    Raises:
        ConfigError: file missing, not JSON, or failing validation
    """
    if env is None:
        # .env in the working directory; real environment variables win
        load_dotenv(DOTENV_PATH)
        env = dict(os.environ)
    config_path = Path(path or env.get("CONFIG_PATH") or DEFAULT_CONFIG_PATH)

    try:
        raw = json.loads(config_path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"Cannot read config {config_path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Config {config_path} is not valid JSON: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"Config {config_path} must be a JSON object")

    try:
        config = AppConfig.model_validate(_apply_env_overrides(raw, env))
    except ValidationError as e:
        raise ConfigError(f"Invalid config {config_path}: {e}") from e

    base_dir = config_path.resolve().parent
    config.files.gift_map_path = _resolve(base_dir, config.files.gift_map_path)
    config.files.state_path = _resolve(base_dir, config.files.state_path)
    return config
