"""
Configuration loading from config.yaml.

Uses typed dataclasses throughout so the rest of the app gets IDE
completion and type-checker support without touching raw dicts.
Every timing constant of the sync engine has its default here.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


@dataclass
class ServerConfig:
    api_base: str = "https://lichess.org/api"
    token: str = ""          # falls back to $LICHESS_TOKEN when empty
    request_timeout: float = 15.0


@dataclass
class AnimationConfig:
    duration_ms: int = 260
    arc_height: float = 0.18
    frame_interval_ms: int = 16


@dataclass
class StreamConfig:
    stale_timeout: float = 12.0      # seconds of silence before aborting
    health_poll_interval: float = 4.0
    retry_delay: float = 1.2
    clock_tick_interval: float = 0.25
    summary_attempts: int = 4
    summary_initial_delay: float = 0.7
    summary_backoff: float = 1.6


@dataclass
class PuzzleConfig:
    min_fetch_gap: float = 1.2
    rate_limit_default_wait: float = 4.0
    max_attempts: int = 3            # per request, on HTTP 429
    initial_backoff: float = 0.6
    recent_size: int = 5
    duplicate_retries: int = 5
    duplicate_retry_delay: float = 0.2


@dataclass
class LoggingConfig:
    level: str = "INFO"
    log_dir: str = "./logs"
    record_streams: bool = False     # write raw NDJSON per game to log_dir


@dataclass
class ClientConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    animation: AnimationConfig = field(default_factory=AnimationConfig)
    stream: StreamConfig = field(default_factory=StreamConfig)
    puzzle: PuzzleConfig = field(default_factory=PuzzleConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def token(self) -> str:
        """Prefer the configured token, else fall back to $LICHESS_TOKEN."""
        return self.server.token or os.environ.get("LICHESS_TOKEN", "")

    @property
    def log_dir_path(self) -> Path:
        return Path(self.logging.log_dir)


def load_config(path: str | Path = "config.yaml") -> ClientConfig:
    """
    Load and validate config.yaml.

    Raises:
        FileNotFoundError: config.yaml is missing.
        ValueError: fields are present but invalid.
    """
    cfg_path = Path(path)
    if not cfg_path.exists():
        raise FileNotFoundError(
            f"Config file not found: {cfg_path.resolve()}\n"
            "Copy config.example.yaml to config.yaml and adjust it."
        )

    with cfg_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    try:
        server_raw = raw.get("server") or {}
        anim_raw = raw.get("animation") or {}
        stream_raw = raw.get("stream") or {}
        puzzle_raw = raw.get("puzzle") or {}
        log_raw = raw.get("logging") or {}

        config = ClientConfig(
            server=ServerConfig(
                api_base=str(server_raw.get("api_base", ServerConfig.api_base)).rstrip("/"),
                token=str(server_raw.get("token", "") or ""),
                request_timeout=float(server_raw.get("request_timeout", 15.0)),
            ),
            animation=AnimationConfig(
                duration_ms=int(anim_raw.get("duration_ms", 260)),
                arc_height=float(anim_raw.get("arc_height", 0.18)),
                frame_interval_ms=int(anim_raw.get("frame_interval_ms", 16)),
            ),
            stream=StreamConfig(
                stale_timeout=float(stream_raw.get("stale_timeout", 12.0)),
                health_poll_interval=float(stream_raw.get("health_poll_interval", 4.0)),
                retry_delay=float(stream_raw.get("retry_delay", 1.2)),
                clock_tick_interval=float(stream_raw.get("clock_tick_interval", 0.25)),
                summary_attempts=int(stream_raw.get("summary_attempts", 4)),
                summary_initial_delay=float(stream_raw.get("summary_initial_delay", 0.7)),
                summary_backoff=float(stream_raw.get("summary_backoff", 1.6)),
            ),
            puzzle=PuzzleConfig(
                min_fetch_gap=float(puzzle_raw.get("min_fetch_gap", 1.2)),
                rate_limit_default_wait=float(puzzle_raw.get("rate_limit_default_wait", 4.0)),
                max_attempts=int(puzzle_raw.get("max_attempts", 3)),
                initial_backoff=float(puzzle_raw.get("initial_backoff", 0.6)),
                recent_size=int(puzzle_raw.get("recent_size", 5)),
                duplicate_retries=int(puzzle_raw.get("duplicate_retries", 5)),
                duplicate_retry_delay=float(puzzle_raw.get("duplicate_retry_delay", 0.2)),
            ),
            logging=LoggingConfig(
                level=str(log_raw.get("level", "INFO")).upper(),
                log_dir=str(log_raw.get("log_dir", "./logs")),
                record_streams=bool(log_raw.get("record_streams", False)),
            ),
        )
    except (AttributeError, TypeError, ValueError) as exc:
        raise ValueError(f"Invalid config.yaml structure: {exc}") from exc

    _validate(config)
    return config


def _validate(config: ClientConfig) -> None:
    if config.animation.duration_ms < 0:
        raise ValueError("animation.duration_ms must be >= 0")
    if config.stream.stale_timeout <= 0 or config.stream.health_poll_interval <= 0:
        raise ValueError("stream.stale_timeout and stream.health_poll_interval must be > 0")
    if config.stream.retry_delay < 0:
        raise ValueError("stream.retry_delay must be >= 0")
    if config.stream.summary_attempts < 1:
        raise ValueError("stream.summary_attempts must be >= 1")
    if config.puzzle.max_attempts < 1:
        raise ValueError("puzzle.max_attempts must be >= 1")
    if config.puzzle.recent_size < 1:
        raise ValueError("puzzle.recent_size must be >= 1")
    valid_levels = ("DEBUG", "INFO", "WARNING", "ERROR")
    if config.logging.level not in valid_levels:
        raise ValueError(
            f"logging.level must be one of {valid_levels}, got '{config.logging.level}'"
        )
