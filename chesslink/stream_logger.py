"""
Stream recorder — appends every raw NDJSON line of a game stream to a file.

One file per game id, so a reconnect keeps appending to the same record.
Connection boundaries are written as marker comments. Enabled with
logging.record_streams in config.yaml; files land in the log directory.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

_SEP = "#" + "=" * 79


class StreamRecorder:
    def __init__(self, log_dir: Path, game_id: str) -> None:
        log_dir.mkdir(parents=True, exist_ok=True)
        self._path = log_dir / f"stream_{_safe(game_id)}.ndjson"

    # ------------------------------------------------------------------ #
    # Public API                                                           #
    # ------------------------------------------------------------------ #

    def mark_connect(self, attempt: int) -> None:
        self._write(
            f"{_SEP}\n"
            f"# connect attempt {attempt} at {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n"
            f"{_SEP}\n"
        )

    def record(self, line: str) -> None:
        self._write(line.rstrip("\n") + "\n")

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------ #
    # Internal                                                             #
    # ------------------------------------------------------------------ #

    def _write(self, text: str) -> None:
        with self._path.open("a", encoding="utf-8") as f:
            f.write(text)


def _safe(name: str) -> str:
    """Strip characters that are problematic in filenames."""
    return "".join(c if c.isalnum() or c in "_-" else "_" for c in name).strip()
