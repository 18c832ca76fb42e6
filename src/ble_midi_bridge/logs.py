"""NDJSON event log for link state changes, session summaries and MIDI traffic."""

from __future__ import annotations

import json
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, TextIO

from .config import LoggingConfig


class NdjsonLogger:
    """Append-only NDJSON log, rotated daily, with sequence numbers.

    Record types are `status`, `event`, `error` and `debug`. In `regular`
    mode debug records are dropped unless their message is whitelisted.
    """

    def __init__(
        self,
        log_dir: str,
        file_prefix: str = "bridge",
        mode: str = "regular",
        verbose_whitelist: Iterable[str] = (),
    ) -> None:
        self.log_dir = Path(log_dir)
        self.file_prefix = file_prefix
        self.mode = mode
        self.verbose_whitelist = set(verbose_whitelist)

        self.log_dir.mkdir(parents=True, exist_ok=True)

        self._seq = 0
        self._current_file: Optional[TextIO] = None
        self._current_date: Optional[str] = None
        self._start_ns = time.monotonic_ns()

        self._rotate_if_needed()

    @property
    def current_path(self) -> Optional[Path]:
        if self._current_date is None:
            return None
        return self.log_dir / f"{self.file_prefix}_{self._current_date}.ndjson"

    def log(
        self,
        msg_type: str,
        msg: str,
        device: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Write a single structured record."""
        if msg_type == "debug" and self.mode == "regular" and msg not in self.verbose_whitelist:
            return

        self._rotate_if_needed()
        self._seq += 1

        record: Dict[str, Any] = {
            "seq": self._seq,
            "type": msg_type,
            "ts_ms": round((time.monotonic_ns() - self._start_ns) / 1_000_000, 3),
            "hms": datetime.now().strftime("%H:%M:%S.%f")[:-3],
            "msg": msg,
        }
        if device is not None:
            record["device"] = device
        if data is not None:
            record["data"] = data

        if self._current_file:
            self._current_file.write(json.dumps(record, separators=(",", ":"), ensure_ascii=False))
            self._current_file.write("\n")
            self._current_file.flush()

    def status(self, msg: str, data: Optional[Dict[str, Any]] = None, device: Optional[str] = None) -> None:
        self.log("status", msg, device=device, data=data)

    def event(self, msg: str, data: Optional[Dict[str, Any]] = None, device: Optional[str] = None) -> None:
        self.log("event", msg, device=device, data=data)

    def error(self, msg: str, data: Optional[Dict[str, Any]] = None, device: Optional[str] = None) -> None:
        self.log("error", msg, device=device, data=data)

    def debug(self, msg: str, data: Optional[Dict[str, Any]] = None, device: Optional[str] = None) -> None:
        """Log a debug record (subject to mode filtering)."""
        self.log("debug", msg, device=device, data=data)

    def close(self) -> None:
        if self._current_file:
            self._current_file.close()
            self._current_file = None

    def _rotate_if_needed(self) -> None:
        current_date = datetime.now().strftime("%Y%m%d")
        if self._current_date == current_date:
            return

        if self._current_file:
            self._current_file.close()

        self._current_date = current_date
        self._current_file = self.current_path.open("a", encoding="utf-8", buffering=1)

    def __enter__(self) -> NdjsonLogger:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()


class NullEventLog:
    """Drop-in replacement used when the NDJSON log is disabled."""

    def log(self, *args: Any, **kwargs: Any) -> None:
        pass

    status = event = error = debug = log

    def close(self) -> None:
        pass


def create_event_log(config: LoggingConfig) -> Any:
    """NdjsonLogger for the configured directory, or a NullEventLog."""
    if not config.ndjson:
        return NullEventLog()
    return NdjsonLogger(
        config.dir,
        config.file_prefix,
        mode=config.mode,
        verbose_whitelist=config.verbose_whitelist,
    )
