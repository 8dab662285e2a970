"""
Run Event Log

An acceptance run can take an hour and fail in its last minute, so every
stage transition, poll attempt and cluster observation is appended to a
JSON Lines file as it happens. The file alone is enough to tell which stage
failed, what it was waiting for, and what the cluster looked like at the time.

Event lines look like:
    {"ts":"2024-05-01T10:00:03.120Z","elapsed_ms":812.4,"run_id":"consul-cluster-ubuntu-16",
     "suite":"e2e","event":"retry_attempt_failed","level":"ERROR","attempt":3,...}

No external dependencies - pure Python.
"""

import json
import os
import threading
import time
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

ARTIFACTS_ENV_VAR = "CLUSTER_TEST_ARTIFACTS"
DEFAULT_LOG_DIR = Path(__file__).parent.parent / "artifacts" / "logs"

LEVEL_INFO = "INFO"
LEVEL_ERROR = "ERROR"


@dataclass
class RunEvent:
    ts: str
    elapsed_ms: float
    run_id: str
    suite: str
    event: str
    level: str = LEVEL_INFO
    message: str = ""
    stage: Optional[str] = None
    attempt: Optional[int] = None
    error_type: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        # Unset optional fields are left out of the line
        record = {k: v for k, v in asdict(self).items() if v is not None and v != {}}
        return json.dumps(record, separators=(',', ':'), default=str)


def default_log_dir() -> Path:
    artifacts = os.environ.get(ARTIFACTS_ENV_VAR)
    return Path(artifacts) / "logs" if artifacts else DEFAULT_LOG_DIR


class RunLogger:
    """
    Event log for one acceptance run.

    Safe to share between threads. Events written after close() are dropped,
    so a late retry callback cannot reopen a finished log.
    """

    def __init__(
        self,
        run_id: str,
        suite: str,
        output_dir: Optional[Path] = None,
        console_output: bool = True
    ):
        self.run_id = run_id
        self.suite = suite
        self.console_output = console_output
        self.output_dir = Path(output_dir) if output_dir else default_log_dir()
        self.output_dir.mkdir(parents=True, exist_ok=True)

        started = datetime.now()
        self.log_file = self.output_dir / f"{run_id}_{started.strftime('%Y%m%d_%H%M%S')}.jsonl"
        self._handle = open(self.log_file, "a")
        self._lock = threading.Lock()
        self._t0 = time.monotonic()
        self._closed = False

        self.info("run_start", f"Run {run_id} started")

    def emit(self, event: str, message: str = "", level: str = LEVEL_INFO, **fields) -> RunEvent:
        record = RunEvent(
            ts=datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            elapsed_ms=round((time.monotonic() - self._t0) * 1000, 1),
            run_id=self.run_id,
            suite=self.suite,
            event=event,
            level=level,
            message=message,
            **fields
        )
        line = record.to_json()

        with self._lock:
            if self._closed:
                return record
            self._handle.write(line + "\n")
            self._handle.flush()

        if self.console_output:
            where = f"[{record.stage}] " if record.stage else ""
            print(f"[{record.ts[11:19]}] [{level}] {where}{event}: {message}", flush=True)
        return record

    def info(self, event: str, message: str = "", **fields) -> RunEvent:
        return self.emit(event, message, LEVEL_INFO, **fields)

    def error(self, event: str, message: str = "", error_type: str = "error", **fields) -> RunEvent:
        return self.emit(event, message, LEVEL_ERROR, error_type=error_type, **fields)

    def stage_event(self, subtype: str, stage: str, message: str = "", error: Optional[BaseException] = None):
        """Stage transition: started, skipped, passed or failed."""
        event = f"stage_{subtype}"
        if error is None:
            return self.info(event, message or f"Stage '{stage}' {subtype}", stage=stage)
        return self.error(event, message or f"Stage '{stage}' {subtype}: {error}",
                          error_type=type(error).__name__, stage=stage)

    def retry_event(self, subtype: str, description: str, attempt: int, max_attempts: int, error: Any = None):
        """One attempt of a poll loop, or its final verdict."""
        event = f"retry_{subtype}"
        message = f"{description} (attempt {attempt}/{max_attempts})"
        details = {"description": description, "max_attempts": max_attempts}
        if error is None:
            return self.info(event, message, attempt=attempt, details=details)
        # Failure reasons are often plain strings rather than exceptions
        error_type = type(error).__name__ if isinstance(error, BaseException) else "retryable"
        return self.error(event, f"{message}: {error}", error_type=error_type, attempt=attempt, details=details)

    def cluster_event(self, subtype: str, message: str = "", **details):
        return self.info(f"cluster_{subtype}", message, details=details)

    def close(self):
        if self._closed:
            return
        self.info("run_end", f"Run {self.run_id} finished after {time.monotonic() - self._t0:.1f}s")
        with self._lock:
            self._closed = True
            self._handle.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type:
            self.error("run_error", str(exc_val), error_type=exc_type.__name__)
        self.close()
        return False


_registry: Dict[str, RunLogger] = {}
_registry_lock = threading.Lock()


def get_logger(run_id: str, suite: str = "default", **kwargs) -> RunLogger:
    """The open logger for run_id, created on first use."""
    with _registry_lock:
        logger = _registry.get(run_id)
        if logger is None:
            logger = _registry[run_id] = RunLogger(run_id, suite, **kwargs)
        return logger


def close_all_loggers():
    with _registry_lock:
        while _registry:
            _, logger = _registry.popitem()
            logger.close()
