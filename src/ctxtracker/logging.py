"""JSONL event logging for ingestion observability."""

import json
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

DEFAULT_LOG_DIR = Path.home() / ".ctxtracker" / "logs"


@dataclass
class LogEntry:
    """A single log entry."""

    timestamp: str
    event: str
    project_id: str | None = None
    session_id: str | None = None
    path: str | None = None
    facts: int | None = None
    error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict, excluding None values."""
        data = asdict(self)
        return {k: v for k, v in data.items() if v is not None and v != {} and v != []}


class JSONLLogger:
    """Logger that writes structured events in JSONL format."""

    def __init__(
        self,
        log_dir: str | Path | None = None,
        filename: str = "events.jsonl",
        max_size_mb: float = 10.0,
    ) -> None:
        if log_dir is None:
            log_dir = DEFAULT_LOG_DIR
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.filename = filename
        self.max_size_bytes = int(max_size_mb * 1024 * 1024)
        self._current_project_id: str | None = None
        self._lock = threading.Lock()

    @property
    def log_path(self) -> Path:
        """Current log file path."""
        return self.log_dir / self.filename

    def set_project_id(self, project_id: str | None) -> None:
        """Set the project_id for all subsequent logs."""
        self._current_project_id = project_id

    def _rotate_if_needed(self) -> None:
        """Rotate log file if it exceeds max size."""
        if not self.log_path.exists():
            return

        if self.log_path.stat().st_size >= self.max_size_bytes:
            timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S_%f")
            rotated_name = f"{self.log_path.stem}_{timestamp}.jsonl"
            self.log_path.rename(self.log_dir / rotated_name)

    def _write(self, entry: LogEntry) -> None:
        """Write a log entry to the file."""
        with self._lock:
            self._rotate_if_needed()
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry.to_dict(), ensure_ascii=False) + "\n")

    def log(
        self,
        event: str,
        *,
        project_id: str | None = None,
        session_id: str | None = None,
        path: str | Path | None = None,
        facts: int | None = None,
        error: str | None = None,
        **extra: Any,
    ) -> None:
        """Log an event."""
        extra = {k: v for k, v in extra.items() if v is not None}
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            event=event,
            project_id=project_id or self._current_project_id,
            session_id=session_id,
            path=str(path) if path is not None else None,
            facts=facts,
            error=error,
            extra=extra if extra else {},
        )
        self._write(entry)

    def log_file_processed(
        self,
        path: str | Path,
        session_id: str,
        facts: int,
        *,
        failed: int = 0,
        token_count: int | None = None,
    ) -> None:
        """Log a successfully ingested log file."""
        self.log(
            "file_processed",
            path=path,
            session_id=session_id,
            facts=facts,
            failed=failed,
            token_count=token_count,
        )

    def log_file_skipped(self, path: str | Path, error: str) -> None:
        """Log a file that could not be read, parsed, or opened as a session."""
        self.log("file_skipped", path=path, error=error)

    def log_fact_failed(self, session_id: str | None, category: str, error: str) -> None:
        """Log a fact that could not be persisted."""
        self.log("fact_failed", session_id=session_id, error=error, category=category)

    def log_stale_marked(self, count: int) -> None:
        """Log the outcome of a staleness sweep."""
        self.log("facts_marked_stale", facts=count)

    def log_token_threshold(self, session_id: str, token_count: int, threshold: int) -> None:
        """Log a session whose token estimate crossed the warning threshold."""
        self.log(
            "token_threshold",
            session_id=session_id,
            token_count=token_count,
            threshold=threshold,
        )


# Global logger instance
_logger: JSONLLogger | None = None


def get_logger() -> JSONLLogger:
    """Get the global logger instance."""
    global _logger
    if _logger is None:
        _logger = JSONLLogger()
    return _logger


def configure_logger(log_dir: str | Path | None = None, max_size_mb: float = 10.0) -> JSONLLogger:
    """Configure and return the global logger."""
    global _logger
    _logger = JSONLLogger(log_dir=log_dir, max_size_mb=max_size_mb)
    return _logger
