"""Tracker configuration loader.

Loads settings from ~/.ctxtracker/config.json, then applies environment
variable overrides. Command-line flags are applied last by the CLI.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .models import DEFAULT_TOKEN_WARNING
from .store.pocketbase import DEFAULT_POCKETBASE_URL

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".ctxtracker" / "config.json"
BACKENDS = ("sqlite", "pocketbase")

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def default_logs_dir() -> Path:
    """Directory the coding assistant writes its conversation logs to."""
    return Path.home() / ".claude" / "logs"


def default_db_path() -> Path:
    data_home = os.getenv("XDG_DATA_HOME")
    base = Path(data_home) if data_home else Path.home() / ".local" / "share"
    return base / "ctxtracker" / "tracker.db"


@dataclass
class TrackerConfig:
    """Configuration for log monitoring and storage.

    Attributes:
        project_id: Project that ingested sessions and facts belong to.
        logs_dir: Directory watched for conversation logs.
        recursive: Also watch subdirectories of logs_dir.
        poll_interval: Seconds between polls of the fallback observer.
        force_polling: Always use the polling observer.
        extensions: Log file suffixes to ingest.
        backend: 'sqlite' or 'pocketbase'.
        db_path: SQLite database file.
        pocketbase_url: PocketBase server URL.
        token_warning_threshold: Token estimate that triggers a warning.
        event_log_dir: Directory for the JSONL event log (default location if None).
    """

    project_id: str = ""
    logs_dir: Path = field(default_factory=default_logs_dir)
    recursive: bool = True
    poll_interval: float = 2.0
    force_polling: bool = False
    extensions: list[str] = field(default_factory=lambda: [".json"])
    backend: str = "sqlite"
    db_path: Path = field(default_factory=default_db_path)
    pocketbase_url: str = DEFAULT_POCKETBASE_URL
    token_warning_threshold: int = DEFAULT_TOKEN_WARNING
    event_log_dir: Path | None = None

    def __post_init__(self) -> None:
        """Normalize paths and validate values."""
        self.logs_dir = Path(self.logs_dir).expanduser()
        self.db_path = Path(self.db_path).expanduser()
        if self.event_log_dir is not None:
            self.event_log_dir = Path(self.event_log_dir).expanduser()
        self.extensions = [
            ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in self.extensions
        ]

        if self.backend not in BACKENDS:
            raise ValueError(f"backend must be one of {', '.join(BACKENDS)}")
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        if self.token_warning_threshold < 1:
            raise ValueError("token_warning_threshold must be at least 1")
        if not self.extensions:
            raise ValueError("extensions must not be empty")


def load_config(config_path: Path | None = None) -> TrackerConfig:
    """Load TrackerConfig from a JSON file.

    The config file should have this structure:
    ```json
    {
      "tracker": {
        "project": "my-project",
        "logs_dir": "~/.claude/logs",
        "recursive": true,
        "poll_interval": 2.0,
        "backend": "sqlite",
        "db_path": "~/.local/share/ctxtracker/tracker.db",
        "pocketbase_url": "http://localhost:8090",
        "token_warning": 170000
      }
    }
    ```

    Args:
        config_path: Path to config file. Uses DEFAULT_CONFIG_PATH if None.

    Returns:
        TrackerConfig instance with loaded values.
    """
    path = config_path or DEFAULT_CONFIG_PATH

    if not path.exists():
        logger.debug("No config file at %s, using defaults", path)
        return TrackerConfig()

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        logger.warning("Invalid JSON in %s: %s. Using defaults.", path, e)
        return TrackerConfig()
    except OSError as e:
        logger.warning("Cannot read %s: %s. Using defaults.", path, e)
        return TrackerConfig()

    if not isinstance(data, dict):
        logger.warning("Config in %s is not an object. Using defaults.", path)
        return TrackerConfig()

    try:
        return _parse_config(data)
    except ValueError as e:
        logger.warning("Invalid config in %s: %s. Using defaults.", path, e)
        return TrackerConfig()


def _parse_config(data: dict[str, Any]) -> TrackerConfig:
    """Parse config dictionary into TrackerConfig.

    Args:
        data: Parsed JSON data.

    Returns:
        TrackerConfig instance.
    """
    tracker = data.get("tracker", {})
    if not isinstance(tracker, dict):
        tracker = {}

    kwargs: dict[str, Any] = {}

    if isinstance(tracker.get("project"), str):
        kwargs["project_id"] = tracker["project"]
    for key in ("logs_dir", "db_path", "event_log_dir"):
        if isinstance(tracker.get(key), str):
            kwargs[key] = Path(tracker[key])
    for key in ("recursive", "force_polling"):
        if isinstance(tracker.get(key), bool):
            kwargs[key] = tracker[key]
    if isinstance(tracker.get("poll_interval"), (int, float)):
        kwargs["poll_interval"] = float(tracker["poll_interval"])
    if isinstance(tracker.get("extensions"), list):
        kwargs["extensions"] = [str(ext) for ext in tracker["extensions"]]
    if isinstance(tracker.get("backend"), str):
        kwargs["backend"] = tracker["backend"]
    if isinstance(tracker.get("pocketbase_url"), str):
        kwargs["pocketbase_url"] = tracker["pocketbase_url"]
    if isinstance(tracker.get("token_warning"), int):
        kwargs["token_warning_threshold"] = tracker["token_warning"]

    return TrackerConfig(**kwargs)


def _env_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ValueError(f"{name} must be a boolean, got {value!r}")


def apply_env_overrides(config: TrackerConfig) -> TrackerConfig:
    """Return a copy of config with environment variables applied.

    Raises:
        ValueError: If a variable holds an invalid value.
    """
    kwargs: dict[str, Any] = {
        "project_id": config.project_id,
        "logs_dir": config.logs_dir,
        "recursive": config.recursive,
        "poll_interval": config.poll_interval,
        "force_polling": config.force_polling,
        "extensions": list(config.extensions),
        "backend": config.backend,
        "db_path": config.db_path,
        "pocketbase_url": config.pocketbase_url,
        "token_warning_threshold": config.token_warning_threshold,
        "event_log_dir": config.event_log_dir,
    }

    if value := os.getenv("CTXTRACKER_PROJECT"):
        kwargs["project_id"] = value
    if value := os.getenv("CTXTRACKER_LOGS_DIR"):
        kwargs["logs_dir"] = Path(value)
    if value := os.getenv("CTXTRACKER_DB_PATH"):
        kwargs["db_path"] = Path(value)
    if value := os.getenv("CTXTRACKER_BACKEND"):
        kwargs["backend"] = value.strip().lower()
    if value := os.getenv("CTXTRACKER_POLL_INTERVAL"):
        kwargs["poll_interval"] = float(value)
    if value := os.getenv("CTXTRACKER_RECURSIVE"):
        kwargs["recursive"] = _env_bool("CTXTRACKER_RECURSIVE", value)
    if value := os.getenv("CTXTRACKER_FORCE_POLLING"):
        kwargs["force_polling"] = _env_bool("CTXTRACKER_FORCE_POLLING", value)
    if value := os.getenv("CTXTRACKER_TOKEN_WARNING"):
        kwargs["token_warning_threshold"] = int(value)
    if value := os.getenv("POCKETBASE_URL"):
        kwargs["pocketbase_url"] = value

    return TrackerConfig(**kwargs)


def save_config(config: TrackerConfig, config_path: Path | None = None) -> None:
    """Save TrackerConfig to a JSON file, writing only non-default values.

    Args:
        config: The config to save.
        config_path: Path to write to. Uses DEFAULT_CONFIG_PATH if None.
    """
    path = config_path or DEFAULT_CONFIG_PATH

    # Ensure parent directory exists
    path.parent.mkdir(parents=True, exist_ok=True)

    defaults = TrackerConfig()
    tracker: dict[str, Any] = {}

    if config.project_id:
        tracker["project"] = config.project_id
    if config.logs_dir != defaults.logs_dir:
        tracker["logs_dir"] = str(config.logs_dir)
    if config.recursive != defaults.recursive:
        tracker["recursive"] = config.recursive
    if config.poll_interval != defaults.poll_interval:
        tracker["poll_interval"] = config.poll_interval
    if config.force_polling:
        tracker["force_polling"] = True
    if config.extensions != defaults.extensions:
        tracker["extensions"] = config.extensions
    if config.backend != defaults.backend:
        tracker["backend"] = config.backend
    if config.db_path != defaults.db_path:
        tracker["db_path"] = str(config.db_path)
    if config.pocketbase_url != defaults.pocketbase_url:
        tracker["pocketbase_url"] = config.pocketbase_url
    if config.token_warning_threshold != defaults.token_warning_threshold:
        tracker["token_warning"] = config.token_warning_threshold
    if config.event_log_dir is not None:
        tracker["event_log_dir"] = str(config.event_log_dir)

    data: dict[str, Any] = {"tracker": tracker} if tracker else {}

    try:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
    except OSError as e:
        logger.error("Failed to save config to %s: %s", path, e)
        raise
