"""Directory watcher for conversation log files.

Uses the platform's native file-system observer and falls back to a polling
observer when the native one cannot be started. Events are queued and handed
to the handler one file at a time on the watching thread.
"""

import logging
import os
import queue
import threading
from collections.abc import Callable, Iterable
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver
from watchdog.observers.polling import PollingObserver

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_EXTENSIONS = (".json",)


class WatchInitError(OSError):
    """Raised when the watched directory cannot be observed."""

    pass


def _as_path(raw: str | bytes) -> Path:
    return Path(os.fsdecode(raw))


class _QueueingHandler(FileSystemEventHandler):
    """Puts created, modified, and moved-in files on a queue."""

    def __init__(self, events: "queue.Queue[Path]", accepts: Callable[[Path], bool]) -> None:
        super().__init__()
        self._events = events
        self._accepts = accepts

    def _enqueue(self, raw_path: str | bytes) -> None:
        path = _as_path(raw_path)
        if self._accepts(path):
            self._events.put(path)

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._enqueue(event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._enqueue(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        # A file renamed into place is a new file under its destination name.
        if not event.is_directory:
            self._enqueue(event.dest_path)


class DirectoryWatcher:
    """Watches a directory and calls a handler for each affected log file.

    Duplicate OS events for one change are not suppressed; the handler may be
    called more than once for the same file.
    """

    def __init__(
        self,
        directory: Path,
        handler: Callable[[Path], object],
        *,
        recursive: bool = True,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        extensions: Iterable[str] = DEFAULT_EXTENSIONS,
        force_polling: bool = False,
    ) -> None:
        """Initialize the watcher.

        Args:
            directory: Directory to observe.
            handler: Called with the path of each created or modified file.
            recursive: Also observe subdirectories.
            poll_interval: Polling period of the fallback observer, and the
                longest the event loop waits before re-checking for stop.
            extensions: File suffixes to accept (case-insensitive).
            force_polling: Skip the native observer.
        """
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self.directory = Path(directory).expanduser()
        self.handler = handler
        self.recursive = recursive
        self.poll_interval = poll_interval
        self.extensions = tuple(ext.lower() for ext in extensions)
        self.force_polling = force_polling

        self._events: queue.Queue[Path] = queue.Queue()
        self._stop_event = threading.Event()
        self._observer: BaseObserver | None = None
        self._observer_lock = threading.Lock()
        self.observer_kind: str | None = None

    def accepts(self, path: Path) -> bool:
        """Check whether a path is a log file this watcher handles."""
        return path.suffix.lower() in self.extensions

    @property
    def is_watching(self) -> bool:
        return self._observer is not None

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def start(self) -> None:
        """Start observing the directory.

        Raises:
            WatchInitError: If the directory is missing or no observer could
                be started.
        """
        if not self.directory.is_dir():
            raise WatchInitError(f"Watch directory does not exist: {self.directory}")

        self._stop_event.clear()
        handler =_QueueingHandler(self._events, self.accepts)

        if not self.force_polling:
            try:
                self._start_observer(Observer(), handler, "native")
                return
            except OSError as e:
                logger.warning("Native file watcher unavailable (%s), falling back to polling", e)

        try:
            self._start_observer(PollingObserver(timeout=self.poll_interval), handler, "polling")
        except OSError as e:
            raise WatchInitError(f"Cannot watch {self.directory}: {e}") from e

    def _start_observer(self, observer: BaseObserver, handler: FileSystemEventHandler, kind: str) -> None:
        observer.schedule(handler, str(self.directory), recursive=self.recursive)
        observer.start()
        with self._observer_lock:
            self._observer = observer
            self.observer_kind = kind
        logger.info("Watching %s (%s observer, recursive=%s)", self.directory, kind, self.recursive)

    def catch_up(self) -> int:
        """Hand every pre-existing log file in the directory to the handler once.

        Only the top level of the directory is scanned, in directory order.

        Returns:
            Number of files handed to the handler.
        """
        count = 0
        try:
            entries = list(self.directory.iterdir())
        except OSError as e:
            logger.warning("Cannot list %s: %s", self.directory, e)
            return 0

        for path in entries:
            if self.stop_requested:
                break
            if path.is_file() and self.accepts(path):
                self._dispatch(path)
                count += 1

        logger.info("Processed %d existing log file(s)", count)
        return count

    def run_forever(self) -> None:
        """Process queued events until stop() is called."""
        while not self.stop_requested:
            try:
                path = self._events.get(timeout=self.poll_interval)
            except queue.Empty:
                continue
            if self.stop_requested:
                break
            logger.info("New/modified log file detected: %s", path)
            self._dispatch(path)

    def run(self) -> None:
        """Start, catch up, and process events until stopped (blocking)."""
        self.start()
        try:
            self.catch_up()
            self.run_forever()
        finally:
            self.stop()

    def stop(self) -> None:
        """Stop the event loop and the observer. Safe to call repeatedly."""
        self._stop_event.set()
        with self._observer_lock:
            observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            if observer is not threading.current_thread():
                observer.join()
            logger.info("Stopped watching %s", self.directory)

    def _dispatch(self, path: Path) -> None:
        try:
            self.handler(path)
        except Exception:
            logger.exception("Handler failed for %s", path)


class BackgroundMonitor:
    """Runs a DirectoryWatcher on a dedicated daemon thread.

    start() starts the observer on the calling thread so WatchInitError
    reaches the caller; catch-up and the event loop then run on the worker.
    stop() signals the loop and waits for the worker to exit.
    """

    def __init__(self, watcher: DirectoryWatcher, name: str = "ctxtracker-monitor") -> None:
        self.watcher = watcher
        self.name = name
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start watching in the background.

        Raises:
            WatchInitError: If the watcher cannot be started.
            RuntimeError: If the monitor is already running.
        """
        if self.is_running:
            raise RuntimeError("Monitor is already running")
        self.watcher.start()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        logger.info("Background monitor thread started")

    def _run(self) -> None:
        try:
            self.watcher.catch_up()
            self.watcher.run_forever()
        except Exception:
            logger.exception("Monitor error")
        finally:
            self.watcher.stop()

    def stop(self, timeout: float | None = None) -> bool:
        """Stop the monitor.

        Args:
            timeout: Seconds to wait for the worker; None waits indefinitely.

        Returns:
            True if the worker has exited.
        """
        self.watcher.stop()
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()
