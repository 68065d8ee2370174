"""CLI commands for watching logs and inspecting tracked facts.

Provides subcommands for watching the log directory, scanning it once,
listing facts and sessions, and running a staleness sweep.
"""

import argparse
import logging
import sys
from collections.abc import Callable
from pathlib import Path

from .config import TrackerConfig, apply_env_overrides, load_config
from .logging import configure_logger
from .models import FactCategory, FactStats
from .monitor import DirectoryWatcher, IngestionPipeline, WatchInitError
from .store import PocketBaseRepository, Repository, RepositoryError, SqliteRepository

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_WATCH_ERROR = 2


class ConfigError(Exception):
    """Raised when settings are missing or invalid."""

    pass


def _resolve_config(args: argparse.Namespace) -> TrackerConfig:
    """Build the effective config: file, then environment, then flags."""
    try:
        config = apply_env_overrides(load_config(args.config))
    except ValueError as e:
        raise ConfigError(str(e)) from e

    if args.project:
        config.project_id = args.project
    if args.logs_dir:
        config.logs_dir = Path(args.logs_dir).expanduser()
    if args.db:
        config.db_path = Path(args.db).expanduser()
    if args.backend:
        config.backend = args.backend

    if not config.project_id:
        raise ConfigError("No project set. Use --project or CTXTRACKER_PROJECT.")
    return config


def _open_repository(config: TrackerConfig) -> Repository:
    """Open the configured storage backend."""
    if config.backend == "pocketbase":
        repository = PocketBaseRepository(config.pocketbase_url)
        if not repository.health_check():
            logger.warning("PocketBase at %s did not answer the health check", config.pocketbase_url)
        return repository

    repository = SqliteRepository(config.db_path)
    repository.init_db()
    return repository


def _build_pipeline(config: TrackerConfig, repository: Repository) -> IngestionPipeline:
    return IngestionPipeline(
        config.project_id,
        repository,
        event_log=configure_logger(config.event_log_dir),
        token_warning_threshold=config.token_warning_threshold,
    )


def _build_watcher(config: TrackerConfig, handler: Callable[[Path], object]) -> DirectoryWatcher:
    return DirectoryWatcher(
        config.logs_dir,
        handler,
        recursive=config.recursive,
        poll_interval=config.poll_interval,
        extensions=config.extensions,
        force_polling=config.force_polling,
    )


def _truncate(text: str, width: int) -> str:
    if len(text) > width:
        return text[: width - 3] + "..."
    return text


def cmd_watch(args: argparse.Namespace, config: TrackerConfig, repository: Repository) -> int:
    """Process existing logs, then watch for new ones until interrupted."""
    pipeline = _build_pipeline(config, repository)
    watcher = _build_watcher(config, pipeline.process_file)

    try:
        watcher.start()
    except WatchInitError as e:
        print(f"Error: {e}")
        return EXIT_WATCH_ERROR

    event_log = pipeline.event_log
    if event_log:
        event_log.log(
            "monitor_started",
            path=config.logs_dir,
            observer=watcher.observer_kind,
            recursive=config.recursive,
        )
    print(f"Watching {config.logs_dir} for project '{config.project_id}' (Ctrl-C to stop)")

    try:
        watcher.catch_up()
        watcher.run_forever()
    except KeyboardInterrupt:
        print("\nStopping...")
    finally:
        watcher.stop()
        if event_log:
            event_log.log("monitor_stopped", path=config.logs_dir)

    return EXIT_OK


def cmd_scan(args: argparse.Namespace, config: TrackerConfig, repository: Repository) -> int:
    """Process every existing log file once, without watching."""
    if not config.logs_dir.is_dir():
        print(f"Error: Log directory does not exist: {config.logs_dir}")
        return EXIT_CONFIG_ERROR

    pipeline = _build_pipeline(config, repository)
    results = []

    def handle(path: Path) -> None:
        result = pipeline.process_file(path)
        if result is not None:
            results.append(result)

    scanned = _build_watcher(config, handle).catch_up()

    facts = sum(r.facts_extracted for r in results)
    stale = sum(r.facts_marked_stale for r in results)
    print(f"Scanned {scanned} file(s): {len(results)} session(s), {facts} fact(s), {stale} marked stale")
    skipped = scanned - len(results)
    if skipped:
        print(f"Skipped {skipped} file(s); see the log for details")
    return EXIT_OK


def cmd_facts(args: argparse.Namespace, config: TrackerConfig, repository: Repository) -> int:
    """List facts for the project."""
    if args.category:
        try:
            category = FactCategory.parse(args.category)
        except ValueError as e:
            print(f"Error: {e}")
            return EXIT_CONFIG_ERROR
        facts = repository.list_facts_by_category(config.project_id, category, include_stale=args.all)
    else:
        facts = repository.list_facts(config.project_id, include_stale=args.all)

    if not facts:
        print("No facts found.")
        return EXIT_OK

    print(f"\n{'Importance':<12} {'Category':<12} {'Age':<6} Content")
    print("-" * 80)
    for fact in facts:
        marker = " (stale)" if fact.stale else ""
        content = _truncate(fact.content, 50) + marker
        print(
            f"{fact.importance_stars():<12} {fact.category.display_name:<12} "
            f"{str(fact.age_days()) + 'd':<6} {content}"
        )

    stats = FactStats.from_facts(facts)
    print(f"\nTotal: {stats.total} fact(s), {stats.high_importance} high importance, {stats.stale} stale")
    return EXIT_OK


def cmd_sessions(args: argparse.Namespace, config: TrackerConfig, repository: Repository) -> int:
    """List ingested sessions for the project."""
    sessions = repository.list_sessions(config.project_id)

    if not sessions:
        print("No sessions found.")
        return EXIT_OK

    print(f"\n{'Started':<17} {'Facts':>5} {'Tokens':>8} {'Ctx %':>6}  Summary")
    print("-" * 80)
    for session in sessions:
        started = session.session_start.strftime("%Y-%m-%d %H:%M")
        flag = "!" if session.is_near_limit(config.token_warning_threshold) else " "
        print(
            f"{started:<17} {session.facts_extracted:>5} {session.token_count:>8} "
            f"{session.token_percentage():>5.1f}%{flag} {_truncate(session.summary, 40)}"
        )

    print(f"\nTotal: {len(sessions)} session(s)")
    return EXIT_OK


def cmd_sweep(args: argparse.Namespace, config: TrackerConfig, repository: Repository) -> int:
    """Mark stale facts without ingesting anything."""
    pipeline = _build_pipeline(config, repository)
    marked = pipeline.sweep_stale()
    print(f"Marked {marked} fact(s) stale")
    return EXIT_OK


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-p", "--project", help="Project id (overrides config)")
    parser.add_argument("--logs-dir", help="Directory of conversation logs")
    parser.add_argument("--db", help="SQLite database path")
    parser.add_argument(
        "--backend",
        choices=["sqlite", "pocketbase"],
        help="Storage backend",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Config file (default: ~/.ctxtracker/config.json)",
    )
    # SUPPRESS keeps a top-level -v from being reset by the subcommand default
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        default=argparse.SUPPRESS,
        help="Enable debug logging",
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the ctxtracker CLI."""
    parser = argparse.ArgumentParser(
        prog="ctxtracker",
        description="Extract project facts from coding-assistant conversation logs",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Sub-command help")

    # watch command
    watch_parser = subparsers.add_parser("watch", help="Process logs and watch for new ones")
    _add_common_arguments(watch_parser)

    # scan command
    scan_parser = subparsers.add_parser("scan", help="Process existing logs once")
    _add_common_arguments(scan_parser)

    # facts command
    facts_parser = subparsers.add_parser("facts", help="List extracted facts")
    _add_common_arguments(facts_parser)
    facts_parser.add_argument(
        "-a", "--all",
        action="store_true",
        help="Include stale facts",
    )
    facts_parser.add_argument("-c", "--category", help="Only show one category")

    # sessions command
    sessions_parser = subparsers.add_parser("sessions", help="List ingested sessions")
    _add_common_arguments(sessions_parser)

    # sweep command
    sweep_parser = subparsers.add_parser("sweep", help="Mark stale facts")
    _add_common_arguments(sweep_parser)

    return parser


def run_cli(argv: list[str] | None = None) -> int:
    """Run the CLI with given arguments.

    Args:
        argv: Command-line arguments. Uses sys.argv[1:] if None.

    Returns:
        Exit code (0 for success, non-zero for error).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_OK

    commands = {
        "watch": cmd_watch,
        "scan": cmd_scan,
        "facts": cmd_facts,
        "sessions": cmd_sessions,
        "sweep": cmd_sweep,
    }

    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return EXIT_CONFIG_ERROR

    try:
        config = _resolve_config(args)
    except ConfigError as e:
        print(f"Error: {e}")
        return EXIT_CONFIG_ERROR

    try:
        repository = _open_repository(config)
    except RepositoryError as e:
        print(f"Error: {e}")
        return EXIT_CONFIG_ERROR

    try:
        return handler(args, config, repository)
    except RepositoryError as e:
        print(f"Error: {e}")
        return EXIT_CONFIG_ERROR
    finally:
        repository.close()


if __name__ == "__main__":
    sys.exit(run_cli())
