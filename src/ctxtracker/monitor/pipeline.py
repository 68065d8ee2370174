"""Ingestion pipeline: log file -> session -> facts -> staleness sweep."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from ..logging import JSONLLogger
from ..models import DEFAULT_TOKEN_WARNING, ConversationLog
from ..store.base import Repository, RepositoryError
from .classifier import FactClassifier
from .parser import MalformedLog, estimate_tokens, read_conversation_log
from .patterns import PatternRegistry
from .scorer import ImportanceScorer, StalenessDetector

logger = logging.getLogger(__name__)

SUMMARY_MAX_CHARS = 100


def summarize_log(log: ConversationLog) -> str:
    """Summary for a session: the first user message, shortened."""
    if log.is_empty:
        return "Empty conversation"
    users = log.by_role("user")
    if not users:
        return "Conversation"
    content = users[0].content
    if len(content) > SUMMARY_MAX_CHARS:
        return content[: SUMMARY_MAX_CHARS - 3] + "..."
    return content


@dataclass
class IngestionResult:
    """Outcome of ingesting one conversation log."""

    session_id: str
    facts_extracted: int
    facts_failed: int
    token_count: int
    facts_marked_stale: int
    path: Path | None = None


class IngestionPipeline:
    """Turns conversation logs into sessions and facts for one project.

    Files are processed one at a time. A file that cannot be read or parsed
    is skipped; a fact that cannot be saved is skipped. Re-processing a file
    creates a new session and a new copy of its facts.
    """

    def __init__(
        self,
        project_id: str,
        repository: Repository,
        registry: PatternRegistry | None = None,
        scorer: ImportanceScorer | None = None,
        detector: StalenessDetector | None = None,
        event_log: JSONLLogger | None = None,
        token_warning_threshold: int = DEFAULT_TOKEN_WARNING,
    ) -> None:
        """Initialize the pipeline.

        Args:
            project_id: Project that sessions and facts are filed under.
            repository: Storage for sessions and facts.
            registry: Compiled matching rules; built once if not given.
            scorer: Importance scorer; seeded from the registry's base
                importances if not given.
            detector: Staleness detector.
            event_log: Optional structured event log.
            token_warning_threshold: Token estimate above which a session
                is reported as nearing the context limit.
        """
        self.project_id = project_id
        self.repository = repository
        self.registry = registry or PatternRegistry()
        self.classifier = FactClassifier(self.registry)
        self.scorer = scorer or ImportanceScorer(
            {rule.category: rule.base_importance for rule in self.registry.rules}
        )
        self.detector = detector or StalenessDetector()
        self.event_log = event_log
        if event_log is not None:
            event_log.set_project_id(project_id)
        self.token_warning_threshold = token_warning_threshold

    def process_file(self, path: Path) -> IngestionResult | None:
        """Ingest one log file.

        Args:
            path: The log file.

        Returns:
            The result, or None if the file was skipped.
        """
        path = Path(path)
        logger.debug("Processing log file: %s", path)

        try:
            log = read_conversation_log(path)
        except OSError as e:
            self._skip(path, f"Failed to read log file: {e}")
            return None
        except MalformedLog as e:
            self._skip(path, f"Failed to parse conversation log: {e}")
            return None

        return self.ingest(log, path=path)

    def ingest(self, log: ConversationLog, path: Path | None = None) -> IngestionResult | None:
        """Ingest an already parsed log.

        Returns:
            The result, or None if no session could be created.
        """
        now = datetime.now(timezone.utc)
        token_count = estimate_tokens(log)

        try:
            session = self.repository.create_session(
                self.project_id,
                summarize_log(log),
                token_count=token_count,
                session_start=now,
            )
        except RepositoryError as e:
            self._skip(path, f"Failed to create session: {e}")
            return None

        if token_count > self.token_warning_threshold:
            logger.warning(
                "Session %s is at %d estimated tokens (threshold %d)",
                session.id, token_count, self.token_warning_threshold,
            )
            if self.event_log:
                self.event_log.log_token_threshold(session.id, token_count, self.token_warning_threshold)

        saved, failed = self._extract_facts(log, session.id, now)
        logger.info("Extracted %d facts from session %s", saved, session.id)

        self._update_session(session.id, saved, token_count)
        marked = self.sweep_stale()

        if self.event_log:
            self.event_log.log_file_processed(
                path or "<memory>", session.id, saved, failed=failed, token_count=token_count
            )

        return IngestionResult(
            session_id=session.id,
            facts_extracted=saved,
            facts_failed=failed,
            token_count=token_count,
            facts_marked_stale=marked,
            path=path,
        )

    def _extract_facts(self, log: ConversationLog, session_id: str, now: datetime) -> tuple[int, int]:
        saved = failed = 0
        for message in log.by_role("assistant"):
            for candidate in self.classifier.extract(message.content):
                importance = self.scorer.score(candidate.category, candidate.content, now, now)
                try:
                    self.repository.create_fact(
                        self.project_id,
                        candidate.category,
                        candidate.content,
                        importance,
                        session_id=session_id,
                    )
                    saved += 1
                except RepositoryError as e:
                    failed += 1
                    logger.warning("Failed to save fact: %s", e)
                    if self.event_log:
                        self.event_log.log_fact_failed(session_id, candidate.category.value, str(e))
        return saved, failed

    def _update_session(self, session_id: str, facts: int, token_count: int) -> None:
        try:
            self.repository.get_session(session_id)
            self.repository.update_session(
                session_id, {"facts_extracted": facts, "token_count": token_count}
            )
        except RepositoryError as e:
            logger.warning("Failed to update session %s: %s", session_id, e)
            if self.event_log:
                self.event_log.log("session_update_failed", session_id=session_id, error=str(e))

    def sweep_stale(self, now: datetime | None = None) -> int:
        """Mark every stale, not-yet-stale fact of the project.

        Returns:
            Number of facts marked stale.
        """
        try:
            facts = self.repository.list_facts(self.project_id, include_stale=False)
        except RepositoryError as e:
            logger.warning("Failed to list facts for staleness sweep: %s", e)
            return 0

        marked = 0
        for fact in facts:
            if not self.detector.is_stale(fact, now):
                continue
            try:
                self.repository.mark_fact_stale(fact.id)
                marked += 1
                logger.debug("Marked fact %s as stale", fact.id)
            except RepositoryError as e:
                logger.warning("Failed to mark fact %s stale: %s", fact.id, e)

        if marked:
            logger.info("Marked %d fact(s) stale", marked)
            if self.event_log:
                self.event_log.log_stale_marked(marked)
        return marked

    def _skip(self, path: Path | None, reason: str) -> None:
        logger.warning("Skipping %s: %s", path or "log", reason)
        if self.event_log:
            self.event_log.log_file_skipped(path or "<memory>", reason)
