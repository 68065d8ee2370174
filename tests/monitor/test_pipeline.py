"""Tests for IngestionPipeline."""

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from ctxtracker.logging import JSONLLogger
from ctxtracker.models import ConversationLog, FactCategory, Message, SessionRecord
from ctxtracker.monitor.pipeline import IngestionPipeline, summarize_log
from ctxtracker.monitor.watcher import DirectoryWatcher
from ctxtracker.store import Repository, RepositoryError, SqliteRepository

ASSISTANT_REPLY = "Decided to use SQLite. TODO: add migrations. Created database.js file."


def write_log(path: Path, messages: list[tuple[str, str]], conversation_id: str | None = "c1") -> Path:
    data: dict = {"messages": [{"role": role, "content": content} for role, content in messages]}
    if conversation_id:
        data["conversation_id"] = conversation_id
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


@pytest.fixture
def repository(tmp_path: Path) -> SqliteRepository:
    repo = SqliteRepository(tmp_path / "tracker.db")
    repo.init_db()
    yield repo
    repo.close()


@pytest.fixture
def pipeline(repository: SqliteRepository) -> IngestionPipeline:
    return IngestionPipeline("proj", repository)


@pytest.fixture
def log_file(tmp_path: Path) -> Path:
    return write_log(
        tmp_path / "session.json",
        [
            ("user", "Set up the database layer"),
            ("assistant", ASSISTANT_REPLY),
        ],
    )


class TestSummarizeLog:
    """Tests for session summaries."""

    def test_first_user_message(self):
        log = ConversationLog(messages=(
            Message("assistant", "Hi"),
            Message("user", "Fix the login page"),
            Message("user", "Also the footer"),
        ))
        assert summarize_log(log) == "Fix the login page"

    def test_long_message_truncated(self):
        log = ConversationLog(messages=(Message("user", "x" * 150),))
        summary = summarize_log(log)
        assert len(summary) == 100
        assert summary.endswith("...")

    def test_empty_log(self):
        assert summarize_log(ConversationLog()) == "Empty conversation"

    def test_no_user_message(self):
        log = ConversationLog(messages=(Message("assistant", "Hello"),))
        assert summarize_log(log) == "Conversation"


class TestProcessFile:
    """Tests for ingesting one log file."""

    def test_creates_session_and_facts(self, pipeline: IngestionPipeline, repository: SqliteRepository, log_file: Path):
        result = pipeline.process_file(log_file)

        assert result is not None
        assert result.facts_extracted == 3
        assert result.facts_failed == 0
        assert result.path == log_file

        session = repository.get_session(result.session_id)
        assert session.project_id == "proj"
        assert session.summary == "Set up the database layer"
        assert session.facts_extracted == 3
        expected_tokens = (len("Set up the database layer") + len(ASSISTANT_REPLY)) // 4
        assert session.token_count == expected_tokens == result.token_count
        assert session.session_end is None

    def test_facts_scored_on_ingest(self, pipeline: IngestionPipeline, repository: SqliteRepository, log_file: Path):
        result = pipeline.process_file(log_file)
        facts = repository.list_facts("proj")

        # Ties on importance list the newest fact first.
        assert [(f.category, f.importance) for f in facts] == [
            (FactCategory.DECISION, 5),
            (FactCategory.FILE_CHANGE, 4),
            (FactCategory.TODO, 4),
        ]
        assert all(f.content == ASSISTANT_REPLY for f in facts)
        assert all(f.session_id == result.session_id for f in facts)

    def test_only_assistant_messages_classified(self, pipeline: IngestionPipeline, repository: SqliteRepository, tmp_path: Path):
        path = write_log(
            tmp_path / "log.json",
            [
                ("user", "TODO: this is the user talking"),
                ("system", "Decided to be helpful"),
                ("assistant", "Note that the tests are slow"),
            ],
        )
        result = pipeline.process_file(path)

        assert result.facts_extracted == 1
        facts = repository.list_facts("proj")
        assert facts[0].category == FactCategory.INSIGHT
        # 3 + 1 (slow) + 1 (fresh)
        assert facts[0].importance == 5

    def test_malformed_file_skipped(self, pipeline: IngestionPipeline, repository: SqliteRepository, tmp_path: Path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")

        assert pipeline.process_file(path) is None
        assert repository.list_sessions("proj") == []

    def test_missing_file_skipped(self, pipeline: IngestionPipeline, tmp_path: Path):
        assert pipeline.process_file(tmp_path / "missing.json") is None

    def test_empty_conversation(self, pipeline: IngestionPipeline, repository: SqliteRepository, tmp_path: Path):
        path = write_log(tmp_path / "empty.json", [], conversation_id=None)
        result = pipeline.process_file(path)

        assert result.facts_extracted == 0
        assert result.token_count == 0
        assert repository.get_session(result.session_id).summary == "Empty conversation"

    def test_completed_fact_marked_stale_in_same_pass(self, pipeline: IngestionPipeline, repository: SqliteRepository, tmp_path: Path):
        path = write_log(tmp_path / "log.json", [("assistant", "TODO: fix bug - RESOLVED")])
        result = pipeline.process_file(path)

        assert result.facts_extracted == 1
        assert result.facts_marked_stale == 1
        assert repository.list_facts("proj") == []
        stale = repository.list_facts("proj", include_stale=True)
        assert len(stale) == 1 and stale[0].stale

    def test_reprocessing_duplicates_sessions_and_facts(self, pipeline: IngestionPipeline, repository: SqliteRepository, log_file: Path):
        """Processing the same file twice is not deduplicated."""
        first = pipeline.process_file(log_file)
        second = pipeline.process_file(log_file)

        assert first.session_id != second.session_id
        assert len(repository.list_sessions("proj")) == 2
        facts = repository.list_facts("proj")
        assert len(facts) == 6
        assert len({f.id for f in facts}) == 6
        assert {f.session_id for f in facts} == {first.session_id, second.session_id}

    def test_catch_up_twice_duplicates_sessions_and_facts(self, pipeline: IngestionPipeline, repository: SqliteRepository, tmp_path: Path):
        """Two catch-up passes over the same directory ingest every log twice."""
        logs_dir = tmp_path / "logs"
        logs_dir.mkdir()
        write_log(logs_dir / "session.json", [("user", "Set up the database layer"), ("assistant", ASSISTANT_REPLY)])
        watcher = DirectoryWatcher(logs_dir, pipeline.process_file)

        assert watcher.catch_up() == 1
        assert watcher.catch_up() == 1

        assert len(repository.list_sessions("proj")) == 2
        facts = repository.list_facts("proj")
        assert len(facts) == 6
        assert sorted(f.category.value for f in facts) == sorted(
            [FactCategory.DECISION.value, FactCategory.TODO.value, FactCategory.FILE_CHANGE.value] * 2
        )
        pairs = [(f.category, f.content) for f in facts]
        assert all(pairs.count(pair) == 2 for pair in pairs)

    def test_facts_filed_under_project(self, repository: SqliteRepository, log_file: Path):
        IngestionPipeline("other", repository).process_file(log_file)

        assert repository.list_facts("proj") == []
        assert len(repository.list_facts("other")) == 3


class TestFailures:
    """Tests for repository failures during ingestion."""

    def test_fact_failure_is_not_fatal(self, tmp_path: Path, log_file: Path):
        class FlakyRepository(SqliteRepository):
            def create_fact(self, project_id, category, content, importance, session_id=None, stale=False):
                if category is FactCategory.TODO:
                    raise RepositoryError("disk full")
                return super().create_fact(project_id, category, content, importance, session_id, stale)

        repository = FlakyRepository(tmp_path / "flaky.db")
        repository.init_db()
        try:
            result = IngestionPipeline("proj", repository).process_file(log_file)

            assert result.facts_extracted == 2
            assert result.facts_failed == 1
            assert repository.get_session(result.session_id).facts_extracted == 2
            categories = {f.category for f in repository.list_facts("proj")}
            assert categories == {FactCategory.DECISION, FactCategory.FILE_CHANGE}
        finally:
            repository.close()

    def test_session_create_failure_skips_file(self, log_file: Path):
        repository = MagicMock(spec=Repository)
        repository.create_session.side_effect = RepositoryError("server down")

        assert IngestionPipeline("proj", repository).process_file(log_file) is None
        repository.create_fact.assert_not_called()

    def test_session_update_failure_is_logged(self, tmp_path: Path, log_file: Path):
        repository = MagicMock(spec=Repository)
        repository.create_session.return_value = SessionRecord(id="s1", project_id="proj", summary="x")
        repository.update_session.side_effect = RepositoryError("conflict")
        repository.list_facts.return_value = []
        event_log = JSONLLogger(log_dir=tmp_path / "events")

        result = IngestionPipeline("proj", repository, event_log=event_log).process_file(log_file)

        assert result is not None
        assert result.facts_extracted == 3
        events = [json.loads(line)["event"] for line in event_log.log_path.read_text().splitlines()]
        assert "session_update_failed" in events
        assert events[-1] == "file_processed"

    def test_sweep_failure_returns_zero(self):
        repository = MagicMock(spec=Repository)
        repository.list_facts.side_effect = RepositoryError("timeout")

        assert IngestionPipeline("proj", repository).sweep_stale() == 0


class TestSweepStale:
    """Tests for the staleness sweep."""

    def test_sweeps_whole_project(self, pipeline: IngestionPipeline, repository: SqliteRepository):
        blocker = repository.create_fact("proj", FactCategory.BLOCKER, "Blocked by the vendor API", 5)
        decision = repository.create_fact("proj", FactCategory.DECISION, "Going with gRPC", 4)
        other = repository.create_fact("elsewhere", FactCategory.BLOCKER, "Blocked by CI", 5)

        later = datetime.now(timezone.utc) + timedelta(days=5)
        assert pipeline.sweep_stale(now=later) == 1

        assert repository.get_fact(blocker.id).stale
        assert not repository.get_fact(decision.id).stale
        assert not repository.get_fact(other.id).stale

    def test_stale_facts_are_not_revisited(self, pipeline: IngestionPipeline, repository: SqliteRepository):
        repository.create_fact("proj", FactCategory.TODO, "TODO: done with this", 3)

        assert pipeline.sweep_stale() == 1
        assert pipeline.sweep_stale() == 0


class TestEvents:
    """Tests for structured event logging."""

    def test_file_processed_event(self, repository: SqliteRepository, log_file: Path, tmp_path: Path):
        event_log = JSONLLogger(log_dir=tmp_path / "events")
        result = IngestionPipeline("proj", repository, event_log=event_log).process_file(log_file)

        entries = [json.loads(line) for line in event_log.log_path.read_text().splitlines()]
        processed = [e for e in entries if e["event"] == "file_processed"]
        assert len(processed) == 1
        assert processed[0]["project_id"] == "proj"
        assert processed[0]["session_id"] == result.session_id
        assert processed[0]["facts"] == 3
        assert processed[0]["path"] == str(log_file)

    def test_file_skipped_event(self, repository: SqliteRepository, tmp_path: Path):
        event_log = JSONLLogger(log_dir=tmp_path / "events")
        path = tmp_path / "bad.json"
        path.write_text('{"messages": 3}')

        IngestionPipeline("proj", repository, event_log=event_log).process_file(path)

        entry = json.loads(event_log.log_path.read_text().splitlines()[0])
        assert entry["event"] == "file_skipped"
        assert "messages" in entry["error"]

    def test_token_threshold_event(self, repository: SqliteRepository, log_file: Path, tmp_path: Path):
        event_log = JSONLLogger(log_dir=tmp_path / "events")
        pipeline = IngestionPipeline("proj", repository, event_log=event_log, token_warning_threshold=5)

        pipeline.process_file(log_file)

        entries = [json.loads(line) for line in event_log.log_path.read_text().splitlines()]
        threshold = [e for e in entries if e["event"] == "token_threshold"]
        assert len(threshold) == 1
        assert threshold[0]["extra"]["threshold"] == 5
