"""Tests for SqliteRepository."""

import threading
from datetime import datetime, timezone
from pathlib import Path

import pytest

from ctxtracker.models import FactCategory
from ctxtracker.store import NotFound, RepositoryError, SqliteRepository


@pytest.fixture
def repo(tmp_path: Path) -> SqliteRepository:
    """Create a SqliteRepository with a temporary database."""
    repo = SqliteRepository(tmp_path / "tracker.db")
    repo.init_db()
    yield repo
    repo.close()


class TestSqliteRepositoryInit:
    """Tests for repository initialization."""

    def test_creates_db_directory(self, tmp_path: Path):
        """Parent directories are created if they don't exist."""
        nested_path = tmp_path / "nested" / "dir" / "tracker.db"
        repo = SqliteRepository(nested_path)
        repo.init_db()
        assert nested_path.exists()
        repo.close()

    def test_creates_tables(self, repo: SqliteRepository):
        conn = repo._get_connection()
        names = {
            row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
        }
        assert {"session_history", "extracted_facts"} <= names

    def test_init_db_idempotent(self, repo: SqliteRepository):
        repo.init_db()
        repo.init_db()  # Should not raise

    def test_in_memory(self):
        repo = SqliteRepository(":memory:")
        repo.init_db()
        session = repo.create_session("proj", "hello")
        assert repo.get_session(session.id).summary == "hello"
        repo.close()

    def test_close_idempotent(self, tmp_path: Path):
        repo = SqliteRepository(tmp_path / "x.db")
        repo.init_db()
        repo.close()
        repo.close()


class TestSessions:
    """Tests for session records."""

    def test_create_session(self, repo: SqliteRepository):
        start = datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)
        session = repo.create_session("proj", "Fix login", token_count=120, session_start=start)

        assert len(session.id) == 32
        assert session.project_id == "proj"
        assert session.summary == "Fix login"
        assert session.facts_extracted == 0
        assert session.token_count == 120
        assert session.session_start == start
        assert session.session_end is None
        assert session.created_at.tzinfo is not None

    def test_get_missing_session(self, repo: SqliteRepository):
        with pytest.raises(NotFound):
            repo.get_session("nope")

    def test_not_found_is_repository_error(self):
        assert issubclass(NotFound, RepositoryError)

    def test_update_session(self, repo: SqliteRepository):
        session = repo.create_session("proj", "s")
        end = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)

        updated = repo.update_session(
            session.id, {"facts_extracted": 4, "token_count": 900, "session_end": end}
        )

        assert updated.facts_extracted == 4
        assert updated.token_count == 900
        assert updated.session_end == end
        assert updated.summary == "s"
        assert updated.updated_at >= session.updated_at

    def test_update_unknown_field(self, repo: SqliteRepository):
        session = repo.create_session("proj", "s")
        with pytest.raises(RepositoryError, match="Unknown session fields"):
            repo.update_session(session.id, {"project": "other"})

    def test_update_missing_session(self, repo: SqliteRepository):
        with pytest.raises(NotFound):
            repo.update_session("nope", {"token_count": 1})

    def test_list_sessions_newest_first(self, repo: SqliteRepository):
        older = repo.create_session("proj", "old", session_start=datetime(2024, 1, 1, tzinfo=timezone.utc))
        newer = repo.create_session("proj", "new", session_start=datetime(2024, 2, 1, tzinfo=timezone.utc))
        repo.create_session("other", "elsewhere")

        assert [s.id for s in repo.list_sessions("proj")] == [newer.id, older.id]


class TestFacts:
    """Tests for fact records."""

    def test_create_fact(self, repo: SqliteRepository):
        fact = repo.create_fact("proj", FactCategory.DECISION, "Going with Rust", 4, session_id="s1")

        assert fact.project_id == "proj"
        assert fact.category == FactCategory.DECISION
        assert fact.content == "Going with Rust"
        assert fact.importance == 4
        assert fact.session_id == "s1"
        assert fact.stale is False

    def test_importance_clamped(self, repo: SqliteRepository):
        assert repo.create_fact("proj", FactCategory.TODO, "a", 9).importance == 5
        assert repo.create_fact("proj", FactCategory.TODO, "b", -2).importance == 1

    def test_get_missing_fact(self, repo: SqliteRepository):
        with pytest.raises(NotFound):
            repo.get_fact("nope")

    def test_list_facts_order(self, repo: SqliteRepository):
        """Descending importance, then newest first."""
        low = repo.create_fact("proj", FactCategory.INSIGHT, "low", 2)
        first_high = repo.create_fact("proj", FactCategory.BLOCKER, "first high", 5)
        second_high = repo.create_fact("proj", FactCategory.BLOCKER, "second high", 5)

        assert [f.id for f in repo.list_facts("proj")] == [second_high.id, first_high.id, low.id]

    def test_list_facts_excludes_stale(self, repo: SqliteRepository):
        fresh = repo.create_fact("proj", FactCategory.TODO, "TODO: a", 3)
        old = repo.create_fact("proj", FactCategory.TODO, "TODO: b", 3, stale=True)

        assert [f.id for f in repo.list_facts("proj")] == [fresh.id]
        assert {f.id for f in repo.list_facts("proj", include_stale=True)} == {fresh.id, old.id}

    def test_list_facts_by_project(self, repo: SqliteRepository):
        repo.create_fact("proj", FactCategory.TODO, "TODO: a", 3)
        repo.create_fact("other", FactCategory.TODO, "TODO: b", 3)
        assert len(repo.list_facts("proj")) == 1

    def test_mark_fact_stale(self, repo: SqliteRepository):
        fact = repo.create_fact("proj", FactCategory.BLOCKER, "Blocked by review", 5)
        marked = repo.mark_fact_stale(fact.id)

        assert marked.stale is True
        assert repo.get_fact(fact.id).stale is True
        assert repo.list_facts("proj") == []

    def test_mark_missing_fact(self, repo: SqliteRepository):
        with pytest.raises(NotFound):
            repo.mark_fact_stale("nope")

    def test_list_facts_by_category(self, repo: SqliteRepository):
        repo.create_fact("proj", FactCategory.TODO, "TODO: a", 3)
        dep = repo.create_fact("proj", FactCategory.DEPENDENCY, "pip install rich", 4)

        facts = repo.list_facts_by_category("proj", FactCategory.DEPENDENCY)
        assert [f.id for f in facts] == [dep.id]


class TestLifecycle:
    """Tests for persistence and concurrent use."""

    def test_close_and_reopen(self, tmp_path: Path):
        db_path = tmp_path / "tracker.db"
        repo1 = SqliteRepository(db_path)
        repo1.init_db()
        fact = repo1.create_fact("proj", FactCategory.INSIGHT, "Note that x", 3)
        repo1.close()

        repo2 = SqliteRepository(db_path)
        repo2.init_db()
        assert repo2.get_fact(fact.id).content == "Note that x"
        repo2.close()

    def test_shared_across_threads(self, repo: SqliteRepository):
        def write(n: int) -> None:
            for i in range(10):
                repo.create_fact("proj", FactCategory.TODO, f"TODO: {n}-{i}", 3)

        threads = [threading.Thread(target=write, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(repo.list_facts("proj")) == 40

    def test_database_error_wrapped(self, tmp_path: Path):
        repo = SqliteRepository(tmp_path / "uninitialized.db")
        with pytest.raises(RepositoryError):
            repo.list_facts("proj")
        repo.close()
