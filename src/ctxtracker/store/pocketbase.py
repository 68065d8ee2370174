"""PocketBase HTTP storage for sessions and extracted facts."""

import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from ..models import ExtractedFact, FactCategory, SessionRecord, clamp_importance
from .base import NotFound, Repository, RepositoryError, validate_session_patch

logger = logging.getLogger(__name__)

DEFAULT_POCKETBASE_URL = "http://localhost:8090"
SESSIONS = "session_history"
FACTS = "extracted_facts"
PER_PAGE = 500


def _format_time(value: datetime) -> str:
    # PocketBase datetime format: "2024-01-01 12:00:00.000Z"
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%d %H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def _parse_time(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _quote(value: str) -> str:
    """Quote a value for use inside a PocketBase filter expression."""
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


class PocketBaseRepository(Repository):
    """Repository backed by a PocketBase server's records API."""

    def __init__(
        self,
        base_url: str = DEFAULT_POCKETBASE_URL,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: PocketBase server URL.
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport (used by tests).
        """
        self.base_url = base_url.rstrip("/")
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
        )

    def _records_url(self, collection: str, record_id: str | None = None) -> str:
        url = f"/api/collections/{collection}/records"
        return f"{url}/{record_id}" if record_id else url

    def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        try:
            response = self._client.request(method, url, params=params, json=json)
        except httpx.HTTPError as e:
            raise RepositoryError(f"{method} {url} failed: {e}") from e

        if response.status_code == 404:
            raise NotFound(f"{url} not found")
        if not response.is_success:
            raise RepositoryError(
                f"{method} {url} failed with status {response.status_code}: {response.text}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise RepositoryError(f"Invalid JSON from {url}: {e}") from e
        if not isinstance(data, dict):
            raise RepositoryError(f"Unexpected response from {url}")
        return data

    def _list(self, collection: str, filter_expr: str, sort: str) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        page = 1
        while True:
            data = self._request(
                "GET",
                self._records_url(collection),
                params={"filter": filter_expr, "sort": sort, "perPage": PER_PAGE, "page": page},
            )
            items.extend(data.get("items", []))
            if page >= int(data.get("totalPages", 1) or 1):
                return items
            page += 1

    def health_check(self) -> bool:
        """Check whether the server is reachable and healthy."""
        try:
            response = self._client.get("/api/health")
        except httpx.HTTPError as e:
            logger.warning("PocketBase health check failed: %s", e)
            return False
        return response.is_success

    # Sessions

    def create_session(
        self,
        project_id: str,
        summary: str,
        token_count: int = 0,
        session_start: datetime | None = None,
        facts_extracted: int = 0,
    ) -> SessionRecord:
        payload = {
            "project": project_id,
            "summary": summary,
            "facts_extracted": facts_extracted,
            "token_count": token_count,
            "session_start": _format_time(session_start or datetime.now(timezone.utc)),
        }
        return self._to_session(self._request("POST", self._records_url(SESSIONS), json=payload))

    def get_session(self, session_id: str) -> SessionRecord:
        return self._to_session(self._request("GET", self._records_url(SESSIONS, session_id)))

    def update_session(self, session_id: str, patch: dict[str, Any]) -> SessionRecord:
        validate_session_patch(patch)
        payload = {
            key: _format_time(value) if isinstance(value, datetime) else value
            for key, value in patch.items()
        }
        data = self._request("PATCH", self._records_url(SESSIONS, session_id), json=payload)
        return self._to_session(data)

    def list_sessions(self, project_id: str) -> list[SessionRecord]:
        items = self._list(SESSIONS, f"project={_quote(project_id)}", "-session_start")
        return [self._to_session(item) for item in items]

    # Facts

    def create_fact(
        self,
        project_id: str,
        category: FactCategory,
        content: str,
        importance: int,
        session_id: str | None = None,
        stale: bool = False,
    ) -> ExtractedFact:
        payload: dict[str, Any] = {
            "project": project_id,
            "fact_type": category.value,
            "content": content,
            "importance": clamp_importance(importance),
            "stale": stale,
        }
        if session_id:
            payload["session"] = session_id
        return self._to_fact(self._request("POST", self._records_url(FACTS), json=payload))

    def get_fact(self, fact_id: str) -> ExtractedFact:
        return self._to_fact(self._request("GET", self._records_url(FACTS, fact_id)))

    def list_facts(self, project_id: str, include_stale: bool = False) -> list[ExtractedFact]:
        filter_expr = f"project={_quote(project_id)}"
        if not include_stale:
            filter_expr += " && stale=false"
        items = self._list(FACTS, filter_expr, "-importance,-created")
        return [self._to_fact(item) for item in items]

    def mark_fact_stale(self, fact_id: str) -> ExtractedFact:
        data = self._request("PATCH", self._records_url(FACTS, fact_id), json={"stale": True})
        return self._to_fact(data)

    def close(self) -> None:
        self._client.close()

    def _to_session(self, data: dict[str, Any]) -> SessionRecord:
        try:
            return SessionRecord(
                id=data["id"],
                project_id=data["project"],
                summary=data.get("summary", ""),
                facts_extracted=int(data.get("facts_extracted") or 0),
                token_count=int(data.get("token_count") or 0),
                session_start=_parse_time(data["session_start"]),
                session_end=_parse_time(data["session_end"]) if data.get("session_end") else None,
                created_at=_parse_time(data["created"]),
                updated_at=_parse_time(data["updated"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise RepositoryError(f"Malformed session record: {e}") from e

    def _to_fact(self, data: dict[str, Any]) -> ExtractedFact:
        try:
            return ExtractedFact(
                id=data["id"],
                project_id=data["project"],
                session_id=data.get("session") or None,
                category=FactCategory(data["fact_type"]),
                content=data["content"],
                importance=clamp_importance(data.get("importance", 3)),
                stale=bool(data.get("stale", False)),
                created_at=_parse_time(data["created"]),
                updated_at=_parse_time(data["updated"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise RepositoryError(f"Malformed fact record: {e}") from e
