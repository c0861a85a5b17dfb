"""Issue-tracker adapters.

Decision code only sees the narrow ``IssueTracker`` protocol. Transport
concerns (auth headers, pagination, timeouts) stay in ``GitHubIssueTracker``;
``InMemoryIssueTracker`` is the host-side fake used by tests and local runs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
import logging
import re
from typing import Any, Iterable, Literal, Protocol

import httpx
from pydantic import BaseModel, Field, field_validator

from . import metrics

logger = logging.getLogger(__name__)

IssueState = Literal["open", "closed"]

GITHUB_API_VERSION = "2022-11-28"
GITHUB_PAGE_SIZE = 100
GITHUB_MAX_PAGES = 20

_PATH_NUMBER_RE = re.compile(r"/\d+")


class TrackerError(RuntimeError):
    """A tracker call failed (transport error, non-2xx response, unknown issue)."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class IssueComment(BaseModel):
    id: int
    body: str
    created_at: datetime | None = None

    @field_validator("body", mode="before")
    @classmethod
    def body_text(cls, value: Any) -> str:
        return value if isinstance(value, str) else ""


class Issue(BaseModel):
    number: int
    url: str
    title: str
    body: str = ""
    state: IssueState = "open"
    labels: frozenset[str] = Field(default_factory=frozenset)
    comments: list[IssueComment] = Field(default_factory=list)
    created_at: datetime | None = None
    closed_at: datetime | None = None

    @field_validator("body", mode="before")
    @classmethod
    def body_text(cls, value: Any) -> str:
        return value if isinstance(value, str) else ""

    def has_labels(self, labels: Iterable[str]) -> bool:
        return set(labels) <= self.labels


class IssueTracker(Protocol):
    async def get_issue(self, number: int) -> Issue: ...

    async def list_issues(
        self, *, state: IssueState | Literal["all"] = "open", labels: Iterable[str] = ()
    ) -> list[Issue]: ...

    async def create_issue(self, *, title: str, body: str, labels: Iterable[str]) -> Issue: ...

    async def list_comments(self, number: int) -> list[IssueComment]: ...

    async def create_comment(self, number: int, body: str) -> IssueComment: ...

    async def add_labels(self, number: int, labels: Iterable[str]) -> Issue: ...

    async def set_state(self, number: int, state: IssueState) -> Issue: ...


_MALFORMED_PAYLOAD = (AttributeError, KeyError, TypeError, ValueError)


def _parse_github_issue(payload: dict[str, Any]) -> Issue:
    try:
        labels = frozenset(
            (label.get("name") if isinstance(label, dict) else str(label))
            for label in payload.get("labels") or []
        )
        return Issue(
            number=int(payload["number"]),
            url=str(payload.get("html_url") or payload.get("url") or ""),
            title=str(payload.get("title") or ""),
            body=payload.get("body"),
            state="closed" if payload.get("state") == "closed" else "open",
            labels=frozenset(name for name in labels if name),
            created_at=payload.get("created_at"),
            closed_at=payload.get("closed_at"),
        )
    except _MALFORMED_PAYLOAD as exc:
        raise TrackerError(f"malformed issue payload: {exc!r}") from exc


def _parse_github_comment(payload: dict[str, Any]) -> IssueComment:
    try:
        return IssueComment(
            id=int(payload["id"]),
            body=payload.get("body"),
            created_at=payload.get("created_at"),
        )
    except _MALFORMED_PAYLOAD as exc:
        raise TrackerError(f"malformed comment payload: {exc!r}") from exc


class GitHubIssueTracker:
    """GitHub REST v3 issues adapter over ``httpx.AsyncClient``."""

    def __init__(
        self,
        *,
        owner: str,
        repo: str,
        token: str,
        api_url: str = "https://api.github.com",
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not (owner and repo and token):
            raise TrackerError("GitHub API credentials not configured")
        self._base = f"{api_url.rstrip('/')}/repos/{owner}/{repo}"
        self._headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {token}",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
        }
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> GitHubIssueTracker:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        operation = f"{method} {_PATH_NUMBER_RE.sub('/{n}', path)}"
        try:
            response = await self._client.request(
                method, f"{self._base}{path}", params=params, json=json, headers=self._headers
            )
        except httpx.HTTPError as exc:
            metrics.record_tracker_call(operation, success=False)
            raise TrackerError(f"{method} {path} failed: {exc}") from exc
        if response.status_code >= 400:
            metrics.record_tracker_call(operation, success=False)
            logger.warning(
                "Tracker call %s returned %s",
                operation,
                response.status_code,
                extra={"learnloop_tracker_operation": operation, "learnloop_status_code": response.status_code},
            )
            raise TrackerError(
                f"{method} {path} failed: {response.status_code} {response.text[:500]}",
                status_code=response.status_code,
            )
        if response.status_code == 204 or not response.content:
            metrics.record_tracker_call(operation, success=True)
            return None
        try:
            payload = response.json()
        except ValueError as exc:
            metrics.record_tracker_call(operation, success=False)
            raise TrackerError(
                f"{method} {path} returned a non-JSON body: {response.text[:200]}",
                status_code=response.status_code,
            ) from exc
        metrics.record_tracker_call(operation, success=True)
        return payload

    async def _paginate(self, path: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        for page in range(1, GITHUB_MAX_PAGES + 1):
            batch = await self._request(
                "GET", path, params={**params, "per_page": GITHUB_PAGE_SIZE, "page": page}
            )
            if not batch:
                break
            if not isinstance(batch, list):
                raise TrackerError(f"GET {path} returned {type(batch).__name__}, expected a list")
            items.extend(batch)
            if len(batch) < GITHUB_PAGE_SIZE:
                break
        return items

    async def get_issue(self, number: int) -> Issue:
        return _parse_github_issue(await self._request("GET", f"/issues/{number}"))

    async def list_issues(
        self, *, state: IssueState | Literal["all"] = "open", labels: Iterable[str] = ()
    ) -> list[Issue]:
        params: dict[str, Any] = {"state": state}
        label_filter = ",".join(labels)
        if label_filter:
            params["labels"] = label_filter
        payload = await self._paginate("/issues", params)
        # The issues endpoint also returns pull requests.
        return [
            _parse_github_issue(item)
            for item in payload
            if not (isinstance(item, dict) and "pull_request" in item)
        ]

    async def create_issue(self, *, title: str, body: str, labels: Iterable[str]) -> Issue:
        payload = await self._request(
            "POST", "/issues", json={"title": title, "body": body, "labels": list(labels)}
        )
        return _parse_github_issue(payload)

    async def list_comments(self, number: int) -> list[IssueComment]:
        payload = await self._paginate(f"/issues/{number}/comments", {})
        return [_parse_github_comment(item) for item in payload]

    async def create_comment(self, number: int, body: str) -> IssueComment:
        payload = await self._request("POST", f"/issues/{number}/comments", json={"body": body})
        return _parse_github_comment(payload)

    async def add_labels(self, number: int, labels: Iterable[str]) -> Issue:
        await self._request("POST", f"/issues/{number}/labels", json={"labels": list(labels)})
        return await self.get_issue(number)

    async def set_state(self, number: int, state: IssueState) -> Issue:
        return _parse_github_issue(
            await self._request("PATCH", f"/issues/{number}", json={"state": state})
        )


@dataclass
class _IssueRecord:
    number: int
    title: str
    body: str
    state: IssueState = "open"
    labels: set[str] = field(default_factory=set)
    comments: list[IssueComment] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    closed_at: datetime | None = None


class InMemoryIssueTracker:
    """Tracker fake with real set-valued labels and append-only comments.

    Add operation names (``"create_comment"``, ``"set_state"``...) to
    ``fail_operations`` to make those calls raise ``TrackerError``.
    """

    def __init__(self, base_url: str = "https://tracker.invalid/issues") -> None:
        self._base_url = base_url.rstrip("/")
        self._issues: dict[int, _IssueRecord] = {}
        self._next_issue = 1
        self._next_comment = 1
        self.fail_operations: set[str] = set()
        self.calls: list[tuple[str, int | None]] = []

    def _check(self, operation: str, number: int | None = None) -> None:
        self.calls.append((operation, number))
        if operation in self.fail_operations:
            raise TrackerError(f"{operation} failed (injected)", status_code=503)

    def _record(self, number: int) -> _IssueRecord:
        record = self._issues.get(number)
        if record is None:
            raise TrackerError(f"issue #{number} not found", status_code=404)
        return record

    def _snapshot(self, record: _IssueRecord) -> Issue:
        return Issue(
            number=record.number,
            url=f"{self._base_url}/{record.number}",
            title=record.title,
            body=record.body,
            state=record.state,
            labels=frozenset(record.labels),
            comments=list(record.comments),
            created_at=record.created_at,
            closed_at=record.closed_at,
        )

    def seed_issue(
        self,
        *,
        title: str,
        body: str = "",
        labels: Iterable[str] = (),
        state: IssueState = "open",
    ) -> Issue:
        record = _IssueRecord(
            number=self._next_issue, title=title, body=body, state=state, labels=set(labels)
        )
        self._issues[record.number] = record
        self._next_issue += 1
        return self._snapshot(record)

    async def get_issue(self, number: int) -> Issue:
        self._check("get_issue", number)
        return self._snapshot(self._record(number))

    async def list_issues(
        self, *, state: IssueState | Literal["all"] = "open", labels: Iterable[str] = ()
    ) -> list[Issue]:
        self._check("list_issues")
        wanted = set(labels)
        return [
            self._snapshot(record)
            for record in self._issues.values()
            if (state == "all" or record.state == state) and wanted <= record.labels
        ]

    async def create_issue(self, *, title: str, body: str, labels: Iterable[str]) -> Issue:
        self._check("create_issue")
        return self.seed_issue(title=title, body=body, labels=labels)

    async def list_comments(self, number: int) -> list[IssueComment]:
        self._check("list_comments", number)
        return list(self._record(number).comments)

    async def create_comment(self, number: int, body: str) -> IssueComment:
        self._check("create_comment", number)
        record = self._record(number)
        comment = IssueComment(id=self._next_comment, body=body, created_at=datetime.now(UTC))
        self._next_comment += 1
        record.comments.append(comment)
        return comment

    async def add_labels(self, number: int, labels: Iterable[str]) -> Issue:
        self._check("add_labels", number)
        record = self._record(number)
        record.labels.update(labels)
        return self._snapshot(record)

    async def set_state(self, number: int, state: IssueState) -> Issue:
        self._check("set_state", number)
        record = self._record(number)
        if record.state != state:
            record.state = state
            record.closed_at = datetime.now(UTC) if state == "closed" else None
        return self._snapshot(record)
