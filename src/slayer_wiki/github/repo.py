"""Issue-level operations on the wiki repository.

`IssueTracker` is the narrow surface the record store, the permission gate and
the bot actions depend on. `GitHubRepo` implements it over the REST API; tests
substitute an in-memory tracker.
"""
from __future__ import annotations

from typing import Any, Mapping, Protocol, Sequence

from .client import GitHubClient

LockReason = str


def issue_label_names(issue: Mapping[str, Any]) -> list[str]:
    # The REST API returns label objects; some callers hand in plain strings.
    names: list[str] = []
    for label in issue.get("labels") or []:
        if isinstance(label, str):
            names.append(label)
        elif isinstance(label, Mapping) and isinstance(label.get("name"), str):
            names.append(label["name"])
    return names


class IssueTracker(Protocol):
    owner: str
    repo: str

    def list_issues(
        self,
        *,
        labels: Sequence[str],
        state: str = "open",
        max_pages: int = 10,
        per_page: int = 100,
    ) -> list[dict[str, Any]]: ...

    def create_issue(
        self, *, title: str, body: str, labels: Sequence[str]
    ) -> dict[str, Any]: ...

    def update_issue(
        self,
        number: int,
        *,
        body: str | None = None,
        title: str | None = None,
        state: str | None = None,
        labels: Sequence[str] | None = None,
    ) -> dict[str, Any]: ...

    def lock_issue(self, number: int, *, reason: LockReason = "resolved") -> None: ...

    def add_labels(self, number: int, labels: Sequence[str]) -> list[str]: ...

    def create_comment(self, number: int, body: str) -> dict[str, Any]: ...

    def get_comment(self, comment_id: int) -> dict[str, Any]: ...

    def list_comments(self, number: int, *, max_pages: int = 10) -> list[dict[str, Any]]: ...

    def update_comment(self, comment_id: int, body: str) -> dict[str, Any]: ...

    def delete_comment(self, comment_id: int) -> None: ...

    def get_repo(self) -> dict[str, Any]: ...

    def get_user(self, username: str) -> dict[str, Any]: ...


class GitHubRepo:
    def __init__(self, client: GitHubClient, *, owner: str, repo: str) -> None:
        self._client = client
        self.owner = owner
        self.repo = repo

    @property
    def _prefix(self) -> str:
        return f"/repos/{self.owner}/{self.repo}"

    def list_issues(
        self,
        *,
        labels: Sequence[str],
        state: str = "open",
        max_pages: int = 10,
        per_page: int = 100,
    ) -> list[dict[str, Any]]:
        items = self._client.paginate(
            f"{self._prefix}/issues",
            query={"labels": ",".join(labels), "state": state},
            per_page=per_page,
            max_pages=max_pages,
        )
        # The issues endpoint also returns pull requests.
        return [i for i in items if isinstance(i, dict) and "pull_request" not in i]

    def create_issue(
        self, *, title: str, body: str, labels: Sequence[str]
    ) -> dict[str, Any]:
        return self._client.request_json(
            f"{self._prefix}/issues",
            method="POST",
            json={"title": title, "body": body, "labels": list(labels)},
        )

    def update_issue(
        self,
        number: int,
        *,
        body: str | None = None,
        title: str | None = None,
        state: str | None = None,
        labels: Sequence[str] | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if body is not None:
            payload["body"] = body
        if title is not None:
            payload["title"] = title
        if state is not None:
            payload["state"] = state
        if labels is not None:
            payload["labels"] = list(labels)
        return self._client.request_json(
            f"{self._prefix}/issues/{number}", method="PATCH", json=payload
        )

    def lock_issue(self, number: int, *, reason: LockReason = "resolved") -> None:
        self._client.request_json(
            f"{self._prefix}/issues/{number}/lock",
            method="PUT",
            json={"lock_reason": reason},
        )

    def add_labels(self, number: int, labels: Sequence[str]) -> list[str]:
        payload = self._client.request_json(
            f"{self._prefix}/issues/{number}/labels",
            method="POST",
            json={"labels": list(labels)},
        )
        return issue_label_names({"labels": payload or []})

    def create_comment(self, number: int, body: str) -> dict[str, Any]:
        return self._client.request_json(
            f"{self._prefix}/issues/{number}/comments",
            method="POST",
            json={"body": body},
        )

    def get_comment(self, comment_id: int) -> dict[str, Any]:
        return self._client.request_json(f"{self._prefix}/issues/comments/{comment_id}")

    def list_comments(self, number: int, *, max_pages: int = 10) -> list[dict[str, Any]]:
        items = self._client.paginate(
            f"{self._prefix}/issues/{number}/comments", max_pages=max_pages
        )
        return [c for c in items if isinstance(c, dict)]

    def update_comment(self, comment_id: int, body: str) -> dict[str, Any]:
        return self._client.request_json(
            f"{self._prefix}/issues/comments/{comment_id}",
            method="PATCH",
            json={"body": body},
        )

    def delete_comment(self, comment_id: int) -> None:
        self._client.request_json(
            f"{self._prefix}/issues/comments/{comment_id}", method="DELETE"
        )

    def get_repo(self) -> dict[str, Any]:
        return self._client.request_json(self._prefix)

    def get_user(self, username: str) -> dict[str, Any]:
        return self._client.get_user(username)
