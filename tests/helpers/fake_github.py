from __future__ import annotations

import copy
import json
from typing import Any, Sequence

from slayer_wiki.github.client import GitHubApiError, RateLimitInfo
from slayer_wiki.github.repo import issue_label_names


class FakeIssueTracker:
    """In-memory stand-in for `GitHubRepo`, recording every mutating call."""

    def __init__(
        self,
        *,
        owner: str = "wiki-owner",
        repo: str = "slayer-wiki",
        bot_login: str = "wiki-bot",
        users: dict[str, int] | None = None,
    ) -> None:
        self.owner = owner
        self.repo = repo
        self.bot_login = bot_login
        self.users: dict[str, int] = dict(users or {})
        self.issues: list[dict[str, Any]] = []
        self.comments: dict[int, dict[str, Any]] = {}
        self.calls: list[tuple[str, Any]] = []
        self.fail_on: set[str] = set()
        self._next_number = 1
        self._next_comment = 1000

    # -- test helpers ------------------------------------------------------

    def add_issue(
        self,
        *,
        title: str,
        body: Any = "[]",
        labels: Sequence[str] = (),
        author: str | None = None,
        state: str = "open",
    ) -> dict[str, Any]:
        if not isinstance(body, str):
            body = json.dumps(body, indent=2)
        issue = {
            "number": self._next_number,
            "title": title,
            "body": body,
            "labels": [{"name": name} for name in labels],
            "state": state,
            "locked": False,
            "user": {"login": author or self.bot_login},
            "html_url": f"https://github.com/{self.owner}/{self.repo}/issues/{self._next_number}",
            "created_at": "2024-01-01T00:00:00Z",
            "updated_at": "2024-01-01T00:00:00Z",
        }
        self._next_number += 1
        self.issues.append(issue)
        return issue

    def issue(self, number: int) -> dict[str, Any]:
        for issue in self.issues:
            if issue["number"] == number:
                return issue
        raise KeyError(number)

    def records(self, number: int) -> list[dict[str, Any]]:
        return json.loads(self.issue(number)["body"])

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def _maybe_fail(self, name: str) -> None:
        if name in self.fail_on:
            raise GitHubApiError(
                "Server Error",
                status=500,
                url=f"https://api.github.com/repos/{self.owner}/{self.repo}",
                rate_limit=RateLimitInfo(limit=5000, remaining=4999),
            )

    def _missing(self, what: str) -> GitHubApiError:
        return GitHubApiError(
            "Not Found",
            status=404,
            url=f"https://api.github.com/repos/{self.owner}/{self.repo}/{what}",
            rate_limit=None,
        )

    # -- IssueTracker ------------------------------------------------------

    def list_issues(
        self,
        *,
        labels: Sequence[str],
        state: str = "open",
        max_pages: int = 10,
        per_page: int = 100,
    ) -> list[dict[str, Any]]:
        self._maybe_fail("list_issues")
        self.calls.append(("list_issues", tuple(labels)))
        matching = [
            copy.deepcopy(i)
            for i in self.issues
            if set(labels) <= set(issue_label_names(i)) and state in ("all", i["state"])
        ]
        return matching[: max_pages * per_page]

    def create_issue(self, *, title: str, body: str, labels: Sequence[str]) -> dict[str, Any]:
        self._maybe_fail("create_issue")
        self.calls.append(("create_issue", title))
        return copy.deepcopy(self.add_issue(title=title, body=body, labels=labels))

    def update_issue(
        self,
        number: int,
        *,
        body: str | None = None,
        title: str | None = None,
        state: str | None = None,
        labels: Sequence[str] | None = None,
    ) -> dict[str, Any]:
        self._maybe_fail("update_issue")
        self.calls.append(("update_issue", number))
        try:
            issue = self.issue(number)
        except KeyError:
            raise self._missing(f"issues/{number}") from None
        if body is not None:
            issue["body"] = body
        if title is not None:
            issue["title"] = title
        if state is not None:
            issue["state"] = state
        if labels is not None:
            issue["labels"] = [{"name": name} for name in labels]
        return copy.deepcopy(issue)

    def lock_issue(self, number: int, *, reason: str = "resolved") -> None:
        self._maybe_fail("lock_issue")
        self.calls.append(("lock_issue", number))
        issue = self.issue(number)
        issue["locked"] = True
        issue["active_lock_reason"] = reason

    def add_labels(self, number: int, labels: Sequence[str]) -> list[str]:
        self._maybe_fail("add_labels")
        self.calls.append(("add_labels", (number, tuple(labels))))
        issue = self.issue(number)
        names = issue_label_names(issue)
        for name in labels:
            if name not in names:
                issue["labels"].append({"name": name})
        return issue_label_names(issue)

    def create_comment(self, number: int, body: str) -> dict[str, Any]:
        self._maybe_fail("create_comment")
        self.calls.append(("create_comment", number))
        self.issue(number)
        comment = {
            "id": self._next_comment,
            "body": body,
            "created_at": "2024-01-02T00:00:00Z",
            "html_url": f"https://github.com/{self.owner}/{self.repo}/issues/{number}#issuecomment-{self._next_comment}",
            "issue_number": number,
        }
        self.comments[self._next_comment] = comment
        self._next_comment += 1
        return copy.deepcopy(comment)

    def get_comment(self, comment_id: int) -> dict[str, Any]:
        self._maybe_fail("get_comment")
        if comment_id not in self.comments:
            raise self._missing(f"issues/comments/{comment_id}")
        return copy.deepcopy(self.comments[comment_id])

    def list_comments(self, number: int, *, max_pages: int = 10) -> list[dict[str, Any]]:
        self._maybe_fail("list_comments")
        self.calls.append(("list_comments", number))
        return [
            copy.deepcopy(c)
            for _, c in sorted(self.comments.items())
            if c["issue_number"] == number
        ]

    def update_comment(self, comment_id: int, body: str) -> dict[str, Any]:
        self._maybe_fail("update_comment")
        self.calls.append(("update_comment", comment_id))
        if comment_id not in self.comments:
            raise self._missing(f"issues/comments/{comment_id}")
        self.comments[comment_id]["body"] = body
        return copy.deepcopy(self.comments[comment_id])

    def delete_comment(self, comment_id: int) -> None:
        self._maybe_fail("delete_comment")
        self.calls.append(("delete_comment", comment_id))
        if self.comments.pop(comment_id, None) is None:
            raise self._missing(f"issues/comments/{comment_id}")

    def get_repo(self) -> dict[str, Any]:
        self._maybe_fail("get_repo")
        return {"name": self.repo, "owner": {"login": self.owner}}

    def get_user(self, username: str) -> dict[str, Any]:
        self._maybe_fail("get_user")
        for login, user_id in self.users.items():
            if login.lower() == username.lower():
                return {"login": login, "id": user_id}
        raise GitHubApiError(
            "Not Found", status=404, url=f"https://api.github.com/users/{username}", rate_limit=None
        )
