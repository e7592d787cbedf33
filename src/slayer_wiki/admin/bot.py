"""Bot-account actions exposed through `POST /api/github-bot`.

Every action runs with the bot token; callers never get it. Admin-list actions
and snapshot writes additionally need the caller's own identity (resolved from
their bearer token by the HTTP layer) so they can be authorized.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Mapping

from slayer_wiki.errors import AuthenticationError, AuthorizationError, ValidationError
from slayer_wiki.github.client import GitHubApiError, as_upstream_error
from slayer_wiki.github.repo import IssueTracker
from slayer_wiki.records.snapshots import UserSnapshots
from slayer_wiki.records.validation import (
    validate_issue_body,
    validate_issue_title,
    validate_labels,
    validate_username,
)

from .permissions import PermissionGate, parse_list_operation, parse_permission_list

logger = logging.getLogger(__name__)

BOT_ACTIONS = (
    "create-comment",
    "update-issue",
    "list-issues",
    "get-comment",
    "create-comment-issue",
    "create-admin-issue",
    "update-admin-issue",
    "save-user-snapshot",
)
ADMIN_ACTIONS = frozenset({"create-admin-issue", "update-admin-issue"})
# Actions that act on behalf of the caller and so need their bearer token.
AUTHENTICATED_ACTIONS = ADMIN_ACTIONS | {"save-user-snapshot"}
MAX_PER_PAGE = 100


def parse_bot_action(action: Any) -> str:
    if not action:
        raise ValidationError("Missing required field: action")
    if str(action) not in BOT_ACTIONS:
        raise ValidationError(f"Unknown action: {action}")
    return str(action)


def _positive_int(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a positive integer")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a positive integer") from None
    if number <= 0:
        raise ValidationError(f"{field} must be a positive integer")
    return number


def _require(params: Mapping[str, Any], *fields: str) -> None:
    missing = [f for f in fields if params.get(f) in (None, "", [])]
    if missing:
        noun = "fields" if len(fields) > 1 else "field"
        raise ValidationError(f"Missing required {noun}: {', '.join(fields)}")


def _issue_summary(issue: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "number": issue.get("number"),
        "title": issue.get("title"),
        "url": issue.get("html_url"),
        "body": issue.get("body"),
        "labels": issue.get("labels"),
        "created_at": issue.get("created_at"),
        "updated_at": issue.get("updated_at"),
        "state": issue.get("state"),
    }


class BotActions:
    def __init__(
        self,
        tracker: IssueTracker,
        *,
        gate: PermissionGate | None = None,
        bot_username: str | None = None,
    ) -> None:
        self._tracker = tracker
        self._gate = gate or PermissionGate(tracker)
        self._bot_username = bot_username
        self._handlers: dict[str, Callable[[Mapping[str, Any], str | None], dict[str, Any]]] = {
            "create-comment": self.create_comment,
            "update-issue": self.update_issue,
            "list-issues": self.list_issues,
            "get-comment": self.get_comment,
            "create-comment-issue": self.create_comment_issue,
            "create-admin-issue": self.create_admin_issue,
            "update-admin-issue": self.update_admin_issue,
            "save-user-snapshot": self.save_user_snapshot,
        }

    def dispatch(
        self, action: Any, params: Mapping[str, Any], *, acting_user: str | None = None
    ) -> dict[str, Any]:
        action = parse_bot_action(action)
        handler = self._handlers[action]
        if action in AUTHENTICATED_ACTIONS and not acting_user:
            raise AuthenticationError("Authentication required")
        try:
            return handler(params, acting_user)
        except GitHubApiError as error:
            raise as_upstream_error(f"Bot action {action} failed", error) from error

    def create_comment(self, params: Mapping[str, Any], acting_user: str | None = None) -> dict[str, Any]:
        _require(params, "issueNumber", "body")
        number = _positive_int(params["issueNumber"], "issueNumber")
        body = validate_issue_body(params["body"], "Comment body")
        comment = self._tracker.create_comment(number, body)
        logger.debug("Created comment %s on issue #%s", comment.get("id"), number)
        return {
            "comment": {
                "id": comment.get("id"),
                "body": comment.get("body"),
                "created_at": comment.get("created_at"),
                "html_url": comment.get("html_url"),
            }
        }

    def update_issue(self, params: Mapping[str, Any], acting_user: str | None = None) -> dict[str, Any]:
        if not params.get("issueNumber") or params.get("body") is None:
            raise ValidationError("Missing required fields: issueNumber, body")
        number = _positive_int(params["issueNumber"], "issueNumber")
        body = validate_issue_body(params["body"], "Issue body")
        issue = self._tracker.update_issue(number, body=body)
        logger.debug("Updated issue #%s", number)
        return {"issue": _issue_summary(issue)}

    def list_issues(self, params: Mapping[str, Any], acting_user: str | None = None) -> dict[str, Any]:
        _require(params, "labels")
        labels = params["labels"]
        if isinstance(labels, str):
            labels = [label.strip() for label in labels.split(",") if label.strip()]
        labels = validate_labels(labels)
        state = params.get("state") or "open"
        if state not in ("open", "closed", "all"):
            raise ValidationError('Invalid state. Must be "open", "closed" or "all"')
        per_page = min(_positive_int(params.get("per_page", MAX_PER_PAGE), "per_page"), MAX_PER_PAGE)

        issues = self._tracker.list_issues(labels=labels, state=state, max_pages=1, per_page=per_page)
        if self._bot_username:
            issues = [
                i for i in issues if ((i.get("user") or {}).get("login")) == self._bot_username
            ]
        return {"issues": issues}

    def get_comment(self, params: Mapping[str, Any], acting_user: str | None = None) -> dict[str, Any]:
        _require(params, "commentId")
        comment_id = _positive_int(params["commentId"], "commentId")
        return {"comment": self._tracker.get_comment(comment_id)}

    def create_comment_issue(
        self, params: Mapping[str, Any], acting_user: str | None = None
    ) -> dict[str, Any]:
        _require(params, "title", "body", "labels")
        title = validate_issue_title(params["title"])
        body = validate_issue_body(params["body"], "Issue body")
        labels = validate_labels(params["labels"])

        requested_by = params.get("requestedBy")
        if requested_by:
            requested_by = validate_username(requested_by)
            if self._gate.is_banned(requested_by):
                logger.warning("Banned user %s tried to open a comment issue", requested_by)
                raise AuthorizationError("You are banned from commenting on this wiki")

        issue = self._tracker.create_issue(title=title, body=body, labels=labels)
        self._tracker.lock_issue(int(issue["number"]), reason="resolved")
        logger.debug(
            "Created comment issue #%s%s",
            issue.get("number"),
            f" (requested by {requested_by})" if requested_by else "",
        )
        return {"issue": _issue_summary(issue)}

    def create_admin_issue(
        self, params: Mapping[str, Any], acting_user: str | None = None
    ) -> dict[str, Any]:
        _require(params, "type")
        kind = parse_permission_list(params["type"])
        issue = self._gate.create_admin_issue(kind, acting_user=str(acting_user))
        return {"issue": _issue_summary(issue)}

    def update_admin_issue(
        self, params: Mapping[str, Any], acting_user: str | None = None
    ) -> dict[str, Any]:
        _require(params, "type", "operation", "targetUser")
        kind = parse_permission_list(params["type"])
        operation = parse_list_operation(params["operation"])

        target = params["targetUser"]
        target_id = params.get("targetUserId")
        if isinstance(target, Mapping):
            target_id = target.get("userId", target_id)
            target = target.get("username")

        entries = self._gate.update_admin_issue(
            kind,
            operation,
            acting_user=str(acting_user),
            target_user=target,
            target_user_id=target_id,
        )
        return {"list": entries}

    def save_user_snapshot(
        self, params: Mapping[str, Any], acting_user: str | None = None
    ) -> dict[str, Any]:
        _require(params, "username", "snapshotData")
        username = validate_username(params["username"])
        if not acting_user or acting_user.lower() != username.lower():
            logger.warning("%s tried to write the snapshot of %s", acting_user, username)
            raise AuthorizationError("You can only update your own user snapshot")
        snapshot = params["snapshotData"]
        if not isinstance(snapshot, Mapping):
            raise ValidationError("snapshotData must be an object")

        user = self._tracker.get_user(username)
        issue = UserSnapshots(self._tracker).save(int(user["id"]), str(user["login"]), snapshot)
        return {"issue": _issue_summary(issue)}
