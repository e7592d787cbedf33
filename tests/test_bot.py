from __future__ import annotations

import json

import pytest

from slayer_wiki.admin.bot import BOT_ACTIONS, BotActions, parse_bot_action
from slayer_wiki.errors import (
    AuthenticationError,
    AuthorizationError,
    UpstreamError,
    ValidationError,
)
from slayer_wiki.github.repo import issue_label_names
from tests.helpers.fake_github import FakeIssueTracker


def _tracker() -> FakeIssueTracker:
    tracker = FakeIssueTracker(owner="alice", users={"bob": 2, "carol": 3})
    tracker.add_issue(title="[Wiki Admins]", body=[], labels=["wiki-admin:admins"])
    tracker.add_issue(
        title="[Banned Users]",
        body=[{"username": "mallory", "userId": 9, "addedBy": "alice", "addedAt": "x"}],
        labels=["wiki-admin:banned-users"],
    )
    return tracker


def test_eight_actions_are_routed() -> None:
    assert len(BOT_ACTIONS) == 8
    with pytest.raises(ValidationError, match="Unknown action: explode"):
        parse_bot_action("explode")
    with pytest.raises(ValidationError, match="Missing required field: action"):
        parse_bot_action(None)


def test_create_comment() -> None:
    tracker = _tracker()
    page = tracker.add_issue(title="Comments: /guides/start", labels=["comments"])

    result = BotActions(tracker).dispatch(
        "create-comment", {"issueNumber": page["number"], "body": "Nice guide!"}
    )

    assert result["comment"]["body"] == "Nice guide!"
    assert set(result["comment"]) == {"id", "body", "created_at", "html_url"}


def test_create_comment_requires_fields() -> None:
    with pytest.raises(ValidationError, match="Missing required fields: issueNumber, body"):
        BotActions(_tracker()).dispatch("create-comment", {"issueNumber": 1})


def test_update_issue_allows_empty_body() -> None:
    tracker = _tracker()
    result = BotActions(tracker).dispatch("update-issue", {"issueNumber": "1", "body": ""})
    assert result["issue"]["number"] == 1
    assert tracker.issue(1)["body"] == ""


def test_update_issue_rejects_bad_number() -> None:
    with pytest.raises(ValidationError, match="issueNumber must be a positive integer"):
        BotActions(_tracker()).dispatch("update-issue", {"issueNumber": "abc", "body": "x"})


def test_list_issues_filters_to_bot_authored() -> None:
    tracker = _tracker()
    tracker.add_issue(title="bot page", labels=["comments"])
    tracker.add_issue(title="spoofed page", labels=["comments"], author="mallory")

    result = BotActions(tracker, bot_username="wiki-bot").dispatch(
        "list-issues", {"labels": "comments"}
    )

    assert [i["title"] for i in result["issues"]] == ["bot page"]


def test_list_issues_without_bot_username_returns_everything() -> None:
    tracker = _tracker()
    tracker.add_issue(title="bot page", labels=["comments"])
    tracker.add_issue(title="spoofed page", labels=["comments"], author="mallory")

    result = BotActions(tracker).dispatch("list-issues", {"labels": ["comments"]})

    assert len(result["issues"]) == 2


def test_get_comment() -> None:
    tracker = _tracker()
    comment = tracker.create_comment(1, "hello")
    result = BotActions(tracker).dispatch("get-comment", {"commentId": comment["id"]})
    assert result["comment"]["body"] == "hello"


def test_missing_comment_is_upstream_error() -> None:
    with pytest.raises(UpstreamError, match="Not Found"):
        BotActions(_tracker()).dispatch("get-comment", {"commentId": 424242})


def test_create_comment_issue_is_locked() -> None:
    tracker = _tracker()
    result = BotActions(tracker).dispatch(
        "create-comment-issue",
        {"title": "Comments: /tier-list", "body": "Page comments", "labels": ["comments"], "requestedBy": "bob"},
    )
    number = result["issue"]["number"]
    assert tracker.issue(number)["locked"] is True


def test_banned_user_cannot_open_comment_issue() -> None:
    tracker = _tracker()
    with pytest.raises(AuthorizationError, match="banned"):
        BotActions(tracker).dispatch(
            "create-comment-issue",
            {"title": "Comments", "body": "x", "labels": "comments", "requestedBy": "Mallory"},
        )
    assert "create_issue" not in tracker.call_names()


def test_admin_actions_need_an_acting_user() -> None:
    with pytest.raises(AuthenticationError):
        BotActions(_tracker()).dispatch("create-admin-issue", {"type": "admins"})


def test_update_admin_issue_accepts_target_object() -> None:
    tracker = _tracker()
    result = BotActions(tracker).dispatch(
        "update-admin-issue",
        {"type": "admins", "operation": "add", "targetUser": {"username": "bob", "userId": 2}},
        acting_user="alice",
    )
    assert [e["username"] for e in result["list"]] == ["bob"]
    assert result["list"][0]["addedBy"] == "alice"


def test_update_admin_issue_validates_type() -> None:
    with pytest.raises(ValidationError, match='Must be "admins" or "banned-users"'):
        BotActions(_tracker()).dispatch(
            "update-admin-issue",
            {"type": "mods", "operation": "add", "targetUser": "bob"},
            acting_user="alice",
        )


def test_create_admin_issue_returns_existing() -> None:
    tracker = _tracker()
    result = BotActions(tracker).dispatch(
        "create-admin-issue", {"type": "banned-users"}, acting_user="alice"
    )
    assert result["issue"]["title"] == "[Banned Users]"
    assert "create_issue" not in tracker.call_names()


def test_snapshot_is_created_locked_and_labelled() -> None:
    tracker = _tracker()
    snapshot = {"level": 120, "displayName": "Bobby"}

    result = BotActions(tracker).dispatch(
        "save-user-snapshot",
        {"username": "bob", "snapshotData": snapshot},
        acting_user="bob",
    )

    issue = tracker.issue(result["issue"]["number"])
    assert issue["title"] == "[User Snapshot] bob"
    assert issue_label_names(issue) == ["user-snapshot", "automated", "user-id:2"]
    assert issue["locked"] is True
    assert json.loads(issue["body"]) == snapshot


def test_snapshot_update_reuses_the_users_issue() -> None:
    tracker = _tracker()
    bot = BotActions(tracker)
    first = bot.dispatch(
        "save-user-snapshot", {"username": "bob", "snapshotData": {"level": 1}}, acting_user="bob"
    )
    second = bot.dispatch(
        "save-user-snapshot", {"username": "Bob", "snapshotData": {"level": 2}}, acting_user="bob"
    )

    assert first["issue"]["number"] == second["issue"]["number"]
    snapshots = [i for i in tracker.issues if "user-snapshot" in issue_label_names(i)]
    assert len(snapshots) == 1
    assert json.loads(snapshots[0]["body"]) == {"level": 2}


def test_snapshot_of_another_user_is_forbidden() -> None:
    tracker = _tracker()
    with pytest.raises(AuthorizationError, match="your own user snapshot"):
        BotActions(tracker).dispatch(
            "save-user-snapshot", {"username": "bob", "snapshotData": {}}, acting_user="carol"
        )
    with pytest.raises(AuthenticationError):
        BotActions(tracker).dispatch("save-user-snapshot", {"username": "bob", "snapshotData": {}})
    assert "create_issue" not in tracker.call_names()


def test_snapshot_must_be_an_object() -> None:
    with pytest.raises(ValidationError, match="snapshotData must be an object"):
        BotActions(_tracker()).dispatch(
            "save-user-snapshot", {"username": "bob", "snapshotData": [1, 2]}, acting_user="bob"
        )
