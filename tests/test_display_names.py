from __future__ import annotations

import json
import re

import pytest

from slayer_wiki.errors import (
    AuthorizationError,
    CooldownError,
    UpstreamError,
    ValidationError,
)
from slayer_wiki.github.repo import issue_label_names
from slayer_wiki.profiles.display_names import (
    BANNED,
    INVALID_CHARS,
    MODERATION_FAILED,
    NOT_UNIQUE,
    TOO_LONG,
    TOO_SHORT,
    DisplayNameRegistry,
    format_comment_index,
    parse_comment_index,
    validate_display_name,
)
from tests.helpers.clock import FrozenClock
from tests.helpers.fake_github import FakeIssueTracker


def _registry(
    tracker: FakeIssueTracker | None = None,
    *,
    clock: FrozenClock | None = None,
    flagged: set[str] | None = None,
) -> tuple[DisplayNameRegistry, FakeIssueTracker, FrozenClock]:
    tracker = tracker or FakeIssueTracker(owner="alice", users={"bob": 2, "carol": 3})
    clock = clock or FrozenClock()
    blocked = {name.lower() for name in flagged or ()}
    registry = DisplayNameRegistry(
        tracker, moderate=lambda text: text.lower() in blocked, clock=clock
    )
    return registry, tracker, clock


@pytest.mark.parametrize(
    "value, message",
    [
        ("", TOO_SHORT),
        (None, TOO_SHORT),
        ("x" * 31, TOO_LONG),
        ("bad!", INVALID_CHARS),
        ("emoji \U0001f48e", INVALID_CHARS),
    ],
)
def test_display_name_format(value: object, message: str) -> None:
    with pytest.raises(ValidationError, match=re.escape(message)):
        validate_display_name(value)


def test_display_name_format_accepts_allowed_characters() -> None:
    assert validate_display_name("Slayer_99 - Main") == "Slayer_99 - Main"
    assert validate_display_name("x" * 30) == "x" * 30


def test_comment_index_format() -> None:
    body = format_comment_index({"2": 1000, "15": 1003})
    assert body == "[2]=1000\n[15]=1003\n"
    assert parse_comment_index(body) == {"2": 1000, "15": 1003}
    assert parse_comment_index(None) == {}


def test_first_name_creates_locked_registry() -> None:
    registry, tracker, _ = _registry()

    entry = registry.set(2, "bob", "Bobby")

    assert entry == {
        "userId": 2,
        "username": "bob",
        "displayName": "Bobby",
        "lastChanged": "2024-05-01T12:00:00.000Z",
        "changeCount": 1,
        "bannedNames": [],
        "history": [],
    }
    issue = tracker.issues[0]
    assert issue["title"] == "[Display Names Registry]"
    assert issue_label_names(issue) == ["display-names", "data-version:v1", "automated"]
    assert issue["locked"] is True
    assert parse_comment_index(issue["body"]) == {"2": 1000}
    assert json.loads(tracker.comments[1000]["body"]) == entry
    assert registry.get(2) == entry
    assert registry.get(3) is None


def test_reads_never_create_the_registry() -> None:
    registry, tracker, _ = _registry()
    assert registry.load() == {}
    assert tracker.issues == []


def test_change_within_cooldown_reports_next_date() -> None:
    registry, _, clock = _registry()
    registry.set(2, "bob", "Bobby")
    clock.advance(days=10)

    with pytest.raises(CooldownError) as excinfo:
        registry.set(2, "bob", "Robert")

    assert excinfo.value.to_dict() == {
        "error": "You can only change your display name once per month",
        "nextChangeDate": "2024-05-31T12:00:00.000Z",
    }


def test_change_after_cooldown_keeps_history() -> None:
    registry, tracker, clock = _registry()
    registry.set(2, "bob", "Bobby")
    clock.advance(days=30)

    entry = registry.set(2, "bob", "Robert")

    assert entry["displayName"] == "Robert"
    assert entry["changeCount"] == 2
    assert entry["history"] == [
        {"displayName": "Bobby", "changedAt": "2024-05-01T12:00:00.000Z"}
    ]
    assert len(tracker.comments) == 1
    assert "update_comment" in tracker.call_names()


def test_history_keeps_last_five_names() -> None:
    registry, _, clock = _registry()
    for n in range(7):
        registry.set(2, "bob", f"Name {n}")
        clock.advance(days=31)

    history = registry.get(2)["history"]
    assert [h["displayName"] for h in history] == [f"Name {n}" for n in (5, 4, 3, 2, 1)]


def test_names_are_unique_ignoring_case() -> None:
    registry, _, _ = _registry()
    registry.set(2, "bob", "Bobby")

    with pytest.raises(ValidationError, match=NOT_UNIQUE):
        registry.set(3, "carol", "BOBBY")
    assert registry.check("bobby", 3) == NOT_UNIQUE
    assert registry.check("bobby", 2) is None
    assert registry.check("bad!") == INVALID_CHARS


def test_flagged_names_are_rejected() -> None:
    registry, tracker, _ = _registry(flagged={"Rude Name"})

    assert registry.check("rude name") == MODERATION_FAILED
    with pytest.raises(ValidationError, match=MODERATION_FAILED):
        registry.set(2, "bob", "Rude Name")
    assert tracker.comments == {}


def test_only_admins_ban_names() -> None:
    registry, tracker, _ = _registry()
    registry.set(2, "bob", "Bobby")

    with pytest.raises(AuthorizationError, match="Admin access required"):
        registry.ban(2, "Bobby", acting_user="carol")
    assert registry.get(2)["displayName"] == "Bobby"


def test_banned_name_is_cleared_and_cannot_return() -> None:
    registry, _, clock = _registry()
    registry.set(2, "bob", "Bobby")

    entry = registry.ban(2, "Bobby", acting_user="alice")

    assert entry["displayName"] is None
    assert entry["bannedNames"] == ["bobby"]
    clock.advance(days=31)
    with pytest.raises(ValidationError, match=re.escape(BANNED)):
        registry.set(2, "bob", "BOBBY")
    assert registry.set(2, "bob", "Robert")["bannedNames"] == ["bobby"]


def test_banning_an_unknown_user_creates_a_placeholder() -> None:
    registry, _, _ = _registry()

    registry.ban(7, "Taken", acting_user="alice")

    assert registry.get(7) == {
        "userId": 7,
        "username": "unknown",
        "displayName": None,
        "lastChanged": None,
        "changeCount": 0,
        "bannedNames": ["taken"],
        "history": [],
    }


def test_reset_removes_entry_and_index_line() -> None:
    registry, tracker, _ = _registry()
    registry.set(2, "bob", "Bobby")
    registry.set(3, "carol", "Caz")

    assert registry.reset(2, acting_user="alice") is True

    assert parse_comment_index(tracker.issues[0]["body"]) == {"3": 1001}
    assert 1000 not in tracker.comments
    assert list(registry.load()) == ["3"]
    assert registry.reset(2, acting_user="alice") is False


def test_reset_requires_admin() -> None:
    registry, tracker, _ = _registry()
    registry.set(2, "bob", "Bobby")
    with pytest.raises(AuthorizationError):
        registry.reset(2, acting_user="bob")
    assert "delete_comment" not in tracker.call_names()


def test_unindexed_and_unreadable_comments_are_skipped() -> None:
    registry, tracker, _ = _registry()
    registry.set(2, "bob", "Bobby")
    number = tracker.issues[0]["number"]
    tracker.create_comment(number, json.dumps({"userId": 5, "displayName": "Ghost"}))
    broken = tracker.create_comment(number, "not json")
    tracker.issues[0]["body"] += f"[6]={broken['id']}\n"

    assert list(registry.load()) == ["2"]


def test_missing_comment_is_recreated_on_save() -> None:
    registry, tracker, clock = _registry()
    registry.set(2, "bob", "Bobby")
    del tracker.comments[1000]
    clock.advance(days=31)

    registry.set(2, "bob", "Robert")

    assert parse_comment_index(tracker.issues[0]["body"]) == {"2": 1001}
    assert registry.get(2)["displayName"] == "Robert"


def test_upstream_failures_propagate() -> None:
    registry, tracker, _ = _registry()
    tracker.fail_on.add("list_issues")
    with pytest.raises(UpstreamError):
        registry.load()
