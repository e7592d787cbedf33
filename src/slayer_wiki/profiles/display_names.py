"""Display Name Registry.

A single bot-created issue holds the registry. Each user's entry is a JSON
comment on that issue, and the issue body indexes the comments as
`[<userId>]=<commentId>` lines, so setting one user's name rewrites one
comment and never the whole registry.
"""
from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping

from slayer_wiki.admin.permissions import PermissionGate
from slayer_wiki.errors import AuthorizationError, CooldownError, ValidationError
from slayer_wiki.github.client import GitHubApiError, as_upstream_error
from slayer_wiki.github.repo import IssueTracker
from slayer_wiki.records import codec
from slayer_wiki.records.store import format_timestamp

from .moderation import Moderator, allow_all

logger = logging.getLogger(__name__)

REGISTRY_TITLE = "[Display Names Registry]"
REGISTRY_LABELS = ("display-names", "data-version:v1")

MIN_LENGTH = 1
MAX_LENGTH = 30
CHANGE_COOLDOWN = timedelta(days=30)
HISTORY_LIMIT = 5

DISPLAY_NAME_PATTERN = re.compile(r"[a-zA-Z0-9\s_-]+")
INDEX_LINE = re.compile(r"\[(\d+)\]=(\d+)")

TOO_SHORT = f"Display name must be at least {MIN_LENGTH} character"
TOO_LONG = f"Display name must be at most {MAX_LENGTH} characters"
INVALID_CHARS = (
    "Display name can only contain letters, numbers, spaces, hyphens, and underscores"
)
NOT_UNIQUE = "This display name is already taken"
COOLDOWN = "You can only change your display name once per month"
MODERATION_FAILED = "Display name contains inappropriate content"
BANNED = "You cannot reuse this display name (previously banned)"
ADMIN_REQUIRED = "Admin access required"


def validate_display_name(value: Any) -> str:
    if not isinstance(value, str) or len(value) < MIN_LENGTH:
        raise ValidationError(TOO_SHORT)
    if len(value) > MAX_LENGTH:
        raise ValidationError(TOO_LONG)
    if not DISPLAY_NAME_PATTERN.fullmatch(value):
        raise ValidationError(INVALID_CHARS)
    return value


def parse_comment_index(body: str | None) -> dict[str, int]:
    return {m.group(1): int(m.group(2)) for m in INDEX_LINE.finditer(body or "")}


def format_comment_index(index: Mapping[str, int]) -> str:
    return "".join(f"[{user_id}]={comment_id}\n" for user_id, comment_id in index.items())


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _same_name(entry: Mapping[str, Any], lowered: str) -> bool:
    current = entry.get("displayName")
    return isinstance(current, str) and current.lower() == lowered


class DisplayNameRegistry:
    def __init__(
        self,
        tracker: IssueTracker,
        *,
        gate: PermissionGate | None = None,
        moderate: Moderator = allow_all,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._tracker = tracker
        self._gate = gate or PermissionGate(tracker)
        self._moderate = moderate
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def load(self) -> dict[str, dict[str, Any]]:
        """Every entry keyed by the user id string."""
        try:
            issue = self._find_issue()
            if issue is None:
                return {}
            index = parse_comment_index(issue.get("body"))
            if not index:
                return {}
            comments = self._tracker.list_comments(int(issue["number"]))
        except GitHubApiError as error:
            raise as_upstream_error("Failed to load display names", error) from error

        owners = {comment_id: user_id for user_id, comment_id in index.items()}
        registry: dict[str, dict[str, Any]] = {}
        for comment in comments:
            user_id = owners.get(comment.get("id"))
            if user_id is None:
                continue
            entry = codec.decode_document(comment.get("body"))
            if entry is None:
                logger.warning("Skipping unreadable display name entry for user %s", user_id)
                continue
            registry[user_id] = entry
        logger.debug("Loaded %d display names", len(registry))
        return registry

    def get(self, user_id: int) -> dict[str, Any] | None:
        return self.load().get(str(user_id))

    def check(self, display_name: Any, user_id: int | None = None) -> str | None:
        """The first reason `display_name` cannot be used, or None."""
        try:
            display_name = validate_display_name(display_name)
        except ValidationError as error:
            return error.message
        if self._is_taken(self.load(), display_name, user_id):
            return NOT_UNIQUE
        if self._moderate(display_name):
            return MODERATION_FAILED
        return None

    def set(self, user_id: int, username: str, display_name: Any) -> dict[str, Any]:
        display_name = validate_display_name(display_name)
        registry = self.load()
        current = registry.get(str(user_id)) or {}
        now = self._clock()

        last_changed = _parse_timestamp(current.get("lastChanged"))
        if last_changed is not None and now < last_changed + CHANGE_COOLDOWN:
            next_change = format_timestamp(last_changed + CHANGE_COOLDOWN)
            logger.debug("Display name cooldown active for user %s until %s", user_id, next_change)
            raise CooldownError(COOLDOWN, next_change)
        if display_name.lower() in (current.get("bannedNames") or []):
            raise ValidationError(BANNED)
        if self._is_taken(registry, display_name, user_id):
            raise ValidationError(NOT_UNIQUE)
        if self._moderate(display_name):
            logger.info("Display name for user %s flagged by moderation", user_id)
            raise ValidationError(MODERATION_FAILED)

        history = list(current.get("history") or [])
        previous = current.get("displayName")
        if previous and previous != display_name:
            history.insert(
                0,
                {
                    "displayName": previous,
                    "changedAt": current.get("lastChanged") or format_timestamp(now),
                },
            )

        entry = {
            "userId": user_id,
            "username": username,
            "displayName": display_name,
            "lastChanged": format_timestamp(now),
            "changeCount": int(current.get("changeCount") or 0) + 1,
            "bannedNames": list(current.get("bannedNames") or []),
            "history": history[:HISTORY_LIMIT],
        }
        self._save(user_id, entry)
        logger.info("Display name set for user %s", user_id)
        return entry

    def ban(self, user_id: int, display_name: Any, *, acting_user: str) -> dict[str, Any]:
        """Forbid `display_name` for this user and clear it if it is current."""
        if not isinstance(display_name, str) or not display_name.strip():
            raise ValidationError("Missing required fields: userId, displayName")
        self._require_admin(acting_user)

        banned_name = display_name.lower()
        entry = self.load().get(str(user_id)) or {
            "userId": user_id,
            "username": "unknown",
            "displayName": None,
            "lastChanged": None,
            "changeCount": 0,
            "bannedNames": [],
            "history": [],
        }
        banned = list(entry.get("bannedNames") or [])
        if banned_name not in banned:
            banned.append(banned_name)
        entry["bannedNames"] = banned
        if _same_name(entry, banned_name):
            entry["displayName"] = None

        self._save(user_id, entry)
        logger.info("%s banned a display name for user %s", acting_user, user_id)
        return entry

    def reset(self, user_id: int, *, acting_user: str) -> bool:
        """Drop the user's entry entirely; False when there was none."""
        self._require_admin(acting_user)
        try:
            issue = self._find_issue()
            index = parse_comment_index(issue.get("body")) if issue else {}
            comment_id = index.pop(str(user_id), None)
            if issue is None or comment_id is None:
                logger.debug("No display name to reset for user %s", user_id)
                return False
            self._tracker.delete_comment(comment_id)
            self._tracker.update_issue(int(issue["number"]), body=format_comment_index(index))
        except GitHubApiError as error:
            raise as_upstream_error("Failed to reset display name", error) from error
        logger.info("%s reset the display name of user %s", acting_user, user_id)
        return True

    def _require_admin(self, acting_user: str) -> None:
        if not self._gate.check_permissions(acting_user).is_admin:
            logger.warning("Non-admin %s tried to moderate display names", acting_user)
            raise AuthorizationError(ADMIN_REQUIRED)

    def _is_taken(
        self, registry: Mapping[str, Mapping[str, Any]], display_name: str, user_id: int | None
    ) -> bool:
        lowered = display_name.lower()
        return any(
            _same_name(entry, lowered)
            for owner, entry in registry.items()
            if owner != str(user_id)
        )

    def _save(self, user_id: int, entry: dict[str, Any]) -> None:
        body = codec.encode_document(entry)
        try:
            issue = self._find_issue() or self._create_issue()
            number = int(issue["number"])
            index = parse_comment_index(issue.get("body"))
            comment_id = index.get(str(user_id))
            if comment_id is not None:
                try:
                    self._tracker.update_comment(comment_id, body)
                    return
                except GitHubApiError as error:
                    if error.status != 404:
                        raise
                    logger.warning(
                        "Display name comment %s for user %s is gone, re-creating",
                        comment_id,
                        user_id,
                    )
            comment = self._tracker.create_comment(number, body)
            index[str(user_id)] = int(comment["id"])
            self._tracker.update_issue(number, body=format_comment_index(index))
        except GitHubApiError as error:
            raise as_upstream_error("Failed to save display name", error) from error

    def _find_issue(self) -> dict[str, Any] | None:
        issues = self._tracker.list_issues(
            labels=list(REGISTRY_LABELS), state="open", max_pages=1
        )
        for issue in issues:
            if issue.get("title") == REGISTRY_TITLE:
                return issue
        return None

    def _create_issue(self) -> dict[str, Any]:
        issue = self._tracker.create_issue(
            title=REGISTRY_TITLE, body="", labels=[*REGISTRY_LABELS, "automated"]
        )
        self._tracker.lock_issue(int(issue["number"]), reason="resolved")
        logger.info("Created display name registry issue #%s", issue.get("number"))
        return issue
