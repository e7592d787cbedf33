"""Owner / admin / banned look-ups and Permission List maintenance.

The repository owner is always read live from the repository. Admins and
banned users live in two bot-maintained issues whose bodies are JSON arrays of
`{username, userId, addedBy, addedAt}`; membership is a case-insensitive
username match.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from slayer_wiki.errors import (
    AuthorizationError,
    NotFoundError,
    ValidationError,
)
from slayer_wiki.github.client import GitHubApiError, as_upstream_error
from slayer_wiki.github.repo import IssueTracker
from slayer_wiki.records import codec
from slayer_wiki.records.store import format_timestamp
from slayer_wiki.records.validation import validate_user_id, validate_username

logger = logging.getLogger(__name__)


class PermissionList(str, Enum):
    ADMINS = "admins"
    BANNED_USERS = "banned-users"

    @property
    def label(self) -> str:
        return f"wiki-admin:{self.value}"

    @property
    def title(self) -> str:
        return "[Wiki Admins]" if self is PermissionList.ADMINS else "[Banned Users]"


class ListOperation(str, Enum):
    ADD = "add"
    REMOVE = "remove"


@dataclass(frozen=True, slots=True)
class Permissions:
    is_owner: bool
    is_admin: bool

    def to_dict(self) -> dict[str, bool]:
        return {"isOwner": self.is_owner, "isAdmin": self.is_admin}


def parse_permission_list(value: Any) -> PermissionList:
    try:
        return PermissionList(str(value))
    except ValueError:
        raise ValidationError('Invalid type. Must be "admins" or "banned-users"') from None


def parse_list_operation(value: Any) -> ListOperation:
    try:
        return ListOperation(str(value))
    except ValueError:
        raise ValidationError('Invalid action. Must be "add" or "remove"') from None


def _same_user(a: Any, b: str) -> bool:
    return isinstance(a, str) and a.lower() == b.lower()


class PermissionGate:
    def __init__(
        self,
        tracker: IssueTracker,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._tracker = tracker
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def check_permissions(self, username: str) -> Permissions:
        try:
            repo = self._tracker.get_repo()
        except GitHubApiError as error:
            raise as_upstream_error("Permission verification failed", error) from error
        owner_login = ((repo or {}).get("owner") or {}).get("login", "")
        if _same_user(owner_login, username):
            return Permissions(is_owner=True, is_admin=True)

        admins = self.list_entries(PermissionList.ADMINS)
        is_admin = any(_same_user(entry.get("username"), username) for entry in admins)
        return Permissions(is_owner=False, is_admin=is_admin)

    def is_banned(self, username: str) -> bool:
        banned = self.list_entries(PermissionList.BANNED_USERS)
        return any(_same_user(entry.get("username"), username) for entry in banned)

    def list_entries(self, kind: PermissionList) -> list[dict[str, Any]]:
        issue = self._find_list_issue(kind)
        if issue is None:
            return []
        return codec.decode(issue.get("body"))

    def create_admin_issue(self, kind: PermissionList, *, acting_user: str) -> dict[str, Any]:
        """Create (and lock) the issue backing `kind`; owner only.

        Returns the existing open issue when there already is one.
        """
        if not self.check_permissions(acting_user).is_owner:
            raise AuthorizationError("Only repository owner can manage admin configuration")

        existing = self._find_list_issue(kind)
        if existing is not None:
            return existing
        try:
            issue = self._tracker.create_issue(title=kind.title, body="[]", labels=[kind.label])
            self._tracker.lock_issue(int(issue["number"]), reason="resolved")
        except GitHubApiError as error:
            raise as_upstream_error(f"Failed to create {kind.value} list", error) from error
        logger.info("Created %s list issue #%s for %s", kind.value, issue.get("number"), acting_user)
        return issue

    def update_admin_issue(
        self,
        kind: PermissionList,
        operation: ListOperation,
        *,
        acting_user: str,
        target_user: str,
        target_user_id: Any = None,
    ) -> list[dict[str, Any]]:
        target_user = validate_username(target_user)
        perms = self.check_permissions(acting_user)

        if kind is PermissionList.ADMINS and not perms.is_owner:
            raise AuthorizationError("Only repository owner can manage administrators")
        if kind is PermissionList.BANNED_USERS and not perms.is_admin:
            raise AuthorizationError("Only administrators can manage banned users")
        if kind is PermissionList.BANNED_USERS and operation is ListOperation.ADD:
            target = self.check_permissions(target_user)
            if target.is_owner or target.is_admin:
                raise AuthorizationError(
                    "Administrators cannot ban other administrators or the owner"
                )

        issue = self._find_list_issue(kind)
        if issue is None:
            raise NotFoundError(f"Admin issue for {kind.value} not found")
        entries = codec.decode(issue.get("body"))

        if operation is ListOperation.ADD:
            if any(_same_user(e.get("username"), target_user) for e in entries):
                raise ValidationError(f"User {target_user} already in {kind.value} list")
            entries.append(
                {
                    "username": target_user,
                    "userId": self._resolve_user_id(target_user, target_user_id),
                    "addedBy": acting_user,
                    "addedAt": format_timestamp(self._clock()),
                }
            )
        else:
            remaining = [e for e in entries if not _same_user(e.get("username"), target_user)]
            if len(remaining) == len(entries):
                raise NotFoundError(f"User {target_user} not found in {kind.value} list")
            entries = remaining

        body = codec.encode(entries)
        try:
            self._tracker.update_issue(int(issue["number"]), body=body)
        except GitHubApiError as error:
            raise as_upstream_error(f"Failed to update {kind.value} list", error) from error
        logger.info(
            "%s %s %s %s list", acting_user, operation.value, target_user, kind.value
        )
        return entries

    def _resolve_user_id(self, username: str, user_id: Any) -> int:
        if user_id is not None and user_id != "":
            return validate_user_id(user_id)
        try:
            user = self._tracker.get_user(username)
        except GitHubApiError as error:
            if error.status == 404:
                raise NotFoundError(f"GitHub user not found: {username}") from error
            raise as_upstream_error("Failed to look up user", error) from error
        return int(user["id"])

    def _find_list_issue(self, kind: PermissionList) -> dict[str, Any] | None:
        try:
            issues = self._tracker.list_issues(
                labels=[kind.label], state="open", max_pages=1, per_page=1
            )
        except GitHubApiError as error:
            raise as_upstream_error("Permission verification failed", error) from error
        return issues[0] if issues else None
