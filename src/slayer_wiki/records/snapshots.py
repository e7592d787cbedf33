"""User snapshots: one locked, bot-owned issue per user holding a JSON object.

The frontend writes a summary of a user's profile here so other pages can
show it without the user's own token.
"""
from __future__ import annotations

import logging
from typing import Any, Mapping

from slayer_wiki.github.repo import IssueTracker

from . import codec
from .index import IssueIndex
from .types import DataTypeConfig

logger = logging.getLogger(__name__)

SNAPSHOT_CONFIG = DataTypeConfig(
    label="user-snapshot",
    title_prefix="[User Snapshot]",
    items_name="snapshots",
    max_items=None,
    dedupe_by_name=False,
)


class UserSnapshots:
    def __init__(self, tracker: IssueTracker, *, index: IssueIndex | None = None) -> None:
        self._tracker = tracker
        self._index = index or IssueIndex(tracker)

    def save(self, user_id: int, username: str, snapshot: Mapping[str, Any]) -> dict[str, Any]:
        """Create or overwrite the user's snapshot issue and return it."""
        body = codec.encode_document(dict(snapshot))
        issue = self._index.find(SNAPSHOT_CONFIG, user_id, username)
        if issue is not None:
            logger.debug("Updating snapshot issue #%s for %s", issue.get("number"), username)
            return self._tracker.update_issue(int(issue["number"]), body=body)

        issue = self._tracker.create_issue(
            title=SNAPSHOT_CONFIG.issue_title(username),
            body=body,
            labels=[SNAPSHOT_CONFIG.label, "automated", SNAPSHOT_CONFIG.owner_label(user_id)],
        )
        self._tracker.lock_issue(int(issue["number"]), reason="resolved")
        logger.info("Created snapshot issue #%s for %s", issue.get("number"), username)
        return issue
