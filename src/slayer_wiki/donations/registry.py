"""Donator registry: one locked, bot-owned issue holding every donator record."""
from __future__ import annotations

import logging
from typing import Any, Mapping

from slayer_wiki.github.client import GitHubApiError, as_upstream_error
from slayer_wiki.github.repo import IssueTracker
from slayer_wiki.records import codec

logger = logging.getLogger(__name__)

REGISTRY_LABEL = "donator-registry"
REGISTRY_TITLE = "[Donator Registry]"


class DonatorRegistry:
    def __init__(self, tracker: IssueTracker) -> None:
        self._tracker = tracker

    def _find_issue(self) -> dict[str, Any] | None:
        issues = self._tracker.list_issues(
            labels=[REGISTRY_LABEL], state="open", max_pages=1, per_page=1
        )
        return issues[0] if issues else None

    def save_status(
        self, username: str, user_id: int, status: Mapping[str, Any]
    ) -> dict[str, Any]:
        """Upsert the donator record for `user_id`; returns the stored record."""
        try:
            issue = self._find_issue()
            records = codec.decode(issue.get("body")) if issue else []
            record = {"username": username, "userId": user_id, **status}

            idx = next(
                (i for i, d in enumerate(records) if str(d.get("userId")) == str(user_id)),
                None,
            )
            if idx is None:
                records.append(record)
            else:
                records[idx] = {**records[idx], **record}
                record = records[idx]

            body = codec.encode(records)
            if issue is None:
                created = self._tracker.create_issue(
                    title=REGISTRY_TITLE, body=body, labels=[REGISTRY_LABEL]
                )
                self._tracker.lock_issue(int(created["number"]), reason="resolved")
                logger.info("Created donator registry issue #%s", created.get("number"))
            else:
                self._tracker.update_issue(int(issue["number"]), body=body)
        except GitHubApiError as error:
            raise as_upstream_error("Failed to save donator status", error) from error

        logger.info("Saved donator status for %s (%s)", username, user_id)
        return record
