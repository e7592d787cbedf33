from __future__ import annotations

import logging
from typing import Any

from slayer_wiki.github.repo import IssueTracker, issue_label_names

from .types import DataTypeConfig

logger = logging.getLogger(__name__)

DEFAULT_MAX_PAGES = 10


class IssueIndex:
    """Locate the Owning Issue for a (data type, owner) pair.

    GitHub has no query language over issues beyond label/state filters, so a
    lookup is a capped, paginated scan of the open issues carrying the type
    label. The owner label (`user-id:<id>` / `weapon-id:<id>`) is the primary
    key; the legacy title `"<prefix> <owner name>"` is the fallback for issues
    written before owner labels existed, so it only matches issues with no
    owner label at all. A fallback hit gets its owner label added so the next
    lookup takes the fast path.
    """

    def __init__(self, tracker: IssueTracker, *, max_pages: int = DEFAULT_MAX_PAGES) -> None:
        self._tracker = tracker
        self._max_pages = max_pages

    def find(
        self,
        config: DataTypeConfig,
        owner_id: str | int,
        owner_name: str | None = None,
    ) -> dict[str, Any] | None:
        issues = self._tracker.list_issues(
            labels=[config.label], state="open", max_pages=self._max_pages
        )
        owner_label = config.owner_label(owner_id)

        for issue in issues:
            if owner_label in issue_label_names(issue):
                return issue

        if not owner_name:
            return None

        # An issue that already carries an owner label belongs to that owner,
        # whatever its title says.
        owner_prefix = f"{config.owner_kind}-id:"
        legacy_title = config.issue_title(owner_name)
        for issue in issues:
            if issue.get("title") != legacy_title:
                continue
            if any(name.startswith(owner_prefix) for name in issue_label_names(issue)):
                continue
            logger.info("Backfilling %s on legacy issue #%s", owner_label, issue.get("number"))
            self._tracker.add_labels(int(issue["number"]), [owner_label])
            return issue
        return None
