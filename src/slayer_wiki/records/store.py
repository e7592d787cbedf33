"""Load/save/delete of Record Collections held in Owning Issues.

Every write is a read-modify-write of the whole issue body: the collection is
loaded, changed in memory, re-encoded and sent back in one update call (or one
create + lock call for a first save). GitHub offers no compare-and-swap on
issue bodies, so two concurrent writers for the same owner race and the last
one wins.
"""
from __future__ import annotations

import logging
import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping

from slayer_wiki.errors import CapacityError, NotFoundError, ValidationError
from slayer_wiki.github.client import GitHubApiError, as_upstream_error
from slayer_wiki.github.repo import IssueTracker

from . import codec
from .index import IssueIndex
from .types import DataType, DataTypeConfig, Record, config_for

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

_BASE36 = string.digits + string.ascii_lowercase
ANONYMOUS = "Anonymous"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision and a `Z` suffix."""
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _random_suffix(length: int = 9) -> str:
    return "".join(secrets.choice(_BASE36) for _ in range(length))


def new_record_id(prefix: str, now: datetime) -> str:
    return f"{prefix}-{int(now.timestamp() * 1000)}-{_random_suffix()}"


class RecordStore:
    def __init__(
        self,
        tracker: IssueTracker,
        *,
        index: IssueIndex | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._tracker = tracker
        self._index = index or IssueIndex(tracker)
        self._clock = clock or _utcnow

    # -- reads -------------------------------------------------------------

    def load(
        self,
        data_type: DataType,
        owner_id: str | int,
        owner_name: str | None = None,
    ) -> list[Record]:
        config = config_for(data_type)
        _, records = self._load_collection(config, owner_id, owner_name)
        return records

    def load_grid_submissions(self, weapon_id: str | int) -> list[Record]:
        return self.load(DataType.GRID_SUBMISSION, weapon_id)

    # -- writes ------------------------------------------------------------

    def save(
        self,
        data_type: DataType,
        owner_id: str | int,
        owner_name: str,
        record: Mapping[str, Any],
        *,
        record_id: str | None = None,
    ) -> tuple[Record, list[Record]]:
        """Insert or update one record; returns `(saved_record, collection)`.

        An existing record is matched by `record_id`, then by the record's own
        `id`, then (for types that dedupe by display name) by `name`.
        """
        config = config_for(data_type)
        issue, records = self._load_collection(config, owner_id, owner_name)
        now = self._clock()

        idx = self._match(config, records, record, record_id)
        if idx is not None:
            previous = records[idx]
            saved: Record = {
                **record,
                "id": previous.get("id"),
                "createdAt": previous.get("createdAt") or format_timestamp(now),
                "updatedAt": self._next_timestamp(previous.get("updatedAt"), now),
            }
            records[idx] = saved
        else:
            if config.max_items is not None and len(records) >= config.max_items:
                raise CapacityError(config.max_items, config.items_name)
            stamp = format_timestamp(now)
            saved = {
                **record,
                "id": self._given_id(record) or new_record_id(data_type.value, now),
                "createdAt": stamp,
                "updatedAt": stamp,
            }
            records.append(saved)

        self._persist(config, issue, owner_id, owner_name, records)
        logger.info(
            "Saved %s %s for %s (%d total)",
            config.item_name,
            saved["id"],
            owner_name or owner_id,
            len(records),
        )
        return saved, records

    def delete(
        self,
        data_type: DataType,
        owner_id: str | int,
        record_id: str,
        owner_name: str | None = None,
    ) -> list[Record]:
        config = config_for(data_type)
        issue, records = self._load_collection(config, owner_id, owner_name)
        remaining = [r for r in records if r.get("id") != record_id]
        if issue is None or len(remaining) == len(records):
            raise NotFoundError(f"{config.item_name.capitalize()} not found: {record_id}")

        self._persist(config, issue, owner_id, owner_name, remaining)
        logger.info(
            "Deleted %s %s for %s (%d remaining)",
            config.item_name,
            record_id,
            owner_name or owner_id,
            len(remaining),
        )
        return remaining

    def save_grid_submission(
        self,
        weapon_id: str | int,
        username: str | None,
        data: Mapping[str, Any],
        *,
        replace: bool = False,
    ) -> tuple[Record, list[Record]]:
        """Append a submission to a weapon's collection.

        In replace mode the caller's own submission (matched by `submittedBy`
        or `username`), else the first stored submission, is overwritten while
        keeping its `id` and `createdAt`.
        """
        config = config_for(DataType.GRID_SUBMISSION)
        weapon_name = data.get("weaponName") if isinstance(data.get("weaponName"), str) else None
        issue, records = self._load_collection(config, weapon_id, weapon_name)
        now = self._clock()
        submitter = username or ANONYMOUS

        target_idx: int | None = None
        if replace and records:
            target_idx = next(
                (
                    i
                    for i, r in enumerate(records)
                    if username and username in (r.get("submittedBy"), r.get("username"))
                ),
                0,
            )

        if target_idx is not None:
            target = records[target_idx]
            submission: Record = {
                **data,
                "id": target.get("id"),
                "createdAt": target.get("createdAt") or format_timestamp(now),
                "submittedBy": submitter,
                "submittedAt": format_timestamp(now),
            }
            records[target_idx] = submission
        else:
            submission = {
                **data,
                "id": self._given_id(data) or new_record_id("grid", now),
                "createdAt": format_timestamp(now),
                "submittedBy": submitter,
                "submittedAt": format_timestamp(now),
            }
            existing = next(
                (i for i, r in enumerate(records) if r.get("id") == submission["id"]), None
            )
            if existing is None:
                records.append(submission)
            else:
                records[existing] = submission

        self._persist(config, issue, weapon_id, weapon_name or str(weapon_id), records)
        logger.info(
            "Saved grid submission %s for weapon %s (replace=%s)",
            submission["id"],
            weapon_id,
            replace,
        )
        return submission, records

    # -- internals ---------------------------------------------------------

    @staticmethod
    def _given_id(record: Mapping[str, Any]) -> str | None:
        value = record.get("id")
        return value if isinstance(value, str) and value else None

    @staticmethod
    def _match(
        config: DataTypeConfig,
        records: list[Record],
        record: Mapping[str, Any],
        record_id: str | None,
    ) -> int | None:
        for candidate in (record_id, RecordStore._given_id(record)):
            if not candidate:
                continue
            for i, existing in enumerate(records):
                if existing.get("id") == candidate:
                    return i
        name = record.get("name")
        if config.dedupe_by_name and name:
            for i, existing in enumerate(records):
                if existing.get("name") == name:
                    return i
        return None

    @staticmethod
    def _next_timestamp(previous: Any, now: datetime) -> str:
        before = parse_timestamp(previous)
        if before is not None and now <= before:
            now = before + timedelta(milliseconds=1)
        return format_timestamp(now)

    def _load_collection(
        self,
        config: DataTypeConfig,
        owner_id: str | int,
        owner_name: str | None,
    ) -> tuple[dict[str, Any] | None, list[Record]]:
        try:
            issue = self._index.find(config, owner_id, owner_name)
        except GitHubApiError as error:
            raise as_upstream_error(f"Failed to load {config.items_name}", error) from error
        if issue is None:
            return None, []
        return issue, codec.decode(issue.get("body"))

    def _persist(
        self,
        config: DataTypeConfig,
        issue: dict[str, Any] | None,
        owner_id: str | int,
        owner_name: str | None,
        records: list[Record],
    ) -> None:
        # Size ceiling is checked before any network call.
        body = codec.encode(records)
        try:
            if issue is not None:
                self._tracker.update_issue(int(issue["number"]), body=body)
                return
            if not owner_name:
                raise ValidationError("Owner name is required to create a new collection")
            created = self._tracker.create_issue(
                title=config.issue_title(owner_name),
                body=body,
                labels=[config.label, config.owner_label(owner_id)],
            )
            self._tracker.lock_issue(int(created["number"]), reason="resolved")
            logger.info("Created issue #%s for %s", created.get("number"), owner_name)
        except GitHubApiError as error:
            raise as_upstream_error(f"Failed to save {config.items_name}", error) from error
