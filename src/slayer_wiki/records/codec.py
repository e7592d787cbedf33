"""Record Collection <-> issue body, plus single-object document bodies.

The issue body of an Owning Issue is a pretty-printed JSON array of records.
Decoding never raises: a hand-edited or truncated body must not take down
every read for that owner, so anything that is not a JSON array of objects
decodes to an empty collection.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Sequence

from slayer_wiki.errors import ValidationError

logger = logging.getLogger(__name__)

# GitHub rejects issue bodies longer than this many characters.
ISSUE_BODY_MAX_CHARS = 65536


def decode(body: str | None) -> list[dict[str, Any]]:
    if not body:
        return []
    try:
        parsed = json.loads(body)
    except ValueError:
        logger.warning("Issue body is not valid JSON; treating as empty collection")
        return []
    if not isinstance(parsed, list):
        logger.warning("Issue body is not a JSON array; treating as empty collection")
        return []
    records = [item for item in parsed if isinstance(item, dict)]
    dropped = len(parsed) - len(records)
    if dropped:
        # The next write re-encodes without these entries.
        logger.warning("Dropping %d non-object entries from issue body", dropped)
    return records


def encode(
    records: Sequence[dict[str, Any]],
    *,
    max_chars: int | None = ISSUE_BODY_MAX_CHARS,
) -> str:
    body = json.dumps(list(records), indent=2, ensure_ascii=False)
    if max_chars is not None and len(body) > max_chars:
        raise ValidationError(
            f"Collection is too large to store ({len(body)} characters, max {max_chars})"
        )
    return body


def json_size_bytes(value: Any) -> int:
    return len(json.dumps(value, ensure_ascii=False, separators=(",", ":")).encode("utf-8"))


def decode_document(body: str | None) -> dict[str, Any] | None:
    """A single JSON object body (snapshot issues, registry comments)."""
    if not body:
        return None
    try:
        parsed = json.loads(body)
    except ValueError:
        logger.warning("Document body is not valid JSON")
        return None
    if not isinstance(parsed, dict):
        logger.warning("Document body is not a JSON object")
        return None
    return parsed


def encode_document(
    document: dict[str, Any],
    *,
    max_chars: int | None = ISSUE_BODY_MAX_CHARS,
) -> str:
    body = json.dumps(document, indent=2, ensure_ascii=False)
    if max_chars is not None and len(body) > max_chars:
        raise ValidationError(
            f"Document is too large to store ({len(body)} characters, max {max_chars})"
        )
    return body
