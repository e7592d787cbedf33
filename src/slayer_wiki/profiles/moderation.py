"""Content moderation for user-chosen display names."""
from __future__ import annotations

import logging
from typing import Callable

from openai import OpenAI, OpenAIError

logger = logging.getLogger(__name__)

# Returns True when the text should be rejected.
Moderator = Callable[[str], bool]


def allow_all(text: str) -> bool:
    return False


class OpenAIModerator:
    """OpenAI moderation endpoint; an outage lets the text through."""

    def __init__(self, *, api_key: str) -> None:
        self._client = OpenAI(api_key=api_key)

    def __call__(self, text: str) -> bool:
        try:
            response = self._client.moderations.create(input=text)
        except OpenAIError as error:
            logger.warning("OpenAI moderation failed, allowing content: %s", error)
            return False
        flagged = any(result.flagged for result in response.results)
        logger.debug("Moderation result for display name: flagged=%s", flagged)
        return flagged


def moderator_for(api_key: str | None) -> Moderator:
    if not api_key:
        logger.debug("No moderation configured, allowing content")
        return allow_all
    return OpenAIModerator(api_key=api_key)
