from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal, Mapping

from slayer_wiki.errors import ConfigurationError

StorageBackend = Literal["github", "kv"]

DEFAULT_GITHUB_API_URL = "https://api.github.com"
DEFAULT_DONATOR_BADGE = "\U0001f48e"
DEFAULT_DONATOR_COLOR = "#ffd700"


def _first(env: Mapping[str, str], *keys: str) -> str | None:
    for key in keys:
        value = env.get(key)
        if value:
            return value
    return None


@dataclass(frozen=True, slots=True)
class Settings:
    bot_token: str | None
    repo_owner: str | None
    repo_name: str | None
    bot_username: str | None = None
    storage_backend: StorageBackend = "github"
    paypal_webhook_id: str | None = None
    donator_badge: str = DEFAULT_DONATOR_BADGE
    donator_color: str = DEFAULT_DONATOR_COLOR
    github_api_url: str = DEFAULT_GITHUB_API_URL
    openai_api_key: str | None = None

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "Settings":
        if env is None:
            env = os.environ

        return cls(
            bot_token=env.get("WIKI_BOT_TOKEN") or None,
            repo_owner=_first(env, "WIKI_REPO_OWNER", "VITE_WIKI_REPO_OWNER"),
            repo_name=_first(env, "WIKI_REPO_NAME", "VITE_WIKI_REPO_NAME"),
            bot_username=env.get("WIKI_BOT_USERNAME") or None,
            storage_backend="kv" if env.get("SLAYER_WIKI_DATA") else "github",
            paypal_webhook_id=env.get("PAYPAL_WEBHOOK_ID") or None,
            donator_badge=env.get("DONATOR_BADGE") or DEFAULT_DONATOR_BADGE,
            donator_color=env.get("DONATOR_BADGE_COLOR") or DEFAULT_DONATOR_COLOR,
            github_api_url=env.get("GITHUB_API_URL") or DEFAULT_GITHUB_API_URL,
            openai_api_key=env.get("OPENAI_API_KEY") or None,
        )

    def require_github(self) -> tuple[str, str, str]:
        """Return `(bot_token, owner, repo)` or raise ConfigurationError."""
        if not self.bot_token:
            raise ConfigurationError("Missing `WIKI_BOT_TOKEN` env var.")
        if not self.repo_owner or not self.repo_name:
            raise ConfigurationError(
                "Missing `WIKI_REPO_OWNER`/`WIKI_REPO_NAME` env vars."
            )
        if self.storage_backend != "github":
            raise ConfigurationError(
                "`SLAYER_WIKI_DATA` selects KV storage, which this deployment does not provide."
            )
        return self.bot_token, self.repo_owner, self.repo_name
