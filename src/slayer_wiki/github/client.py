from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping

import httpx

from slayer_wiki.errors import UpstreamError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RateLimitInfo:
    limit: int | None = None
    remaining: int | None = None
    reset_at: str | None = None
    resource: str | None = None

    @property
    def exhausted(self) -> bool:
        return self.remaining == 0


class GitHubApiError(RuntimeError):
    def __init__(
        self, message: str, *, status: int, url: str, rate_limit: RateLimitInfo | None
    ):
        super().__init__(message)
        self.status = status
        self.url = url
        self.rate_limit = rate_limit

    @property
    def rate_limited(self) -> bool:
        return (
            self.status in (403, 429)
            and self.rate_limit is not None
            and self.rate_limit.exhausted
        )


def sanitize_sensitive_text(text: str) -> str:
    # Tokens must never reach logs or API responses through error strings.
    out = text
    out = re.sub(r"\bgithub_pat_[A-Za-z0-9_]+\b", "***REDACTED:GITHUB_TOKEN***", out)
    out = re.sub(r"\bgh[pousr]_[A-Za-z0-9_]+\b", "***REDACTED:GITHUB_TOKEN***", out)
    out = re.sub(r"(?i)\b(bearer|token)\s+[A-Za-z0-9_\-.]{12,}", r"\1 ***REDACTED***", out)
    return out


def as_upstream_error(context: str, error: GitHubApiError) -> UpstreamError:
    message = sanitize_sensitive_text(str(error))
    logger.error("%s: %s (status=%s, url=%s)", context, message, error.status, error.url)
    return UpstreamError(f"{context}: {message}")


def _parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _iso_from_unix_seconds(value: str | None) -> str | None:
    seconds = _parse_int(value)
    if seconds is None:
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc).isoformat()


def _parse_rate_limit(headers: Mapping[str, str]) -> RateLimitInfo | None:
    limit = _parse_int(headers.get("X-RateLimit-Limit"))
    remaining = _parse_int(headers.get("X-RateLimit-Remaining"))
    reset_at = _iso_from_unix_seconds(headers.get("X-RateLimit-Reset"))
    resource = headers.get("X-RateLimit-Resource")

    if limit is None and remaining is None and reset_at is None and resource is None:
        return None
    return RateLimitInfo(
        limit=limit, remaining=remaining, reset_at=reset_at, resource=resource
    )


class GitHubClient:
    def __init__(
        self,
        *,
        token: str | None,
        base_url: str = "https://api.github.com",
        user_agent: str = "slayer-wiki-bot",
        api_version: str = "2022-11-28",
        timeout_sec: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._token = token
        self._base_url = base_url.rstrip("/")
        self._user_agent = user_agent
        self._api_version = api_version
        self._http = httpx.Client(timeout=timeout_sec, transport=transport)

        self.rate_limit_events: int = 0
        self.last_rate_limit: RateLimitInfo | None = None

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "GitHubClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _headers(self, extra: Mapping[str, str] | None) -> dict[str, str]:
        headers: dict[str, str] = {
            "Accept": "application/vnd.github+json",
            "User-Agent": self._user_agent,
            "X-GitHub-Api-Version": self._api_version,
        }
        if extra:
            headers.update(dict(extra))
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def request_json(
        self,
        path: str,
        *,
        method: str = "GET",
        query: Mapping[str, Any] | None = None,
        json: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        url = f"{self._base_url}{path}"
        params = {k: v for k, v in (query or {}).items() if v is not None}

        try:
            response = self._http.request(
                method,
                url,
                params=params or None,
                json=json,
                headers=self._headers(headers),
            )
        except httpx.HTTPError as error:
            raise GitHubApiError(
                sanitize_sensitive_text(str(error)) or "GitHub API request failed",
                status=0,
                url=url,
                rate_limit=self.last_rate_limit,
            ) from None

        rate_limit = _parse_rate_limit(response.headers)
        if rate_limit is not None:
            self.last_rate_limit = rate_limit

        if response.is_error:
            try:
                payload = response.json()
            except ValueError:
                payload = {}
            if not isinstance(payload, dict):
                payload = {}

            message = str(
                payload.get("message")
                or f"GitHub API request failed ({response.status_code})"
            )
            error = GitHubApiError(
                sanitize_sensitive_text(message),
                status=response.status_code,
                url=url,
                rate_limit=rate_limit,
            )
            if error.rate_limited or "rate limit" in message.lower():
                self.rate_limit_events += 1
            raise error

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    def paginate(
        self,
        path: str,
        *,
        query: Mapping[str, Any] | None = None,
        per_page: int = 100,
        max_pages: int = 10,
    ) -> list[Any]:
        all_items: list[Any] = []
        for page in range(1, max_pages + 1):
            items = self.request_json(
                path,
                query={
                    **(dict(query) if query else {}),
                    "per_page": per_page,
                    "page": page,
                },
            )
            if not isinstance(items, list):
                raise TypeError(f"Expected list from GitHub pagination (path={path}).")
            all_items.extend(items)
            if len(items) < per_page:
                break
        return all_items

    def get_authenticated_user(self) -> dict[str, Any]:
        return self.request_json("/user")

    def get_user(self, username: str) -> dict[str, Any]:
        return self.request_json(f"/users/{username}")
