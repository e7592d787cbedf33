from __future__ import annotations

from typing import Any


class WikiError(RuntimeError):
    """Base error; `status` is the HTTP status the API answers with."""

    status: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message}


class ValidationError(WikiError):
    status = 400


class PayloadTooLargeError(ValidationError):
    status = 413


class CapacityError(ValidationError):
    def __init__(self, limit: int, items_name: str) -> None:
        super().__init__(
            f"Maximum {limit} {items_name} allowed. Please delete an old item first."
        )
        self.limit = limit


class CooldownError(ValidationError):
    def __init__(self, message: str, next_change_date: str | None) -> None:
        super().__init__(message)
        self.next_change_date = next_change_date

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "nextChangeDate": self.next_change_date}


class AuthenticationError(WikiError):
    status = 401


class AuthorizationError(WikiError):
    status = 403


class NotFoundError(WikiError):
    status = 404


class ConfigurationError(WikiError):
    status = 500


class UpstreamError(WikiError):
    status = 500
