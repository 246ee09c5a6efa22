"""Request and result types for the retrieval handler."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from src.mail.types import RetrievedEmail

DEFAULT_WINDOW = timedelta(minutes=5)


@dataclass(frozen=True)
class SearchRequest:
    """One "find the newest matching email" lookup against one account."""

    account: str
    term: str
    window: timedelta = DEFAULT_WINDOW
    strict: bool = False  # also drop candidates older than `window` client-side


@dataclass(frozen=True)
class RetrievalResult:
    """Outcome of a lookup that did not fail hard.

    Exactly one of ``email`` / ``message`` is set.  A result without an email
    is a soft success: nothing matched, or the match had no usable content.
    """

    email: RetrievedEmail | None = None
    message: str | None = None

    @property
    def found(self) -> bool:
        return self.email is not None

    @classmethod
    def of(cls, email: RetrievedEmail) -> RetrievalResult:
        return cls(email=email, message=None)

    @classmethod
    def not_found(cls, term: str) -> RetrievalResult:
        return cls(
            email=None,
            message=(
                f'No recent emails with the term "{term}" were found. '
                "You can try sending a new code and refreshing again."
            ),
        )

    @classmethod
    def empty(cls, uid: int) -> RetrievalResult:
        return cls(email=None, message=f"Email UID {uid} found, but content appears to be empty.")

    @classmethod
    def unavailable(cls, message: str) -> RetrievalResult:
        return cls(email=None, message=message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "email": self.email.to_dict() if self.email else None,
            "message": self.message,
        }
