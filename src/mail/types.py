"""Data types shared across the mail and retrieval modules."""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class Credential:
    """One configured mailbox account.

    The secret is an app password, never an OAuth token.  It is excluded from
    repr so a credential can be logged without leaking it.
    """

    account: str
    secret: str = field(repr=False)


@dataclass(frozen=True)
class MessageSummary:
    """A search hit before its content is fetched.

    ``timestamp`` is the server's INTERNALDATE and may be missing when the
    server omits it from the FETCH response.
    """

    uid: int
    timestamp: datetime | None = None


@dataclass(frozen=True)
class FetchOptions:
    """Which FETCH data item to request for a full message."""

    mark_seen: bool = False

    @property
    def data_item(self) -> str:
        # BODY.PEEK[] leaves the \Seen flag untouched
        return "BODY[]" if self.mark_seen else "BODY.PEEK[]"


# The server always answers with the BODY[] key, peek or not.
BODY_RESPONSE_KEY = b"BODY[]"


@dataclass(frozen=True)
class ParsedEmail:
    """Structured fields decoded from a raw RFC 822 message."""

    sender: str
    subject: str
    date: datetime | None = None
    text: str = ""
    html: str = ""


@dataclass(frozen=True)
class RetrievedEmail:
    """The email handed back to the caller, with a ready-to-render body."""

    sender: str
    subject: str
    date: datetime | None
    html: str

    def to_dict(self) -> dict[str, str | None]:
        return {
            "from": self.sender,
            "subject": self.subject,
            "date": self.date.isoformat() if self.date else None,
            "html": self.html,
        }
