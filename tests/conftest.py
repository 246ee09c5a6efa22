"""Shared pytest fixtures: raw message builder and an in-memory IMAP server fake."""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import pytest

DEFAULT_DATE_HEADER = "Mon, 19 Oct 2026 10:00:00 +0000"


def _raw_message(
    *,
    html: str | None = None,
    text: str | None = None,
    sender: str = "Shop <no-reply@shop.test>",
    subject: str = "Your verification code",
    date: str | None = DEFAULT_DATE_HEADER,
) -> bytes:
    head = f"From: {sender}\r\nSubject: {subject}\r\n"
    if date is not None:
        head += f"Date: {date}\r\n"
    head += "MIME-Version: 1.0\r\n"

    if html is not None and text is not None:
        body = (
            'Content-Type: multipart/alternative; boundary="b1"\r\n\r\n'
            f"--b1\r\nContent-Type: text/plain; charset=utf-8\r\n\r\n{text}\r\n"
            f"--b1\r\nContent-Type: text/html; charset=utf-8\r\n\r\n{html}\r\n"
            "--b1--\r\n"
        )
    elif html is not None:
        body = f"Content-Type: text/html; charset=utf-8\r\n\r\n{html}"
    else:
        body = f"Content-Type: text/plain; charset=utf-8\r\n\r\n{text or ''}"
    return (head + body).encode("utf-8")


@pytest.fixture
def raw_message() -> Callable[..., bytes]:
    """Builder for raw RFC 822 bytes: raw_message(html=..., text=..., subject=...)."""
    return _raw_message


# ── IMAP fake ──────────────────────────────────────────────────────────────────


@dataclass
class StoredMessage:
    uid: int
    raw: bytes | None
    internal_date: datetime | None = None


class FakeSocket:
    def __init__(self) -> None:
        self.shutdowns: list[int] = []
        self.error: BaseException | None = None

    def shutdown(self, how: int) -> None:
        if self.error is not None:
            raise self.error
        self.shutdowns.append(how)


class FakeIMAPClient:
    """Stands in for imapclient.IMAPClient.

    SEARCH returns every stored UID in insertion order; the tests assert on
    the criteria separately.  Every call is recorded.
    """

    def __init__(
        self,
        messages: list[StoredMessage] | None = None,
        *,
        login_error: BaseException | None = None,
        search_error: BaseException | None = None,
        logout_error: BaseException | None = None,
    ) -> None:
        self.messages = {m.uid: m for m in messages or []}
        self.order = [m.uid for m in messages or []]
        self.login_error = login_error
        self.search_error = search_error
        self.logout_error = logout_error
        self.normalise_times = True
        self.connect_args: tuple[Any, ...] = ()
        self.connect_kwargs: dict[str, Any] = {}
        self.logged_in_as: tuple[str, str] | None = None
        self.selected: tuple[str, bool] | None = None
        self.search_calls: list[tuple[list[Any], str | None]] = []
        self.fetch_calls: list[tuple[list[int], list[Any]]] = []
        self.logout_calls = 0
        self.sock = FakeSocket()

    def login(self, user: str, password: str) -> bytes:
        if self.login_error is not None:
            raise self.login_error
        self.logged_in_as = (user, password)
        return b"OK"

    def select_folder(self, folder: str, readonly: bool = False) -> dict[bytes, Any]:
        self.selected = (folder, readonly)
        return {b"EXISTS": len(self.messages)}

    def search(self, criteria: list[Any], charset: str | None = None) -> list[int]:
        self.search_calls.append((list(criteria), charset))
        if self.search_error is not None:
            raise self.search_error
        return list(self.order)

    def fetch(self, uids: list[int], data: list[Any]) -> dict[int, dict[bytes, Any]]:
        self.fetch_calls.append((list(uids), list(data)))
        response: dict[int, dict[bytes, Any]] = {}
        for uid in uids:
            message = self.messages.get(uid)
            if message is None:
                continue
            if data == [b"INTERNALDATE"]:
                response[uid] = (
                    {b"INTERNALDATE": message.internal_date} if message.internal_date else {}
                )
            else:
                response[uid] = {b"BODY[]": message.raw} if message.raw is not None else {}
        return response

    def socket(self) -> FakeSocket:
        return self.sock

    def logout(self) -> bytes:
        self.logout_calls += 1
        if self.logout_error is not None:
            raise self.logout_error
        return b"BYE"


@pytest.fixture
def fake_imap() -> Callable[..., FakeIMAPClient]:
    """Builder for FakeIMAPClient: fake_imap([StoredMessage(...)], login_error=...)."""
    return FakeIMAPClient


@pytest.fixture
def stored_message() -> type[StoredMessage]:
    return StoredMessage


def factory_for(client: FakeIMAPClient) -> Callable[..., FakeIMAPClient]:
    """Client factory that records its connect arguments on `client`."""

    def _factory(*args: Any, **kwargs: Any) -> FakeIMAPClient:
        client.connect_args = args
        client.connect_kwargs = kwargs
        return client

    return _factory


@pytest.fixture
def client_factory() -> Callable[[FakeIMAPClient], Callable[..., FakeIMAPClient]]:
    return factory_for
