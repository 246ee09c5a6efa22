"""IMAP mailbox client — wraps imapclient behind a small typed API."""

import logging
import socket
import ssl
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import date
from typing import Any

from imapclient import IMAPClient
from imapclient.exceptions import IMAPClientAbortError, IMAPClientError, LoginError

from src.mail.types import BODY_RESPONSE_KEY, Credential, FetchOptions, MessageSummary

logger = logging.getLogger(__name__)

DEFAULT_HOST = "imap.gmail.com"
DEFAULT_PORT = 993
DEFAULT_FOLDER = "INBOX"
DEFAULT_TIMEOUT_SECONDS = 10.0

_INTERNALDATE = b"INTERNALDATE"

_AUTH_FAILED_MESSAGE = (
    "Authentication failed. Please double-check that the App Password for this "
    "account is correct and has not been revoked."
)

#: Anything that builds an IMAPClient-compatible object.  Tests pass a fake.
ClientFactory = Callable[..., Any]


class MailboxError(Exception):
    """Raised when the mail server fails a search, fetch, or handshake."""


class AuthenticationError(MailboxError):
    """Raised when the server rejects the account's app password."""


class ConnectivityError(MailboxError):
    """Raised on network, TLS, or timeout failures reaching the server."""


class ImapMailbox:
    """Read-only view over one selected IMAP folder.

    Holds a logged-in client for the duration of an `imap_session()` block.
    Never changes message flags unless asked to through FetchOptions.
    """

    def __init__(self, client: Any, account: str) -> None:
        self._client = client
        self._account = account

    # ── Public API ─────────────────────────────────────────────────────────────

    def list_matching(self, term: str, since: date) -> list[MessageSummary]:
        """Return summaries for messages containing `term` dated on or after `since`.

        SINCE only compares calendar days, so the server may return messages
        older than the caller's actual window.  Order follows the server's
        listing order.
        """
        criteria: list[Any] = ["TEXT", term, "SINCE", since]
        charset = None if term.isascii() else "UTF-8"
        logger.debug("IMAP SEARCH %s charset=%s (%s)", criteria, charset, self._account)
        uids = self._guard("SEARCH", lambda: self._client.search(criteria, charset=charset))
        if not uids:
            return []

        dates = self._guard("FETCH INTERNALDATE", lambda: self._client.fetch(uids, [_INTERNALDATE]))
        return [
            MessageSummary(uid=int(uid), timestamp=dates.get(uid, {}).get(_INTERNALDATE))
            for uid in uids
        ]

    def fetch_raw(self, uid: int, options: FetchOptions = FetchOptions()) -> bytes | None:
        """Return the full RFC 822 bytes of one message, or None if the server has none."""
        logger.debug("IMAP FETCH %s %s (%s)", uid, options.data_item, self._account)
        response = self._guard("FETCH", lambda: self._client.fetch([uid], [options.data_item]))
        data = response.get(uid)
        if not data:
            return None
        return data.get(BODY_RESPONSE_KEY)

    def shutdown(self) -> None:
        """Shut the socket down without a LOGOUT, failing any command in flight.

        Safe to call from another thread while this mailbox is blocked on the
        server.  The owning `imap_session()` still runs its normal close.
        """
        logger.info("Shutting down IMAP socket (%s)", self._account)
        try:
            self._client.socket().shutdown(socket.SHUT_RDWR)
        except OSError as exc:
            logger.debug("Socket already closed for %s: %s", self._account, exc)

    # ── Internal helpers ───────────────────────────────────────────────────────

    @staticmethod
    def _guard(operation: str, call: Callable[[], Any]) -> Any:
        try:
            return call()
        except (IMAPClientAbortError, OSError) as exc:
            raise ConnectivityError(f"Connection lost during {operation}: {exc}") from exc
        except IMAPClientError as exc:
            raise MailboxError(f"{operation} failed: {exc}") from exc


def _ssl_context(verify_tls: bool) -> ssl.SSLContext:
    context = ssl.create_default_context()
    if not verify_tls:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


def _close(client: Any, account: str) -> None:
    """Log out; a failure here is logged and never raised."""
    try:
        client.logout()
        logger.info("IMAP connection closed (%s)", account)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Error closing IMAP connection for %s: %s", account, exc)


@contextmanager
def imap_session(
    credential: Credential,
    *,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
    folder: str = DEFAULT_FOLDER,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    verify_tls: bool = True,
    client_factory: ClientFactory = IMAPClient,
) -> Iterator[ImapMailbox]:
    """Context manager that yields a logged-in, folder-selected ImapMailbox.

    The connection is closed exactly once on every exit path, including a
    failed login, an error inside the block, or an early return.

    Example::

        with imap_session(Credential("me@gmail.com", app_password)) as mailbox:
            hits = mailbox.list_matching("code", since=date.today())
    """
    try:
        client = client_factory(
            host, port=port, ssl=True, ssl_context=_ssl_context(verify_tls), timeout=timeout
        )
    except (IMAPClientError, OSError) as exc:
        raise ConnectivityError(f"Could not connect to {host}:{port}: {exc}") from exc

    # Timezone-aware INTERNALDATE values instead of naive local time
    client.normalise_times = False

    try:
        try:
            client.login(credential.account, credential.secret)
        except LoginError as exc:
            logger.warning("IMAP login rejected for %s", credential.account)
            raise AuthenticationError(_AUTH_FAILED_MESSAGE) from exc
        except (IMAPClientAbortError, OSError) as exc:
            raise ConnectivityError(f"Connection lost during login: {exc}") from exc
        except IMAPClientError as exc:
            raise MailboxError(f"Login failed: {exc}") from exc
        logger.info("Successfully connected to IMAP server for user: %s", credential.account)

        try:
            client.select_folder(folder, readonly=True)
        except (IMAPClientAbortError, OSError) as exc:
            raise ConnectivityError(f"Connection lost selecting {folder}: {exc}") from exc
        except IMAPClientError as exc:
            raise MailboxError(f"Could not open folder {folder!r}: {exc}") from exc

        yield ImapMailbox(client, credential.account)
    finally:
        _close(client, credential.account)
