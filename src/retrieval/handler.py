"""Retrieval handler — finds the newest email matching a term in one mailbox."""

from __future__ import annotations

import functools
import logging
import threading
from collections.abc import Callable
from contextlib import AbstractContextManager
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from src.mail.imap_client import (
    AuthenticationError,
    ConnectivityError,
    ImapMailbox,
    MailboxError,
    imap_session,
)
from src.mail.parser import parse_message, render_body
from src.mail.types import Credential, FetchOptions, RetrievedEmail
from src.retrieval.recency import imap_since_date, select_latest, within_window
from src.retrieval.types import DEFAULT_WINDOW, RetrievalResult, SearchRequest

if TYPE_CHECKING:
    from src.config.settings import AccountTable, AppSettings

logger = logging.getLogger(__name__)

#: Opens a mailbox session for one credential; must close it on exit.
SessionFactory = Callable[[Credential], AbstractContextManager[ImapMailbox]]

#: Returns the current time as an aware datetime.
Clock = Callable[[], datetime]


class ValidationError(Exception):
    """Raised when a request is missing a required field."""


class ConfigurationError(Exception):
    """Raised when the requested account is not in the server configuration."""


class LookupAborted(Exception):
    """Raised when a lookup is abandoned before it finished."""


class LookupHandle:
    """Lets another thread abort a lookup that is blocked on the mail server.

    The retriever attaches the open mailbox for the duration of a session;
    `abort()` shuts that mailbox's socket down so the pending command fails
    fast and the session's own cleanup runs straight away.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._mailbox: ImapMailbox | None = None
        self._aborted = False

    @property
    def aborted(self) -> bool:
        return self._aborted

    def attach(self, mailbox: ImapMailbox) -> None:
        with self._lock:
            if self._aborted:
                raise LookupAborted("Lookup was aborted before the mailbox opened.")
            self._mailbox = mailbox

    def detach(self) -> None:
        with self._lock:
            self._mailbox = None

    def abort(self) -> None:
        """Abort the lookup. A no-op for the socket once the session has ended."""
        with self._lock:
            self._aborted = True
            mailbox = self._mailbox
        if mailbox is not None:
            mailbox.shutdown()


def _local_now() -> datetime:
    return datetime.now().astimezone()


class EmailRetriever:
    """Runs one "newest matching email" lookup per call.

    Stateless between calls: each lookup opens its own session through the
    session factory and closes it before returning.

    Usage::

        retriever = EmailRetriever.from_settings(AppSettings.from_env())
        result = retriever.retrieve(SearchRequest("me@gmail.com", "code"))
    """

    def __init__(
        self,
        accounts: AccountTable,
        session_factory: SessionFactory,
        *,
        clock: Clock = _local_now,
        fetch_options: FetchOptions = FetchOptions(),
    ) -> None:
        self._accounts = accounts
        self._session_factory = session_factory
        self._clock = clock
        self._fetch_options = fetch_options

    @classmethod
    def from_settings(cls, settings: AppSettings) -> EmailRetriever:
        factory = functools.partial(
            imap_session,
            host=settings.imap.host,
            port=settings.imap.port,
            folder=settings.imap.folder,
            timeout=settings.imap.timeout,
            verify_tls=settings.imap.verify_tls,
        )
        return cls(settings.accounts, factory)

    @property
    def accounts(self) -> AccountTable:
        return self._accounts

    # ── Public API ─────────────────────────────────────────────────────────────

    def retrieve(
        self, request: SearchRequest, handle: LookupHandle | None = None
    ) -> RetrievalResult:
        """Return the newest email matching the request, or a soft "nothing" result.

        Raises ValidationError / ConfigurationError before any network I/O, and
        MailboxError subclasses for server-side failures.  Pass a LookupHandle
        to be able to abort the lookup from another thread.
        """
        term = request.term.strip()
        if not term:
            raise ValidationError("Missing search term in request.")
        credential = self._accounts.resolve(request.account)
        if credential is None:
            raise ConfigurationError(
                f"No mailbox is configured for {request.account!r}."
            )

        if handle is not None and handle.aborted:
            raise LookupAborted("Lookup was aborted before the mailbox opened.")

        with self._session_factory(credential) as mailbox:
            if handle is None:
                return self._retrieve_from(mailbox, credential.account, term, request)
            handle.attach(mailbox)
            try:
                return self._retrieve_from(mailbox, credential.account, term, request)
            finally:
                handle.detach()

    def retrieve_any(
        self,
        term: str,
        window: timedelta = DEFAULT_WINDOW,
        strict: bool = False,
        handle: LookupHandle | None = None,
    ) -> RetrievalResult:
        """Try each configured account in order and return the first hit.

        Authentication and connectivity failures move on to the next account.
        If every account failed that way the last error is re-raised; otherwise
        the last soft result is returned.
        """
        if not term.strip():
            raise ValidationError("Missing search term in request.")
        if not len(self._accounts):
            raise ConfigurationError("No mailbox accounts are configured on the server.")

        last_result: RetrievalResult | None = None
        last_error: MailboxError | None = None
        for credential in self._accounts:
            request = SearchRequest(credential.account, term, window=window, strict=strict)
            try:
                result = self.retrieve(request, handle)
            except (AuthenticationError, ConnectivityError) as exc:
                logger.warning("Account %s failed, trying next: %s", credential.account, exc)
                last_error = exc
                continue
            if result.found:
                return result
            last_result = result

        if last_result is None and last_error is not None:
            raise last_error
        return last_result or RetrievalResult.not_found(term)

    # ── Internal ───────────────────────────────────────────────────────────────

    def _retrieve_from(
        self,
        mailbox: ImapMailbox,
        account: str,
        term: str,
        request: SearchRequest,
    ) -> RetrievalResult:
        now = self._clock()
        since = imap_since_date(now, request.window)
        logger.info("Searching for %r since %s for user %s", term, since.isoformat(), account)

        candidates = mailbox.list_matching(term, since)
        if request.strict:
            candidates = [c for c in candidates if within_window(c, now, request.window)]

        latest = select_latest(candidates)
        if latest is None:
            logger.info("No %r messages in window for %s", term, account)
            return RetrievalResult.not_found(term)

        logger.info(
            "Found %d %r message(s) for %s; latest is UID %s",
            len(candidates),
            term,
            account,
            latest.uid,
        )

        raw = mailbox.fetch_raw(latest.uid, self._fetch_options)
        if raw is None:
            logger.error("Could not fetch message details for UID %s", latest.uid)
            return RetrievalResult.unavailable(
                f"Error: Could not retrieve details for email UID {latest.uid}."
            )
        if not raw:
            logger.error("Message body is empty for UID %s", latest.uid)
            return RetrievalResult.unavailable(
                f"Error: Could not retrieve content for email UID {latest.uid}."
            )

        try:
            parsed = parse_message(raw)
        except Exception as exc:  # noqa: BLE001
            logger.error("Error parsing email UID %s: %s", latest.uid, exc, exc_info=True)
            return RetrievalResult.unavailable(f"Error processing email UID {latest.uid}: {exc}")

        body = render_body(parsed)
        if body is None:
            logger.info("Email content is empty after parsing for UID %s", latest.uid)
            return RetrievalResult.empty(latest.uid)

        return RetrievalResult.of(
            RetrievedEmail(
                sender=parsed.sender,
                subject=parsed.subject,
                date=parsed.date or latest.timestamp,
                html=body,
            )
        )
