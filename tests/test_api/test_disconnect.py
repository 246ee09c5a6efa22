"""Tests for abandoning an in-flight lookup when the HTTP client goes away."""

import asyncio
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.api import routes
from src.api.routes import _run_lookup
from src.config.settings import AccountTable, AppSettings
from src.mail.imap_client import ConnectivityError
from src.mail.types import Credential, MessageSummary
from src.retrieval.handler import EmailRetriever, LookupAborted
from src.retrieval.types import RetrievalResult

ACCOUNTS = AccountTable([Credential("first@gmail.com", "secret-1")])
SETTINGS = AppSettings(accounts=ACCOUNTS)


class BlockingSessions:
    """Session factory whose mailbox blocks in SEARCH until it is shut down."""

    def __init__(self) -> None:
        self.events: list[str] = []
        self.searching = threading.Event()
        self.closed = threading.Event()
        self._released = threading.Event()

    def list_matching(self, term: str, since: date) -> list[MessageSummary]:
        self.events.append("search started")
        self.searching.set()
        if not self._released.wait(timeout=5):
            self.events.append("search finished")
            return []
        raise ConnectivityError("Connection lost during SEARCH: socket shut down")

    def shutdown(self) -> None:
        self.events.append("shutdown")
        self._released.set()

    @contextmanager
    def __call__(self, credential: Credential) -> Iterator["BlockingSessions"]:
        try:
            yield self
        finally:
            self.events.append("closed")
            self.closed.set()


def _http_request(disconnected: bool = False) -> MagicMock:
    request = MagicMock()
    request.is_disconnected = AsyncMock(return_value=disconnected)
    return request


class TestRunLookup:
    async def test_fast_lookup_returns_result(self) -> None:
        retriever = MagicMock(spec=EmailRetriever)
        retriever.accounts = ACCOUNTS
        retriever.retrieve.return_value = RetrievalResult.not_found("code")
        request = _http_request()

        result = await _run_lookup(request, retriever, SETTINGS, "", "code")

        assert result == RetrievalResult.not_found("code")
        request.is_disconnected.assert_not_awaited()

    async def test_cancelled_request_closes_session_right_away(self) -> None:
        sessions = BlockingSessions()
        retriever = EmailRetriever(ACCOUNTS, sessions)
        task = asyncio.create_task(_run_lookup(_http_request(), retriever, SETTINGS, "", "code"))
        assert await asyncio.to_thread(sessions.searching.wait, 2)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert await asyncio.to_thread(sessions.closed.wait, 2)
        assert sessions.events == ["search started", "shutdown", "closed"]

    async def test_client_disconnect_aborts_lookup(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(routes, "DISCONNECT_POLL_SECONDS", 0.01)
        sessions = BlockingSessions()
        retriever = EmailRetriever(ACCOUNTS, sessions)
        request = MagicMock()
        request.is_disconnected = AsyncMock(side_effect=lambda: sessions.searching.is_set())

        with pytest.raises(LookupAborted):
            await _run_lookup(request, retriever, SETTINGS, "first@gmail.com", "code")

        assert await asyncio.to_thread(sessions.closed.wait, 2)
        assert sessions.events == ["search started", "shutdown", "closed"]

    async def test_connected_client_waits_for_slow_lookup(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(routes, "DISCONNECT_POLL_SECONDS", 0.01)

        def slow_retrieve(*args: object, **kwargs: object) -> RetrievalResult:
            time.sleep(0.1)
            return RetrievalResult.not_found("code")

        retriever = MagicMock(spec=EmailRetriever)
        retriever.accounts = ACCOUNTS
        retriever.retrieve.side_effect = slow_retrieve
        request = _http_request()

        result = await _run_lookup(request, retriever, SETTINGS, "", "code")

        assert result.message is not None
        assert request.is_disconnected.await_count >= 1
