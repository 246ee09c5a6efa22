"""HTTP routes: the email lookup endpoint and a liveness probe."""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from src.api.schemas import ErrorResponse, GetEmailRequest, GetEmailResponse, HealthResponse
from src.mail.imap_client import MailboxError
from src.retrieval.handler import (
    ConfigurationError,
    EmailRetriever,
    LookupAborted,
    LookupHandle,
    ValidationError,
)
from src.retrieval.types import RetrievalResult, SearchRequest

if TYPE_CHECKING:
    from src.config.settings import AppSettings
    from src.ratelimit.limiter import AdmissionControl

logger = logging.getLogger(__name__)

router = APIRouter()

SERVICE_NAME = "verify"

# How often a running lookup checks whether the client is still connected
DISCONNECT_POLL_SECONDS = 0.5

# Non-standard status logged when the client went away before the answer
CLIENT_CLOSED_REQUEST = 499

_MISSING_CONFIG_MESSAGE = (
    "Server email configuration is missing. Please check EMAIL_1 and APP_PASSWORD_1."
)


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Liveness probe — reports how many mailbox accounts are configured."""
    retriever: EmailRetriever = request.app.state.retriever
    return HealthResponse(status="healthy", service=SERVICE_NAME, accounts=len(retriever.accounts))


@router.post(
    "/api/get-email",
    response_model=GetEmailResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        429: {"content": {"text/plain": {}}},
        500: {"model": ErrorResponse},
    },
)
async def get_email(body: GetEmailRequest, request: Request) -> Response:
    """Return the newest email matching ``search`` from the requested mailbox."""
    settings: AppSettings = request.app.state.settings
    limiter: AdmissionControl = request.app.state.limiter
    retriever: EmailRetriever = request.app.state.retriever

    key = client_key(request, trust_forwarded_for=settings.trust_forwarded_for)
    decision = limiter.check_and_record(key)
    if not decision.admitted:
        seconds = decision.retry_after_seconds
        return PlainTextResponse(
            f"Too many requests. Please try again in {seconds} seconds.",
            status_code=429,
            headers={
                "Retry-After": str(seconds),
                "X-RateLimit-Limit": str(decision.limit),
                "X-RateLimit-Remaining": "0",
            },
        )
    headers = {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
    }

    search = (body.search or "").strip()
    user = (body.user or "").strip()
    if not search:
        return _error(400, "Missing search term in request.", headers)
    if not user and settings.require_user:
        return _error(400, "Missing user in request.", headers)

    try:
        result = await _run_lookup(request, retriever, settings, user, search)
    except ValidationError as exc:
        return _error(400, str(exc), headers)
    except ConfigurationError as exc:
        logger.warning("Rejected lookup: %s", exc)
        return _error(401 if user else 500, str(exc), headers)
    except LookupAborted:
        logger.info("Client disconnected; lookup for %r abandoned", search)
        return Response(status_code=CLIENT_CLOSED_REQUEST, headers=headers)
    except MailboxError as exc:
        logger.error("IMAP connection or processing error: %s", exc)
        return _error(500, str(exc) or "Failed to fetch emails.", headers)
    except Exception:
        logger.error("Unexpected error while fetching email", exc_info=True)
        return _error(500, "Failed to fetch emails.", headers)

    return JSONResponse(result.to_dict(), headers=headers)


def client_key(request: Request, *, trust_forwarded_for: bool = False) -> str:
    """Identify the caller for rate limiting: peer address or first forwarded hop."""
    if trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


async def _run_lookup(
    request: Request,
    retriever: EmailRetriever,
    settings: AppSettings,
    user: str,
    search: str,
) -> RetrievalResult:
    window, strict = settings.search_window, settings.strict_recency
    if user:
        call = functools.partial(retriever.retrieve, SearchRequest(user, search, window, strict))
    elif settings.account_fallback:
        call = functools.partial(retriever.retrieve_any, search, window, strict)
    else:
        default = retriever.accounts.default
        if default is None:
            raise ConfigurationError(_MISSING_CONFIG_MESSAGE)
        call = functools.partial(
            retriever.retrieve, SearchRequest(default.account, search, window, strict)
        )
    return await _until_disconnected(request, call)


async def _until_disconnected(
    request: Request, call: Callable[..., RetrievalResult]
) -> RetrievalResult:
    """Run a blocking lookup in a worker thread, aborting it if the client leaves.

    A disconnect raises LookupAborted; a cancelled request propagates
    CancelledError.  Either way the mailbox socket is shut down so the
    worker's session closes straight away.
    """
    handle = LookupHandle()
    # imapclient blocks; keep it off the event loop
    lookup = asyncio.ensure_future(asyncio.to_thread(call, handle=handle))
    try:
        while True:
            done, _ = await asyncio.wait({lookup}, timeout=DISCONNECT_POLL_SECONDS)
            if done:
                return lookup.result()
            if await request.is_disconnected():
                raise LookupAborted("Client disconnected before the lookup finished.")
    finally:
        if not lookup.done():
            handle.abort()
            lookup.add_done_callback(_log_abandoned)


def _log_abandoned(lookup: asyncio.Future[RetrievalResult]) -> None:
    if lookup.cancelled():
        return
    exc = lookup.exception()
    if exc is not None:
        logger.debug("Abandoned lookup ended with %s: %s", type(exc).__name__, exc)


def _error(status_code: int, message: str, headers: dict[str, str]) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code, headers=headers)
