"""FastAPI application factory.

Usage (production)::

    uvicorn src.api.app:create_app --factory --host 0.0.0.0 --port 8000

or simply ``verify serve``.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.api.routes import SERVICE_NAME, router
from src.config.settings import AppSettings
from src.ratelimit.limiter import AdmissionControl, FixedWindowRateLimiter
from src.retrieval.handler import EmailRetriever

logger = logging.getLogger(__name__)


async def _invalid_body_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.info("Rejected malformed request body on %s: %s", request.url.path, exc.errors())
    return JSONResponse({"error": "Request body must be a JSON object."}, status_code=400)


def create_app(
    settings: AppSettings | None = None,
    *,
    retriever: EmailRetriever | None = None,
    limiter: AdmissionControl | None = None,
) -> FastAPI:
    """Build the app; anything not passed in is constructed from `settings`."""
    settings = settings or AppSettings.from_env()

    app = FastAPI(title="VeriFy", description="Fetch the latest matching email from Gmail")
    app.state.settings = settings
    app.state.retriever = retriever or EmailRetriever.from_settings(settings)
    app.state.limiter = limiter or FixedWindowRateLimiter(
        max_requests=settings.rate_limit_max_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    app.add_exception_handler(RequestValidationError, _invalid_body_handler)
    app.include_router(router)

    logger.info(
        "%s ready: %d account(s), window=%s, rate limit %d/%ss",
        SERVICE_NAME,
        len(app.state.retriever.accounts),
        settings.search_window,
        settings.rate_limit_max_requests,
        settings.rate_limit_window_seconds,
    )
    return app
