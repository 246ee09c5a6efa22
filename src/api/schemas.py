"""Request/response models for the HTTP API."""

from __future__ import annotations

from pydantic import BaseModel


class GetEmailRequest(BaseModel):
    """Body of ``POST /api/get-email``.

    Both fields are optional at the schema level so a missing value becomes a
    400 with a readable message instead of a 422 validation dump.
    """

    user: str | None = None
    search: str | None = None


class GetEmailResponse(BaseModel):
    # keys: from, subject, date, html ("from" can't be a field name)
    email: dict[str, str | None] | None = None
    message: str | None = None


class ErrorResponse(BaseModel):
    error: str


class HealthResponse(BaseModel):
    status: str
    service: str
    accounts: int
