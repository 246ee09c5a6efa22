"""Environment-driven settings and the static mailbox account table."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import timedelta

from src.mail.imap_client import (
    DEFAULT_FOLDER,
    DEFAULT_HOST,
    DEFAULT_PORT,
    DEFAULT_TIMEOUT_SECONDS,
)
from src.mail.types import Credential

logger = logging.getLogger(__name__)

_ACCOUNT_KEY = re.compile(r"^EMAIL_(\d+)$")
_TRUE_VALUES = {"true", "1", "yes", "on"}
_FALSE_VALUES = {"false", "0", "no", "off"}


class AccountTable:
    """Ordered, read-only mapping of account identifier → Credential.

    Built once at startup from numbered ``EMAIL_<n>`` / ``APP_PASSWORD_<n>``
    pairs.  Iteration order follows the numbering, so "the first account" is
    the lowest-numbered complete pair.
    """

    def __init__(self, credentials: list[Credential] | None = None) -> None:
        self._credentials = list(credentials or [])
        self._by_account = {c.account.lower(): c for c in self._credentials}

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> AccountTable:
        env = os.environ if environ is None else environ
        numbered: list[tuple[int, str]] = []
        for key, value in env.items():
            match = _ACCOUNT_KEY.match(key)
            if match and value.strip():
                numbered.append((int(match.group(1)), value.strip()))

        credentials: list[Credential] = []
        for index, account in sorted(numbered):
            secret = env.get(f"APP_PASSWORD_{index}", "").strip()
            if not secret:
                logger.warning(
                    "EMAIL_%d is set but APP_PASSWORD_%d is missing; skipping", index, index
                )
                continue
            credentials.append(Credential(account=account, secret=secret))
        logger.debug("Loaded %d mailbox account(s) from environment", len(credentials))
        return cls(credentials)

    def resolve(self, account: str) -> Credential | None:
        """Return the credential for `account` (case-insensitive), or None."""
        return self._by_account.get(account.strip().lower())

    @property
    def default(self) -> Credential | None:
        return self._credentials[0] if self._credentials else None

    def __iter__(self) -> Iterator[Credential]:
        return iter(self._credentials)

    def __len__(self) -> int:
        return len(self._credentials)


@dataclass
class ImapSettings:
    """Connection parameters for the mail server."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    folder: str = DEFAULT_FOLDER
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    verify_tls: bool = True


@dataclass
class AppSettings:
    """Everything the service reads from the environment, loaded once."""

    accounts: AccountTable = field(default_factory=AccountTable)
    imap: ImapSettings = field(default_factory=ImapSettings)
    search_window: timedelta = timedelta(minutes=5)
    strict_recency: bool = False
    require_user: bool = False
    account_fallback: bool = False
    rate_limit_max_requests: int = 5
    rate_limit_window_seconds: float = 60.0
    trust_forwarded_for: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> AppSettings:
        """Build AppSettings from environment variables (or an explicit mapping)."""
        env = os.environ if environ is None else environ
        return cls(
            accounts=AccountTable.from_env(env),
            imap=ImapSettings(
                host=env.get("IMAP_HOST", DEFAULT_HOST) or DEFAULT_HOST,
                port=_int(env, "IMAP_PORT", DEFAULT_PORT),
                folder=env.get("IMAP_FOLDER", DEFAULT_FOLDER) or DEFAULT_FOLDER,
                timeout=_float(env, "IMAP_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS),
                verify_tls=_bool(env, "IMAP_VERIFY_TLS", True),
            ),
            search_window=timedelta(minutes=_float(env, "SEARCH_WINDOW_MINUTES", 5.0)),
            strict_recency=_bool(env, "STRICT_RECENCY", False),
            require_user=_bool(env, "REQUIRE_USER", False),
            account_fallback=_bool(env, "ACCOUNT_FALLBACK", False),
            rate_limit_max_requests=_int(env, "RATE_LIMIT_MAX_REQUESTS", 5),
            rate_limit_window_seconds=_float(env, "RATE_LIMIT_WINDOW_SECONDS", 60.0),
            trust_forwarded_for=_bool(env, "TRUST_FORWARDED_FOR", False),
            log_level=_log_level(env),
        )


# ── Parsing helpers ────────────────────────────────────────────────────────────


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Invalid %s %r; defaulting to %d", key, raw, default)
        return default
    if value <= 0:
        logger.warning("%s must be positive, got %d; defaulting to %d", key, value, default)
        return default
    return value


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Invalid %s %r; defaulting to %s", key, raw, default)
        return default
    if value <= 0:
        logger.warning("%s must be positive, got %s; defaulting to %s", key, value, default)
        return default
    return value


def _log_level(env: Mapping[str, str]) -> str:
    raw = (env.get("LOG_LEVEL") or "INFO").strip().upper()
    if raw not in logging.getLevelNamesMapping():
        logger.warning("Invalid LOG_LEVEL %r; defaulting to INFO", raw)
        return "INFO"
    return raw


def _bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    logger.warning("Invalid %s %r; defaulting to %s", key, raw, default)
    return default
