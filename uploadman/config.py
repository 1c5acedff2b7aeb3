from __future__ import annotations

import os
from dataclasses import dataclass

from uploadman.reachability import DEFAULT_PROBE_INTERVAL_S
from uploadman.retry import DEFAULT_BACKOFF_BASE_S, DEFAULT_MAX_RETRIES

DEFAULT_MAX_CONCURRENT_UPLOADS = 3
DEFAULT_POLL_INTERVAL_S = 1.0
DEFAULT_CONNECT_TIMEOUT_S = 30
DEFAULT_READ_TIMEOUT_S = 60


def _env_str(name: str) -> str | None:
    value = (os.getenv(name) or "").strip()
    return value or None


def _env_int(name: str, default: int, *, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, value)


def _env_float(name: str, default: float, *, minimum: float = 0.0) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return max(minimum, value)


@dataclass(slots=True)
class UploadSettings:
    max_concurrent_uploads: int = DEFAULT_MAX_CONCURRENT_UPLOADS
    max_retries: int = DEFAULT_MAX_RETRIES
    backoff_base_s: float = DEFAULT_BACKOFF_BASE_S
    poll_interval_s: float = DEFAULT_POLL_INTERVAL_S
    base_url: str | None = None
    session_cookie: str | None = None
    cf_client_id: str | None = None
    cf_client_secret: str | None = None
    connect_timeout_s: int = DEFAULT_CONNECT_TIMEOUT_S
    read_timeout_s: int = DEFAULT_READ_TIMEOUT_S
    probe_interval_s: float = DEFAULT_PROBE_INTERVAL_S
    log_file: str | None = None

    @classmethod
    def from_env(cls) -> UploadSettings:
        base_url = _env_str("ZIPLINE_URL")
        return cls(
            max_concurrent_uploads=_env_int(
                "UPLOAD_MAX_CONCURRENT", DEFAULT_MAX_CONCURRENT_UPLOADS
            ),
            max_retries=_env_int("UPLOAD_MAX_RETRIES", DEFAULT_MAX_RETRIES),
            backoff_base_s=_env_float("UPLOAD_BACKOFF_BASE_S", DEFAULT_BACKOFF_BASE_S),
            poll_interval_s=_env_float(
                "UPLOAD_POLL_INTERVAL_S", DEFAULT_POLL_INTERVAL_S, minimum=0.01
            ),
            base_url=base_url.rstrip("/") if base_url else None,
            session_cookie=_env_str("ZIPLINE_SESSION"),
            cf_client_id=_env_str("CF_CLIENT_ID"),
            cf_client_secret=_env_str("CF_CLIENT_SECRET"),
            connect_timeout_s=_env_int("UPLOAD_CONNECT_TIMEOUT_S", DEFAULT_CONNECT_TIMEOUT_S),
            read_timeout_s=_env_int("UPLOAD_READ_TIMEOUT_S", DEFAULT_READ_TIMEOUT_S),
            probe_interval_s=_env_float(
                "UPLOAD_PROBE_INTERVAL_S", DEFAULT_PROBE_INTERVAL_S, minimum=0.5
            ),
            log_file=_env_str("UPLOAD_LOG_FILE"),
        )
