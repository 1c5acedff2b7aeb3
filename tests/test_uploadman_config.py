from __future__ import annotations

import pytest

from uploadman.config import UploadSettings

ENV_NAMES = (
    "UPLOAD_MAX_CONCURRENT",
    "UPLOAD_MAX_RETRIES",
    "UPLOAD_BACKOFF_BASE_S",
    "UPLOAD_POLL_INTERVAL_S",
    "ZIPLINE_URL",
    "ZIPLINE_SESSION",
    "CF_CLIENT_ID",
    "CF_CLIENT_SECRET",
    "UPLOAD_CONNECT_TIMEOUT_S",
    "UPLOAD_READ_TIMEOUT_S",
    "UPLOAD_PROBE_INTERVAL_S",
    "UPLOAD_LOG_FILE",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


def test_defaults_without_environment() -> None:
    settings = UploadSettings.from_env()

    assert settings.max_concurrent_uploads == 3
    assert settings.max_retries == 3
    assert settings.backoff_base_s == 2.0
    assert settings.base_url is None
    assert settings.read_timeout_s == 60


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("UPLOAD_MAX_CONCURRENT", "5")
    monkeypatch.setenv("UPLOAD_MAX_RETRIES", "0")
    monkeypatch.setenv("ZIPLINE_URL", " https://z.example/ ")
    monkeypatch.setenv("ZIPLINE_SESSION", "s3cret")
    monkeypatch.setenv("UPLOAD_LOG_FILE", "uploads.log")

    settings = UploadSettings.from_env()

    assert settings.max_concurrent_uploads == 5
    assert settings.max_retries == 1
    assert settings.base_url == "https://z.example"
    assert settings.session_cookie == "s3cret"
    assert settings.log_file == "uploads.log"


def test_garbage_values_fall_back_or_clamp(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("UPLOAD_MAX_CONCURRENT", "lots")
    monkeypatch.setenv("UPLOAD_BACKOFF_BASE_S", "-4")
    monkeypatch.setenv("UPLOAD_POLL_INTERVAL_S", "0")
    monkeypatch.setenv("CF_CLIENT_ID", "   ")

    settings = UploadSettings.from_env()

    assert settings.max_concurrent_uploads == 3
    assert settings.backoff_base_s == 0.0
    assert settings.poll_interval_s == 0.01
    assert settings.cf_client_id is None
