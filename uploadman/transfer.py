from __future__ import annotations

import asyncio
import json
import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Protocol

import aiohttp

from uploadman.config import UploadSettings
from uploadman.errors import ConfigurationError, SourceUnavailableError, TransferError
from uploadman.models import UploadResult

log = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

UPLOAD_PATH = "/api/upload"
UPLOAD_FIELD_NAME = "file"
UPLOAD_CHUNK_BYTES = 64 * 1024
ERROR_BODY_PREVIEW_CHARS = 500
DEFAULT_CONTENT_TYPE = "application/octet-stream"
SESSION_COOKIE_NAME = "zipline_session"


class TransferClient(Protocol):
    async def upload(
        self, path: Path, filename: str, progress: ProgressCallback
    ) -> UploadResult:
        ...


class CredentialsProvider(Protocol):
    async def base_url(self) -> str | None:
        ...

    async def auth_headers(self) -> dict[str, str]:
        ...


@dataclass(slots=True)
class StaticCredentials:
    url: str | None = None
    session_cookie: str | None = None
    cf_client_id: str | None = None
    cf_client_secret: str | None = None

    @classmethod
    def from_settings(cls, settings: UploadSettings) -> StaticCredentials:
        return cls(
            url=settings.base_url,
            session_cookie=settings.session_cookie,
            cf_client_id=settings.cf_client_id,
            cf_client_secret=settings.cf_client_secret,
        )

    async def base_url(self) -> str | None:
        return self.url

    async def auth_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self.session_cookie:
            headers["Cookie"] = f"{SESSION_COOKIE_NAME}={self.session_cookie}"
        if self.cf_client_id and self.cf_client_secret:
            headers["CF-Access-Client-Id"] = self.cf_client_id
            headers["CF-Access-Client-Secret"] = self.cf_client_secret
        return headers


def _as_text(value: Any) -> str | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (str, int)):
        text = str(value).strip()
        return text or None
    return None


def _first_file(payload: dict[str, Any]) -> dict[str, Any] | None:
    files = payload.get("files")
    if isinstance(files, list) and files and isinstance(files[0], dict):
        return files[0]
    return None


def parse_upload_response(payload: Any, *, filename: str, size: int) -> UploadResult:
    """Pull the server id and public URL out of whatever the server sent back.

    Known shapes are ``{"files": [{"id", "url"}]}``, ``{"id", "url"}`` and
    ``{"file": {"id", "url"}}``. Anything else yields ``None`` fields.
    """
    if not isinstance(payload, dict):
        return UploadResult(server_id=None, url=None, name=filename, size=size)
    first = _first_file(payload)
    nested = payload.get("file") if isinstance(payload.get("file"), dict) else None

    server_id = None
    url = None
    for source in (first, payload, nested):
        if source is None:
            continue
        if server_id is None:
            server_id = _as_text(source.get("id"))
        if url is None:
            url = _as_text(source.get("url"))
    return UploadResult(server_id=server_id, url=url, name=filename, size=size)


def _decode_body(text: str) -> Any:
    if not text.strip():
        return {}
    try:
        return json.loads(text)
    except ValueError:
        return text


class ZiplineTransferClient:
    """Multipart uploads to ``{base_url}/api/upload`` over aiohttp."""

    def __init__(
        self,
        credentials: CredentialsProvider,
        *,
        connect_timeout_s: float = 30,
        read_timeout_s: float = 60,
        chunk_bytes: int = UPLOAD_CHUNK_BYTES,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._credentials = credentials
        self._connect_timeout_s = connect_timeout_s
        self._read_timeout_s = read_timeout_s
        self._chunk_bytes = max(1, chunk_bytes)
        self._http_session = session
        self._owns_session = session is None

    async def _get_http_session(self) -> aiohttp.ClientSession:
        if self._http_session is None or self._http_session.closed:
            timeout = aiohttp.ClientTimeout(
                total=None,
                connect=self._connect_timeout_s,
                sock_read=self._read_timeout_s,
            )
            self._http_session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._http_session

    async def close(self) -> None:
        if self._http_session is not None and self._owns_session:
            await self._http_session.close()
        self._http_session = None

    async def _read_chunks(
        self, path: Path, total: int, progress: ProgressCallback
    ) -> AsyncIterator[bytes]:
        sent = 0
        handle = await asyncio.to_thread(path.open, "rb")
        try:
            while True:
                chunk = await asyncio.to_thread(handle.read, self._chunk_bytes)
                if not chunk:
                    break
                yield chunk
                sent += len(chunk)
                progress(sent, total)
        finally:
            handle.close()

    async def upload(
        self, path: Path, filename: str, progress: ProgressCallback
    ) -> UploadResult:
        base_url = await self._credentials.base_url()
        if not base_url:
            raise ConfigurationError("Zipline URL not configured")
        upload_url = f"{base_url.rstrip('/')}{UPLOAD_PATH}"
        headers = await self._credentials.auth_headers()

        try:
            stat = await asyncio.to_thread(path.stat)
        except OSError as exc:
            raise SourceUnavailableError(f"Upload source unavailable: {path}") from exc
        total = stat.st_size
        content_type = mimetypes.guess_type(filename)[0] or DEFAULT_CONTENT_TYPE
        log.debug(
            "Uploading %s (%d bytes, %s) to %s", filename, total, content_type, upload_url
        )

        with aiohttp.MultipartWriter("form-data") as writer:
            part = writer.append(
                self._read_chunks(path, total, progress),
                {"Content-Type": content_type},
            )
            part.set_content_disposition(
                "form-data", name=UPLOAD_FIELD_NAME, filename=filename
            )

        session = await self._get_http_session()
        try:
            async with session.post(upload_url, data=writer, headers=headers) as resp:
                text = await resp.text()
                status = resp.status
        except aiohttp.ClientError as exc:
            raise TransferError(f"Upload request failed: {exc!r}") from exc
        except asyncio.TimeoutError as exc:
            raise TransferError("Upload timed out") from exc

        if not 200 <= status < 300:
            preview = text[:ERROR_BODY_PREVIEW_CHARS]
            if len(text) > ERROR_BODY_PREVIEW_CHARS:
                preview += "..."
            raise TransferError(f"Upload failed: {status} {preview}".strip(), status=status)

        result = parse_upload_response(_decode_body(text), filename=filename, size=total)
        log.debug("Upload response parsed: id=%s url=%s", result.server_id, result.url)
        return result
