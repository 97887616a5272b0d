"""Concurrent media downloader.

Per-URL contract:
- reject blob:/data:/non-http(s) URLs without touching the network
- deterministic collision-resistant filenames
- per-category (and optionally per-host) directories
- skip files that already exist
- per-request timeout, bounded retries for transient failures

Every URL produces exactly one ``DownloadResult``; batches never raise.
"""

from __future__ import annotations

import asyncio
import logging
import os
import pathlib
import posixpath
import re
import time
import urllib.parse
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import httpx

from .config import DOWNLOADER_USER_AGENT
from .errors import (
    AbortedRequest,
    FetchTimeout,
    HttpError,
    InvalidUrl,
    NetworkError,
    PhaseCrawlError,
)
from .mathcore import clamp, format_bytes, hash_suffix, safe_divide, success_rate
from .observability import get_metrics

HASH_LENGTH = 16
MIN_TIMEOUT_MS = 5000

MEDIA_EXTENSIONS = {
    "jpg", "jpeg", "png", "gif", "webp", "svg", "bmp", "ico", "avif",
    "mp4", "webm", "mkv", "mov", "avi", "flv", "m3u8", "mpd", "ts", "m4v",
    "mp3", "wav", "ogg", "m4a", "flac", "aac", "opus",
}
STREAMING_HINTS = (".m3u8", ".mpd", ".webm", ".webp")
TYPE_EXTENSIONS = {"image": ".jpg", "video": ".mp4", "audio": ".mp3"}

CATEGORY_EXTENSIONS = {
    "images": {".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg", ".bmp", ".ico", ".avif"},
    "videos": {".mp4", ".webm", ".mkv", ".mov", ".avi", ".flv", ".m3u8", ".mpd", ".ts", ".m4v"},
    "audio": {".mp3", ".wav", ".ogg", ".m4a", ".flac", ".aac", ".opus"},
    "documents": {".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx"},
}

_EXT_RE = re.compile(r"\.([a-zA-Z0-9]{2,5})(?:\?|#|$)")
_UNSAFE_RE = re.compile(r"[^a-zA-Z0-9._-]")
_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)


class DownloadStatus(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILURE = "failure"


@dataclass(frozen=True)
class DownloadResult:
    """Outcome of one URL: success, skipped or failure, never a mix."""
    url: str
    status: DownloadStatus
    path: Optional[str] = None
    filename: Optional[str] = None
    bytes: int = 0
    duration_ms: int = 0
    reason: Optional[str] = None
    kind: Optional[str] = None

    @classmethod
    def success(cls, url: str, path: str, filename: str, size: int, duration_ms: int) -> "DownloadResult":
        return cls(url, DownloadStatus.SUCCESS, path=path, filename=filename,
                   bytes=size, duration_ms=duration_ms)

    @classmethod
    def skipped(cls, url: str, path: str) -> "DownloadResult":
        return cls(url, DownloadStatus.SKIPPED, path=path, filename=os.path.basename(path))

    @classmethod
    def failure(cls, url: str, error: BaseException) -> "DownloadResult":
        kind = type(error).__name__
        reason = error.message if isinstance(error, PhaseCrawlError) else str(error) or kind
        return cls(url, DownloadStatus.FAILURE, reason=reason, kind=kind)

    @property
    def ok(self) -> bool:
        return self.status != DownloadStatus.FAILURE

    def to_dict(self) -> Dict[str, Any]:
        if self.status == DownloadStatus.SUCCESS:
            return {"url": self.url, "status": self.status.value, "path": self.path,
                    "filename": self.filename, "bytes": self.bytes, "durationMs": self.duration_ms}
        if self.status == DownloadStatus.SKIPPED:
            return {"url": self.url, "status": self.status.value, "path": self.path}
        return {"url": self.url, "status": self.status.value, "reason": self.reason, "kind": self.kind}


# ───────── URL validation & naming ─────────

def validate_url(url: Any) -> None:
    """Raise ``InvalidUrl`` for anything that cannot be fetched directly."""
    if not url or not isinstance(url, str):
        raise InvalidUrl("Invalid URL: empty or non-string")
    if url.startswith("blob:"):
        raise InvalidUrl("Blob URLs cannot be downloaded directly")
    if url.startswith("data:"):
        raise InvalidUrl("Data URLs cannot be downloaded directly")
    if not _SCHEME_RE.match(url):
        raise InvalidUrl("Invalid URL scheme: must be http or https")
    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, ValueError) as e:
        raise InvalidUrl(f"Malformed URL: {e}", cause=e)
    if not parsed.host:
        raise InvalidUrl("Malformed URL: missing host")


def detect_extension(url: str, type_hint: Optional[str] = None) -> str:
    match = _EXT_RE.search(url)
    if match and match.group(1).lower() in MEDIA_EXTENSIONS:
        return "." + match.group(1).lower()
    for hint in STREAMING_HINTS:
        if hint in url:
            return hint
    return TYPE_EXTENSIONS.get(type_hint or "", ".bin")


def media_category(filename: str) -> str:
    ext = os.path.splitext(filename)[1].lower()
    for category, extensions in CATEGORY_EXTENSIONS.items():
        if ext in extensions:
            return category
    return "other"


def generate_filename(url: str, type_hint: Optional[str] = None, add_timestamp: bool = False) -> str:
    """Keep ``base.ext`` with an 8-char hash, or synthesize ``media_<hash16>.ext``."""
    try:
        basename = posixpath.basename(urllib.parse.urlparse(url).path)
    except ValueError:
        basename = ""

    stem, ext = os.path.splitext(basename)
    if not basename or len(basename) < 2 or not ext or not stem:
        filename = f"media_{hash_suffix(url, HASH_LENGTH)}{detect_extension(url, type_hint)}"
    else:
        filename = f"{stem}_{hash_suffix(url, 8)}{ext}"

    filename = _UNSAFE_RE.sub("_", filename)

    if add_timestamp:
        stamp = re.sub(r"[:.]", "-", datetime.now(timezone.utc).isoformat(timespec="milliseconds"))
        filename = f"{stamp}_{filename}"

    return filename


def _safe_origin(url: str) -> str:
    try:
        parsed = urllib.parse.urlparse(url)
    except ValueError:
        return ""
    if not parsed.scheme or not parsed.netloc:
        return ""
    return f"{parsed.scheme}://{parsed.netloc}"


def _write_atomic(file_path: pathlib.Path, content: bytes) -> int:
    file_path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = file_path.with_name(file_path.name + ".part")
    with open(temp_path, "wb") as f:
        f.write(content)
    temp_path.replace(file_path)
    return file_path.stat().st_size


class MediaStore:
    """Batch downloader with bounded concurrency and aggregate statistics."""

    def __init__(
        self,
        *,
        download_dir: str = "./downloads",
        organize_by_type: bool = True,
        organize_by_source: bool = False,
        user_agent: str = DOWNLOADER_USER_AGENT,
        max_concurrent: Optional[int] = None,
        timeout: Optional[int] = None,
        retry_attempts: Optional[int] = None,
        add_timestamp: bool = False,
        retry_delay: float = 0.5,
        follow_redirects: bool = True,
        client: Optional[httpx.AsyncClient] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.download_dir = download_dir
        self.organize_by_type = organize_by_type
        self.organize_by_source = organize_by_source
        self.user_agent = user_agent
        self.max_concurrent = int(clamp(5 if max_concurrent is None else max_concurrent, 1, 20))
        self.timeout = max(MIN_TIMEOUT_MS, 30000 if timeout is None else timeout)
        self.retry_attempts = int(clamp(3 if retry_attempts is None else retry_attempts, 1, 10))
        self.add_timestamp = add_timestamp
        self.retry_delay = retry_delay
        self.follow_redirects = follow_redirects
        self._client = client
        self._logger = logger or logging.getLogger("phasecrawl.media_store")
        self._active: Dict[int, asyncio.Task] = {}
        self.reset_stats()

    @classmethod
    def from_options(cls, options: Dict[str, Any], **kwargs) -> "MediaStore":
        keys = ("download_dir", "organize_by_type", "organize_by_source", "user_agent",
                "max_concurrent", "timeout", "retry_attempts", "add_timestamp", "follow_redirects")
        picked = {k: options[k] for k in keys if options.get(k) is not None}
        picked.update(kwargs)
        return cls(**picked)

    # ───────── paths ─────────

    def target_path(self, url: str, filename: str, download_dir: Optional[str] = None) -> pathlib.Path:
        base = pathlib.Path(download_dir or self.download_dir)
        if self.organize_by_type:
            base = base / media_category(filename)
        if self.organize_by_source:
            host = urllib.parse.urlparse(url).hostname
            if host:
                base = base / host
        return base / filename

    # ───────── transport ─────────

    @asynccontextmanager
    async def _client_scope(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(follow_redirects=self.follow_redirects) as client:
            yield client

    async def _fetch_once(self, client: httpx.AsyncClient, url: str, headers: Dict[str, str]) -> bytes:
        seconds = self.timeout / 1000
        try:
            response = await asyncio.wait_for(client.get(url, headers=headers, timeout=seconds), seconds)
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise FetchTimeout(f"Request timeout after {self.timeout}ms", cause=e)
        except httpx.RequestError as e:
            raise NetworkError(str(e) or type(e).__name__, cause=e)

        if not response.is_success:
            raise HttpError(response.status_code, response.reason_phrase)
        return response.content

    async def _fetch(self, client: httpx.AsyncClient, url: str, headers: Dict[str, str]) -> bytes:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._fetch_once(client, url, headers)
            except (FetchTimeout, NetworkError, HttpError) as e:
                transient = not isinstance(e, HttpError) or e.retryable
                if not transient or attempt >= self.retry_attempts:
                    raise
                self._logger.debug(f"🔁 Retry {attempt}/{self.retry_attempts} for {url}: {e.message}")
                await asyncio.sleep(self.retry_delay * attempt)

    # ───────── public API ─────────

    async def download_file(
        self,
        url: str,
        *,
        referer: Optional[str] = None,
        type: Optional[str] = None,
        download_dir: Optional[str] = None,
        add_timestamp: Optional[bool] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> DownloadResult:
        """Download one URL. Never raises for per-URL problems."""
        if client is None:
            async with self._client_scope() as scoped:
                return await self.download_file(
                    url, referer=referer, type=type, download_dir=download_dir,
                    add_timestamp=add_timestamp, client=scoped,
                )

        started = time.monotonic()
        try:
            validate_url(url)
        except InvalidUrl as e:
            self._logger.warning(f"⚠️ {e.message}: {str(url)[:80]}")
            return self._record(DownloadResult.failure(str(url), e))

        stamp = self.add_timestamp if add_timestamp is None else add_timestamp
        filename = generate_filename(url, type, stamp)
        path = self.target_path(url, filename, download_dir)

        if path.exists():
            self._logger.debug(f"⏭️ File already exists, skipping: {filename}")
            return self._record(DownloadResult.skipped(url, str(path)))

        headers = {
            "User-Agent": self.user_agent,
            "Referer": referer or _safe_origin(url),
        }

        try:
            content = await self._fetch(client, url, headers)
            size = _write_atomic(path, content)
        except PhaseCrawlError as e:
            self._logger.error(f"❌ Failed to download {url}: {e.message}")
            return self._record(DownloadResult.failure(url, e))
        except OSError as e:
            self._logger.error(f"❌ Failed to write {path}: {e}")
            return self._record(DownloadResult.failure(url, e))
        except Exception as e:
            self._logger.error(f"❌ Unexpected error downloading {url}: {e}")
            return self._record(DownloadResult.failure(url, NetworkError(str(e) or type(e).__name__, cause=e)))

        duration_ms = int((time.monotonic() - started) * 1000)
        self._logger.info(f"📥 Downloaded: {filename} ({format_bytes(size) or f'{size} bytes'}) in {duration_ms}ms")
        return self._record(DownloadResult.success(url, str(path), filename, size, duration_ms))

    async def download_files(
        self,
        urls: Sequence[str],
        *,
        max_concurrent: Optional[int] = None,
        referer: Optional[str] = None,
        type: Optional[str] = None,
        download_dir: Optional[str] = None,
    ) -> List[DownloadResult]:
        """Download ``urls`` in batches; results are index-aligned with the input."""
        if not isinstance(urls, (list, tuple)):
            self._logger.error("❌ download_files requires a list of URLs")
            return []

        concurrency = self.max_concurrent if max_concurrent is None else int(clamp(max_concurrent, 1, 20))
        total_batches = -(-len(urls) // concurrency)
        self._logger.info(f"📦 Starting batch download of {len(urls)} files")

        results: List[DownloadResult] = []
        async with self._client_scope() as client:
            for start in range(0, len(urls), concurrency):
                batch = list(urls[start:start + concurrency])
                self._logger.debug(f"Processing batch {start // concurrency + 1}/{total_batches}")

                tasks = [
                    asyncio.ensure_future(self.download_file(
                        u, referer=referer, type=type, download_dir=download_dir, client=client,
                    ))
                    for u in batch
                ]
                for task in tasks:
                    self._active[id(task)] = task
                try:
                    settled = await asyncio.gather(*tasks, return_exceptions=True)
                finally:
                    for task in tasks:
                        self._active.pop(id(task), None)

                for url, outcome in zip(batch, settled):
                    if isinstance(outcome, DownloadResult):
                        results.append(outcome)
                    elif isinstance(outcome, asyncio.CancelledError):
                        results.append(self._record(
                            DownloadResult.failure(str(url), AbortedRequest("Download aborted"))
                        ))
                    else:
                        results.append(self._record(DownloadResult.failure(str(url), outcome)))

        percentage = success_rate(self.stats["successful"], self.stats["total"])["percentage"]
        self._logger.info(
            f"✅ Batch download complete: {self.stats['successful']}/{self.stats['total']} "
            f"successful ({percentage}%)"
        )
        return results

    async def close(self) -> None:
        """Abort in-flight downloads; they resolve as ``AbortedRequest`` failures."""
        for task in list(self._active.values()):
            task.cancel()

    # ───────── statistics ─────────

    def _record(self, result: DownloadResult) -> DownloadResult:
        self.stats["total"] += 1
        metrics = get_metrics()
        if result.status == DownloadStatus.SUCCESS:
            self.stats["successful"] += 1
            self.stats["totalBytes"] += result.bytes
            self.stats["totalDuration"] += result.duration_ms
            metrics.download_duration.observe(result.duration_ms / 1000)
        elif result.status == DownloadStatus.SKIPPED:
            self.stats["skipped"] += 1
        else:
            self.stats["failed"] += 1
        metrics.downloads_total.labels(status=result.status.value).inc()
        return result

    def get_stats(self) -> Dict[str, Any]:
        rate = success_rate(self.stats["successful"], self.stats["total"])
        avg_size = safe_divide(self.stats["totalBytes"], self.stats["successful"], 0)
        avg_duration = safe_divide(self.stats["totalDuration"], self.stats["successful"], 0)
        return {
            **self.stats,
            "successRate": rate["rate"],
            "successPercentage": rate["percentage"],
            "averageSize": round(avg_size),
            "averageSizeFormatted": format_bytes(avg_size) or "0 Bytes",
            "averageDuration": round(avg_duration),
        }

    def reset_stats(self) -> None:
        self.stats: Dict[str, int] = {
            "total": 0,
            "successful": 0,
            "failed": 0,
            "skipped": 0,
            "totalBytes": 0,
            "totalDuration": 0,
        }
