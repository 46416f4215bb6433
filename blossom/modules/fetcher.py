# blossom/modules/fetcher.py
"""
fetcher.py - FetcherManager for Blossom

Features:
- FetcherManager: download + verify layer for package sources
- URL templates resolved through modules.variables (%{version})
- Idempotent: an existing file whose checksum matches is reused without any network access
- Streaming http(s) download via requests with per-request timeout
- Progress reporting through a pluggable sink (rich progress bar or null)
- Cancellation at chunk boundaries through a threading.Event
- Checksum verification after download; mismatches are always fatal
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Dict, Optional, Union
from urllib.parse import unquote, urlparse

import requests
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)

from blossom.modules.checksum import check_hash, compute_file_digest, parse_checksum
from blossom.modules.config import get_build_config, get_fetcher_config
from blossom.modules.errors import BuildCancelled, ChecksumMismatch, InvalidSourceURL, NetworkError
from blossom.modules.logging import get_logger
from blossom.modules.meta import Info, Source
from blossom.modules.variables import replace_vars

logger = get_logger("fetcher")

# -----------------------------------------------------------------------
# Progress sinks
# -----------------------------------------------------------------------
class NullProgress:
    """Progress sink that records nothing."""

    def start(self, description: str, total: Optional[int]) -> None:
        pass

    def advance(self, amount: int) -> None:
        pass

    def finish(self) -> None:
        pass


class RichProgress:
    """Progress bar on the terminal; total=None renders as indeterminate."""

    def __init__(self, console=None):
        self._console = console
        self._progress: Optional[Progress] = None
        self._task = None

    def start(self, description: str, total: Optional[int]) -> None:
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            DownloadColumn(),
            TransferSpeedColumn(),
            TimeRemainingColumn(),
            console=self._console,
            transient=False,
        )
        self._progress.start()
        self._task = self._progress.add_task(description, total=total)

    def advance(self, amount: int) -> None:
        if self._progress is not None:
            self._progress.advance(self._task, amount)

    def finish(self) -> None:
        if self._progress is not None:
            self._progress.stop()
        self._progress = None
        self._task = None

# -----------------------------------------------------------------------
# Utility helpers
# -----------------------------------------------------------------------
def resolve_url(source: Source, info: Info) -> str:
    """Substitute placeholders and validate the result as an http(s) URL."""
    url = replace_vars(source.url, info)
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidSourceURL(f"malformed source URL {url!r} (from template {source.url!r})")
    return url


def target_filename(url: str) -> str:
    """Final path segment of url, used as the local file name."""
    segment = unquote(urlparse(url).path.rstrip("/").rsplit("/", 1)[-1])
    if not segment or segment in (".", ".."):
        raise InvalidSourceURL(f"source URL {url!r} has no file name in its path")
    # decoded %2F or %5C would let the name leave the download directory
    if "/" in segment or "\\" in segment or "\x00" in segment:
        raise InvalidSourceURL(f"source URL {url!r} has a path separator in its file name")
    return segment


def _content_length(headers: Any) -> Optional[int]:
    raw = headers.get("Content-Length") if headers is not None else None
    if raw is None:
        return None
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return None
    return value if value >= 0 else None

# -----------------------------------------------------------------------
# FetcherManager
# -----------------------------------------------------------------------
class FetcherManager:
    def __init__(self, download_dir: Optional[Union[str, Path]] = None, session: Optional[requests.Session] = None,
                 progress: Any = None, timeout: Optional[float] = None, chunk_size: Optional[int] = None):
        fetch_cfg = get_fetcher_config()
        self.download_dir = Path(download_dir if download_dir is not None else get_build_config().get("download_dir", "."))
        self.timeout = float(timeout if timeout is not None else fetch_cfg.get("timeout", 60))
        self.chunk_size = int(chunk_size or fetch_cfg.get("chunk_size", 64 * 1024))
        self.user_agent = fetch_cfg.get("user_agent", "blossom")
        if session is None:
            session = requests.Session()
            session.headers["User-Agent"] = self.user_agent
        self.session = session
        if progress is None:
            progress = RichProgress() if fetch_cfg.get("progress", True) else NullProgress()
        self.progress = progress
        # metrics
        self._metrics = {"fetch.total": 0, "fetch.failed": 0, "fetch.success": 0, "cache.hits": 0}

    # -------------------------
    # core fetch flow
    # -------------------------
    def fetch_source(self, source: Source, info: Info, cancel_event: Optional[threading.Event] = None) -> Path:
        """
        Return a local path whose content matches source.checksum.

        flow:
         - validate checksum shape (before any I/O)
         - resolve URL template, derive target file name
         - existing file that verifies -> return without network access
         - stream download, then verify; a mismatch raises ChecksumMismatch
        """
        parse_checksum(source.checksum)
        url = resolve_url(source, info)
        target = self.download_dir / target_filename(url)
        self._metrics["fetch.total"] += 1

        # must run before the target is opened for writing
        if target.exists() and check_hash(target, source.checksum):
            self._metrics["cache.hits"] += 1
            self._metrics["fetch.success"] += 1
            logger.info("Source %s already present and verified, skipping download", target.name)
            return target

        try:
            self._download(url, target, cancel_event)
            logger.info("Source fetched successfully.")
            logger.info("Verifying source hash.")
            if not check_hash(target, source.checksum):
                algorithm, _ = parse_checksum(source.checksum)
                actual = f"{algorithm}:{compute_file_digest(target, algorithm)}"
                raise ChecksumMismatch(target.name, source.checksum, actual)
        except Exception:
            self._metrics["fetch.failed"] += 1
            raise

        logger.info("Source hash verified successfully.")
        self._metrics["fetch.success"] += 1
        return target

    def _download(self, url: str, target: Path, cancel_event: Optional[threading.Event]) -> None:
        logger.info("Downloading \"%s\"", url)
        target.parent.mkdir(parents=True, exist_ok=True)
        try:
            with self.session.get(url, stream=True, timeout=self.timeout) as resp:
                resp.raise_for_status()
                total = _content_length(resp.headers)
                self.progress.start(target.name, total)
                try:
                    with open(target, "wb") as out:
                        for chunk in resp.iter_content(chunk_size=self.chunk_size):
                            if cancel_event is not None and cancel_event.is_set():
                                raise BuildCancelled(f"download of {url} cancelled")
                            if not chunk:
                                continue
                            out.write(chunk)
                            self.progress.advance(len(chunk))
                finally:
                    self.progress.finish()
        except requests.RequestException as e:
            raise NetworkError(url, str(e)) from e

    # -------------------------
    # metrics
    # -------------------------
    def get_metrics(self) -> Dict[str, int]:
        return dict(self._metrics)

# -----------------------------------------------------------------------
# module-level manager & wrappers
# -----------------------------------------------------------------------
_MANAGER_LOCK = threading.RLock()
_MANAGER: Optional[FetcherManager] = None

def get_fetcher_manager() -> FetcherManager:
    global _MANAGER
    with _MANAGER_LOCK:
        if _MANAGER is None:
            _MANAGER = FetcherManager()
        return _MANAGER

def fetch_source(*a, **k): return get_fetcher_manager().fetch_source(*a, **k)
def get_metrics(*a, **k): return get_fetcher_manager().get_metrics(*a, **k)
