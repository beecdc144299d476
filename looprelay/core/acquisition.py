"""Acquisition strategies: turn a playlist item into playable content.

Priority order used by the relay:

1. ResolverDownloadStrategy - resolve through the download API, stage the file locally
2. ResolverStreamStrategy   - resolve through the download API, hand the remote URL to transport
3. DirectMediaStrategy      - the locator already is a media file path or direct media URL

Each strategy retries internally with exponential backoff; waits and downloads
stop early when the job's cancel event is set.
"""
import hashlib
import logging
import os
import threading
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import requests

from looprelay.config import (
    ACQUIRE_API_URL,
    ACQUIRE_BACKOFF_SEC,
    ACQUIRE_RETRIES,
    DOWNLOAD_CHUNK_BYTES,
    DOWNLOAD_DIR,
    HTTP_CONNECT_TIMEOUT_SEC,
    HTTP_TIMEOUT_SEC,
)
from looprelay.core.chain import StrategyChain
from looprelay.exceptions import AcquisitionError, CleanupError, StrategyError
from looprelay.models.playlist import PlaylistItem
from looprelay.models.relay import AcquiredContent

logger = logging.getLogger(__name__)

MEDIA_EXTENSIONS = (".mp4", ".mkv", ".mov", ".webm", ".ts", ".flv", ".m4v", ".m3u8")
PART_SUFFIX = ".part"


class AcquisitionStrategy:
    """Base strategy: acquire() wraps _acquire_once() in a retry loop."""

    name = "acquisition"

    def __init__(self, retries: int = 0, backoff_sec: float = 0.0, exponential: bool = True) -> None:
        self.retries = max(0, retries)
        self.backoff_sec = backoff_sec
        self.exponential = exponential

    def _acquire_once(self, item: PlaylistItem, cancel: threading.Event) -> AcquiredContent:
        raise NotImplementedError

    def _delay(self, attempt: int) -> float:
        if self.exponential:
            return self.backoff_sec * (2 ** attempt)
        return self.backoff_sec

    def acquire(self, item: PlaylistItem, cancel: threading.Event) -> AcquiredContent:
        last_error: Optional[StrategyError] = None
        for attempt in range(self.retries + 1):
            if cancel.is_set():
                raise StrategyError(self.name, "cancelled")
            try:
                return self._acquire_once(item, cancel)
            except StrategyError as e:
                last_error = e
            except (requests.RequestException, OSError, ValueError) as e:
                last_error = StrategyError(self.name, str(e))
            if attempt < self.retries:
                delay = self._delay(attempt)
                logger.info(
                    "%s: attempt %d/%d failed (%s), retrying in %.1fs",
                    self.name, attempt + 1, self.retries + 1, last_error.message, delay,
                )
                if cancel.wait(timeout=delay):
                    raise StrategyError(self.name, "cancelled")
        raise last_error


class ResolverClient:
    """Client for the download resolver API (GET <api>?url=<item>)."""

    def __init__(
        self,
        api_url: str = ACQUIRE_API_URL,
        timeout_sec: float = HTTP_TIMEOUT_SEC,
        session: Optional[requests.Session] = None,
        connect_timeout_sec: float = HTTP_CONNECT_TIMEOUT_SEC,
    ) -> None:
        self.api_url = api_url
        self.timeout_sec = timeout_sec
        self.connect_timeout_sec = connect_timeout_sec
        self.session = session or requests.Session()

    @property
    def timeout(self) -> Tuple[float, float]:
        return (self.connect_timeout_sec, self.timeout_sec)

    def resolve(self, locator: str) -> dict:
        """Return {"url", "video_id", "title", "duration_sec"} or raise ValueError."""
        resp = self.session.get(self.api_url, params={"url": locator}, timeout=self.timeout)
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, dict) or data.get("status") != 200:
            raise ValueError("resolver returned no downloadable media")
        result = data.get("result")
        download = result.get("download") if isinstance(result, dict) else None
        if not isinstance(download, dict) or not download.get("status") or not download.get("url"):
            raise ValueError("resolver returned no downloadable media")
        metadata = result.get("metadata")
        if not isinstance(metadata, dict):
            metadata = {}
        return {
            "url": download["url"],
            "video_id": metadata.get("videoId"),
            "title": metadata.get("title"),
            "duration_sec": parse_duration(metadata),
        }


def parse_duration(metadata: dict) -> Optional[float]:
    """Best-effort duration in seconds from resolver metadata; None when unknown."""
    duration = metadata.get("duration")
    candidates = [metadata.get("seconds")]
    if isinstance(duration, dict):
        candidates.insert(0, duration.get("seconds"))
    else:
        candidates.append(duration)
    for value in candidates:
        try:
            seconds = float(value)
        except (TypeError, ValueError):
            continue
        if seconds > 0:
            return seconds
    return None


class ResolverDownloadStrategy(AcquisitionStrategy):
    """Resolve via the API and download the media into the staging directory."""

    name = "resolver_download"

    def __init__(
        self,
        client: Optional[ResolverClient] = None,
        download_dir: Path = DOWNLOAD_DIR,
        retries: int = ACQUIRE_RETRIES,
        backoff_sec: float = ACQUIRE_BACKOFF_SEC,
    ) -> None:
        super().__init__(retries=retries, backoff_sec=backoff_sec)
        self.client = client or ResolverClient()
        self.download_dir = Path(download_dir)

    def _acquire_once(self, item: PlaylistItem, cancel: threading.Event) -> AcquiredContent:
        resolved = self.client.resolve(item.locator)
        file_id = (
            resolved["video_id"]
            or item.video_id
            or hashlib.sha1(item.locator.encode("utf-8")).hexdigest()[:12]
        )
        dest = self.download_dir / f"{file_id}.mp4"
        self.download_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Downloading %s -> %s", item.locator, dest.name)
        self._download(resolved["url"], dest, cancel)
        logger.info("Downloaded %s", dest.name)
        return AcquiredContent(
            source=str(dest),
            strategy=self.name,
            staged=True,
            title=resolved["title"],
            duration_sec=resolved["duration_sec"],
        )

    def _download(self, url: str, dest: Path, cancel: threading.Event) -> None:
        tmp_path = dest.with_name(dest.name + PART_SUFFIX)
        try:
            with self.client.session.get(url, stream=True, timeout=self.client.timeout) as resp:
                resp.raise_for_status()
                expected = resp.headers.get("Content-Length")
                written = 0
                with open(tmp_path, "wb") as fh:
                    for chunk in resp.iter_content(chunk_size=DOWNLOAD_CHUNK_BYTES):
                        if cancel.is_set():
                            raise StrategyError(self.name, "cancelled")
                        if chunk:
                            fh.write(chunk)
                            written += len(chunk)
            if expected and expected.isdigit() and written < int(expected):
                raise StrategyError(self.name, f"incomplete download ({written}/{expected} bytes)")
            if written == 0:
                raise StrategyError(self.name, "empty download")
            os.replace(tmp_path, dest)
        finally:
            if tmp_path.exists():
                try:
                    tmp_path.unlink()
                except OSError as e:
                    logger.warning("Failed to remove partial download %s: %s", tmp_path, e)


class ResolverStreamStrategy(AcquisitionStrategy):
    """Resolve via the API and let the transport read the remote URL directly."""

    name = "resolver_stream"

    def __init__(
        self,
        client: Optional[ResolverClient] = None,
        retries: int = ACQUIRE_RETRIES,
        backoff_sec: float = ACQUIRE_BACKOFF_SEC,
    ) -> None:
        super().__init__(retries=retries, backoff_sec=backoff_sec)
        self.client = client or ResolverClient()

    def _acquire_once(self, item: PlaylistItem, cancel: threading.Event) -> AcquiredContent:
        resolved = self.client.resolve(item.locator)
        return AcquiredContent(
            source=resolved["url"],
            strategy=self.name,
            staged=False,
            title=resolved["title"],
            duration_sec=resolved["duration_sec"],
        )


class DirectMediaStrategy(AcquisitionStrategy):
    """Use the locator as-is when it already points at a media file."""

    name = "direct_media"

    def _acquire_once(self, item: PlaylistItem, cancel: threading.Event) -> AcquiredContent:
        locator = item.locator.strip()
        if "://" not in locator:
            if not Path(locator).is_file():
                raise StrategyError(self.name, f"no such file: {locator}")
        elif not locator.split("?")[0].lower().endswith(MEDIA_EXTENSIONS):
            raise StrategyError(self.name, "locator is not a direct media URL")
        return AcquiredContent(source=locator, strategy=self.name, staged=False, title=item.title)


class AcquisitionChain:
    """acquire(item) -> AcquiredContent, or AcquisitionError listing every attempt."""

    def __init__(self, strategies: Sequence[AcquisitionStrategy]) -> None:
        self._chain: StrategyChain[AcquisitionStrategy] = StrategyChain(
            strategies, exhausted_error=AcquisitionError, label="acquire"
        )

    def names(self) -> List[str]:
        return self._chain.names()

    def acquire(self, item: PlaylistItem, cancel: threading.Event) -> AcquiredContent:
        _, content, failures = self._chain.run(
            lambda s: s.acquire(item, cancel),
            should_continue=lambda: not cancel.is_set(),
        )
        content.diagnostics = [str(f) for f in failures]
        return content


def default_acquisition_chain(download_dir: Path = DOWNLOAD_DIR) -> AcquisitionChain:
    client = ResolverClient()
    return AcquisitionChain(
        [
            ResolverDownloadStrategy(client=client, download_dir=download_dir),
            ResolverStreamStrategy(client=client),
            DirectMediaStrategy(),
        ]
    )


def cleanup_content(content: Optional[AcquiredContent]) -> None:
    """Remove a staged file. Raises CleanupError; callers log it and move on."""
    if content is None or not content.staged:
        return
    path = Path(content.source)
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        raise CleanupError(f"could not remove {path}: {e}") from e
    logger.info("Removed staged file %s", path.name)


def purge_staged_files(download_dir: Path = DOWNLOAD_DIR) -> int:
    """Remove leftover staged media (and partial downloads) from the staging directory."""
    directory = Path(download_dir)
    if not directory.is_dir():
        return 0
    removed = 0
    for p in directory.iterdir():
        if not p.is_file():
            continue
        if not (p.suffix.lower() in MEDIA_EXTENSIONS or p.name.endswith(PART_SUFFIX)):
            continue
        try:
            p.unlink()
            removed += 1
        except OSError as e:
            logger.warning("Failed to remove leftover %s: %s", p, e)
    if removed:
        logger.info("Removed %d leftover staged file(s) from %s", removed, directory)
    return removed
