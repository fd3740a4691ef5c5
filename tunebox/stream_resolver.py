"""
Stream resolution and transfer for tunebox.

A StreamResolver turns a track identifier into a streamable URL, checks the
remote size, and performs the actual (resumable) file transfer. It has no
knowledge of the cache index; the CacheCoordinator decides what to fetch.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Optional

import httpx

from .errors import CacheCorruption, NetworkError, StorageError

if TYPE_CHECKING:
    from .config_manager import ConfigManager

ProgressCallback = Callable[[int, Optional[int]], None]


@dataclass
class TransferResult:
    """Outcome of a completed transfer."""

    bytes_written: int
    total_bytes: Optional[int]  # Announced length, if the server sent one
    resumed: bool = False


class StreamResolver(ABC):
    """Resolves and fetches audio for a track identifier."""

    @abstractmethod
    def stream_url_for(self, track_id: str) -> str:
        """Direct streaming URL, usable by the media engine without a lookup."""
        ...

    @abstractmethod
    def resolve_stream_url(self, track_id: str) -> str:
        """
        Resolve the URL a track should be downloaded from.

        Raises:
            NetworkError: If the lookup fails
        """
        ...

    @abstractmethod
    def estimate_size(self, track_id: str) -> Optional[int]:
        """
        Best-effort remote size lookup.

        Returns:
            Size in bytes, or None if the server does not report one

        Raises:
            NetworkError: If the HEAD request fails
        """
        ...

    @abstractmethod
    def download(
        self,
        url: str,
        destination: Path,
        on_progress: Optional[ProgressCallback] = None,
    ) -> TransferResult:
        """
        Download ``url`` into ``destination`` (synchronous).

        If ``destination`` already holds a partial transfer, implementations
        may resume it.

        Raises:
            NetworkError: If the transfer fails or is cut short
            StorageError: If the destination cannot be written
            CacheCorruption: If more bytes arrive than announced
        """
        ...

    def close(self) -> None:
        """Release network resources."""


class HttpStreamResolver(StreamResolver):
    """StreamResolver backed by the song server's HTTP API."""

    def __init__(self, config_manager: "ConfigManager", client: Optional[httpx.Client] = None):
        """
        Initialize HttpStreamResolver.

        Args:
            config_manager: ConfigManager for base URL, timeout and chunk size
            client: Pre-built httpx client (tests pass one with a MockTransport)
        """
        self.logger = logging.getLogger(__name__)
        self.config_manager = config_manager
        timeout = config_manager.get_float("http_timeout_seconds", 30.0)
        self._client = client or httpx.Client(timeout=timeout, follow_redirects=True)
        self._owns_client = client is None

    @property
    def base_url(self) -> str:
        return (self.config_manager.get("stream_base_url") or "").rstrip("/")

    @property
    def chunk_size(self) -> int:
        return self.config_manager.get_int("download_chunk_bytes", 65536) or 65536

    def stream_url_for(self, track_id: str) -> str:
        return f"{self.base_url}/songs/{track_id}.mp3"

    def resolve_stream_url(self, track_id: str) -> str:
        lookup_url = f"{self.base_url}/api/v1/songs/{track_id}/stream"
        try:
            response = self._client.get(lookup_url)
            response.raise_for_status()
            url = response.json().get("url")
        except httpx.HTTPStatusError as e:
            raise NetworkError(
                f"Stream lookup for {track_id} failed: HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise NetworkError(f"Stream lookup for {track_id} failed: {e}") from e
        except ValueError as e:
            raise NetworkError(f"Stream lookup for {track_id} returned invalid JSON") from e

        if not url:
            raise NetworkError(f"Stream lookup for {track_id} returned no URL")
        self.logger.debug("Resolved stream URL for %s", track_id)
        return url

    def estimate_size(self, track_id: str) -> Optional[int]:
        try:
            response = self._client.head(self.stream_url_for(track_id))
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NetworkError(
                f"Size lookup for {track_id} failed: HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise NetworkError(f"Size lookup for {track_id} failed: {e}") from e

        content_length = response.headers.get("content-length")
        if content_length and content_length.isdigit():
            return int(content_length)
        return None

    def download(
        self,
        url: str,
        destination: Path,
        on_progress: Optional[ProgressCallback] = None,
    ) -> TransferResult:
        destination = Path(destination)
        offset = destination.stat().st_size if destination.exists() else 0
        headers = {"Range": f"bytes={offset}-"} if offset else {}

        try:
            with self._client.stream("GET", url, headers=headers) as response:
                if response.status_code == 416 and offset:
                    # Partial file is unusable for this resource; start over
                    self.logger.info("Server rejected resume of %s, restarting", destination.name)
                    destination.unlink()
                    return self.download(url, destination, on_progress)
                response.raise_for_status()

                resumed = offset > 0 and response.status_code == 206
                if not resumed:
                    offset = 0
                content_length = response.headers.get("content-length")
                total = offset + int(content_length) if content_length else None

                written = offset
                with open(destination, "ab" if resumed else "wb") as f:
                    for chunk in response.iter_bytes(self.chunk_size):
                        f.write(chunk)
                        written += len(chunk)
                        if on_progress:
                            on_progress(written, total)
        except httpx.HTTPStatusError as e:
            raise NetworkError(
                f"Download of {url} failed: HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise NetworkError(f"Download of {url} failed: {e}") from e
        except OSError as e:
            raise StorageError(f"Cannot write {destination}: {e}") from e

        if total is not None and written < total:
            raise NetworkError(f"Download of {url} cut short at {written}/{total} bytes")
        if total is not None and written > total:
            raise CacheCorruption(destination.name, f"received {written} bytes, expected {total}")

        return TransferResult(bytes_written=written, total_bytes=total, resumed=resumed)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
