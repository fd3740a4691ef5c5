"""
Cache management for tunebox.

Maintains a verified local cache of downloaded audio files so playback can
prefer disk over the network. Downloads run in the background and never block
playback; failures are logged and reported as False, since streaming is always
available as a fallback.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

from .errors import (
    CacheCorruption,
    InsufficientSpaceError,
    NetworkError,
    StorageError,
)
from .models import CacheEntry, Track
from .retry import call_with_retry

if TYPE_CHECKING:
    from .config_manager import ConfigManager
    from .database import KeyValueStore
    from .storage import FileStorage
    from .stream_resolver import StreamResolver

CACHE_INDEX_KEY = "cache_index"
SECONDS_PER_DAY = 24 * 60 * 60


class _PendingDownload:
    """Result slot shared by every caller waiting on one track's download."""

    def __init__(self):
        self.done = threading.Event()
        self.result = False


class CacheCoordinator:
    """
    Owns the Cache Index and every file it points at.

    One instance per process. All index writes happen under ``_index_lock`` and
    rewrite the full persisted blob. At most one download per track id is in
    flight; concurrent requests for the same id wait for and share its result.
    """

    def __init__(
        self,
        config_manager: "ConfigManager",
        kv_store: "KeyValueStore",
        storage: "FileStorage",
        resolver: "StreamResolver",
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize CacheCoordinator.

        Nothing touches disk until initialize() (or the first operation) runs.

        Args:
            config_manager: ConfigManager for runtime config access
            kv_store: Persistence for the serialized Cache Index
            storage: FileStorage holding the audio files
            resolver: StreamResolver used for size lookups and transfers
            clock: Time source (injectable for tests)
            sleep: Sleep function used between status-check retries
        """
        self.logger = logging.getLogger(__name__)
        self.config_manager = config_manager
        self.kv_store = kv_store
        self.storage = storage
        self.resolver = resolver
        self._clock = clock
        self._sleep = sleep

        self._entries: Dict[str, CacheEntry] = {}
        self._index_lock = threading.RLock()
        self._init_lock = threading.Lock()
        self._ready = threading.Event()

        self._in_flight: Dict[str, _PendingDownload] = {}
        self._in_flight_lock = threading.Lock()
        self._progress: Dict[str, float] = {}

        max_downloads = config_manager.get_int("max_concurrent_downloads", 2) or 1
        self._download_semaphore = threading.Semaphore(max(1, max_downloads))

        # Cleanup monitoring
        self._cleanup_thread: Optional[threading.Thread] = None
        self._monitoring = False
        self._stop_event = threading.Event()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    def initialize(self) -> None:
        """
        Create the cache directory, load the index and verify every entry.

        Idempotent; concurrent callers block until the first one finishes.

        Raises:
            StorageError: If the cache directory cannot be created
        """
        if self._ready.is_set():
            return

        with self._init_lock:
            if self._ready.is_set():
                return

            self.storage.ensure_directory()
            entries = self._load_index()
            now = self._clock()
            for track_id, entry in entries.items():
                if not entry.last_played:
                    entries[track_id].last_played = now

            with self._index_lock:
                self._entries = entries
            evicted = self.verify_all()

            self._ready.set()
            self.logger.info(
                "CacheCoordinator initialized at %s: %d entries, %d evicted",
                self.storage.base_directory,
                len(self._entries),
                evicted,
            )

    def _ensure_ready(self) -> None:
        if not self._ready.is_set():
            self.initialize()

    def start(self) -> None:
        """Initialize and start the periodic cleanup monitor."""
        self.initialize()
        self._start_cleanup_monitor()

    def shutdown(self) -> None:
        """Stop background work and release network resources."""
        self.stop_cleanup_monitor()
        self.resolver.close()

    def _start_cleanup_monitor(self) -> None:
        """Start background thread that re-verifies and evicts stale entries."""
        if self._monitoring:
            return

        self._monitoring = True
        self._stop_event.clear()
        interval = self.config_manager.get_float("cache_cleanup_interval_seconds", 3600.0)

        def monitor():
            # wait() returns True once stop_event is set
            while not self._stop_event.wait(interval):
                try:
                    self.verify_all()
                    self.cleanup_stale()
                except Exception as e:
                    self.logger.error("Error in cache cleanup monitor: %s", e, exc_info=True)

        self._cleanup_thread = threading.Thread(target=monitor, daemon=True, name="CacheCleanup")
        self._cleanup_thread.start()
        self.logger.info("Cache cleanup monitor started (every %.0fs)", interval)

    def stop_cleanup_monitor(self) -> None:
        """Stop the cleanup monitor thread."""
        if not self._monitoring:
            return

        self._monitoring = False
        self._stop_event.set()

        if self._cleanup_thread and self._cleanup_thread.is_alive():
            self._cleanup_thread.join(timeout=0.5)
            if self._cleanup_thread.is_alive():
                self.logger.warning("Cache cleanup thread did not stop within timeout")

        self.logger.info("Cache cleanup monitor stopped")

    # =========================================================================
    # Index persistence
    # =========================================================================

    def _load_index(self) -> Dict[str, CacheEntry]:
        blob = self.kv_store.get(CACHE_INDEX_KEY)
        if not blob:
            return {}

        try:
            raw_entries = json.loads(blob)
        except ValueError:
            self.logger.warning("Cache index is not valid JSON, starting empty")
            return {}

        entries = {}
        for raw in raw_entries if isinstance(raw_entries, list) else []:
            try:
                entry = CacheEntry.from_dict(raw)
            except (KeyError, TypeError, ValueError) as e:
                self.logger.warning("Skipping malformed cache entry %r: %s", raw, e)
                continue
            entries[entry.track_id] = entry
        return entries

    def _persist_index(self) -> None:
        """Write the full index blob. Caller holds _index_lock."""
        blob = json.dumps([entry.to_dict() for entry in self._entries.values()])
        self.kv_store.set(CACHE_INDEX_KEY, blob)

    def _update_index(self, mutate: Callable[[Dict[str, CacheEntry]], None]) -> None:
        with self._index_lock:
            mutate(self._entries)
            self._persist_index()

    def get_entry(self, track_id: str) -> Optional[CacheEntry]:
        with self._index_lock:
            return self._entries.get(track_id)

    # =========================================================================
    # Verification
    # =========================================================================

    def _check_entry(self, entry: CacheEntry) -> Optional[CacheCorruption]:
        """Return the problem with an entry, or None if its file is intact."""
        actual = self.storage.size(Path(entry.local_path))
        if actual is None:
            return CacheCorruption(entry.track_id, "file missing")
        if actual != entry.size_bytes:
            return CacheCorruption(
                entry.track_id, f"size {actual} does not match recorded {entry.size_bytes}"
            )
        return None

    def _evict(self, track_id: str, reason: str) -> None:
        with self._index_lock:
            entry = self._entries.pop(track_id, None)
            if entry is None:
                return
            self._persist_index()

        try:
            self.storage.delete(Path(entry.local_path))
        except StorageError as e:
            self.logger.warning("Failed to delete evicted file for %s: %s", track_id, e)
        self.logger.info("Evicted cache entry %s: %s", track_id, reason)

    def verify_entry(self, track_id: str) -> bool:
        """
        Check one entry against the file on disk, evicting it if broken.

        Returns:
            True if the entry exists and its file is intact
        """
        entry = self.get_entry(track_id)
        if entry is None:
            return False

        problem = self._check_entry(entry)
        if problem is not None:
            self._evict(track_id, problem.reason)
            return False

        self._stamp_verified([entry], self._clock())
        return True

    def verify_all(self) -> int:
        """
        Verify every entry, evicting the ones whose files are missing or resized.

        Returns:
            Number of entries evicted
        """
        with self._index_lock:
            entries = list(self._entries.values())

        evicted = 0
        now = self._clock()
        verified: List[CacheEntry] = []
        for entry in entries:
            try:
                problem = self._check_entry(entry)
            except OSError as e:
                self.logger.warning("Could not verify %s, keeping it: %s", entry.track_id, e)
                continue
            if problem is not None:
                self._evict(entry.track_id, problem.reason)
                evicted += 1
            else:
                verified.append(entry)

        self._stamp_verified(verified, now)
        return evicted

    def _stamp_verified(self, entries: List[CacheEntry], timestamp: float) -> None:
        """Record a verification time on entries still live in the index."""

        def apply(current: Dict[str, CacheEntry]) -> None:
            for entry in entries:
                # A replaced entry (re-download) was not the one checked
                if current.get(entry.track_id) is entry:
                    entry.last_verified = timestamp

        self._update_index(apply)

    # =========================================================================
    # Queries
    # =========================================================================

    def _verified_path(self, track_id: str) -> Optional[Path]:
        entry = self.get_entry(track_id)
        if entry is None:
            return None
        problem = self._check_entry(entry)
        if problem is not None:
            self._evict(track_id, problem.reason)
            return None
        return Path(entry.local_path)

    def get_local_path(self, track_id: str) -> Optional[Path]:
        """
        Path of a usable cached file, re-checked on disk.

        Transient file-system errors are retried a bounded number of times
        before the track is reported as unavailable.
        """
        try:
            self._ensure_ready()
        except StorageError as e:
            self.logger.warning("Cache unavailable: %s", e)
            return None

        return call_with_retry(
            self._verified_path,
            track_id,
            attempts=self.config_manager.get_int("status_check_attempts", 3) or 1,
            delay=self.config_manager.get_float("status_check_delay_seconds", 0.5) or 0.0,
            retry_on=(OSError,),
            fallback=None,
            sleep=self._sleep,
        )

    def is_downloaded(self, track_id: str) -> bool:
        return self.get_local_path(track_id) is not None

    def get_local_uri(self, track_id: str) -> Optional[str]:
        """file:// URI of the cached copy, or None if not cached."""
        path = self.get_local_path(track_id)
        return path.resolve().as_uri() if path else None

    def get_download_progress(self, track_id: str) -> Optional[float]:
        """Fraction (0..1) of an in-flight download, or None if none is running."""
        return self._progress.get(track_id)

    def is_download_in_flight(self, track_id: str) -> bool:
        with self._in_flight_lock:
            return track_id in self._in_flight

    # =========================================================================
    # Downloads
    # =========================================================================

    def download_song(self, track: Track) -> bool:
        """
        Download a track into the cache (blocking).

        Concurrent calls for the same track share one transfer and its result.

        Returns:
            True if the track is cached when this returns
        """
        track_id = track.track_id
        with self._in_flight_lock:
            pending = self._in_flight.get(track_id)
            owner = pending is None
            if owner:
                pending = _PendingDownload()
                self._in_flight[track_id] = pending

        if not owner:
            self.logger.debug("Download of %s already in flight, waiting for it", track_id)
            pending.done.wait()
            return pending.result

        try:
            pending.result = self._download(track)
        finally:
            with self._in_flight_lock:
                self._in_flight.pop(track_id, None)
            self._progress.pop(track_id, None)
            pending.done.set()
        return pending.result

    def request_download(self, track: Track) -> bool:
        """
        Start a background download without waiting for it.

        Returns:
            False if the track is already indexed or already downloading
        """
        track_id = track.track_id
        if self.get_entry(track_id) is not None or self.is_download_in_flight(track_id):
            return False

        def download_thread():
            try:
                self.download_song(track)
            except Exception as e:
                self.logger.error("Background download of %s crashed: %s", track_id, e, exc_info=True)

        thread = threading.Thread(target=download_thread, daemon=True, name=f"Download-{track_id}")
        thread.start()
        return True

    def _download(self, track: Track) -> bool:
        track_id = track.track_id
        partial = self.storage.partial_path_for(track_id)
        final = self.storage.path_for(track_id)

        try:
            self._ensure_ready()
            if self._verified_path(track_id) is not None:
                self.logger.debug("Track %s already cached", track_id)
                return True

            estimated = self._estimate_size(track_id)
            self._check_free_space(estimated)

            url = self.resolver.resolve_stream_url(track_id)
            self.logger.info("Downloading %s (%s bytes expected)", track_id, estimated or "unknown")

            with self._download_semaphore:
                result = self.resolver.download(url, partial, self._progress_reporter(track_id))

            size = self.storage.size(partial)
            if size is None:
                raise StorageError(f"Downloaded file for {track_id} is missing")
            if result.total_bytes is not None and size != result.total_bytes:
                raise CacheCorruption(track_id, f"wrote {size} of {result.total_bytes} bytes")

            content_hash = self.storage.hash_file(partial)
            self.storage.promote(partial, final)

            now = self._clock()
            entry = CacheEntry(
                track_id=track_id,
                local_path=str(final.resolve()),
                size_bytes=size,
                last_verified=now,
                content_hash=content_hash,
                last_played=now,
            )
            self._update_index(lambda entries: entries.__setitem__(track_id, entry))
            self.logger.info(
                "Cached %s (%.2f MB%s)",
                track_id,
                size / (1024**2),
                ", resumed" if result.resumed else "",
            )
            return True

        except InsufficientSpaceError as e:
            self.logger.warning("Skipping download of %s: %s", track_id, e)
        except CacheCorruption as e:
            self.logger.warning("Discarding corrupt download of %s: %s", track_id, e)
            self._discard(partial)
        except NetworkError as e:
            # Partial file (if any) is kept so the next attempt can resume
            self.logger.warning("Download of %s failed: %s", track_id, e)
        except (StorageError, OSError) as e:
            self.logger.error("Storage failure downloading %s: %s", track_id, e)
            self._discard(partial)
        return False

    def _estimate_size(self, track_id: str) -> Optional[int]:
        try:
            return self.resolver.estimate_size(track_id)
        except NetworkError as e:
            self.logger.info("Could not estimate size of %s, downloading anyway: %s", track_id, e)
            return None

    def _check_free_space(self, estimated: Optional[int]) -> None:
        if not estimated:
            return
        required = int(estimated * self.config_manager.get_free_space_margin())
        try:
            free = self.storage.free_space()
        except OSError as e:
            self.logger.warning("Could not query free space, downloading anyway: %s", e)
            return
        if free < required:
            raise InsufficientSpaceError(required, free)

    def _progress_reporter(self, track_id: str) -> Callable[[int, Optional[int]], None]:
        last_step = {"value": -1}

        def report(written: int, total: Optional[int]) -> None:
            if not total:
                return
            fraction = min(1.0, written / total)
            self._progress[track_id] = fraction
            step = int(fraction * 10)
            if step != last_step["value"]:
                last_step["value"] = step
                self.logger.debug("Download progress for %s: %d%%", track_id, step * 10)

        return report

    def _discard(self, path: Path) -> None:
        try:
            self.storage.delete(path)
        except StorageError as e:
            self.logger.warning("Failed to remove partial download %s: %s", path, e)

    # =========================================================================
    # Removal and cleanup
    # =========================================================================

    def delete_song(self, track_id: str) -> bool:
        """
        Remove a cached track's file and index entry.

        Returns:
            True if the track was in the cache
        """
        try:
            self._ensure_ready()
        except StorageError as e:
            self.logger.warning("Cache unavailable: %s", e)
            return False

        with self._index_lock:
            entry = self._entries.pop(track_id, None)
            if entry is None:
                return False
            self._persist_index()

        try:
            self.storage.delete(Path(entry.local_path))
        except StorageError as e:
            self.logger.warning("Failed to delete file for %s: %s", track_id, e)
        self.logger.info("Deleted cached song %s", track_id)
        return True

    def mark_played(self, track_id: str) -> bool:
        """Record that a cached track was just played (resets its retention clock)."""
        now = self._clock()
        with self._index_lock:
            entry = self._entries.get(track_id)
            if entry is None:
                return False
            entry.last_played = now
            self._persist_index()
        return True

    def cleanup_stale(self, retention_days: Optional[int] = None) -> int:
        """
        Evict entries not played within the retention window.

        Args:
            retention_days: Override for the configured cache_retention_days

        Returns:
            Number of entries evicted
        """
        if retention_days is None:
            retention_days = self.config_manager.get_int("cache_retention_days", 7)
        cutoff = self._clock() - retention_days * SECONDS_PER_DAY

        with self._index_lock:
            stale = [
                (track_id, entry.size_bytes)
                for track_id, entry in self._entries.items()
                if entry.last_played < cutoff
            ]

        freed = 0
        for track_id, size in stale:
            self._evict(track_id, f"not played in {retention_days} days")
            freed += size

        if stale:
            self.logger.info(
                "Cache cleanup complete: evicted %d songs, freed %.2f MB",
                len(stale),
                freed / (1024**2),
            )
        return len(stale)

    def get_cache_stats(self) -> dict:
        """
        Get statistics about the cache.

        Returns:
            Dictionary with cache statistics
        """
        with self._index_lock:
            total_size = sum(entry.size_bytes for entry in self._entries.values())
            count = len(self._entries)
        with self._in_flight_lock:
            in_flight = len(self._in_flight)

        return {
            "song_count": count,
            "total_size_bytes": total_size,
            "total_size_mb": total_size / (1024**2),
            "retention_days": self.config_manager.get_int("cache_retention_days", 7),
            "downloads_in_flight": in_flight,
        }
