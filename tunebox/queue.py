"""
Queue management for tunebox.

Holds the ordered list of tracks being played, the current position, and the
pre-shuffle ("original") ordering that shuffle restores to.
"""

import logging
import re
from itertools import islice
from typing import Iterable, Iterator, List, Optional, Set

from .models import Track

_LEADING_ARTICLE = re.compile(r"^(a|an|the)\s+", re.IGNORECASE)
_NON_ALPHANUMERIC = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


def title_sort_key(title: str) -> str:
    """Normalise a title for alphabetical sorting ("The Wall" sorts under W)."""
    cleaned = _LEADING_ARTICLE.sub("", title)
    cleaned = _NON_ALPHANUMERIC.sub("", cleaned.lower())
    return _WHITESPACE.sub(" ", cleaned).strip()


def _ids(tracks: Iterable[Track]) -> Set[str]:
    return {track.track_id for track in tracks}


class QueueStore:
    """
    Ordered sequence of tracks plus a current-position pointer.

    Invariants:
    - if the queue is non-empty, 0 <= current_index < len(queue); if empty it is -1
    - the original-order snapshot holds the same set of track ids as the live queue

    Not thread-safe: the PlaybackController serializes access under its lock.
    """

    def __init__(self, tracks: Optional[Iterable[Track]] = None):
        self.logger = logging.getLogger(__name__)
        self._queue: List[Track] = []
        self._original: List[Track] = []
        self._current_index = -1
        self.shuffled = False
        if tracks:
            self.set_queue(tracks, 0)

    # =========================================================================
    # Queries
    # =========================================================================

    def __len__(self) -> int:
        return len(self._queue)

    def is_empty(self) -> bool:
        return not self._queue

    @property
    def current_index(self) -> int:
        return self._current_index

    def get_queue(self) -> List[Track]:
        return list(self._queue)

    def get_original_queue(self) -> List[Track]:
        return list(self._original)

    def get_current_track(self) -> Optional[Track]:
        """Return the current track, or None if the queue is empty."""
        if not self._queue:
            return None
        if self._current_index < 0 or self._current_index >= len(self._queue):
            self.logger.warning(
                "Current index %s out of bounds for queue of %d, resetting to 0",
                self._current_index,
                len(self._queue),
            )
            self._current_index = 0
        return self._queue[self._current_index]

    def index_of(self, track_id: str) -> Optional[int]:
        for index, track in enumerate(self._queue):
            if track.track_id == track_id:
                return index
        return None

    def iter_up_next(self, limit: Optional[int] = None) -> Iterator[Track]:
        """Lazily yield the tracks strictly after the current one."""
        if not self._queue:
            return iter(())
        start = self._current_index + 1
        stop = None if limit is None else start + max(0, limit)
        return islice(iter(self._queue), start, stop)

    def get_up_next(self, limit: Optional[int] = None) -> List[Track]:
        """Tracks after the current one, optionally bounded for display."""
        return list(self.iter_up_next(limit))

    def get_previous(self) -> List[Track]:
        """Tracks strictly before the current one."""
        if not self._queue:
            return []
        return self._queue[: self._current_index]

    # =========================================================================
    # Mutations
    # =========================================================================

    def set_queue(self, tracks: Iterable[Track], start_index: int = 0) -> bool:
        """
        Replace the live queue.

        Empty lists are rejected. The start index is clamped into range. The
        given order becomes the original order when no snapshot exists yet or
        when the new queue holds a different set of tracks.

        Returns:
            True if the queue was replaced
        """
        new_queue = self._dedupe(tracks)
        if not new_queue:
            self.logger.warning("Attempted to set empty queue, ignoring")
            return False

        self._queue = new_queue
        self._current_index = min(max(0, start_index), len(new_queue) - 1)

        if not self._original or _ids(self._original) != _ids(new_queue):
            self._original = list(new_queue)

        self.logger.debug(
            "Queue set: %d tracks, current index %d", len(new_queue), self._current_index
        )
        return True

    def set_current_index(self, index: int) -> None:
        if not 0 <= index < len(self._queue):
            raise IndexError(f"Index {index} out of range for queue of {len(self._queue)}")
        self._current_index = index

    def move(self, from_index: int, to_index: int) -> None:
        """
        Relocate one entry, keeping the same track current.

        Raises:
            IndexError: If either index is out of range
        """
        size = len(self._queue)
        if not 0 <= from_index < size or not 0 <= to_index < size:
            raise IndexError(f"Cannot move {from_index} -> {to_index} in queue of {size}")
        if from_index == to_index:
            return

        track = self._queue.pop(from_index)
        self._queue.insert(to_index, track)

        current = self._current_index
        if from_index == current:
            current = to_index
        elif from_index < current <= to_index:
            current -= 1
        elif to_index <= current < from_index:
            current += 1
        self._current_index = current

        # An unshuffled reorder becomes the new canonical order
        if not self.shuffled:
            self._original = list(self._queue)

    def remove(self, track_ids: Iterable[str]) -> int:
        """
        Remove one or more tracks.

        If the current track is removed, the next surviving track becomes
        current (or the first one, if the current track was last).

        Returns:
            Number of tracks removed
        """
        ids = set(track_ids)
        if not ids or not self._queue:
            return 0

        current = self.get_current_track()
        current_index = self._current_index
        removed_current = current is not None and current.track_id in ids
        removed_before = sum(1 for t in self._queue[:current_index] if t.track_id in ids)

        remaining = [t for t in self._queue if t.track_id not in ids]
        removed = len(self._queue) - len(remaining)
        if removed == 0:
            return 0

        self._queue = remaining
        self._original = [t for t in self._original if t.track_id not in ids]

        if not remaining:
            self._current_index = -1
        else:
            new_index = current_index - removed_before
            if removed_current and new_index >= len(remaining):
                new_index = 0
            self._current_index = new_index

        self.logger.debug("Removed %d tracks, current index now %d", removed, self._current_index)
        return removed

    def add_to_up_next(self, track: Track) -> bool:
        """
        Insert a track immediately after the current one.

        A track already in the queue is moved rather than duplicated.

        Returns:
            False if the track is the current track (nothing to do)
        """
        current = self.get_current_track()
        if current is None:
            return self.set_queue([track], 0)
        if current.track_id == track.track_id:
            return False

        existing = self.index_of(track.track_id)
        if existing is not None:
            target = self._current_index + 1 if existing > self._current_index else self._current_index
            self.move(existing, target)
            return True

        self._queue.insert(self._current_index + 1, track)
        if self.shuffled:
            self._original.append(track)
        else:
            original_index = next(
                (i for i, t in enumerate(self._original) if t.track_id == current.track_id), None
            )
            if original_index is None:
                self._original.append(track)
            else:
                self._original.insert(original_index + 1, track)
        return True

    def append(self, tracks: Iterable[Track]) -> int:
        """
        Add tracks to the end of the queue, skipping ids already present.

        Returns:
            Number of tracks added
        """
        present = _ids(self._queue)
        new_tracks = []
        for track in tracks:
            if track.track_id in present:
                continue
            present.add(track.track_id)
            new_tracks.append(track)

        if not new_tracks:
            return 0
        if not self._queue:
            self.set_queue(new_tracks, 0)
            return len(new_tracks)

        self._queue.extend(new_tracks)
        self._original.extend(new_tracks)
        return len(new_tracks)

    def cleanup_played(self) -> int:
        """Drop tracks before the current one; the current track becomes index 0."""
        if self._current_index <= 0:
            return 0
        dropped = self._queue[: self._current_index]
        dropped_ids = _ids(dropped)
        self._queue = self._queue[self._current_index :]
        self._original = [t for t in self._original if t.track_id not in dropped_ids]
        self._current_index = 0
        return len(dropped)

    def sort_by_title(self) -> None:
        """Sort the live queue alphabetically by normalised title, keeping the current track."""
        current = self.get_current_track()
        if current is None:
            return
        self._queue.sort(key=lambda t: title_sort_key(t.title))
        self._current_index = self.index_of(current.track_id) or 0
        if not self.shuffled:
            self._original = list(self._queue)

    # =========================================================================
    # Shuffle support
    # =========================================================================

    def capture_original(self) -> None:
        """Snapshot the current live order as the original order."""
        self._original = list(self._queue)

    def apply_order(self, tracks: Iterable[Track], current_index: int) -> None:
        """
        Replace the live order with a permutation of the same tracks.

        Raises:
            ValueError: If the tracks are not a permutation of the live queue
        """
        new_queue = list(tracks)
        if len(new_queue) != len(self._queue) or _ids(new_queue) != _ids(self._queue):
            raise ValueError("New order must contain exactly the tracks already queued")
        self._queue = new_queue
        if new_queue:
            self._current_index = min(max(0, current_index), len(new_queue) - 1)
        else:
            self._current_index = -1

    def restore_original(self, current_index: int) -> None:
        """Make the original snapshot the live order again."""
        self._queue = list(self._original)
        if self._queue:
            self._current_index = min(max(0, current_index), len(self._queue) - 1)
        else:
            self._current_index = -1

    def copy(self) -> "QueueStore":
        clone = QueueStore()
        clone._queue = list(self._queue)
        clone._original = list(self._original)
        clone._current_index = self._current_index
        clone.shuffled = self.shuffled
        return clone

    def _dedupe(self, tracks: Iterable[Track]) -> List[Track]:
        seen: Set[str] = set()
        result = []
        for track in tracks or ():
            if track.track_id in seen:
                self.logger.warning("Duplicate track %s dropped from queue", track.track_id)
                continue
            seen.add(track.track_id)
            result.append(track)
        return result
