"""
Shuffle support for tunebox.

Toggles a QueueStore between its original order and a randomized order of the
tracks after the current one, so "now playing" is never disturbed.
"""

import logging
import random
from typing import List, Optional

from .models import Track
from .queue import QueueStore


class ShuffleEngine:
    """Shuffles and un-shuffles a QueueStore in place."""

    def __init__(self, queue_store: QueueStore, rng: Optional[random.Random] = None):
        """
        Initialize ShuffleEngine.

        Args:
            queue_store: QueueStore to operate on
            rng: Random source (seed one for reproducible tests)
        """
        self.queue_store = queue_store
        self.rng = rng or random.Random()
        self.logger = logging.getLogger(__name__)

    @property
    def is_shuffled(self) -> bool:
        return self.queue_store.shuffled

    def _shuffled(self, tracks: List[Track]) -> List[Track]:
        """Fisher-Yates permutation of a copy of ``tracks``."""
        result = list(tracks)
        for i in range(len(result) - 1, 0, -1):
            j = self.rng.randint(0, i)
            result[i], result[j] = result[j], result[i]
        return result

    def enable_shuffle(self) -> None:
        """
        Randomize the tracks after the current one.

        The original order is captured the first time shuffle is enabled.
        Calling this again while shuffled re-randomizes the remaining tracks.
        """
        store = self.queue_store
        if store.is_empty():
            store.shuffled = True
            return

        if not store.shuffled:
            store.capture_original()

        store.get_current_track()  # Clamps a stale index before slicing
        current_index = store.current_index

        queue = store.get_queue()
        head = queue[: current_index + 1]
        tail = self._shuffled(queue[current_index + 1 :])
        store.apply_order(head + tail, current_index)
        store.shuffled = True

        self.logger.info("Shuffle enabled: %d upcoming tracks randomized", len(tail))

    def disable_shuffle(self) -> None:
        """
        Restore the original order and re-locate the current track in it.

        If the current track is missing from the snapshot, the previous numeric
        index is clamped into range instead.
        """
        store = self.queue_store
        if not store.shuffled:
            return

        current = store.get_current_track()
        previous_index = store.current_index
        original = store.get_original_queue()

        if not original:
            store.shuffled = False
            return

        new_index = None
        if current is not None:
            for index, track in enumerate(original):
                if track.track_id == current.track_id:
                    new_index = index
                    break

        if new_index is None:
            new_index = min(max(0, previous_index), len(original) - 1)
            self.logger.warning(
                "Current track not found in original order, falling back to index %d", new_index
            )

        store.restore_original(new_index)
        store.shuffled = False
        self.logger.info("Shuffle disabled: original order restored, current index %d", new_index)

    def toggle(self) -> bool:
        """Toggle shuffle and return the new state."""
        if self.is_shuffled:
            self.disable_shuffle()
        else:
            self.enable_shuffle()
        return self.is_shuffled

    def shuffle_all(self) -> None:
        """Randomize the entire queue and start from its first track."""
        store = self.queue_store
        if store.is_empty():
            return
        if not store.shuffled:
            store.capture_original()
        store.apply_order(self._shuffled(store.get_queue()), 0)
        store.shuffled = True
        self.logger.info("Shuffled entire queue of %d tracks", len(store))
