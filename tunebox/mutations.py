"""
Optimistic queue mutations.

A mutation is applied to the visible queue immediately, then applied to the
real QueueStore on a background worker. If the durable mutation fails with a
CRITICAL failure the visible queue is rolled back to the last known-good
snapshot; TRANSIENT failures are only logged.
"""

import logging
import queue
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Optional, Tuple

from .errors import FailureSeverity, classify_failure
from .models import Track
from .queue import QueueStore


@dataclass(frozen=True)
class QueueView:
    """The queue as shown to the UI."""

    tracks: Tuple[Track, ...] = field(default_factory=tuple)
    current_index: int = -1
    shuffled: bool = False

    @classmethod
    def from_store(cls, store: QueueStore) -> "QueueView":
        return cls(tuple(store.get_queue()), store.current_index, store.shuffled)

    def to_store(self) -> QueueStore:
        """Scratch QueueStore holding this view (used to compute previews)."""
        store = QueueStore()
        if self.tracks:
            store.set_queue(self.tracks, self.current_index)
        store.shuffled = self.shuffled
        return store


# =========================================================================
# Commands
# =========================================================================


class QueueCommand(ABC):
    """One queue mutation, applicable to any QueueStore."""

    @abstractmethod
    def apply(self, store: QueueStore) -> None:
        """
        Apply the mutation.

        Raises:
            IndexError, KeyError, ValueError: If the store rejects it
        """
        ...


@dataclass(frozen=True)
class AddTracks(QueueCommand):
    tracks: Tuple[Track, ...]

    def apply(self, store: QueueStore) -> None:
        store.append(self.tracks)


@dataclass(frozen=True)
class AddUpNext(QueueCommand):
    track: Track

    def apply(self, store: QueueStore) -> None:
        store.add_to_up_next(self.track)


@dataclass(frozen=True)
class MoveTrack(QueueCommand):
    from_index: int
    to_index: int

    def apply(self, store: QueueStore) -> None:
        store.move(self.from_index, self.to_index)


@dataclass(frozen=True)
class RemoveTracks(QueueCommand):
    track_ids: Tuple[str, ...]

    def apply(self, store: QueueStore) -> None:
        if store.remove(self.track_ids) == 0:
            raise KeyError(f"None of {list(self.track_ids)} are queued")


@dataclass(frozen=True)
class SortByTitle(QueueCommand):
    def apply(self, store: QueueStore) -> None:
        store.sort_by_title()


@dataclass(frozen=True)
class CleanupPlayed(QueueCommand):
    """Drop already-played tracks; a no-op when the current track is first."""

    def apply(self, store: QueueStore) -> None:
        store.cleanup_played()


# =========================================================================
# Executor
# =========================================================================


class QueueMutationExecutor:
    """
    Applies queue commands optimistically, in submission order.

    ``apply_durable`` performs the real mutation and returns the resulting
    view; ``publish`` receives every new visible view.
    """

    def __init__(
        self,
        apply_durable: Callable[[QueueCommand], QueueView],
        publish: Callable[[QueueView], None],
        initial_view: Optional[QueueView] = None,
    ):
        self.logger = logging.getLogger(__name__)
        self._apply_durable = apply_durable
        self._publish = publish

        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._publish_lock = threading.Lock()
        self._visible = initial_view or QueueView()
        self._last_good = self._visible
        self._pending = 0

        self._commands: "queue.Queue[Optional[QueueCommand]]" = queue.Queue()
        self._worker: Optional[threading.Thread] = None

    @property
    def visible_view(self) -> QueueView:
        with self._lock:
            return self._visible

    @property
    def last_known_good(self) -> QueueView:
        with self._lock:
            return self._last_good

    @property
    def pending_count(self) -> int:
        with self._lock:
            return self._pending

    def start(self) -> None:
        with self._lock:
            self._ensure_worker()

    def _ensure_worker(self) -> None:
        """Start the worker thread. Caller holds _lock."""
        if self._worker and self._worker.is_alive():
            return
        self._worker = threading.Thread(target=self._run, daemon=True, name="QueueMutations")
        self._worker.start()

    def shutdown(self, timeout: float = 1.0) -> None:
        worker = self._worker
        if worker is None or not worker.is_alive():
            return
        self._commands.put(None)
        worker.join(timeout=timeout)
        if worker.is_alive():
            self.logger.warning("Queue mutation worker did not stop within timeout")

    def submit(self, command: QueueCommand) -> bool:
        """
        Show the mutation immediately and schedule the durable version.

        Returns:
            False if the mutation is invalid against the visible queue
        """
        with self._lock:
            scratch = self._visible.to_store()
            try:
                command.apply(scratch)
            except (IndexError, KeyError, ValueError) as e:
                self.logger.warning("Rejected queue mutation %s: %s", command, e)
                return False

            self._visible = QueueView.from_store(scratch)
            self._pending += 1
            self._ensure_worker()
            self._commands.put(command)

        self._publish_visible()
        return True

    def _publish_visible(self) -> None:
        # Publishes whatever is visible now, so racing publishers converge on the latest view
        with self._publish_lock:
            self._publish(self.visible_view)

    def sync(self, view: QueueView) -> None:
        """
        Record a view produced outside the executor (e.g. playNext) as known-good.

        The visible view is replaced only when no optimistic mutation is pending.
        """
        with self._lock:
            self._last_good = view
            if self._pending == 0:
                self._visible = view

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until every submitted mutation has been applied or rejected."""
        with self._idle:
            return self._idle.wait_for(lambda: self._pending == 0, timeout=timeout)

    def _run(self) -> None:
        while True:
            command = self._commands.get()
            if command is None:
                return
            try:
                self._execute(command)
            finally:
                with self._idle:
                    self._pending -= 1
                    if self._pending == 0:
                        self._idle.notify_all()

    def _execute(self, command: QueueCommand) -> None:
        try:
            view = self._apply_durable(command)
        except Exception as e:
            severity = classify_failure(e)
            if severity is FailureSeverity.CRITICAL:
                with self._lock:
                    self._visible = self._last_good
                self.logger.warning("Queue mutation %s failed, rolled back: %s", command, e)
                self._publish_visible()
            else:
                self.logger.warning("Queue mutation %s failed (not rolled back): %s", command, e)
            return

        changed = False
        with self._lock:
            self._last_good = view
            # Later optimistic mutations are still shown until they land
            if self._pending == 1 and self._visible != view:
                self._visible = view
                changed = True
        if changed:
            self._publish_visible()
        self.logger.debug("Applied queue mutation %s", command)
