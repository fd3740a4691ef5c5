"""
Playback controller for tunebox.

Drives the media engine, owns the playback session, and applies the repeat
policy when a track ends. Every session change goes through reduce() under a
single lock, so concurrent intents become a sequence of discrete transitions.
"""

import logging
import queue
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .cache import CacheCoordinator
from .engine import EngineEvent, EngineEventType, EngineState, MediaEngine
from .errors import ConcurrencyGuardRejection, PlaybackEngineError
from .models import Track
from .mutations import (
    AddTracks,
    AddUpNext,
    CleanupPlayed,
    MoveTrack,
    QueueCommand,
    QueueMutationExecutor,
    QueueView,
    RemoveTracks,
    SortByTitle,
)
from .queue import QueueStore
from .session import (
    Action,
    LoadStarted,
    PlaybackEnded,
    PlaybackFailed,
    PlaybackSession,
    PlaybackState,
    ProgressUpdated,
    QueueChanged,
    RepeatMode,
    RepeatModeChanged,
    SessionReset,
    StateChanged,
    TrackRestarted,
    next_repeat_mode,
    reduce,
)
from .shuffle import ShuffleEngine

SessionListener = Callable[[PlaybackSession], None]

_ENGINE_TO_SESSION_STATE = {
    EngineState.LOADING: PlaybackState.LOADING,
    EngineState.PLAYING: PlaybackState.PLAYING,
    EngineState.PAUSED: PlaybackState.PAUSED,
    EngineState.BUFFERING: PlaybackState.BUFFERING,
}


class PlaybackController:
    """Orchestrates playback and manages the playback session."""

    def __init__(
        self,
        queue_store: QueueStore,
        shuffle_engine: ShuffleEngine,
        cache_coordinator: CacheCoordinator,
        engine: MediaEngine,
        config_manager,
    ):
        """
        Initialize PlaybackController.

        Background threads are not started until start() is called; until
        then engine events are handled on the emitting thread.

        Args:
            queue_store: QueueStore holding the play queue
            shuffle_engine: ShuffleEngine operating on the same QueueStore
            cache_coordinator: CacheCoordinator for local files and prefetching
            engine: MediaEngine that performs playback
            config_manager: ConfigManager instance
        """
        self.queue_store = queue_store
        self.shuffle_engine = shuffle_engine
        self.cache = cache_coordinator
        self.engine = engine
        self.config_manager = config_manager

        self.logger = logging.getLogger(__name__)
        self.lock = threading.RLock()
        self._session = PlaybackSession(
            queue=tuple(queue_store.get_queue()),
            current_index=queue_store.current_index,
            shuffled=queue_store.shuffled,
        )
        self._listeners: List[SessionListener] = []

        # Single-flight guard for loads; a second load while one is running is dropped
        self._load_guard = threading.Lock()

        # Advance guard: one advance per track instance
        self._advance_lock = threading.Lock()
        self._generation = 0
        self._advanced_generation = -1

        self._mutations = QueueMutationExecutor(
            self._apply_mutation,
            self._publish_queue_view,
            QueueView.from_store(queue_store),
        )

        # Engine events are processed in emission order on one worker
        self._events: "queue.Queue[Optional[Tuple[int, EngineEvent]]]" = queue.Queue()
        self._event_thread: Optional[threading.Thread] = None

        # Source URI of the loaded track instance, compared against engine events
        self._current_source: Optional[str] = None

        # Near-end polling
        self._near_end_threshold = config_manager.get_float("near_end_threshold_seconds", 0.5)
        self._poll_advanced_generation = -1
        self._monitor_thread: Optional[threading.Thread] = None
        self._monitoring = False
        self._stop_event = threading.Event()

        self.engine.set_event_listener(self.on_engine_event)

    # =========================================================================
    # Session
    # =========================================================================

    def get_session(self) -> PlaybackSession:
        return self._session

    @property
    def is_loading(self) -> bool:
        """True while a track load holds the single-flight guard."""
        return self._load_guard.locked()

    def add_listener(self, listener: SessionListener) -> None:
        """Register a callback invoked with every new session snapshot."""
        with self.lock:
            self._listeners.append(listener)

    def dispatch(self, action: Action) -> PlaybackSession:
        """Apply an action to the session and notify listeners."""
        with self.lock:
            self._session = reduce(self._session, action)
            session = self._session
            for listener in list(self._listeners):
                try:
                    listener(session)
                except Exception as e:
                    self.logger.error("Session listener failed: %s", e, exc_info=True)
        return session

    def _publish_queue_view(self, view: QueueView) -> None:
        self.dispatch(QueueChanged(view.tracks, view.current_index, view.shuffled))

    def _publish_store_view(self) -> None:
        """Record the real queue as known-good and publish what the UI should see."""
        with self.lock:
            self._mutations.sync(QueueView.from_store(self.queue_store))
            self._publish_queue_view(self._mutations.visible_view)

    def get_status(self) -> Dict[str, Any]:
        """
        Get current playback status.

        Returns:
            Dictionary with the session snapshot plus a bounded up-next list
        """
        session = self._session
        limit = self.config_manager.get_int("up_next_display_limit", 25)
        start = session.current_index + 1
        up_next = session.queue[start : start + limit] if limit is not None else session.queue[start:]

        status = session.to_dict()
        status["up_next"] = [track.to_dict() for track in up_next]
        if session.current_track is not None:
            status["download_progress"] = self.cache.get_download_progress(
                session.current_track.track_id
            )
        return status

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Start the event worker, mutation worker and near-end monitor."""
        self._mutations.start()
        self._start_event_worker()
        self._start_position_monitor()
        self.logger.info("Playback controller started")

    def shutdown(self) -> None:
        """Shutdown the playback controller and its background threads."""
        self.logger.info("Shutting down playback controller")
        self._monitoring = False
        self._stop_event.set()

        if self._monitor_thread and self._monitor_thread.is_alive():
            self._monitor_thread.join(timeout=2.0)
            if self._monitor_thread.is_alive():
                self.logger.warning("Position monitor thread did not stop within timeout")

        if self._event_thread and self._event_thread.is_alive():
            self._events.put(None)
            self._event_thread.join(timeout=2.0)

        self._mutations.shutdown()
        self.logger.info("Playback controller shut down")

    def _start_event_worker(self) -> None:
        if self._event_thread and self._event_thread.is_alive():
            return

        def process_events():
            while True:
                item = self._events.get()
                if item is None:
                    return
                generation, event = item
                try:
                    self._handle_engine_event(event, generation)
                except Exception as e:
                    self.logger.error("Error handling engine event %s: %s", event, e, exc_info=True)

        self._event_thread = threading.Thread(target=process_events, daemon=True, name="EngineEvents")
        self._event_thread.start()

    def _start_position_monitor(self) -> None:
        """Start background thread that tracks position and detects near-end."""
        if self._monitor_thread and self._monitor_thread.is_alive():
            return

        interval = self.config_manager.get_float("near_end_poll_interval_seconds", 1.0)
        def monitor_position():
            while not self._stop_event.wait(interval):
                try:
                    self.poll_position()
                except Exception as e:
                    self.logger.error("Error in position monitor: %s", e, exc_info=True)

        self._monitoring = True
        self._stop_event.clear()
        self._monitor_thread = threading.Thread(
            target=monitor_position, daemon=True, name="PositionMonitor"
        )
        self._monitor_thread.start()
        self.logger.info("Position monitor started")

    # =========================================================================
    # Loading
    # =========================================================================

    def _current_generation(self) -> int:
        with self._advance_lock:
            return self._generation

    def _next_generation(self) -> int:
        with self._advance_lock:
            self._generation += 1
            return self._generation

    def _source_for(self, track: Track) -> str:
        local_uri = self.cache.get_local_uri(track.track_id)
        if local_uri:
            self.logger.debug("Playing %s from cache", track.track_id)
            return local_uri
        if track.stream_url:
            return track.stream_url
        return self.cache.resolver.stream_url_for(track.track_id)

    def _play_selected(self, select: Callable[[], Optional[int]], autoplay: bool = True) -> bool:
        """
        Make the queue index chosen by ``select`` current and play it.

        With ``autoplay`` False the track is only loaded and left paused.

        ``select`` runs under the session lock, inside the load guard, so the
        choice is made against the queue as it is when the load starts.
        """
        if not self._load_guard.acquire(blocking=False):
            self._reject("load dropped: another load is in flight")
            return False

        try:
            with self.lock:
                index = select()
                if index is None:
                    return False
                self.queue_store.set_current_index(index)
                track = self.queue_store.get_current_track()
                self._publish_store_view()
            return self._load_and_play(track, autoplay)
        finally:
            self._load_guard.release()

    def _load_and_play(self, track: Track, autoplay: bool = True) -> bool:
        """
        Load a track and, with ``autoplay``, start it. Caller holds the load guard.

        If stop() superseded the load while the engine was busy, the engine
        is reset again and the result is discarded.
        """
        generation = self._next_generation()
        self.dispatch(LoadStarted(track))
        self.logger.info("%s %s (%s)", "Playing" if autoplay else "Cueing", track.title, track.track_id)

        try:
            source = self._source_for(track)
            with self.lock:
                self._current_source = source
            self.engine.reset()
            self.engine.load(source)
            if autoplay and generation == self._current_generation():
                self.engine.play()
        except PlaybackEngineError as e:
            self.logger.error("Failed to play %s: %s", track.track_id, e)
            if generation == self._current_generation():
                self.dispatch(PlaybackFailed(str(e)))
            return False

        with self.lock:
            stale = generation != self._current_generation()
            if not stale:
                self.dispatch(StateChanged(PlaybackState.PLAYING if autoplay else PlaybackState.PAUSED))
                duration = self.engine.get_duration()
                if duration:
                    self.dispatch(ProgressUpdated(0.0, duration))

        if stale:
            self.logger.debug("Discarding stale load result for %s", track.track_id)
            self._reset_engine()
            return False

        if autoplay:
            self.cache.mark_played(track.track_id)
        self._prefetch(track)
        return True

    def _reset_engine(self) -> None:
        try:
            self.engine.reset()
        except PlaybackEngineError as e:
            self.logger.warning("Engine reset failed: %s", e)

    def _prefetch(self, track: Track) -> None:
        """Request background downloads of the current and next track."""
        self.cache.request_download(track)
        with self.lock:
            up_next = self.queue_store.get_up_next(1)
        if up_next:
            self.cache.request_download(up_next[0])

    def _reject(self, message: str) -> None:
        self.logger.debug("%s", ConcurrencyGuardRejection(message))

    # =========================================================================
    # Controls
    # =========================================================================

    def play_track(self, track: Track, queue: Optional[Iterable[Track]] = None) -> bool:
        """
        Play a track, optionally replacing the queue first.

        A call made while another load is in flight is dropped.

        Args:
            track: Track to play
            queue: New queue; the track is made current within it

        Returns:
            True if playback started
        """

        def select() -> Optional[int]:
            if queue is not None:
                tracks = list(queue)
                if all(t.track_id != track.track_id for t in tracks):
                    tracks.insert(0, track)
                start = next(i for i, t in enumerate(tracks) if t.track_id == track.track_id)
                if not self.queue_store.set_queue(tracks, start):
                    return None
                if self.shuffle_engine.is_shuffled:
                    self.shuffle_engine.enable_shuffle()
                return self.queue_store.current_index

            index = self.queue_store.index_of(track.track_id)
            if index is None:
                self.queue_store.add_to_up_next(track)
                index = self.queue_store.index_of(track.track_id)
            return index

        return self._play_selected(select)

    def play_pause(self) -> bool:
        """
        Toggle between playing and paused, based on the engine's own state.

        Returns:
            True if a command was issued
        """
        if self._session.state == PlaybackState.ERROR:
            self.logger.info("Play/pause ignored in error state, retry() reloads the track")
            return False

        state = self.engine.get_state()
        try:
            if state in (EngineState.PLAYING, EngineState.BUFFERING):
                self.engine.pause()
                self.dispatch(StateChanged(PlaybackState.PAUSED))
                return True
            if state == EngineState.PAUSED:
                self.engine.play()
                self.dispatch(StateChanged(PlaybackState.PLAYING))
                return True
        except PlaybackEngineError as e:
            self.logger.error("Play/pause failed: %s", e)
            self.dispatch(PlaybackFailed(str(e)))
            return False

        if self._session.state in (PlaybackState.IDLE, PlaybackState.ENDED) and not self.queue_store.is_empty():
            self.logger.info("Nothing loaded, starting current track")
            return self._play_selected(lambda: self.queue_store.current_index)

        self.logger.debug("Play/pause ignored in engine state %s", state.value)
        return False

    def seek(self, position: float) -> bool:
        """Forward a seek to the engine."""
        try:
            self.engine.seek_to(position)
        except PlaybackEngineError as e:
            self.logger.warning("Seek to %.1fs failed: %s", position, e)
            return False
        return True

    def play_next(self) -> bool:
        """
        Play the next track.

        At the end of the queue this wraps to the start only in repeat-all mode.
        """

        def select() -> Optional[int]:
            if self.queue_store.is_empty():
                return None
            next_index = self.queue_store.current_index + 1
            if next_index < len(self.queue_store):
                return next_index
            if self._session.repeat_mode == RepeatMode.ALL:
                return 0
            self.logger.debug("Already at end of queue")
            return None

        return self._play_selected(select)

    def play_previous(self) -> bool:
        """Play the previous track; no-op at the start of the queue."""

        def select() -> Optional[int]:
            if self.queue_store.current_index <= 0:
                self.logger.debug("Already at start of queue")
                return None
            return self.queue_store.current_index - 1

        return self._play_selected(select)

    def set_queue(self, tracks: Iterable[Track], start_index: int = 0) -> bool:
        """
        Replace the queue without starting playback.

        If shuffle is on, the new queue is shuffled after its start track.
        """
        with self.lock:
            if not self.queue_store.set_queue(tracks, start_index):
                return False
            if self.shuffle_engine.is_shuffled:
                self.shuffle_engine.enable_shuffle()
            self._publish_store_view()
        self._prefetch_up_next()
        return True

    def _prefetch_up_next(self) -> None:
        with self.lock:
            up_next = self.queue_store.get_up_next(1)
        if up_next:
            self.cache.request_download(up_next[0])

    def toggle_shuffle(self) -> bool:
        """Toggle shuffle and return the new state."""
        with self.lock:
            shuffled = self.shuffle_engine.toggle()
            self._publish_store_view()
        self._prefetch_up_next()
        return shuffled

    def shuffle_all(self) -> bool:
        """Shuffle the whole queue and play from its first track."""
        with self.lock:
            if self.queue_store.is_empty():
                return False
            self.shuffle_engine.shuffle_all()
            self._publish_store_view()
        return self._play_selected(lambda: 0)

    def toggle_repeat(self) -> RepeatMode:
        """Cycle repeat mode off -> one -> all -> off and return the new mode."""
        with self.lock:
            mode = next_repeat_mode(self._session.repeat_mode)
            self.dispatch(RepeatModeChanged(mode))
        self.logger.info("Repeat mode: %s", mode.value)
        return mode

    def set_repeat_mode(self, mode: RepeatMode) -> RepeatMode:
        self.dispatch(RepeatModeChanged(mode))
        return mode

    def retry(self) -> bool:
        """
        Recover from ERROR by reloading the current track at its last position.

        Returns:
            True if playback restarted
        """
        session = self._session
        if session.state != PlaybackState.ERROR:
            self.logger.debug("Retry ignored: not in error state")
            return False

        track = session.current_track or self.queue_store.get_current_track()
        if track is None:
            return False

        if not self._load_guard.acquire(blocking=False):
            self._reject("retry dropped: another load is in flight")
            return False
        try:
            self.logger.info("Retrying %s from %.1fs", track.track_id, session.position)
            if not self._load_and_play(track):
                return False
        finally:
            self._load_guard.release()

        if session.position > 0:
            try:
                self.engine.seek_to(session.position)
                self.dispatch(ProgressUpdated(session.position))
            except PlaybackEngineError as e:
                self.logger.warning("Could not restore position after retry: %s", e)
        return True

    def stop(self) -> bool:
        """Stop playback and return to IDLE."""
        self._next_generation()
        self._reset_engine()
        self.dispatch(SessionReset())
        self.logger.info("Playback stopped")
        return True

    # =========================================================================
    # Optimistic queue mutations
    # =========================================================================

    def add_to_queue(self, tracks: Iterable[Track]) -> bool:
        return self._mutations.submit(AddTracks(tuple(tracks)))

    def add_to_up_next(self, track: Track) -> bool:
        return self._mutations.submit(AddUpNext(track))

    def move_in_queue(self, from_index: int, to_index: int) -> bool:
        return self._mutations.submit(MoveTrack(from_index, to_index))

    def remove_from_queue(self, track_ids: Iterable[str]) -> bool:
        return self._mutations.submit(RemoveTracks(tuple(track_ids)))

    def sort_queue_by_title(self) -> bool:
        return self._mutations.submit(SortByTitle())

    def cleanup_played(self) -> bool:
        """Drop the tracks before the current one from the queue."""
        return self._mutations.submit(CleanupPlayed())

    def wait_for_mutations(self, timeout: Optional[float] = None) -> bool:
        """Block until all submitted queue mutations have been applied."""
        return self._mutations.wait_idle(timeout)

    def _apply_mutation(self, command: QueueCommand) -> QueueView:
        with self.lock:
            playing = self._session.current_track
            command.apply(self.queue_store)
            current = self.queue_store.get_current_track()
            view = QueueView.from_store(self.queue_store)
            lost_playing = playing is not None and (
                current is None or current.track_id != playing.track_id
            ) and self.queue_store.index_of(playing.track_id) is None
            was_playing = self._session.is_playing

        if lost_playing:
            self.logger.info("Playing track %s was removed from the queue", playing.track_id)
            if current is None:
                self.stop()
            else:
                # The new current track replaces the removed one, playing only if it was
                self._play_selected(lambda: self.queue_store.current_index, autoplay=was_playing)
        else:
            self._prefetch_up_next()
        return view

    # =========================================================================
    # Engine events and auto-advance
    # =========================================================================

    def on_engine_event(self, event: EngineEvent) -> None:
        """Engine event listener; events are tagged with the track instance they belong to."""
        generation = self._current_generation()
        if self._event_thread and self._event_thread.is_alive():
            self._events.put((generation, event))
        else:
            self._handle_engine_event(event, generation)

    def _handle_engine_event(self, event: EngineEvent, generation: int) -> None:
        if event.type == EngineEventType.QUEUE_ENDED:
            if self._is_late_end_signal(event, generation):
                self.logger.debug("Ignoring end event for a track already advanced past")
                return
            self.on_track_ended(generation)
            return

        if generation != self._current_generation():
            self.logger.debug("Ignoring stale engine event %s", event.type.value)
            return

        if event.type == EngineEventType.PLAYBACK_ERROR:
            self.logger.error("Engine reported playback error: %s", event.message)
            self.dispatch(PlaybackFailed(event.message or "playback error"))
        elif event.type == EngineEventType.STATE_CHANGED and event.state is not None:
            state = _ENGINE_TO_SESSION_STATE.get(event.state)
            if state is not None:
                self.dispatch(StateChanged(state))
            if event.position is not None:
                self.dispatch(ProgressUpdated(event.position))

    def _is_late_end_signal(self, event: EngineEvent, generation: int) -> bool:
        """
        True if an end event belongs to a track instance that is no longer current.

        Events are tagged with the generation current on arrival, so an end
        event for a track the near-end poll already advanced past arrives
        tagged with its successor. A different source URI identifies it
        directly; for the same source (repeat-one) the successor has not yet
        played past the near-end threshold.
        """
        with self.lock:
            if (
                event.source is not None
                and self._current_source is not None
                and event.source != self._current_source
            ):
                return True
            return (
                generation == self._poll_advanced_generation
                and self._session.position <= self._near_end_threshold
            )

    def _claim_advance(self, generation: int) -> None:
        """
        Atomically claim the right to advance past one track instance.

        Raises:
            ConcurrencyGuardRejection: If that instance was already advanced or is stale
        """
        with self._advance_lock:
            if generation != self._generation:
                raise ConcurrencyGuardRejection(f"end signal for stale track instance {generation}")
            if self._advanced_generation == generation:
                raise ConcurrencyGuardRejection(f"track instance {generation} already advanced")
            self._advanced_generation = generation

    def on_track_ended(self, generation: Optional[int] = None) -> bool:
        """
        Apply the repeat policy after the current track finished.

        Both the engine's end event and the near-end poll call this; only the
        first call for a given track instance has any effect.

        Returns:
            True if playback continues
        """
        if generation is None:
            generation = self._current_generation()
        try:
            self._claim_advance(generation)
        except ConcurrencyGuardRejection as e:
            self.logger.debug("Advance suppressed: %s", e)
            return False

        with self.lock:
            mode = self._session.repeat_mode
            index = self.queue_store.current_index
            is_last = index >= len(self.queue_store) - 1

        if mode == RepeatMode.ONE:
            return self._restart_current()

        if is_last and mode == RepeatMode.OFF:
            self.logger.info("Reached end of queue")
            self.dispatch(PlaybackEnded())
            return False

        if is_last:
            return self._play_selected(lambda: 0 if not self.queue_store.is_empty() else None)

        return self._play_selected(
            lambda: min(self.queue_store.current_index + 1, len(self.queue_store) - 1)
        )

    def _restart_current(self) -> bool:
        try:
            self.engine.seek_to(0)
            self.engine.play()
        except PlaybackEngineError as e:
            self.logger.error("Failed to restart track: %s", e)
            self.dispatch(PlaybackFailed(str(e)))
            return False

        self._next_generation()
        self.dispatch(TrackRestarted())
        track = self._session.current_track
        if track is not None:
            self.cache.mark_played(track.track_id)
        self.logger.info("Repeating current track")
        return True

    def poll_position(self, threshold: Optional[float] = None) -> bool:
        """
        Refresh position from the engine and advance if the track is about to end.

        Backup for end events the engine fails to deliver.

        Returns:
            True if an advance was triggered
        """
        if self._session.state != PlaybackState.PLAYING:
            return False
        if threshold is None:
            threshold = self._near_end_threshold

        generation = self._current_generation()
        position = self.engine.get_position()
        if position is None:
            return False
        duration = self.engine.get_duration() or self._session.duration
        self.dispatch(ProgressUpdated(position, duration or None))

        if duration and duration - position <= threshold:
            self.logger.debug("Near end of track (%.1f/%.1fs)", position, duration)
            advanced = self.on_track_ended(generation)
            if advanced:
                with self.lock:
                    self._poll_advanced_generation = self._current_generation()
            return advanced
        return False
