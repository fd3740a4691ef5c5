"""
Playback session state and its transition function.

The PlaybackSession is an immutable snapshot. Every change is expressed as an
action and applied by reduce(), so a sequence of actions can be replayed
deterministically in tests.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from .models import Track


class PlaybackState(Enum):
    IDLE = "idle"
    LOADING = "loading"
    PLAYING = "playing"
    PAUSED = "paused"
    BUFFERING = "buffering"
    ENDED = "ended"
    ERROR = "error"


class RepeatMode(Enum):
    OFF = "off"
    ONE = "one"
    ALL = "all"


_REPEAT_CYCLE = {
    RepeatMode.OFF: RepeatMode.ONE,
    RepeatMode.ONE: RepeatMode.ALL,
    RepeatMode.ALL: RepeatMode.OFF,
}


def next_repeat_mode(mode: RepeatMode) -> RepeatMode:
    """off -> one -> all -> off"""
    return _REPEAT_CYCLE[mode]


@dataclass(frozen=True)
class PlaybackSession:
    """Read-only view of what is playing, exposed to the UI layer."""

    state: PlaybackState = PlaybackState.IDLE
    current_track: Optional[Track] = None
    position: float = 0.0
    duration: float = 0.0
    repeat_mode: RepeatMode = RepeatMode.OFF
    shuffled: bool = False
    queue: Tuple[Track, ...] = field(default_factory=tuple)
    current_index: int = -1
    error: Optional[str] = None

    @property
    def is_playing(self) -> bool:
        return self.state in (PlaybackState.PLAYING, PlaybackState.BUFFERING)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "is_playing": self.is_playing,
            "current_track": self.current_track.to_dict() if self.current_track else None,
            "position": self.position,
            "duration": self.duration,
            "repeat_mode": self.repeat_mode.value,
            "shuffled": self.shuffled,
            "queue": [track.to_dict() for track in self.queue],
            "current_index": self.current_index,
            "error": self.error,
        }


# =========================================================================
# Actions
# =========================================================================


@dataclass(frozen=True)
class LoadStarted:
    track: Track


@dataclass(frozen=True)
class StateChanged:
    state: PlaybackState


@dataclass(frozen=True)
class ProgressUpdated:
    position: float
    duration: Optional[float] = None


@dataclass(frozen=True)
class TrackRestarted:
    """Repeat-one restart: same track, back to 0, playing."""


@dataclass(frozen=True)
class PlaybackEnded:
    """Queue finished with nothing to advance to."""


@dataclass(frozen=True)
class PlaybackFailed:
    message: str


@dataclass(frozen=True)
class QueueChanged:
    queue: Tuple[Track, ...]
    current_index: int
    shuffled: bool


@dataclass(frozen=True)
class RepeatModeChanged:
    mode: RepeatMode


@dataclass(frozen=True)
class SessionReset:
    """Unload everything; queue and modes are kept."""


Action = Union[
    LoadStarted,
    StateChanged,
    ProgressUpdated,
    TrackRestarted,
    PlaybackEnded,
    PlaybackFailed,
    QueueChanged,
    RepeatModeChanged,
    SessionReset,
]


def reduce(session: PlaybackSession, action: Action) -> PlaybackSession:
    """
    Apply one action to a session, returning the new session.

    Raises:
        TypeError: For an unknown action
    """
    if isinstance(action, LoadStarted):
        return replace(
            session,
            state=PlaybackState.LOADING,
            current_track=action.track,
            position=0.0,
            duration=action.track.duration_seconds,
            error=None,
        )

    if isinstance(action, StateChanged):
        if session.state == PlaybackState.ERROR and action.state != PlaybackState.LOADING:
            # Stale engine chatter must not hide a failure; only retry leaves ERROR
            return session
        return replace(session, state=action.state)

    if isinstance(action, ProgressUpdated):
        duration = session.duration if action.duration is None else action.duration
        return replace(session, position=max(0.0, action.position), duration=duration)

    if isinstance(action, TrackRestarted):
        return replace(session, state=PlaybackState.PLAYING, position=0.0, error=None)

    if isinstance(action, PlaybackEnded):
        return replace(session, state=PlaybackState.ENDED)

    if isinstance(action, PlaybackFailed):
        return replace(session, state=PlaybackState.ERROR, error=action.message)

    if isinstance(action, QueueChanged):
        return replace(
            session,
            queue=tuple(action.queue),
            current_index=action.current_index,
            shuffled=action.shuffled,
        )

    if isinstance(action, RepeatModeChanged):
        return replace(session, repeat_mode=action.mode)

    if isinstance(action, SessionReset):
        return replace(
            session,
            state=PlaybackState.IDLE,
            current_track=None,
            position=0.0,
            duration=0.0,
            error=None,
        )

    raise TypeError(f"Unknown action: {action!r}")
