"""
Media playback engine interface.

The engine owns decoding and output; tunebox only drives it through this
interface and reacts to the events it emits.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional


class EngineState(Enum):
    """Playback state as reported by the engine."""

    IDLE = "idle"
    LOADING = "loading"
    PLAYING = "playing"
    PAUSED = "paused"
    BUFFERING = "buffering"
    STOPPED = "stopped"


class EngineEventType(Enum):
    STATE_CHANGED = "state_changed"
    PLAYBACK_ERROR = "playback_error"
    QUEUE_ENDED = "queue_ended"


@dataclass(frozen=True)
class EngineEvent:
    """One event emitted by the engine, delivered in emission order."""

    type: EngineEventType
    state: Optional[EngineState] = None  # For STATE_CHANGED
    message: Optional[str] = None  # For PLAYBACK_ERROR
    position: Optional[float] = None  # Seconds, when the engine knows it
    source: Optional[str] = None  # URI loaded when the event was emitted


EngineEventListener = Callable[[EngineEvent], None]


class MediaEngine(ABC):
    """
    Abstract interface for an external media playback engine.

    Implementations raise PlaybackEngineError for device, codec or source
    failures. Events may be emitted from any thread.
    """

    @abstractmethod
    def reset(self) -> None:
        """Stop playback and unload the current source."""
        ...

    @abstractmethod
    def load(self, source_uri: str) -> None:
        """
        Load a source (file:// or http(s):// URI) without starting it.

        Raises:
            PlaybackEngineError: If the source cannot be loaded
        """
        ...

    @abstractmethod
    def play(self) -> None:
        ...

    @abstractmethod
    def pause(self) -> None:
        ...

    @abstractmethod
    def seek_to(self, seconds: float) -> None:
        ...

    @abstractmethod
    def get_state(self) -> EngineState:
        """Authoritative current state, queried from the engine."""
        ...

    @abstractmethod
    def get_position(self) -> Optional[float]:
        """Current position in seconds, or None if nothing is loaded."""
        ...

    @abstractmethod
    def get_duration(self) -> Optional[float]:
        """Duration of the loaded source in seconds, or None if unknown."""
        ...

    @abstractmethod
    def set_event_listener(self, listener: Optional[EngineEventListener]) -> None:
        """Register the single consumer of engine events."""
        ...

    def shutdown(self) -> None:
        """Release engine resources."""
