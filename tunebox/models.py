"""
Data models for tunebox.

Defines typed dataclasses for the entities shared by the queue, cache and playback layers.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class Track:
    """Immutable descriptor of one playable audio item."""

    track_id: str  # Stable, unique identifier
    title: str
    artists: Tuple[str, ...] = ()
    album: Optional[str] = None
    duration_seconds: float = 0.0
    artwork_url: Optional[str] = None
    stream_url: Optional[str] = None  # Network source used when no cached copy exists
    added_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "track_id": self.track_id,
            "title": self.title,
            "artists": list(self.artists),
            "album": self.album,
            "duration_seconds": self.duration_seconds,
            "artwork_url": self.artwork_url,
            "stream_url": self.stream_url,
            "added_at": self.added_at.isoformat() if self.added_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Track":
        added_at = data.get("added_at")
        if isinstance(added_at, str):
            added_at = datetime.fromisoformat(added_at)
        return cls(
            track_id=str(data["track_id"]),
            title=data.get("title", ""),
            artists=tuple(data.get("artists") or ()),
            album=data.get("album"),
            duration_seconds=float(data.get("duration_seconds") or 0.0),
            artwork_url=data.get("artwork_url"),
            stream_url=data.get("stream_url"),
            added_at=added_at,
        )


@dataclass
class CacheEntry:
    """Verified record of one locally stored audio file."""

    track_id: str
    local_path: str
    size_bytes: int
    last_verified: float  # Unix timestamp
    content_hash: Optional[str] = None  # MD5 hex digest of the completed file
    last_played: float = field(default=0.0)  # Unix timestamp, drives retention cleanup

    def to_dict(self) -> Dict[str, Any]:
        return {
            "track_id": self.track_id,
            "local_path": self.local_path,
            "size_bytes": self.size_bytes,
            "last_verified": self.last_verified,
            "content_hash": self.content_hash,
            "last_played": self.last_played,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        return cls(
            track_id=str(data["track_id"]),
            local_path=data["local_path"],
            size_bytes=int(data.get("size_bytes") or 0),
            last_verified=float(data.get("last_verified") or 0.0),
            content_hash=data.get("content_hash"),
            last_played=float(data.get("last_played") or 0.0),
        )


@dataclass
class ConfigEntry:
    """Configuration entry."""

    key: str
    value: str
    updated_at: Optional[datetime] = None
