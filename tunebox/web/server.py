"""
FastAPI web server for tunebox.

Provides the REST API the UI layer uses to read the playback session and
control playback, the queue and the offline cache.
"""

import logging
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from ..cache import CacheCoordinator
from ..config_manager import CONFIG_SCHEMA, ConfigManager
from ..models import Track
from ..playback import PlaybackController
from ..session import RepeatMode

logger = logging.getLogger(__name__)


# Request models
class TrackModel(BaseModel):
    track_id: str
    title: str
    artists: List[str] = Field(default_factory=list)
    album: Optional[str] = None
    duration_seconds: float = 0.0
    artwork_url: Optional[str] = None
    stream_url: Optional[str] = None

    def to_track(self) -> Track:
        return Track(
            track_id=self.track_id,
            title=self.title,
            artists=tuple(self.artists),
            album=self.album,
            duration_seconds=self.duration_seconds,
            artwork_url=self.artwork_url,
            stream_url=self.stream_url,
        )


class PlayRequest(BaseModel):
    track: TrackModel
    queue: Optional[List[TrackModel]] = None


class SetQueueRequest(BaseModel):
    tracks: List[TrackModel]
    start_index: int = 0


class AddTracksRequest(BaseModel):
    tracks: List[TrackModel]


class UpNextRequest(BaseModel):
    track: TrackModel


class MoveRequest(BaseModel):
    from_index: int
    to_index: int


class SeekRequest(BaseModel):
    position_seconds: float = Field(ge=0)


class RepeatRequest(BaseModel):
    mode: Optional[RepeatMode] = None  # Omit to cycle off -> one -> all


class CacheDownloadRequest(BaseModel):
    track: TrackModel
    wait: bool = False  # Block until the download finishes


class ConfigUpdateRequest(BaseModel):
    key: str
    value: str


# Dependency to get components
def get_playback_controller(request: Request) -> PlaybackController:
    """Get PlaybackController from app state."""
    return request.app.state.playback_controller


def get_cache_coordinator(request: Request) -> CacheCoordinator:
    """Get CacheCoordinator from app state."""
    return request.app.state.cache_coordinator


def get_config_manager(request: Request) -> ConfigManager:
    """Get ConfigManager from app state."""
    return request.app.state.config_manager


def create_app(
    playback_controller: PlaybackController,
    cache_coordinator: CacheCoordinator,
    config_manager: ConfigManager,
) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        playback_controller: PlaybackController instance
        cache_coordinator: CacheCoordinator instance
        config_manager: ConfigManager instance

    Returns:
        Configured FastAPI app
    """
    app = FastAPI(title="tunebox", version="1.0.0")

    # Store components in app state
    app.state.playback_controller = playback_controller
    app.state.cache_coordinator = cache_coordinator
    app.state.config_manager = config_manager

    # Session and playback endpoints
    @app.get("/api/session")
    async def get_session(
        playback: PlaybackController = Depends(get_playback_controller),
    ):
        """Get the current playback session."""
        return playback.get_status()

    # Loading blocks on the engine, so these run in the threadpool
    @app.post("/api/play")
    def play(
        request_data: PlayRequest,
        playback: PlaybackController = Depends(get_playback_controller),
    ):
        """Play a track, optionally replacing the queue."""
        if playback.is_loading:
            raise HTTPException(status_code=409, detail="Another track is already loading")

        queue = [t.to_track() for t in request_data.queue] if request_data.queue is not None else None
        if playback.play_track(request_data.track.to_track(), queue):
            return {"status": "playing", "track_id": request_data.track.track_id}
        raise HTTPException(status_code=400, detail="Failed to start playback")

    @app.post("/api/playpause")
    def play_pause(playback: PlaybackController = Depends(get_playback_controller)):
        """Toggle play/pause."""
        if playback.play_pause():
            return {"status": playback.get_session().state.value}
        raise HTTPException(status_code=400, detail="Nothing to play or pause")

    @app.post("/api/next")
    def next_track(playback: PlaybackController = Depends(get_playback_controller)):
        """Skip to the next track."""
        if playback.play_next():
            return {"status": "playing", "current_index": playback.get_session().current_index}
        raise HTTPException(status_code=400, detail="No next track")

    @app.post("/api/previous")
    def previous_track(playback: PlaybackController = Depends(get_playback_controller)):
        """Go back to the previous track."""
        if playback.play_previous():
            return {"status": "playing", "current_index": playback.get_session().current_index}
        raise HTTPException(status_code=400, detail="No previous track")

    @app.post("/api/seek")
    async def seek(
        request_data: SeekRequest,
        playback: PlaybackController = Depends(get_playback_controller),
    ):
        """Seek within the current track."""
        if playback.seek(request_data.position_seconds):
            return {"status": "seeked", "position_seconds": request_data.position_seconds}
        raise HTTPException(status_code=400, detail="Seek failed")

    @app.post("/api/retry")
    def retry(playback: PlaybackController = Depends(get_playback_controller)):
        """Reload the current track after a playback error."""
        if playback.retry():
            return {"status": "playing"}
        raise HTTPException(status_code=400, detail="Nothing to retry")

    @app.post("/api/stop")
    def stop(playback: PlaybackController = Depends(get_playback_controller)):
        """Stop playback."""
        playback.stop()
        return {"status": "stopped"}

    # Queue endpoints
    @app.put("/api/queue")
    def set_queue(
        request_data: SetQueueRequest,
        playback: PlaybackController = Depends(get_playback_controller),
    ):
        """Replace the queue without starting playback."""
        tracks = [t.to_track() for t in request_data.tracks]
        if not playback.set_queue(tracks, request_data.start_index):
            raise HTTPException(status_code=400, detail="Queue must not be empty")
        return {"status": "updated", "length": len(playback.get_session().queue)}

    @app.post("/api/queue/tracks")
    async def add_tracks(
        request_data: AddTracksRequest,
        playback: PlaybackController = Depends(get_playback_controller),
    ):
        """Add tracks to the end of the queue."""
        if not playback.add_to_queue([t.to_track() for t in request_data.tracks]):
            raise HTTPException(status_code=400, detail="Invalid queue mutation")
        return {"status": "queued"}

    @app.post("/api/queue/up-next")
    async def add_up_next(
        request_data: UpNextRequest,
        playback: PlaybackController = Depends(get_playback_controller),
    ):
        """Play a track right after the current one."""
        if not playback.add_to_up_next(request_data.track.to_track()):
            raise HTTPException(status_code=400, detail="Invalid queue mutation")
        return {"status": "queued"}

    @app.post("/api/queue/move")
    async def move_track(
        request_data: MoveRequest,
        playback: PlaybackController = Depends(get_playback_controller),
    ):
        """Move a queue entry."""
        if not playback.move_in_queue(request_data.from_index, request_data.to_index):
            raise HTTPException(status_code=400, detail="Invalid queue position")
        return {"status": "moved"}

    @app.post("/api/queue/sort")
    async def sort_queue(playback: PlaybackController = Depends(get_playback_controller)):
        """Sort the queue by title."""
        if not playback.sort_queue_by_title():
            raise HTTPException(status_code=400, detail="Invalid queue mutation")
        return {"status": "queued"}

    @app.post("/api/queue/cleanup")
    async def cleanup_queue(playback: PlaybackController = Depends(get_playback_controller)):
        """Drop already-played tracks from the queue."""
        if not playback.cleanup_played():
            raise HTTPException(status_code=400, detail="Invalid queue mutation")
        return {"status": "queued"}

    @app.delete("/api/queue/{track_id}")
    async def remove_track(
        track_id: str,
        playback: PlaybackController = Depends(get_playback_controller),
    ):
        """Remove a track from the queue."""
        if not playback.remove_from_queue([track_id]):
            raise HTTPException(status_code=404, detail="Track not in queue")
        return {"status": "removed"}

    # Mode endpoints
    @app.post("/api/shuffle")
    def toggle_shuffle(playback: PlaybackController = Depends(get_playback_controller)):
        """Toggle shuffle."""
        return {"shuffled": playback.toggle_shuffle()}

    @app.post("/api/repeat")
    async def set_repeat(
        request_data: Optional[RepeatRequest] = None,
        playback: PlaybackController = Depends(get_playback_controller),
    ):
        """Set the repeat mode, or cycle it when no mode is given."""
        if request_data is None or request_data.mode is None:
            mode = playback.toggle_repeat()
        else:
            mode = playback.set_repeat_mode(request_data.mode)
        return {"repeat_mode": mode.value}

    # Cache endpoints
    @app.get("/api/cache/stats")
    async def get_cache_stats(cache: CacheCoordinator = Depends(get_cache_coordinator)):
        """Get cache statistics."""
        return cache.get_cache_stats()

    @app.get("/api/cache/{track_id}")
    def get_cache_entry(
        track_id: str,
        cache: CacheCoordinator = Depends(get_cache_coordinator),
    ):
        """Get the cached copy of a track, if any."""
        local_uri = cache.get_local_uri(track_id)
        progress = cache.get_download_progress(track_id)
        if local_uri is None and progress is None:
            raise HTTPException(status_code=404, detail="Track not cached")
        return {
            "track_id": track_id,
            "downloaded": local_uri is not None,
            "local_uri": local_uri,
            "download_progress": progress,
        }

    @app.post("/api/cache")
    def download_track(
        request_data: CacheDownloadRequest,
        cache: CacheCoordinator = Depends(get_cache_coordinator),
    ):
        """Download a track into the cache."""
        track = request_data.track.to_track()
        if request_data.wait:
            if not cache.download_song(track):
                raise HTTPException(status_code=502, detail="Download failed")
            return {"status": "downloaded", "track_id": track.track_id}

        if cache.request_download(track):
            return {"status": "downloading", "track_id": track.track_id}
        return {"status": "already cached or downloading", "track_id": track.track_id}

    @app.delete("/api/cache/{track_id}")
    def delete_cached_track(
        track_id: str,
        cache: CacheCoordinator = Depends(get_cache_coordinator),
    ):
        """Delete a track from the cache."""
        if not cache.delete_song(track_id):
            raise HTTPException(status_code=404, detail="Track not cached")
        return {"status": "deleted", "track_id": track_id}

    # Config endpoints
    @app.get("/api/config")
    async def get_config(config: ConfigManager = Depends(get_config_manager)):
        """
        Get all configuration with rich schema metadata.

        Returns:
            Object with values, schema and groups
        """
        return config.get_full_config()

    @app.patch("/api/config")
    async def update_config(
        request_data: ConfigUpdateRequest,
        config: ConfigManager = Depends(get_config_manager),
    ):
        """Update a configuration value."""
        if request_data.key not in config.DEFAULTS and request_data.key not in CONFIG_SCHEMA:
            raise HTTPException(status_code=400, detail=f"Unknown config key: {request_data.key}")

        config.set(request_data.key, request_data.value)
        logger.info("Config %s updated", request_data.key)
        return {
            "status": "updated",
            "key": request_data.key,
            "value": request_data.value,
        }

    return app
