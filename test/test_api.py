"""
API endpoint tests for tunebox.

The playback controller and cache coordinator are mocks; configuration uses a
real ConfigManager on a temporary database.
"""

from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from tunebox.cache import CacheCoordinator
from tunebox.config_manager import ConfigManager
from tunebox.models import Track
from tunebox.playback import PlaybackController
from tunebox.session import PlaybackSession, PlaybackState, RepeatMode
from tunebox.web.server import create_app

TRACK_JSON = {"track_id": "t1", "title": "One", "artists": ["Band"], "duration_seconds": 180}


@pytest.fixture
def config_manager(temp_db):
    return ConfigManager(temp_db)


@pytest.fixture
def mock_playback():
    playback = Mock(spec=PlaybackController)
    playback.is_loading = False
    playback.get_session.return_value = PlaybackSession(state=PlaybackState.PLAYING, current_index=0)
    playback.get_status.return_value = {"state": "playing", "up_next": []}
    return playback


@pytest.fixture
def mock_cache():
    return Mock(spec=CacheCoordinator)


@pytest.fixture
def client(mock_playback, mock_cache, config_manager):
    app = create_app(
        playback_controller=mock_playback,
        cache_coordinator=mock_cache,
        config_manager=config_manager,
    )
    return TestClient(app)


class TestPlaybackEndpoints:
    """Tests for session and playback control endpoints."""

    def test_get_session(self, client):
        response = client.get("/api/session")
        assert response.status_code == 200
        assert response.json()["state"] == "playing"

    def test_play_with_queue(self, client, mock_playback):
        mock_playback.play_track.return_value = True
        response = client.post(
            "/api/play",
            json={"track": TRACK_JSON, "queue": [TRACK_JSON, {"track_id": "t2", "title": "Two"}]},
        )
        assert response.status_code == 200
        assert response.json()["track_id"] == "t1"

        track, queue = mock_playback.play_track.call_args.args
        assert isinstance(track, Track)
        assert track.artists == ("Band",)
        assert [t.track_id for t in queue] == ["t1", "t2"]

    def test_play_without_queue(self, client, mock_playback):
        mock_playback.play_track.return_value = True
        client.post("/api/play", json={"track": TRACK_JSON})
        assert mock_playback.play_track.call_args.args[1] is None

    def test_play_while_loading_conflicts(self, client, mock_playback):
        mock_playback.is_loading = True
        response = client.post("/api/play", json={"track": TRACK_JSON})
        assert response.status_code == 409
        mock_playback.play_track.assert_not_called()

    def test_play_failure(self, client, mock_playback):
        mock_playback.play_track.return_value = False
        response = client.post("/api/play", json={"track": TRACK_JSON})
        assert response.status_code == 400

    def test_play_requires_track(self, client):
        response = client.post("/api/play", json={})
        assert response.status_code == 422

    def test_playpause(self, client, mock_playback):
        mock_playback.play_pause.return_value = True
        response = client.post("/api/playpause")
        assert response.status_code == 200
        assert response.json()["status"] == "playing"

    def test_next_at_end(self, client, mock_playback):
        mock_playback.play_next.return_value = False
        assert client.post("/api/next").status_code == 400

    def test_previous(self, client, mock_playback):
        mock_playback.play_previous.return_value = True
        response = client.post("/api/previous")
        assert response.status_code == 200
        assert response.json()["current_index"] == 0

    def test_seek(self, client, mock_playback):
        mock_playback.seek.return_value = True
        response = client.post("/api/seek", json={"position_seconds": 42.5})
        assert response.status_code == 200
        mock_playback.seek.assert_called_once_with(42.5)

    def test_seek_negative_rejected(self, client, mock_playback):
        response = client.post("/api/seek", json={"position_seconds": -1})
        assert response.status_code == 422
        mock_playback.seek.assert_not_called()

    def test_retry_outside_error(self, client, mock_playback):
        mock_playback.retry.return_value = False
        assert client.post("/api/retry").status_code == 400

    def test_stop(self, client, mock_playback):
        response = client.post("/api/stop")
        assert response.status_code == 200
        mock_playback.stop.assert_called_once()


class TestQueueEndpoints:
    """Tests for queue endpoints."""

    def test_set_queue(self, client, mock_playback):
        mock_playback.set_queue.return_value = True
        response = client.put("/api/queue", json={"tracks": [TRACK_JSON], "start_index": 0})
        assert response.status_code == 200
        tracks, start = mock_playback.set_queue.call_args.args
        assert [t.track_id for t in tracks] == ["t1"]
        assert start == 0

    def test_set_empty_queue(self, client, mock_playback):
        mock_playback.set_queue.return_value = False
        assert client.put("/api/queue", json={"tracks": []}).status_code == 400

    def test_add_tracks(self, client, mock_playback):
        mock_playback.add_to_queue.return_value = True
        response = client.post("/api/queue/tracks", json={"tracks": [TRACK_JSON]})
        assert response.status_code == 200
        assert response.json()["status"] == "queued"

    def test_add_up_next(self, client, mock_playback):
        mock_playback.add_to_up_next.return_value = True
        response = client.post("/api/queue/up-next", json={"track": TRACK_JSON})
        assert response.status_code == 200
        assert mock_playback.add_to_up_next.call_args.args[0].track_id == "t1"

    def test_move_invalid(self, client, mock_playback):
        mock_playback.move_in_queue.return_value = False
        response = client.post("/api/queue/move", json={"from_index": 0, "to_index": 9})
        assert response.status_code == 400

    def test_remove(self, client, mock_playback):
        mock_playback.remove_from_queue.return_value = True
        assert client.delete("/api/queue/t1").status_code == 200
        mock_playback.remove_from_queue.assert_called_once_with(["t1"])

    def test_remove_unknown(self, client, mock_playback):
        mock_playback.remove_from_queue.return_value = False
        assert client.delete("/api/queue/nope").status_code == 404

    def test_sort(self, client, mock_playback):
        mock_playback.sort_queue_by_title.return_value = True
        response = client.post("/api/queue/sort")
        assert response.status_code == 200
        mock_playback.sort_queue_by_title.assert_called_once()

    def test_cleanup(self, client, mock_playback):
        mock_playback.cleanup_played.return_value = True
        assert client.post("/api/queue/cleanup").status_code == 200
        mock_playback.cleanup_played.assert_called_once()

    def test_cleanup_rejected(self, client, mock_playback):
        mock_playback.cleanup_played.return_value = False
        assert client.post("/api/queue/cleanup").status_code == 400


class TestModeEndpoints:
    def test_toggle_shuffle(self, client, mock_playback):
        mock_playback.toggle_shuffle.return_value = True
        assert client.post("/api/shuffle").json() == {"shuffled": True}

    def test_repeat_cycles_without_body(self, client, mock_playback):
        mock_playback.toggle_repeat.return_value = RepeatMode.ONE
        response = client.post("/api/repeat")
        assert response.json() == {"repeat_mode": "one"}

    def test_repeat_explicit_mode(self, client, mock_playback):
        mock_playback.set_repeat_mode.return_value = RepeatMode.ALL
        response = client.post("/api/repeat", json={"mode": "all"})
        assert response.json() == {"repeat_mode": "all"}
        mock_playback.set_repeat_mode.assert_called_once_with(RepeatMode.ALL)

    def test_repeat_invalid_mode(self, client):
        assert client.post("/api/repeat", json={"mode": "twice"}).status_code == 422


class TestCacheEndpoints:
    def test_stats(self, client, mock_cache):
        mock_cache.get_cache_stats.return_value = {"song_count": 2}
        assert client.get("/api/cache/stats").json() == {"song_count": 2}

    def test_cached_entry(self, client, mock_cache):
        mock_cache.get_local_uri.return_value = "file:///songs/t1.mp3"
        mock_cache.get_download_progress.return_value = None
        data = client.get("/api/cache/t1").json()
        assert data["downloaded"] is True
        assert data["local_uri"] == "file:///songs/t1.mp3"

    def test_entry_in_progress(self, client, mock_cache):
        mock_cache.get_local_uri.return_value = None
        mock_cache.get_download_progress.return_value = 0.4
        data = client.get("/api/cache/t1").json()
        assert data["downloaded"] is False
        assert data["download_progress"] == 0.4

    def test_entry_unknown(self, client, mock_cache):
        mock_cache.get_local_uri.return_value = None
        mock_cache.get_download_progress.return_value = None
        assert client.get("/api/cache/t1").status_code == 404

    def test_request_download(self, client, mock_cache):
        mock_cache.request_download.return_value = True
        response = client.post("/api/cache", json={"track": TRACK_JSON})
        assert response.json()["status"] == "downloading"
        mock_cache.download_song.assert_not_called()

    def test_download_and_wait_failure(self, client, mock_cache):
        mock_cache.download_song.return_value = False
        response = client.post("/api/cache", json={"track": TRACK_JSON, "wait": True})
        assert response.status_code == 502

    def test_delete(self, client, mock_cache):
        mock_cache.delete_song.return_value = True
        assert client.delete("/api/cache/t1").status_code == 200

    def test_delete_unknown(self, client, mock_cache):
        mock_cache.delete_song.return_value = False
        assert client.delete("/api/cache/t1").status_code == 404


class TestConfigEndpoints:
    def test_get_config(self, client):
        data = client.get("/api/config").json()
        assert data["values"]["cache_retention_days"] == "7"
        assert "cache" in data["groups"]

    def test_update_config(self, client, config_manager):
        response = client.patch(
            "/api/config", json={"key": "cache_retention_days", "value": "14"}
        )
        assert response.status_code == 200
        assert config_manager.get("cache_retention_days") == "14"

    def test_update_unknown_key(self, client):
        response = client.patch("/api/config", json={"key": "bogus", "value": "1"})
        assert response.status_code == 400
