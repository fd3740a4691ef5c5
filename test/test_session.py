"""
Unit tests for the playback session reducer.
"""

import pytest

from tunebox.models import Track
from tunebox.session import (
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

TRACK = Track(track_id="A", title="Song A", duration_seconds=180.0)


def replay(*actions, session=None):
    session = session or PlaybackSession()
    for action in actions:
        session = reduce(session, action)
    return session


def test_initial_session_is_idle():
    session = PlaybackSession()
    assert session.state == PlaybackState.IDLE
    assert session.current_track is None
    assert session.is_playing is False
    assert session.repeat_mode == RepeatMode.OFF


def test_load_then_play():
    session = replay(LoadStarted(TRACK), StateChanged(PlaybackState.PLAYING))
    assert session.state == PlaybackState.PLAYING
    assert session.current_track == TRACK
    assert session.duration == 180.0
    assert session.is_playing


def test_buffering_counts_as_playing():
    session = replay(LoadStarted(TRACK), StateChanged(PlaybackState.BUFFERING))
    assert session.is_playing


def test_error_is_sticky_until_reload():
    """Engine chatter after a failure does not hide it; a new load does."""
    session = replay(LoadStarted(TRACK), PlaybackFailed("codec"), StateChanged(PlaybackState.PAUSED))
    assert session.state == PlaybackState.ERROR
    assert session.error == "codec"

    session = reduce(session, LoadStarted(TRACK))
    assert session.state == PlaybackState.LOADING
    assert session.error is None


def test_track_restarted():
    session = replay(
        LoadStarted(TRACK),
        StateChanged(PlaybackState.PLAYING),
        ProgressUpdated(179.5),
        TrackRestarted(),
    )
    assert session.position == 0.0
    assert session.is_playing
    assert session.current_track == TRACK


def test_playback_ended():
    session = replay(LoadStarted(TRACK), StateChanged(PlaybackState.PLAYING), PlaybackEnded())
    assert session.state == PlaybackState.ENDED
    assert not session.is_playing
    assert session.current_track == TRACK


def test_progress_keeps_duration_when_unknown():
    session = replay(LoadStarted(TRACK), ProgressUpdated(10.0))
    assert session.duration == 180.0
    session = reduce(session, ProgressUpdated(11.0, 200.0))
    assert session.duration == 200.0
    assert reduce(session, ProgressUpdated(-3.0)).position == 0.0


def test_queue_changed():
    session = reduce(PlaybackSession(), QueueChanged((TRACK,), 0, True))
    assert session.queue == (TRACK,)
    assert session.current_index == 0
    assert session.shuffled


def test_reset_keeps_queue_and_modes():
    session = replay(
        QueueChanged((TRACK,), 0, False),
        RepeatModeChanged(RepeatMode.ALL),
        LoadStarted(TRACK),
        StateChanged(PlaybackState.PLAYING),
        SessionReset(),
    )
    assert session.state == PlaybackState.IDLE
    assert session.current_track is None
    assert session.queue == (TRACK,)
    assert session.repeat_mode == RepeatMode.ALL


def test_repeat_cycle():
    assert next_repeat_mode(RepeatMode.OFF) == RepeatMode.ONE
    assert next_repeat_mode(RepeatMode.ONE) == RepeatMode.ALL
    assert next_repeat_mode(RepeatMode.ALL) == RepeatMode.OFF


def test_unknown_action_raises():
    with pytest.raises(TypeError):
        reduce(PlaybackSession(), object())


def test_to_dict():
    data = replay(LoadStarted(TRACK), StateChanged(PlaybackState.PLAYING)).to_dict()
    assert data["state"] == "playing"
    assert data["is_playing"] is True
    assert data["current_track"]["track_id"] == "A"
    assert data["repeat_mode"] == "off"
