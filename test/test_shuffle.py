"""
Unit tests for ShuffleEngine.

Randomness is seeded so orderings are reproducible.
"""

import random

import pytest

from tunebox.models import Track
from tunebox.queue import QueueStore
from tunebox.shuffle import ShuffleEngine


def make_tracks(*ids):
    return [Track(track_id=i, title=f"Song {i}") for i in ids]


def ids(tracks):
    return [t.track_id for t in tracks]


@pytest.fixture
def store():
    queue = QueueStore()
    queue.set_queue(make_tracks("A", "B", "C", "D"), 1)
    return queue


@pytest.fixture
def engine(store):
    return ShuffleEngine(store, rng=random.Random(42))


def test_enable_shuffle_keeps_played_prefix(store, engine):
    """Tracks up to and including the current one are not moved."""
    engine.enable_shuffle()

    queue = ids(store.get_queue())
    assert queue[:2] == ["A", "B"]
    assert sorted(queue[2:]) == ["C", "D"]
    assert store.get_current_track().track_id == "B"
    assert engine.is_shuffled


def test_enable_then_disable_restores_original(store, engine):
    """Scenario: [A,B,C,D] at B, shuffle on then off gives [A,B,C,D] at index 1."""
    engine.enable_shuffle()
    engine.disable_shuffle()

    assert ids(store.get_queue()) == ["A", "B", "C", "D"]
    assert store.current_index == 1
    assert not engine.is_shuffled


@pytest.mark.parametrize("seed", range(10))
@pytest.mark.parametrize("length", [1, 2, 5, 12])
def test_round_trip_for_any_queue(seed, length):
    """Enabling then disabling shuffle restores order and current track."""
    tracks = make_tracks(*[f"t{i}" for i in range(length)])
    start = seed % length
    queue = QueueStore()
    queue.set_queue(tracks, start)
    engine = ShuffleEngine(queue, rng=random.Random(seed))

    engine.enable_shuffle()
    engine.disable_shuffle()

    assert queue.get_queue() == tracks
    assert queue.get_current_track() == tracks[start]


def test_disable_relocates_moved_current_track(store, engine):
    """If the current track moved while shuffled, it stays current after restore."""
    engine.enable_shuffle()
    store.set_current_index(3)
    current = store.get_current_track()

    engine.disable_shuffle()

    assert store.get_current_track() == current
    assert ids(store.get_queue()) == ["A", "B", "C", "D"]


def test_shuffle_is_a_permutation(engine, store):
    """Shuffling never adds or drops tracks."""
    big = make_tracks(*[str(i) for i in range(50)])
    store.set_queue(big, 0)
    engine.enable_shuffle()
    assert sorted(ids(store.get_queue()), key=int) == [str(i) for i in range(50)]
    assert store.get_queue()[0] == big[0]


def test_reenable_reshuffles_without_recapturing(store, engine):
    engine.enable_shuffle()
    engine.enable_shuffle()
    assert ids(store.get_original_queue()) == ["A", "B", "C", "D"]


def test_toggle(engine):
    assert engine.toggle() is True
    assert engine.toggle() is False


def test_disable_when_not_shuffled_is_noop(store, engine):
    engine.disable_shuffle()
    assert ids(store.get_queue()) == ["A", "B", "C", "D"]


def test_enable_on_empty_queue():
    queue = QueueStore()
    engine = ShuffleEngine(queue)
    engine.enable_shuffle()
    assert engine.is_shuffled
    assert queue.is_empty()


def test_shuffle_all_starts_from_first(store, engine):
    engine.shuffle_all()
    assert store.current_index == 0
    assert sorted(ids(store.get_queue())) == ["A", "B", "C", "D"]

    engine.disable_shuffle()
    assert ids(store.get_queue()) == ["A", "B", "C", "D"]


def test_tracks_added_while_shuffled_survive_disable(store, engine):
    engine.enable_shuffle()
    store.add_to_up_next(Track(track_id="E", title="Song E"))
    engine.disable_shuffle()
    assert sorted(ids(store.get_queue())) == ["A", "B", "C", "D", "E"]


def test_current_track_missing_from_original_falls_back_to_clamped_index(store, engine):
    """
    Known edge case: with a stale snapshot the current track cannot be found.

    The fallback only has to leave the store in a valid state; the exact
    track chosen is not part of the contract.
    """
    engine.enable_shuffle()
    store._original = make_tracks("X", "Y")

    engine.disable_shuffle()

    assert not engine.is_shuffled
    assert 0 <= store.current_index < len(store)
