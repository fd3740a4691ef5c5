"""
Unit tests for FileStorage.
"""

import hashlib
import shutil
import tempfile
from pathlib import Path

import pytest

from tunebox.errors import StorageError
from tunebox.storage import FileStorage


@pytest.fixture
def storage():
    path = tempfile.mkdtemp()
    yield FileStorage(Path(path) / "songs")
    shutil.rmtree(path, ignore_errors=True)


def test_paths(storage):
    assert storage.path_for("abc").name == "abc.mp3"
    assert storage.partial_path_for("abc").name == "abc.mp3.part"
    assert storage.path_for("abc").parent == storage.base_directory


def test_ensure_directory(storage):
    storage.ensure_directory()
    storage.ensure_directory()
    assert storage.base_directory.is_dir()


def test_ensure_directory_failure(storage):
    storage.base_directory.parent.mkdir(parents=True, exist_ok=True)
    storage.base_directory.write_bytes(b"not a directory")
    with pytest.raises(StorageError):
        storage.ensure_directory()


def test_size_and_exists(storage):
    storage.ensure_directory()
    path = storage.path_for("abc")
    assert storage.size(path) is None
    assert not storage.exists(path)

    path.write_bytes(b"x" * 123)
    assert storage.size(path) == 123
    assert storage.exists(path)


def test_delete_tolerates_missing(storage):
    storage.ensure_directory()
    path = storage.path_for("abc")
    path.write_bytes(b"x")
    assert storage.delete(path) is True
    assert storage.delete(path) is False


def test_promote(storage):
    storage.ensure_directory()
    partial = storage.partial_path_for("abc")
    partial.write_bytes(b"audio")

    final = storage.promote(partial, storage.path_for("abc"))

    assert final.read_bytes() == b"audio"
    assert not partial.exists()


def test_free_space_before_directory_exists(storage):
    assert storage.free_space() > 0


def test_hash_file(storage):
    storage.ensure_directory()
    path = storage.path_for("abc")
    path.write_bytes(b"hello")
    assert storage.hash_file(path) == hashlib.md5(b"hello").hexdigest()

    with pytest.raises(StorageError):
        storage.hash_file(storage.path_for("missing"))
