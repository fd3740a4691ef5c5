"""
Durable file storage for cached audio.

Thin wrapper over the local file system: per-track paths, existence and size
checks, deletion, free-space queries and content hashing.
"""

import hashlib
import logging
import shutil
from pathlib import Path
from typing import Optional

from .errors import StorageError

AUDIO_EXTENSION = ".mp3"
PARTIAL_SUFFIX = ".part"
HASH_CHUNK_BYTES = 1024 * 1024


class FileStorage:
    """Manages the directory that holds downloaded audio files."""

    def __init__(self, base_directory: Path):
        """
        Initialize FileStorage.

        Args:
            base_directory: Directory for audio files (created by ensure_directory)
        """
        self.logger = logging.getLogger(__name__)
        self.base_directory = Path(base_directory)

    def ensure_directory(self) -> Path:
        """Create the storage directory if absent."""
        try:
            self.base_directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create {self.base_directory}: {e}") from e
        return self.base_directory

    def path_for(self, track_id: str) -> Path:
        """Final location of a track's audio file."""
        return self.base_directory / f"{track_id}{AUDIO_EXTENSION}"

    def partial_path_for(self, track_id: str) -> Path:
        """Location of an in-progress download."""
        return self.base_directory / f"{track_id}{AUDIO_EXTENSION}{PARTIAL_SUFFIX}"

    def exists(self, path: Path) -> bool:
        return Path(path).is_file()

    def size(self, path: Path) -> Optional[int]:
        """Size in bytes, or None if the file does not exist."""
        try:
            return Path(path).stat().st_size
        except FileNotFoundError:
            return None

    def delete(self, path: Path) -> bool:
        """
        Delete a file, tolerating its absence.

        Returns:
            True if a file was removed
        """
        try:
            Path(path).unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Cannot delete {path}: {e}") from e

    def promote(self, partial: Path, final: Path) -> Path:
        """Atomically move a completed download into its final location."""
        try:
            Path(partial).replace(final)
        except OSError as e:
            raise StorageError(f"Cannot move {partial} to {final}: {e}") from e
        return Path(final)

    def free_space(self) -> int:
        """Free bytes on the volume holding the storage directory."""
        target = self.base_directory
        while not target.exists() and target != target.parent:
            target = target.parent
        return shutil.disk_usage(target).free

    def hash_file(self, path: Path) -> str:
        """MD5 hex digest of a file's contents."""
        digest = hashlib.md5()
        try:
            with open(path, "rb") as f:
                for chunk in iter(lambda: f.read(HASH_CHUNK_BYTES), b""):
                    digest.update(chunk)
        except OSError as e:
            raise StorageError(f"Cannot hash {path}: {e}") from e
        return digest.hexdigest()
