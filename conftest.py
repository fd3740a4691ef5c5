"""
Pytest configuration for tunebox tests.

Provides:
- @pytest.mark.gstreamer marker for tests that drive the real GStreamer engine
- Auto-skip of those tests when the gi bindings are unavailable, and of the
  ones that need generated test tones when ffmpeg is not installed
- temp_db: a throwaway SQLite Database shared by the config, database and API tests
"""

import os
import shutil
import tempfile

import pytest

from tunebox.database import Database

TONE_FIXTURES = ("tone_1s", "tone_3s")


def _is_gstreamer_available():
    """Check if GStreamer Python bindings are available."""
    try:
        import gi

        gi.require_version("Gst", "1.0")
        from gi.repository import Gst

        Gst.init(None)
        return True
    except (ImportError, ValueError):
        return False


GSTREAMER_AVAILABLE = _is_gstreamer_available()
FFMPEG_AVAILABLE = shutil.which("ffmpeg") is not None


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "gstreamer: requires GStreamer (skipped if unavailable)"
    )


def pytest_collection_modifyitems(config, items):
    skip_gstreamer = pytest.mark.skip(reason="GStreamer not available (gi module not found)")
    skip_tones = pytest.mark.skip(reason="ffmpeg not found, cannot generate test tones")
    for item in items:
        if "gstreamer" not in item.keywords:
            continue
        if not GSTREAMER_AVAILABLE:
            item.add_marker(skip_gstreamer)
        elif not FFMPEG_AVAILABLE and any(name in item.fixturenames for name in TONE_FIXTURES):
            item.add_marker(skip_tones)


@pytest.fixture
def temp_db():
    """Create a temporary database file, removed after the test."""
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    db = Database(db_path=path)
    yield db
    db.close()
    os.unlink(path)
