"""
GStreamer-based media engine for audio playback.

Uses a single playbin element that is reset between tracks. Bus messages are
polled on a background thread and translated into EngineEvents, since the
signal watch would require a running GLib main loop.
"""

import logging
import sys
import threading
from dataclasses import replace
from typing import Any, Optional

from .engine import EngineEvent, EngineEventListener, EngineEventType, EngineState, MediaEngine
from .errors import PlaybackEngineError

# Defer GStreamer imports until actually needed to avoid crashes on import
_Gst = None


def _get_gst():
    """Lazily import GStreamer to avoid crashes on startup."""
    global _Gst
    if _Gst is not None:
        return _Gst

    try:
        import gi

        gi.require_version("Gst", "1.0")
        from gi.repository import Gst as _Gst_module

        _Gst = _Gst_module
        return _Gst
    except Exception as e:
        logging.getLogger(__name__).error("Failed to import GStreamer: %s", e)
        raise


class GstMediaEngine(MediaEngine):
    """MediaEngine backed by a GStreamer playbin (audio only)."""

    STATE_TIMEOUT_SECONDS = 5

    def __init__(self, config_manager, use_fakesinks: bool = False):
        """
        Initialize GstMediaEngine and its pipeline.

        Args:
            config_manager: Configuration manager instance (reads audio_sink)
            use_fakesinks: If True, use fakesinks for headless testing

        Raises:
            PlaybackEngineError: If the pipeline cannot be created
        """
        self.config_manager = config_manager
        self.use_fakesinks = use_fakesinks
        self.logger = logging.getLogger(__name__)

        self.playbin: Any = None
        self.current_uri: Optional[str] = None
        self._listener: Optional[EngineEventListener] = None
        self._buffering = False
        self._bus_poll_running = False
        self._bus_poll_thread: Optional[threading.Thread] = None

        self.logger.info(
            "GstMediaEngine initializing with %s",
            "fakesinks" if use_fakesinks else "hardware sinks",
        )
        self._create_pipeline()

    # =========================================================================
    # Pipeline Creation
    # =========================================================================

    def _create_pipeline(self):
        Gst = _get_gst()
        if not Gst.is_initialized():
            Gst.init(["tunebox", "--gst-disable-registry-fork"])

        self.playbin = Gst.ElementFactory.make("playbin", "playbin")
        if self.playbin is None:
            raise PlaybackEngineError("Failed to create playbin element")

        self.playbin.set_property("audio-sink", self._create_audio_sink())
        video_sink = Gst.ElementFactory.make("fakesink", "video_sink")
        if video_sink is not None:
            self.playbin.set_property("video-sink", video_sink)

        self._start_bus_polling()

        ret = self.playbin.set_state(Gst.State.READY)
        if ret == Gst.StateChangeReturn.FAILURE:
            raise PlaybackEngineError("Failed to set pipeline to READY state")

        self.logger.info("Pipeline created successfully")

    def _create_audio_sink(self):
        Gst = _get_gst()
        if self.use_fakesinks:
            sink_name = "fakesink"
        else:
            default = "alsasink" if sys.platform == "linux" else "autoaudiosink"
            sink_name = self.config_manager.get("audio_sink") or default

        sink = Gst.ElementFactory.make(sink_name, "audio_sink")
        if sink is None:
            raise PlaybackEngineError(f"Audio sink {sink_name} not available")
        return sink

    def _set_state(self, state, action: str):
        Gst = _get_gst()
        ret = self.playbin.set_state(state)
        if ret == Gst.StateChangeReturn.FAILURE:
            raise PlaybackEngineError(f"Failed to {action}")
        return ret

    # =========================================================================
    # MediaEngine
    # =========================================================================

    def reset(self) -> None:
        if not self.playbin:
            return
        Gst = _get_gst()
        self.playbin.set_state(Gst.State.READY)
        self.current_uri = None
        self._buffering = False
        self.logger.debug("Pipeline reset to READY")

    def load(self, source_uri: str) -> None:
        if not source_uri:
            raise PlaybackEngineError("Cannot load an empty source")

        self.logger.info("Loading source: %s", source_uri)
        Gst = _get_gst()

        self.playbin.set_state(Gst.State.NULL)
        self.playbin.set_property("uri", source_uri)
        self._set_state(Gst.State.PAUSED, "preroll source")

        ret, _state, _pending = self.playbin.get_state(self.STATE_TIMEOUT_SECONDS * Gst.SECOND)
        if ret == Gst.StateChangeReturn.FAILURE:
            raise PlaybackEngineError(f"Pipeline failed to preroll {source_uri}")

        self.current_uri = source_uri

    def play(self) -> None:
        Gst = _get_gst()
        self._set_state(Gst.State.PLAYING, "start playback")
        self.logger.debug("Playback started")

    def pause(self) -> None:
        Gst = _get_gst()
        self._set_state(Gst.State.PAUSED, "pause playback")
        self.logger.debug("Playback paused")

    def seek_to(self, seconds: float) -> None:
        Gst = _get_gst()
        position_ns = int(max(0.0, seconds) * Gst.SECOND)
        success = self.playbin.seek_simple(
            Gst.Format.TIME, Gst.SeekFlags.FLUSH | Gst.SeekFlags.KEY_UNIT, position_ns
        )
        if not success:
            raise PlaybackEngineError(f"Seek to {seconds:.1f}s failed")
        self.logger.info("Seeked to position: %.1f seconds", seconds)

    def get_state(self) -> EngineState:
        if not self.playbin:
            return EngineState.STOPPED

        Gst = _get_gst()
        ret, state, pending = self.playbin.get_state(0)
        if ret == Gst.StateChangeReturn.ASYNC and pending != Gst.State.VOID_PENDING:
            return EngineState.LOADING
        if self._buffering:
            return EngineState.BUFFERING
        if state == Gst.State.PLAYING:
            return EngineState.PLAYING
        if state == Gst.State.PAUSED:
            return EngineState.PAUSED
        return EngineState.IDLE

    def get_position(self) -> Optional[float]:
        return self._query_seconds("query_position")

    def get_duration(self) -> Optional[float]:
        return self._query_seconds("query_duration")

    def _query_seconds(self, query: str) -> Optional[float]:
        if not self.playbin or not self.current_uri:
            return None
        try:
            Gst = _get_gst()
            success, value = getattr(self.playbin, query)(Gst.Format.TIME)
            if success and value >= 0:
                return value / Gst.SECOND
            return None
        except Exception as e:
            self.logger.warning("Could not %s: %s", query, e)
            return None

    def set_event_listener(self, listener: Optional[EngineEventListener]) -> None:
        self._listener = listener

    def shutdown(self) -> None:
        """Stop the engine and cleanup resources."""
        self.logger.info("Stopping media engine...")
        self._stop_bus_polling()

        if self.playbin:
            try:
                Gst = _get_gst()
                self.playbin.set_state(Gst.State.NULL)
                self.playbin = None
            except Exception as e:
                self.logger.error("Error stopping pipeline: %s", e, exc_info=True)

        self.logger.info("Media engine stopped")

    # =========================================================================
    # Bus Polling
    # =========================================================================

    def _emit(self, event: EngineEvent) -> None:
        if self._listener is None:
            return
        if event.source is None and self.current_uri:
            event = replace(event, source=self.current_uri)
        try:
            self._listener(event)
        except Exception as e:
            self.logger.error("Engine event listener failed: %s", e, exc_info=True)

    def _handle_message(self, msg) -> None:
        Gst = _get_gst()
        if msg.type == Gst.MessageType.EOS:
            self.logger.info("End of stream reached")
            self._emit(EngineEvent(EngineEventType.QUEUE_ENDED))
        elif msg.type == Gst.MessageType.ERROR:
            err, debug = msg.parse_error()
            self.logger.error("GStreamer error: %s", err)
            self.logger.debug("Debug info: %s", debug)
            self._emit(EngineEvent(EngineEventType.PLAYBACK_ERROR, message=str(err)))
        elif msg.type == Gst.MessageType.BUFFERING:
            percent = msg.parse_buffering()
            buffering = percent < 100
            if buffering != self._buffering:
                self._buffering = buffering
                self._emit(EngineEvent(EngineEventType.STATE_CHANGED, state=self.get_state()))
        elif msg.type == Gst.MessageType.STATE_CHANGED and msg.src == self.playbin:
            _old, new, _pending = msg.parse_state_changed()
            if new in (Gst.State.PLAYING, Gst.State.PAUSED):
                state = EngineState.PLAYING if new == Gst.State.PLAYING else EngineState.PAUSED
                self._emit(EngineEvent(EngineEventType.STATE_CHANGED, state=state))

    def _start_bus_polling(self):
        """Start a thread to poll the bus for messages."""
        self._bus_poll_running = True

        def poll_bus():
            Gst = _get_gst()
            bus = self.playbin.get_bus()
            while self._bus_poll_running and self.playbin:
                msg = bus.timed_pop(100 * Gst.MSECOND)  # 100ms timeout
                if msg:
                    self._handle_message(msg)

        self._bus_poll_thread = threading.Thread(target=poll_bus, daemon=True, name="GstBusPoll")
        self._bus_poll_thread.start()

    def _stop_bus_polling(self):
        """Stop the bus polling thread."""
        self._bus_poll_running = False
        if self._bus_poll_thread and self._bus_poll_thread.is_alive():
            self._bus_poll_thread.join(timeout=1)
