"""
Main entry point for tunebox.

Initializes all components and starts the server.
"""

import argparse
import logging
import os
from typing import Optional

import uvicorn

from .cache import CacheCoordinator
from .config_manager import ConfigManager
from .database import Database, KeyValueStore
from .engine import MediaEngine
from .playback import PlaybackController
from .queue import QueueStore
from .shuffle import ShuffleEngine
from .storage import FileStorage
from .stream_resolver import HttpStreamResolver
from .web.server import create_app

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


class TuneboxServer:
    """Main server class that orchestrates all components."""

    def __init__(self, db_path: Optional[str] = None, engine: Optional[MediaEngine] = None):
        """
        Initialize all components.

        Args:
            db_path: SQLite database path (defaults to ~/.tunebox/tunebox.db)
            engine: Media engine to use (defaults to GstMediaEngine)
        """
        logger.info("Initializing tunebox server...")

        self.database = Database(db_path)
        self.config_manager = ConfigManager(self.database)

        self.resolver = HttpStreamResolver(self.config_manager)
        self.cache_coordinator = CacheCoordinator(
            self.config_manager,
            KeyValueStore(self.database),
            FileStorage(self.config_manager.get_cache_directory()),
            self.resolver,
        )

        if engine is None:
            # Deferred so GStreamer is only imported when actually used
            from .streaming import GstMediaEngine

            engine = GstMediaEngine(self.config_manager)
        self.engine = engine

        self.queue_store = QueueStore()
        self.shuffle_engine = ShuffleEngine(self.queue_store)
        self.playback_controller = PlaybackController(
            self.queue_store,
            self.shuffle_engine,
            self.cache_coordinator,
            self.engine,
            self.config_manager,
        )

        self.web_app = create_app(
            self.playback_controller,
            self.cache_coordinator,
            self.config_manager,
        )

        self.uvicorn_server = None
        logger.info("tunebox server initialized")

    def run(self, host: str = "0.0.0.0", port: int = 8000):
        """Start background workers and serve the API (blocking)."""
        logger.info("Starting tunebox server...")

        self.cache_coordinator.start()
        self.playback_controller.start()

        logger.info("=" * 60)
        logger.info("tunebox is running!")
        logger.info("API: http://%s:%s/api", host, port)
        logger.info("Cache: %s", self.config_manager.get_cache_directory())
        logger.info("=" * 60)

        config = uvicorn.Config(self.web_app, host=host, port=port, log_level="info")
        self.uvicorn_server = uvicorn.Server(config)
        self.uvicorn_server.run()

    def stop(self):
        """Stop all components."""
        logger.info("Stopping tunebox server...")

        if self.uvicorn_server:
            self.uvicorn_server.should_exit = True

        if self.playback_controller:
            self.playback_controller.shutdown()

        if self.engine:
            self.engine.shutdown()

        if self.cache_coordinator:
            self.cache_coordinator.shutdown()

        if self.database:
            self.database.close()

        logger.info("tunebox server stopped")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="tunebox - playback queue and offline cache server")
    parser.add_argument("--host", default="0.0.0.0", help="Interface to bind (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8000, help="Port to listen on (default: 8000)")
    parser.add_argument(
        "--db-path",
        default=os.environ.get("TUNEBOX_DB_PATH"),
        help="SQLite database path (default: $TUNEBOX_DB_PATH or ~/.tunebox/tunebox.db)",
    )
    args = parser.parse_args()

    server = TuneboxServer(db_path=args.db_path)
    try:
        server.run(host=args.host, port=args.port)
    except KeyboardInterrupt:
        pass
    finally:
        server.stop()


if __name__ == "__main__":
    main()
