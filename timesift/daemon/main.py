"""Composition root for a timesift search session."""

import asyncio
import signal
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from loguru import logger

from .bus import Event, EventBus
from .config import Config
from .search import SearchService
from .store import InMemoryRecordStore, RecordStore

CLEANUP_INTERVAL_SECONDS = 60


def configure_logging(config: Config) -> None:
    """Install the stderr sink and, when configured, a rotating file sink."""
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
        level=config.logging.level
    )

    if config.logging.file:
        log_file = Path(config.logging.file).expanduser()
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            rotation=config.logging.rotation,
            retention=config.logging.retention,
            level="DEBUG"
        )


class SearchEngine:
    """Wires the record store, event bus and search service together."""

    def __init__(self, config: Config, store: Optional[RecordStore] = None):
        self.config = config
        self.start_time = datetime.now()
        self.event_bus = EventBus()

        if store is None:
            store = self._open_store(config)
        self.store = store
        self.search = SearchService(store, config=config, event_bus=self.event_bus)

        self.stats = {
            "search_count": 0,
            "failed_search_count": 0,
            "index_updates": 0,
        }

    @staticmethod
    def _open_store(config: Config) -> InMemoryRecordStore:
        if config.data_path is None:
            return InMemoryRecordStore()
        return InMemoryRecordStore.from_json(config.data_path)

    async def start(self) -> None:
        """Start the event bus, subscribe to the change feed and build the index."""
        logger.info("Starting timesift search engine...")

        if isinstance(self.store, InMemoryRecordStore) and self.store.event_bus is None:
            self.store.event_bus = self.event_bus

        await self.event_bus.start()
        self.event_bus.subscribe("record.*", self.search.on_record_event)
        self.event_bus.subscribe("search.*", self._on_search)
        self.event_bus.subscribe("index.updated", self._on_index_update)

        await self.search.rebuild_index()
        logger.info("timesift search engine started")

    async def stop(self) -> None:
        logger.info("Stopping timesift search engine...")
        self.search.clear_search()
        await self.event_bus.stop()
        logger.info("timesift search engine stopped")

    async def _on_search(self, event: Event) -> None:
        if event.type == "search.failed":
            self.stats["failed_search_count"] += 1
        else:
            self.stats["search_count"] += 1

    async def _on_index_update(self, event: Event) -> None:
        self.stats["index_updates"] += 1

    def get_status(self) -> dict:
        uptime = (datetime.now() - self.start_time).total_seconds()
        return {
            "status": "running" if self.event_bus.running else "stopped",
            "uptime": f"{uptime:.0f}s",
            "stats": dict(self.stats),
            "search": self.search.get_status(),
            "event_bus": self.event_bus.get_stats(),
        }


async def main(config_path: Optional[str] = None):
    """Run a search engine session until interrupted."""
    try:
        config = Config.load(Path(config_path)) if config_path else Config.load_or_default()
    except FileNotFoundError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    configure_logging(config)
    engine = SearchEngine(config)
    stopped = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stopped.set)

    try:
        await engine.start()
        while not stopped.is_set():
            try:
                await asyncio.wait_for(stopped.wait(), timeout=CLEANUP_INTERVAL_SECONDS)
            except asyncio.TimeoutError:
                engine.search.perform_memory_cleanup()
    except Exception as e:
        logger.exception(f"Search engine error: {e}")
    finally:
        await engine.stop()


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else None))
