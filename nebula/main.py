"""Nebula overlay backend: entry point."""

from __future__ import annotations

import logging
import os
import signal
import sys

from dotenv import load_dotenv
from PyQt6.QtCore import QCoreApplication, QThread, QTimer

from nebula.bridge import SessionBridge
from nebula.cache import StatsCache
from nebula.config import AppConfig
from nebula.notifier import EventBus, Notification, SourceError
from nebula.session import LogSession, SessionConfig
from nebula.stats import HypixelStatsProvider, StatsResult

_LOG_FMT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
logging.basicConfig(
    level=logging.INFO,
    format=_LOG_FMT,
    handlers=[
        logging.FileHandler("nebula_overlay.log", encoding="utf-8", mode="w"),
    ],
)
logger = logging.getLogger(__name__)


class SessionThread(QThread):
    """Runs a LogSession's lifecycle off the main thread."""

    def __init__(self, session: LogSession) -> None:
        super().__init__()
        self._session = session

    def run(self) -> None:
        if not self._session.start():
            logger.warning("No log file found; waiting for a client switch or re-detection")
        self.exec()  # Event loop to keep thread alive

    def stop(self) -> None:
        self._session.stop()
        self.quit()
        self.wait(5000)


def _setup_console() -> None:
    """Mirror logging to stderr and switch everything to DEBUG."""
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(logging.Formatter(_LOG_FMT))
    root = logging.getLogger()
    root.addHandler(console_handler)
    root.setLevel(logging.DEBUG)
    for h in root.handlers:
        h.setLevel(logging.DEBUG)


def _log_stats(name: str, result: StatsResult) -> None:
    if result.success:
        logger.info("Stats for %s ready (source=%s, nicked=%s)", name, result.source, result.nicked)


def _log_notification(note: Notification) -> None:
    if isinstance(note, SourceError):
        logger.error("Log source error: %s", note.message)
    else:
        logger.info("%r", note)


def main() -> int:
    load_dotenv()

    app = QCoreApplication(sys.argv)
    config = AppConfig.load()
    if config.debug_console:
        _setup_console()

    cache = StatsCache(db_path=config.cache_db_path)
    provider = HypixelStatsProvider(
        env_key=os.environ.get("HYPIXEL_KEY", ""),
        user_key=config.hypixel_api_key,
        backend_url=config.backend_url,
        cache=cache,
    )

    bus = EventBus()
    session = LogSession(SessionConfig.from_app_config(config), bus=bus)
    bridge = SessionBridge(bus, provider)
    bridge.players_changed.connect(lambda names: logger.info("Players: %s", ", ".join(names)))
    bridge.party_changed.connect(lambda names: logger.info("Party: %s", ", ".join(names)))
    bridge.guild_changed.connect(lambda names: logger.info("Guild: %d members", len(names)))
    bridge.notification.connect(_log_notification)
    bridge.stats_ready.connect(_log_stats)

    session_thread = SessionThread(session)
    session_thread.start()

    # Graceful shutdown
    def shutdown() -> None:
        logger.info("Shutting down...")
        session_thread.stop()
        bridge.close()
        cache.close()
        app.quit()

    signal.signal(signal.SIGINT, lambda *_: shutdown())
    # Let the Python interpreter run periodically so SIGINT gets handled
    heartbeat = QTimer()
    heartbeat.timeout.connect(lambda: None)
    heartbeat.start(500)

    logger.info("Nebula overlay started")
    return app.exec()


if __name__ == "__main__":
    sys.exit(main())
