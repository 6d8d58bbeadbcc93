"""Qt side of the session: notifications as signals, stats on a thread pool."""

from __future__ import annotations

import logging
import threading

from PyQt6.QtCore import QObject, QRunnable, QThreadPool, pyqtSignal, pyqtSlot

from nebula.notifier import (
    EventBus,
    GuildMembersUpdated,
    Notification,
    PartyUpdated,
    PlayersUpdated,
)
from nebula.stats import HypixelStatsProvider, StatsResult
from nebula.text_utils import name_key

logger = logging.getLogger(__name__)


class _StatsSignals(QObject):
    """Signals for StatsWorker (QRunnable can't have signals)."""

    finished = pyqtSignal(str, object)  # (name, StatsResult)


class StatsWorker(QRunnable):
    """Fetches stats for one player off the UI thread."""

    def __init__(self, provider: HypixelStatsProvider, name: str) -> None:
        super().__init__()
        self._provider = provider
        self._name = name
        self.signals = _StatsSignals()

    def run(self) -> None:
        result = self._provider.get_stats(self._name)
        self.signals.finished.emit(self._name, result)


class SessionBridge(QObject):
    """Re-emits EventBus notifications as Qt signals.

    Notifications arrive on the watcher thread; Qt queues the signals to the
    receivers' threads. When a provider is given, stats are requested once
    for each name that shows up in the player list.
    """

    players_changed = pyqtSignal(list)
    party_changed = pyqtSignal(list)
    guild_changed = pyqtSignal(list)
    notification = pyqtSignal(object)  # any other Notification
    stats_ready = pyqtSignal(str, object)  # (name, StatsResult)

    def __init__(
        self,
        bus: EventBus,
        provider: HypixelStatsProvider | None = None,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self._provider = provider
        self._thread_pool = QThreadPool()
        self._known: dict[str, StatsResult] = {}
        self._in_flight: set[str] = set()
        # Requests come from the watcher thread, results land on the Qt thread
        self._lock = threading.Lock()
        self._unsubscribe = bus.subscribe(self._on_notification)

    def close(self) -> None:
        self._unsubscribe()
        self._thread_pool.waitForDone(5000)

    def known_stats(self, name: str) -> StatsResult | None:
        with self._lock:
            return self._known.get(name_key(name))

    def _on_notification(self, note: Notification) -> None:
        if isinstance(note, PlayersUpdated):
            self.players_changed.emit(list(note.names))
            self.request_stats(note.names)
        elif isinstance(note, PartyUpdated):
            self.party_changed.emit(list(note.names))
        elif isinstance(note, GuildMembersUpdated):
            self.guild_changed.emit(list(note.names))
        else:
            self.notification.emit(note)

    def missing_names(self, names: tuple[str, ...] | list[str]) -> list[str]:
        """Names with neither a result nor a request in flight."""
        with self._lock:
            return self._missing(names)

    def _missing(self, names: tuple[str, ...] | list[str]) -> list[str]:
        missing: list[str] = []
        seen: set[str] = set()
        for name in names:
            key = name_key(name)
            if key in seen or key in self._known or key in self._in_flight:
                continue
            seen.add(key)
            missing.append(name)
        return missing

    def request_stats(self, names: tuple[str, ...] | list[str]) -> int:
        """Start stats workers for names not already displayed or pending."""
        if self._provider is None:
            return 0
        with self._lock:
            missing = self._missing(names)
            self._in_flight.update(name_key(name) for name in missing)
        for name in missing:
            self._start_worker(name)
        return len(missing)

    def _start_worker(self, name: str) -> None:
        worker = StatsWorker(self._provider, name)
        worker.signals.finished.connect(self._on_stats_finished)
        self._thread_pool.start(worker)

    @pyqtSlot(str, object)
    def _on_stats_finished(self, name: str, result: StatsResult) -> None:
        key = name_key(name)
        with self._lock:
            self._in_flight.discard(key)
            if result.success:
                self._known[key] = result
        if not result.success:
            logger.warning("Stats error for %s: %s", name, result.error)
        self.stats_ready.emit(name, result)
