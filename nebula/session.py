"""Log-watching session: log source -> classifier -> roster -> notifications."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from nebula.config import AppConfig, FeatureGates
from nebula.events import (
    ChatMessage,
    ClearOrigin,
    Event,
    FinalKill,
    GameStart,
    GuildLiveLeave,
    Origin,
    PartyInviteReceived,
    PartyMemberJoined,
    PartyRosterReceived,
    Unclassified,
    UsernameMention,
    WhoListReceived,
)
from nebula.logsource import LogSource, auto_detect_latest, build_client_paths, resolve_log_source
from nebula.notifier import (
    EventBus,
    LogPathChanged,
    Notification,
    SourceError,
    build_notifications,
)
from nebula.parser import classify
from nebula.roster import RosterDelta, RosterState
from nebula.scheduler import Clock, Scheduler
from nebula.watcher import POLL_INTERVAL, ChatLogWatcher

logger = logging.getLogger(__name__)

WatcherFactory = Callable[..., ChatLogWatcher]


@dataclass
class SessionConfig:
    """Session configuration."""

    username: str = ""
    client: str = ""
    log_path: Path | None = None
    gates: FeatureGates = field(default_factory=FeatureGates)
    poll_interval: float = POLL_INTERVAL

    @classmethod
    def from_app_config(cls, config: AppConfig) -> SessionConfig:
        return cls(
            username=config.username.strip(),
            client=config.client,
            log_path=Path(config.log_path) if config.log_path else None,
            gates=config.gates(),
            poll_interval=config.poll_interval,
        )


class LogSession:
    """Owns one RosterState and the watcher feeding it.

    Lines, timers and tracking requests all go through _dispatch under one
    lock, so the roster is only ever mutated by one caller at a time.

    Usage:
        session = LogSession(SessionConfig(username="Steve"))
        session.bus.subscribe(print)
        session.start()
        # ... later ...
        session.stop()
    """

    def __init__(
        self,
        config: SessionConfig,
        bus: EventBus | None = None,
        clock: Clock = time.monotonic,
        client_paths: Callable[[], Mapping[str, Path]] = build_client_paths,
        watcher_factory: WatcherFactory = ChatLogWatcher,
    ) -> None:
        self._config = config
        self.bus = bus or EventBus()
        self.roster = RosterState(Scheduler(clock))
        self._client_paths_factory = client_paths
        self._client_paths = dict(client_paths())
        self._watcher_factory = watcher_factory
        self._watcher: ChatLogWatcher | None = None
        self._source: LogSource | None = None
        self._lock = threading.RLock()
        self.chosen_client: str | None = config.client or None
        self.detected_client: str | None = None

    # --- Properties ---

    @property
    def source(self) -> LogSource | None:
        return self._source

    @property
    def username(self) -> str:
        return self._config.username

    def update_config(self, config: SessionConfig) -> None:
        """Hot-update username and gates. Log source changes go through switch_source."""
        with self._lock:
            if config.username != self._config.username:
                logger.info("Username changed: %r -> %r", self._config.username, config.username)
            self._config = config

    # --- Lifecycle ---

    def start(self) -> bool:
        """Resolve the log file and start following it.

        Returns False (and publishes SourceError) if no log file was found.
        """
        source = resolve_log_source(
            self._config.log_path, self.chosen_client, self._client_paths,
        )
        if source is None:
            self._publish(SourceError("No Minecraft log file found"))
            return False
        if source.detected:
            self.detected_client = source.client
        self._follow(source)
        logger.info("Session started on %s (%s)", source.path, source.client or "manual")
        return True

    def stop(self) -> None:
        """Stop following and cancel every pending timer."""
        self._stop_watcher()
        with self._lock:
            self.roster.scheduler.cancel_all()
        logger.info("Session stopped")

    def switch_source(self, path: str | Path, client: str | None = None) -> bool:
        """Follow a different log file with a fresh roster.

        Returns False if path is already the active source.
        """
        path = Path(path)
        if self._source is not None and path == self._source.path:
            return False
        self._stop_watcher()
        with self._lock:
            self.roster.reset()
        client = client or self.chosen_client or self.detected_client
        self._follow(LogSource(path, client=client))
        logger.info("Switched log source to %s", path)
        self._publish(LogPathChanged(path, client))
        return True

    def set_client(self, client: str) -> bool:
        """Follow the log of an explicitly chosen client. Unknown keys are ignored."""
        self._refresh_client_paths()
        if not client or client not in self._client_paths:
            logger.warning("Unknown or unavailable client %r", client)
            return False
        self.chosen_client = client
        self.switch_source(self._client_paths[client], client)
        return True

    def auto_detect(self) -> tuple[str, Path] | None:
        """Re-run newest-log detection; switches only if no client was chosen."""
        self._refresh_client_paths()
        detected = auto_detect_latest(self._client_paths)
        if detected is None:
            if self._source is None:
                self._publish(SourceError("No Minecraft log file found"))
            return None
        self.detected_client = detected[0]
        if not self.chosen_client:
            self.switch_source(detected[1], detected[0])
        return detected

    # --- Input ---

    def feed_line(self, line: str) -> Event:
        """Classify one raw log line and apply it."""
        with self._lock:
            event = classify(line, self.roster.context(self._config.username))
            self._dispatch(event)
            return event

    def submit(self, event: Event) -> RosterDelta:
        """Apply an event that did not come from the log (manual tracking etc.)."""
        with self._lock:
            return self._dispatch(event)

    def tick(self) -> int:
        """Fire due timers. Returns how many fired."""
        with self._lock:
            due = self.roster.scheduler.pop_due()
            for event in due:
                logger.debug("Timer fired: %r", event)
                self._dispatch(event)
            return len(due)

    # --- Internals ---

    def _allowed(self, event: Event) -> bool:
        gates = self._config.gates
        if isinstance(event, WhoListReceived):
            return gates.add_from_who
        if isinstance(event, FinalKill):
            return gates.remove_on_final_kill
        if isinstance(event, GuildLiveLeave):
            return gates.guild_online_only
        if isinstance(event, (PartyRosterReceived, PartyMemberJoined)):
            return gates.track_party
        if isinstance(event, PartyInviteReceived):
            return gates.track_invites
        return True

    def _dispatch(self, event: Event) -> RosterDelta:
        if isinstance(event, Unclassified):
            return RosterDelta()

        allowed = self._allowed(event)
        if not allowed:
            logger.debug("Gated off: %r", event)
        delta = self.roster.apply(event, membership=allowed)

        for note in build_notifications(event, delta, self.roster):
            self._publish(note)

        if isinstance(event, ChatMessage) and event.mentions_self:
            self._dispatch(UsernameMention(event.name))
        elif isinstance(event, GameStart) and self._config.gates.clear_manual_on_game_start:
            self._dispatch(ClearOrigin(Origin.MANUAL))
        return delta

    def _publish(self, notification: Notification) -> None:
        self.bus.publish(notification)

    def _follow(self, source: LogSource) -> None:
        self._stop_watcher()
        self._source = source
        self._watcher = self._watcher_factory(
            source.path,
            self.feed_line,
            on_error=self._on_watch_error,
            on_idle=self.tick,
            poll_interval=self._config.poll_interval,
        )
        self._watcher.start()

    def _stop_watcher(self) -> None:
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None

    def _refresh_client_paths(self) -> None:
        self._client_paths = dict(self._client_paths_factory())

    def _on_watch_error(self, exc: Exception) -> None:
        self._publish(SourceError(f"Cannot read {self._source.path if self._source else 'log'}: {exc}"))
