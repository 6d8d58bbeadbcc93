"""Notifications published to UI observers, and the bus that delivers them."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from nebula.events import (
    ChatMessage,
    Event,
    FinalKill,
    GameStart,
    GuildListEnd,
    GuildListLine,
    GuildListStart,
    GuildLiveJoin,
    GuildLiveLeave,
    LobbyJoined,
    PartyDisbanded,
    PartyInviteExpired,
    PartyInviteReceived,
    PartyMemberKicked,
    PartyMemberLeft,
    ServerChange,
    UsernameMention,
)
from nebula.roster import RosterDelta, RosterState

logger = logging.getLogger(__name__)


class Notification:
    """Base class for everything published on the EventBus."""

    __slots__ = ()


# Full-list updates

@dataclass(frozen=True, slots=True)
class PlayersUpdated(Notification):
    names: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class PartyUpdated(Notification):
    names: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class GuildMembersUpdated(Notification):
    names: tuple[str, ...]


# Single-name events

@dataclass(frozen=True, slots=True)
class InviteReceived(Notification):
    name: str
    leader: str | None = None


@dataclass(frozen=True, slots=True)
class InviteExpired(Notification):
    name: str


@dataclass(frozen=True, slots=True)
class PlayerFinalKilled(Notification):
    name: str


@dataclass(frozen=True, slots=True)
class PartyMemberRemoved(Notification):
    name: str
    kicked: bool = False


@dataclass(frozen=True, slots=True)
class PartyCleared(Notification):
    pass


@dataclass(frozen=True, slots=True)
class GuildMemberLeft(Notification):
    name: str


@dataclass(frozen=True, slots=True)
class GuildMemberJoined(Notification):
    name: str


@dataclass(frozen=True, slots=True)
class Mentioned(Notification):
    name: str


@dataclass(frozen=True, slots=True)
class ChatReceived(Notification):
    name: str
    text: str


# Lifecycle

@dataclass(frozen=True, slots=True)
class LobbyEntered(Notification):
    pass


@dataclass(frozen=True, slots=True)
class ServerChanged(Notification):
    pass


@dataclass(frozen=True, slots=True)
class GameStarted(Notification):
    pass


@dataclass(frozen=True, slots=True)
class LogPathChanged(Notification):
    path: Path
    client: str | None = None


@dataclass(frozen=True, slots=True)
class SourceError(Notification):
    message: str


Observer = Callable[[Notification], None]


class EventBus:
    """Fan-out of notifications to subscribed callbacks.

    A failing observer is logged and skipped; it never breaks the line
    pipeline or the other observers.
    """

    def __init__(self) -> None:
        self._observers: list[Observer] = []
        self._lock = threading.Lock()

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register observer. Returns a function that unsubscribes it."""
        with self._lock:
            self._observers.append(observer)

        def unsubscribe() -> None:
            with self._lock:
                if observer in self._observers:
                    self._observers.remove(observer)

        return unsubscribe

    def publish(self, notification: Notification) -> None:
        with self._lock:
            observers = list(self._observers)
        for observer in observers:
            try:
                observer(notification)
            except Exception:
                logger.exception("Observer %r failed on %r", observer, notification)


def _event_notifications(event: Event) -> list[Notification]:
    """Notifications that follow from the event itself, whatever changed."""
    if isinstance(event, PartyInviteReceived):
        return [InviteReceived(event.inviter, event.leader)]
    if isinstance(event, PartyInviteExpired):
        return [InviteExpired(event.name)]
    if isinstance(event, FinalKill):
        return [PlayerFinalKilled(event.name)]
    if isinstance(event, PartyMemberLeft):
        return [PartyMemberRemoved(event.name)]
    if isinstance(event, PartyMemberKicked):
        return [PartyMemberRemoved(event.name, kicked=True)]
    if isinstance(event, PartyDisbanded):
        return [PartyCleared()]
    if isinstance(event, GuildLiveLeave):
        return [GuildMemberLeft(event.name)]
    if isinstance(event, GuildLiveJoin):
        return [GuildMemberJoined(event.name)]
    if isinstance(event, UsernameMention):
        return [Mentioned(event.name)]
    if isinstance(event, ChatMessage):
        return [ChatReceived(event.name, event.text)]
    if isinstance(event, (GuildListStart, GuildListLine, GuildListEnd)) and event.text:
        # Guild listing lines are still shown as plain chat
        return [ChatReceived("", event.text)]
    if isinstance(event, LobbyJoined):
        return [LobbyEntered()]
    if isinstance(event, ServerChange):
        return [ServerChanged()]
    if isinstance(event, GameStart):
        return [GameStarted()]
    return []


def build_notifications(
    event: Event, delta: RosterDelta, roster: RosterState,
) -> list[Notification]:
    """Turn an applied event and its delta into the notifications to publish."""
    notes = _event_notifications(event)
    if delta.party_changed and not isinstance(event, PartyDisbanded):
        notes.append(PartyUpdated(tuple(roster.party_members)))
    capture_finished = (
        "in_guild_capture" in delta.flags_changed and not roster.in_guild_capture
    )
    # Mid-capture membership is partial; publish once the listing ends
    if (delta.guild_changed and not roster.in_guild_capture) or capture_finished:
        notes.append(GuildMembersUpdated(tuple(roster.guild_members)))
    if delta.players_changed:
        notes.append(PlayersUpdated(tuple(roster.active_players)))
    return notes
