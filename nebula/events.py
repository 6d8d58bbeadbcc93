"""Semantic events produced by the line classifier.

Every event is a frozen dataclass deriving from Event, so consumers can
dispatch on type instead of on event-name strings.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Event:
    """Base class for all classifier and roster events."""

    __slots__ = ()


class PartyRole(Enum):
    LEADER = "leader"
    MODERATOR = "moderator"
    MEMBER = "member"


class Origin(Enum):
    """Why a name is present in the active player list."""

    WHO = "who"
    PARTY = "party"
    GUILD = "guild"
    INVITE = "invite"
    CHAT = "chat"
    MANUAL = "manual"


# --- Lobby / game lifecycle ---

@dataclass(frozen=True, slots=True)
class ServerChange(Event):
    pass


@dataclass(frozen=True, slots=True)
class LobbyJoined(Event):
    pass


@dataclass(frozen=True, slots=True)
class WhoListReceived(Event):
    names: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class PlayerDisconnected(Event):
    name: str


@dataclass(frozen=True, slots=True)
class FinalKill(Event):
    name: str


@dataclass(frozen=True, slots=True)
class GameStarting(Event):
    pass


@dataclass(frozen=True, slots=True)
class GameStart(Event):
    pass


# --- Party ---

@dataclass(frozen=True, slots=True)
class PartyRosterReceived(Event):
    names: tuple[str, ...]
    role: PartyRole = PartyRole.MEMBER
    replace: bool = False


@dataclass(frozen=True, slots=True)
class PartyInviteReceived(Event):
    inviter: str
    leader: str | None = None
    expects_continuation: bool = False


@dataclass(frozen=True, slots=True)
class InviteContinuation(Event):
    """Decorative follow-up line of a multi-line invite ("You have 60 seconds...")."""


@dataclass(frozen=True, slots=True)
class PartyInviteExpired(Event):
    name: str


@dataclass(frozen=True, slots=True)
class PartyMemberJoined(Event):
    name: str


@dataclass(frozen=True, slots=True)
class PartyMemberLeft(Event):
    name: str


@dataclass(frozen=True, slots=True)
class PartyMemberKicked(Event):
    name: str


@dataclass(frozen=True, slots=True)
class PartyDisbanded(Event):
    pass


# --- Guild ---

@dataclass(frozen=True, slots=True)
class GuildListStart(Event):
    text: str = ""


@dataclass(frozen=True, slots=True)
class GuildListLine(Event):
    text: str
    names: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class GuildListEnd(Event):
    text: str = ""


@dataclass(frozen=True, slots=True)
class GuildLiveLeave(Event):
    name: str


@dataclass(frozen=True, slots=True)
class GuildLiveJoin(Event):
    name: str


# --- Chat ---

@dataclass(frozen=True, slots=True)
class ChatMessage(Event):
    name: str
    text: str
    mentions_self: bool = False


@dataclass(frozen=True, slots=True)
class UsernameMention(Event):
    name: str


@dataclass(frozen=True, slots=True)
class Unclassified(Event):
    pass


# --- Tracking requests from outside the log (manual entry, chat triggers) ---

@dataclass(frozen=True, slots=True)
class TrackPlayer(Event):
    name: str
    origin: Origin


@dataclass(frozen=True, slots=True)
class UntrackPlayer(Event):
    name: str
    origin: Origin


@dataclass(frozen=True, slots=True)
class ClearOrigin(Event):
    origin: Origin
