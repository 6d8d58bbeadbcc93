"""Roster state: active players, party and guild membership.

The only way to change a RosterState is RosterState.apply(event). Each call
returns a RosterDelta describing what changed so the session can notify
observers. apply() never raises; unknown events are no-ops.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator, MutableSet
from dataclasses import dataclass, field

from nebula.events import (
    ChatMessage,
    ClearOrigin,
    Event,
    FinalKill,
    GameStart,
    GameStarting,
    GuildListEnd,
    GuildListLine,
    GuildListStart,
    GuildLiveLeave,
    InviteContinuation,
    LobbyJoined,
    Origin,
    PartyDisbanded,
    PartyInviteExpired,
    PartyInviteReceived,
    PartyMemberJoined,
    PartyMemberKicked,
    PartyMemberLeft,
    PartyRosterReceived,
    PlayerDisconnected,
    ServerChange,
    TrackPlayer,
    UntrackPlayer,
    WhoListReceived,
)
from nebula.parser import ClassifierContext
from nebula.scheduler import Scheduler
from nebula.text_utils import name_key, strip_rank

logger = logging.getLogger(__name__)

INVITE_EXPIRY = 60.0  # seconds
GUILD_CAPTURE_TIMEOUT = 15.0  # seconds
GAME_START_DELAY = 1.1  # seconds

_GUILD_DEADLINE_KEY = "guild-capture"
_GAME_START_KEY = "game-start"


def _invite_key(name: str) -> tuple[str, str]:
    return ("invite", name_key(name))


class NameSet(MutableSet[str]):
    """Insertion-ordered set of player names with case-insensitive membership.

    The first-seen display casing is kept for presentation.
    """

    def __init__(self, names: Iterable[str] = ()) -> None:
        self._names: dict[str, str] = {}
        for name in names:
            self.add(name)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name_key(name) in self._names

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._names.values()))

    def __len__(self) -> int:
        return len(self._names)

    def add(self, name: str) -> None:
        name = strip_rank(name)
        if name:
            self._names.setdefault(name_key(name), name)

    def discard(self, name: str) -> None:
        self._names.pop(name_key(name), None)

    def clear(self) -> None:
        self._names.clear()

    def __repr__(self) -> str:
        return f"NameSet({list(self._names.values())!r})"


@dataclass
class PlayerEntry:
    """An active player and the reasons it is being tracked."""

    name: str
    origins: set[Origin] = field(default_factory=set)


@dataclass(frozen=True, slots=True)
class RosterDelta:
    """What a single apply() changed."""

    players_added: tuple[str, ...] = ()
    players_removed: tuple[str, ...] = ()
    party_added: tuple[str, ...] = ()
    party_removed: tuple[str, ...] = ()
    guild_added: tuple[str, ...] = ()
    guild_removed: tuple[str, ...] = ()
    origins_changed: bool = False
    flags_changed: frozenset[str] = frozenset()

    @property
    def players_changed(self) -> bool:
        return bool(self.players_added or self.players_removed or self.origins_changed)

    @property
    def party_changed(self) -> bool:
        return bool(self.party_added or self.party_removed)

    @property
    def guild_changed(self) -> bool:
        return bool(self.guild_added or self.guild_removed)

    @property
    def empty(self) -> bool:
        return not (
            self.players_changed or self.party_changed
            or self.guild_changed or self.flags_changed
        )


def _diff(before: list[str], after: list[str]) -> tuple[tuple[str, ...], tuple[str, ...]]:
    before_keys = {name_key(n) for n in before}
    after_keys = {name_key(n) for n in after}
    added = tuple(n for n in after if name_key(n) not in before_keys)
    removed = tuple(n for n in before if name_key(n) not in after_keys)
    return added, removed


_FLAGS = ("in_lobby", "in_guild_capture", "awaiting_invite_continuation")


class RosterState:
    """Membership model driven by classified log events."""

    def __init__(self, scheduler: Scheduler | None = None) -> None:
        self.scheduler = scheduler if scheduler is not None else Scheduler()
        self._active: dict[str, PlayerEntry] = {}
        self.party_members = NameSet()
        self.guild_members = NameSet()
        self.in_lobby = False
        self.in_guild_capture = False
        self.awaiting_invite_continuation = False

        self._handlers: dict[type[Event], Callable[[Event], None]] = {
            ServerChange: self._on_server_change,
            LobbyJoined: self._on_lobby_joined,
            WhoListReceived: self._on_who_list,
            PlayerDisconnected: self._on_player_gone,
            FinalKill: self._on_player_gone,
            GameStarting: self._on_game_starting,
            GameStart: self._on_game_start,
            PartyRosterReceived: self._on_party_roster,
            PartyInviteReceived: self._on_invite,
            InviteContinuation: self._on_invite_continuation,
            PartyInviteExpired: self._on_invite_expired,
            PartyMemberJoined: self._on_member_joined,
            PartyMemberLeft: self._on_member_removed,
            PartyMemberKicked: self._on_member_removed,
            PartyDisbanded: self._on_party_disbanded,
            GuildListStart: self._on_guild_start,
            GuildListLine: self._on_guild_line,
            GuildListEnd: self._on_guild_end,
            GuildLiveLeave: self._on_guild_leave,
            ChatMessage: self._on_chat,
            TrackPlayer: self._on_track,
            UntrackPlayer: self._on_untrack,
            ClearOrigin: self._on_clear_origin,
        }
        # Flag transitions that still happen when membership changes are gated off
        self._flag_handlers: dict[type[Event], Callable[[Event], None]] = {
            WhoListReceived: self._leave_lobby,
            PartyInviteReceived: self._await_continuation,
        }

    # --- Read-only views ---

    @property
    def active_players(self) -> list[str]:
        return [entry.name for entry in self._active.values()]

    @property
    def guild_source_marker(self) -> list[str]:
        """Active players whose membership came from a guild listing."""
        return [e.name for e in self._active.values() if Origin.GUILD in e.origins]

    def origins_of(self, name: str) -> set[Origin]:
        entry = self._active.get(name_key(name))
        return set(entry.origins) if entry else set()

    def is_active(self, name: str) -> bool:
        return name_key(name) in self._active

    def context(self, username: str = "") -> ClassifierContext:
        return ClassifierContext(
            in_lobby=self.in_lobby,
            in_guild_capture=self.in_guild_capture,
            awaiting_invite_continuation=self.awaiting_invite_continuation,
            username=username,
        )

    # --- Mutation entry points ---

    def apply(self, event: Event, membership: bool = True) -> RosterDelta:
        """Apply one event and report what changed.

        With membership=False only the event's flag transitions are applied
        (lobby and invite-continuation state); the sets are left alone.
        """
        handlers = self._handlers if membership else self._flag_handlers
        handler = handlers.get(type(event))
        if handler is None:
            return RosterDelta()

        players = self.active_players
        origins = {k: frozenset(e.origins) for k, e in self._active.items()}
        party = list(self.party_members)
        guild = list(self.guild_members)
        flags = {f: getattr(self, f) for f in _FLAGS}

        handler(event)

        players_added, players_removed = _diff(players, self.active_players)
        party_added, party_removed = _diff(party, list(self.party_members))
        guild_added, guild_removed = _diff(guild, list(self.guild_members))
        origins_changed = any(
            k in origins and origins[k] != frozenset(e.origins)
            for k, e in self._active.items()
        )
        return RosterDelta(
            players_added=players_added,
            players_removed=players_removed,
            party_added=party_added,
            party_removed=party_removed,
            guild_added=guild_added,
            guild_removed=guild_removed,
            origins_changed=origins_changed,
            flags_changed=frozenset(f for f in _FLAGS if getattr(self, f) != flags[f]),
        )

    def reset(self) -> None:
        """Reset for a new log source.

        Clears active players, party and lobby state and cancels all timers.
        Guild membership is left as is.
        """
        self.scheduler.cancel_all()
        self._active.clear()
        self.party_members.clear()
        self.in_lobby = False
        self.in_guild_capture = False
        self.awaiting_invite_continuation = False

    # --- Origin bookkeeping ---

    def _track(self, name: str, origin: Origin) -> None:
        name = strip_rank(name)
        if not name:
            return
        entry = self._active.setdefault(name_key(name), PlayerEntry(name))
        entry.origins.add(origin)

    def _untrack(self, name: str, origin: Origin) -> None:
        key = name_key(name)
        entry = self._active.get(key)
        if entry is None:
            return
        entry.origins.discard(origin)
        if not entry.origins:
            del self._active[key]

    def _clear_origin(self, origin: Origin) -> None:
        for entry in list(self._active.values()):
            self._untrack(entry.name, origin)

    def _finish_guild_capture(self) -> None:
        self.in_guild_capture = False
        self.scheduler.cancel(_GUILD_DEADLINE_KEY)
        self._clear_origin(Origin.GUILD)
        for name in self.guild_members:
            self._track(name, Origin.GUILD)
        logger.info("Guild list finished with %d members", len(self.guild_members))

    # --- Handlers ---

    def _on_server_change(self, event: ServerChange) -> None:
        self._active.clear()
        self.in_lobby = False

    def _on_lobby_joined(self, event: LobbyJoined) -> None:
        self.in_lobby = True

    def _on_who_list(self, event: WhoListReceived) -> None:
        if self.in_lobby:
            for key, entry in list(self._active.items()):
                if Origin.GUILD not in entry.origins:
                    del self._active[key]
        else:
            self._active.clear()
        for name in event.names:
            self._track(name, Origin.WHO)
        self._leave_lobby(event)

    def _on_player_gone(self, event: PlayerDisconnected | FinalKill) -> None:
        self._active.pop(name_key(event.name), None)

    def _on_game_starting(self, event: GameStarting) -> None:
        self.scheduler.schedule(_GAME_START_KEY, GAME_START_DELAY, GameStart())

    def _on_game_start(self, event: GameStart) -> None:
        self.in_lobby = False
        self._clear_origin(Origin.GUILD)

    def _on_party_roster(self, event: PartyRosterReceived) -> None:
        if event.replace:
            for name in list(self.party_members):
                self._untrack(name, Origin.PARTY)
            self.party_members.clear()
        for name in event.names:
            self.party_members.add(name)
            self._track(name, Origin.PARTY)

    def _on_invite(self, event: PartyInviteReceived) -> None:
        self._track(event.inviter, Origin.INVITE)
        self.scheduler.schedule(
            _invite_key(event.inviter), INVITE_EXPIRY, PartyInviteExpired(event.inviter)
        )
        self._await_continuation(event)

    def _leave_lobby(self, event: WhoListReceived) -> None:
        self.in_lobby = False

    def _await_continuation(self, event: PartyInviteReceived) -> None:
        if event.expects_continuation:
            self.awaiting_invite_continuation = True

    def _on_invite_continuation(self, event: InviteContinuation) -> None:
        self.awaiting_invite_continuation = False

    def _on_invite_expired(self, event: PartyInviteExpired) -> None:
        self.scheduler.cancel(_invite_key(event.name))
        self._untrack(event.name, Origin.INVITE)

    def _on_member_joined(self, event: PartyMemberJoined) -> None:
        self.scheduler.cancel(_invite_key(event.name))
        self.party_members.add(event.name)
        self._track(event.name, Origin.PARTY)
        self._untrack(event.name, Origin.INVITE)

    def _on_member_removed(self, event: PartyMemberLeft | PartyMemberKicked) -> None:
        self.party_members.discard(event.name)
        self._untrack(event.name, Origin.PARTY)

    def _on_party_disbanded(self, event: PartyDisbanded) -> None:
        for name in list(self.party_members):
            self._untrack(name, Origin.PARTY)
        self.party_members.clear()

    def _on_guild_start(self, event: GuildListStart) -> None:
        if self.in_guild_capture:
            logger.debug("Guild list restarted while capturing")
        self.in_guild_capture = True
        self.guild_members.clear()
        self.scheduler.schedule(_GUILD_DEADLINE_KEY, GUILD_CAPTURE_TIMEOUT, GuildListEnd())

    def _on_guild_line(self, event: GuildListLine) -> None:
        if not self.in_guild_capture:
            return
        for name in event.names:
            self.guild_members.add(name)

    def _on_guild_end(self, event: GuildListEnd) -> None:
        if self.in_guild_capture:
            self._finish_guild_capture()

    def _on_guild_leave(self, event: GuildLiveLeave) -> None:
        self.guild_members.discard(event.name)
        self._untrack(event.name, Origin.GUILD)

    def _on_chat(self, event: ChatMessage) -> None:
        if self.in_guild_capture:
            logger.debug("Chat during guild list, finishing capture")
            self._finish_guild_capture()

    def _on_track(self, event: TrackPlayer) -> None:
        self._track(event.name, event.origin)

    def _on_untrack(self, event: UntrackPlayer) -> None:
        self._untrack(event.name, event.origin)

    def _on_clear_origin(self, event: ClearOrigin) -> None:
        self._clear_origin(event.origin)
