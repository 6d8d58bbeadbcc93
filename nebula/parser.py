"""Classifier for Minecraft (Hypixel Bedwars) client log lines.

Each raw log line maps to at most one Event. Lines carrying the [CHAT]
marker are tried against RULES in order and the first rule whose
extractor returns an event wins; an extractor returning None means
"trigger matched but the payload was unusable", and scanning continues.
Lines without the marker only get the invite-continuation rules.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass

from nebula.events import (
    ChatMessage,
    Event,
    FinalKill,
    GameStarting,
    GuildListEnd,
    GuildListLine,
    GuildListStart,
    GuildLiveJoin,
    GuildLiveLeave,
    InviteContinuation,
    LobbyJoined,
    PartyDisbanded,
    PartyInviteExpired,
    PartyInviteReceived,
    PartyMemberJoined,
    PartyMemberKicked,
    PartyMemberLeft,
    PartyRole,
    PartyRosterReceived,
    PlayerDisconnected,
    ServerChange,
    Unclassified,
    WhoListReceived,
)
from nebula.text_utils import (
    NAME,
    RANK_PREFIX,
    extract_chat_payload,
    is_valid_name,
    leading_name,
    strip_color_codes,
    strip_rank,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ClassifierContext:
    """Roster flags and settings that some rules depend on."""

    in_lobby: bool = False
    in_guild_capture: bool = False
    awaiting_invite_continuation: bool = False
    username: str = ""


Extractor = Callable[[str, ClassifierContext], "Event | None"]


@dataclass(frozen=True, slots=True)
class Rule:
    name: str
    matches: Callable[[str, ClassifierContext], bool]
    extract: Extractor


def _named(name: str) -> str | None:
    """Rank-strip a candidate and return it only if it is a valid name."""
    cleaned = strip_rank(name)
    return cleaned if is_valid_name(cleaned) else None


# --- Regexes ---

_RE_INVITE_THEIR = re.compile(rf"^{RANK_PREFIX}{NAME} has invited you to join their party!")
_RE_INVITE_OTHER = re.compile(
    rf"^{RANK_PREFIX}{NAME} has invited you to join {RANK_PREFIX}{NAME}'s party!"
)
_RE_INVITE_OUT = re.compile(rf"^{RANK_PREFIX}{NAME} invited {RANK_PREFIX}{NAME} to the party!")
_RE_INVITE_EXPIRED = re.compile(rf"^The party invite (?:from|to) {RANK_PREFIX}{NAME} has expired")
_RE_INVITE_PLAIN = re.compile(r"(?<![A-Za-z0-9_])([A-Za-z0-9_]{3,16}) has invited you")
_RE_NON_CHAT_INVITE = re.compile(r"has invited you to join their party", re.IGNORECASE)
_RE_CONTINUATION = re.compile(r"You have \d+ seconds|Click here to join", re.IGNORECASE)

_RE_SECTION = re.compile(r"^-{2,}\s+\w+\s+-{2,}$")
_RE_SEPARATOR = re.compile(r"^-{2,}\s+.+\s+-{2,}$")
_RE_GUILD_SUMMARY = re.compile(r"^(?:Total|Online|Offline) Members:", re.IGNORECASE)
_RE_GUILD_NAME = re.compile(r"^Guild Name:", re.IGNORECASE)
_RE_GUILD_MULTI = re.compile(r"\[[^\]]+\]\s+([A-Za-z0-9_]{3,16})(?![A-Za-z0-9_])\s*\?*")
_RE_GUILD_SINGLE = re.compile(r"^\[[^\]]+\]\s+([A-Za-z0-9_]{3,16})\s*\?*$")
_RE_GUILD_PLAIN = re.compile(r"^([A-Za-z0-9_]{3,16})\s*\?*$")
_RE_GUILD_LIVE_LEFT = re.compile(rf"^{RANK_PREFIX}{NAME} left\.$")
_RE_GUILD_LIVE_JOINED = re.compile(rf"^{RANK_PREFIX}{NAME} joined\.$")
_RE_ROSTER_TOKEN = re.compile(r"^[A-Za-z0-9_]+$")

_PARTY_ROLES = {
    "Party Leader:": PartyRole.LEADER,
    "Party Moderators:": PartyRole.MODERATOR,
    "Party Members:": PartyRole.MEMBER,
}
_PARTYING_WITH = "You'll be partying with:"
_JOINED_PARTY_OF = "You have joined "
_GUILD_CHAT = "Guild > "


# --- Extractors ---

def _who_list(msg: str, ctx: ClassifierContext) -> Event | None:
    listing = msg[msg.index("ONLINE:") + len("ONLINE:"):].strip()
    names = tuple(
        n for n in (strip_rank(token) for token in listing.split(", ")) if is_valid_name(n)
    )
    return WhoListReceived(names) if names else None


def _disconnected(msg: str, ctx: ClassifierContext) -> Event | None:
    name = _named(leading_name(msg))
    return PlayerDisconnected(name) if name else None


def _final_kill(msg: str, ctx: ClassifierContext) -> Event | None:
    name = _named(leading_name(msg))
    return FinalKill(name) if name else None


def _party_roster(msg: str, ctx: ClassifierContext) -> Event | None:
    prefix = msg[:msg.index(":") + 1]
    tokens = msg[len(prefix):].split(" ")
    names = tuple(
        n for n in (strip_rank(t.strip()) for t in tokens if _RE_ROSTER_TOKEN.match(t.strip()))
        if is_valid_name(n)
    )
    if not names:
        return None
    return PartyRosterReceived(names, role=_PARTY_ROLES[prefix])


def _invite_their_party(msg: str, ctx: ClassifierContext) -> Event | None:
    m = _RE_INVITE_THEIR.match(msg)
    if m:
        return PartyInviteReceived(m.group(1), expects_continuation=True)
    cut = msg.find("has invited")
    if cut > 0:
        inviter = _named(msg[:cut])
        if inviter:
            return PartyInviteReceived(inviter, expects_continuation=True)
    return None


def _invite_other_party(msg: str, ctx: ClassifierContext) -> Event | None:
    m = _RE_INVITE_OTHER.match(msg)
    if m:
        return PartyInviteReceived(m.group(1), leader=m.group(2), expects_continuation=True)
    marker = " has invited you to join "
    cut = msg.find(marker)
    party = msg.find("'s party!")
    if cut > 0 and party > cut:
        inviter = _named(msg[:cut])
        leader = _named(msg[cut + len(marker):party])
        if inviter:
            return PartyInviteReceived(inviter, leader=leader, expects_continuation=True)
    return None


def _invite_outgoing(msg: str, ctx: ClassifierContext) -> Event | None:
    m = _RE_INVITE_OUT.match(msg)
    if not m:
        return None
    inviter, invitee = m.group(1), m.group(2)
    if ctx.username and inviter.lower() == ctx.username.lower():
        return PartyInviteReceived(invitee)
    logger.debug("Ignoring outgoing invite not sent by us: %s -> %s", inviter, invitee)
    return Unclassified()


def _invite_expired(msg: str, ctx: ClassifierContext) -> Event | None:
    m = _RE_INVITE_EXPIRED.match(msg)
    return PartyInviteExpired(m.group(1)) if m else None


def _joined_party_of(msg: str, ctx: ClassifierContext) -> Event | None:
    leader = _named(msg[len(_JOINED_PARTY_OF):msg.index("'s party!")])
    if not leader:
        return None
    return PartyRosterReceived((leader,), role=PartyRole.LEADER, replace=True)


def _partying_with(msg: str, ctx: ClassifierContext) -> Event | None:
    listing = msg[len(_PARTYING_WITH):]
    names = tuple(n for n in (_named(part) for part in listing.split(",")) if n)
    return PartyRosterReceived(names) if names else None


def _member_joined(msg: str, ctx: ClassifierContext) -> Event | None:
    name = _named(msg[:msg.index(" joined")])
    return PartyMemberJoined(name) if name else None


def _lobby_invite(msg: str, ctx: ClassifierContext) -> Event | None:
    cut = msg.find("has")
    if cut <= 0:
        return None
    name = _named(leading_name(msg[:cut]))
    return PartyInviteReceived(name) if name else None


def _lobby_member_joined(msg: str, ctx: ClassifierContext) -> Event | None:
    name = _named(leading_name(msg))
    return PartyMemberJoined(name) if name else None


def _member_left(msg: str, ctx: ClassifierContext) -> Event | None:
    name = _named(leading_name(msg))
    return PartyMemberLeft(name) if name else None


def _member_removed(msg: str, ctx: ClassifierContext) -> Event | None:
    name = _named(leading_name(msg))
    return PartyMemberKicked(name) if name else None


def _kicked_offline(msg: str, ctx: ClassifierContext) -> Event | None:
    name = _named(leading_name(msg[len("Kicked "):]))
    return PartyMemberKicked(name) if name else None


def _guild_capture_line(msg: str, ctx: ClassifierContext) -> Event | None:
    line = msg.strip()
    if not line or _RE_SEPARATOR.match(line) or _RE_GUILD_NAME.match(line):
        return GuildListLine(msg)
    if _RE_GUILD_SUMMARY.match(line):
        return GuildListEnd(msg)

    working = line.replace("●", "").strip()
    multi = _RE_GUILD_MULTI.findall(working)
    if len(multi) > 1:
        return GuildListLine(msg, tuple(multi))
    for regex in (_RE_GUILD_SINGLE, _RE_GUILD_PLAIN):
        m = regex.match(working)
        if m:
            return GuildListLine(msg, (m.group(1),))

    # Looks like regular chat: let the chat rule end the capture
    if ":" in line and _chat_speaker(line):
        return None
    return GuildListLine(msg)


def _guild_live(msg: str, ctx: ClassifierContext) -> Event | None:
    rest = msg[len(_GUILD_CHAT):].strip()
    m = _RE_GUILD_LIVE_LEFT.match(rest)
    if m:
        return GuildLiveLeave(m.group(1))
    m = _RE_GUILD_LIVE_JOINED.match(rest)
    if m:
        return GuildLiveJoin(m.group(1))
    return None


def _chat_speaker(msg: str) -> str:
    """Candidate speaker name for "[RANK] Name: text" / "Party > Name: text"."""
    prefix = msg[:msg.index(":")].strip()
    if " > " in prefix:
        prefix = prefix[prefix.rfind(" > ") + 3:]
    speaker = strip_rank(prefix)
    return speaker if is_valid_name(speaker) else ""


def _chat(msg: str, ctx: ClassifierContext) -> Event | None:
    text = msg[msg.index(":") + 1:].strip()
    if not text:
        return Unclassified()
    speaker = _chat_speaker(msg)
    mentions = bool(
        speaker and ctx.username and ctx.username.lower() in text.lower()
    )
    return ChatMessage(speaker, text, mentions_self=mentions)


def _no_colon(msg: str) -> bool:
    return ":" not in msg


def _const(event: Event) -> Extractor:
    return lambda msg, ctx: event


# Priority order matters: specific patterns first, the generic ":" chat
# fallback last.
RULES: tuple[Rule, ...] = (
    Rule(
        "server_change",
        lambda m, c: "Sending you to" in m and _no_colon(m),
        _const(ServerChange()),
    ),
    Rule(
        "lobby_joined",
        lambda m, c: (
            ("joined the lobby!" in m or "rewards!" in m) and _no_colon(m)
        ) or "slid into the lobby!" in m,
        _const(LobbyJoined()),
    ),
    Rule("who_list", lambda m, c: "ONLINE:" in m and "," in m, _who_list),
    Rule(
        "disconnected",
        lambda m, c: ("has quit" in m or "disconnected" in m) and _no_colon(m),
        _disconnected,
    ),
    Rule("final_kill", lambda m, c: "FINAL KILL" in m and _no_colon(m), _final_kill),
    Rule(
        "party_roster",
        lambda m, c: c.in_lobby and m.startswith(tuple(_PARTY_ROLES)),
        _party_roster,
    ),
    Rule(
        "invite_their_party",
        lambda m, c: "has invited you to join their party!" in m and _no_colon(m),
        _invite_their_party,
    ),
    Rule(
        "invite_other_party",
        lambda m, c: "has invited you to join" in m and "party!" in m and _no_colon(m),
        _invite_other_party,
    ),
    Rule(
        "invite_outgoing",
        lambda m, c: " invited " in m and " to the party!" in m and _no_colon(m),
        _invite_outgoing,
    ),
    Rule(
        "invite_expired",
        lambda m, c: "party invite" in m and "has expired" in m and _no_colon(m),
        _invite_expired,
    ),
    Rule(
        "joined_party_of",
        lambda m, c: m.startswith(_JOINED_PARTY_OF) and "'s party!" in m and _no_colon(m),
        _joined_party_of,
    ),
    Rule(
        "partying_with",
        lambda m, c: m.startswith(_PARTYING_WITH) and m.index(":") == len(_PARTYING_WITH) - 1,
        _partying_with,
    ),
    Rule(
        "member_joined",
        lambda m, c: (
            m.endswith(" joined the party!")
            or m.endswith(" joined the party.")
            or " joined the party!" in m
        ) and _no_colon(m) and not m.startswith("You "),
        _member_joined,
    ),
    Rule(
        "lobby_invite",
        lambda m, c: c.in_lobby and "to join their party!" in m and _no_colon(m),
        _lobby_invite,
    ),
    Rule(
        "lobby_member_joined",
        lambda m, c: c.in_lobby and "joined the party" in m and _no_colon(m),
        _lobby_member_joined,
    ),
    Rule("disbanded", lambda m, c: "disbanded" in m and _no_colon(m), _const(PartyDisbanded())),
    Rule(
        "self_left_party",
        lambda m, c: "You left the party" in m and _no_colon(m),
        _const(PartyDisbanded()),
    ),
    Rule("member_left", lambda m, c: "left the party" in m and _no_colon(m), _member_left),
    Rule(
        "member_removed",
        lambda m, c: "has been removed from the party" in m and _no_colon(m),
        _member_removed,
    ),
    Rule(
        "kicked_offline",
        lambda m, c: m.startswith("Kicked ") and "because they were offline" in m and _no_colon(m),
        _kicked_offline,
    ),
    Rule(
        "game_starting",
        lambda m, c: "The game starts in 1 second!" in m and _no_colon(m),
        _const(GameStarting()),
    ),
    Rule(
        "guild_list_start",
        lambda m, c: m.startswith("Guild Name: ")
        or (not c.in_guild_capture and _RE_SECTION.match(m.strip()) is not None),
        lambda m, c: GuildListStart(m),
    ),
    Rule("guild_capture", lambda m, c: c.in_guild_capture, _guild_capture_line),
    Rule("guild_live", lambda m, c: m.startswith(_GUILD_CHAT) and _no_colon(m), _guild_live),
    Rule(
        "guild_list_end",
        lambda m, c: _RE_GUILD_SUMMARY.match(m) is not None,
        lambda m, c: GuildListEnd(m),
    ),
    Rule("chat", lambda m, c: ":" in m, _chat),
)


def classify_continuation(line: str, ctx: ClassifierContext) -> Event:
    """Classify a line without the [CHAT] marker (multi-line invite output)."""
    cleaned = strip_color_codes(line.strip())
    if _RE_NON_CHAT_INVITE.search(cleaned):
        m = _RE_INVITE_PLAIN.search(cleaned)
        if m:
            return PartyInviteReceived(m.group(1), expects_continuation=True)
        return Unclassified()
    if ctx.awaiting_invite_continuation and _RE_CONTINUATION.search(cleaned):
        return InviteContinuation()
    return Unclassified()


def classify(line: str, ctx: ClassifierContext | None = None) -> Event:
    """Classify one raw log line into a single Event.

    Never raises: anything not confidently recognised is Unclassified.
    """
    ctx = ctx or ClassifierContext()
    msg = extract_chat_payload(line)
    if msg is None:
        return classify_continuation(line, ctx)
    if not msg:
        return Unclassified()

    for rule in RULES:
        if not rule.matches(msg, ctx):
            continue
        event = rule.extract(msg, ctx)
        if event is not None:
            logger.debug("Rule %s matched: %r -> %r", rule.name, msg[:120], event)
            return event
        logger.debug("Rule %s triggered but extraction failed: %r", rule.name, msg[:120])
    return Unclassified()
