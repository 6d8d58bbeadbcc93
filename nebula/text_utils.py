"""Text utilities for Minecraft chat lines: colour codes, rank tags, names."""

from __future__ import annotations

import re

CHAT_MARKER = "[CHAT]"

# Formatting codes: section sign (or the replacement char a non-UTF-8 log
# decodes it to) followed by one code character.
_RE_COLOR_CODES = re.compile(r"[§�][0-9a-fk-or]", re.IGNORECASE)

_RE_VALID_NAME = re.compile(r"^[A-Za-z0-9_]{3,16}$")

# Optional "[MVP+] " style prefix in front of a name
RANK_PREFIX = r"(?:\[[^\]]+\]\s*)?"
NAME = r"([A-Za-z0-9_]{3,16})"


def strip_color_codes(text: str) -> str:
    """Remove Minecraft formatting codes (e.g. "§a", "§l") anywhere in text."""
    return _RE_COLOR_CODES.sub("", text).strip()


def strip_rank(text: str) -> str:
    """Return text after the last "]" (rank tag removed), trimmed.

    "[MVP+] Steve" -> "Steve", "[12✫] [VIP] Alex" -> "Alex", "Bob" -> "Bob".
    """
    if "[" in text:
        return text[text.rfind("]") + 1:].strip()
    return text.strip()


def is_valid_name(name: str) -> bool:
    """Check that name looks like a Minecraft username (3-16 of [A-Za-z0-9_])."""
    return bool(name) and _RE_VALID_NAME.match(name) is not None


def leading_name(message: str) -> str:
    """Extract the player name at the start of a message.

    The first token is rank-stripped ("[MVP+]Steve" -> "Steve"); a token
    that is only a rank tag is skipped ("[MVP+] Steve has quit." -> "Steve").
    Returns "" if there is no usable token.
    """
    parts = message.split()
    if not parts:
        return ""
    name = strip_rank(parts[0])
    if not name and len(parts) > 1:
        name = strip_rank(parts[1])
    return name


def name_key(name: str) -> str:
    """Canonical comparison key: names compare case-insensitively."""
    return strip_rank(name).lower()


def extract_chat_payload(line: str) -> str | None:
    """Return the cleaned message after the [CHAT] marker, or None if absent."""
    idx = line.find(CHAT_MARKER)
    if idx == -1:
        return None
    return strip_color_codes(line[idx + len(CHAT_MARKER):].strip())
