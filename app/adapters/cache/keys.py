"""Cache key layout shared by every backend and caller."""

from __future__ import annotations

# Set of note ids whose counters hold unreconciled deltas
DIRTY_NOTE_SET_KEY = "note:counters:dirty"

KEY_PREFIX_NOTE = "note:"
COUNTER_VIEWS = "views"
COUNTER_LIKES = "likes"
COUNTER_NAMES = (COUNTER_VIEWS, COUNTER_LIKES)

KEY_PREFIX_RATE_LIMIT = "rl:"


def note_key(note_id: int) -> str:
    """Key of the cached note snapshot."""
    return f"{KEY_PREFIX_NOTE}{note_id}"


def note_counter_key(note_id: int, counter: str) -> str:
    if counter not in COUNTER_NAMES:
        raise ValueError(f"unknown counter: {counter!r}")
    return f"{KEY_PREFIX_NOTE}{note_id}:{counter}"


def note_views_key(note_id: int) -> str:
    return note_counter_key(note_id, COUNTER_VIEWS)


def note_likes_key(note_id: int) -> str:
    return note_counter_key(note_id, COUNTER_LIKES)


def parse_counter_key(key: str) -> int | None:
    """Return the note id owning a counter key, or None for any other key.

    Examples:
        >>> parse_counter_key("note:42:views")
        42
        >>> parse_counter_key("note:42") is None
        True
        >>> parse_counter_key("rl:login:ip:1.2.3.4") is None
        True
    """

    if not key.startswith(KEY_PREFIX_NOTE):
        return None
    parts = key.split(":")
    if len(parts) != 3 or parts[2] not in COUNTER_NAMES:
        return None
    if not parts[1].isdigit():
        return None
    return int(parts[1])


def rate_limit_key(action: str, scope: str, identifier: str) -> str:
    """Key of a fixed-window counter, e.g. ``rl:login:ip:1.2.3.4``."""
    return f"{KEY_PREFIX_RATE_LIMIT}{action}:{scope}:{identifier}"
