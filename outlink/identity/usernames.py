"""Username normalization, validation and derivation rules."""

import re
import secrets

from outlink.config import settings
from outlink.exceptions import InvalidUsername

USERNAME_KEY_PATTERN = re.compile(r"^[a-z0-9_]+$")
_WHITESPACE = re.compile(r"\s+")
_INVALID_KEY_CHARS = re.compile(r"[^a-z0-9_]")


def normalize_username(username: str) -> str:
    """Lowercase and strip all whitespace: the document key form."""
    return _WHITESPACE.sub("", username).lower()


def validate_username_key(
    key: str,
    *,
    min_length: int | None = None,
    max_length: int | None = None,
) -> str:
    """Validate a normalized username key, returning it unchanged."""
    min_length = min_length or settings.username_min_length
    max_length = max_length or settings.username_max_length

    if not key:
        raise InvalidUsername("Username is required")
    if not USERNAME_KEY_PATTERN.match(key):
        raise InvalidUsername("Username can only contain letters, numbers, and underscores")
    if len(key) < min_length:
        raise InvalidUsername(f"Username must be at least {min_length} characters")
    if len(key) > max_length:
        raise InvalidUsername(f"Username must be {max_length} characters or less")
    return key


def derive_username_candidates(
    email: str | None,
    auth_id: str,
    *,
    attempts: int | None = None,
) -> list[str]:
    """
    Usernames to try, in order, for an account that never chose one.

    Email local part first, then ``user_`` plus the start of the auth id,
    then ``user_`` plus random hex.
    """
    attempts = attempts or settings.username_derive_attempts
    max_length = settings.username_max_length
    candidates: list[str] = []

    if email:
        local_part = _INVALID_KEY_CHARS.sub("", normalize_username(email.split("@", 1)[0]))
        if len(local_part) >= settings.username_min_length:
            candidates.append(local_part[:max_length])

    auth_part = _INVALID_KEY_CHARS.sub("", auth_id.lower())[:8]
    if auth_part:
        candidates.append(f"user_{auth_part}")

    while len(candidates) < attempts:
        candidates.append(f"user_{secrets.token_hex(4)}")

    seen: list[str] = []
    for candidate in candidates:
        if candidate not in seen:
            seen.append(candidate)
    return seen[:attempts]


def _looks_like_name(value: str) -> bool:
    stripped = value.strip()
    return bool(_WHITESPACE.search(stripped)) and len(stripped) > settings.username_max_length


def _looks_like_username(value: str) -> bool:
    stripped = value.strip()
    return (
        not _WHITESPACE.search(stripped)
        and 0 < len(stripped) <= settings.username_max_length
        and bool(USERNAME_KEY_PATTERN.match(stripped.lower()))
    )


def looks_swapped(username: str | None, display_name: str | None) -> bool:
    """
    True when the username looks like a display name and vice versa.

    Best-effort heuristic: the username has whitespace and is longer than a
    username may be, while the display name is a well-formed username.
    """
    if not username or not display_name:
        return False
    return _looks_like_name(username) and _looks_like_username(display_name)
