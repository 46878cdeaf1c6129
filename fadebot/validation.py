from __future__ import annotations

import re

from fadebot.errors import InvalidInput


def validate_user_id(user_id: object, pattern: str) -> str:
    if not isinstance(user_id, str) or not user_id:
        raise InvalidInput("user id must be a non-empty string")
    if not re.fullmatch(pattern, user_id):
        raise InvalidInput(f"user id {user_id!r} does not match {pattern!r}")
    return user_id


def validate_content(content: object, max_length: int) -> str:
    """Return the sanitized message content or raise :class:`InvalidInput`.

    NUL bytes and surrounding whitespace are stripped; content that is empty
    afterwards or longer than ``max_length`` is rejected.
    """
    if not isinstance(content, str) or not content:
        raise InvalidInput("message content must be a non-empty string")
    if len(content) > max_length:
        raise InvalidInput(f"message content exceeds {max_length} characters")
    sanitized = content.replace("\x00", "").strip()
    if not sanitized:
        raise InvalidInput("message content is empty after sanitization")
    return sanitized
