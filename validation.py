import re
from typing import Optional

from constants import (
    DEFAULT_PARTICIPANTS,
    MAX_DURATION_MINUTES,
    MAX_MESSAGE_LENGTH,
    MAX_NAME_LENGTH,
    MAX_PARTICIPANTS,
    MESSAGE_WINDOW,
    MIN_DURATION_MINUTES,
    MIN_PARTICIPANTS,
    ROOM_CODE_PATTERN,
)
from errors import ValidationError

_ROOM_CODE_RE = re.compile(ROOM_CODE_PATTERN)


def _require_int(value, field: str) -> int:
    # bool is an int subclass; a JSON true is not a duration
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be a whole number")
    return value


def validate_user_name(name: Optional[str]) -> str:
    """Return the trimmed display name, or raise if it is empty or too long."""
    if not isinstance(name, str):
        raise ValidationError("Name is required")
    trimmed = name.strip()
    if not trimmed or len(trimmed) > MAX_NAME_LENGTH:
        raise ValidationError(f"Name must be between 1 and {MAX_NAME_LENGTH} characters")
    return trimmed


def validate_room_code(code: Optional[str]) -> str:
    if not isinstance(code, str) or not _ROOM_CODE_RE.match(code):
        raise ValidationError("Invalid room code format. Expected: ABC-123")
    return code


def validate_duration(duration) -> int:
    duration = _require_int(duration, "Duration")
    if duration < MIN_DURATION_MINUTES or duration > MAX_DURATION_MINUTES:
        raise ValidationError(
            f"Duration must be between {MIN_DURATION_MINUTES} and {MAX_DURATION_MINUTES} minutes"
        )
    return duration


def validate_participants_count(count) -> int:
    if count is None:
        return DEFAULT_PARTICIPANTS
    count = _require_int(count, "Participants count")
    if count < MIN_PARTICIPANTS or count > MAX_PARTICIPANTS:
        raise ValidationError(
            f"Participants count must be between {MIN_PARTICIPANTS} and {MAX_PARTICIPANTS}"
        )
    return count


def validate_additional_minutes(minutes) -> int:
    minutes = _require_int(minutes, "Additional minutes")
    if minutes < 1 or minutes > MAX_DURATION_MINUTES:
        raise ValidationError(f"Additional minutes must be between 1 and {MAX_DURATION_MINUTES}")
    return minutes


def validate_message_text(text: Optional[str]) -> str:
    if not isinstance(text, str) or not text.strip():
        raise ValidationError("Message cannot be empty")
    trimmed = text.strip()
    if len(trimmed) > MAX_MESSAGE_LENGTH:
        raise ValidationError(f"Message too long (max {MAX_MESSAGE_LENGTH} characters)")
    return trimmed


def validate_message_limit(limit) -> int:
    """Limits above the retained window are clamped to it."""
    limit = _require_int(limit, "Limit")
    if limit < 1:
        raise ValidationError("Limit must be at least 1")
    return min(limit, MESSAGE_WINDOW)
