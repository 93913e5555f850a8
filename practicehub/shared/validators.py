"""Shared validation utilities"""

import re
from datetime import time

HHMM_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def validate_hhmm(value: str) -> str:
    """
    Validate a wall-clock time in 24h HH:MM format.

    Raises:
        ValueError: If the value is not a valid HH:MM string
    """
    if not value or not HHMM_PATTERN.match(value.strip()):
        raise ValueError(f"Invalid time '{value}', expected HH:MM")
    return value.strip()


def parse_hhmm(value: str) -> time:
    """Parse HH:MM into a time object"""
    hours, minutes = validate_hhmm(value).split(":")
    return time(int(hours), int(minutes))

