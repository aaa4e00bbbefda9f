import math
from datetime import datetime

from portfolio.services.content_sanitizer import plain_text

WORDS_PER_MINUTE = 200


def calculate_reading_time(content: str) -> int:
    """Minutes to read the rendered content, never stored with the post."""
    words = plain_text(content).split()
    return math.ceil(len(words) / WORDS_PER_MINUTE)


def format_reading_time(minutes: int) -> str:
    return f"{max(minutes, 1)} min read"


def format_date(value: datetime) -> str:
    return f"{value:%B} {value.day}, {value.year}"
