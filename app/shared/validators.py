"""Field validators shared by the request schemas"""

import re
import uuid
from typing import Optional

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


def is_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except (ValueError, AttributeError, TypeError):
        return False
    return True


def normalize_email(email: Optional[str]) -> Optional[str]:
    """
    Trimmed, lowercased email. Empty values pass through unchanged.

    Raises:
        ValueError: If the address is malformed
    """
    if not email:
        return email
    email = email.strip().lower()
    if not EMAIL_PATTERN.match(email):
        raise ValueError("Invalid email format")
    return email


def validate_weekday(day_of_week: int) -> int:
    """Weekday index as in date.weekday(): 0 = Monday ... 6 = Sunday"""
    if not 0 <= day_of_week <= 6:
        raise ValueError("day_of_week must be between 0 (Monday) and 6 (Sunday)")
    return day_of_week


def validate_https_url(url: str) -> str:
    url = url.strip()
    if not url.startswith("https://") or len(url) <= len("https://"):
        raise ValueError("URL must start with https://")
    return url
