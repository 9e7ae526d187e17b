"""Shared validation utilities"""

import re
from typing import Iterable, Optional, Union

# Basic email validation pattern
EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+'-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


def validate_email(email: Optional[str]) -> Optional[str]:
    """
    Validate email format.

    Args:
        email: Email address string

    Returns:
        Trimmed email address

    Raises:
        ValueError: If email format is invalid
    """
    if not email:
        return email

    email = email.strip()

    if not EMAIL_PATTERN.match(email):
        raise ValueError(f"Invalid email address: {email}")

    return email


def split_recipients(value: Union[str, Iterable[str], None]) -> list[str]:
    """
    Normalize recipients given as one comma-separated string, a list of
    strings, or a list mixing both (repeated multipart form fields).
    """
    if not value:
        return []
    items = [value] if isinstance(value, str) else list(value)

    recipients = []
    for item in items:
        for part in str(item).split(","):
            part = part.strip()
            if part:
                recipients.append(part)
    return recipients


def validate_recipients(value: Union[str, Iterable[str], None], required: bool = False) -> list[str]:
    """
    Split and validate a recipient list.

    Raises:
        ValueError: If a required list is empty or any address is malformed
    """
    recipients = split_recipients(value)
    if required and not recipients:
        raise ValueError("At least one recipient is required")
    return [validate_email(address) for address in recipients]
