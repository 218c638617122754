"""Redaction of host details from messages that leave the server."""

from __future__ import annotations

import re

_REDACTIONS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"/home/[^/\s]+"), "/home/***"),
    (re.compile(r"/tmp/[^/\s]+"), "/tmp/***"),
    (re.compile(r"/Users/[^/\s]+"), "/Users/***"),
    (re.compile(r"C:\\Users\\[^\\\s]+", re.IGNORECASE), r"C:\\Users\\***"),
    (re.compile(r"\b\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}\b"), "***.***.***.***"),
    (re.compile(r":\d{2,5}\b"), ":****"),
)


def sanitize_error_message(message: str) -> str:
    """Strip filesystem paths, IPv4 addresses and port numbers from a message.

    Args:
        message: Raw error text, typically ``str(exc)``.

    Returns:
        The message with user directories, temp directories, addresses and
        ports replaced by asterisks.
    """
    for pattern, replacement in _REDACTIONS:
        message = pattern.sub(replacement, message)
    return message
