"""Utility functions for groupwarden."""

import os
import re
from pathlib import Path

from groupwarden.identity.jid import is_valid_phone, normalize_phone

GROUP_NAME_MAX_CHARS = 100


def ensure_dir(path: Path) -> Path:
    """Ensure a directory exists, creating it if necessary."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_path() -> Path:
    """Get the groupwarden home directory.

    Respects GROUPWARDEN_HOME environment variable; falls back to ~/.groupwarden.
    """
    home = os.environ.get("GROUPWARDEN_HOME", "").strip()
    if home:
        return ensure_dir(Path(home).expanduser())
    return ensure_dir(Path.home() / ".groupwarden")


def get_operational_data_path() -> Path:
    """Get the long-lived operational data directory (~/.groupwarden/data)."""
    return ensure_dir(get_data_path() / "data")


def parse_phone_numbers(text: str) -> tuple[list[str], list[str]]:
    """Parse one phone number per line.

    Returns:
        (valid normalized numbers in input order, error lines)
    """
    numbers: list[str] = []
    errors: list[str] = []
    for line in (text or "").splitlines():
        raw = line.strip()
        if not raw:
            continue
        digits = normalize_phone(raw)
        if not digits:
            continue
        if is_valid_phone(digits):
            numbers.append(digits)
        else:
            errors.append(f"invalid phone number: {raw!r}")
    return numbers, errors


def validate_group_name(name: str) -> str:
    """Return the trimmed group name or raise ValueError."""
    trimmed = (name or "").strip()
    if not trimmed:
        raise ValueError("group name must not be empty")
    if len(trimmed) > GROUP_NAME_MAX_CHARS:
        raise ValueError(f"group name too long (max {GROUP_NAME_MAX_CHARS} characters)")
    return trimmed


def extract_number_from_name(name: str) -> int:
    """Trailing integer of a group name, else the first integer, else 0."""
    end_match = re.search(r"(\d+)\s*$", name or "")
    if end_match:
        return int(end_match.group(1))
    any_match = re.search(r"\d+", name or "")
    if any_match:
        return int(any_match.group(0))
    return 0
