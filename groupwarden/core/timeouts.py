"""Deadline race applied to every directory call."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeAlias, TypeVar

from groupwarden.core.errors import DirectoryTimeoutError

T = TypeVar("T")

SleepFn: TypeAlias = Callable[[float], Awaitable[None]]


async def call_with_timeout(awaitable: Awaitable[T], timeout_s: float, *, label: str = "directory call") -> T:
    """Race one directory call against its deadline."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_s)
    except TimeoutError as e:
        raise DirectoryTimeoutError(f"{label} timed out after {timeout_s:g}s") from e
