"""CLI commands for groupwarden."""

from . import mapping_commands as _mapping_commands  # noqa: F401
from . import membership_commands as _membership_commands  # noqa: F401
from .core import app

__all__ = ["app"]
