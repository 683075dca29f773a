"""
Core utilities package for DoubleMe Connect.

This package provides request context management.
"""

from .context import (
    get_current_user_id,
    set_current_user_id,
)

__all__ = [
    "get_current_user_id",
    "set_current_user_id",
]
