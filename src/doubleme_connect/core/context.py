"""
Context variables for DoubleMe Connect.

This module provides the request-scoped identity of the signed-in user.
"""

import contextvars
from typing import Optional

# Context variable to hold the current user ID
_user_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "user_id", default=None
)


def get_current_user_id() -> Optional[str]:
    """
    Get the current user ID from context.

    Returns:
        The current user ID or None if nobody is signed in.
    """
    return _user_id.get()


def set_current_user_id(user_id: Optional[str]) -> None:
    """
    Set the current user ID in context.

    Args:
        user_id: The user ID to set, or None to clear.
    """
    _user_id.set(user_id)
