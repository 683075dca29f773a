"""DoubleMe Connect MCP Server."""

import logging
import sys

from .main import mcp

from . import granola_tools
from . import calendar_tools

from ..auth.oauth_config import get_oauth_config
from ..core.context import set_current_user_id
from ..web.callbacks import cleanup_callback_server, ensure_callback_server

__all__ = ["mcp", "main"]

logger = logging.getLogger(__name__)


def main():
    """Entry point for the DoubleMe Connect MCP server."""
    # stdout carries the MCP stdio protocol
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    config = get_oauth_config()
    logger.info("Configuration: %s", config.get_environment_summary())

    # A stdio server acts for the one user it was started for
    set_current_user_id(config.default_user_id)
    if not config.default_user_id:
        logger.warning("DOUBLEME_USER_ID not set; tools will report \"Not signed in.\"")

    success, error_msg = ensure_callback_server()
    if not success:
        logger.warning(f"OAuth callbacks unavailable: {error_msg}")

    try:
        mcp.run(show_banner=False)
    finally:
        cleanup_callback_server()
