"""Logging setup."""

import logging

from session_blocks.core.config import Settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(app_settings: Settings) -> None:
    """Configure root logging from settings. DEBUG wins over log_level."""
    level = logging.DEBUG if app_settings.debug else logging.getLevelName(app_settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)
    # The Supabase client stack is chatty at DEBUG
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
