# src/courrier/infrastructure/__init__.py
"""Infrastructure layer - IMAP, storage, tracking database, and configuration."""

from courrier.infrastructure.logging_config import configure_logging
from courrier.infrastructure.mail_config import MailConfig, load_mail_config
from courrier.infrastructure.settings import Settings, get_settings

__all__ = [
    # Settings
    "Settings",
    "get_settings",
    # Mail config
    "MailConfig",
    "load_mail_config",
    # Logging
    "configure_logging",
]
