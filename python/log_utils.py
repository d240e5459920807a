"""
Logging helpers for the HalamangGaling API

Shared by the request middleware, the security logger and the services so
that user-supplied text is cleaned the same way everywhere before it is
written to a log line.
"""

import logging
import re
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

_CONTROL_CHARS = re.compile(r'[\r\n\x00-\x1f\x7f-\x9f]')
_WHITESPACE = re.compile(r'\s+')


def sanitize_for_logging(text: str, max_length: int = 500) -> str:
    """Sanitize user input for safe logging, preventing log injection

    Removes newlines, carriage returns, and other control characters
    that could be used to inject fake log entries.

    Args:
        text: User input text
        max_length: Maximum number of characters kept

    Returns:
        Sanitized text safe for logging
    """
    if not text:
        return ''
    sanitized = _CONTROL_CHARS.sub(' ', str(text))
    sanitized = _WHITESPACE.sub(' ', sanitized).strip()
    return sanitized[:max_length] if len(sanitized) > max_length else sanitized


def setup_logging(logging_config: Optional['LoggingConfig'] = None) -> None:
    """Configure root logging handlers from the ``logging`` config section.

    Safe to call more than once; handlers installed by a previous call are
    replaced rather than duplicated.
    """
    if logging_config is None:
        from config_manager import get_config
        logging_config = get_config().logging

    root = logging.getLogger()
    root.setLevel(getattr(logging, logging_config.level.upper(), logging.INFO))

    for handler in list(root.handlers):
        if getattr(handler, '_halamanggaling', False):
            root.removeHandler(handler)

    formatter = logging.Formatter(logging_config.format)

    if logging_config.console:
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        console._halamanggaling = True
        root.addHandler(console)

    if logging_config.file:
        log_path = Path(logging_config.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding='utf-8')
        file_handler.setFormatter(formatter)
        file_handler._halamanggaling = True
        root.addHandler(file_handler)

    logger.debug("Logging configured: level=%s file=%s", logging_config.level, logging_config.file)
