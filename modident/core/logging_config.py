# ==============================================================================
# LOGGING SETUP
# ==============================================================================
# Every module logs through logging.getLogger(__name__), so everything lands
# under the "modident" logger. The command-line entry points call
# setup_logging() once; library users configure logging themselves.
# ==============================================================================

import logging
import os
import sys
from typing import Optional

ROOT_LOGGER_NAME = 'modident'
HANDLER_NAME = 'modident-console'


def setup_logging(log_level: Optional[str] = None,
                  component_name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """
    Set up logging for a component.

    Args:
        log_level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to the
                   LOG_LEVEL env var or INFO
        component_name: Logger to configure

    Returns:
        Configured logger instance
    """
    if log_level is None:
        log_level = os.getenv('LOG_LEVEL', 'INFO')
    log_level = log_level.upper()

    level = getattr(logging, log_level, logging.INFO)

    logger = logging.getLogger(component_name)
    logger.setLevel(level)

    for handler in logger.handlers:
        if handler.get_name() == HANDLER_NAME:
            handler.setLevel(level)
            return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(HANDLER_NAME)
    handler.setLevel(level)

    if level <= logging.DEBUG:
        formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
    else:
        formatter = logging.Formatter('[%(levelname)s] %(message)s')

    handler.setFormatter(formatter)

    logger.addHandler(handler)
    logger.propagate = False

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger under the modident hierarchy.

    Args:
        name: Logger name (typically __name__)
    """
    if name != ROOT_LOGGER_NAME and not name.startswith(ROOT_LOGGER_NAME + '.'):
        name = f'{ROOT_LOGGER_NAME}.{name}'
    return logging.getLogger(name)
