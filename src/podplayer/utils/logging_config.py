import logging
import os
from logging.handlers import RotatingFileHandler


def setup_logging(level: str = 'INFO', log_dir: str = 'logs'):
    """
    Configure logging for the player controller with both file and console output.
    Creates rotating log files with a max size of 10MB, keeping 5 backup files.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR)
        log_dir: Directory receiving podplayer.log
    """
    # Create logs directory if it doesn't exist
    if not os.path.exists(log_dir):
        os.makedirs(log_dir)

    log_level = getattr(logging, str(level).upper(), logging.INFO)

    # Configure root logger
    logger = logging.getLogger()
    logger.setLevel(log_level)

    # Avoid duplicate handlers when called twice (tests, restarts)
    for handler in list(logger.handlers):
        if getattr(handler, '_podplayer_handler', False):
            logger.removeHandler(handler)
            handler.close()

    # Format for logs
    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # File handler with rotation
    file_handler = RotatingFileHandler(
        os.path.join(log_dir, 'podplayer.log'),
        maxBytes=10_000_000,  # 10MB
        backupCount=5,
        encoding='utf-8'
    )
    file_handler.setFormatter(formatter)
    file_handler.setLevel(log_level)
    file_handler._podplayer_handler = True

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.setLevel(log_level)
    console_handler._podplayer_handler = True

    # Add handlers to root logger
    logger.addHandler(file_handler)
    logger.addHandler(console_handler)
