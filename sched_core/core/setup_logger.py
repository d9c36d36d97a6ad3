"""
Centralized logger factory for the application
Provides separate loggers for the API, the periodic workers and the database layer
"""
import logging

from sched_core.core.config import settings
from sched_core.core.logger import setup_logging

_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

# API Logger - trigger endpoints and webhook ingress
api_logger = setup_logging(
    log_level=_level,
    log_dir=settings.LOG_DIR,
    app_name='api',
    backup_count=30,
    log_to_file=settings.LOG_TO_FILE,
)

# Worker Logger - notification, webhook and reconciliation batches
worker_logger = setup_logging(
    log_level=_level,
    log_dir=settings.LOG_DIR,
    app_name='worker',
    backup_count=30,
    log_to_file=settings.LOG_TO_FILE,
)

# Database Logger - only warnings and errors
db_logger = setup_logging(
    log_level=logging.WARNING,
    log_dir=settings.LOG_DIR,
    app_name='db',
    backup_count=30,
    log_to_file=settings.LOG_TO_FILE,
)


def get_logger(name: str):
    """
    Get a logger by name

    Args:
        name: Logger name ('api', 'worker', 'database')

    Returns:
        Logger instance
    """
    loggers = {
        'api': api_logger,
        'worker': worker_logger,
        'database': db_logger
    }

    return loggers.get(name, api_logger)
