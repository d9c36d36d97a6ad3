from sched_core.core import config
from sched_core.core.config import settings, Settings
from sched_core.core.setup_logger import get_logger, api_logger, worker_logger, db_logger

__all__ = [
    'config',
    'settings',
    'Settings',
    'worker_logger',
    'db_logger',
    'get_logger',
    'api_logger',
]
