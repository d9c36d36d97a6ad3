import logging
import sys
import json
from datetime import datetime
from pathlib import Path
from logging.handlers import TimedRotatingFileHandler


class ColoredLogFormatter(logging.Formatter):
    """Console formatter with a colored level name"""

    COLORS = {
        'DEBUG': '\033[36m',  # Cyan
        'INFO': '\033[32m',  # Green
        'WARNING': '\033[33m',  # Yellow
        'ERROR': '\033[31m',  # Red
        'CRITICAL': '\033[35m',  # Purple
        'RESET': '\033[0m'
    }

    def format(self, record):
        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S')

        level_name = record.levelname
        colored_level = f"{self.COLORS.get(level_name, '')}{level_name}{self.COLORS['RESET']}"

        log_entry = f"[{timestamp}] {colored_level} {record.name}: {record.getMessage()}"
        return _append_details(self, record, log_entry)


class FileLogFormatter(logging.Formatter):
    """Plain formatter for file output (no colors)"""

    def format(self, record):
        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S')

        log_entry = f"[{timestamp}] {record.levelname} {record.name}: {record.getMessage()}"
        return _append_details(self, record, log_entry)


def _append_details(formatter: logging.Formatter, record: logging.LogRecord, log_entry: str) -> str:
    if record.exc_info:
        log_entry += f"\n{formatter.formatException(record.exc_info)}"

    if hasattr(record, 'context') and record.context:
        try:
            context_str = json.dumps(record.context, indent=2, default=str)
            log_entry += f"\nContext: {context_str}"
        except (TypeError, ValueError):
            log_entry += f"\nContext: {record.context}"

    return log_entry


def setup_logging(
        log_level=logging.INFO,
        log_dir='logs',
        app_name='sched-core',
        backup_count=30,
        log_to_file=True,
):
    """
    Configure a named logger with console output and daily file rotation
    """
    logger_instance = logging.getLogger(app_name)
    logger_instance.setLevel(log_level)

    # Prevent duplicate handlers if called multiple times
    if logger_instance.handlers:
        return logger_instance

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(ColoredLogFormatter())
    logger_instance.addHandler(console_handler)

    if not log_to_file:
        return logger_instance

    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    # filename with date: app-name-YYYY-MM-DD.log
    today = datetime.now().strftime('%Y-%m-%d')
    log_file = log_path / f"{app_name}-{today}.log"

    file_handler = TimedRotatingFileHandler(
        filename=str(log_file),
        when='midnight',
        interval=1,
        backupCount=backup_count,
        encoding='utf-8'
    )

    def namer(default_name):
        # TimedRotatingFileHandler appends .YYYY-MM-DD; keep app-name-YYYY-MM-DD.log
        return default_name.replace(f"{app_name}-{today}.log.", f"{app_name}-")

    file_handler.namer = namer
    file_handler.setFormatter(FileLogFormatter())
    logger_instance.addHandler(file_handler)

    return logger_instance


def log_with_context(logger, level, message, context=None, exc_info=False):
    """Log a message with additional context data"""
    extra = {'context': context} if context else {}
    logger.log(level, message, extra=extra, exc_info=exc_info)


def debug(logger, message, context=None):
    log_with_context(logger, logging.DEBUG, message, context)


def info(logger, message, context=None):
    log_with_context(logger, logging.INFO, message, context)


def warning(logger, message, context=None):
    log_with_context(logger, logging.WARNING, message, context)


def error(logger, message, context=None, exc_info=False):
    log_with_context(logger, logging.ERROR, message, context, exc_info=exc_info)


def critical(logger, message, context=None):
    log_with_context(logger, logging.CRITICAL, message, context)


def mask_secret(value: str) -> str:
    """Mask a bearer token or secret for logging"""
    if not value:
        return 'none'

    prefix = ''
    token = value
    if value.startswith('Bearer '):
        prefix = 'Bearer '
        token = value[7:]

    if len(token) > 8:
        return f"{prefix}{token[:4]}...{token[-4:]}"
    return f"{prefix}***"
