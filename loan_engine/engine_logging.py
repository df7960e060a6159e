# loan_engine/engine_logging.py
"""
Structured JSON logging utility for the Loan Engine.
Provides consistent, environment-aware logging across all components.
"""

import logging as _logging
import logging.config as _logging_config
import os
import time
from pathlib import Path
from typing import Any, Dict, Optional

from pythonjsonlogger.json import JsonFormatter


class EngineJsonFormatter(JsonFormatter):
    """JSON formatter that adds workspace and actor context to each record."""

    def add_fields(self, log_record: Dict[str, Any], record: _logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record['timestamp'] = time.time()
        log_record['environment'] = os.getenv('APP_ENV', 'dev')
        log_record['component'] = getattr(record, 'component', 'unknown')

        # Request and domain context set through LogContext or `extra`
        for field in ('trace_id', 'request_path', 'request_method', 'request_actor_id',
                      'actor_id', 'workspace_id', 'drift_id'):
            if hasattr(record, field):
                log_record[field] = getattr(record, field)

        if hasattr(record, 'duration_ms'):
            log_record['duration_ms'] = record.duration_ms
        if hasattr(record, 'status_code'):
            log_record['status_code'] = record.status_code


def setup_logging(log_file: Optional[Path] = None) -> _logging.Logger:
    """
    Set up logging configuration for the Loan Engine.

    Args:
        log_file: Path to log file. If None, logs only to console.

    Returns:
        Configured root logger of the engine namespace
    """
    env = os.getenv('APP_ENV', 'dev')
    level_name = os.getenv('LOG_LEVEL', 'INFO').upper()
    if not isinstance(getattr(_logging, level_name, None), int):
        level_name = 'INFO'

    formatter = 'json' if env != 'dev' else 'console'
    handlers_list = ['console']
    handlers_config = {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': formatter,
            'level': level_name,
            'stream': 'ext://sys.stdout'
        }
    }

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers_config['file'] = {
            'class': 'logging.handlers.RotatingFileHandler',
            'filename': str(log_file),
            'formatter': formatter,
            'level': level_name,
            'maxBytes': 10485760,  # 10MB
            'backupCount': 5,
            'encoding': 'utf-8'
        }
        handlers_list.append('file')

    config = {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'json': {
                '()': EngineJsonFormatter,
                'format': '%(name)s %(levelname)s %(message)s'
            },
            'console': {
                'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                'datefmt': '%Y-%m-%d %H:%M:%S'
            }
        },
        'handlers': handlers_config,
        'root': {
            'level': level_name,
            'handlers': handlers_list
        },
        'loggers': {
            'loan_engine': {
                'level': 'DEBUG' if env == 'dev' else level_name,
                # Propagate to root so pytest caplog sees engine records
                'handlers': [],
                'propagate': True
            },
            'uvicorn': {
                'level': 'INFO',
                'handlers': handlers_list,
                'propagate': False
            },
            'sqlalchemy.engine': {
                'level': 'WARNING',
                'handlers': handlers_list,
                'propagate': False
            }
        }
    }

    _logging_config.dictConfig(config)
    return _logging.getLogger('loan_engine')


def get_logger(name: str) -> _logging.Logger:
    """
    Get a logger instance under the engine namespace.

    Args:
        name: Logger name, typically __name__ of the calling module

    Returns:
        Logger instance
    """
    if name == 'loan_engine' or name.startswith('loan_engine.'):
        return _logging.getLogger(name)
    return _logging.getLogger(f"loan_engine.{name}")


class LogContext:
    """
    Context manager for adding consistent fields to log records.
    """

    def __init__(self, **fields):
        self.fields = fields
        self.old_factory = _logging.getLogRecordFactory()

    def __enter__(self):
        def record_factory(*args, **kwargs):
            record = self.old_factory(*args, **kwargs)
            for key, value in self.fields.items():
                setattr(record, key, value)
            return record

        _logging.setLogRecordFactory(record_factory)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        _logging.setLogRecordFactory(self.old_factory)


def sanitize_for_logging(data: Any) -> Any:
    """
    Remove sensitive information from data before logging.

    Args:
        data: Data to sanitize (dict, str, list, etc.)

    Returns:
        Sanitized data safe for logging
    """
    if isinstance(data, dict):
        sanitized = {}
        for key, value in data.items():
            key_lower = str(key).lower()
            if any(sensitive in key_lower for sensitive in ['password', 'token', 'secret', 'authorization']):
                sanitized[key] = '***REDACTED***'
            else:
                sanitized[key] = sanitize_for_logging(value)
        return sanitized
    elif isinstance(data, list):
        return [sanitize_for_logging(item) for item in data]
    elif isinstance(data, str):
        s = data.lower()
        if any(marker in s for marker in ['authorization:', 'bearer ', 'password=']):
            return '***REDACTED***'

    return data
