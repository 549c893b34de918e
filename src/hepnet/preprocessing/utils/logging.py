# /hepnet/src/hepnet/preprocessing/utils/logging.py

"""
Preprocessing Logging Infrastructure

Structured logging for the preprocessing pipeline. Library modules only log
through ``logging.getLogger(__name__)``; handlers are attached by
``setup_preprocessing_logging`` which the entry point calls.

Key Features:
- Structured logging with JSON and text formatters
- Persistent and scoped context (task name, stage) attached to every record
- Timers and counters for stage-level performance figures
- Process memory and CPU figures attached by a psutil-based filter
- Rotating log files
"""

import json
import logging
import logging.handlers
import os
import sys
import threading
import time
import traceback
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import psutil


PACKAGE_LOGGER = "hepnet"

# Attributes every LogRecord carries; anything else came in through ``extra``
_RECORD_ATTRIBUTES = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: value for key, value in record.__dict__.items()
        if key not in _RECORD_ATTRIBUTES and not key.startswith('_')
    }


class StructuredFormatter(logging.Formatter):
    """
    JSON-structured log formatter with consistent schema.
    """

    def __init__(self, include_extra: bool = True):
        super().__init__()
        self.include_extra = include_extra
        self.hostname = os.uname().nodename if hasattr(os, 'uname') else 'unknown'

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
            'process': record.process,
            'hostname': self.hostname
        }

        if record.exc_info:
            log_entry['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': traceback.format_exception(*record.exc_info)
            }

        if self.include_extra:
            extra = {}
            for key, value in _extra_fields(record).items():
                try:
                    json.dumps(value)
                    extra[key] = value
                except (TypeError, ValueError):
                    extra[key] = str(value)

            if extra:
                log_entry['extra'] = extra

        return json.dumps(log_entry)


class TextFormatter(logging.Formatter):
    """
    Human-readable text formatter; extra fields are appended as key=value pairs.
    """

    def __init__(self, include_extra: bool = True):
        super().__init__('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        self.include_extra = include_extra

    def format(self, record: logging.LogRecord) -> str:
        base_message = super().format(record)

        if self.include_extra:
            extra_fields = [f"{key}={value}" for key, value in _extra_fields(record).items()]
            if extra_fields:
                base_message += f" [{', '.join(extra_fields)}]"

        return base_message


class PerformanceLogFilter(logging.Filter):
    """
    Attaches process memory and CPU usage to every record passing through.
    """

    def __init__(self):
        super().__init__()
        self._process = psutil.Process()

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, 'memory_usage_mb'):
            try:
                record.memory_usage_mb = self._process.memory_info().rss / (1024 * 1024)
                record.cpu_percent = self._process.cpu_percent()
            except psutil.Error:
                record.memory_usage_mb = None
                record.cpu_percent = None

        return True


class PipelineLogger:
    """
    High-level logger with persistent context, timers and counters.
    """

    def __init__(self, name: str, config: Optional[Dict[str, Any]] = None):
        """
        Initialize the logger.

        Args:
            name: Logger name (usually component name)
            config: Logging configuration dictionary; handlers are only
                attached when one is given and the logger has none yet
        """
        self.name = name
        self.config = config
        self.logger = logging.getLogger(name)

        self._context: Dict[str, Any] = {}
        self._context_lock = threading.RLock()

        self._timers: Dict[str, float] = {}
        self._counters: Dict[str, int] = {}

        if config is not None and not self.logger.handlers:
            self._configure_logger(config)

    def _configure_logger(self, config: Dict[str, Any]) -> None:
        """Configure logger with handlers and formatters."""
        log_level = config.get('log_level', 'INFO').upper()
        self.logger.setLevel(getattr(logging, log_level))

        perf_filter = PerformanceLogFilter()

        if config.get('enable_console', True):
            console_handler = logging.StreamHandler(sys.stdout)

            if config.get('log_format', 'text') == 'json':
                console_handler.setFormatter(StructuredFormatter())
            else:
                console_handler.setFormatter(TextFormatter())

            console_handler.addFilter(perf_filter)
            self.logger.addHandler(console_handler)

        if config.get('enable_file', True):
            log_dir = Path(config.get('log_dir', 'logs/preprocessing'))
            log_dir.mkdir(parents=True, exist_ok=True)

            log_file = log_dir / f"{config.get('log_file_prefix', 'preprocessing')}.log"

            file_handler = logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=config.get('log_rotation_size_mb', 100) * 1024 * 1024,
                backupCount=config.get('log_retention_count', 10)
            )

            file_handler.setFormatter(StructuredFormatter())
            file_handler.addFilter(perf_filter)
            self.logger.addHandler(file_handler)

    def set_context(self, **kwargs) -> None:
        """Set persistent context for all log messages."""
        with self._context_lock:
            self._context.update(kwargs)

    def clear_context(self) -> None:
        with self._context_lock:
            self._context.clear()

    @contextmanager
    def context(self, **kwargs):
        """Temporary context for log messages."""
        with self._context_lock:
            old_context = self._context.copy()
        try:
            self.set_context(**kwargs)
            yield
        finally:
            with self._context_lock:
                self._context = old_context

    def _log_with_context(self, level: int, message: str,
                          extra: Optional[Dict[str, Any]] = None,
                          exc_info: bool = False) -> None:
        combined_extra = {}

        with self._context_lock:
            combined_extra.update(self._context)

        if extra:
            combined_extra.update(extra)

        self.logger.log(level, message, extra=combined_extra or None, exc_info=exc_info)

    def debug(self, message: str, extra: Optional[Dict[str, Any]] = None) -> None:
        self._log_with_context(logging.DEBUG, message, extra)

    def info(self, message: str, extra: Optional[Dict[str, Any]] = None) -> None:
        self._log_with_context(logging.INFO, message, extra)

    def warning(self, message: str, extra: Optional[Dict[str, Any]] = None) -> None:
        self._log_with_context(logging.WARNING, message, extra)

    def error(self, message: str, extra: Optional[Dict[str, Any]] = None,
              exc_info: bool = True) -> None:
        """Log error message with exception info."""
        self._log_with_context(logging.ERROR, message, extra, exc_info=exc_info)

    def start_timer(self, timer_name: str) -> None:
        self._timers[timer_name] = time.time()
        self.debug("timer.started", extra={'timer_name': timer_name})

    def stop_timer(self, timer_name: str, log_result: bool = True) -> float:
        """Stop a named timer and optionally log the duration."""
        if timer_name not in self._timers:
            self.warning("timer.not_found", extra={'timer_name': timer_name})
            return 0.0

        duration = time.time() - self._timers.pop(timer_name)

        if log_result:
            self.info("timer.completed", extra={
                'timer_name': timer_name,
                'duration_seconds': duration
            })

        return duration

    def increment_counter(self, counter_name: str, value: int = 1) -> int:
        self._counters[counter_name] = self._counters.get(counter_name, 0) + value
        return self._counters[counter_name]

    def log_performance_metrics(self) -> None:
        """Log current process resource usage, timers and counters."""
        process = psutil.Process()

        self.info("performance.metrics", extra={
            'memory_usage_mb': process.memory_info().rss / (1024 * 1024),
            'cpu_percent': process.cpu_percent(),
            'threads': process.num_threads(),
            'active_timers': list(self._timers.keys()),
            'counters': self._counters.copy()
        })


def setup_preprocessing_logging(level: str = "INFO",
                                log_format: str = "json",
                                log_dir: str = "logs/preprocessing",
                                enable_console: bool = True,
                                enable_file: bool = True) -> Dict[str, Any]:
    """
    Attach handlers to the package logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Console log format (json, text); files are always JSON
        log_dir: Directory for log files
        enable_console: Enable console logging
        enable_file: Enable file logging

    Returns:
        Logging configuration dictionary
    """
    config = {
        'log_level': level.upper(),
        'log_format': log_format.lower(),
        'log_dir': log_dir,
        'enable_console': enable_console,
        'enable_file': enable_file,
        'log_file_prefix': 'preprocessing',
        'log_rotation_size_mb': 100,
        'log_retention_count': 10
    }

    root_logger = PipelineLogger(PACKAGE_LOGGER, config)

    root_logger.info("preprocessing_logging.initialized", extra={
        'log_level': config['log_level'],
        'log_format': config['log_format']
    })

    return config


def get_pipeline_logger(name: str) -> PipelineLogger:
    """Logger for a component; records propagate to the package handlers."""
    return PipelineLogger(name)


@contextmanager
def preprocessing_session(logger: PipelineLogger, session_id: str, **context):
    """Context manager for one preprocessing run."""
    logger.set_context(session_id=session_id, **context)
    logger.info("preprocessing_session.started", extra={'session_id': session_id})

    start_time = time.time()
    try:
        yield logger
    except Exception as e:
        logger.error("preprocessing_session.failed", extra={
            'session_id': session_id,
            'error': str(e),
            'duration': time.time() - start_time
        })
        raise
    finally:
        logger.info("preprocessing_session.completed", extra={
            'session_id': session_id,
            'duration': time.time() - start_time
        })
        logger.clear_context()


@contextmanager
def stage_logging(logger: PipelineLogger, stage_name: str, **context):
    """Context manager for pipeline stage logging."""
    with logger.context(stage=stage_name, **context):
        logger.info("stage.started", extra={'stage_name': stage_name})

        start_time = time.time()
        try:
            yield logger
        except Exception as e:
            logger.error("stage.failed", extra={
                'stage_name': stage_name,
                'error': str(e),
                'duration': time.time() - start_time
            })
            raise
        finally:
            logger.info("stage.completed", extra={
                'stage_name': stage_name,
                'duration': time.time() - start_time
            })
