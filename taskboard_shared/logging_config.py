"""
Logging configuration for the Task Board client.

This module provides structured logging with an audit trail of authentication
and session events, and configurable output formats for the client library
and its command line.
"""

import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional
from enum import Enum

from taskboard_shared.exceptions import TaskBoardError


class LogLevel(Enum):
    """Log level enumeration."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(Enum):
    """Log format enumeration."""
    STANDARD = "standard"
    JSON = "json"
    DETAILED = "detailed"


class AuditEventType(Enum):
    """Types of events that should be audited."""
    AUTHENTICATION = "authentication"
    TOKEN_REFRESH = "token_refresh"
    SESSION_ENDED = "session_ended"
    LOGOUT = "logout"
    ERROR_EVENT = "error_event"


# LogRecord attributes that are not user-supplied extras
_RESERVED_RECORD_FIELDS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename',
    'module', 'lineno', 'funcName', 'created', 'msecs', 'relativeCreated',
    'thread', 'threadName', 'processName', 'process', 'taskName', 'message',
    'exc_info', 'exc_text', 'stack_info', 'error_info', 'audit_info',
}


def mask_token(token: Optional[str], visible: int = 8) -> str:
    """Shorten a token for log output."""
    if not token:
        return "<none>"
    if len(token) <= visible:
        return token
    return f"{token[:visible]}..."


class StructuredFormatter(logging.Formatter):
    """
    Formatter that outputs structured JSON logs with consistent fields.
    """

    def __init__(self, include_extra_fields: bool = True):
        super().__init__()
        self.include_extra_fields = include_extra_fields

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON."""
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
            'process': os.getpid(),
        }

        if record.exc_info:
            log_entry['exception'] = {
                'type': record.exc_info[0].__name__ if record.exc_info[0] else None,
                'message': str(record.exc_info[1]) if record.exc_info[1] else None,
                'traceback': self.formatException(record.exc_info)
            }

        error = getattr(record, 'error_info', None)
        if isinstance(error, TaskBoardError):
            log_entry['error'] = {
                'code': error.error_code.value,
                'type': type(error).__name__,
                'severity': error.severity.value,
                'context': error.context,
                'recovery_actions': [action.value for action in error.recovery_actions],
                'user_message': error.user_message
            }

        if hasattr(record, 'audit_info'):
            log_entry['audit'] = record.audit_info

        if self.include_extra_fields:
            extra_fields = {
                key: value for key, value in record.__dict__.items()
                if key not in _RESERVED_RECORD_FIELDS
            }
            if extra_fields:
                log_entry['extra'] = extra_fields

        return json.dumps(log_entry, default=str, ensure_ascii=False)


class DetailedFormatter(logging.Formatter):
    """
    Detailed human-readable formatter.
    """

    def __init__(self):
        super().__init__(
            fmt='%(asctime)s | %(levelname)-8s | %(name)-30s | %(funcName)-15s:%(lineno)-4d | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    def format(self, record: logging.LogRecord) -> str:
        formatted = super().format(record)

        error = getattr(record, 'error_info', None)
        if isinstance(error, TaskBoardError):
            formatted += f"\n  Error Code: {error.error_code.value}"
            formatted += f"\n  Severity: {error.severity.value}"
            if error.context:
                formatted += f"\n  Context: {json.dumps(error.context, indent=2, default=str)}"
            if error.recovery_actions:
                actions = [action.value for action in error.recovery_actions]
                formatted += f"\n  Recovery Actions: {', '.join(actions)}"

        if hasattr(record, 'audit_info'):
            formatted += f"\n  Audit: {json.dumps(record.audit_info, indent=2, default=str)}"

        return formatted


class AuditLogger:
    """
    Logger for authentication and session events.
    """

    def __init__(self, logger_name: str = "taskboard.audit"):
        self.logger = logging.getLogger(logger_name)

    def log_event(
        self,
        event_type: AuditEventType,
        message: str,
        user_id: Optional[str] = None,
        result: Optional[str] = None,
        additional_context: Optional[Dict[str, Any]] = None,
        level: int = logging.INFO
    ):
        """
        Log an audit event with structured information.

        Args:
            event_type: Type of audit event
            message: Human-readable message
            user_id: Subject of the tokens involved, if known
            result: Result of the operation (success, failure, etc.)
            additional_context: Additional context information
            level: Log level for the record
        """
        audit_info = {
            'event_type': event_type.value,
            'timestamp': datetime.now().isoformat(),
            'user_id': user_id,
            'result': result,
            'context': additional_context or {}
        }
        audit_info = {k: v for k, v in audit_info.items() if v is not None}

        self.logger.log(level, message, extra={'audit_info': audit_info})

    def log_authentication(
        self,
        email: str,
        action: str = "login",
        success: bool = True,
        failure_reason: Optional[str] = None
    ):
        """Log login and registration attempts."""
        context = {'email': email, 'action': action}
        if failure_reason:
            context['failure_reason'] = failure_reason

        self.log_event(
            event_type=AuditEventType.AUTHENTICATION,
            message=f"{action.capitalize()} {'successful' if success else 'failed'} for {email}",
            result="success" if success else "failure",
            additional_context=context,
            level=logging.INFO if success else logging.WARNING
        )

    def log_token_refresh(
        self,
        success: bool,
        waiters: int = 0,
        failure_reason: Optional[str] = None
    ):
        """Log the outcome of a refresh episode."""
        context: Dict[str, Any] = {'waiters': waiters}
        if failure_reason:
            context['failure_reason'] = failure_reason

        self.log_event(
            event_type=AuditEventType.TOKEN_REFRESH,
            message=f"Token refresh {'succeeded' if success else 'failed'} ({waiters} waiting requests)",
            result="success" if success else "failure",
            additional_context=context,
            level=logging.INFO if success else logging.WARNING
        )

    def log_session_ended(self, reason: str, error: Optional[TaskBoardError] = None):
        """Log an involuntary end of session."""
        context: Dict[str, Any] = {'reason': reason}
        if error is not None:
            context['error_code'] = error.error_code.value

        self.log_event(
            event_type=AuditEventType.SESSION_ENDED,
            message=f"Session ended: {reason}",
            result="ended",
            additional_context=context,
            level=logging.WARNING
        )

    def log_logout(self, user_id: Optional[str] = None):
        self.log_event(
            event_type=AuditEventType.LOGOUT,
            message="User logged out",
            user_id=user_id,
            result="success"
        )

    def log_error(self, error: TaskBoardError):
        """Log error events."""
        self.log_event(
            event_type=AuditEventType.ERROR_EVENT,
            message=f"Error occurred: {error.message}",
            result="error",
            additional_context={
                'error_code': error.error_code.value,
                'severity': error.severity.value,
                'context': error.context,
                'recovery_actions': [action.value for action in error.recovery_actions]
            },
            level=logging.ERROR
        )


def setup_logging(
    log_level: LogLevel = LogLevel.INFO,
    log_format: LogFormat = LogFormat.STANDARD,
    log_file: Optional[str] = None,
    max_file_size: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
    enable_console: bool = True,
    audit_file: Optional[str] = None
) -> Dict[str, logging.Logger]:
    """
    Set up logging for the client.

    Args:
        log_level: Minimum log level to capture
        log_format: Format for log output
        log_file: Path to main log file (optional)
        max_file_size: Maximum size of log files before rotation
        backup_count: Number of backup files to keep
        enable_console: Whether to log to stderr
        audit_file: Path to a separate audit log file (optional)

    Returns:
        Dictionary of configured loggers
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.value))

    if log_format == LogFormat.JSON:
        formatter = StructuredFormatter()
    elif log_format == LogFormat.DETAILED:
        formatter = DetailedFormatter()
    else:
        formatter = logging.Formatter(
            fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    if enable_console:
        # stdout is reserved for command output
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=max_file_size,
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    audit_logger = logging.getLogger('taskboard.audit')
    for handler in audit_logger.handlers[:]:
        audit_logger.removeHandler(handler)

    if audit_file:
        audit_path = Path(audit_file).expanduser()
        audit_path.parent.mkdir(parents=True, exist_ok=True)

        audit_handler = logging.handlers.RotatingFileHandler(
            audit_path,
            maxBytes=max_file_size,
            backupCount=backup_count,
            encoding='utf-8'
        )
        audit_handler.setFormatter(StructuredFormatter())
        audit_logger.addHandler(audit_handler)

    return {
        'root': root_logger,
        'client': logging.getLogger('taskboard_client'),
        'auth': logging.getLogger('taskboard_client.auth'),
        'audit': audit_logger,
    }


def log_structured_error(logger: logging.Logger, error: TaskBoardError, level: int = logging.ERROR):
    """
    Log a structured error with full context information.

    Args:
        logger: Logger instance to use
        error: The structured error to log
        level: Log level for the record
    """
    logger.log(level, error.message, extra={'error_info': error})
