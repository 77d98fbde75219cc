"""
Exception hierarchy for the Task Board client.

This module defines structured exceptions with error codes, context information,
and recovery suggestions so that the UI layer and the request gateway can tell
recoverable failures from session-ending ones.
"""

from datetime import datetime
from typing import Optional, Dict, Any, List
from enum import Enum


class ErrorCode(Enum):
    """Standardized error codes for the Task Board client."""

    # Authentication Errors (1000-1099)
    AUTH_INVALID_CREDENTIALS = "AUTH_1001"
    AUTH_USER_EXISTS = "AUTH_1002"
    AUTH_INVALID_REFRESH_TOKEN = "AUTH_1003"
    AUTH_NO_REFRESH_TOKEN = "AUTH_1004"
    AUTH_TOKEN_EXPIRED = "AUTH_1005"
    AUTH_SESSION_REPLACED = "AUTH_1006"

    # Request Errors (2000-2099)
    REQUEST_FAILED = "REQUEST_2001"
    REQUEST_NETWORK_FAILURE = "REQUEST_2002"
    REQUEST_TIMEOUT = "REQUEST_2003"
    REQUEST_INVALID_RESPONSE = "REQUEST_2004"

    # Validation Errors (4000-4099)
    VALIDATION_INVALID_INPUT = "VALIDATION_4001"
    VALIDATION_MISSING_REQUIRED_FIELD = "VALIDATION_4002"
    VALIDATION_PASSWORD_MISMATCH = "VALIDATION_4003"

    # Token Storage Errors (5000-5099)
    STORAGE_UNAVAILABLE = "STORAGE_5001"
    STORAGE_WRITE_FAILED = "STORAGE_5002"

    # Configuration Errors (8000-8099)
    CONFIG_FILE_NOT_FOUND = "CONFIG_8001"
    CONFIG_INVALID_VALUE = "CONFIG_8002"

    # Internal Errors (9000-9099)
    INTERNAL_UNEXPECTED_ERROR = "INTERNAL_9001"


class ErrorSeverity(Enum):
    """Error severity levels for logging and handling."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecoveryAction(Enum):
    """Suggested recovery actions for errors."""
    RETRY = "retry"
    REFRESH_TOKEN = "refresh_token"
    LOGIN_AGAIN = "login_again"
    FIX_INPUT = "fix_input"
    CHECK_CONNECTION = "check_connection"
    CONTACT_ADMIN = "contact_admin"
    IGNORE = "ignore"


class TaskBoardError(Exception):
    """
    Base exception class for all Task Board client errors.

    Provides structured error information including error codes, context,
    and recovery suggestions for consistent error handling.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[Dict[str, Any]] = None,
        recovery_actions: Optional[List[RecoveryAction]] = None,
        cause: Optional[Exception] = None,
        user_message: Optional[str] = None
    ):
        super().__init__(message)

        self.message = message
        self.error_code = error_code
        self.severity = severity
        self.context = context or {}
        self.recovery_actions = recovery_actions or []
        self.cause = cause
        self.user_message = user_message or message
        self.timestamp = datetime.now()

        if cause:
            self.context['cause_type'] = type(cause).__name__
            self.context['cause_message'] = str(cause)

    def __copy__(self):
        clone = type(self).__new__(type(self), *self.args)
        clone.__dict__.update(self.__dict__)
        clone.context = dict(self.context)
        clone.__cause__ = self.__cause__
        return clone

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary format for serialization."""
        return {
            'error': {
                'code': self.error_code.value,
                'type': type(self).__name__,
                'message': self.message,
                'user_message': self.user_message,
                'severity': self.severity.value,
                'timestamp': self.timestamp.isoformat(),
                'context': self.context,
                'recovery_actions': [action.value for action in self.recovery_actions],
                'cause': {
                    'type': self.context.get('cause_type'),
                    'message': self.context.get('cause_message')
                } if self.cause else None
            }
        }


class ValidationError(TaskBoardError):
    """Malformed input to login/register or to a board operation."""

    def __init__(self, message: str, field_name: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', None) or {}
        if field_name:
            context['field_name'] = field_name

        error_code = kwargs.pop('error_code', ErrorCode.VALIDATION_INVALID_INPUT)
        severity = kwargs.pop('severity', ErrorSeverity.LOW)
        recovery_actions = kwargs.pop('recovery_actions', [RecoveryAction.FIX_INPUT])

        super().__init__(
            message=message,
            error_code=error_code,
            severity=severity,
            recovery_actions=recovery_actions,
            context=context,
            **kwargs
        )


class AuthenticationError(TaskBoardError):
    """Expected outcomes of the authentication endpoints."""

    def __init__(self, message: str, error_code: ErrorCode, **kwargs):
        kwargs.setdefault('severity', ErrorSeverity.LOW)
        kwargs.setdefault('recovery_actions', [RecoveryAction.FIX_INPUT])
        super().__init__(message=message, error_code=error_code, **kwargs)


class InvalidCredentials(AuthenticationError):
    """Unknown user or wrong password."""

    def __init__(self, message: str = "Invalid email or password", **kwargs):
        super().__init__(message, ErrorCode.AUTH_INVALID_CREDENTIALS, **kwargs)


class UserExists(AuthenticationError):
    """Registration attempted for an email that is already taken."""

    def __init__(self, message: str = "User already exists", **kwargs):
        super().__init__(message, ErrorCode.AUTH_USER_EXISTS, **kwargs)


class SessionEndedError(TaskBoardError):
    """
    Failures that end the current session.

    Once one of these is raised the session it belonged to is gone: its
    tokens have been cleared, or replaced by a newer login.
    """

    def __init__(self, message: str, error_code: ErrorCode, **kwargs):
        kwargs.setdefault('severity', ErrorSeverity.HIGH)
        kwargs.setdefault('recovery_actions', [RecoveryAction.LOGIN_AGAIN])
        kwargs.setdefault('user_message', "Your session has ended, please log in again")
        super().__init__(message=message, error_code=error_code, **kwargs)


class InvalidRefreshToken(SessionEndedError):
    """The refresh token was malformed, of the wrong type, or expired."""

    def __init__(self, message: str = "Invalid refresh token", **kwargs):
        super().__init__(message, ErrorCode.AUTH_INVALID_REFRESH_TOKEN, **kwargs)


class NoRefreshToken(SessionEndedError):
    """A refresh was requested while no refresh token is stored."""

    def __init__(self, message: str = "No refresh token available", **kwargs):
        super().__init__(message, ErrorCode.AUTH_NO_REFRESH_TOKEN, **kwargs)


class SessionReplaced(SessionEndedError):
    """The session a pending refresh belonged to was logged out or replaced."""

    def __init__(self, message: str = "Session was closed while refreshing", **kwargs):
        super().__init__(message, ErrorCode.AUTH_SESSION_REPLACED, **kwargs)


class RequestFailed(TaskBoardError):
    """
    Generic non-auth request failure (error status or network failure).

    ``status`` is the HTTP status of the failed response, or ``None`` when
    no response was received at all.
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        method: Optional[str] = None,
        path: Optional[str] = None,
        **kwargs
    ):
        context = kwargs.pop('context', None) or {}
        context.update({'status': status, 'method': method, 'path': path})

        if 'error_code' not in kwargs:
            kwargs['error_code'] = (
                ErrorCode.REQUEST_NETWORK_FAILURE if status is None else ErrorCode.REQUEST_FAILED
            )
        kwargs.setdefault('recovery_actions', [RecoveryAction.RETRY, RecoveryAction.CHECK_CONNECTION])

        super().__init__(message=message, context=context, **kwargs)

        self.status = status
        self.method = method
        self.path = path


class TokenStorageError(TaskBoardError):
    """Token storage could not be written."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault('error_code', ErrorCode.STORAGE_WRITE_FAILED)
        kwargs.setdefault('severity', ErrorSeverity.HIGH)
        kwargs.setdefault('recovery_actions', [RecoveryAction.RETRY, RecoveryAction.CONTACT_ADMIN])
        super().__init__(message=message, **kwargs)


class ConfigurationError(TaskBoardError):
    """Configuration related errors."""

    def __init__(self, message: str, error_code: ErrorCode, config_key: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', None) or {}
        if config_key:
            context['config_key'] = config_key

        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.FIX_INPUT, RecoveryAction.CONTACT_ADMIN],
            context=context,
            **kwargs
        )


def handle_exception(
    exception: Exception,
    context: Optional[Dict[str, Any]] = None,
    default_error_code: ErrorCode = ErrorCode.INTERNAL_UNEXPECTED_ERROR
) -> TaskBoardError:
    """
    Convert a generic exception to a structured TaskBoardError.

    Args:
        exception: The original exception
        context: Additional context information
        default_error_code: Default error code if specific mapping not found

    Returns:
        Structured TaskBoardError
    """
    if isinstance(exception, TaskBoardError):
        return exception

    if isinstance(exception, (ConnectionError, TimeoutError)):
        error_code = (
            ErrorCode.REQUEST_TIMEOUT if isinstance(exception, TimeoutError)
            else ErrorCode.REQUEST_NETWORK_FAILURE
        )
        return RequestFailed(
            message=str(exception) or type(exception).__name__,
            error_code=error_code,
            context=context,
            cause=exception
        )

    if isinstance(exception, ValueError):
        return ValidationError(message=str(exception), context=context, cause=exception)

    return TaskBoardError(
        message=str(exception) or type(exception).__name__,
        error_code=default_error_code,
        context=context,
        cause=exception
    )
