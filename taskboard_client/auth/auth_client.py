"""
Authentication client for the Task Board service.

This module performs the login, register and refresh calls. It talks to the
transport directly, never through the request gateway, so a failing refresh
can never re-enter the refresh-and-retry path.
"""

import logging
from typing import Optional, Type

from taskboard_client.transport import ApiResponse, HTTPTransport
from taskboard_shared.exceptions import (
    ErrorCode, InvalidCredentials, InvalidRefreshToken, RequestFailed,
    TaskBoardError, UserExists, ValidationError
)
from taskboard_shared.interfaces import IAuthClient, ITokenStore
from taskboard_shared.logging_config import AuditLogger
from taskboard_shared.models import TokenPair

logger = logging.getLogger(__name__)


LOGIN_PATH = '/api/login'
REGISTER_PATH = '/api/register'
REFRESH_PATH = '/api/refresh'

# What an authorization failure means on each authentication endpoint
AUTH_ENDPOINT_ERRORS = {
    LOGIN_PATH: InvalidCredentials,
    REGISTER_PATH: UserExists,
    REFRESH_PATH: InvalidRefreshToken,
}

_VALIDATION_MARKERS = ('required', 'missing', 'invalid email', 'must be')


def normalize_path(path: str) -> str:
    """Strip query string and trailing slash so paths compare reliably."""
    path = '/' + path.split('?', 1)[0].strip('/')
    return path


def is_auth_path(path: str) -> bool:
    return normalize_path(path) in AUTH_ENDPOINT_ERRORS


def auth_error_for(path: str, response: ApiResponse) -> TaskBoardError:
    """Build the error an authorization failure on an auth endpoint maps to."""
    error_class: Type[TaskBoardError] = AUTH_ENDPOINT_ERRORS[normalize_path(path)]
    context = {'status': response.status}
    if isinstance(response.data, dict) and response.data.get('code'):
        context['code'] = response.data['code']
    return error_class(response.error_message(error_class.__name__), context=context)


def _looks_like_validation_error(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in _VALIDATION_MARKERS)


class AuthClient(IAuthClient):
    """
    Calls the authentication endpoints and records fresh token pairs.

    Every successful login, register and refresh saves the returned pair in
    the token store before returning it.
    """

    def __init__(self, transport: HTTPTransport, token_store: ITokenStore, audit_logger: Optional[AuditLogger] = None):
        self.transport = transport
        self.token_store = token_store
        self.audit = audit_logger or AuditLogger()

    async def login(self, email: str, password: str) -> TokenPair:
        """
        Log in with email and password.

        Raises:
            ValidationError: Missing fields
            InvalidCredentials: Unknown user or wrong password
            RequestFailed: Server or network failure
        """
        email = self._require(email, 'email')
        self._require(password, 'password')

        logger.info(f"Logging in as {email}")

        try:
            response = await self.transport.request(
                'POST', LOGIN_PATH, body={'email': email, 'password': password}
            )

            if not response.ok:
                message = response.error_message("Login failed")
                if response.status in (401, 403):
                    raise auth_error_for(LOGIN_PATH, response)
                if response.status in (400, 422):
                    if _looks_like_validation_error(message):
                        raise ValidationError(message, context={'status': response.status})
                    raise InvalidCredentials(message, context={'status': response.status})
                raise RequestFailed(message, status=response.status, method='POST', path=LOGIN_PATH)

            pair = self._store_pair(response, LOGIN_PATH)

        except TaskBoardError as e:
            self.audit.log_authentication(email, action="login", success=False, failure_reason=e.message)
            raise

        self.audit.log_authentication(email, action="login", success=True)
        return pair

    async def register(self, email: str, password: str, confirm_password: Optional[str] = None) -> TokenPair:
        """
        Create an account and log in.

        Raises:
            ValidationError: Missing fields or passwords that do not match
            UserExists: The email is already registered
            RequestFailed: Server or network failure
        """
        email = self._require(email, 'email')
        self._require(password, 'password')
        if confirm_password is not None and confirm_password != password:
            raise ValidationError(
                "Passwords do not match",
                field_name='confirm_password',
                error_code=ErrorCode.VALIDATION_PASSWORD_MISMATCH
            )

        logger.info(f"Registering {email}")

        try:
            response = await self.transport.request(
                'POST', REGISTER_PATH, body={'email': email, 'password': password}
            )

            if not response.ok:
                message = response.error_message("Registration failed")
                if response.status in (401, 403):
                    raise auth_error_for(REGISTER_PATH, response)
                if response.status in (400, 409, 422):
                    if 'exist' in message.lower() or response.status == 409:
                        raise UserExists(message, context={'status': response.status})
                    raise ValidationError(message, context={'status': response.status})
                raise RequestFailed(message, status=response.status, method='POST', path=REGISTER_PATH)

            pair = self._store_pair(response, REGISTER_PATH)

        except TaskBoardError as e:
            self.audit.log_authentication(email, action="register", success=False, failure_reason=e.message)
            raise

        self.audit.log_authentication(email, action="register", success=True)
        return pair

    async def refresh(self, refresh_token: str) -> TokenPair:
        """
        Exchange a refresh token for a new token pair.

        Any error response is reported as InvalidRefreshToken regardless of
        its status.

        Raises:
            InvalidRefreshToken: The service rejected the refresh token
            RequestFailed: No response was received
        """
        if not refresh_token:
            raise InvalidRefreshToken("Refresh token required")

        logger.debug("Requesting new token pair")

        response = await self.transport.request(
            'POST', REFRESH_PATH, body={'refreshToken': refresh_token}
        )

        if not response.ok:
            raise auth_error_for(REFRESH_PATH, response)

        return self._store_pair(response, REFRESH_PATH)

    def _store_pair(self, response: ApiResponse, path: str) -> TokenPair:
        if not isinstance(response.data, dict):
            raise RequestFailed(
                "Malformed authentication response",
                status=response.status,
                method='POST',
                path=path,
                error_code=ErrorCode.REQUEST_INVALID_RESPONSE
            )

        try:
            pair = TokenPair.from_response(response.data)
        except ValueError as e:
            raise RequestFailed(
                f"Malformed authentication response: {e}",
                status=response.status,
                method='POST',
                path=path,
                error_code=ErrorCode.REQUEST_INVALID_RESPONSE,
                cause=e
            )

        self.token_store.save(pair)
        return pair

    @staticmethod
    def _require(value: Optional[str], field_name: str) -> str:
        if value is None or not str(value).strip():
            raise ValidationError(
                f"{field_name.capitalize()} is required",
                field_name=field_name,
                error_code=ErrorCode.VALIDATION_MISSING_REQUIRED_FIELD
            )
        return str(value).strip()
