"""Status definitions and exceptions for ExpenseSync.

This module provides:
    - ErrorKind: closed set of failure kinds carried by every sync result
    - ERROR_MESSAGE / get_error_message: user-facing messages for each kind
    - Status: enumeration of configuration and local state problems
    - STATUS_MESSAGE / get_message: user-facing messages for each status
    - BaseStatusException: base exception carrying a Status
    - RemoteError: exception raised by the GitHub client internals
"""
import enum
import logging
from typing import Dict, Optional


class ErrorKind(enum.StrEnum):
    """Kinds of failures reported by the remote client and the orchestrator."""
    AUTH = 'auth'
    PERMISSION = 'permission'
    NOT_FOUND = 'not_found'
    CONFLICT = 'conflict'
    RATE_LIMIT = 'rate_limit'
    UNKNOWN = 'unknown'

    # Orchestrator
    BUSY = 'busy'
    NOT_CONFIGURED = 'not_configured'
    CODEC = 'codec'


ERROR_MESSAGE: Dict[ErrorKind, str] = {
    ErrorKind.AUTH: 'Authentication failed. Check that your GitHub token is valid and has not expired.',
    ErrorKind.PERMISSION: 'Permission denied. Make sure the token has write access to the repository.',
    ErrorKind.NOT_FOUND: 'Repository or branch not found. Check the repository name and branch.',
    ErrorKind.CONFLICT: 'The remote branch changed while syncing. Please sync again.',
    ErrorKind.RATE_LIMIT: 'GitHub rate limit exceeded. Please wait a few minutes and try again.',
    ErrorKind.UNKNOWN: 'An unexpected error occurred. Please check your connection and try again.',

    ErrorKind.BUSY: 'A sync operation is already in progress.',
    ErrorKind.NOT_CONFIGURED: 'Sync is not configured. Set a token, repository and branch first.',
    ErrorKind.CODEC: 'A remote file could not be read. It may have been edited by hand.',
}


def get_error_message(kind: ErrorKind) -> str:
    """
    Get the user-facing message for an error kind.

    Args:
        kind (ErrorKind): The error kind.

    Returns:
        str: The message associated with the kind.
    """
    return ERROR_MESSAGE.get(kind, ERROR_MESSAGE[ErrorKind.UNKNOWN])


class Status(enum.StrEnum):
    """Enumeration of application status codes."""
    UnknownStatus = enum.auto()
    Okay = enum.auto()

    # Config status
    SyncConfigNotFound = enum.auto()
    SyncConfigInvalid = enum.auto()

    # Token status
    TokenNotFound = enum.auto()
    TokenInvalid = enum.auto()

    # Local state
    StateInvalid = enum.auto()
    LedgerInvalid = enum.auto()


STATUS_MESSAGE: Dict[Status, str] = {
    Status.UnknownStatus: 'Unknown status. Please check the settings.',
    Status.Okay: 'Everything is okay.',

    Status.SyncConfigNotFound: 'Could not find the sync config.',
    Status.SyncConfigInvalid: 'The sync config seems to be incomplete, or contains invalid values.',

    Status.TokenNotFound: 'Could not find a GitHub token. Please configure a personal access token.',
    Status.TokenInvalid: 'The stored GitHub token is invalid. Please configure a new personal access token.',

    Status.StateInvalid: 'The local sync state is invalid. Try resetting it and syncing again.',
    Status.LedgerInvalid: 'The local ledger file could not be read.',
}


def get_message(status: Status) -> str:
    """
    Get the message for a given status.

    Args:
        status (Status): The status enum.

    Returns:
        str: The message associated with the status.
    """
    return STATUS_MESSAGE.get(status, 'Unknown status')


class BaseStatusException(Exception):
    """Base exception for status-based errors in ExpenseSync.

    Attributes:
        status (Status): Status code associated with this error.
        status_message (str): User-facing message for the status.

    Args:
        message (str): Optional additional context for the error.
    """
    status = Status.UnknownStatus

    def __init__(self, message: str = None):
        self.status_message = get_message(self.status)
        exception_message = f'{self.status_message} {message}' if message else self.status_message
        super().__init__(exception_message)

        logging.error(exception_message)

        from ..core.signals import signals
        signals.error.emit(message or self.status_message)


class UnknownException(BaseStatusException):
    """Exception for an unknown error during status processing."""
    pass


class SyncConfigNotFoundException(BaseStatusException):
    """Exception raised when the sync configuration file cannot be found."""
    status = Status.SyncConfigNotFound


class SyncConfigInvalidException(BaseStatusException):
    """Exception raised when the sync configuration is invalid or malformed."""
    status = Status.SyncConfigInvalid


class TokenNotFoundException(BaseStatusException):
    """Exception raised when no GitHub token has been stored."""
    status = Status.TokenNotFound


class TokenInvalidException(BaseStatusException):
    """Exception raised when the stored GitHub token is malformed."""
    status = Status.TokenInvalid


class StateInvalidException(BaseStatusException):
    """Exception raised when the local sync state database cannot be used."""
    status = Status.StateInvalid


class LedgerInvalidException(BaseStatusException):
    """Exception raised when the local ledger file cannot be decoded."""
    status = Status.LedgerInvalid


class RemoteError(Exception):
    """Raised by the GitHub client when a request fails.

    Never crosses the client's public boundary: every public client method
    converts it into a failed result value.

    Attributes:
        kind (ErrorKind): Classified failure kind.
        status_code (int | None): HTTP status code, if a response was received.
    """

    def __init__(self, kind: ErrorKind, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code
