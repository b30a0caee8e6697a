"""Status definitions and exceptions for ExpenseSync.

This module provides:
    - Status: enumeration of sync outcomes and failure classes
    - STATUS_MESSAGE: user-facing messages for each status
    - get_message: retrieve the message for a status
    - BaseStatusException: base exception carrying a Status
    - classify_error / classify_code: map raw service failures onto the taxonomy
    - raise_for_error: re-raise a raw failure as the matching status exception
"""
import enum
import json
import logging
import socket
import ssl
from typing import Dict, Optional, Type

import google.auth.exceptions
import httplib2
from googleapiclient.errors import HttpError


class Status(enum.StrEnum):
    """Enumeration of application status codes."""
    UnknownStatus = enum.auto()
    Okay = enum.auto()

    # Config status
    ConfigNotFound = enum.auto()
    ConfigInvalid = enum.auto()

    # Authentication status
    CredsNotFound = enum.auto()
    CredsInvalid = enum.auto()
    NotAuthenticated = enum.auto()

    # Remote store status
    Unreachable = enum.auto()
    NotFound = enum.auto()

    # Local cache status
    CacheInvalid = enum.auto()
    CacheUnavailable = enum.auto()

    # Reconciliation status
    NothingToSync = enum.auto()


STATUS_MESSAGE: Dict[Status, str] = {
    Status.UnknownStatus: 'Unknown status. Please check the settings.',
    Status.Okay: 'Everything is okay.',

    Status.ConfigNotFound: 'Could not find the sync config.',
    Status.ConfigInvalid: 'The sync config seems to be incomplete, or contains invalid values.',

    Status.CredsNotFound: 'Could not find the credentials. Please sign in again.',
    Status.CredsInvalid: 'Could not verify the credentials. Please sign in again.',
    Status.NotAuthenticated: 'Not signed in. Changes are kept on this device only.',

    Status.Unreachable: 'The remote store is unreachable. Changes are kept on this device until the next sync.',
    Status.NotFound: 'The remote store has no record for this user.',

    Status.CacheInvalid: 'The local snapshot is corrupt and was ignored.',
    Status.CacheUnavailable: 'The local cache could not be read or written.',

    Status.NothingToSync: 'nothing to sync',
}

# Google RPC status names and Firestore client error codes
CODE_MAP: Dict[str, Status] = {
    'not-found': Status.NotFound,
    'NOT_FOUND': Status.NotFound,
    'unauthenticated': Status.NotAuthenticated,
    'UNAUTHENTICATED': Status.NotAuthenticated,
    'permission-denied': Status.Unreachable,
    'PERMISSION_DENIED': Status.Unreachable,
    'unavailable': Status.Unreachable,
    'UNAVAILABLE': Status.Unreachable,
    'deadline-exceeded': Status.Unreachable,
    'DEADLINE_EXCEEDED': Status.Unreachable,
    'resource-exhausted': Status.Unreachable,
    'RESOURCE_EXHAUSTED': Status.Unreachable,
    'aborted': Status.Unreachable,
    'ABORTED': Status.Unreachable,
    'internal': Status.Unreachable,
    'INTERNAL': Status.Unreachable,
    'cancelled': Status.Unreachable,
    'CANCELLED': Status.Unreachable,
}

HTTP_STATUS_MAP: Dict[int, Status] = {
    401: Status.NotAuthenticated,
    403: Status.Unreachable,
    404: Status.NotFound,
    408: Status.Unreachable,
    409: Status.Unreachable,
    429: Status.Unreachable,
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
        log_level (int): Level the exception is logged at when raised.

    Args:
        message (str): Optional additional context for the error.
    """
    status = Status.UnknownStatus
    log_level = logging.ERROR

    def __init__(self, message: str = None):
        self.status_message = get_message(self.status)
        exception_message = f'{self.status_message} {message}' if message else self.status_message
        super().__init__(exception_message)

        logging.log(self.log_level, exception_message)


class UnknownException(BaseStatusException):
    """Exception for an unknown error during status processing."""
    pass


class ConfigNotFoundException(BaseStatusException):
    """Exception raised when the sync configuration file cannot be found."""
    status = Status.ConfigNotFound


class ConfigInvalidException(BaseStatusException):
    """Exception raised when the sync configuration is invalid or malformed."""
    status = Status.ConfigInvalid


class CredsNotFoundException(BaseStatusException):
    """Exception raised when stored Google credentials cannot be found."""
    status = Status.CredsNotFound


class CredsInvalidException(BaseStatusException):
    """Exception raised when stored Google credentials are invalid or expired."""
    status = Status.CredsInvalid


class NotAuthenticatedException(BaseStatusException):
    """Exception raised when the remote store rejects the session."""
    status = Status.NotAuthenticated
    log_level = logging.WARNING


class RemoteUnreachableException(BaseStatusException):
    """Exception raised when the remote store cannot be reached or times out."""
    status = Status.Unreachable
    log_level = logging.WARNING


class RecordNotFoundException(BaseStatusException):
    """Exception raised when the remote store has no document for the user."""
    status = Status.NotFound
    log_level = logging.DEBUG


class CacheInvalidException(BaseStatusException):
    """Exception raised when a persisted local snapshot cannot be decoded."""
    status = Status.CacheInvalid
    log_level = logging.WARNING


class CacheUnavailableException(BaseStatusException):
    """Exception raised when the local cache database cannot be used."""
    status = Status.CacheUnavailable


class NothingToSyncException(BaseStatusException):
    """Exception raised when neither store holds a record to reconcile."""
    status = Status.NothingToSync
    log_level = logging.INFO


EXCEPTION_MAP: Dict[Status, Type[BaseStatusException]] = {
    Status.NotAuthenticated: NotAuthenticatedException,
    Status.Unreachable: RemoteUnreachableException,
    Status.NotFound: RecordNotFoundException,
    Status.CacheInvalid: CacheInvalidException,
    Status.CacheUnavailable: CacheUnavailableException,
    Status.NothingToSync: NothingToSyncException,
    Status.CredsNotFound: CredsNotFoundException,
    Status.CredsInvalid: CredsInvalidException,
    Status.ConfigNotFound: ConfigNotFoundException,
    Status.ConfigInvalid: ConfigInvalidException,
}

# Exceptions a remote call may raise that leave the local cache as the only copy
REMOTE_FAILURES = (
    RemoteUnreachableException,
    NotAuthenticatedException,
    RecordNotFoundException,
    ConfigInvalidException,
)

# Raw failures the Google client stack raises during a request
TRANSPORT_ERRORS = (
    HttpError,
    OSError,
    httplib2.HttpLib2Error,
    google.auth.exceptions.GoogleAuthError,
)


def classify_code(code: Optional[str]) -> Status:
    """Map an opaque service error code onto the status taxonomy.

    Unknown codes are treated as unreachable: anything the service reports
    that is not explicitly a missing record or a missing session leaves the
    remote copy unconfirmed.

    Args:
        code: Firestore client code (e.g. 'permission-denied') or Google RPC status name.

    Returns:
        Status: The classified status.
    """
    if not code:
        return Status.Unreachable
    return CODE_MAP.get(code, Status.Unreachable)


def _http_error_code(ex: HttpError) -> Optional[str]:
    """Extract the Google RPC status name from an HttpError body, if present."""
    try:
        payload = json.loads(ex.content.decode('utf-8') if isinstance(ex.content, bytes) else ex.content)
    except (ValueError, TypeError, AttributeError):
        return None
    error = payload.get('error') if isinstance(payload, dict) else None
    if isinstance(error, dict):
        return error.get('status')
    return None


def classify_error(ex: BaseException) -> Status:
    """Classify a raw failure raised by a remote call.

    Args:
        ex: The exception raised by the transport or client library.

    Returns:
        Status: Unreachable, NotAuthenticated, NotFound, or the exception's own
        status if it already is a BaseStatusException.
    """
    if isinstance(ex, BaseStatusException):
        return ex.status

    if isinstance(ex, HttpError):
        http_status: Optional[int] = ex.resp.status if ex.resp is not None else None
        if http_status in HTTP_STATUS_MAP:
            return HTTP_STATUS_MAP[http_status]
        code = _http_error_code(ex)
        if code:
            return classify_code(code)
        return Status.Unreachable

    if isinstance(ex, google.auth.exceptions.RefreshError):
        return Status.NotAuthenticated
    if isinstance(ex, google.auth.exceptions.TransportError):
        return Status.Unreachable
    if isinstance(ex, google.auth.exceptions.GoogleAuthError):
        return Status.NotAuthenticated
    if isinstance(ex, (socket.timeout, TimeoutError, ssl.SSLError, ConnectionError)):
        return Status.Unreachable
    if isinstance(ex, httplib2.HttpLib2Error):
        return Status.Unreachable
    if isinstance(ex, OSError):
        return Status.Unreachable

    return Status.UnknownStatus


def raise_for_error(ex: BaseException, message: str = None) -> None:
    """Re-raise a raw remote failure as the matching status exception.

    Args:
        ex: The raw exception.
        message: Optional context added to the status message.

    Raises:
        BaseStatusException: The classified exception, chained to ``ex``.
    """
    if isinstance(ex, BaseStatusException):
        raise ex
    stat = classify_error(ex)
    exc_type = EXCEPTION_MAP.get(stat, UnknownException)
    raise exc_type(message or str(ex)) from ex
