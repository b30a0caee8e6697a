"""
Session identity and Google credential management.

The account service (sign-in, password changes, account deletion) lives
outside this package. It reports the signed-in user through
:meth:`AuthManager.sign_in` / :meth:`AuthManager.sign_out`; the sync layer
only reads the resulting :class:`~ExpenseSync.core.model.Session`.

Credentials for the remote store are loaded from ``creds.json`` in the auth
directory: either a service-account key or an authorized-user token file.
"""

import json
import logging
import pathlib
import threading
from typing import Any, Dict, Optional

import google.auth.exceptions
import google.auth.transport.requests
import google.oauth2.credentials
import google.oauth2.service_account
from PySide6 import QtCore

from .model import Session
from ..settings import lib
from ..status import status

DEFAULT_SCOPES = ['https://www.googleapis.com/auth/datastore', ]


def load_creds(path=None) -> Any:
    """
    Load Google credentials from a JSON file.

    Args:
        path: Credentials file. Defaults to the configured ``creds_path``.

    Returns:
        Service-account or authorized-user credentials.

    Raises:
        status.CredsNotFoundException: If the file is missing.
        status.CredsInvalidException: If the file cannot be parsed.
    """
    path = pathlib.Path(path) if path else lib.get_settings().creds_path
    if not path.exists():
        raise status.CredsNotFoundException(f'No credentials at {path}.')

    try:
        with path.open('r', encoding='utf-8') as f:
            info: Dict[str, Any] = json.load(f)
        if info.get('type') == 'service_account':
            creds = google.oauth2.service_account.Credentials.from_service_account_info(
                info, scopes=DEFAULT_SCOPES)
        else:
            creds = google.oauth2.credentials.Credentials.from_authorized_user_info(
                info, scopes=DEFAULT_SCOPES)
    except (ValueError, KeyError, json.JSONDecodeError) as ex:
        raise status.CredsInvalidException(f'Failed to load credentials: {ex}') from ex

    logging.debug(f'Credentials loaded from {path}.')
    return creds


def save_creds(creds: google.oauth2.credentials.Credentials, path=None) -> None:
    """Persist refreshed authorized-user credentials."""
    path = pathlib.Path(path) if path else lib.get_settings().creds_path
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open('w', encoding='utf-8') as f:
        f.write(creds.to_json())
    logging.debug(f'Credentials saved to {path}.')


class AuthManager(QtCore.QObject):
    """Holds the current session and the remote store credentials.

    Signals:
        sessionChanged (object): Emitted with the new Session, or None on sign-out.
    """
    sessionChanged = QtCore.Signal(object)

    def __init__(self, creds_path=None, parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent)
        self._lock = threading.Lock()
        self._creds: Any = None
        self._creds_path = creds_path
        self._session: Optional[Session] = None

    @property
    def session(self) -> Optional[Session]:
        return self._session

    def sign_in(self, user_id: str, email: Optional[str] = None) -> Session:
        """Record the session the account service authenticated."""
        session = Session(user_id=user_id, email=email)
        self._session = session
        logging.info(f'Signed in: {email or user_id}')
        self.sessionChanged.emit(session)
        return session

    def sign_out(self) -> None:
        if self._session is None:
            return
        logging.info('Signed out.')
        self._session = None
        with self._lock:
            self._creds = None
        self.sessionChanged.emit(None)

    def get_valid_credentials(self) -> Any:
        """
        Return valid credentials without any user interaction.

        Raises:
            status.CredsNotFoundException: If no credentials file exists.
            status.CredsInvalidException: If the file is corrupt.
            status.NotAuthenticatedException: If an expired token cannot be refreshed.
        """
        with self._lock:
            if self._creds is None:
                self._creds = load_creds(self._creds_path)

            if self._creds.expired and getattr(self._creds, 'refresh_token', None):
                try:
                    self._creds.refresh(google.auth.transport.requests.Request())
                except google.auth.exceptions.GoogleAuthError as ex:
                    raise status.NotAuthenticatedException(f'Failed to refresh credentials: {ex}') from ex
                save_creds(self._creds, self._creds_path)

            return self._creds
