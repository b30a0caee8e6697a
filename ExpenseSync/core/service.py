"""Remote document store for user records.

:class:`RemoteStore` is the contract the sync coordinator consumes:
``read`` returns None for a missing document and raises
:class:`~ExpenseSync.status.status.RemoteUnreachableException` (or
:class:`~ExpenseSync.status.status.NotAuthenticatedException`) when the store
cannot be used, so "not found" and "unreachable" never look alike.

:class:`FirestoreRemoteStore` implements it on the Cloud Firestore REST API
through the Google API discovery client. Every request is bounded by the HTTP
timeout configured in the ``remote`` settings section.
"""

import abc
import datetime
import logging
import re
from collections.abc import Mapping
from typing import Any, Dict, List, Optional

import google_auth_httplib2
import httplib2
from googleapiclient.discovery import build

from .model import UserRecord
from ..settings import lib
from ..status import status

SIMPLE_FIELD_PATH = re.compile(r'[A-Za-z_][A-Za-z_0-9]*')


class RemoteStore(abc.ABC):
    """Abstract remote document store keyed by user id."""

    @abc.abstractmethod
    def read(self, user_id: str) -> Optional[UserRecord]:
        """Return the user's record, or None if the store has none.

        Raises:
            status.RemoteUnreachableException: If the store cannot be reached.
            status.NotAuthenticatedException: If the store rejects the session.
        """

    @abc.abstractmethod
    def write(self, user_id: str, record: UserRecord, merge: bool = False) -> None:
        """Write a record. With ``merge`` only the record's fields are replaced.

        Raises:
            status.RemoteUnreachableException: If the store cannot be reached.
            status.NotAuthenticatedException: If the store rejects the session.
        """

    @abc.abstractmethod
    def delete(self, user_id: str) -> None:
        """Delete the user's record. Deleting a missing record is a no-op."""


def encode_value(value: Any) -> Dict[str, Any]:
    """Encode a Python value as a Firestore typed value.

    Raises:
        TypeError: If the value has no Firestore representation.
    """
    if value is None:
        return {'nullValue': None}
    if isinstance(value, bool):
        return {'booleanValue': value}
    if isinstance(value, int):
        return {'integerValue': str(value)}
    if isinstance(value, float):
        return {'doubleValue': value}
    if isinstance(value, str):
        return {'stringValue': value}
    if isinstance(value, datetime.datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=datetime.timezone.utc)
        return {'timestampValue': value.astimezone(datetime.timezone.utc).isoformat().replace('+00:00', 'Z')}
    if isinstance(value, Mapping):
        return {'mapValue': {'fields': {str(k): encode_value(v) for k, v in value.items()}}}
    if isinstance(value, (list, tuple)):
        return {'arrayValue': {'values': [encode_value(v) for v in value]}}
    raise TypeError(f'Cannot encode value of type {type(value).__name__} for Firestore.')


def decode_value(value: Dict[str, Any]) -> Any:
    """Decode a Firestore typed value. Timestamps are returned as ISO strings.

    Raises:
        ValueError: If the value type is unknown.
    """
    if 'nullValue' in value:
        return None
    if 'booleanValue' in value:
        return bool(value['booleanValue'])
    if 'integerValue' in value:
        return int(value['integerValue'])
    if 'doubleValue' in value:
        return float(value['doubleValue'])
    if 'mapValue' in value:
        return {k: decode_value(v) for k, v in value['mapValue'].get('fields', {}).items()}
    if 'arrayValue' in value:
        return [decode_value(v) for v in value['arrayValue'].get('values', [])]
    for key in ('stringValue', 'timestampValue', 'referenceValue', 'bytesValue'):
        if key in value:
            return value[key]
    if 'geoPointValue' in value:
        return dict(value['geoPointValue'])
    raise ValueError(f'Unknown Firestore value: {value!r}')


def field_path(key: str) -> str:
    """Quote a top-level field name for use in an update mask."""
    if SIMPLE_FIELD_PATH.fullmatch(key):
        return key
    return '`' + key.replace('\\', '\\\\').replace('`', '\\`') + '`'


class FirestoreRemoteStore(RemoteStore):
    """User records stored as documents of one Firestore collection.

    Args:
        credentials: Google credentials. When omitted they are requested from ``auth_manager``.
        auth_manager: Source of credentials, see :class:`~ExpenseSync.core.auth.AuthManager`.
        project_id, database, collection, timeout: Override the ``remote`` settings section.
    """

    def __init__(
            self,
            credentials: Any = None,
            auth_manager: Any = None,
            project_id: Optional[str] = None,
            database: Optional[str] = None,
            collection: Optional[str] = None,
            timeout: Optional[int] = None
    ) -> None:
        config: Dict[str, Any] = {}
        if None in (project_id, database, collection, timeout):
            config = lib.get_settings().get_section('remote')

        self.project_id: str = project_id if project_id is not None else config.get('project_id', '')
        self.database: str = database if database is not None else config.get('database', '(default)')
        self.collection: str = collection if collection is not None else config.get('collection', 'users')
        self.timeout: int = timeout if timeout is not None else config.get('timeout', 30)

        self._credentials = credentials
        self._auth_manager = auth_manager
        self._service: Any = None

    def clear_service(self) -> None:
        """Drop the cached API client, e.g. after the credentials changed."""
        if self._service is not None:
            try:
                self._service.close()
            except Exception as ex:
                logging.debug(f'Failed closing cached Firestore client: {ex}')
        self._service = None

    def get_service(self) -> Any:
        """Build (or return the cached) Firestore API client.

        Raises:
            status.ConfigInvalidException: If no project id is configured.
            status.NotAuthenticatedException: If no usable credentials exist.
            status.RemoteUnreachableException: If the client cannot be built.
        """
        if self._service is not None:
            return self._service

        if not self.project_id:
            raise status.ConfigInvalidException('The remote project_id is not configured.')

        creds = self._credentials
        if creds is None:
            if self._auth_manager is None:
                raise status.NotAuthenticatedException('No credentials or auth manager given.')
            try:
                creds = self._auth_manager.get_valid_credentials()
            except (status.CredsNotFoundException, status.CredsInvalidException) as ex:
                raise status.NotAuthenticatedException(str(ex)) from ex

        http = google_auth_httplib2.AuthorizedHttp(creds, http=httplib2.Http(timeout=self.timeout))
        try:
            self._service = build('firestore', 'v1', http=http, cache_discovery=False)
        except status.TRANSPORT_ERRORS as ex:
            status.raise_for_error(ex, f'Failed to build the Firestore client: {ex}')
        logging.debug('Firestore service client created successfully.')
        return self._service

    def document_name(self, user_id: str) -> str:
        if not user_id:
            raise ValueError('A user id is required.')
        return (
            f'projects/{self.project_id}/databases/{self.database}/documents/'
            f'{self.collection}/{user_id}'
        )

    def _documents(self) -> Any:
        return self.get_service().projects().databases().documents()

    def read(self, user_id: str) -> Optional[UserRecord]:
        name = self.document_name(user_id)
        logging.debug(f'Reading remote document "{name}".')
        try:
            document: Dict[str, Any] = self._documents().get(name=name).execute()
        except status.TRANSPORT_ERRORS as ex:
            if status.classify_error(ex) == status.Status.NotFound:
                logging.debug(f'No remote document for "{user_id}".')
                return None
            status.raise_for_error(ex, f'Failed to read "{user_id}": {ex}')

        data = {k: decode_value(v) for k, v in document.get('fields', {}).items()}
        data['id'] = user_id
        if data.get('updatedAt') is None and document.get('updateTime'):
            data['updatedAt'] = document['updateTime']
        try:
            return UserRecord.from_dict(data)
        except ValueError as ex:
            # Not overwritten from the local side; it stays until a person looks at it
            raise status.RemoteUnreachableException(f'Malformed remote document for "{user_id}": {ex}') from ex

    def write(self, user_id: str, record: UserRecord, merge: bool = False) -> None:
        name = self.document_name(user_id)
        data = record.to_dict()
        data['id'] = user_id
        fields = {k: encode_value(v) for k, v in data.items()}

        kwargs: Dict[str, Any] = {}
        if merge:
            mask: List[str] = [field_path(k) for k in fields]
            kwargs['updateMask_fieldPaths'] = mask

        logging.debug(f'Writing remote document "{name}" (merge={merge}).')
        try:
            self._documents().patch(name=name, body={'fields': fields}, **kwargs).execute()
        except status.TRANSPORT_ERRORS as ex:
            status.raise_for_error(ex, f'Failed to write "{user_id}": {ex}')
        logging.info(f'Remote document for "{user_id}" written ({len(record.expenses)} expense(s)).')

    def delete(self, user_id: str) -> None:
        name = self.document_name(user_id)
        try:
            self._documents().delete(name=name).execute()
        except status.TRANSPORT_ERRORS as ex:
            if status.classify_error(ex) == status.Status.NotFound:
                return
            status.raise_for_error(ex, f'Failed to delete "{user_id}": {ex}')
        logging.info(f'Remote document for "{user_id}" deleted.')
