"""Offline-first synchronization of user records.

:class:`SyncCoordinator` owns a :class:`~ExpenseSync.core.database.LocalCache`,
a :class:`~ExpenseSync.core.service.RemoteStore` and, optionally, a
:class:`~ExpenseSync.core.connectivity.ConnectivityMonitor`. It decides for
every read and write which store to use, reconciles the two copies with
:func:`~ExpenseSync.core.merge.merge`, and re-synchronizes when the device
comes back online.

Rules:
    - The local cache is written before any save is reported. A failed remote
      write never raises; the result is flagged ``degraded`` instead.
    - Operations for one user run one at a time, in arrival order
      (:class:`SerialScope`).
    - ``sync`` is single-flight per user: a call arriving while a sync is queued
      or running gets that sync's result.
"""
import dataclasses
import logging
import threading
import time
import uuid
from collections.abc import Mapping
from concurrent.futures import Future
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from PySide6 import QtCore

from .database import LocalCache
from .merge import merge
from .model import (
    Category,
    Expense,
    ElementId,
    Session,
    SyncResult,
    UserRecord,
    REASON_NOT_AUTHENTICATED,
    REASON_NOTHING_TO_SYNC,
    REASON_UNREACHABLE,
    now_str,
)
from .service import RemoteStore
from ..log import log
from ..status import status
from ..status.status import Status

LOCAL_ID_PREFIX: str = 'local_'

#: Modules whose log messages describe sync outcomes.
SYNC_LOG_MODULES: Tuple[str, ...] = ('sync', 'service', 'database', 'status')


class SerialScope:
    """Mutual exclusion that admits holders in the order they arrived.

    Not reentrant: code holding the scope must not enter it again.
    """

    def __init__(self) -> None:
        self._condition = threading.Condition()
        self._next_ticket: int = 0
        self._serving: int = 0

    def __enter__(self) -> 'SerialScope':
        with self._condition:
            ticket = self._next_ticket
            self._next_ticket += 1
            while ticket != self._serving:
                self._condition.wait()
        return self

    def __exit__(self, *args: Any) -> None:
        with self._condition:
            self._serving += 1
            self._condition.notify_all()


def local_scoped_id() -> str:
    """Identifier for a snapshot saved without a session."""
    return f'{LOCAL_ID_PREFIX}{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}'


class SyncCoordinator(QtCore.QObject):
    """Load, save and reconcile user records across the local cache and the remote store.

    Signals:
        userDataChanged (object): Emitted with the in-memory record (or None) when it
            changes through a session change, a save or a sync.
        syncFinished (object): Emitted with the SyncResult of every completed sync.
    """
    userDataChanged = QtCore.Signal(object)
    syncFinished = QtCore.Signal(object)

    def __init__(
            self,
            cache: LocalCache,
            remote: RemoteStore,
            session: Optional[Session] = None,
            monitor: Any = None,
            parent: Optional[QtCore.QObject] = None
    ) -> None:
        super().__init__(parent)
        self.cache = cache
        self.remote = remote
        self.monitor = monitor
        self._session: Optional[Session] = session

        self._records: Dict[str, UserRecord] = {}
        self._degraded: Dict[str, bool] = {}
        self._scopes: Dict[str, SerialScope] = {}
        self._in_flight: Dict[str, Future] = {}
        self._lock = threading.Lock()

        if monitor is not None:
            monitor.connectivityChanged.connect(self.on_connectivity_change)

    @property
    def session(self) -> Optional[Session]:
        return self._session

    def current(self, user_id: str) -> Optional[UserRecord]:
        """The last known in-memory record of a user."""
        return self._records.get(user_id)

    def is_degraded(self, user_id: str) -> bool:
        """True if the last load or save for the user was not confirmed remotely."""
        return self._degraded.get(user_id, False)

    def messages(self, level: int = logging.WARNING) -> List[str]:
        """Recent sync, remote and cache messages at or above ``level``, oldest first."""
        return log.get_logs(level=level, modules=SYNC_LOG_MODULES)

    def in_flight(self, user_id: str) -> Optional[Future]:
        """The pending sync of a user, if one is queued or running."""
        with self._lock:
            return self._in_flight.get(user_id)

    def _scope(self, user_id: str) -> SerialScope:
        with self._lock:
            return self._scopes.setdefault(user_id, SerialScope())

    @staticmethod
    def _require_user_id(user_id: Any) -> None:
        if not isinstance(user_id, str) or not user_id:
            raise ValueError(f'A user id is required, got {user_id!r}.')

    def _is_authenticated(self, user_id: str) -> bool:
        return self._session is not None and self._session.user_id == user_id

    def _write_remote(self, user_id: str, record: UserRecord, merge_write: bool = True) -> bool:
        """Write to the remote store. Returns False if the store could not be used."""
        try:
            self.remote.write(user_id, record, merge=merge_write)
        except status.REMOTE_FAILURES as ex:
            logging.warning(f'Remote write for "{user_id}" failed, kept locally: {ex}')
            return False
        return True

    def _store(self, user_id: str, record: Optional[UserRecord]) -> bool:
        """Replace the in-memory record. Returns True if it changed."""
        previous = self._records.get(user_id)
        if record is None:
            self._records.pop(user_id, None)
        else:
            self._records[user_id] = record
        return previous != record

    # Session

    @QtCore.Slot(object)
    def set_session(self, session: Optional[Session]) -> None:
        """Start or end a session. Connect to ``AuthManager.sessionChanged``."""
        previous = self._session
        self._session = session

        if session is None:
            if previous is not None:
                with self._scope(previous.user_id):
                    self._store(previous.user_id, None)
            self.userDataChanged.emit(None)
            return

        record = self.load(session.user_id)
        self.userDataChanged.emit(record)

    # Load

    def load(self, user_id: str) -> Optional[UserRecord]:
        """Return the user's record, reconciling the two stores when both have one.

        Falls back to the local snapshot when the remote store is unreachable;
        see :meth:`is_degraded`. Returns None without a session for ``user_id``.
        """
        self._require_user_id(user_id)
        session = self._session
        if session is None or session.user_id != user_id:
            logging.debug(f'Not signed in as "{user_id}", nothing to load.')
            return None

        with self._scope(user_id):
            record, degraded = self._load(user_id, session)
            self._degraded[user_id] = degraded
            if record is not None:
                self._store(user_id, record)
        return record

    def _load(self, user_id: str, session: Session) -> Tuple[Optional[UserRecord], bool]:
        try:
            remote = self.remote.read(user_id)
        except status.REMOTE_FAILURES:
            logging.warning(f'Remote store unreachable, using the local snapshot of "{user_id}".')
            return self.cache.get(user_id), True

        local = self.cache.get(user_id)

        if remote is not None:
            merged = merge(remote, local, session)
            remote_stale = not merged.same_content(remote)
            if remote_stale:
                merged = merged.stamped()
            if merged != local:
                self.cache.set(user_id, merged)
            degraded = remote_stale and not self._write_remote(user_id, merged)
            return merged, degraded

        if local is not None:
            logging.info(f'No remote record for "{user_id}", promoting the local snapshot.')
            promoted = local.with_identity(session)
            if promoted != local:
                self.cache.set(user_id, promoted)
            return promoted, not self._write_remote(user_id, promoted)

        logging.debug(f'No record for "{user_id}" in either store.')
        return None, False

    # Save

    def save(self, user_id: Optional[str], partial: Union[Mapping, UserRecord]) -> SyncResult:
        """Apply a partial update and persist it.

        The full record is written to the local cache first, then to the remote
        store. Without a session the update is kept locally under a
        locally-scoped id.

        Args:
            user_id: The signed-in user's id. May be None without a session.
            partial: Changed fields in the record shape. Collections replace the collection.

        Returns:
            SyncResult: ``degraded`` when the remote write failed or was skipped.
        """
        if not isinstance(partial, (Mapping, UserRecord)):
            raise TypeError(f'Partial update must be a mapping, got {type(partial).__name__}.')
        return self._update(user_id, lambda base: base.overlay(partial))

    def _update(self, user_id: Optional[str], change: Callable[[UserRecord], UserRecord]) -> SyncResult:
        session = self._session
        if session is not None:
            self._require_user_id(user_id)

        if session is None or session.user_id != user_id:
            return self._save_local(change)

        with self._scope(user_id):
            base = self._records.get(user_id) or self.cache.get(user_id) or UserRecord.seed(session)
            record = change(base).with_identity(session).stamped()

            self.cache.set(user_id, record)
            self._store(user_id, record)

            degraded = not self._write_remote(user_id, record)
            self._degraded[user_id] = degraded

        self.userDataChanged.emit(record)
        if degraded:
            return SyncResult(record=record, degraded=True, status=Status.Unreachable)
        return SyncResult(record=record)

    def _save_local(self, change: Callable[[UserRecord], UserRecord]) -> SyncResult:
        local_id = local_scoped_id()
        record = change(UserRecord(id=local_id)).stamped()
        self.cache.set(local_id, record)
        logging.warning(f'Not signed in, saved locally as "{local_id}".')
        return SyncResult(record=record, degraded=True, status=Status.NotAuthenticated)

    def set_monthly_limit(self, user_id: str, limit: Union[int, float]) -> SyncResult:
        if isinstance(limit, bool) or not isinstance(limit, (int, float)):
            raise TypeError(f'Monthly limit must be a number, got {limit!r}.')
        return self.save(user_id, {'monthlyLimit': limit})

    def _add_element(self, user_id: str, attr: str, element: Union[Expense, Category]) -> SyncResult:
        def change(base: UserRecord) -> UserRecord:
            collection = getattr(base, attr)
            if element.id in collection:
                raise ValueError(f'{type(element).__name__} id {element.id!r} already exists.')
            return dataclasses.replace(base, **{attr: {**collection, element.id: element}})

        return self._update(user_id, change)

    def _remove_element(self, user_id: str, attr: str, element_id: ElementId) -> SyncResult:
        def change(base: UserRecord) -> UserRecord:
            collection = {k: v for k, v in getattr(base, attr).items() if k != element_id}
            return dataclasses.replace(base, **{attr: collection})

        return self._update(user_id, change)

    def add_expense(self, user_id: str, expense: Union[Expense, Mapping]) -> SyncResult:
        """Add a new expense. Raises ValueError if the id is taken."""
        if not isinstance(expense, Expense):
            expense = Expense.from_dict(expense)
        return self._add_element(user_id, 'expenses', expense)

    def remove_expense(self, user_id: str, expense_id: ElementId) -> SyncResult:
        return self._remove_element(user_id, 'expenses', expense_id)

    def add_category(self, user_id: str, category: Union[Category, Mapping]) -> SyncResult:
        """Add a new category. Raises ValueError if the id is taken."""
        if not isinstance(category, Category):
            category = Category.from_dict(category)
        return self._add_element(user_id, 'categories', category)

    def remove_category(self, user_id: str, category_id: ElementId) -> SyncResult:
        return self._remove_element(user_id, 'categories', category_id)

    # Sync

    def sync(self, user_id: str) -> SyncResult:
        """Reconcile the local cache and the remote store.

        Blocks until the reconciliation (or the one already in flight) is done.
        """
        self._require_user_id(user_id)
        session = self._session
        if session is None or session.user_id != user_id:
            return SyncResult.failure(Status.NotAuthenticated, REASON_NOT_AUTHENTICATED)

        future, owner = self._claim_sync(user_id)
        if owner:
            self._run_sync(session, future)
        return future.result()

    def sync_async(self, user_id: str) -> Future:
        """Start a background sync, or return the one already in flight."""
        self._require_user_id(user_id)
        session = self._session
        if session is None or session.user_id != user_id:
            future: Future = Future()
            future.set_result(SyncResult.failure(Status.NotAuthenticated, REASON_NOT_AUTHENTICATED))
            return future

        future, owner = self._claim_sync(user_id)
        if owner:
            thread = threading.Thread(
                target=self._run_sync, args=(session, future), name=f'sync-{user_id}', daemon=True)
            thread.start()
        return future

    def _claim_sync(self, user_id: str) -> Tuple[Future, bool]:
        with self._lock:
            future = self._in_flight.get(user_id)
            if future is not None:
                logging.debug(f'Sync for "{user_id}" already in flight, joining it.')
                return future, False
            future = Future()
            self._in_flight[user_id] = future
            return future, True

    def _run_sync(self, session: Session, future: Future) -> None:
        user_id = session.user_id
        try:
            with self._scope(user_id):
                result, changed = self._sync(session)
        except Exception as ex:
            logging.exception(f'Sync for "{user_id}" failed.')
            with self._lock:
                self._in_flight.pop(user_id, None)
            future.set_exception(ex)
            return

        with self._lock:
            self._in_flight.pop(user_id, None)
        if changed:
            self.userDataChanged.emit(result.record)
        self.syncFinished.emit(result)
        future.set_result(result)

    def _sync(self, session: Session) -> Tuple[SyncResult, bool]:
        user_id = session.user_id
        logging.info(f'Syncing "{user_id}"...')
        try:
            remote = self.remote.read(user_id)
        except status.REMOTE_FAILURES as ex:
            record = self._records.get(user_id) or self.cache.get(user_id)
            return SyncResult.failure(ex.status, REASON_UNREACHABLE, record=record, degraded=True), False

        if not self._is_authenticated(user_id):
            logging.info(f'Session of "{user_id}" ended during the sync, nothing written.')
            return SyncResult.failure(Status.NotAuthenticated, REASON_NOT_AUTHENTICATED), False

        local = self.cache.get(user_id)
        if remote is None and local is None:
            logging.info(f'Nothing to sync for "{user_id}".')
            return SyncResult.failure(Status.NothingToSync, REASON_NOTHING_TO_SYNC), False

        if remote is None:
            merged = local.with_identity(session)
        elif local is None:
            merged = remote.with_identity(session)
        else:
            merged = merge(remote, local, session)

        remote_stale = not merged.same_content(remote)
        if remote_stale and remote is not None:
            merged = merged.stamped()

        confirmed = not remote_stale or self._write_remote(user_id, merged)
        if merged != local:
            self.cache.set(user_id, merged)
        changed = self._store(user_id, merged)
        self._degraded[user_id] = not confirmed

        if not confirmed:
            return SyncResult.failure(Status.Unreachable, REASON_UNREACHABLE, record=merged, degraded=True), changed
        logging.info(f'Sync for "{user_id}" completed ({len(merged.expenses)} expense(s)).')
        return SyncResult(record=merged), changed

    @QtCore.Slot(bool)
    def on_connectivity_change(self, online: bool) -> None:
        """Start a background sync when the device comes back online."""
        if not online:
            logging.info('Offline, changes are kept locally until the next sync.')
            return
        session = self._session
        if session is None:
            return
        self.sync_async(session.user_id)

    # Lifecycle

    def register(self, session: Session, profile: Optional[Mapping] = None) -> SyncResult:
        """Create the record of a newly registered user in both stores and adopt the session."""
        self._session = session
        user_id = session.user_id

        with self._scope(user_id):
            timestamp = now_str()
            record = UserRecord.seed(session, profile)
            if 'createdAt' not in record.profile:
                record = record.overlay({'createdAt': timestamp})
            record = record.stamped(timestamp)

            self.cache.set(user_id, record)
            self._store(user_id, record)
            degraded = not self._write_remote(user_id, record, merge_write=False)
            self._degraded[user_id] = degraded

        self.userDataChanged.emit(record)
        if degraded:
            return SyncResult(record=record, degraded=True, status=Status.Unreachable)
        return SyncResult(record=record)

    def purge(self, user_id: str) -> None:
        """Remove a deleted account's record from both stores.

        Called by the account service after it deleted the account.

        Raises:
            status.RemoteUnreachableException: If the remote document could not be deleted.
        """
        self._require_user_id(user_id)
        with self._scope(user_id):
            self.remote.delete(user_id)
            self.cache.remove(user_id)
            self._store(user_id, None)
            self._degraded.pop(user_id, None)

        if self._is_authenticated(user_id):
            self._session = None
        self.userDataChanged.emit(None)
