"""
ExpenseSync: offline-first synchronization of expense tracking data.

This package provides:

- :mod:`ExpenseSync.core` – The user record model, the merge policy, the local cache, the remote store,
  connectivity monitoring and the sync coordinator.
- :mod:`ExpenseSync.settings` – Settings management, including schema validation and application paths.
- :mod:`ExpenseSync.status` – Status codes and exceptions, and the classification of remote failures.
- :mod:`ExpenseSync.log` – Logging setup with an in-memory log tank.

Use :func:`ExpenseSync.create_coordinator` to wire the components together.
"""

import sys

# Fail on Python < 3.11
if not (sys.version_info.major == 3 and sys.version_info.minor >= 11):
    raise RuntimeError('ExpenseSync requires Python 3.11 or higher.')

__version__ = '0.1.0'
__description__ = 'ExpenseSync: offline-first synchronization of user expense data with Cloud Firestore.'

from .log import log

log.setup_logging()


def create_coordinator(auth_manager=None, monitor=None, start_monitor: bool = True):
    """Create a sync coordinator using the configured cache and remote store.

    Args:
        auth_manager: A :class:`~ExpenseSync.core.auth.AuthManager`. One is created if omitted.
            Its ``sessionChanged`` signal drives the coordinator's session.
        monitor: A :class:`~ExpenseSync.core.connectivity.ConnectivityMonitor`. One is created if omitted.
        start_monitor: Start polling connectivity right away.

    Returns:
        SyncCoordinator: The wired coordinator.
    """
    from .core import auth
    from .core import connectivity
    from .core import database
    from .core import service
    from .core import sync

    auth_manager = auth_manager or auth.AuthManager()
    monitor = monitor or connectivity.ConnectivityMonitor()

    coordinator = sync.SyncCoordinator(
        database.LocalCache(),
        service.FirestoreRemoteStore(auth_manager=auth_manager),
        session=auth_manager.session,
        monitor=monitor,
    )
    auth_manager.sessionChanged.connect(coordinator.set_session)

    if start_monitor:
        monitor.start()
    return coordinator
