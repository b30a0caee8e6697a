"""
Core package for ExpenseSync providing the synchronization engine.

This package includes:

- :mod:`ExpenseSync.core.model` – The user record, expense and category types, and sync results.
- :mod:`ExpenseSync.core.merge` – Reconciliation of a remote and a local snapshot.
- :mod:`ExpenseSync.core.database` – Local SQLite cache of user record snapshots.
- :mod:`ExpenseSync.core.service` – The remote store contract and its Cloud Firestore implementation.
- :mod:`ExpenseSync.core.auth` – Session identity and Google credential management.
- :mod:`ExpenseSync.core.connectivity` – Online/offline detection.
- :mod:`ExpenseSync.core.sync` – Offline-first load, save and reconciliation of user records.
"""
