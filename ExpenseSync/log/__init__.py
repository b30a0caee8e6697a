"""
Logging subsystem.

Modules:

- :mod:`ExpenseSync.log.log` – Root logger setup, in-memory log tank and Qt message bridge.
"""
