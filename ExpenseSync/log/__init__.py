"""
Logging subsystem for the application.

Modules:

- :mod:`ExpenseSync.log.log` – Root logger setup, the in-memory tank handler and the Qt message bridge.
"""
