"""Application-wide Qt signals for ExpenseSync.

This module provides:
    - Signals: custom Qt signals for configuration changes, the sync lifecycle,
      local change tracking and error reporting.
"""
from PySide6 import QtCore


class Signals(QtCore.QObject):
    """Centralized Qt signals for configuration, sync and logging events."""
    configSectionChanged = QtCore.Signal(str)  # Section name

    syncStarted = QtCore.Signal(str)  # Operation name
    syncFinished = QtCore.Signal(str, object)  # Operation name, result
    syncStatusChanged = QtCore.Signal(str)  # 'idle' or 'busy'
    syncDirectionDetermined = QtCore.Signal(str)

    localDataChanged = QtCore.Signal()
    dirtyChanged = QtCore.Signal(bool)

    showLogs = QtCore.Signal()

    error = QtCore.Signal(str)


signals = Signals()
