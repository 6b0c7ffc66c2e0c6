"""Test suite for ExpenseSync.

Qt runs headless and QStandardPaths is switched to test mode before any
package module is imported, so the module-level settings never touch the
real application data directory.
"""
import os

os.environ.setdefault('QT_QPA_PLATFORM', 'offscreen')

from PySide6 import QtCore  # noqa: E402

QtCore.QStandardPaths.setTestModeEnabled(True)
