"""
Settings package: application paths and sync configuration.

This package provides:

- :mod:`ExpenseSync.settings.lib` – Application paths, schema validation and the settings API for sync.json.
"""
