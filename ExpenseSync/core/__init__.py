"""
Core package for ExpenseSync providing the synchronization engine.

This package includes:

- :mod:`ExpenseSync.core.model` – Record, payment method and result value types.
- :mod:`ExpenseSync.core.codec` – CSV encoding and decoding of expense records.
- :mod:`ExpenseSync.core.sharding` – Day keys and shard file naming.
- :mod:`ExpenseSync.core.database` – Local SQLite database holding the sync state.
- :mod:`ExpenseSync.core.hashstore` – Content hashes used for differential uploads.
- :mod:`ExpenseSync.core.auth` – GitHub token storage.
- :mod:`ExpenseSync.core.github` – GitHub REST client with a simple and an atomic (git data) tier.
- :mod:`ExpenseSync.core.merge` – Timestamp based record merge.
- :mod:`ExpenseSync.core.store` – Local store interface and a CSV ledger file store.
- :mod:`ExpenseSync.core.sync` – The sync orchestrator.
- :mod:`ExpenseSync.core.signals` – Application-wide Qt signals.
"""
