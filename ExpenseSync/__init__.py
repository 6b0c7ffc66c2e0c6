"""
ExpenseSync: local-first synchronization of an expense ledger with a GitHub repository.

This package provides:

- :mod:`ExpenseSync.core` – Sharding, content codec, differential hashes, the GitHub client,
  the timestamp merge engine and the sync orchestrator.
- :mod:`ExpenseSync.settings` – Application paths and the sync configuration (repository, branch, app settings).
- :mod:`ExpenseSync.status` – Error kinds, user-facing messages and status exceptions.
- :mod:`ExpenseSync.log` – Logging setup with an in-memory log tank.

Use :func:`ExpenseSync.exec_` to run the command line interface.
"""

import sys

# Fail on Python < 3.11
if not (sys.version_info.major == 3 and sys.version_info.minor >= 11):
    raise RuntimeError('ExpenseSync requires Python 3.11 or higher.')

__version__ = '0.1.0'
__author__ = 'Gergely Wootsch'
__license__ = 'GPL-3.0'
__copyright__ = 'Copyright (C) 2025 Gergely Wootsch'
__description__ = 'ExpenseSync: local-first expense ledger synchronization with a GitHub repository.'
__url__ = 'https://github.com/wgergely/ExpenseSync'
__email__ = 'hello+ExpenseSync@gergely-wootsch.com'

from .log import log

log.setup_logging()


def exec_() -> None:
    """Run the ExpenseSync command line interface and exit with its return code."""
    from . import cli
    sys.exit(cli.main(sys.argv))


if __name__ == '__main__':
    exec_()
