"""Command line interface for ExpenseSync.

Runs the sync engine against the CSV ledger file in the application data
directory::

    expensesync configure --repo octocat/expenses --branch main --token ghp_...
    expensesync validate
    expensesync status
    expensesync sync
    expensesync pull --days 14

Failures print the error kind and a message and exit with a non-zero code.
"""
import logging
import sys
from typing import List, Optional

from PySide6 import QtCore

from . import __version__
from .core import auth
from .core import database
from .core import sync
from .core.github import GitHubClient
from .core.model import SyncDirection
from .log import log
from .settings import lib
from .status import status

COMMANDS = {
    'configure': 'Store the repository, branch and token (--repo, --branch, --token).',
    'validate': 'Check that the token can push to the configured repository.',
    'repos': 'List repositories owned by the token\'s user.',
    'status': 'Show the configuration and the local sync state.',
    'direction': 'Show whether a push, pull or merge is needed.',
    'push': 'Push local changes to the repository.',
    'pull': 'Download recent days from the repository without changing local data (--days).',
    'analyze': 'Preview what a merge with the repository would change.',
    'merge': 'Merge the repository into the local ledger and push the result.',
    'sync': 'Push, merge or do nothing depending on what changed.',
    'logs': 'Print the log messages of this run (--level).',
    'reset': 'Forget the local sync state (hashes and last sync time).',
    'sign-out': 'Remove the stored token.',
}


def _print(text: str = '') -> None:
    sys.stdout.write(f'{text}\n')


def _fail(kind, message: str) -> int:
    _print(f'error [{kind}]: {message}')
    return 1


def _result_code(result) -> int:
    if getattr(result, 'success', True):
        _print(result.message)
        return 0
    return _fail(result.error_kind, result.error or result.message)


def _build_parser() -> tuple:
    parser = QtCore.QCommandLineParser()
    parser.setApplicationDescription(
        'Synchronize the local expense ledger with a GitHub repository.\n\nCommands:\n' +
        '\n'.join(f'  {name:<10} {text}' for name, text in COMMANDS.items())
    )
    help_option = parser.addHelpOption()
    version_option = parser.addVersionOption()
    parser.addPositionalArgument('command', 'The command to run.', '<command>')

    options = {
        'repo': QtCore.QCommandLineOption(['r', 'repo'], 'Repository in owner/name format.', 'repo'),
        'branch': QtCore.QCommandLineOption(['b', 'branch'], 'Branch name.', 'branch', lib.DEFAULT_BRANCH),
        'token': QtCore.QCommandLineOption(['t', 'token'], 'GitHub personal access token.', 'token'),
        'days': QtCore.QCommandLineOption(
            ['d', 'days'], 'Number of most recent days to download, 0 for all.', 'days',
            str(sync.DEFAULT_DAYS_TO_FETCH)
        ),
        'root': QtCore.QCommandLineOption(['root'], 'Use this directory instead of the app data directory.', 'dir'),
        'simple': QtCore.QCommandLineOption(['simple'], 'Push file by file instead of as a single commit.'),
        'level': QtCore.QCommandLineOption(['level'], 'Minimum log level for the logs command.', 'level', 'INFO'),
        'verbose': QtCore.QCommandLineOption(['v', 'verbose'], 'Print debug messages.'),
    }
    for option in options.values():
        parser.addOption(option)
    return parser, help_option, version_option, options


def _use_root(root: str) -> None:
    lib.settings = lib.SettingsAPI(root=root)
    database.database = None
    sync.sync = None


def _configure(parser, options) -> int:
    repo = parser.value(options['repo']) or lib.settings.get_section('github').get('repo', '')
    branch = parser.value(options['branch'])
    token = parser.value(options['token'])
    if not token and auth.has_token():
        token = auth.get_token()

    errors = lib.validate_github_config(token, repo, branch)
    if errors:
        for field, message in errors.items():
            _print(f'{field}: {message}')
        return _fail(status.ErrorKind.NOT_CONFIGURED, 'Invalid configuration.')

    lib.settings.set_section('github', {'repo': repo, 'branch': branch})
    if parser.isSet(options['token']):
        auth.save_token(token)
    _print(f'Configured {repo}@{branch}.')
    return 0


def _status() -> int:
    github = lib.settings.get_section('github')
    db = database.get_database()
    repo, branch = db.get_source()
    _print(f'repository:    {github.get("repo") or "-"}')
    _print(f'branch:        {github.get("branch") or "-"}')
    _print(f'token:         {"stored" if auth.has_token() else "missing"}')
    _print(f'ledger:        {lib.settings.ledger_path}')
    _print(f'last sync:     {db.get_last_sync() or "never"}')
    _print(f'local changes: {"yes" if db.is_dirty() else "no"}')
    _print(f'state for:     {f"{repo}@{branch}" if repo else "-"}')
    _print(f'tracked files: {len(db.load_hashes())}')
    return 0


def _logs(level_name: str) -> int:
    level = logging.getLevelName(level_name.upper())
    if not isinstance(level, int):
        return _fail(status.ErrorKind.UNKNOWN, f'Unknown log level "{level_name}".')
    handler = log.get_tank_handler()
    for message in (handler.get_logs(level) if handler else []):
        _print(message)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Run the command line interface.

    Args:
        argv: Command line including the program name. Defaults to ``sys.argv``.

    Returns:
        int: Process exit code.
    """
    argv = list(argv if argv is not None else sys.argv)
    if not QtCore.QCoreApplication.instance():
        QtCore.QCoreApplication(argv)
    QtCore.QCoreApplication.setApplicationName(lib.app_name)
    QtCore.QCoreApplication.setApplicationVersion(__version__)

    parser, help_option, version_option, options = _build_parser()
    if not parser.parse(argv):
        return _fail(status.ErrorKind.UNKNOWN, parser.errorText())
    if parser.isSet(help_option):
        _print(parser.helpText())
        return 0
    if parser.isSet(version_option):
        _print(f'{lib.app_name} {__version__}')
        return 0

    if parser.isSet(options['verbose']):
        log.set_logging_level(logging.DEBUG)
    else:
        log.set_console_level(logging.WARNING)

    args = parser.positionalArguments()
    if len(args) != 1 or args[0] not in COMMANDS:
        _print(parser.helpText())
        return 2
    command = args[0]

    try:
        if parser.isSet(options['root']):
            _use_root(parser.value(options['root']))

        if command == 'configure':
            return _configure(parser, options)
        if command == 'status':
            return _status()
        if command == 'logs':
            return _logs(parser.value(options['level']))
        if command == 'sign-out':
            auth.sign_out()
            _print('Token removed.')
            return 0
        if command == 'reset':
            database.get_database().reset()
            _print('Sync state cleared.')
            return 0

        config = lib.settings.sync_config()
        if command == 'validate':
            res = GitHubClient(config).validate_access()
            if not res.success:
                return _fail(res.error_kind, res.error)
            _print(f'Token for {res.data} can push to {config.repo}.')
            return 0
        if command == 'repos':
            res = GitHubClient(config).list_repositories()
            if not res.success:
                return _fail(res.error_kind, res.error)
            for name in res.data:
                _print(name)
            return 0

        api = sync.get_sync()
        if parser.isSet(options['simple']):
            api.atomic = False

        if command == 'direction':
            d = api.determine_sync_direction(config)
            if d.direction == SyncDirection.Error:
                return _fail(d.error_kind, d.error)
            _print(d.direction.value)
            return 0
        if command == 'push':
            return _result_code(api.sync_up(config))
        if command == 'pull':
            try:
                days = int(parser.value(options['days']))
            except ValueError:
                return _fail(status.ErrorKind.UNKNOWN, '--days must be a number.')
            result = api.sync_down(config, days=days or None)
            code = _result_code(result)
            if code == 0 and result.has_more:
                _print('Older days are available, use --days 0 to download everything.')
            return code
        if command == 'analyze':
            return _result_code(api.analyze_conflicts(config))
        if command == 'merge':
            return _result_code(api.smart_merge(config))
        if command == 'sync':
            result = api.smart_sync(config)
            if result.direction == SyncDirection.Conflict:
                _print('Run "expensesync analyze" to review, then "expensesync merge" to confirm.')
            return _result_code(result)
    except status.BaseStatusException as ex:
        return _fail(sync.kind_for_exception(ex), str(ex))

    return 2


if __name__ == '__main__':
    sys.exit(main())
