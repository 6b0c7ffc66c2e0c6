"""Settings library for the sync configuration.

Provides:
    - Application paths (config, auth, db and data directories).
    - Schema validation for sync.json (the "github" and "app" sections).
    - Loading, saving, reverting and reloading of configuration sections.
    - Assembly of the SyncConfig handed to the sync orchestrator.
"""

import copy
import datetime
import json
import logging
import pathlib
import re
from typing import Dict, Any, Optional, List

from PySide6 import QtCore

from ..status import status

app_name: str = 'ExpenseSync'

GITHUB_TOKEN_PREFIXES: List[str] = ['ghp_', 'github_pat_', 'gho_']
REPO_PATTERN: str = r'[a-zA-Z0-9_.-]+/[a-zA-Z0-9_.-]+'
BRANCH_PATTERN: str = r'[a-zA-Z0-9_./-]+'

THEMES: List[str] = ['light', 'dark', 'system']
PAYMENT_METHOD_TYPES: List[str] = [
    '', 'Cash', 'Amazon Pay', 'Google Pay', 'Credit Card', 'Debit Card', 'UPI', 'Net Banking', 'Other',
]
SETTINGS_VERSION: int = 2

DEFAULT_BRANCH: str = 'main'

SYNC_SCHEMA: Dict[str, Any] = {
    'github': {
        'type': dict,
        'required': True,
        'item_schema': {
            'repo': {'type': str, 'required': True, 'format': 'repo'},
            'branch': {'type': str, 'required': True, 'format': 'branch'},
        }
    },
    'app': {
        'type': dict,
        'required': True,
        'item_schema': {
            'theme': {'type': str, 'required': True, 'allowed_values': THEMES},
            'sync_settings': {'type': bool, 'required': True},
            'default_payment_method': {'type': str, 'required': True, 'allowed_values': PAYMENT_METHOD_TYPES},
            'version': {'type': int, 'required': True},
            'updated_at': {'type': str, 'required': True},
        }
    },
}

DEFAULT_SYNC_CONFIG: Dict[str, Any] = {
    'github': {
        'repo': '',
        'branch': DEFAULT_BRANCH,
    },
    'app': {
        'theme': 'system',
        'sync_settings': False,
        'default_payment_method': '',
        'version': SETTINGS_VERSION,
        'updated_at': '',
    },
}


def now_str() -> str:
    """Return the current UTC instant as an ISO 8601 string."""
    return datetime.datetime.now(datetime.timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def is_valid_repo(value: str) -> bool:
    """Check if a string is a repository in 'owner/name' format.

    Args:
        value (str): Repository string to validate.

    Returns:
        bool: True if value matches 'owner/name', False otherwise.
    """
    return bool(re.fullmatch(REPO_PATTERN, value or ''))


def is_valid_branch(value: str) -> bool:
    """Check if a string is an acceptable branch name."""
    return bool(re.fullmatch(BRANCH_PATTERN, value or ''))


def is_valid_token(value: str) -> bool:
    """Check if a token carries one of the known GitHub token prefixes."""
    return bool(value) and any(value.startswith(p) for p in GITHUB_TOKEN_PREFIXES)


def validate_github_config(token: str, repo: str, branch: str) -> Dict[str, str]:
    """Validate user supplied GitHub settings before they are stored.

    Only the first problem of each field is reported.

    Args:
        token: Personal access token.
        repo: Repository in 'owner/name' format.
        branch: Branch name.

    Returns:
        Dict[str, str]: Field name to error message. Empty when everything is valid.
    """
    errors: Dict[str, str] = {}

    if not token:
        errors['token'] = 'Token is required'
    elif not is_valid_token(token):
        errors['token'] = 'Invalid token format'

    if not repo:
        errors['repo'] = 'Repository is required'
    elif not is_valid_repo(repo):
        errors['repo'] = 'Repository must be in format: owner/repo'

    if not branch:
        errors['branch'] = 'Branch is required'
    elif not is_valid_branch(branch):
        errors['branch'] = 'Invalid branch name'

    return errors


def _validate_github(github_dict: Dict[str, Any], item_schema: Dict[str, Any]) -> None:
    """Validate the 'github' section of the sync configuration.

    An empty repository is allowed and means sync has not been set up yet.

    Args:
        github_dict: The section data.
        item_schema: Dict describing required fields, types and format constraints.

    Raises:
        TypeError: If a field has the wrong type.
        ValueError: If a required field is missing or fails format validation.
    """
    logging.debug('Validating "github" section.')
    for field, field_specs in item_schema.items():
        if field_specs['required'] and field not in github_dict:
            msg = f'"github" section is missing "{field}".'
            logging.error(msg)
            raise ValueError(msg)
        v = github_dict[field]
        if not isinstance(v, field_specs['type']):
            msg = f'"github" field "{field}" must be {field_specs["type"]}, got {type(v)}.'
            logging.error(msg)
            raise TypeError(msg)

        if field_specs.get('format') == 'repo' and v and not is_valid_repo(v):
            msg = f'Repository must be in format: owner/repo, got "{v}".'
            logging.error(msg)
            raise ValueError(msg)
        if field_specs.get('format') == 'branch' and not is_valid_branch(v):
            msg = f'Invalid branch name "{v}".'
            logging.error(msg)
            raise ValueError(msg)


def _validate_app(app_dict: Dict[str, Any], item_schema: Dict[str, Any]) -> None:
    """Validate the 'app' section of the sync configuration.

    Args:
        app_dict: The section data.
        item_schema: Dict describing required fields, types and allowed values.

    Raises:
        TypeError: If a field has the wrong type.
        ValueError: If a required field is missing or holds a value that is not allowed.
    """
    logging.debug('Validating "app" section.')
    for field, field_specs in item_schema.items():
        if field_specs['required'] and field not in app_dict:
            msg = f'"app" section is missing "{field}".'
            logging.error(msg)
            raise ValueError(msg)
        v = app_dict[field]
        # bool is a subclass of int
        if field_specs['type'] is int and isinstance(v, bool):
            msg = f'"app" field "{field}" must be {int}, got {bool}.'
            logging.error(msg)
            raise TypeError(msg)
        if not isinstance(v, field_specs['type']):
            msg = f'"app" field "{field}" must be {field_specs["type"]}, got {type(v)}.'
            logging.error(msg)
            raise TypeError(msg)
        allowed = field_specs.get('allowed_values')
        if allowed is not None and v not in allowed:
            msg = f'"app" field "{field}" must be one of {allowed}, got "{v}".'
            logging.error(msg)
            raise ValueError(msg)


def _settings_instant(value: Any) -> Optional[datetime.datetime]:
    """Parse an app settings ``updated_at`` value, None if it is missing or malformed."""
    from ..core.codec import parse_instant

    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return parse_instant(value)
    except ValueError:
        return None


class ConfigPaths:
    """Manage application file paths.

    All paths live under the application data directory reported by Qt, or
    under an explicit root directory when one is given.
    """

    def __init__(self, root: Optional[str] = None) -> None:
        """Set up application paths and ensure the required directories exist.

        Args:
            root: Optional directory to use instead of the application data directory.
        """
        if root:
            app_data_dir = pathlib.Path(root)
        else:
            QtCore.QCoreApplication.setApplicationName(app_name)
            QtCore.QCoreApplication.setOrganizationName('')
            logging.debug(f'Setting application name: {app_name}')

            p = QtCore.QStandardPaths.writableLocation(QtCore.QStandardPaths.AppDataLocation)
            app_data_dir = pathlib.Path(p)
        logging.debug(f'Using app data directory: {app_data_dir}')

        self.root_dir: pathlib.Path = app_data_dir
        self.config_dir: pathlib.Path = app_data_dir / 'config'
        self.auth_dir: pathlib.Path = self.config_dir / 'auth'
        self.db_dir: pathlib.Path = self.config_dir / 'db'
        self.data_dir: pathlib.Path = app_data_dir / 'data'

        self.sync_config_path: pathlib.Path = self.config_dir / 'sync.json'
        self.creds_path: pathlib.Path = self.auth_dir / 'creds.json'
        self.db_path: pathlib.Path = self.db_dir / 'state.db'
        self.ledger_path: pathlib.Path = self.data_dir / 'ledger.csv'

        self._verify_and_prepare()

    def _verify_and_prepare(self) -> None:
        """Create missing directories and write a default sync.json if absent."""
        for d in (self.config_dir, self.auth_dir, self.db_dir, self.data_dir):
            if not d.exists():
                logging.debug(f'Creating directory: {d}')
                d.mkdir(parents=True, exist_ok=True)

        if not self.sync_config_path.exists():
            logging.debug(f'Writing default sync config to {self.sync_config_path}')
            self.revert_sync_config_to_default()

    def revert_sync_config_to_default(self) -> None:
        """Overwrite sync.json with the default configuration."""
        self.sync_config_path.parent.mkdir(parents=True, exist_ok=True)
        with self.sync_config_path.open('w', encoding='utf-8') as f:
            json.dump(DEFAULT_SYNC_CONFIG, f, indent=4, ensure_ascii=False)


class SettingsAPI(ConfigPaths):
    """
    Provides an interface to get/set/revert/save the sections of sync.json.
    """

    def __init__(self, root: Optional[str] = None) -> None:
        """Initialize SettingsAPI and load the sync configuration.

        Args:
            root: Optional directory to use instead of the application data directory.
        """
        super().__init__(root=root)

        self._signals_blocked: bool = False

        self.config_data: Dict[str, Any] = copy.deepcopy(DEFAULT_SYNC_CONFIG)
        self.init_data()

    def block_signals(self, v: bool) -> None:
        """Enable or disable emission of configuration change signals.

        Args:
            v: True to block signals, False to allow signals to emit.
        """
        self._signals_blocked = v

    def _emit_changed(self, section_name: str) -> None:
        if self._signals_blocked:
            return
        from ..core.signals import signals
        signals.configSectionChanged.emit(section_name)

    def init_data(self) -> None:
        """Reload the configuration from disk and notify listeners."""
        self.load_config()
        for section in SYNC_SCHEMA.keys():
            self._emit_changed(section)

    def load_config(self) -> Dict[str, Any]:
        """Load sync.json from disk and validate against schema.

        Returns:
            The loaded configuration dictionary.

        Raises:
            status.SyncConfigNotFoundException: If sync.json is missing.
            status.SyncConfigInvalidException: If JSON parsing or validation fails.
        """
        logging.debug(f'Loading sync config from "{self.sync_config_path}"')
        if not self.sync_config_path.exists():
            raise status.SyncConfigNotFoundException

        try:
            with self.sync_config_path.open('r', encoding='utf-8') as f:
                data: Dict[str, Any] = json.load(f)
            self.validate_config_data(data=data)
        except (ValueError, TypeError) as ex:
            raise status.SyncConfigInvalidException(str(ex)) from ex

        self.config_data = data
        return self.config_data

    def validate_config_data(self, data: Dict[str, Any] = None) -> None:
        """Validate configuration data against SYNC_SCHEMA.

        Args:
            data (dict, optional): Configuration to validate. Defaults to the loaded data.

        Raises:
            ValueError: If a section is missing or a field fails validation.
            TypeError: If a section or field has the wrong type.
        """
        if data is None:
            data = self.config_data
        if not isinstance(data, dict) or not data:
            raise ValueError('Sync config is empty.')

        logging.debug('Validating sync config against schema.')
        for field, specs in SYNC_SCHEMA.items():
            if specs.get('required') and field not in data:
                raise ValueError(f'Missing required field: {field}')

            if not isinstance(data[field], specs['type']):
                raise TypeError(f'Field "{field}" must be {specs["type"]}, got {type(data[field])}.')

            if field == 'github':
                _validate_github(data[field], specs['item_schema'])
            elif field == 'app':
                _validate_app(data[field], specs['item_schema'])

        logging.debug('Sync config is valid.')

    def get_section(self, section_name: str) -> Dict[str, Any]:
        """Retrieve a copy of a configuration section.

        Args:
            section_name: Section name ('github' or 'app').

        Returns:
            A copied dict of the requested section data.

        Raises:
            KeyError: If section_name is unknown.
        """
        return self.config_data[section_name].copy()

    def set_section(self, section_name: str, new_data: Dict[str, Any]) -> None:
        """Replace, validate and persist a configuration section.

        Changing the 'app' section stamps its ``updated_at`` field.

        Args:
            section_name: Section to update.
            new_data: New data dict for the section.

        Raises:
            ValueError: If section_name is unknown or the data fails validation.
            TypeError: If the data has the wrong types.
        """
        if section_name not in SYNC_SCHEMA:
            msg: str = f'Unknown section_name for set: "{section_name}"'
            logging.error(msg)
            raise ValueError(msg)

        new_data = dict(new_data)
        if section_name == 'app':
            new_data['updated_at'] = now_str()

        current_section_data: Dict[str, Any] = self.config_data[section_name]
        self.config_data[section_name] = new_data
        try:
            self.validate_config_data()
        except (ValueError, TypeError) as e:
            logging.error(f'Validation error on set_section("{section_name}"): {e}')
            self.config_data[section_name] = current_section_data
            raise

        self.save_section(section_name)
        self._emit_changed(section_name)

    def reload_section(self, section_name: str) -> None:
        """Reload a configuration section from disk.

        Args:
            section_name: Section to reload.

        Raises:
            ValueError: If section_name is unknown or the file fails validation.
        """
        if section_name not in SYNC_SCHEMA:
            msg: str = f'Unknown section_name for reload: "{section_name}"'
            logging.error(msg)
            raise ValueError(msg)

        logging.debug(f'Reloading section "{section_name}" from disk.')
        with self.sync_config_path.open('r', encoding='utf-8') as f:
            data: Dict[str, Any] = json.load(f)
        self.validate_config_data(data=data)
        self.config_data[section_name] = data[section_name]
        self._emit_changed(section_name)

    def revert_section(self, section_name: str) -> None:
        """Revert a configuration section to its default and save.

        Args:
            section_name: Section to revert.

        Raises:
            ValueError: If section_name is unknown.
        """
        if section_name not in SYNC_SCHEMA:
            msg: str = f'Unknown section_name for revert: "{section_name}"'
            logging.error(msg)
            raise ValueError(msg)

        self.config_data[section_name] = copy.deepcopy(DEFAULT_SYNC_CONFIG[section_name])
        self.save_section(section_name)
        self._emit_changed(section_name)

    def save_section(self, section_name: str) -> None:
        """Persist a single configuration section to sync.json.

        Args:
            section_name: The section to save.

        Raises:
            ValueError: If section_name is unknown.
        """
        if section_name not in SYNC_SCHEMA:
            msg: str = f'Unknown section_name for save: "{section_name}"'
            logging.error(msg)
            raise ValueError(msg)

        original_data: Dict[str, Any] = copy.deepcopy(DEFAULT_SYNC_CONFIG)
        if self.sync_config_path.exists():
            with self.sync_config_path.open('r', encoding='utf-8') as f:
                original_data.update(json.load(f))

        original_data[section_name] = self.config_data[section_name]

        self.sync_config_path.parent.mkdir(parents=True, exist_ok=True)
        with self.sync_config_path.open('w', encoding='utf-8') as f:
            json.dump(original_data, f, indent=4, ensure_ascii=False)

    def is_configured(self) -> bool:
        """Return True when a repository, branch and token are all available."""
        from ..core import auth

        github = self.get_section('github')
        if not (is_valid_repo(github.get('repo', '')) and is_valid_branch(github.get('branch', ''))):
            return False
        return auth.has_token()

    def sync_config(self):
        """Assemble the configuration handed to the sync orchestrator.

        Returns:
            SyncConfig: Token, repository and branch.

        Raises:
            status.SyncConfigInvalidException: If the repository or branch is not set up.
            status.TokenNotFoundException: If no token is stored.
        """
        from ..core import auth
        from ..core.model import SyncConfig

        github = self.get_section('github')
        repo = github.get('repo', '')
        branch = github.get('branch', '')
        if not is_valid_repo(repo):
            raise status.SyncConfigInvalidException('Repository is not configured.')
        if not is_valid_branch(branch):
            raise status.SyncConfigInvalidException('Branch is not configured.')

        return SyncConfig(token=auth.get_token(), repo=repo, branch=branch)

    def app_settings(self) -> Dict[str, Any]:
        """Return the synchronizable app settings."""
        return self.get_section('app')

    def apply_remote_app_settings(self, remote: Dict[str, Any]) -> bool:
        """Adopt app settings downloaded from the remote when they are newer.

        Unknown keys are ignored. Values that fail validation leave the local
        settings untouched.

        Args:
            remote: Settings decoded from the remote settings file.

        Returns:
            bool: True if the local settings were replaced.
        """
        local = self.get_section('app')
        remote_time = _settings_instant(remote.get('updated_at'))
        if remote_time is None:
            logging.warning(f'Ignoring remote app settings with an invalid timestamp: {remote.get("updated_at")!r}')
            return False
        local_time = _settings_instant(local.get('updated_at'))
        if local_time is not None and remote_time <= local_time:
            logging.debug('Remote app settings are not newer than local settings, keeping local.')
            return False

        new_data = {k: remote.get(k, v) for k, v in local.items()}
        current = self.config_data['app']
        self.config_data['app'] = new_data
        try:
            self.validate_config_data()
        except (ValueError, TypeError) as e:
            logging.warning(f'Ignoring invalid remote app settings: {e}')
            self.config_data['app'] = current
            return False

        self.save_section('app')
        self._emit_changed('app')
        logging.info('Applied app settings from remote.')
        return True


settings: SettingsAPI = SettingsAPI()
