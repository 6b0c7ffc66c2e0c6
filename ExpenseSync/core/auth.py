"""
GitHub token storage.

The personal access token is kept in ``creds.json`` in the auth directory.
Functions here only store and load it; checking what the token can access is
done by :meth:`ExpenseSync.core.github.GitHubClient.validate_access`.
"""

import json
import logging
import os
from typing import Dict

from ..status import status


def has_token() -> bool:
    """Return True when a token file exists and holds a non-empty token."""
    try:
        return bool(get_token())
    except (status.TokenNotFoundException, status.TokenInvalidException):
        return False


def get_token() -> str:
    """
    Load the stored GitHub token.

    Returns:
        str: The personal access token.

    Raises:
        status.TokenNotFoundException: If no token has been saved.
        status.TokenInvalidException: If the token file is corrupt or empty.
    """
    from ..settings import lib

    if not lib.settings.creds_path.exists():
        raise status.TokenNotFoundException

    try:
        with open(lib.settings.creds_path, 'r', encoding='utf-8') as f:
            data: Dict[str, str] = json.load(f)
    except (OSError, ValueError) as ex:
        raise status.TokenInvalidException(f'Failed to read {lib.settings.creds_path.name}') from ex

    token = data.get('token', '') if isinstance(data, dict) else ''
    if not token:
        raise status.TokenInvalidException('The token file does not contain a token.')
    return token


def save_token(token: str) -> None:
    """
    Save a GitHub token to the configured token file.

    Args:
        token (str): Personal access token. Must carry a known GitHub token prefix.

    Raises:
        status.TokenInvalidException: If the token format is not recognized.
    """
    from ..settings import lib

    if not lib.is_valid_token(token):
        raise status.TokenInvalidException('Invalid token format.')

    lib.settings.creds_path.parent.mkdir(parents=True, exist_ok=True)
    with open(lib.settings.creds_path, 'w', encoding='utf-8') as token_file:
        json.dump({'token': token}, token_file)

    # Owner read/write only
    try:
        os.chmod(lib.settings.creds_path, 0o600)
    except OSError as ex:
        logging.warning(f'Could not restrict permissions of {lib.settings.creds_path}: {ex}')

    logging.debug(f'Token saved to {lib.settings.creds_path}.')


def sign_out() -> None:
    """Remove the stored token."""
    from ..settings import lib

    if lib.settings.creds_path.exists():
        lib.settings.creds_path.unlink()
        logging.info('Signed out: token removed.')
    else:
        logging.debug('Sign out requested but no token was stored.')
