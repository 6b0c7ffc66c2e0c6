"""GitHub REST client used as the remote replica.

Two tiers are provided:

- The simple tier reads, lists, writes and deletes single files through the
  contents API. Every write is its own commit.
- The atomic tier (:meth:`GitHubClient.batch_commit`) builds blobs, a tree and
  a commit through the git data API and then advances the branch. Nothing is
  visible on the branch until the final ref update succeeds.

Public methods never raise for failures the remote can produce. They return a
:class:`RemoteResult` or :class:`CommitResult` with an :class:`ErrorKind`.
The client performs no retries: a conflict must be handled by the caller
running the whole operation again.
"""
import base64
import datetime
import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple
from urllib.parse import quote

import requests

from .model import CommitResult, EPOCH, FileContent, RemoteFile, RemoteResult, SyncConfig
from ..status.status import ErrorKind, RemoteError

GITHUB_API_URL: str = 'https://api.github.com'
GITHUB_API_VERSION: str = '2022-11-28'

# (connect, read) seconds
REQUEST_TIMEOUT: Tuple[float, float] = (10.0, 30.0)

FILE_MODE: str = '100644'

PUSH_PERMISSIONS = ('admin', 'maintain', 'write')


def classify_error(status_code: int, message: str = '', headers: Optional[Mapping[str, str]] = None) -> ErrorKind:
    """Map an HTTP failure onto an :class:`ErrorKind`.

    Args:
        status_code: HTTP status code of the response.
        message: Error message returned by GitHub, if any.
        headers: Response headers, used to detect exhausted rate limits.

    Returns:
        ErrorKind: The classified kind.
    """
    message = (message or '').lower()
    headers = headers or {}

    if status_code == 401:
        return ErrorKind.AUTH
    if status_code == 403:
        if 'rate limit' in message or headers.get('X-RateLimit-Remaining') == '0':
            return ErrorKind.RATE_LIMIT
        return ErrorKind.PERMISSION
    if status_code == 404:
        return ErrorKind.NOT_FOUND
    if status_code == 409:
        return ErrorKind.CONFLICT
    if status_code == 422 and 'fast forward' in message:
        return ErrorKind.CONFLICT
    if status_code == 429:
        return ErrorKind.RATE_LIMIT
    return ErrorKind.UNKNOWN


def generate_commit_message(uploads: int, deletions: int,
                            now: Optional[datetime.datetime] = None) -> str:
    """Describe a sync commit, e.g. 'Sync expenses: 2 files updated, 1 file deleted - <timestamp>'."""
    now = now or datetime.datetime.now(datetime.timezone.utc)
    timestamp = now.astimezone(datetime.timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')

    parts: List[str] = []
    if uploads > 0:
        parts.append(f'{uploads} file{"s" if uploads > 1 else ""} updated')
    if deletions > 0:
        parts.append(f'{deletions} file{"s" if deletions > 1 else ""} deleted')

    if not parts:
        return f'Sync expenses - {timestamp}'
    return f'Sync expenses: {", ".join(parts)} - {timestamp}'


def _encode_content(content: str) -> str:
    return base64.b64encode(content.encode('utf-8')).decode('ascii')


def _decode_content(content: str) -> str:
    # GitHub wraps base64 payloads at 60 characters
    return base64.b64decode(content.replace('\n', '')).decode('utf-8')


def _parse_timestamp(value: str) -> datetime.datetime:
    if value.endswith('Z'):
        value = f'{value[:-1]}+00:00'
    dt = datetime.datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.timezone.utc)
    return dt


class GitHubClient:
    """Talks to one repository branch on GitHub.

    Args:
        config: Token, repository and branch.
        session: Optional ``requests.Session`` to send requests with.
        base_url: API root, overridable for GitHub Enterprise.
        timeout: ``(connect, read)`` timeout applied to every request.
    """

    def __init__(self, config: SyncConfig, session: Optional[requests.Session] = None,
                 base_url: str = GITHUB_API_URL, timeout: Tuple[float, float] = REQUEST_TIMEOUT) -> None:
        self.config = config
        self.session = session if session is not None else requests.Session()
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout

    @property
    def headers(self) -> Dict[str, str]:
        return {
            'Authorization': f'Bearer {self.config.token}',
            'Accept': 'application/vnd.github+json',
            'X-GitHub-Api-Version': GITHUB_API_VERSION,
        }

    def _repo_endpoint(self, suffix: str) -> str:
        return f'repos/{self.config.owner}/{self.config.name}/{suffix}'

    @staticmethod
    def _content_path(path: str) -> str:
        return quote(path.lstrip('/'), safe='/')

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            data = None
        if isinstance(data, dict) and data.get('message'):
            return str(data['message'])
        return response.reason or f'HTTP {response.status_code}'

    def _request(self, method: str, endpoint: str, *, params: Optional[Dict[str, Any]] = None,
                 json_body: Optional[Dict[str, Any]] = None,
                 allow: Iterable[int] = ()) -> requests.Response:
        """Send one request.

        Args:
            method: HTTP method.
            endpoint: Path relative to the API root.
            params: Query parameters.
            json_body: JSON request body.
            allow: Non-success status codes returned to the caller instead of raised.

        Returns:
            requests.Response: The response.

        Raises:
            RemoteError: On network failure, timeout or a non-success status not in ``allow``.
        """
        url = f'{self.base_url}/{endpoint.lstrip("/")}'
        logging.debug(f'{method} {url}')
        try:
            response = self.session.request(
                method,
                url,
                headers=self.headers,
                params=params,
                json=json_body,
                timeout=self.timeout,
            )
        except requests.Timeout as ex:
            raise RemoteError(ErrorKind.UNKNOWN, f'Request timed out: {method} {endpoint}') from ex
        except requests.RequestException as ex:
            raise RemoteError(ErrorKind.UNKNOWN, f'Network error: {ex}') from ex

        if response.ok or response.status_code in allow:
            return response

        message = self._error_message(response)
        kind = classify_error(response.status_code, message, response.headers)
        raise RemoteError(kind, f'GitHub API error ({response.status_code}): {message}', response.status_code)

    @staticmethod
    def _json(response: requests.Response) -> Any:
        try:
            return response.json()
        except ValueError as ex:
            raise RemoteError(ErrorKind.UNKNOWN, 'GitHub returned a response that is not JSON.') from ex

    @staticmethod
    def _call(operation: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> RemoteResult:
        try:
            return RemoteResult.ok(func(*args, **kwargs))
        except RemoteError as ex:
            logging.error(f'{operation} failed [{ex.kind}]: {ex}')
            return RemoteResult.fail(ex.kind, str(ex))

    # Simple tier

    def read_file(self, path: str) -> RemoteResult:
        """Download a file.

        Returns:
            RemoteResult: ``data`` is a :class:`FileContent`, or None when the file does not exist.
        """
        return self._call(f'Reading "{path}"', self._read_file, path)

    def _read_file(self, path: str) -> Optional[FileContent]:
        response = self._request(
            'GET',
            self._repo_endpoint(f'contents/{self._content_path(path)}'),
            params={'ref': self.config.branch},
            allow=(404,),
        )
        if response.status_code == 404:
            return None

        data = self._json(response)
        if not isinstance(data, dict) or data.get('type', 'file') != 'file':
            raise RemoteError(ErrorKind.UNKNOWN, f'"{path}" is not a file.')

        sha = data.get('sha', '')
        encoded = data.get('content') or ''
        if data.get('encoding') == 'base64' and (encoded or not data.get('size')):
            return FileContent(content=_decode_content(encoded), sha=sha)

        # Files over 1MB come back without inline content
        logging.debug(f'"{path}" has no inline content, downloading blob {sha}.')
        blob = self._json(self._request('GET', self._repo_endpoint(f'git/blobs/{sha}')))
        return FileContent(content=_decode_content(blob.get('content') or ''), sha=sha)

    def list_files(self, directory: str = '') -> RemoteResult:
        """List the files (not directories) in a directory of the branch.

        Returns:
            RemoteResult: ``data`` is a list of :class:`RemoteFile`. A missing sub-directory or an
            empty repository gives an empty list, a missing repository or branch is ``NOT_FOUND``.
        """
        return self._call(f'Listing "{directory or "/"}"', self._list_files, directory)

    def _list_files(self, directory: str) -> List[RemoteFile]:
        endpoint = 'contents'
        if directory.strip('/'):
            endpoint = f'contents/{self._content_path(directory.strip("/"))}'

        response = self._request(
            'GET',
            self._repo_endpoint(endpoint),
            params={'ref': self.config.branch},
            allow=(404,),
        )
        if response.status_code == 404:
            message = self._error_message(response)
            if endpoint != 'contents' or 'empty' in message.lower():
                return []
            raise RemoteError(
                ErrorKind.NOT_FOUND,
                f'Repository {self.config.repo} or branch "{self.config.branch}" not found: {message}',
                404,
            )

        data = self._json(response)
        if not isinstance(data, list):
            return []
        return [
            RemoteFile(name=item['name'], path=item['path'], sha=item['sha'])
            for item in data
            if item.get('type') == 'file'
        ]

    def write_file(self, path: str, content: str, sha: Optional[str] = None,
                   message: Optional[str] = None) -> RemoteResult:
        """Create or update a file in its own commit.

        Args:
            path: File path in the repository.
            content: Text content.
            sha: Current revision token of the file when updating. Omit to create.
            message: Commit message.

        Returns:
            RemoteResult: ``data`` is the new revision token of the file.
        """
        return self._call(f'Writing "{path}"', self._write_file, path, content, sha, message)

    def _write_file(self, path: str, content: str, sha: Optional[str], message: Optional[str]) -> str:
        body: Dict[str, Any] = {
            'message': message or generate_commit_message(1, 0),
            'content': _encode_content(content),
            'branch': self.config.branch,
        }
        if sha:
            body['sha'] = sha

        response = self._request(
            'PUT', self._repo_endpoint(f'contents/{self._content_path(path)}'), json_body=body
        )
        data = self._json(response)
        return (data.get('content') or {}).get('sha', '')

    def delete_file(self, path: str, sha: str, message: Optional[str] = None) -> RemoteResult:
        """Delete a file in its own commit.

        Args:
            path: File path in the repository.
            sha: Current revision token of the file.
            message: Commit message.
        """
        return self._call(f'Deleting "{path}"', self._delete_file, path, sha, message)

    def _delete_file(self, path: str, sha: str, message: Optional[str]) -> None:
        body = {
            'message': message or generate_commit_message(0, 1),
            'sha': sha,
            'branch': self.config.branch,
        }
        self._request('DELETE', self._repo_endpoint(f'contents/{self._content_path(path)}'), json_body=body)

    def latest_commit_timestamp(self) -> RemoteResult:
        """Return the time of the newest commit on the branch.

        Returns:
            RemoteResult: ``data`` is an aware datetime. An empty repository gives the Unix epoch.
        """
        return self._call('Reading latest commit', self._latest_commit_timestamp)

    def _latest_commit_timestamp(self) -> datetime.datetime:
        response = self._request(
            'GET',
            self._repo_endpoint('commits'),
            params={'sha': self.config.branch, 'per_page': 1},
            allow=(409,),
        )
        if response.status_code == 409:
            message = self._error_message(response)
            if 'empty' in message.lower():
                return EPOCH
            raise RemoteError(ErrorKind.CONFLICT, f'GitHub API error (409): {message}', 409)

        data = self._json(response)
        if not data:
            return EPOCH

        commit = data[0].get('commit', {})
        date = (commit.get('author') or {}).get('date') or (commit.get('committer') or {}).get('date')
        if not date:
            raise RemoteError(ErrorKind.UNKNOWN, 'Latest commit has no timestamp.')
        return _parse_timestamp(date)

    # Atomic tier

    def get_branch_head(self) -> str:
        """Return the commit sha the branch points at.

        Raises:
            RemoteError: If the request fails.
        """
        data = self._json(self._request('GET', self._repo_endpoint(f'git/ref/heads/{self.config.branch}')))
        return data['object']['sha']

    def get_commit_tree(self, commit_sha: str) -> str:
        """Return the tree sha of a commit.

        Raises:
            RemoteError: If the request fails.
        """
        data = self._json(self._request('GET', self._repo_endpoint(f'git/commits/{commit_sha}')))
        return data['tree']['sha']

    def create_blob(self, content: str) -> str:
        """Store content as a blob and return its sha.

        Raises:
            RemoteError: If the request fails.
        """
        body = {'content': _encode_content(content), 'encoding': 'base64'}
        data = self._json(self._request('POST', self._repo_endpoint('git/blobs'), json_body=body))
        return data['sha']

    def create_tree(self, base_tree: str, entries: List[Dict[str, Any]]) -> str:
        """Create a tree on top of ``base_tree`` and return its sha.

        Entries with ``sha`` set to None delete the path.

        Raises:
            RemoteError: If the request fails.
        """
        body = {'base_tree': base_tree, 'tree': entries}
        data = self._json(self._request('POST', self._repo_endpoint('git/trees'), json_body=body))
        return data['sha']

    def create_commit(self, message: str, tree_sha: str, parent_sha: str) -> str:
        """Create a commit object and return its sha. The branch is not moved.

        Raises:
            RemoteError: If the request fails.
        """
        body = {'message': message, 'tree': tree_sha, 'parents': [parent_sha]}
        data = self._json(self._request('POST', self._repo_endpoint('git/commits'), json_body=body))
        return data['sha']

    def update_ref(self, commit_sha: str) -> None:
        """Fast-forward the branch to ``commit_sha``.

        Raises:
            RemoteError: If the request fails. A non fast-forward update is a CONFLICT.
        """
        body = {'sha': commit_sha, 'force': False}
        self._request('PATCH', self._repo_endpoint(f'git/refs/heads/{self.config.branch}'), json_body=body)

    def batch_commit(self, uploads: Mapping[str, str], deletions: Iterable[str] = (),
                     message: Optional[str] = None) -> CommitResult:
        """Apply all uploads and deletions as a single commit.

        Either every change lands in one new commit on the branch or the branch
        is left untouched. Blobs, trees or commits created before a failure stay
        unreferenced and are garbage collected by GitHub.

        Args:
            uploads: Path to new text content.
            deletions: Paths to remove.
            message: Commit message. Generated from the counts when omitted.

        Returns:
            CommitResult: On failure ``failed_step`` names the step that failed.
        """
        uploads = {path.lstrip('/'): content for path, content in uploads.items()}
        deletions = sorted({path.lstrip('/') for path in deletions} - set(uploads))

        if not uploads and not deletions:
            logging.debug('Batch commit requested with nothing to commit.')
            return CommitResult(success=True)

        message = message or generate_commit_message(len(uploads), len(deletions))
        step = 'head'
        try:
            head_sha = self.get_branch_head()

            step = 'tree'
            base_tree = self.get_commit_tree(head_sha)

            step = 'blob'
            entries: List[Dict[str, Any]] = []
            for path in sorted(uploads):
                blob_sha = self.create_blob(uploads[path])
                entries.append({'path': path, 'mode': FILE_MODE, 'type': 'blob', 'sha': blob_sha})
            for path in deletions:
                entries.append({'path': path, 'mode': FILE_MODE, 'type': 'blob', 'sha': None})

            step = 'create_tree'
            tree_sha = self.create_tree(base_tree, entries)

            step = 'commit'
            commit_sha = self.create_commit(message, tree_sha, head_sha)

            step = 'ref'
            self.update_ref(commit_sha)
        except RemoteError as ex:
            logging.error(f'Batch commit failed at step "{step}" [{ex.kind}]: {ex}')
            return CommitResult(success=False, error=str(ex), error_kind=ex.kind, failed_step=step)
        except (KeyError, TypeError) as ex:
            logging.error(f'Batch commit failed at step "{step}": unexpected response ({ex})')
            return CommitResult(
                success=False, error=f'Unexpected response from GitHub: {ex}',
                error_kind=ErrorKind.UNKNOWN, failed_step=step
            )

        logging.info(f'Committed {len(uploads)} upload(s) and {len(deletions)} deletion(s) as {commit_sha[:7]}.')
        return CommitResult(success=True, commit_sha=commit_sha)

    # Access checks

    def get_current_user(self) -> RemoteResult:
        """Return the login of the token's user."""
        return self._call('Reading current user', self._get_current_user)

    def _get_current_user(self) -> str:
        data = self._json(self._request('GET', 'user'))
        login = str(data.get('login') or '').strip()
        if not login:
            raise RemoteError(ErrorKind.UNKNOWN, 'Could not determine GitHub username.')
        return login

    def get_repository(self) -> RemoteResult:
        """Return the repository metadata, including the token's permissions."""
        return self._call('Reading repository', self._get_repository)

    def _get_repository(self) -> Dict[str, Any]:
        return self._json(self._request('GET', f'repos/{self.config.owner}/{self.config.name}'))

    def get_collaborator_permission(self, login: str) -> RemoteResult:
        """Return the permission level ('admin', 'maintain', 'write', 'read', ...) of a user."""
        return self._call('Reading collaborator permission', self._get_collaborator_permission, login)

    def _get_collaborator_permission(self, login: str) -> str:
        data = self._json(self._request(
            'GET', self._repo_endpoint(f'collaborators/{quote(login, safe="")}/permission')
        ))
        return str(data.get('permission') or '').lower()

    def list_repositories(self) -> RemoteResult:
        """Return the 'owner/name' of repositories owned by the token's user, most recently updated first."""
        return self._call('Listing repositories', self._list_repositories)

    def _list_repositories(self) -> List[str]:
        data = self._json(self._request(
            'GET', 'user/repos', params={'affiliation': 'owner', 'sort': 'updated', 'per_page': 100}
        ))
        return [item['full_name'] for item in data if item.get('full_name')]

    def validate_access(self, personal_only: bool = True) -> RemoteResult:
        """Check that the token can push to the configured repository.

        Args:
            personal_only: Require the repository to be owned by the token's user.

        Returns:
            RemoteResult: ``data`` is the user login on success.
        """
        return self._call('Validating access', self._validate_access, personal_only)

    def _validate_access(self, personal_only: bool) -> str:
        login = self._get_current_user()

        if personal_only and self.config.owner.lower() != login.lower():
            raise RemoteError(
                ErrorKind.PERMISSION,
                'Organization repositories aren\'t supported yet. Choose a personal repo you own.'
            )

        repo = self._get_repository()
        permissions = repo.get('permissions') or {}
        if permissions.get('push') or permissions.get('admin') or permissions.get('maintain'):
            return login

        # Repository permissions are not always reported for fine-grained tokens
        try:
            permission = self._get_collaborator_permission(login)
        except RemoteError as ex:
            raise RemoteError(
                ErrorKind.PERMISSION,
                'No write access to this repository. Please choose a repo you can push to.'
            ) from ex
        if permission not in PUSH_PERMISSIONS:
            raise RemoteError(
                ErrorKind.PERMISSION,
                'No write access to this repository. Please choose a repo you can push to.'
            )
        return login
