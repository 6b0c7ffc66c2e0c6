"""Sync orchestrator between the local ledger and the GitHub repository.

The remote holds one CSV shard per local calendar day plus an optional
``settings.json``. The orchestrator decides which way data has to flow, pushes
only shards whose content changed since the last push, pulls and merges remote
shards by record timestamps, and keeps the sync state (content hashes, last
sync instant, local-changes flag) in the state database.

Only one operation runs at a time. A request made while another is running is
rejected with :attr:`ErrorKind.BUSY` instead of queued.

Example:

    api = sync.get_sync()
    config = lib.settings.sync_config()
    result = api.smart_sync(config)
    if not result.success:
        print(result.error_kind, result.message)
"""
import datetime
import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from PySide6 import QtCore

from . import codec
from .database import StateDatabase, get_database
from .github import GitHubClient, generate_commit_message
from .hashstore import HashStore, compute_hash, compute_settings_hash
from .merge import merge
from .model import (
    ConflictAnalysis,
    DirectionResult,
    EPOCH,
    PullResult,
    Record,
    RemoteFile,
    SyncConfig,
    SyncDirection,
    SyncResult,
)
from .sharding import day_from_filename, filename_for_day, group_by_day, is_shard_filename
from .signals import signals
from .store import LedgerFileStore, LocalStore
from ..settings import lib
from ..status import status
from ..status.status import ErrorKind, get_error_message

DEFAULT_DAYS_TO_FETCH: int = 7
SETTINGS_FILENAME: str = 'settings.json'


class SyncStatus:
    Idle = 'idle'
    Busy = 'busy'


def kind_for_exception(ex: status.BaseStatusException) -> ErrorKind:
    """Map a configuration or local state exception onto the error kind reported to callers."""
    if isinstance(ex, (status.SyncConfigNotFoundException, status.SyncConfigInvalidException,
                       status.TokenNotFoundException, status.TokenInvalidException)):
        return ErrorKind.NOT_CONFIGURED
    if isinstance(ex, status.LedgerInvalidException):
        return ErrorKind.CODEC
    return ErrorKind.UNKNOWN


def _failed_sync(kind: ErrorKind, error: str) -> SyncResult:
    return SyncResult(success=False, message=get_error_message(kind), error=error, error_kind=kind)


def _failed_pull(kind: ErrorKind, error: str) -> PullResult:
    return PullResult(success=False, message=get_error_message(kind), error=error, error_kind=kind)


def _failed_direction(kind: ErrorKind, error: str) -> DirectionResult:
    return DirectionResult(direction=SyncDirection.Error, error=error, error_kind=kind)


def _failed_analysis(kind: ErrorKind, error: str) -> ConflictAnalysis:
    return ConflictAnalysis(success=False, message=get_error_message(kind), error=error, error_kind=kind)


class SyncWorker(QtCore.QThread):
    """
    Runs one sync operation in a background thread.

    Expected failures come back as result values through ``resultReady``.
    ``errorOccurred`` only carries unexpected exceptions.

    Signals:
        resultReady (object): Emitted with the operation's result.
        errorOccurred (object): Emitted with the exception instance on failure.
    """
    resultReady = QtCore.Signal(object)
    errorOccurred = QtCore.Signal(object)

    def __init__(self, func: Callable[..., Any], *args: Any, parent: Optional[QtCore.QObject] = None,
                 **kwargs: Any) -> None:
        super().__init__(parent)
        self.func = func
        self.args = args
        self.kwargs = kwargs

    def run(self) -> None:
        try:
            result = self.func(*self.args, **self.kwargs)
        except Exception as ex:
            logging.error(f'Sync worker failed: {ex}', exc_info=True)
            self.errorOccurred.emit(ex)
            return
        self.resultReady.emit(result)


class SyncAPI(QtCore.QObject):
    """Reconcile the local store with the remote repository.

    Args:
        store: Local records. Defaults to the CSV ledger file.
        state: Sync state database. Defaults to the shared state database.
        client_factory: Callable creating a remote client from a :class:`SyncConfig`.
        atomic: Push all changes as one commit (True) or file by file (False).
        parent: Qt parent.
    """

    def __init__(self, store: Optional[LocalStore] = None, state: Optional[StateDatabase] = None,
                 client_factory: Callable[[SyncConfig], Any] = GitHubClient, atomic: bool = True,
                 parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent)
        self.state: StateDatabase = state if state is not None else get_database()
        self.store: LocalStore = store if store is not None else LedgerFileStore(state=self.state)
        self.hashes = HashStore(self.state)
        self.client_factory = client_factory
        self.atomic = atomic

        self._lock = threading.Lock()
        self._status = SyncStatus.Idle
        self._workers: List[SyncWorker] = []

    @property
    def status(self) -> str:
        """'idle' or 'busy'."""
        return self._status

    def _set_status(self, value: str) -> None:
        self._status = value
        signals.syncStatusChanged.emit(value)

    def mark_local_change(self) -> None:
        """Record that the local ledger changed since the last sync."""
        self.state.set_dirty(True)

    def _run(self, operation: str, failed: Callable[[ErrorKind, str], Any],
             func: Callable[..., Any], config: Optional[SyncConfig], *args: Any) -> Any:
        """Run an operation under the single-flight guard.

        Converts configuration and decoding exceptions into failed results so
        no exception leaves a public operation for an expected failure.
        """
        if not self._lock.acquire(blocking=False):
            logging.warning(f'"{operation}" rejected: another sync operation is running.')
            return failed(ErrorKind.BUSY, get_error_message(ErrorKind.BUSY))

        try:
            self._set_status(SyncStatus.Busy)
            signals.syncStarted.emit(operation)
            logging.info(f'Sync operation "{operation}" started.')

            try:
                if config is None:
                    config = lib.settings.sync_config()
                if not config.is_complete():
                    result = failed(ErrorKind.NOT_CONFIGURED, get_error_message(ErrorKind.NOT_CONFIGURED))
                else:
                    self.state.verify_source(config.repo, config.branch)
                    result = func(config, *args)
            except codec.CodecError as ex:
                result = failed(ErrorKind.CODEC, str(ex))
            except status.BaseStatusException as ex:
                result = failed(kind_for_exception(ex), str(ex))
        finally:
            self._lock.release()
            self._set_status(SyncStatus.Idle)

        if getattr(result, 'success', True) is False or getattr(result, 'error_kind', None):
            logging.warning(f'Sync operation "{operation}" failed [{result.error_kind}]: {result.error}')
        else:
            logging.info(f'Sync operation "{operation}" finished.')
        signals.syncFinished.emit(operation, result)
        return result

    def start_async(self, operation: str, *args: Any, **kwargs: Any) -> SyncWorker:
        """Run a public operation in a background thread.

        Args:
            operation: Name of a public method, e.g. 'smart_sync'.

        Returns:
            SyncWorker: The started worker. Connect to ``resultReady`` for the result.
        """
        func = getattr(self, operation)
        worker = SyncWorker(func, *args, parent=self, **kwargs)
        self._workers.append(worker)

        @QtCore.Slot()
        def _cleanup() -> None:
            if worker in self._workers:
                self._workers.remove(worker)
            worker.deleteLater()

        worker.finished.connect(_cleanup)
        worker.start()
        logging.debug(f'Started "{operation}" in a background thread.')
        return worker

    # Direction

    def determine_sync_direction(self, config: Optional[SyncConfig] = None,
                                 has_local_changes: Optional[bool] = None) -> DirectionResult:
        """Compare the last sync with the newest remote commit.

        Args:
            config: Remote settings. Defaults to the configured settings.
            has_local_changes: Whether the local ledger changed since the last sync.
                Defaults to the stored local-changes flag.

        Returns:
            DirectionResult: in_sync, push, pull, conflict, or error.
        """
        return self._run('determine_sync_direction', _failed_direction,
                         self._determine_sync_direction, config, has_local_changes)

    def _determine_sync_direction(self, config: SyncConfig, has_local_changes: Optional[bool],
                                  client: Any = None) -> DirectionResult:
        client = client or self.client_factory(config)
        last_sync = self.state.get_last_sync()
        if has_local_changes is None:
            has_local_changes = self.state.is_dirty()

        res = client.latest_commit_timestamp()
        if not res.success:
            return DirectionResult(
                direction=SyncDirection.Error, local_time=last_sync, error=res.error, error_kind=res.error_kind
            )
        remote_time: datetime.datetime = res.data

        if last_sync is None:
            # Never synced: anything on the remote is new to us
            remote_newer = remote_time > EPOCH
        else:
            remote_newer = remote_time > last_sync

        if remote_newer:
            direction = SyncDirection.Conflict if has_local_changes else SyncDirection.Pull
        else:
            direction = SyncDirection.Push if has_local_changes else SyncDirection.InSync

        logging.info(f'Sync direction: {direction} (last sync: {last_sync}, remote: {remote_time}).')
        signals.syncDirectionDetermined.emit(direction.value)
        return DirectionResult(direction=direction, local_time=last_sync, remote_time=remote_time)

    # Push

    def sync_up(self, config: Optional[SyncConfig] = None, records: Optional[List[Record]] = None,
                settings: Optional[Dict[str, Any]] = None) -> SyncResult:
        """Push local records to the remote.

        Only shards whose content changed since the last push are uploaded.
        Remote shards for days without local records are deleted when the day
        lies inside the local date range or the shard was pushed or pulled
        before.

        Args:
            config: Remote settings. Defaults to the configured settings.
            records: Records to push. Defaults to every record in the local store.
            settings: App settings to push. Defaults to the configured app settings
                when settings sync is enabled.

        Returns:
            SyncResult: Counts of uploaded, skipped, deleted and failed files.
        """
        return self._run('sync_up', _failed_sync, self._sync_up, config, records, settings)

    def _settings_payload(self, settings: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if settings is not None:
            return settings
        app = lib.settings.app_settings()
        return app if app.get('sync_settings') else None

    def _sync_up(self, config: SyncConfig, records: Optional[List[Record]] = None,
                 settings: Optional[Dict[str, Any]] = None, client: Any = None) -> SyncResult:
        client = client or self.client_factory(config)
        if records is None:
            records = self.store.get_all_records()

        groups = group_by_day(records)
        files: Dict[str, str] = {
            filename_for_day(day): codec.encode_records(day_records) for day, day_records in groups.items()
        }
        file_hashes = {name: compute_hash(content) for name, content in files.items()}
        stored = self.hashes.load()

        listing = client.list_files()
        if not listing.success:
            return _failed_sync(listing.error_kind, listing.error)

        remote_files: Dict[str, RemoteFile] = {}
        settings_file: Optional[RemoteFile] = None
        for f in listing.data:
            if is_shard_filename(f.name):
                remote_files[f.name] = f
            elif f.name == SETTINGS_FILENAME:
                settings_file = f

        # A shard missing on the remote is re-uploaded even if its hash is known
        changed = {
            name: content for name, content in files.items()
            if stored.get(name) != file_hashes[name] or name not in remote_files
        }
        skipped = len(files) - len(changed)

        local_days = sorted(groups)
        deletions: List[str] = []
        for name in sorted(remote_files):
            day = day_from_filename(name)
            if day in groups:
                continue
            in_range = bool(local_days) and local_days[0] <= day <= local_days[-1]
            if in_range or name in stored:
                deletions.append(name)

        settings_payload = self._settings_payload(settings)
        settings_content: Optional[str] = None
        settings_hash: Optional[str] = stored.get(SETTINGS_FILENAME)
        settings_skipped = False
        if settings_payload is not None:
            new_settings_hash = compute_settings_hash(settings_payload)
            if new_settings_hash != settings_hash or settings_file is None:
                settings_content = codec.encode_settings(settings_payload)
                settings_hash = new_settings_hash
            else:
                settings_skipped = True

        logging.info(
            f'Push plan: {len(changed)} changed, {skipped} unchanged, {len(deletions)} to delete, '
            f'settings: {"upload" if settings_content is not None else "skip"}.'
        )

        if self.atomic:
            result, written = self._push_atomic(client, changed, deletions, settings_content)
        else:
            result, written = self._push_files(
                client, changed, deletions, remote_files, settings_content, settings_file
            )
        result.files_skipped = skipped
        result.settings_skipped = settings_skipped

        # Local files plus remote shards whose deletion is still pending
        new_hashes: Dict[str, str] = {}
        for name, h in file_hashes.items():
            if name not in changed or name in written:
                new_hashes[name] = h
            elif name in stored and name in remote_files:
                # Upload failed: the remote still holds what was last pushed
                new_hashes[name] = stored[name]
        if settings_content is None or result.settings_synced:
            if settings_hash is not None:
                new_hashes[SETTINGS_FILENAME] = settings_hash
        elif SETTINGS_FILENAME in stored:
            new_hashes[SETTINGS_FILENAME] = stored[SETTINGS_FILENAME]
        for name in deletions:
            if name not in written:
                # Stay tracked so the next push retries the deletion
                new_hashes[name] = stored.get(name, remote_files[name].sha)

        # A failed atomic commit changed nothing remotely, the stored map is still accurate
        if not self.atomic or result.success:
            self.hashes.save(new_hashes)

        if result.success and not result.files_failed and not result.settings_error:
            self._record_sync(client, result)

        result.message = result.message or self._summary(result)
        return result

    @staticmethod
    def _summary(result: SyncResult) -> str:
        text = (
            f'{result.files_uploaded} uploaded, {result.files_skipped} unchanged, '
            f'{result.files_deleted} deleted'
        )
        if result.files_failed:
            text += f', {result.files_failed} failed'
        if result.settings_synced:
            text += ', settings synced'
        return text

    def _push_atomic(self, client: Any, changed: Dict[str, str], deletions: List[str],
                     settings_content: Optional[str]) -> Tuple[SyncResult, Set[str]]:
        uploads = dict(changed)
        if settings_content is not None:
            uploads[SETTINGS_FILENAME] = settings_content

        if not uploads and not deletions:
            return SyncResult(success=True), set()

        message = generate_commit_message(len(uploads), len(deletions))
        commit = client.batch_commit(uploads, deletions, message)
        if not commit.success:
            result = _failed_sync(commit.error_kind, commit.error)
            result.files_failed = len(changed) + len(deletions)
            if settings_content is not None:
                result.settings_error = commit.error
            return result, set()

        result = SyncResult(
            success=True,
            files_uploaded=len(changed),
            files_deleted=len(deletions),
            settings_synced=settings_content is not None,
            commit_sha=commit.commit_sha,
        )
        return result, set(changed) | set(deletions)

    def _push_files(self, client: Any, changed: Dict[str, str], deletions: List[str],
                    remote_files: Dict[str, RemoteFile], settings_content: Optional[str],
                    settings_file: Optional[RemoteFile]) -> Tuple[SyncResult, Set[str]]:
        written: Set[str] = set()
        failed = 0
        last_error: Optional[str] = None
        last_kind: Optional[ErrorKind] = None

        for name in sorted(changed):
            sha = remote_files[name].sha if name in remote_files else None
            res = client.write_file(name, changed[name], sha=sha, message=generate_commit_message(1, 0))
            if res.success:
                written.add(name)
            else:
                failed += 1
                last_error, last_kind = res.error, res.error_kind

        deleted = 0
        for name in deletions:
            res = client.delete_file(name, remote_files[name].sha, message=generate_commit_message(0, 1))
            if res.success:
                deleted += 1
                written.add(name)
            else:
                failed += 1
                last_error, last_kind = res.error, res.error_kind

        settings_synced = False
        settings_error: Optional[str] = None
        if settings_content is not None:
            sha = settings_file.sha if settings_file else None
            res = client.write_file(SETTINGS_FILENAME, settings_content, sha=sha, message='Sync settings')
            if res.success:
                settings_synced = True
            else:
                settings_error = res.error
                logging.warning(f'Settings upload failed: {res.error}')

        attempted = len(changed) + len(deletions)
        all_failed = attempted > 0 and failed == attempted
        result = SyncResult(
            success=not all_failed,
            files_uploaded=len(written) - deleted,
            files_deleted=deleted,
            files_failed=failed,
            partial=0 < failed < attempted,
            settings_synced=settings_synced,
            settings_error=settings_error,
        )
        if failed:
            result.error, result.error_kind = last_error, last_kind
        if all_failed:
            result.message = get_error_message(last_kind)
        return result, written

    def _record_sync(self, client: Any, result: SyncResult) -> None:
        """Store the remote's newest commit time as the last sync and clear the local-changes flag."""
        res = client.latest_commit_timestamp()
        if res.success:
            self.state.set_last_sync(res.data)
            result.commit_timestamp = res.data
        else:
            logging.warning(f'Could not read the remote commit time, last sync not updated: {res.error}')
        self.state.set_dirty(False)

    # Pull

    def sync_down(self, config: Optional[SyncConfig] = None,
                  days: Optional[int] = DEFAULT_DAYS_TO_FETCH) -> PullResult:
        """Download the most recent remote shards.

        Nothing local is changed.

        Args:
            config: Remote settings. Defaults to the configured settings.
            days: Number of most recent days to download. None downloads every shard.

        Returns:
            PullResult: Decoded records, remote app settings if enabled, and whether older days remain.
        """
        return self._run('sync_down', _failed_pull, self._sync_down, config, days)

    def fetch_all_remote(self, config: Optional[SyncConfig] = None) -> PullResult:
        """Download every remote shard. Nothing local is changed."""
        return self._run('fetch_all_remote', _failed_pull, self._sync_down, config, None)

    def _sync_down(self, config: SyncConfig, days: Optional[int] = DEFAULT_DAYS_TO_FETCH,
                   client: Any = None) -> PullResult:
        client = client or self.client_factory(config)

        listing = client.list_files()
        if not listing.success:
            return _failed_pull(listing.error_kind, listing.error)

        shards = sorted(
            (f for f in listing.data if is_shard_filename(f.name)),
            key=lambda f: day_from_filename(f.name),
            reverse=True,
        )
        selected = shards if days is None else shards[:max(days, 0)]

        result = PullResult(success=True, has_more=len(shards) > len(selected))
        for f in selected:
            res = client.read_file(f.path)
            if not res.success:
                return _failed_pull(res.error_kind, res.error)
            if res.data is None:
                logging.debug(f'"{f.path}" disappeared after listing, skipping.')
                continue
            try:
                records = codec.decode_records(res.data.content)
            except codec.CodecError as ex:
                return _failed_pull(ErrorKind.CODEC, f'{f.name}: {ex}')
            result.records.extend(records)
            result.remote_hashes[f.name] = compute_hash(res.data.content)
            result.files_downloaded += 1

        if lib.settings.app_settings().get('sync_settings'):
            res = client.read_file(SETTINGS_FILENAME)
            if res.success and res.data is not None:
                try:
                    result.settings = codec.decode_settings(res.data.content)
                    result.remote_hashes[SETTINGS_FILENAME] = compute_settings_hash(result.settings)
                except codec.CodecError as ex:
                    logging.warning(f'Ignoring unreadable remote settings: {ex}')
            elif not res.success:
                logging.warning(f'Could not download remote settings: {res.error}')

        result.message = f'Downloaded {len(result.records)} records from {result.files_downloaded} files'
        logging.info(f'{result.message}{" (older days remain)" if result.has_more else ""}.')
        return result

    # Merge

    def analyze_conflicts(self, config: Optional[SyncConfig] = None) -> ConflictAnalysis:
        """Preview what a merge with the remote would change. Nothing is modified."""
        return self._run('analyze_conflicts', _failed_analysis, self._analyze_conflicts, config)

    def _analyze_conflicts(self, config: SyncConfig) -> ConflictAnalysis:
        pull = self._sync_down(config, None)
        if not pull.success:
            return _failed_analysis(pull.error_kind, pull.error)

        m = merge(self.store.get_all_records(), pull.records, self.state.get_last_sync())
        return ConflictAnalysis(
            success=True,
            message=(
                f'{m.new_from_remote} new from remote, {m.updated_from_remote} updated from remote, '
                f'{m.updated_from_local} newer locally, {m.local_only} local only, '
                f'{m.deleted_locally} deleted locally'
            ),
            new_from_remote=m.new_from_remote,
            remote_wins=m.updated_from_remote,
            local_wins=m.updated_from_local,
            local_only=m.local_only,
            deleted_locally=m.deleted_locally,
        )

    def smart_merge(self, config: Optional[SyncConfig] = None) -> SyncResult:
        """Merge every remote record into the local store and push the merged result.

        The local-changes flag is only cleared when the push succeeds.
        """
        return self._run('smart_merge', _failed_sync, self._smart_merge, config)

    def _smart_merge(self, config: SyncConfig, client: Any = None) -> SyncResult:
        client = client or self.client_factory(config)

        pull = self._sync_down(config, None, client=client)
        if not pull.success:
            return _failed_sync(pull.error_kind, pull.error)

        # The hash map now describes what is actually on the remote
        self.hashes.save(pull.remote_hashes)

        m = merge(self.store.get_all_records(), pull.records, self.state.get_last_sync())
        self.store.replace_all_records(m.merged)

        if pull.settings is not None:
            lib.settings.apply_remote_app_settings(pull.settings)

        result = self._sync_up(config, m.merged, client=client)
        result.merge = m
        result.message = (
            f'Merged: {m.new_from_remote} new from remote, {m.updated_from_remote} updated from remote. '
            f'{result.message}'
        )
        return result

    # Combined

    def smart_sync(self, config: Optional[SyncConfig] = None) -> SyncResult:
        """Determine the direction and act on it.

        in_sync does nothing, push pushes, pull merges. A conflict is returned
        unresolved so the caller can review :meth:`analyze_conflicts` and then
        confirm with :meth:`smart_merge`.
        """
        return self._run('smart_sync', _failed_sync, self._smart_sync, config)

    def _smart_sync(self, config: SyncConfig) -> SyncResult:
        client = self.client_factory(config)
        d = self._determine_sync_direction(config, None, client=client)

        if d.direction == SyncDirection.Error:
            result = _failed_sync(d.error_kind, d.error)
        elif d.direction == SyncDirection.InSync:
            result = SyncResult(success=True, message='Already in sync.')
        elif d.direction == SyncDirection.Push:
            result = self._sync_up(config, client=client)
            if result.error_kind == ErrorKind.CONFLICT and not result.files_uploaded:
                logging.info('Remote changed during push, merging instead.')
                result = self._smart_merge(config, client=client)
        elif d.direction == SyncDirection.Pull:
            result = self._smart_merge(config, client=client)
        else:
            result = SyncResult(
                success=False,
                message='Local and remote both changed since the last sync. Review and confirm a merge.',
                error='Local and remote both changed since the last sync.',
                error_kind=ErrorKind.CONFLICT,
            )
        result.direction = d.direction
        return result


sync: Optional[SyncAPI] = None


def get_sync() -> SyncAPI:
    """Return the shared sync orchestrator, creating it on first use."""
    global sync
    if sync is None:
        sync = SyncAPI()
    return sync
