import json

from PySide6 import QtCore

from ExpenseSync.core import codec
from ExpenseSync.core import sync
from ExpenseSync.core.model import SyncConfig, SyncDirection
from ExpenseSync.core.signals import signals
from ExpenseSync.settings import lib
from ExpenseSync.status.status import ErrorKind
from tests.base import BaseSyncTestCase, make_record

DAY_15 = 'expenses-2025-01-15.csv'
DAY_16 = 'expenses-2025-01-16.csv'
DAY_17 = 'expenses-2025-01-17.csv'


class SyncUpTests(BaseSyncTestCase):

    def _push(self, *records):
        self.store.records = list(records)
        self.api.mark_local_change()
        return self.api.sync_up(self.config)

    def test_push_uploads_every_day_in_one_commit(self):
        result = self._push(make_record('a'), make_record('b'), make_record('c', day='2025-01-16'))

        self.assertTrue(result.success, result.error)
        self.assertEqual(result.files_uploaded, 2)
        self.assertEqual(result.files_skipped, 0)
        self.assertEqual(sorted(self.remote.files), [DAY_15, DAY_16])
        self.assertEqual(len(self.remote.calls_to('batch_commit')), 1)
        self.assertEqual(sorted(self.state.load_hashes()), [DAY_15, DAY_16])

    def test_push_records_sync(self):
        result = self._push(make_record('a'))

        self.assertEqual(self.state.get_last_sync(), self.remote.head_time)
        self.assertEqual(result.commit_timestamp, self.remote.head_time)
        self.assertFalse(self.state.is_dirty())

    def test_second_push_writes_nothing(self):
        records = [make_record('a'), make_record('b', day='2025-01-16')]
        self._push(*records)
        writes = self.remote.writes

        result = self._push(*records)

        self.assertTrue(result.success)
        self.assertEqual(result.files_uploaded, 0)
        self.assertEqual(result.files_skipped, 2)
        self.assertEqual(self.remote.writes, writes)

    def test_only_changed_days_are_uploaded(self):
        self._push(make_record('a'), make_record('b', day='2025-01-16'))

        result = self._push(make_record('a', amount='99.00', updated='2025-01-15T11:00:00'),
                            make_record('b', day='2025-01-16'))

        self.assertEqual(result.files_uploaded, 1)
        self.assertEqual(result.files_skipped, 1)
        self.assertEqual(self.remote.calls_to('batch_commit')[-1][1], (DAY_15,))

    def test_input_order_does_not_matter(self):
        a, b = make_record('a'), make_record('b', created='2025-01-15T08:00:00')
        self._push(a, b)
        result = self._push(b, a)
        self.assertEqual(result.files_uploaded, 0)

    def test_day_without_records_inside_range_is_deleted(self):
        self._push(make_record('a'), make_record('b', day='2025-01-16'), make_record('c', day='2025-01-17'))

        result = self._push(make_record('a'), make_record('c', day='2025-01-17'))

        self.assertEqual(result.files_deleted, 1)
        self.assertEqual(sorted(self.remote.files), [DAY_15, DAY_17])
        self.assertNotIn(DAY_16, self.state.load_hashes())

    def test_untracked_day_outside_range_is_kept(self):
        self.remote.seed([make_record('old', day='2025-01-10')])
        result = self._push(make_record('a'), make_record('b', day='2025-01-16'))

        self.assertEqual(result.files_deleted, 0)
        self.assertIn('expenses-2025-01-10.csv', self.remote.files)

    def test_tracked_day_outside_range_is_deleted(self):
        self._push(make_record('old', day='2025-01-10'), make_record('a'))
        result = self._push(make_record('a'))

        self.assertEqual(result.files_deleted, 1)
        self.assertEqual(sorted(self.remote.files), [DAY_15])

    def test_non_shard_files_are_never_deleted(self):
        self.remote.files['README.md'] = '# Expenses\n'
        self._push(make_record('a'))
        self._push(make_record('b', day='2025-01-16'))
        self.assertIn('README.md', self.remote.files)

    def test_missing_remote_day_is_uploaded_again(self):
        self._push(make_record('a'), make_record('b', day='2025-01-16'))
        del self.remote.files[DAY_16]

        result = self._push(make_record('a'), make_record('b', day='2025-01-16'))

        self.assertEqual(result.files_uploaded, 1)
        self.assertIn(DAY_16, self.remote.files)

    def test_explicit_records(self):
        self.store.records = [make_record('a')]
        result = self.api.sync_up(self.config, records=[make_record('z', day='2025-01-16')])

        self.assertTrue(result.success)
        self.assertEqual(sorted(self.remote.files), [DAY_16])

    def test_remote_content_matches_local_records(self):
        records = [make_record('a'), make_record('b', day='2025-01-16', note='Taxi, airport')]
        self._push(*records)
        self.assertEqual(sorted(self.remote.records(), key=lambda r: r.id), records)

    def test_failed_commit_keeps_state(self):
        self._push(make_record('a'))
        hashes = self.state.load_hashes()
        last_sync = self.state.get_last_sync()

        self.remote.failures['batch_commit'] = ErrorKind.CONFLICT
        result = self._push(make_record('a', amount='1.00', updated='2025-01-15T11:00:00'),
                            make_record('b', day='2025-01-16'))

        self.assertFalse(result.success)
        self.assertEqual(result.error_kind, ErrorKind.CONFLICT)
        self.assertEqual(result.files_failed, 2)
        self.assertEqual(self.state.load_hashes(), hashes)
        self.assertEqual(self.state.get_last_sync(), last_sync)
        self.assertTrue(self.state.is_dirty())

    def test_list_failure(self):
        self.remote.failures['list_files'] = ErrorKind.AUTH
        result = self._push(make_record('a'))

        self.assertFalse(result.success)
        self.assertEqual(result.error_kind, ErrorKind.AUTH)
        self.assertEqual(self.remote.writes, 0)

    def test_commit_time_unavailable_keeps_last_sync(self):
        self.remote.failures['latest_commit_timestamp'] = ErrorKind.RATE_LIMIT
        result = self._push(make_record('a'))

        self.assertTrue(result.success)
        self.assertIsNone(self.state.get_last_sync())
        self.assertFalse(self.state.is_dirty())


class SimplePushTests(BaseSyncTestCase):

    def setUp(self):
        super().setUp()
        self.api.atomic = False

    def test_file_by_file(self):
        self.store.records = [make_record('a'), make_record('b', day='2025-01-16')]
        result = self.api.sync_up(self.config)

        self.assertTrue(result.success)
        self.assertEqual(result.files_uploaded, 2)
        self.assertEqual(len(self.remote.calls_to('write_file')), 2)
        self.assertEqual(self.remote.calls_to('batch_commit'), [])

    def test_update_sends_current_sha(self):
        self.store.records = [make_record('a')]
        self.api.sync_up(self.config)
        self.store.records = [make_record('a', amount='2.00', updated='2025-01-15T11:00:00')]

        result = self.api.sync_up(self.config)

        self.assertTrue(result.success, result.error)
        self.assertEqual(result.files_uploaded, 1)

    def test_deletes_file_by_file(self):
        self.store.records = [make_record('a'), make_record('b', day='2025-01-16'), make_record('c', day='2025-01-17')]
        self.api.sync_up(self.config)
        self.store.records = [make_record('a'), make_record('c', day='2025-01-17')]

        result = self.api.sync_up(self.config)

        self.assertEqual(result.files_deleted, 1)
        self.assertEqual(self.remote.calls_to('delete_file'), [('delete_file', DAY_16)])

    def test_failed_delete_is_retried(self):
        day_10 = 'expenses-2025-01-10.csv'
        self.store.records = [make_record('a', day='2025-01-10'), make_record('b')]
        self.api.sync_up(self.config)

        # The 15th is outside the local range once 'b' is gone, only tracking keeps it selected
        self.store.records = [make_record('a', day='2025-01-10')]
        self.remote.fail_once['delete_file'] = ErrorKind.UNKNOWN
        result = self.api.sync_up(self.config)

        self.assertEqual(result.files_deleted, 0)
        self.assertEqual(result.files_failed, 1)
        self.assertIn(DAY_15, self.state.load_hashes())

        result = self.api.sync_up(self.config)

        self.assertEqual(result.files_deleted, 1)
        self.assertEqual(sorted(self.remote.files), [day_10])
        self.assertEqual(sorted(self.state.load_hashes()), [day_10])

    def test_partial_failure(self):
        self.store.records = [make_record('a'), make_record('b', day='2025-01-16')]
        self.api.mark_local_change()
        self.remote.fail_paths[DAY_16] = ErrorKind.UNKNOWN

        result = self.api.sync_up(self.config)

        self.assertTrue(result.success)
        self.assertTrue(result.partial)
        self.assertEqual(result.files_uploaded, 1)
        self.assertEqual(result.files_failed, 1)
        self.assertEqual(sorted(self.state.load_hashes()), [DAY_15])
        self.assertTrue(self.state.is_dirty())
        self.assertIsNone(self.state.get_last_sync())

        # The failed day is retried, the uploaded one is not
        del self.remote.fail_paths[DAY_16]
        result = self.api.sync_up(self.config)

        self.assertEqual(result.files_uploaded, 1)
        self.assertEqual(result.files_skipped, 1)
        self.assertFalse(self.state.is_dirty())

    def test_every_write_failing(self):
        self.store.records = [make_record('a'), make_record('b', day='2025-01-16')]
        self.remote.failures['write_file'] = ErrorKind.PERMISSION

        result = self.api.sync_up(self.config)

        self.assertFalse(result.success)
        self.assertFalse(result.partial)
        self.assertEqual(result.error_kind, ErrorKind.PERMISSION)
        self.assertEqual(self.state.load_hashes(), {})


class SettingsSyncTests(BaseSyncTestCase):

    def setUp(self):
        super().setUp()
        app = lib.settings.get_section('app')
        app['sync_settings'] = True
        lib.settings.set_section('app', app)
        self.store.records = [make_record('a')]

    def test_settings_are_pushed_with_the_records(self):
        result = self.api.sync_up(self.config)

        self.assertTrue(result.settings_synced)
        self.assertEqual(self.remote.calls_to('batch_commit')[0][1], (DAY_15, sync.SETTINGS_FILENAME))
        self.assertTrue(codec.decode_settings(self.remote.files[sync.SETTINGS_FILENAME])['sync_settings'])

    def test_unchanged_settings_are_skipped(self):
        self.api.sync_up(self.config)

        # Saving the same values only moves the timestamp
        lib.settings.set_section('app', lib.settings.get_section('app'))
        result = self.api.sync_up(self.config)

        self.assertTrue(result.settings_skipped)
        self.assertFalse(result.settings_synced)
        self.assertEqual(len(self.remote.calls_to('batch_commit')), 1)

    def test_changed_settings_are_pushed(self):
        self.api.sync_up(self.config)

        app = lib.settings.get_section('app')
        app['theme'] = 'dark'
        lib.settings.set_section('app', app)
        result = self.api.sync_up(self.config)

        self.assertTrue(result.settings_synced)
        self.assertEqual(self.remote.calls_to('batch_commit')[-1][1], (sync.SETTINGS_FILENAME,))

    def test_settings_not_pushed_when_disabled(self):
        app = lib.settings.get_section('app')
        app['sync_settings'] = False
        lib.settings.set_section('app', app)

        self.api.sync_up(self.config)
        self.assertNotIn(sync.SETTINGS_FILENAME, self.remote.files)

    def test_newer_remote_settings_are_applied_on_merge(self):
        remote_settings = dict(lib.settings.get_section('app'), theme='dark', updated_at='2999-01-01T00:00:00.000Z')
        self.remote.files[sync.SETTINGS_FILENAME] = codec.encode_settings(remote_settings)
        self.remote.seed([make_record('a')])

        result = self.api.smart_merge(self.config)

        self.assertTrue(result.success, result.error)
        self.assertEqual(lib.settings.app_settings()['theme'], 'dark')
        self.assertTrue(result.settings_skipped)

    def test_remote_settings_with_numeric_timestamp_do_not_break_merge(self):
        remote_settings = dict(lib.settings.get_section('app'), theme='dark', updated_at=1735689600)
        self.remote.files[sync.SETTINGS_FILENAME] = codec.encode_settings(remote_settings)
        self.remote.seed([make_record('a'), make_record('b')])

        result = self.api.smart_merge(self.config)

        self.assertTrue(result.success, result.error)
        self.assertEqual(lib.settings.app_settings()['theme'], 'system')
        self.assertEqual({r.id for r in self.store.records}, {'a', 'b'})
        self.assertEqual(self.state.get_last_sync(), self.remote.head_time)


class DirectionTests(BaseSyncTestCase):

    def direction(self, **kwargs):
        return self.api.determine_sync_direction(self.config, **kwargs).direction

    def test_fresh_and_empty(self):
        self.assertEqual(self.direction(), SyncDirection.InSync)

    def test_local_changes_only(self):
        self.api.mark_local_change()
        self.assertEqual(self.direction(), SyncDirection.Push)

    def test_never_synced_with_remote_data(self):
        self.remote.seed([make_record('a')])
        self.assertEqual(self.direction(), SyncDirection.Pull)
        self.assertEqual(self.direction(has_local_changes=True), SyncDirection.Conflict)

    def test_after_sync(self):
        self.store.records = [make_record('a')]
        self.api.mark_local_change()
        self.api.sync_up(self.config)
        self.assertEqual(self.direction(), SyncDirection.InSync)

        self.api.mark_local_change()
        self.assertEqual(self.direction(), SyncDirection.Push)

        self.remote.commit()
        self.assertEqual(self.direction(), SyncDirection.Conflict)
        self.assertEqual(self.direction(has_local_changes=False), SyncDirection.Pull)

    def test_result_times(self):
        self.remote.seed([make_record('a')])
        result = self.api.determine_sync_direction(self.config)
        self.assertIsNone(result.local_time)
        self.assertEqual(result.remote_time, self.remote.head_time)

    def test_remote_failure(self):
        self.remote.failures['latest_commit_timestamp'] = ErrorKind.AUTH
        result = self.api.determine_sync_direction(self.config)

        self.assertEqual(result.direction, SyncDirection.Error)
        self.assertEqual(result.error_kind, ErrorKind.AUTH)

    def test_direction_signal(self):
        emitted = []

        def on_direction(value):
            emitted.append(value)

        signals.syncDirectionDetermined.connect(on_direction)
        try:
            self.api.determine_sync_direction(self.config)
        finally:
            signals.syncDirectionDetermined.disconnect(on_direction)
        self.assertEqual(emitted, ['in_sync'])


class SyncDownTests(BaseSyncTestCase):

    def setUp(self):
        super().setUp()
        self.remote.seed([make_record(f'r{day}', day=f'2025-01-{day:02d}') for day in range(1, 11)])
        self.calls_before = len(self.remote.calls)

    def test_recent_days(self):
        result = self.api.sync_down(self.config, days=7)

        self.assertTrue(result.success)
        self.assertEqual(result.files_downloaded, 7)
        self.assertTrue(result.has_more)
        self.assertEqual({r.id for r in result.records}, {f'r{day}' for day in range(4, 11)})

    def test_default_is_one_week(self):
        result = self.api.sync_down(self.config)
        self.assertEqual(result.files_downloaded, sync.DEFAULT_DAYS_TO_FETCH)

    def test_all_days(self):
        result = self.api.sync_down(self.config, days=None)
        self.assertEqual(result.files_downloaded, 10)
        self.assertFalse(result.has_more)
        self.assertEqual(len(self.api.fetch_all_remote(self.config).records), 10)

    def test_missing_repository_is_reported(self):
        self.remote.failures['list_files'] = ErrorKind.NOT_FOUND
        result = self.api.sync_down(self.config)

        self.assertFalse(result.success)
        self.assertEqual(result.error_kind, ErrorKind.NOT_FOUND)
        self.assertEqual(result.records, [])

    def test_nothing_local_changes(self):
        self.store.records = [make_record('local')]
        self.api.sync_down(self.config, days=None)

        self.assertEqual(self.store.replace_calls, 0)
        self.assertEqual(self.state.load_hashes(), {})
        self.assertIsNone(self.state.get_last_sync())
        self.assertEqual(self.remote.writes, 0)

    def test_unreadable_file_aborts(self):
        self.remote.files['expenses-2025-01-10.csv'] = 'garbage\n'
        result = self.api.sync_down(self.config, days=None)

        self.assertFalse(result.success)
        self.assertEqual(result.error_kind, ErrorKind.CODEC)
        self.assertEqual(result.records, [])

    def test_read_failure(self):
        self.remote.failures['read_file'] = ErrorKind.RATE_LIMIT
        result = self.api.sync_down(self.config)
        self.assertEqual(result.error_kind, ErrorKind.RATE_LIMIT)


class MergeTests(BaseSyncTestCase):

    def test_analyze_changes_nothing(self):
        self.store.records = [make_record('a', updated='2025-01-15T10:00:00'), make_record('c')]
        self.remote.seed([make_record('a', updated='2025-01-15T11:00:00'), make_record('b')])
        commits = self.remote.commits

        result = self.api.analyze_conflicts(self.config)

        self.assertTrue(result.success)
        self.assertEqual(result.new_from_remote, 1)
        self.assertEqual(result.remote_wins, 1)
        self.assertEqual(result.local_wins, 0)
        self.assertEqual(result.local_only, 1)
        self.assertEqual(self.store.replace_calls, 0)
        self.assertEqual(self.remote.commits, commits)
        self.assertEqual(self.state.load_hashes(), {})

    def test_merge_adds_remote_record(self):
        self.store.records = [make_record('A')]
        self.remote.seed([make_record('A'), make_record('B')])

        result = self.api.smart_merge(self.config)

        self.assertTrue(result.success, result.error)
        self.assertEqual(result.merge.new_from_remote, 1)
        self.assertEqual(result.merge.updated_from_remote, 0)
        self.assertEqual({r.id for r in self.store.records}, {'A', 'B'})
        # The merged day already matches the remote
        self.assertEqual(self.remote.calls_to('batch_commit'), [])
        self.assertEqual(self.state.get_last_sync(), self.remote.head_time)

    def test_merge_pushes_newer_local_record(self):
        self.store.records = [make_record('A', amount='2.00', updated='2025-01-15T12:00:00')]
        self.remote.seed([make_record('A', amount='1.00'), make_record('B', day='2025-01-16')])
        self.api.mark_local_change()

        result = self.api.smart_merge(self.config)

        self.assertTrue(result.success, result.error)
        self.assertEqual(result.merge.updated_from_local, 1)
        self.assertEqual(result.files_uploaded, 1)
        remote_a = [r for r in self.remote.records() if r.id == 'A'][0]
        self.assertEqual(str(remote_a.amount), '2.00')
        self.assertFalse(self.state.is_dirty())

    def test_merge_twice_changes_nothing(self):
        self.store.records = [make_record('A')]
        self.remote.seed([make_record('B', day='2025-01-16')])
        self.api.smart_merge(self.config)
        commits = self.remote.commits

        result = self.api.smart_merge(self.config)

        self.assertEqual(result.merge.new_from_remote, 0)
        self.assertEqual(result.files_uploaded, 0)
        self.assertEqual(self.remote.commits, commits)

    def test_merge_failure_keeps_store(self):
        self.store.records = [make_record('A')]
        self.remote.seed([make_record('B')])
        self.remote.failures['read_file'] = ErrorKind.UNKNOWN

        result = self.api.smart_merge(self.config)

        self.assertFalse(result.success)
        self.assertEqual([r.id for r in self.store.records], ['A'])


class SmartSyncTests(BaseSyncTestCase):

    def test_push(self):
        self.store.records = [make_record('a')]
        self.api.mark_local_change()

        result = self.api.smart_sync(self.config)

        self.assertTrue(result.success)
        self.assertEqual(result.direction, SyncDirection.Push)
        self.assertEqual(sorted(self.remote.files), [DAY_15])

    def test_in_sync(self):
        result = self.api.smart_sync(self.config)

        self.assertTrue(result.success)
        self.assertEqual(result.direction, SyncDirection.InSync)
        self.assertEqual(self.remote.writes, 0)

    def test_pull_merges(self):
        self.remote.seed([make_record('a'), make_record('b', day='2025-01-16')])

        result = self.api.smart_sync(self.config)

        self.assertTrue(result.success, result.error)
        self.assertEqual(result.direction, SyncDirection.Pull)
        self.assertEqual({r.id for r in self.store.records}, {'a', 'b'})
        self.assertEqual(self.api.determine_sync_direction(self.config).direction, SyncDirection.InSync)

    def test_conflict_is_not_resolved(self):
        self.store.records = [make_record('a')]
        self.api.mark_local_change()
        self.remote.seed([make_record('b')])

        result = self.api.smart_sync(self.config)

        self.assertFalse(result.success)
        self.assertEqual(result.direction, SyncDirection.Conflict)
        self.assertEqual(result.error_kind, ErrorKind.CONFLICT)
        self.assertEqual(self.remote.writes, 0)
        self.assertEqual(self.store.replace_calls, 0)

    def test_push_conflict_falls_back_to_merge(self):
        self.store.records = [make_record('a')]
        self.api.mark_local_change()
        self.api.smart_sync(self.config)

        self.store.records = [make_record('a'), make_record('b', day='2025-01-16')]
        self.api.mark_local_change()
        self.remote.fail_once['batch_commit'] = ErrorKind.CONFLICT

        result = self.api.smart_sync(self.config)

        self.assertTrue(result.success, result.error)
        self.assertEqual(result.direction, SyncDirection.Push)
        self.assertIsNotNone(result.merge)
        self.assertEqual(sorted(self.remote.files), [DAY_15, DAY_16])

    def test_direction_failure(self):
        self.remote.failures['latest_commit_timestamp'] = ErrorKind.NOT_FOUND
        result = self.api.smart_sync(self.config)

        self.assertFalse(result.success)
        self.assertEqual(result.direction, SyncDirection.Error)
        self.assertEqual(result.error_kind, ErrorKind.NOT_FOUND)


class OrchestratorTests(BaseSyncTestCase):

    def test_busy(self):
        self.assertTrue(self.api._lock.acquire(blocking=False))
        try:
            result = self.api.sync_up(self.config)
        finally:
            self.api._lock.release()

        self.assertFalse(result.success)
        self.assertEqual(result.error_kind, ErrorKind.BUSY)
        self.assertEqual(self.remote.calls, [])

    def test_busy_direction(self):
        self.api._lock.acquire()
        try:
            result = self.api.determine_sync_direction(self.config)
        finally:
            self.api._lock.release()
        self.assertEqual(result.direction, SyncDirection.Error)
        self.assertEqual(result.error_kind, ErrorKind.BUSY)

    def test_incomplete_config(self):
        result = self.api.sync_up(SyncConfig(token='', repo='octocat/expenses', branch='main'))
        self.assertEqual(result.error_kind, ErrorKind.NOT_CONFIGURED)
        self.assertEqual(self.remote.calls, [])

    def test_unconfigured_settings(self):
        result = self.api.sync_up()
        self.assertFalse(result.success)
        self.assertEqual(result.error_kind, ErrorKind.NOT_CONFIGURED)

    def test_configured_settings_are_used(self):
        lib.settings.set_section('github', {'repo': 'octocat/expenses', 'branch': 'main'})
        lib.settings.creds_path.write_text(json.dumps({'token': 'ghp_stored'}), encoding='utf-8')
        self.store.records = [make_record('a')]

        result = self.api.sync_up()

        self.assertTrue(result.success, result.error)
        self.assertEqual(self.state.get_source(), ('octocat/expenses', 'main'))

    def test_status_returns_to_idle(self):
        statuses = []

        def on_status(value):
            statuses.append(value)

        signals.syncStatusChanged.connect(on_status)
        try:
            self.api.sync_up(self.config)
        finally:
            signals.syncStatusChanged.disconnect(on_status)

        self.assertEqual(statuses, ['busy', 'idle'])
        self.assertEqual(self.api.status, sync.SyncStatus.Idle)

    def test_started_and_finished_signals(self):
        started, finished = [], []

        def on_started(operation):
            started.append(operation)

        def on_finished(operation, result):
            finished.append((operation, result))

        signals.syncStarted.connect(on_started)
        signals.syncFinished.connect(on_finished)
        try:
            result = self.api.smart_sync(self.config)
        finally:
            signals.syncStarted.disconnect(on_started)
            signals.syncFinished.disconnect(on_finished)

        self.assertEqual(started, ['smart_sync'])
        self.assertEqual(finished, [('smart_sync', result)])

    def test_changed_repository_uploads_everything_again(self):
        self.store.records = [make_record('a'), make_record('b', day='2025-01-16')]
        self.api.sync_up(self.config)

        other = SyncConfig(token=self.config.token, repo='octocat/other', branch='main')
        result = self.api.sync_up(other)

        self.assertEqual(result.files_uploaded, 2)

    def test_unreadable_local_ledger(self):
        api = sync.SyncAPI(state=self.state, client_factory=self.remote.client)
        lib.settings.ledger_path.write_text('garbage\n', encoding='utf-8')

        result = api.sync_up(self.config)

        self.assertFalse(result.success)
        self.assertEqual(result.error_kind, ErrorKind.CODEC)

    def test_get_sync_is_shared(self):
        self.assertIs(sync.get_sync(), sync.get_sync())

    def test_start_async(self):
        self.store.records = [make_record('a')]

        worker = self.api.start_async('sync_up', self.config)
        self.assertTrue(worker.wait(10000))
        QtCore.QCoreApplication.processEvents()

        self.assertEqual(sorted(self.remote.files), [DAY_15])
        self.assertEqual(self.api.status, sync.SyncStatus.Idle)
