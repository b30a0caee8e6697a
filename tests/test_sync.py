"""
Tests for ExpenseSync.core.sync: load, save and reconciliation across the
local cache and an in-memory remote store, serialization per user, and
coalescing of overlapping syncs.

Run with:
    python -m unittest tests.test_sync
"""
import logging
import threading
from unittest.mock import patch

from ExpenseSync.core import sync
from ExpenseSync.core.connectivity import ConnectivityMonitor
from ExpenseSync.core.model import Category, Session, UserRecord
from ExpenseSync.log import log
from ExpenseSync.status import status
from ExpenseSync.status.status import Status
from tests.base import SyncTestCase


def expense_ids(data) -> set:
    if isinstance(data, UserRecord):
        return set(data.expenses)
    return {e['id'] for e in data['expenses']}


class SerialScopeTests(SyncTestCase):

    def test_admits_in_arrival_order(self):
        scope = sync.SerialScope()
        order = []
        threads = []

        def enter(i):
            with scope:
                order.append(i)

        with scope:
            for i in range(5):
                thread = threading.Thread(target=enter, args=(i,))
                thread.start()
                threads.append(thread)
                self.wait_for(lambda: scope._next_ticket == i + 2)

        for thread in threads:
            thread.join(5)
        self.assertEqual(order, list(range(5)))

    def test_released_on_error(self):
        scope = sync.SerialScope()
        with self.assertRaises(RuntimeError):
            with scope:
                raise RuntimeError('boom')
        with scope:
            pass


class LoadTests(SyncTestCase):

    def test_no_session_returns_none(self):
        coordinator = sync.SyncCoordinator(self.cache, self.remote)
        self.assertIsNone(coordinator.load(self.user_id))
        self.assertEqual(self.remote.reads, 0)

    def test_other_user_returns_none(self):
        self.assertIsNone(self.coordinator.load('someone-else'))
        self.assertEqual(self.remote.reads, 0)

    def test_requires_user_id(self):
        with self.assertRaises(ValueError):
            self.coordinator.load('')

    def test_merges_both_sides(self):
        self.put_remote({'monthlyLimit': 500, 'expenses': [{'id': 1, 'amt': 10}]})
        self.put_local({'monthlyLimit': 300, 'expenses': [{'id': 2, 'amt': 5}]})

        record = self.coordinator.load(self.user_id)

        self.assertEqual(record.monthly_limit, 500)
        self.assertEqual(expense_ids(record), {1, 2})
        self.assertEqual(record.email, self.email)
        self.assertEqual(self.cache.get(self.user_id), record)
        self.assertEqual(expense_ids(self.remote.documents[self.user_id]), {1, 2})
        self.assertFalse(self.coordinator.is_degraded(self.user_id))
        self.assertEqual(self.coordinator.current(self.user_id), record)

    def test_remote_only(self):
        self.put_remote({'name': 'Ada', 'expenses': [{'id': 1}]})

        record = self.coordinator.load(self.user_id)

        self.assertEqual(record.name, 'Ada')
        self.assertEqual(self.cache.get(self.user_id), record)

    def test_promotes_local_when_remote_has_none(self):
        self.put_local({'name': 'Ada', 'expenses': [{'id': 2}]})

        record = self.coordinator.load(self.user_id)

        self.assertEqual(expense_ids(record), {2})
        self.assertEqual(self.remote.documents[self.user_id]['name'], 'Ada')
        self.assertEqual(self.remote.documents[self.user_id]['email'], self.email)

    def test_nothing_anywhere(self):
        self.assertIsNone(self.coordinator.load(self.user_id))
        self.assertFalse(self.coordinator.is_degraded(self.user_id))
        self.assertEqual(self.remote.writes, 0)

    def test_unreachable_falls_back_to_local(self):
        self.put_local({'expenses': [{'id': 2}]})
        local = self.cache.get(self.user_id)
        self.remote.reachable = False

        record = self.coordinator.load(self.user_id)

        self.assertEqual(record, local)
        self.assertTrue(self.coordinator.is_degraded(self.user_id))

    def test_unreachable_without_local(self):
        self.remote.reachable = False
        self.assertIsNone(self.coordinator.load(self.user_id))
        self.assertTrue(self.coordinator.is_degraded(self.user_id))

    def test_failed_propagation_is_degraded(self):
        self.put_remote({'expenses': [{'id': 1}]})
        self.put_local({'expenses': [{'id': 2}]})
        self.remote.writable = False

        record = self.coordinator.load(self.user_id)

        self.assertEqual(expense_ids(record), {1, 2})
        self.assertEqual(expense_ids(self.cache.get(self.user_id)), {1, 2})
        self.assertTrue(self.coordinator.is_degraded(self.user_id))

    def test_corrupt_local_snapshot_is_ignored(self):
        conn = self.cache.connection()
        try:
            conn.execute(
                'INSERT INTO snapshots (user_id, payload, updated) VALUES (?, ?, ?)',
                (self.user_id, '{"broken":', '2025-01-01')
            )
            conn.commit()
        finally:
            conn.close()
        self.put_remote({'expenses': [{'id': 1}]})

        record = self.coordinator.load(self.user_id)

        self.assertEqual(expense_ids(record), {1})
        self.assertEqual(self.cache.get(self.user_id), record)

    def test_load_does_not_emit(self):
        self.put_remote({'name': 'Ada'})
        self.coordinator.load(self.user_id)
        self.assertEqual(self.changes, [])


class SessionTests(SyncTestCase):

    def test_session_start_and_end(self):
        self.put_remote({'name': 'Ada'})
        coordinator = sync.SyncCoordinator(self.cache, self.remote)
        changes = []
        coordinator.userDataChanged.connect(changes.append)

        coordinator.set_session(self.session)

        self.assertEqual(coordinator.session, self.session)
        self.assertEqual(changes[-1].name, 'Ada')

        coordinator.set_session(None)

        self.assertIsNone(changes[-1])
        self.assertIsNone(coordinator.current(self.user_id))
        self.assertIsNone(coordinator.session)

    def switch_during_sync(self, session):
        """Hold a background sync of user-1 at the remote read while the session changes."""
        gate = threading.Event()
        self.remote.read_gate = gate
        future = self.coordinator.sync_async(self.user_id)
        self.assertTrue(self.remote.read_started.wait(5))
        self.remote.read_gate = None

        switcher = threading.Thread(target=self.coordinator.set_session, args=(session,))
        switcher.start()
        self.wait_for(lambda: self.coordinator.session == session)
        return future, gate, switcher

    def test_user_switch_during_sync_keeps_identity(self):
        self.put_remote({'email': self.email, 'expenses': [{'id': 1}]})
        self.put_local({'email': self.email, 'expenses': [{'id': 2}]})
        other = Session('user-2', 'bob@example.com')

        future, gate, switcher = self.switch_during_sync(other)
        switcher.join(5)
        gate.set()
        result = future.result(timeout=5)

        self.assertFalse(result.success)
        self.assertEqual(result.status, Status.NotAuthenticated)
        self.assertEqual(self.remote.write_log, [])
        snapshot = self.cache.get(self.user_id)
        self.assertEqual(snapshot.id, self.user_id)
        self.assertEqual(snapshot.email, self.email)
        self.assertEqual(self.remote.documents[self.user_id]['email'], self.email)
        self.assertIsNone(self.cache.get('user-2'))

    def test_sign_out_during_sync(self):
        self.put_remote({'email': self.email, 'expenses': [{'id': 1}]})
        self.put_local({'email': self.email, 'expenses': [{'id': 2}]})

        future, gate, switcher = self.switch_during_sync(None)
        gate.set()
        result = future.result(timeout=5)
        switcher.join(5)

        self.assertFalse(result.success)
        self.assertEqual(result.status, Status.NotAuthenticated)
        self.assertEqual(self.remote.write_log, [])
        self.assertEqual(expense_ids(self.cache.get(self.user_id)), {2})
        self.assertIsNone(self.coordinator.current(self.user_id))
        self.assertIsNone(self.coordinator.session)

    def test_queued_save_keeps_identity_after_switch(self):
        self.put_remote({'email': self.email, 'expenses': [{'id': 1}]})
        gate = threading.Event()
        self.remote.read_gate = gate
        future = self.coordinator.sync_async(self.user_id)
        self.assertTrue(self.remote.read_started.wait(5))
        self.remote.read_gate = None

        saver = threading.Thread(target=self.coordinator.add_expense, args=(self.user_id, {'id': 3}))
        saver.start()
        scope = self.coordinator._scope(self.user_id)
        self.wait_for(lambda: scope._next_ticket == 2)

        self.coordinator.set_session(Session('user-2', 'bob@example.com'))
        gate.set()
        future.result(timeout=5)
        saver.join(5)

        snapshot = self.cache.get(self.user_id)
        self.assertEqual(snapshot.id, self.user_id)
        self.assertEqual(snapshot.email, self.email)
        self.assertIn(3, snapshot.expenses)
        self.assertEqual(self.remote.documents[self.user_id]['email'], self.email)


class SaveTests(SyncTestCase):

    def test_save(self):
        result = self.coordinator.save(self.user_id, {'monthlyLimit': 250})

        self.assertTrue(result.confirmed)
        self.assertEqual(result.record.monthly_limit, 250)
        self.assertIsNotNone(result.record.updated_at)
        self.assertEqual(self.cache.get(self.user_id), result.record)
        self.assertEqual(self.remote.documents[self.user_id]['monthlyLimit'], 250)
        self.assertEqual(self.changes[-1], result.record)

    def test_save_overlays_in_memory_record(self):
        self.put_remote({'expenses': [{'id': 1}]})
        self.coordinator.load(self.user_id)

        result = self.coordinator.save(self.user_id, {'name': 'Ada'})

        self.assertEqual(result.record.name, 'Ada')
        self.assertEqual(expense_ids(result.record), {1})
        self.assertEqual(expense_ids(self.remote.documents[self.user_id]), {1})

    def test_save_starts_from_cache(self):
        self.put_local({'expenses': [{'id': 2}]})
        result = self.coordinator.save(self.user_id, {'name': 'Ada'})
        self.assertEqual(expense_ids(result.record), {2})

    def test_save_unreachable_keeps_local(self):
        self.put_local({'expenses': [{'id': 1}]})
        self.remote.reachable = False

        result = self.coordinator.save(self.user_id, {'monthlyLimit': 100})

        self.assertTrue(result.success)
        self.assertTrue(result.degraded)
        self.assertEqual(result.status, Status.Unreachable)
        cached = self.cache.get(self.user_id)
        self.assertEqual(cached.monthly_limit, 100)
        self.assertEqual(expense_ids(cached), {1})
        self.assertTrue(self.coordinator.is_degraded(self.user_id))
        self.assertEqual(self.remote.writes, 0)

    def test_degraded_save_is_reported(self):
        log.setup_logging(enable_stream_handler=False, enable_qt_handler=False)
        self.addCleanup(log.setup_logging, enable_qt_handler=False)
        self.remote.reachable = False

        logging.warning('Unrelated warning.')
        self.coordinator.save(self.user_id, {'monthlyLimit': 100})

        messages = self.coordinator.messages()
        self.assertTrue(any(f'Remote write for "{self.user_id}" failed' in m for m in messages))
        self.assertFalse(any('Unrelated warning.' in m for m in messages))

    def test_save_without_session(self):
        coordinator = sync.SyncCoordinator(self.cache, self.remote)

        result = coordinator.save(None, {'monthlyLimit': 50})

        self.assertTrue(result.degraded)
        self.assertEqual(result.status, Status.NotAuthenticated)
        keys = self.cache.keys()
        self.assertEqual(len(keys), 1)
        self.assertTrue(keys[0].startswith(sync.LOCAL_ID_PREFIX))
        self.assertEqual(self.cache.get(keys[0]).monthly_limit, 50)
        self.assertEqual(result.record.id, keys[0])
        self.assertEqual(self.remote.writes, 0)

    def test_saves_without_session_leave_no_scopes(self):
        coordinator = sync.SyncCoordinator(self.cache, self.remote)

        coordinator.save(None, {'monthlyLimit': 50})
        coordinator.save(None, {'monthlyLimit': 60})

        self.assertEqual(len(self.cache.keys()), 2)
        self.assertEqual(coordinator._scopes, {})

    def test_save_requires_user_id_when_signed_in(self):
        with self.assertRaises(ValueError):
            self.coordinator.save(None, {'name': 'x'})

    def test_save_rejects_non_mapping(self):
        with self.assertRaises(TypeError):
            self.coordinator.save(self.user_id, ['name'])

    def test_duplicate_ids_in_partial(self):
        with self.assertRaises(ValueError):
            self.coordinator.save(self.user_id, {'expenses': [{'id': 1}, {'id': 1}]})
        self.assertIsNone(self.cache.get(self.user_id))

    def test_add_and_remove_expense(self):
        self.coordinator.add_expense(self.user_id, {'id': 'e1', 'amount': 10, 'categoryId': 'food'})
        result = self.coordinator.add_expense(self.user_id, {'id': 'e2', 'amount': 4})
        self.assertEqual(expense_ids(result.record), {'e1', 'e2'})

        writes = self.remote.writes
        with self.assertRaises(ValueError):
            self.coordinator.add_expense(self.user_id, {'id': 'e1', 'amount': 99})
        self.assertEqual(self.remote.writes, writes)
        self.assertEqual(self.cache.get(self.user_id).expenses['e1'].amount, 10)

        result = self.coordinator.remove_expense(self.user_id, 'e1')
        self.assertEqual(expense_ids(result.record), {'e2'})
        self.assertEqual(expense_ids(self.remote.documents[self.user_id]), {'e2'})

    def test_add_and_remove_category(self):
        result = self.coordinator.add_category(self.user_id, Category(id='food', label='Food'))
        self.assertIn('food', result.record.categories)

        with self.assertRaises(ValueError):
            self.coordinator.add_category(self.user_id, {'id': 'food', 'label': 'Again'})

        result = self.coordinator.remove_category(self.user_id, 'food')
        self.assertEqual(result.record.categories, {})

    def test_set_monthly_limit(self):
        result = self.coordinator.set_monthly_limit(self.user_id, 250.5)
        self.assertEqual(result.record.monthly_limit, 250.5)
        with self.assertRaises(TypeError):
            self.coordinator.set_monthly_limit(self.user_id, True)
        with self.assertRaises(TypeError):
            self.coordinator.set_monthly_limit(self.user_id, '100')


class ReconcileTests(SyncTestCase):

    def test_union_written_to_both_sides(self):
        self.put_remote({'expenses': [{'id': 1, 'amt': 10}]})
        self.put_local({'expenses': [{'id': 2, 'amt': 5}]})

        result = self.coordinator.sync(self.user_id)

        self.assertTrue(result.confirmed)
        self.assertEqual(result.record.to_dict()['expenses'], [{'id': 1, 'amt': 10}, {'id': 2, 'amt': 5}])
        self.assertEqual(self.cache.get(self.user_id), result.record)
        self.assertEqual(self.remote.documents[self.user_id]['expenses'],
                         [{'id': 1, 'amt': 10}, {'id': 2, 'amt': 5}])

    def test_remote_limit_wins(self):
        self.put_remote({'monthlyLimit': 500})
        self.put_local({'monthlyLimit': 300})

        result = self.coordinator.sync(self.user_id)

        self.assertEqual(result.record.monthly_limit, 500)
        self.assertEqual(self.cache.get(self.user_id).monthly_limit, 500)

    def test_nothing_to_sync(self):
        with patch.object(self.cache, 'set', wraps=self.cache.set) as cache_set:
            result = self.coordinator.sync(self.user_id)

        self.assertFalse(result.success)
        self.assertEqual(result.reason, 'nothing to sync')
        self.assertEqual(result.status, Status.NothingToSync)
        self.assertEqual(self.remote.writes, 0)
        cache_set.assert_not_called()
        self.assertEqual(self.cache.keys(), [])

    def test_unreachable(self):
        self.put_local({'expenses': [{'id': 2}]})
        local = self.cache.get(self.user_id)
        self.remote.reachable = False

        with patch.object(self.cache, 'set', wraps=self.cache.set) as cache_set:
            result = self.coordinator.sync(self.user_id)

        self.assertFalse(result.success)
        self.assertTrue(result.degraded)
        self.assertEqual(result.reason, 'remote unreachable')
        self.assertEqual(result.record, local)
        cache_set.assert_not_called()

    def test_write_failure_keeps_union_locally(self):
        self.put_remote({'expenses': [{'id': 1}]})
        self.put_local({'expenses': [{'id': 2}]})
        self.remote.writable = False

        result = self.coordinator.sync(self.user_id)

        self.assertFalse(result.success)
        self.assertTrue(result.degraded)
        self.assertEqual(expense_ids(self.cache.get(self.user_id)), {1, 2})
        self.assertEqual(expense_ids(self.remote.documents[self.user_id]), {1})
        self.assertTrue(self.coordinator.is_degraded(self.user_id))

    def test_propagates_local_only(self):
        self.put_local({'expenses': [{'id': 2}], 'name': 'Ada'})

        result = self.coordinator.sync(self.user_id)

        self.assertTrue(result.confirmed)
        self.assertEqual(expense_ids(self.remote.documents[self.user_id]), {2})
        self.assertEqual(self.remote.documents[self.user_id]['name'], 'Ada')

    def test_propagates_remote_only(self):
        self.put_remote({'expenses': [{'id': 1}], 'name': 'Ada'})

        result = self.coordinator.sync(self.user_id)

        self.assertTrue(result.confirmed)
        self.assertEqual(self.cache.get(self.user_id).name, 'Ada')
        self.assertEqual(expense_ids(self.cache.get(self.user_id)), {1})

    def test_second_sync_changes_nothing(self):
        self.put_remote({'expenses': [{'id': 1, 'amt': 10}], 'monthlyLimit': 500})
        self.put_local({'expenses': [{'id': 2, 'amt': 5}], 'monthlyLimit': 300})
        first = self.coordinator.sync(self.user_id)

        writes = self.remote.writes
        document = dict(self.remote.documents[self.user_id])
        changes = len(self.changes)

        with patch.object(self.cache, 'set', wraps=self.cache.set) as cache_set:
            second = self.coordinator.sync(self.user_id)

        self.assertTrue(second.confirmed)
        self.assertEqual(second.record, first.record)
        self.assertEqual(self.remote.writes, writes)
        self.assertEqual(self.remote.documents[self.user_id], document)
        cache_set.assert_not_called()
        self.assertEqual(len(self.changes), changes)

    def test_replaces_in_memory_record(self):
        self.put_remote({'name': 'Remote'})
        self.coordinator.save(self.user_id, {'monthlyLimit': 1})
        self.remote.documents[self.user_id]['name'] = 'Changed elsewhere'

        result = self.coordinator.sync(self.user_id)

        self.assertEqual(self.coordinator.current(self.user_id), result.record)
        self.assertEqual(self.changes[-1].name, 'Changed elsewhere')

    def test_not_authenticated(self):
        coordinator = sync.SyncCoordinator(self.cache, self.remote)

        result = coordinator.sync(self.user_id)

        self.assertFalse(result.success)
        self.assertEqual(result.status, Status.NotAuthenticated)
        self.assertEqual(self.remote.reads, 0)

        future = coordinator.sync_async(self.user_id)
        self.assertEqual(future.result(timeout=1).status, Status.NotAuthenticated)

    def test_requires_user_id(self):
        with self.assertRaises(ValueError):
            self.coordinator.sync('')

    def test_cache_failure_is_raised(self):
        with patch.object(self.cache, 'get', side_effect=status.CacheUnavailableException('disk gone')):
            with self.assertRaises(status.CacheUnavailableException):
                self.coordinator.sync(self.user_id)
        self.assertIsNone(self.coordinator.in_flight(self.user_id))


class ConcurrencyTests(SyncTestCase):

    def test_overlapping_syncs_are_coalesced(self):
        self.put_remote({'expenses': [{'id': 1}]})
        self.remote.read_gate = threading.Event()

        first = self.coordinator.sync_async(self.user_id)
        self.assertTrue(self.remote.read_started.wait(5))
        second = self.coordinator.sync_async(self.user_id)
        self.assertIs(first, second)
        self.assertIs(self.coordinator.in_flight(self.user_id), first)

        claim = self.coordinator._claim_sync

        def claim_then_release(user_id):
            claimed = claim(user_id)
            self.remote.read_gate.set()
            return claimed

        with patch.object(self.coordinator, '_claim_sync', side_effect=claim_then_release):
            joined = self.coordinator.sync(self.user_id)

        self.assertIs(joined, first.result(timeout=5))
        self.assertEqual(self.remote.reads, 1)
        self.assertIsNone(self.coordinator.in_flight(self.user_id))

    def test_sync_after_completion_runs_again(self):
        self.put_remote({'expenses': [{'id': 1}]})
        self.coordinator.sync_async(self.user_id).result(timeout=5)
        self.coordinator.sync_async(self.user_id).result(timeout=5)
        self.assertEqual(self.remote.reads, 2)

    def test_save_queues_behind_sync(self):
        self.put_remote({'expenses': [{'id': 1}]})
        self.remote.read_gate = threading.Event()

        future = self.coordinator.sync_async(self.user_id)
        self.assertTrue(self.remote.read_started.wait(5))

        saver = threading.Thread(target=self.coordinator.add_expense, args=(self.user_id, {'id': 2}))
        saver.start()
        scope = self.coordinator._scope(self.user_id)
        self.wait_for(lambda: scope._next_ticket == 2)
        self.assertEqual(self.remote.writes, 0)
        self.assertIsNone(self.cache.get(self.user_id))

        self.remote.read_gate.set()
        future.result(timeout=5)
        saver.join(5)

        self.assertEqual(expense_ids(self.cache.get(self.user_id)), {1, 2})
        self.assertEqual(expense_ids(self.remote.documents[self.user_id]), {1, 2})

    def test_concurrent_saves_lose_nothing(self):
        threads = [
            threading.Thread(target=self.coordinator.add_expense, args=(self.user_id, {'id': i}))
            for i in range(10)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(5)

        self.assertEqual(expense_ids(self.cache.get(self.user_id)), set(range(10)))
        self.assertEqual(expense_ids(self.remote.documents[self.user_id]), set(range(10)))


class ConnectivityTests(SyncTestCase):

    def setUp(self) -> None:
        super().setUp()
        self.monitor = ConnectivityMonitor(host='127.0.0.1', port=9, timeout=0.1, interval=1000)
        self.coordinator = sync.SyncCoordinator(self.cache, self.remote, session=self.session,
                                                monitor=self.monitor)

    def test_online_triggers_one_sync(self):
        self.put_remote({'expenses': [{'id': 1}]})
        self.remote.read_gate = threading.Event()

        self.monitor.set_online(True)
        self.assertTrue(self.remote.read_started.wait(5))
        future = self.coordinator.in_flight(self.user_id)
        self.assertIsNotNone(future)

        self.monitor.set_online(False)
        self.monitor.set_online(True)
        self.assertIs(self.coordinator.in_flight(self.user_id), future)

        self.remote.read_gate.set()
        self.assertTrue(future.result(timeout=5).confirmed)
        self.assertEqual(self.remote.reads, 1)
        self.assertEqual(expense_ids(self.cache.get(self.user_id)), {1})

    def test_offline_does_nothing(self):
        self.monitor.set_online(False)
        self.assertIsNone(self.coordinator.in_flight(self.user_id))
        self.assertEqual(self.remote.reads, 0)

    def test_online_without_session(self):
        coordinator = sync.SyncCoordinator(self.cache, self.remote, monitor=self.monitor)
        coordinator.on_connectivity_change(True)
        self.assertEqual(self.remote.reads, 0)


class LifecycleTests(SyncTestCase):

    def test_register(self):
        coordinator = sync.SyncCoordinator(self.cache, self.remote)
        session = Session('user-2', 'grace@example.com')

        result = coordinator.register(session, {'name': 'Grace', 'username': 'grace'})

        self.assertTrue(result.confirmed)
        self.assertEqual(coordinator.session, session)
        record = self.cache.get('user-2')
        self.assertEqual(record.name, 'Grace')
        self.assertEqual(record.expenses, {})
        self.assertEqual(record.profile['createdAt'], record.updated_at)
        self.assertEqual(self.remote.documents['user-2']['email'], 'grace@example.com')

    def test_register_offline(self):
        self.remote.reachable = False
        result = self.coordinator.register(Session('user-2'), {'name': 'Grace'})
        self.assertTrue(result.degraded)
        self.assertEqual(self.cache.get('user-2').name, 'Grace')

    def test_purge(self):
        self.coordinator.save(self.user_id, {'name': 'Ada'})

        self.coordinator.purge(self.user_id)

        self.assertNotIn(self.user_id, self.remote.documents)
        self.assertIsNone(self.cache.get(self.user_id))
        self.assertIsNone(self.coordinator.current(self.user_id))
        self.assertIsNone(self.coordinator.session)
        self.assertIsNone(self.changes[-1])

    def test_purge_unreachable_keeps_local(self):
        self.coordinator.save(self.user_id, {'name': 'Ada'})
        self.remote.reachable = False

        with self.assertRaises(status.RemoteUnreachableException):
            self.coordinator.purge(self.user_id)
        self.assertIsNotNone(self.cache.get(self.user_id))

    def test_create_coordinator_follows_sign_in(self):
        from ExpenseSync import create_coordinator
        from ExpenseSync.core import auth

        manager = auth.AuthManager()
        monitor = ConnectivityMonitor(host='127.0.0.1', port=9, timeout=0.1, interval=1000)
        coordinator = create_coordinator(auth_manager=manager, monitor=monitor, start_monitor=False)

        # No project is configured, so the remote store cannot be used
        manager.sign_in('user-3', 'ida@example.com')

        self.assertEqual(coordinator.session, manager.session)
        self.assertTrue(coordinator.is_degraded('user-3'))

        result = coordinator.save('user-3', {'name': 'Ida'})
        self.assertTrue(result.degraded)
        self.assertEqual(coordinator.cache.get('user-3').name, 'Ida')

        manager.sign_out()
        self.assertIsNone(coordinator.session)
