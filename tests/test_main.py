import os
import threading
import unittest
from unittest import mock

from dynoscaler.config import Config
from dynoscaler.exceptions import MutationError, SnapshotFetchError, StartupVerificationError
from dynoscaler.main import DynoScaler, create_queue_source, run
from dynoscaler.models import FleetSnapshot, QueueSnapshot, ScaleDecision, ScalingPolicy
from dynoscaler.queue_metrics.rabbitmq import RabbitMQManagementSource


def make_config(policies, **kwargs):
    values = dict(
        rabbitmq_host='baboon.rmq.cloudamqp.com',
        rabbitmq_port=None,
        rabbitmq_username='username',
        rabbitmq_password='password',
        rabbitmq_vhost=None,
        rabbitmq_use_ssl=False,
        heroku_api_key='api-key',
        heroku_app='test-app',
        policies=policies,
        check_interval=10.0,
        request_timeout=5.0
    )
    values.update(kwargs)
    return Config(**values)


FOO_POLICY = ScalingPolicy(queue_name='foo', process_type='fooworker', thresholds={1: 1})
BAR_POLICY = ScalingPolicy(queue_name='bar', process_type='mainworker', thresholds={1: 1, 10: 2, 30: 5})


class TestRunTick(unittest.TestCase):
    """Tests for a single fetch, reconcile and apply pass."""

    def setUp(self):
        self.queue_source = mock.MagicMock()
        self.queue_source.list_queue_snapshots.return_value = [
            QueueSnapshot(name='foo', ready=0, unacked=0),
            QueueSnapshot(name='bar', ready=10, unacked=2)
        ]
        self.heroku = mock.MagicMock()
        self.heroku.app_name = 'test-app'
        self.heroku.list_fleet_snapshots.return_value = [
            FleetSnapshot(process_type='fooworker', quantity=1),
            FleetSnapshot(process_type='mainworker', quantity=1)
        ]
        self.scaler = DynoScaler(make_config([FOO_POLICY, BAR_POLICY]), self.queue_source, self.heroku)

    def test_applies_every_decision(self):
        applied = self.scaler.run_tick()

        self.assertEqual(self.heroku.set_fleet_quantity.call_args_list, [
            mock.call('fooworker', 0),
            mock.call('mainworker', 2)
        ])
        self.assertEqual(applied, {
            'fooworker': ScaleDecision(should_scale=True, target_quantity=0),
            'mainworker': ScaleDecision(should_scale=True, target_quantity=2)
        })

    def test_failed_update_does_not_block_other_policies(self):
        """Test that a rejected formation update for one policy leaves the next one untouched."""
        self.heroku.set_fleet_quantity.side_effect = [MutationError("rejected"), None]

        applied = self.scaler.run_tick()

        self.assertEqual(self.heroku.set_fleet_quantity.call_count, 2)
        self.heroku.set_fleet_quantity.assert_called_with('mainworker', 2)
        self.assertEqual(list(applied), ['mainworker'])

    def test_missing_queue_does_not_block_other_policies(self):
        self.scaler = DynoScaler(
            make_config([ScalingPolicy(queue_name='missing', process_type='fooworker', thresholds={1: 1}),
                         BAR_POLICY]),
            self.queue_source, self.heroku)

        applied = self.scaler.run_tick()

        self.heroku.set_fleet_quantity.assert_called_once_with('mainworker', 2)
        self.assertEqual(list(applied), ['mainworker'])

    def test_snapshots_fetched_once_per_tick(self):
        self.scaler.run_tick()

        self.queue_source.list_queue_snapshots.assert_called_once_with()
        self.heroku.list_fleet_snapshots.assert_called_once_with()

    def test_no_update_when_nothing_to_do(self):
        self.heroku.list_fleet_snapshots.return_value = [
            FleetSnapshot(process_type='fooworker', quantity=0),
            FleetSnapshot(process_type='mainworker', quantity=5)
        ]

        applied = self.scaler.run_tick()

        self.heroku.set_fleet_quantity.assert_not_called()
        self.assertEqual(applied, {})

    def test_queue_fetch_failure_skips_whole_tick(self):
        self.queue_source.list_queue_snapshots.side_effect = SnapshotFetchError("unreachable")

        with self.assertRaises(SnapshotFetchError):
            self.scaler.run_tick()

        self.heroku.set_fleet_quantity.assert_not_called()

    def test_formation_fetch_failure_skips_whole_tick(self):
        self.heroku.list_fleet_snapshots.side_effect = SnapshotFetchError("unreachable")

        with self.assertRaises(SnapshotFetchError):
            self.scaler.run_tick()

        self.heroku.set_fleet_quantity.assert_not_called()


class TestMonitor(unittest.TestCase):
    """Tests for the monitoring loop."""

    def setUp(self):
        self.queue_source = mock.MagicMock()
        self.heroku = mock.MagicMock()
        self.heroku.app_name = 'test-app'
        self.scaler = DynoScaler(make_config([FOO_POLICY], check_interval=15.0), self.queue_source, self.heroku)

    def test_startup_verification_failure_prevents_monitoring(self):
        self.heroku.verify_access.side_effect = StartupVerificationError("bad key")

        with mock.patch.object(DynoScaler, 'run_tick') as mock_run_tick:
            with self.assertRaises(StartupVerificationError):
                self.scaler.monitor(threading.Event())

        mock_run_tick.assert_not_called()

    def test_queue_verification_failure_prevents_monitoring(self):
        self.queue_source.verify_access.side_effect = StartupVerificationError("bad credentials")

        with mock.patch.object(DynoScaler, 'run_tick') as mock_run_tick:
            with self.assertRaises(StartupVerificationError):
                self.scaler.monitor(threading.Event())

        mock_run_tick.assert_not_called()

    def test_fetch_failure_is_retried_next_tick(self):
        """Test that a failed tick is logged and the loop carries on after one interval."""
        stop_event = mock.MagicMock(spec=threading.Event)
        stop_event.is_set.side_effect = [False, False, True]

        with mock.patch.object(DynoScaler, 'run_tick', side_effect=[SnapshotFetchError("down"), {}]) as mock_run_tick:
            self.scaler.monitor(stop_event)

        self.assertEqual(mock_run_tick.call_count, 2)
        self.assertEqual(stop_event.wait.call_args_list, [mock.call(15.0), mock.call(15.0)])

    def test_stop_event_ends_loop_after_current_tick(self):
        stop_event = threading.Event()

        def tick():
            stop_event.set()
            return {}

        with mock.patch.object(DynoScaler, 'run_tick', side_effect=tick) as mock_run_tick:
            self.scaler.monitor(stop_event)

        mock_run_tick.assert_called_once_with()

    def test_already_stopped(self):
        stop_event = threading.Event()
        stop_event.set()

        with mock.patch.object(DynoScaler, 'run_tick') as mock_run_tick:
            self.scaler.monitor(stop_event)

        mock_run_tick.assert_not_called()


class TestCreateQueueSource(unittest.TestCase):

    def test_management_source(self):
        source = create_queue_source(make_config([FOO_POLICY]))

        self.assertIsInstance(source, RabbitMQManagementSource)


class TestRun(unittest.TestCase):

    @mock.patch.dict(os.environ, {}, clear=True)
    def test_missing_configuration(self):
        self.assertEqual(run(), 1)

    @mock.patch.dict(os.environ, {}, clear=True)
    def test_invalid_policies(self):
        self.assertEqual(run({'policies': 'not json'}), 1)

    @mock.patch('dynoscaler.main.signal.signal')
    @mock.patch('dynoscaler.main.create_queue_source')
    @mock.patch('dynoscaler.main.HerokuWrapper')
    @mock.patch.dict(os.environ, {}, clear=True)
    def test_startup_verification_failure(self, mock_heroku_wrapper, mock_create_queue_source, mock_signal):
        mock_heroku_wrapper.return_value.verify_access.side_effect = StartupVerificationError("bad key")

        status = run({
            'rabbitmq_host': 'localhost',
            'heroku_api_key': 'api-key',
            'heroku_app': 'test-app',
            'policies': [{'queue_name': 'foo', 'process_type': 'fooworker', 'thresholds': {'1': 1}}]
        })

        self.assertEqual(status, 1)
        mock_create_queue_source.return_value.list_queue_snapshots.assert_not_called()


if __name__ == '__main__':
    unittest.main()
