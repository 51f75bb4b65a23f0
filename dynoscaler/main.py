import logging
import signal
import threading
from typing import Dict, Optional

from dynoscaler.config import Config, load_config, validate_config
from dynoscaler.exceptions import ConfigurationError, MutationError, SnapshotFetchError, StartupVerificationError
from dynoscaler.heroku.wrapper import HerokuWrapper
from dynoscaler.models import ScaleDecision
from dynoscaler.queue_metrics.rabbitmq import RabbitMQManagementSource
from dynoscaler.scaler import check_scaling


def create_queue_source(config: Config) -> RabbitMQManagementSource:
    """Create the RabbitMQ management API client the queue snapshots are read from."""
    return RabbitMQManagementSource(
        host=config.rabbitmq_host,
        username=config.rabbitmq_username,
        password=config.rabbitmq_password,
        vhost=config.rabbitmq_vhost,
        use_ssl=config.rabbitmq_use_ssl,
        port=config.rabbitmq_port,
        timeout=config.request_timeout
    )


class DynoScaler:
    """
    Scales Heroku process types proportionally to the backlog of RabbitMQ queues.

    Each tick reads every queue and the app's formation once, reconciles each
    configured policy against that data and applies the resulting scale
    decisions. A failing policy never blocks the others.
    """

    def __init__(self, config: Config, queue_source, heroku: HerokuWrapper):
        self.config = config
        self.queue_source = queue_source
        self.heroku = heroku

    def verify_access(self):
        """
        Make sure both APIs accept our credentials before monitoring starts.

        Raises:
            StartupVerificationError: If either API cannot be reached
        """
        self.heroku.verify_access()
        self.queue_source.verify_access()

    def run_tick(self) -> Dict[str, ScaleDecision]:
        """
        Run one fetch, reconcile and apply pass over all policies.

        Returns:
            dict: Decisions that were applied successfully, keyed by process type

        Raises:
            SnapshotFetchError: If queues or formations cannot be fetched
        """
        queues = self.queue_source.list_queue_snapshots()
        formations = self.heroku.list_fleet_snapshots()

        applied = {}
        for policy in self.config.policies:
            fields = {
                'heroku_app': self.heroku.app_name,
                'queue_name': policy.queue_name,
                'process_type': policy.process_type
            }

            try:
                decision = check_scaling(policy, queues, formations)
            except ConfigurationError as e:
                logging.error(f"Failed to check whether to scale {policy.process_type}: {e}", extra=fields)
                continue

            if not decision.should_scale:
                continue

            logging.info(f"Scaling {policy.process_type} to {decision.target_quantity} dynos",
                         extra=dict(fields, new_quantity=decision.target_quantity))
            try:
                self.heroku.set_fleet_quantity(policy.process_type, decision.target_quantity)
            except MutationError as e:
                logging.error(f"Failed to update Heroku formation: {e}", exc_info=True, extra=fields)
                continue

            applied[policy.process_type] = decision

        return applied

    def monitor(self, stop_event: Optional[threading.Event] = None):
        """
        Watch the queues and scale the dynos until ``stop_event`` is set.

        A tick that is in progress when the event is set runs to completion.

        Raises:
            StartupVerificationError: If the APIs cannot be verified before the first tick
        """
        stop_event = stop_event or threading.Event()

        self.verify_access()
        logging.info(f"Starting monitoring of {len(self.config.policies)} policies "
                     f"every {self.config.check_interval}s", extra={'heroku_app': self.heroku.app_name})

        while not stop_event.is_set():
            try:
                self.run_tick()
            except SnapshotFetchError as e:
                logging.error(f"Skipping tick: {e}", exc_info=True, extra={'heroku_app': self.heroku.app_name})

            stop_event.wait(self.config.check_interval)

        logging.info("Stopped monitoring")


def run(overrides: Dict = None) -> int:
    """
    Load configuration, build the API clients and monitor until SIGTERM or SIGINT.

    Returns:
        int: Process exit status
    """
    try:
        config = load_config(overrides)
    except (ValueError, OSError) as e:
        logging.error(f"Invalid configuration: {e}")
        return 1

    problems = validate_config(config)
    if problems:
        for problem in problems:
            logging.error(problem)
        return 1

    heroku = HerokuWrapper(config.heroku_api_key, config.heroku_app, timeout=config.request_timeout)
    scaler = DynoScaler(config, create_queue_source(config), heroku)

    stop_event = threading.Event()

    def handle_signal(signum, frame):
        logging.info(f"Received signal {signum}, stopping after the current tick")
        stop_event.set()

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)

    try:
        scaler.monitor(stop_event)
    except StartupVerificationError as e:
        logging.error(f"Dynoscaler monitoring failed: {e}", exc_info=True)
        return 1

    return 0
