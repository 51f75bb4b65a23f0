import logging
from typing import Dict, Iterable

from dynoscaler.exceptions import ConfigurationError
from dynoscaler.models import FleetSnapshot, NO_ACTION, QueueSnapshot, ScaleDecision, ScalingPolicy


def desired_worker_count(thresholds: Dict[int, int], backlog: int) -> int:
    """
    Return the number of workers the threshold table asks for at this backlog.

    The count of the largest threshold that is less than or equal to the
    backlog wins. Below every threshold, or with an empty table, the answer is 0.

    Args:
        thresholds: Mapping of minimum backlog size to worker count
        backlog: Current number of ready plus unacknowledged messages

    Returns:
        int: Desired worker count
    """
    desired = 0

    # Keys are evaluated in ascending order, never in insertion order
    for min_backlog in sorted(thresholds):
        if backlog < min_backlog:
            break
        desired = thresholds[min_backlog]

    return desired


def find_queue(queues: Iterable[QueueSnapshot], queue_name: str) -> QueueSnapshot:
    for queue in queues:
        if queue.name == queue_name:
            return queue
    raise ConfigurationError("queue not found")


def find_formation(formations: Iterable[FleetSnapshot], process_type: str) -> FleetSnapshot:
    for formation in formations:
        if formation.process_type == process_type:
            return formation
    raise ConfigurationError("process type not found")


def check_scaling(
        policy: ScalingPolicy,
        queues: Iterable[QueueSnapshot],
        formations: Iterable[FleetSnapshot]
) -> ScaleDecision:
    """
    Decide whether the policy's process type should be scaled and to what.

    Only two kinds of change are ever made: grow toward the threshold table
    while messages are waiting, or collapse to zero once the queue is empty.
    Capacity is never reduced while any backlog remains.

    Args:
        policy: Scaling policy for a single target
        queues: Queue snapshots fetched for the current tick
        formations: Formation snapshots fetched for the current tick

    Returns:
        ScaleDecision: Whether to scale and the quantity to scale to

    Raises:
        ConfigurationError: If the queue or process type is missing from the snapshots
    """
    queue = find_queue(queues, policy.queue_name)
    formation = find_formation(formations, policy.process_type)

    backlog = queue.backlog

    if backlog > 0:
        desired = desired_worker_count(policy.thresholds, backlog)
        logging.debug(f"Queue {queue.name} backlog: {backlog} (ready: {queue.ready}, unacked: {queue.unacked}), "
                      f"{formation.process_type} current: {formation.quantity}, desired: {desired}")

        if formation.quantity < desired:
            return ScaleDecision(should_scale=True, target_quantity=desired)
        return NO_ACTION

    if formation.quantity > 0:
        logging.debug(f"Queue {queue.name} is empty, {formation.process_type} has {formation.quantity} workers")
        return ScaleDecision(should_scale=True, target_quantity=0)

    return NO_ACTION
