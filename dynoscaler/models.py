from typing import Dict, NamedTuple


class ScalingPolicy(NamedTuple):
    """Scaling settings for one queue and the process type that consumes it."""
    queue_name: str
    process_type: str

    # Number of workers to run once the queue reaches a certain number of
    # messages. With {1: 1, 10: 2, 30: 5} one worker runs for the first
    # message, a second starts at 10 messages and three more at 30.
    thresholds: Dict[int, int]


class QueueSnapshot(NamedTuple):
    name: str
    ready: int
    unacked: int

    @property
    def backlog(self) -> int:
        return self.ready + self.unacked


class FleetSnapshot(NamedTuple):
    process_type: str
    quantity: int


class ScaleDecision(NamedTuple):
    should_scale: bool
    target_quantity: int = 0


NO_ACTION = ScaleDecision(should_scale=False)
