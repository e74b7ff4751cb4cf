"""Real-time change events for farmsync.

Row-level change notifications from the remote store are grouped per
resource and delivered as one ChangeBatch per window:
- Window timer (default 1s) started by the first event of a batch
- Immediate delivery once a batch reaches max_batch_size (default 50)

Timers go through the Scheduler interface so tests can drive a manual clock.
"""

from farmsync.events.batcher import BatchState, SubscriptionBatcher
from farmsync.events.scheduler import (
    AsyncioScheduler,
    CancelToken,
    ManualScheduler,
    Scheduler,
)
from farmsync.events.schemas import BatchTrigger, ChangeBatch, ChangeEvent, ChangeOperation

__all__ = [
    # Schemas
    "ChangeEvent",
    "ChangeBatch",
    "ChangeOperation",
    "BatchTrigger",
    # Batching
    "SubscriptionBatcher",
    "BatchState",
    # Scheduling
    "Scheduler",
    "AsyncioScheduler",
    "ManualScheduler",
    "CancelToken",
]
