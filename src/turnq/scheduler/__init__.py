from turnq.scheduler.admission import EnqueueRequest, EnqueueResult, parse_request
from turnq.scheduler.cancellation import CancelResult
from turnq.scheduler.introspection import SessionRunState, SessionStatus
from turnq.scheduler.registry import QueueMode, Run, RunRegistry, RunStatus
from turnq.scheduler.scheduler import SessionRunScheduler

__all__ = [
    "CancelResult",
    "EnqueueRequest",
    "EnqueueResult",
    "QueueMode",
    "Run",
    "RunRegistry",
    "RunStatus",
    "SessionRunScheduler",
    "SessionRunState",
    "SessionStatus",
    "parse_request",
]
