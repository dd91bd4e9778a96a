"""turnq - per-session turn scheduling for chat agents."""

from .config import Settings, get_settings
from .events import StreamEvent
from .ports import CancelSignal, TurnRequest, TurnResult
from .scheduler import EnqueueRequest, EnqueueResult, Run, SessionRunScheduler

__version__ = "0.1.0"

__all__ = [
    "CancelSignal",
    "EnqueueRequest",
    "EnqueueResult",
    "Run",
    "SessionRunScheduler",
    "Settings",
    "StreamEvent",
    "TurnRequest",
    "TurnResult",
    "get_settings",
]
