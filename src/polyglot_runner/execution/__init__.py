from .context import CancelToken
from .engine import ExecutionEngine
from .pool import CapacityExceeded, WorkerPool
from .types import ProcessOutcome, SpawnedProcess, SpawnRequest

__all__ = [
    "CancelToken",
    "CapacityExceeded",
    "ExecutionEngine",
    "ProcessOutcome",
    "SpawnRequest",
    "SpawnedProcess",
    "WorkerPool",
]
