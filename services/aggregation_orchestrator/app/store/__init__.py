"""Job state storage."""

from .base import JobStateStore, TimeoutMark, TimeoutMarkCode
from .redis_store import RedisJobStateStore

__all__ = [
    "JobStateStore",
    "TimeoutMark",
    "TimeoutMarkCode",
    "RedisJobStateStore",
]
