"""
Storage abstractions for the aggregation services.

Provides async clients for:
- Redis (shared job state)
"""

from .redis import RedisClient, RedisConfig

__all__ = [
    "RedisClient",
    "RedisConfig",
]
