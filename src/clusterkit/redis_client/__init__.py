"""Redis client wrapper backing the synchronized secret store.

Key layout:
- kubehelper:secrets:{namespace}  hash of serialized cluster records
"""

from .client import SECRET_KEY_PREFIX, RedisClient

__all__ = [
    "RedisClient",
    "SECRET_KEY_PREFIX",
]
