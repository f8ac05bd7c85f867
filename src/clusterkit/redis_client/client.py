"""Redis client wrapper.

Key layout:
- kubehelper:secrets:{namespace}  hash, field = record id, value = serialized record
"""

import redis.asyncio as redis

SECRET_KEY_PREFIX = "kubehelper:secrets"


class RedisClient:
    """Async Redis client with connection pooling."""

    def __init__(self, url: str = "redis://localhost:6379/0"):
        """Initialize Redis client.

        Args:
            url: Redis connection URL
        """
        self._url = url
        self._pool: redis.ConnectionPool | None = None
        self._client: redis.Redis | None = None

    async def connect(self) -> None:
        """Initialize the connection pool."""
        self._pool = redis.ConnectionPool.from_url(self._url, decode_responses=True)
        self._client = redis.Redis(connection_pool=self._pool)

    async def close(self) -> None:
        """Close all connections."""
        if self._client is not None:
            await self._client.aclose()
        if self._pool is not None:
            await self._pool.disconnect()
        self._client = None
        self._pool = None

    def get_client(self) -> redis.Redis:
        """Get the Redis client."""
        if self._client is None:
            raise RuntimeError("Redis client not connected. Call connect() first.")
        return self._client

    # =========================================================================
    # Secret hash operations
    # =========================================================================

    @staticmethod
    def secret_hash_key(namespace: str) -> str:
        return f"{SECRET_KEY_PREFIX}:{namespace}"

    async def set_secret(self, namespace: str, key: str, value: str) -> None:
        """Create or overwrite a secret.

        Args:
            namespace: Secret namespace (one hash per namespace)
            key: Field name inside the namespace
            value: Serialized secret
        """
        await self.get_client().hset(self.secret_hash_key(namespace), key, value)

    async def get_secret(self, namespace: str, key: str) -> str | None:
        return await self.get_client().hget(self.secret_hash_key(namespace), key)

    async def delete_secret(self, namespace: str, key: str) -> bool:
        """Delete a secret.

        Returns:
            True if the secret existed
        """
        removed = await self.get_client().hdel(self.secret_hash_key(namespace), key)
        return removed > 0

    async def list_secret_keys(self, namespace: str) -> list[str]:
        """List secret keys of a namespace in a stable order."""
        keys = await self.get_client().hkeys(self.secret_hash_key(namespace))
        return sorted(keys)
