from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from redis import Redis
from redis.exceptions import RedisError, WatchError

from parentauth.logging import get_logger
from parentauth.storage.common import (
    Namespace,
    coerce_namespace,
    decode_value,
    encode_value,
)
from parentauth.storage.errors import StorageError

logger = get_logger(__name__)


class RedisStore:
    """Record store keeping each namespace in a single Redis hash.

    Hash field = record key, hash value = JSON document. Batches run in a
    MULTI/EXEC pipeline so a session row and its refresh index entry land
    together.
    """

    DEFAULT_OPERATION_TIMEOUT = 5.0

    def __init__(
        self,
        redis_url: str,
        *,
        key_prefix: str = "parentauth",
        socket_timeout: float = DEFAULT_OPERATION_TIMEOUT,
        client: Optional[Redis] = None,
    ):
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        # Explicit timeouts keep every call bounded
        self.client = client or Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def _hash_key(self, namespace: Namespace) -> str:
        return f"{self.key_prefix}:{namespace.value}"

    def _fail(
        self, exc: Exception, operation: str, namespace: Namespace, key: Optional[str] = None
    ) -> StorageError:
        logger.error(
            "redis_store_operation_failed",
            operation=operation,
            namespace=namespace.value,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return StorageError(
            f"redis {operation} failed: {exc}",
            namespace=namespace.value,
            key=key,
            operation=operation,
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity before serving requests."""
        try:
            self.client.ping()
        except RedisError as exc:
            raise StorageError(f"redis unavailable: {exc}", operation="ping") from exc

    def get(self, namespace: Namespace | str, key: str) -> Optional[Dict[str, Any]]:
        ns = coerce_namespace(namespace)
        try:
            raw = self.client.hget(self._hash_key(ns), key)
        except RedisError as exc:
            raise self._fail(exc, "get", ns, key) from exc
        if raw is None:
            return None
        return decode_value(raw)

    def get_all(self, namespace: Namespace | str) -> Dict[str, Dict[str, Any]]:
        ns = coerce_namespace(namespace)
        try:
            raw = self.client.hgetall(self._hash_key(ns))
        except RedisError as exc:
            raise self._fail(exc, "get_all", ns) from exc
        return {
            (k.decode() if isinstance(k, bytes) else k): decode_value(v)
            for k, v in (raw or {}).items()
        }

    def set(self, namespace: Namespace | str, key: str, value: Mapping[str, Any]) -> None:
        ns = coerce_namespace(namespace)
        payload = encode_value(value)
        try:
            self.client.hset(self._hash_key(ns), key, payload)
        except RedisError as exc:
            raise self._fail(exc, "set", ns, key) from exc

    def delete(self, namespace: Namespace | str, key: str) -> None:
        ns = coerce_namespace(namespace)
        try:
            self.client.hdel(self._hash_key(ns), key)
        except RedisError as exc:
            raise self._fail(exc, "delete", ns, key) from exc

    def write_batch(
        self,
        namespace: Namespace | str,
        *,
        sets: Optional[Mapping[str, Mapping[str, Any]]] = None,
        deletes: Optional[Iterable[str]] = None,
    ) -> None:
        ns = coerce_namespace(namespace)
        encoded = {key: encode_value(value) for key, value in (sets or {}).items()}
        deletes = list(deletes or [])
        if not encoded and not deletes:
            return
        hash_key = self._hash_key(ns)
        try:
            pipe = self.client.pipeline(transaction=True)
            if deletes:
                pipe.hdel(hash_key, *deletes)
            if encoded:
                pipe.hset(hash_key, mapping=encoded)
            pipe.execute()
        except RedisError as exc:
            raise self._fail(exc, "write_batch", ns) from exc

    def delete_if(
        self,
        namespace: Namespace | str,
        key: str,
        predicate: Callable[[Dict[str, Any]], bool],
    ) -> bool:
        """Delete ``key`` only if its current value still satisfies ``predicate``.

        The hash is WATCHed while the value is checked; a concurrent write
        aborts the MULTI/EXEC and the key is left alone.
        """
        ns = coerce_namespace(namespace)
        hash_key = self._hash_key(ns)
        pipe = self.client.pipeline(transaction=True)
        try:
            pipe.watch(hash_key)
            raw = pipe.hget(hash_key, key)
            if raw is None or not predicate(decode_value(raw)):
                return False
            pipe.multi()
            pipe.hdel(hash_key, key)
            pipe.execute()
            return True
        except WatchError:
            logger.info("redis_store_delete_if_conflict", namespace=ns.value)
            return False
        except RedisError as exc:
            raise self._fail(exc, "delete_if", ns, key) from exc
        finally:
            pipe.reset()

    def close(self) -> None:
        try:
            self.client.close()
        except RedisError as exc:
            logger.warning("redis_store_close_failed", error=str(exc))


__all__ = ["RedisStore"]
