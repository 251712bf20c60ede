from __future__ import annotations

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from parentauth.logging import get_logger
from parentauth.storage.common import (
    Namespace,
    coerce_namespace,
    detached,
    encode_value,
)
from parentauth.storage.errors import StorageError


class MemoryStore:
    """In-process record store with an optional JSON snapshot on disk.

    Every mutating call rewrites the snapshot before returning, so a write
    that could not be persisted is reported to the caller and rolled back
    in memory.
    """

    def __init__(self, fs_root: str | None = None, *, persist: bool = True) -> None:
        self.logger = get_logger(__name__)
        self._data: Dict[Namespace, Dict[str, Dict[str, Any]]] = {
            namespace: {} for namespace in Namespace
        }
        # RLock so batch writes can reuse the single-key helpers
        self._data_lock = threading.RLock()
        self.fs_root = Path(fs_root) if fs_root else None
        self._persist = persist and self.fs_root is not None
        if self._persist:
            try:
                self.fs_root.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise StorageError(f"unable to create store root: {exc}") from exc
            self._load_state()

    def _state_path(self) -> Path:
        state_dir = self.fs_root / "state"
        try:
            state_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"unable to create state directory: {exc}") from exc
        return state_dir / "record_store.json"

    def verify_connection(self) -> None:
        if self._persist:
            path = self._state_path()
            if not os.access(path.parent, os.W_OK):
                raise StorageError(f"state directory is not writable: {path.parent}")

    def get(self, namespace: Namespace | str, key: str) -> Optional[Dict[str, Any]]:
        ns = coerce_namespace(namespace)
        with self._data_lock:
            value = self._data[ns].get(key)
            return detached(value) if value is not None else None

    def get_all(self, namespace: Namespace | str) -> Dict[str, Dict[str, Any]]:
        ns = coerce_namespace(namespace)
        with self._data_lock:
            return {key: detached(value) for key, value in self._data[ns].items()}

    def set(self, namespace: Namespace | str, key: str, value: Mapping[str, Any]) -> None:
        self.write_batch(namespace, sets={key: value})

    def delete(self, namespace: Namespace | str, key: str) -> None:
        self.write_batch(namespace, deletes=[key])

    def write_batch(
        self,
        namespace: Namespace | str,
        *,
        sets: Optional[Mapping[str, Mapping[str, Any]]] = None,
        deletes: Optional[Iterable[str]] = None,
    ) -> None:
        ns = coerce_namespace(namespace)
        sets = dict(sets or {})
        deletes = list(deletes or [])
        for key, value in sets.items():
            # Reject unserializable values before touching state
            encode_value(value)
        with self._data_lock:
            bucket = self._data[ns]
            previous = {
                key: bucket.get(key) for key in list(sets.keys()) + deletes
            }
            changed = False
            for key in deletes:
                if bucket.pop(key, None) is not None:
                    changed = True
            for key, value in sets.items():
                bucket[key] = detached(value)
                changed = True
            if not changed:
                return
            try:
                self._persist_state()
            except StorageError:
                for key, value in previous.items():
                    if value is None:
                        bucket.pop(key, None)
                    else:
                        bucket[key] = value
                raise

    def delete_if(
        self,
        namespace: Namespace | str,
        key: str,
        predicate: Callable[[Dict[str, Any]], bool],
    ) -> bool:
        """Delete ``key`` only if its current value still satisfies ``predicate``."""
        ns = coerce_namespace(namespace)
        with self._data_lock:
            value = self._data[ns].get(key)
            if value is None or not predicate(detached(value)):
                return False
            self.write_batch(ns, deletes=[key])
            return True

    def _persist_state(self) -> None:
        if not self._persist:
            return
        state = {ns.value: bucket for ns, bucket in self._data.items()}
        path = self._state_path()
        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(
                dir=str(path.parent), prefix=".record_store_", suffix=".tmp"
            )
            with os.fdopen(fd, "w") as handle:
                json.dump(state, handle, indent=2)
            os.replace(tmp_path, path)
        except OSError as exc:
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass
            self.logger.error("record_store_persist_failed", error=str(exc), path=str(path))
            raise StorageError(f"failed to persist record store: {exc}") from exc

    def _load_state(self) -> bool:
        path = self._state_path()
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        except (OSError, ValueError) as exc:
            raise StorageError(f"unable to load record store snapshot: {exc}") from exc
        for ns in Namespace:
            bucket = data.get(ns.value) or {}
            if isinstance(bucket, dict):
                self._data[ns] = {
                    key: value for key, value in bucket.items() if isinstance(value, dict)
                }
        self.logger.info(
            "record_store_loaded",
            path=str(path),
            counts={ns.value: len(bucket) for ns, bucket in self._data.items()},
        )
        return True


__all__ = ["MemoryStore"]
