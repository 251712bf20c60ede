"""Record store contract shared between the memory and redis backends.

Both backends expose the same keyed operations over a fixed set of
namespaces. Values are JSON-compatible dicts; callers convert them to and
from the dataclasses in ``parentauth.storage.models``.
"""

from __future__ import annotations

import copy
import json
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Protocol

from parentauth.storage.errors import StorageError


class Namespace(str, Enum):
    ACCOUNTS = "accounts"
    SESSIONS = "sessions"
    OTP_RECORDS = "otp_records"
    EVENTS = "events"


def coerce_namespace(namespace: Namespace | str) -> Namespace:
    try:
        return Namespace(namespace)
    except ValueError as exc:
        raise StorageError(
            f"unknown namespace: {namespace}", namespace=str(namespace)
        ) from exc


class RecordStore(Protocol):
    def get(self, namespace: Namespace | str, key: str) -> Optional[Dict[str, Any]]: ...

    def set(self, namespace: Namespace | str, key: str, value: Mapping[str, Any]) -> None: ...

    def delete(self, namespace: Namespace | str, key: str) -> None: ...

    def get_all(self, namespace: Namespace | str) -> Dict[str, Dict[str, Any]]: ...

    def write_batch(
        self,
        namespace: Namespace | str,
        *,
        sets: Optional[Mapping[str, Mapping[str, Any]]] = None,
        deletes: Optional[Iterable[str]] = None,
    ) -> None: ...

    def delete_if(
        self,
        namespace: Namespace | str,
        key: str,
        predicate: Callable[[Dict[str, Any]], bool],
    ) -> bool: ...

    def verify_connection(self) -> None: ...


def encode_value(value: Mapping[str, Any]) -> str:
    """Serialize a record, rejecting anything that would not survive a reload."""
    try:
        return json.dumps(dict(value), separators=(",", ":"), sort_keys=True)
    except (TypeError, ValueError) as exc:
        raise StorageError(f"record is not JSON serializable: {exc}") from exc


def decode_value(raw: str | bytes) -> Dict[str, Any]:
    try:
        value = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise StorageError(f"corrupt record: {exc}") from exc
    if not isinstance(value, dict):
        raise StorageError("corrupt record: expected an object")
    return value


def detached(value: Mapping[str, Any]) -> Dict[str, Any]:
    """Copy a record so callers never share mutable state with the store."""
    return copy.deepcopy(dict(value))


__all__ = [
    "Namespace",
    "RecordStore",
    "coerce_namespace",
    "decode_value",
    "detached",
    "encode_value",
]
