from __future__ import annotations

from typing import Any, Dict, Optional


class StorageError(Exception):
    """Raised when the backing medium cannot complete a record operation."""

    def __init__(
        self,
        message: str,
        *,
        namespace: Optional[str] = None,
        key: Optional[str] = None,
        operation: Optional[str] = None,
        detail: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.namespace = namespace
        self.key = key
        self.operation = operation
        self.detail = detail or {}


__all__ = ["StorageError"]
