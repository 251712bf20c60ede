from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def deserialize_datetime(raw: Optional[str]) -> Optional[datetime]:
    if raw is None:
        return None
    value = datetime.fromisoformat(raw)
    # Older snapshots may hold naive timestamps; they were always written in UTC
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class Account:
    email: str
    created_at: datetime
    updated_at: datetime
    profile_complete: bool = False
    name: Optional[str] = None

    def to_record(self) -> Dict[str, Any]:
        return {
            "email": self.email,
            "created_at": serialize_datetime(self.created_at),
            "updated_at": serialize_datetime(self.updated_at),
            "profile_complete": self.profile_complete,
            "name": self.name,
        }

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> "Account":
        return cls(
            email=data["email"],
            created_at=deserialize_datetime(data["created_at"]),
            updated_at=deserialize_datetime(data.get("updated_at") or data["created_at"]),
            profile_complete=bool(data.get("profile_complete", False)),
            name=data.get("name"),
        )


@dataclass
class OTPAttempt:
    submitted: str
    timestamp: datetime
    success: bool
    reason: Optional[str] = None

    def to_record(self) -> Dict[str, Any]:
        return {
            "submitted": self.submitted,
            "timestamp": serialize_datetime(self.timestamp),
            "success": self.success,
            "reason": self.reason,
        }

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> "OTPAttempt":
        return cls(
            submitted=data.get("submitted", ""),
            timestamp=deserialize_datetime(data["timestamp"]),
            success=bool(data.get("success", False)),
            reason=data.get("reason"),
        )


@dataclass
class OTPRecord:
    email: str
    code: Optional[str] = None
    generated_at: Optional[datetime] = None
    attempts: List[OTPAttempt] = field(default_factory=list)

    @property
    def has_code(self) -> bool:
        return self.code is not None and self.generated_at is not None

    def to_record(self) -> Dict[str, Any]:
        return {
            "email": self.email,
            "code": self.code,
            "generated_at": serialize_datetime(self.generated_at),
            "attempts": [attempt.to_record() for attempt in self.attempts],
        }

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> "OTPRecord":
        return cls(
            email=data["email"],
            code=data.get("code"),
            generated_at=deserialize_datetime(data.get("generated_at")),
            attempts=[OTPAttempt.from_record(a) for a in data.get("attempts", [])],
        )


@dataclass
class Session:
    access_token: str
    refresh_token: str
    account_id: str
    device_fingerprint: str
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def to_record(self) -> Dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "account_id": self.account_id,
            "device_fingerprint": self.device_fingerprint,
            "created_at": serialize_datetime(self.created_at),
            "expires_at": serialize_datetime(self.expires_at),
        }

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> "Session":
        return cls(
            access_token=data["access_token"],
            refresh_token=data["refresh_token"],
            account_id=data["account_id"],
            device_fingerprint=data.get("device_fingerprint", "unknown"),
            created_at=deserialize_datetime(data["created_at"]),
            expires_at=deserialize_datetime(data["expires_at"]),
        )


@dataclass
class AnalyticsEvent:
    id: str
    event: str
    timestamp: datetime
    properties: Dict[str, Any] = field(default_factory=dict)

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "event": self.event,
            "timestamp": serialize_datetime(self.timestamp),
            "properties": self.properties,
        }

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> "AnalyticsEvent":
        return cls(
            id=data["id"],
            event=data["event"],
            timestamp=deserialize_datetime(data["timestamp"]),
            properties=data.get("properties") or {},
        )
