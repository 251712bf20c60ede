from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from parentauth.logging import get_logger
from parentauth.service.otp import OTPEngine
from parentauth.service.sessions import SessionEngine, is_index_key
from parentauth.storage.common import Namespace, RecordStore
from parentauth.storage.models import OTPRecord, Session

logger = get_logger(__name__)


@dataclass
class PurgeReport:
    sessions: int = 0
    otp_records: int = 0
    dry_run: bool = False

    @property
    def total(self) -> int:
        return self.sessions + self.otp_records


def _count_expired_sessions(store: RecordStore, now: datetime) -> int:
    return sum(
        1
        for key, data in store.get_all(Namespace.SESSIONS).items()
        if not is_index_key(key) and Session.from_record(data).is_expired(now)
    )


def _stale_otp_keys(store: RecordStore, otp: OTPEngine, now: datetime) -> list[str]:
    return [
        key
        for key, data in store.get_all(Namespace.OTP_RECORDS).items()
        if otp.is_stale(OTPRecord.from_record(data), now)
    ]


def purge_expired(
    store: RecordStore,
    sessions: SessionEngine,
    otp: OTPEngine,
    *,
    dry_run: bool = False,
    now: Optional[datetime] = None,
) -> PurgeReport:
    """Drop expired sessions and OTP records that no longer matter.

    Reads already ignore expired rows; this only reclaims space. An OTP
    record is dropped once it has no live code and no attempt inside the
    throttle window, so purging never resets a throttle.
    """
    now = now or sessions.now()
    stale_otp = _stale_otp_keys(store, otp, now)
    if dry_run:
        report = PurgeReport(
            sessions=_count_expired_sessions(store, now),
            otp_records=len(stale_otp),
            dry_run=True,
        )
    else:
        purged_sessions = sessions.purge_expired(now)
        # Re-checked at delete time: a code requested since the scan keeps its record
        purged_otp = sum(
            1
            for key in stale_otp
            if store.delete_if(
                Namespace.OTP_RECORDS,
                key,
                lambda data: otp.is_stale(OTPRecord.from_record(data), now),
            )
        )
        report = PurgeReport(sessions=purged_sessions, otp_records=purged_otp)
    logger.info(
        "maintenance_purge_completed",
        sessions=report.sessions,
        otp_records=report.otp_records,
        dry_run=dry_run,
    )
    return report


__all__ = ["PurgeReport", "purge_expired"]
