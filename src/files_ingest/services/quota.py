"""
Quota ledger.

The admission check reads current usage and decides without taking a lock, so
two concurrent uploads from one user can both pass and together overshoot the
quota. The quota is a soft limit.
"""

import logging
from typing import Optional, Tuple

from pydantic import BaseModel

from files_ingest.database.local import DEFAULT_DB_PATH, get_usage
from files_ingest.schemas import UserRecord

logger = logging.getLogger(__name__)


class AdmissionDecision(BaseModel):
    allowed: bool
    reason: Optional[str] = None


class QuotaLedger:
    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def usage(self, user: UserRecord) -> Tuple[int, int]:
        """Bytes and files held by ``user``; every status except ``rejected`` counts."""
        return get_usage(user.id, db_path=self.db_path)

    def check_admission(self, user: UserRecord, incoming_size_bytes: int) -> AdmissionDecision:
        used_bytes, file_count = self.usage(user)

        if used_bytes + incoming_size_bytes > user.storage_quota_bytes:
            logger.info(
                f"Storage quota denied for {user.id}: {used_bytes} + {incoming_size_bytes} "
                f"> {user.storage_quota_bytes}"
            )
            return AdmissionDecision(allowed=False, reason='Storage quota exceeded')

        if file_count + 1 > user.files_quota:
            logger.info(f"Files quota denied for {user.id}: {file_count} files of {user.files_quota}")
            return AdmissionDecision(allowed=False, reason='Files quota exceeded')

        return AdmissionDecision(allowed=True)
