from datetime import datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from assetledger.db.database import Base

MANUAL_LOCK_PREFIX = "manual"


def lock_key_for(business_unit_id: int, schedule_id: int | None) -> str:
    if schedule_id is None:
        return f"{MANUAL_LOCK_PREFIX}:{business_unit_id}"
    return f"schedule:{schedule_id}"


class ExecutionLock(Base):
    """A row exists exactly while a run holds the key. The primary key is the lock."""

    __tablename__ = "depreciation_execution_locks"

    lock_key: Mapped[str] = mapped_column(String(64), primary_key=True)
    execution_id: Mapped[int | None] = mapped_column(Integer)
    acquired_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    acquired_by: Mapped[int | None] = mapped_column(Integer)
