from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from assetledger.db.database import Base


class DepreciationSchedule(Base):
    """Named recurring configuration: which assets to depreciate, and when."""

    __tablename__ = "depreciation_schedules"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    business_unit_id: Mapped[int] = mapped_column(
        ForeignKey("business_units.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    # 'MONTHLY' | 'QUARTERLY' | 'ANNUALLY'
    schedule_type: Mapped[str] = mapped_column(String(20), nullable=False, default="MONTHLY")
    execution_day: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    # lists of asset_categories.id; empty include list means every category
    include_categories: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    exclude_categories: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_by: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (UniqueConstraint("business_unit_id", "name", name="uq_schedule_unit_name"),)

    executions: Mapped[list["DepreciationExecution"]] = relationship(  # noqa: F821
        "DepreciationExecution",
        back_populates="schedule",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
