from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import JSON, Date, DateTime, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from assetledger.db.database import Base


class ExecutionStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    COMPLETED_WITH_ERRORS = "COMPLETED_WITH_ERRORS"
    FAILED = "FAILED"


TERMINAL_STATUSES = (
    ExecutionStatus.COMPLETED,
    ExecutionStatus.COMPLETED_WITH_ERRORS,
    ExecutionStatus.FAILED,
)


class DetailStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class DepreciationExecution(Base):
    """One row per batch run."""

    __tablename__ = "depreciation_executions"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    # NULL for manual runs
    schedule_id: Mapped[int | None] = mapped_column(
        ForeignKey("depreciation_schedules.id", ondelete="CASCADE"), index=True
    )
    business_unit_id: Mapped[int] = mapped_column(
        ForeignKey("business_units.id", ondelete="CASCADE"), nullable=False, index=True
    )
    execution_date: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    run_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=ExecutionStatus.PENDING.value, index=True
    )
    total_assets_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    successful_calculations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_calculations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skipped_calculations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_depreciation_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False, default=0)
    execution_duration_ms: Mapped[int | None] = mapped_column(Integer)
    error_message: Mapped[str | None] = mapped_column(Text)
    # NULL for scheduled runs
    executor_id: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    completed_at: Mapped[datetime | None] = mapped_column(DateTime)

    schedule: Mapped["DepreciationSchedule | None"] = relationship(  # noqa: F821
        "DepreciationSchedule", back_populates="executions"
    )
    details: Mapped[list["AssetDepreciationDetail"]] = relationship(
        "AssetDepreciationDetail",
        back_populates="execution",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="AssetDepreciationDetail.id",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in {s.value for s in TERMINAL_STATUSES}


class AssetDepreciationDetail(Base):
    """Outcome of one asset within one execution. Written once, never updated."""

    __tablename__ = "depreciation_execution_assets"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    execution_id: Mapped[int] = mapped_column(
        ForeignKey("depreciation_executions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    asset_id: Mapped[int | None] = mapped_column(ForeignKey("assets.id", ondelete="SET NULL"), index=True)
    ledger_entry_id: Mapped[int | None] = mapped_column(
        ForeignKey("asset_depreciations.id", ondelete="SET NULL")
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    depreciation_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    book_value_before: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    book_value_after: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text)
    calculation_details: Mapped[dict | None] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    execution: Mapped["DepreciationExecution"] = relationship(
        "DepreciationExecution", back_populates="details"
    )
    asset: Mapped["Asset | None"] = relationship("Asset")  # noqa: F821
