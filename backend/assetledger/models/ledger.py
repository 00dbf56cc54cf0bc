from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Date, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from assetledger.db.database import Base


class AssetDepreciation(Base):
    """Ledger entry: one depreciation event of one asset for one (year, month) period."""

    __tablename__ = "asset_depreciations"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    asset_id: Mapped[int] = mapped_column(ForeignKey("assets.id", ondelete="CASCADE"), nullable=False, index=True)
    business_unit_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    # history outlives the execution that wrote it
    execution_id: Mapped[int | None] = mapped_column(
        ForeignKey("depreciation_executions.id", ondelete="SET NULL")
    )
    depreciation_date: Mapped[date] = mapped_column(Date, nullable=False)
    period_year: Mapped[int] = mapped_column(Integer, nullable=False)
    period_month: Mapped[int] = mapped_column(Integer, nullable=False)  # 1-12
    months_covered: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    method: Mapped[str] = mapped_column(String(30), nullable=False)
    book_value_start: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    depreciation_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    book_value_end: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    accumulated_depreciation: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    calculated_by: Mapped[int | None] = mapped_column(Integer)
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("asset_id", "period_year", "period_month", name="uq_asset_depreciation_period"),
    )

    asset: Mapped["Asset"] = relationship("Asset")  # noqa: F821
