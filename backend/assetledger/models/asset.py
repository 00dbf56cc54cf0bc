from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from assetledger.core.depreciation import UsefulLife, normalize_useful_life
from assetledger.db.database import Base


class BusinessUnit(Base):
    """Owned by the organisation module; only the identity is needed here."""

    __tablename__ = "business_units"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    code: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)


class AssetCategory(Base):
    __tablename__ = "asset_categories"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    business_unit_id: Mapped[int] = mapped_column(
        ForeignKey("business_units.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    assets: Mapped[list["Asset"]] = relationship("Asset", back_populates="category")


class Asset(Base):
    __tablename__ = "assets"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    business_unit_id: Mapped[int] = mapped_column(
        ForeignKey("business_units.id", ondelete="CASCADE"), nullable=False, index=True
    )
    category_id: Mapped[int] = mapped_column(ForeignKey("asset_categories.id"), nullable=False, index=True)
    item_code: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    purchase_price: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    salvage_value: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    # NULL until the first run: book value is then the purchase price
    current_book_value: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    accumulated_depreciation: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    monthly_depreciation: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))

    # legacy pair: either years + leftover months, or total months in useful_life_months
    useful_life_years: Mapped[int | None] = mapped_column(Integer)
    useful_life_months: Mapped[int | None] = mapped_column(Integer)
    # 'STRAIGHT_LINE' | 'DECLINING_BALANCE' | 'UNITS_OF_PRODUCTION' | 'SUM_OF_YEARS_DIGITS'
    depreciation_method: Mapped[str | None] = mapped_column(String(30))
    depreciation_rate: Mapped[Decimal | None] = mapped_column(Numeric(7, 4))  # annual %
    total_expected_units: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))

    depreciation_start_date: Mapped[date | None] = mapped_column(Date)
    last_depreciation_date: Mapped[date | None] = mapped_column(Date)
    next_depreciation_date: Mapped[date | None] = mapped_column(Date, index=True)
    is_fully_depreciated: Mapped[bool] = mapped_column(Boolean, default=False)
    prior_depreciation_months: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )

    category: Mapped["AssetCategory"] = relationship("AssetCategory", back_populates="assets")

    @property
    def useful_life(self) -> UsefulLife:
        return normalize_useful_life(self.useful_life_years, self.useful_life_months)

    @property
    def book_value(self) -> Decimal:
        if self.current_book_value is not None:
            return Decimal(self.current_book_value)
        return Decimal(self.purchase_price or 0)
