"""
Depreciation calculator.
Pure functions: no database, no clock. Amounts are Decimal, rounded half-up to the cent,
and the book value never goes below the salvage value.
"""
import calendar
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from assetledger.core.exceptions import CalculationError

CENT = Decimal("0.01")
ZERO = Decimal("0")


class DepreciationMethod(str, Enum):
    STRAIGHT_LINE = "STRAIGHT_LINE"
    DECLINING_BALANCE = "DECLINING_BALANCE"
    UNITS_OF_PRODUCTION = "UNITS_OF_PRODUCTION"
    SUM_OF_YEARS_DIGITS = "SUM_OF_YEARS_DIGITS"


class ScheduleType(str, Enum):
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    ANNUALLY = "ANNUALLY"


_PERIOD_MONTHS = {
    ScheduleType.MONTHLY: 1,
    ScheduleType.QUARTERLY: 3,
    ScheduleType.ANNUALLY: 12,
}


def period_months_for(schedule_type: str | None) -> int:
    """Months covered by one run of a schedule. Manual runs (no schedule) are monthly."""
    if schedule_type is None:
        return 1
    return _PERIOD_MONTHS[ScheduleType(schedule_type)]


def to_cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def add_months(start: date, months: int) -> date:
    """Same day `months` later, clamped to the end of shorter months (Jan 31 + 1 → Feb 28/29)."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


# ---------------------------------------------------------------------------
# Useful life normalisation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UsefulLife:
    total_months: int
    needs_review: bool = False
    reason: str | None = None


def normalize_useful_life(years: int | None, months: int | None) -> UsefulLife:
    """
    Collapse the legacy (years, months) pair into total months.

    Old rows store years + leftover months (0-12); newer rows store the total in
    `months` and may keep a rounded `years` alongside. A months value above 12
    is read as a total. When `years` is also set and disagrees with that total,
    both readings are plausible, so the row is flagged for manual review.
    """
    years = years or 0
    months = months or 0

    if months > 12:
        if years and not (years * 12 <= months < (years + 1) * 12):
            return UsefulLife(
                total_months=months,
                needs_review=True,
                reason=(
                    f"useful_life_years={years} and useful_life_months={months} disagree; "
                    f"using {months} total months"
                ),
            )
        return UsefulLife(total_months=months)

    return UsefulLife(total_months=years * 12 + months)


# ---------------------------------------------------------------------------
# Calculation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AssetState:
    """Financial state of one asset at the start of a period."""

    purchase_price: Decimal | None
    salvage_value: Decimal
    current_book_value: Decimal | None
    accumulated_depreciation: Decimal
    useful_life_months: int
    elapsed_months: int = 0
    depreciation_rate: Decimal | None = None  # annual %, declining balance only
    total_expected_units: Decimal | None = None
    units_used: Decimal | None = None

    @property
    def book_value(self) -> Decimal:
        if self.current_book_value is not None:
            return Decimal(self.current_book_value)
        return Decimal(self.purchase_price)

    @property
    def depreciable_base(self) -> Decimal:
        return Decimal(self.purchase_price) - Decimal(self.salvage_value)

    @property
    def remaining_months(self) -> int:
        return max(self.useful_life_months - self.elapsed_months, 0)


@dataclass(frozen=True)
class CalculationResult:
    depreciation_amount: Decimal
    new_book_value: Decimal
    new_accumulated: Decimal
    period_fully_depreciated: bool
    monthly_depreciation: Decimal
    method_used: str
    no_op: bool = False
    details: dict = field(default_factory=dict)


def _validate(state: AssetState, method: str | None, period_months: int) -> DepreciationMethod:
    if not method:
        raise CalculationError("Depreciation method is not set")
    try:
        parsed = DepreciationMethod(method)
    except ValueError:
        raise CalculationError(f"Unknown depreciation method: {method}")
    if state.purchase_price is None:
        raise CalculationError("Purchase price is missing")
    if state.useful_life_months <= 0:
        raise CalculationError("Useful life must be greater than zero months")
    if period_months < 1:
        raise CalculationError("Period must cover at least one month")
    return parsed


def _straight_line(state: AssetState, period_months: int) -> tuple[Decimal, Decimal]:
    monthly = to_cents(state.depreciable_base / Decimal(state.useful_life_months))
    return monthly * period_months, monthly


def _declining_balance(state: AssetState, period_months: int, factor: Decimal) -> tuple[Decimal, Decimal]:
    if state.depreciation_rate:
        monthly_rate = Decimal(state.depreciation_rate) / Decimal("100") / Decimal("12")
    else:
        monthly_rate = Decimal(factor) / Decimal(state.useful_life_months)

    book = state.book_value
    first_month = to_cents(book * monthly_rate)
    # compound month by month: each month is computed on the book value left by the previous one
    for _ in range(period_months):
        book -= to_cents(book * monthly_rate)
    return state.book_value - book, first_month


def _sum_of_years_digits(state: AssetState, period_months: int) -> tuple[Decimal, Decimal]:
    life = state.useful_life_months
    digits_total = Decimal(life * (life + 1) // 2)
    remaining = state.remaining_months

    amount = ZERO
    for offset in range(period_months):
        weight = remaining - offset
        if weight <= 0:
            break
        amount += to_cents(state.depreciable_base * Decimal(weight) / digits_total)
    monthly = to_cents(state.depreciable_base * Decimal(remaining) / digits_total)
    return amount, monthly


def compute(
    state: AssetState,
    method: str | None,
    period_months: int = 1,
    declining_factor: Decimal = Decimal("2"),
) -> CalculationResult:
    """
    Depreciation for the next period of `period_months` months.

    Raises CalculationError for unusable asset data (no method, no purchase price,
    useful life <= 0). An asset already at salvage value is a no-op, not an error.
    """
    parsed = _validate(state, method, period_months)
    salvage = Decimal(state.salvage_value or 0)
    book = state.book_value
    purchase_price = Decimal(state.purchase_price)

    if book <= salvage:
        return CalculationResult(
            depreciation_amount=ZERO,
            new_book_value=book,
            new_accumulated=purchase_price - book,
            period_fully_depreciated=True,
            monthly_depreciation=ZERO,
            method_used=parsed.value,
            no_op=True,
        )

    method_used = parsed
    time_based = True
    if parsed is DepreciationMethod.STRAIGHT_LINE:
        raw, monthly = _straight_line(state, period_months)
    elif parsed is DepreciationMethod.DECLINING_BALANCE:
        raw, monthly = _declining_balance(state, period_months, declining_factor)
    elif parsed is DepreciationMethod.SUM_OF_YEARS_DIGITS:
        raw, monthly = _sum_of_years_digits(state, period_months)
    elif state.units_used is not None and state.total_expected_units:
        per_unit = state.depreciable_base / Decimal(state.total_expected_units)
        raw = per_unit * Decimal(state.units_used)
        monthly = to_cents(raw / Decimal(period_months))
        time_based = False
    else:
        # no usage reported for the period
        method_used = DepreciationMethod.STRAIGHT_LINE
        raw, monthly = _straight_line(state, period_months)

    # last period of the useful life takes whatever is left, rounding residue included
    if time_based and state.remaining_months <= period_months:
        raw = book - salvage

    amount = to_cents(raw)
    fully_depreciated = False
    if book - amount <= salvage:
        amount = book - salvage
        fully_depreciated = True

    new_book = book - amount
    return CalculationResult(
        depreciation_amount=amount,
        new_book_value=new_book,
        new_accumulated=purchase_price - new_book,
        period_fully_depreciated=fully_depreciated,
        monthly_depreciation=monthly,
        method_used=method_used.value,
        details={
            "method": parsed.value,
            "method_used": method_used.value,
            "period_months": period_months,
            "monthly_depreciation": str(monthly),
            "remaining_months": state.remaining_months,
        },
    )


# ---------------------------------------------------------------------------
# Projection
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScheduleEntry:
    period: int
    date: date
    depreciation_amount: Decimal
    accumulated_depreciation: Decimal
    book_value: Decimal
    is_completed: bool


def project_schedule(
    state: AssetState,
    method: str | None,
    start_date: date,
    declining_factor: Decimal = Decimal("2"),
) -> list[ScheduleEntry]:
    """
    Month-by-month schedule over the remaining useful life, without side effects.

    `state` is the asset as it stands now; `elapsed_months` says how much of its life
    is already used. The first projected month falls on `start_date` and period
    numbering continues after `elapsed_months`.
    """
    _validate(state, method, 1)
    salvage = Decimal(state.salvage_value or 0)
    running = state
    first_period = state.elapsed_months + 1
    entries: list[ScheduleEntry] = []

    for period in range(first_period, state.useful_life_months + 1):
        if running.book_value <= salvage:
            break
        amount = compute(running, method, 1, declining_factor).depreciation_amount
        new_book = running.book_value - amount
        running = replace(
            running,
            current_book_value=new_book,
            accumulated_depreciation=running.accumulated_depreciation + amount,
            elapsed_months=running.elapsed_months + 1,
        )
        entries.append(
            ScheduleEntry(
                period=period,
                date=add_months(start_date, period - first_period),
                depreciation_amount=amount,
                accumulated_depreciation=running.accumulated_depreciation,
                book_value=new_book,
                is_completed=False,
            )
        )

    return entries
