"""
Batch executor.

One run: take the execution lock and open a RUNNING execution row, resolve the
eligible assets, depreciate each asset in its own transaction on a bounded worker
pool, then finalise the execution once (counts, status, duration) and release the lock.

Per-asset calculation failures are recorded on the detail row and the run goes on.
A storage failure aborts the rest of the run and marks it FAILED; assets already
committed stay committed. If the process dies before finalisation the execution
stays RUNNING, and its lock is reclaimed once it is older than the stale threshold.
"""
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Callable

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from assetledger.core.depreciation import ZERO, AssetState, add_months, compute, period_months_for
from assetledger.core.eligibility import AssetFilter, select_eligible_asset_ids
from assetledger.core.exceptions import (
    CalculationError,
    NotFoundError,
    PersistenceFault,
    ScheduleBusyError,
)
from assetledger.core.permissions import Actor, require_admin
from assetledger.models.asset import Asset, BusinessUnit
from assetledger.models.execution import (
    AssetDepreciationDetail,
    DepreciationExecution,
    DetailStatus,
    ExecutionStatus,
)
from assetledger.models.ledger import AssetDepreciation
from assetledger.models.lock import ExecutionLock, lock_key_for
from assetledger.models.schedule import DepreciationSchedule
from assetledger.utils.settings_loader import EngineSettings, get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunHandle:
    """A started run: the lock is held and the execution row is RUNNING."""

    execution_id: int
    business_unit_id: int
    schedule_id: int | None
    lock_key: str
    run_date: date
    period_months: int
    started_at: float  # time.monotonic()
    executor_id: int | None = None
    include_categories: frozenset[int] = frozenset()
    exclude_categories: frozenset[int] = frozenset()
    asset_ids: frozenset[int] | None = None
    usage: dict[int, Decimal] = field(default_factory=dict)

    @property
    def asset_filter(self) -> AssetFilter:
        return AssetFilter.ad_hoc(
            self.business_unit_id,
            self.run_date,
            asset_ids=self.asset_ids,
            include_categories=self.include_categories,
            exclude_categories=self.exclude_categories,
        )


@dataclass(frozen=True)
class AssetOutcome:
    asset_id: int
    status: DetailStatus | None  # None: never attempted, the run was aborted
    amount: Decimal = ZERO
    error: str | None = None


@dataclass(frozen=True)
class RunSummary:
    execution_id: int
    status: ExecutionStatus
    total_assets_processed: int
    successful_calculations: int
    failed_calculations: int
    skipped_calculations: int
    total_depreciation_amount: Decimal
    execution_duration_ms: int
    error_message: str | None = None


class DepreciationExecutor:
    def __init__(
        self,
        session_factory: sessionmaker,
        settings: EngineSettings | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.clock = clock

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def run(self, business_unit_id: int, schedule_id: int | None = None, **options) -> RunSummary:
        return self.process(self.start(business_unit_id, schedule_id=schedule_id, **options))

    def start_manual(self, actor: Actor, business_unit_id: int, schedule_id: int | None = None, **options) -> RunHandle:
        """Manual trigger: same lock and same executor as the time-based path, behind the admin check."""
        require_admin(actor, self.settings)
        return self.start(business_unit_id, schedule_id=schedule_id, executor_id=actor.user_id, **options)

    def start(
        self,
        business_unit_id: int,
        schedule_id: int | None = None,
        executor_id: int | None = None,
        run_date: date | None = None,
        asset_ids=None,
        include_categories=(),
        exclude_categories=(),
        usage: dict[int, Decimal] | None = None,
    ) -> RunHandle:
        now = self.clock()
        run_date = run_date or now.date()
        lock_key = lock_key_for(business_unit_id, schedule_id)
        period_months = 1

        with self.session_factory() as db:
            try:
                with db.begin():
                    if db.get(BusinessUnit, business_unit_id) is None:
                        raise NotFoundError("Business unit", business_unit_id)
                    if schedule_id is not None:
                        schedule = db.get(DepreciationSchedule, schedule_id)
                        if schedule is None or schedule.business_unit_id != business_unit_id:
                            raise NotFoundError("Depreciation schedule", schedule_id)
                        include_categories = schedule.include_categories or ()
                        exclude_categories = schedule.exclude_categories or ()
                        period_months = period_months_for(schedule.schedule_type)

                    lock = self._acquire_lock(db, lock_key, now, executor_id)
                    execution = DepreciationExecution(
                        schedule_id=schedule_id,
                        business_unit_id=business_unit_id,
                        execution_date=now,
                        run_date=run_date,
                        status=ExecutionStatus.RUNNING.value,
                        executor_id=executor_id,
                    )
                    db.add(execution)
                    db.flush()
                    lock.execution_id = execution.id
                    execution_id = execution.id
            except IntegrityError as e:
                holder = self._lock_holder(lock_key)
                if holder is not None:
                    logger.warning(f"Run '{lock_key}' rejected: lock taken by execution {holder.execution_id}")
                    raise ScheduleBusyError(lock_key, holder.execution_id) from None
                raise PersistenceFault(f"Could not start depreciation run: {e.orig}") from e
            except SQLAlchemyError as e:
                logger.exception(f"Could not start depreciation run '{lock_key}'")
                raise PersistenceFault(f"Could not start depreciation run: {e}") from e

        logger.info(
            f"Execution {execution_id} started ({lock_key}, run date {run_date}, "
            f"{period_months} month period)"
        )
        return RunHandle(
            execution_id=execution_id,
            business_unit_id=business_unit_id,
            schedule_id=schedule_id,
            lock_key=lock_key,
            run_date=run_date,
            period_months=period_months,
            started_at=time.monotonic(),
            executor_id=executor_id,
            include_categories=frozenset(include_categories),
            exclude_categories=frozenset(exclude_categories),
            asset_ids=frozenset(asset_ids) if asset_ids else None,
            usage={int(k): Decimal(str(v)) for k, v in (usage or {}).items()},
        )

    def process(self, handle: RunHandle) -> RunSummary:
        try:
            with self.session_factory() as db:
                asset_ids = select_eligible_asset_ids(db, handle.asset_filter)
        except SQLAlchemyError as e:
            logger.exception(f"Execution {handle.execution_id}: eligibility query failed")
            return self._finalize(handle, [], error_message=f"Eligibility query failed: {e}")

        logger.info(f"Execution {handle.execution_id}: {len(asset_ids)} eligible assets")
        deadline = handle.started_at + self.settings.max_run_seconds
        abort = threading.Event()
        outcomes: list[AssetOutcome] = []
        fault: PersistenceFault | None = None

        workers = min(self.settings.max_workers, max(len(asset_ids), 1))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="depreciation") as pool:
            futures = [
                pool.submit(self._process_asset, handle, asset_id, deadline, abort) for asset_id in asset_ids
            ]
            for future in futures:
                try:
                    outcomes.append(future.result())
                except PersistenceFault as e:
                    abort.set()
                    fault = fault or e

        return self._finalize(handle, outcomes, error_message=fault.message if fault else None)

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    def _acquire_lock(self, db: Session, lock_key: str, now: datetime, acquired_by: int | None) -> ExecutionLock:
        existing = db.get(ExecutionLock, lock_key)
        if existing is not None:
            age = (now - existing.acquired_at).total_seconds()
            if age < self.settings.lock_stale_after_seconds:
                logger.warning(f"Run '{lock_key}' rejected: lock taken by execution {existing.execution_id}")
                raise ScheduleBusyError(lock_key, existing.execution_id)
            logger.warning(
                f"Reclaiming stale lock '{lock_key}' held by execution {existing.execution_id} "
                f"since {existing.acquired_at:%Y-%m-%d %H:%M:%S}"
            )
            # only the lock that was observed stale; a concurrent reclaim replaces acquired_at
            db.expunge(existing)
            reclaimed = db.execute(
                delete(ExecutionLock)
                .where(
                    ExecutionLock.lock_key == lock_key,
                    ExecutionLock.acquired_at == existing.acquired_at,
                )
                .execution_options(synchronize_session=False)
            )
            if reclaimed.rowcount != 1:
                holder = db.get(ExecutionLock, lock_key)
                logger.warning(f"Run '{lock_key}' rejected: stale lock was reclaimed by another run")
                raise ScheduleBusyError(lock_key, holder.execution_id if holder else None)

        lock = ExecutionLock(lock_key=lock_key, acquired_at=now, acquired_by=acquired_by)
        db.add(lock)
        db.flush()
        return lock

    def _lock_holder(self, lock_key: str) -> ExecutionLock | None:
        with self.session_factory() as db:
            return db.get(ExecutionLock, lock_key)

    # ------------------------------------------------------------------
    # Per-asset work
    # ------------------------------------------------------------------

    def _process_asset(
        self, handle: RunHandle, asset_id: int, deadline: float, abort: threading.Event
    ) -> AssetOutcome:
        if abort.is_set():
            return AssetOutcome(asset_id, None)
        if time.monotonic() >= deadline:
            message = (
                f"Timeout: run exceeded {self.settings.max_run_seconds:g}s before this asset "
                "was reached; left for the next run"
            )
            logger.warning(f"Execution {handle.execution_id}: asset {asset_id} not processed (timeout)")
            return self._record_failure(handle, asset_id, None, message)

        book_before = None
        asset_found = True
        try:
            with self.session_factory() as db:
                with db.begin():
                    asset = db.get(Asset, asset_id)
                    if asset is None or asset.business_unit_id != handle.business_unit_id:
                        asset_found = asset is not None
                        raise CalculationError(f"Asset {asset_id} not found in business unit")
                    book_before = asset.book_value

                    if self._already_booked(db, asset_id, handle.run_date):
                        db.add(
                            AssetDepreciationDetail(
                                execution_id=handle.execution_id,
                                asset_id=asset_id,
                                status=DetailStatus.SKIPPED.value,
                                depreciation_amount=ZERO,
                                book_value_before=book_before,
                                book_value_after=book_before,
                                error_message=f"Already depreciated for {handle.run_date:%Y-%m}",
                            )
                        )
                        return AssetOutcome(asset_id, DetailStatus.SKIPPED)

                    return self._depreciate(db, handle, asset)
        except (CalculationError, ArithmeticError) as e:
            logger.warning(f"Execution {handle.execution_id}: asset {asset_id} failed: {e}")
            return self._record_failure(handle, asset_id if asset_found else None, book_before, str(e))
        except IntegrityError as e:
            # a concurrent writer booked the same (asset, year, month) first
            if self._period_booked(asset_id, handle.run_date):
                logger.info(f"Execution {handle.execution_id}: asset {asset_id} booked concurrently, skipped")
                return AssetOutcome(asset_id, DetailStatus.SKIPPED)
            logger.exception(f"Execution {handle.execution_id}: storage error on asset {asset_id}")
            raise PersistenceFault(f"Storage error while depreciating asset {asset_id}: {e.orig}") from e
        except SQLAlchemyError as e:
            logger.exception(f"Execution {handle.execution_id}: storage error on asset {asset_id}")
            raise PersistenceFault(f"Storage error while depreciating asset {asset_id}: {e}") from e

    def _depreciate(self, db: Session, handle: RunHandle, asset: Asset) -> AssetOutcome:
        life = asset.useful_life
        if life.needs_review:
            logger.warning(f"Asset {asset.item_code}: {life.reason}")

        covered = db.scalar(
            select(func.coalesce(func.sum(AssetDepreciation.months_covered), 0)).where(
                AssetDepreciation.asset_id == asset.id
            )
        )
        state = AssetState(
            purchase_price=asset.purchase_price,
            salvage_value=Decimal(asset.salvage_value or 0),
            current_book_value=asset.current_book_value,
            accumulated_depreciation=Decimal(asset.accumulated_depreciation or 0),
            useful_life_months=life.total_months,
            elapsed_months=(asset.prior_depreciation_months or 0) + int(covered),
            depreciation_rate=asset.depreciation_rate,
            total_expected_units=asset.total_expected_units,
            units_used=handle.usage.get(asset.id),
        )
        result = compute(
            state,
            asset.depreciation_method,
            period_months=handle.period_months,
            declining_factor=self.settings.declining_balance_factor,
        )
        details = dict(result.details)
        if life.needs_review:
            details["useful_life_review"] = life.reason
        book_before = state.book_value

        if result.no_op:
            asset.is_fully_depreciated = True
            asset.next_depreciation_date = None
            db.add(
                AssetDepreciationDetail(
                    execution_id=handle.execution_id,
                    asset_id=asset.id,
                    status=DetailStatus.SKIPPED.value,
                    depreciation_amount=ZERO,
                    book_value_before=book_before,
                    book_value_after=book_before,
                    error_message="Already at salvage value",
                    calculation_details=details,
                )
            )
            return AssetOutcome(asset.id, DetailStatus.SKIPPED)

        entry = AssetDepreciation(
            asset_id=asset.id,
            business_unit_id=asset.business_unit_id,
            execution_id=handle.execution_id,
            depreciation_date=handle.run_date,
            period_year=handle.run_date.year,
            period_month=handle.run_date.month,
            months_covered=handle.period_months,
            method=result.method_used,
            book_value_start=book_before,
            depreciation_amount=result.depreciation_amount,
            book_value_end=result.new_book_value,
            accumulated_depreciation=result.new_accumulated,
            calculated_by=handle.executor_id,
            notes=(
                f"Schedule {handle.schedule_id} execution {handle.execution_id}"
                if handle.schedule_id
                else f"Manual execution {handle.execution_id}"
            ),
        )
        db.add(entry)
        db.flush()

        asset.current_book_value = result.new_book_value
        asset.accumulated_depreciation = result.new_accumulated
        asset.monthly_depreciation = result.monthly_depreciation
        asset.last_depreciation_date = handle.run_date
        asset.is_fully_depreciated = result.period_fully_depreciated
        asset.next_depreciation_date = (
            None if result.period_fully_depreciated else add_months(handle.run_date, handle.period_months)
        )

        db.add(
            AssetDepreciationDetail(
                execution_id=handle.execution_id,
                asset_id=asset.id,
                ledger_entry_id=entry.id,
                status=DetailStatus.SUCCESS.value,
                depreciation_amount=result.depreciation_amount,
                book_value_before=book_before,
                book_value_after=result.new_book_value,
                calculation_details=details,
            )
        )
        return AssetOutcome(asset.id, DetailStatus.SUCCESS, result.depreciation_amount)

    def _already_booked(self, db: Session, asset_id: int, run_date: date) -> bool:
        entry_id = db.scalar(
            select(AssetDepreciation.id).where(
                AssetDepreciation.asset_id == asset_id,
                AssetDepreciation.period_year == run_date.year,
                AssetDepreciation.period_month == run_date.month,
            )
        )
        return entry_id is not None

    def _period_booked(self, asset_id: int, run_date: date) -> bool:
        with self.session_factory() as db:
            return self._already_booked(db, asset_id, run_date)

    def _record_failure(
        self, handle: RunHandle, asset_id: int | None, book_before: Decimal | None, message: str
    ) -> AssetOutcome:
        book = book_before if book_before is not None else ZERO
        try:
            with self.session_factory() as db, db.begin():
                db.add(
                    AssetDepreciationDetail(
                        execution_id=handle.execution_id,
                        asset_id=asset_id,
                        status=DetailStatus.FAILED.value,
                        depreciation_amount=ZERO,
                        book_value_before=book,
                        book_value_after=book,
                        error_message=message,
                    )
                )
        except SQLAlchemyError as e:
            logger.exception(f"Execution {handle.execution_id}: could not record failure of asset {asset_id}")
            raise PersistenceFault(f"Storage error while recording asset {asset_id}: {e}") from e
        return AssetOutcome(asset_id, DetailStatus.FAILED, error=message)

    # ------------------------------------------------------------------
    # Finalisation
    # ------------------------------------------------------------------

    def _finalize(
        self, handle: RunHandle, outcomes: list[AssetOutcome], error_message: str | None = None
    ) -> RunSummary:
        attempted = [o for o in outcomes if o.status is not None]
        successful = [o for o in attempted if o.status is DetailStatus.SUCCESS]
        failed = [o for o in attempted if o.status is DetailStatus.FAILED]
        skipped = [o for o in attempted if o.status is DetailStatus.SKIPPED]
        total = sum((o.amount for o in successful), ZERO)

        if error_message:
            status = ExecutionStatus.FAILED
        elif failed:
            status = ExecutionStatus.COMPLETED_WITH_ERRORS
        else:
            status = ExecutionStatus.COMPLETED
        duration_ms = int((time.monotonic() - handle.started_at) * 1000)

        try:
            with self.session_factory() as db, db.begin():
                execution = db.get(DepreciationExecution, handle.execution_id)
                if execution is None:
                    # the schedule was deleted mid-run, taking its history with it
                    logger.warning(f"Execution {handle.execution_id} disappeared before finalisation")
                elif execution.is_terminal:
                    logger.warning(
                        f"Execution {handle.execution_id} is already {execution.status}; "
                        "terminal executions are not rewritten"
                    )
                else:
                    execution.status = status.value
                    execution.total_assets_processed = len(attempted)
                    execution.successful_calculations = len(successful)
                    execution.failed_calculations = len(failed)
                    execution.skipped_calculations = len(skipped)
                    execution.total_depreciation_amount = total
                    execution.execution_duration_ms = duration_ms
                    execution.error_message = error_message
                    execution.completed_at = self.clock()
                db.execute(
                    delete(ExecutionLock).where(
                        ExecutionLock.lock_key == handle.lock_key,
                        ExecutionLock.execution_id == handle.execution_id,
                    )
                )
        except SQLAlchemyError as e:
            logger.exception(f"Execution {handle.execution_id} could not be finalised and stays RUNNING")
            raise PersistenceFault(f"Could not finalise execution {handle.execution_id}: {e}") from e

        log = logger.error if status is ExecutionStatus.FAILED else logger.info
        log(
            f"Execution {handle.execution_id} {status.value}: {len(successful)} successful, "
            f"{len(failed)} failed, {len(skipped)} skipped, total {total} in {duration_ms} ms"
        )
        return RunSummary(
            execution_id=handle.execution_id,
            status=status,
            total_assets_processed=len(attempted),
            successful_calculations=len(successful),
            failed_calculations=len(failed),
            skipped_calculations=len(skipped),
            total_depreciation_amount=total,
            execution_duration_ms=duration_ms,
            error_message=error_message,
        )
