import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from assetledger.api import assets, executions, schedules
from assetledger.core.eligibility import due_on
from assetledger.core.exceptions import DepreciationError
from assetledger.db.database import get_db, init_db
from assetledger.jobs.scheduler import shutdown_scheduler, start_scheduler
from assetledger.models import Asset, DepreciationExecution, DepreciationSchedule
from assetledger.utils.settings_loader import get_settings

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
logger = logging.getLogger(__name__)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    settings = get_settings()
    if settings.scheduler_enabled:
        start_scheduler(settings)
    yield
    shutdown_scheduler()


app = FastAPI(
    title="Asset Depreciation Engine API",
    description="Scheduled and on-demand depreciation runs with a per-asset ledger and execution history",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DepreciationError)
async def depreciation_error_handler(request: Request, exc: DepreciationError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


_PREFIX = "/api/business-units/{business_unit_id}/depreciation"
app.include_router(schedules.router, prefix=f"{_PREFIX}/schedules", tags=["schedules"])
app.include_router(executions.router, prefix=f"{_PREFIX}/executions", tags=["executions"])
app.include_router(assets.router, prefix=f"{_PREFIX}/assets", tags=["assets"])


@app.get("/health")
def health_check():
    return {"status": "ok", "version": VERSION}


@app.get("/health/depreciation")
def depreciation_health(db: Session = Depends(get_db)):
    """Database reachability plus a few counters for monitoring."""
    try:
        db.execute(text("SELECT 1"))
        today = date.today()
        active_schedules = db.scalar(
            select(func.count(DepreciationSchedule.id)).where(DepreciationSchedule.is_active.is_(True))
        )
        recent_executions = db.scalar(
            select(func.count(DepreciationExecution.id)).where(
                DepreciationExecution.execution_date >= datetime.now() - timedelta(days=7)
            )
        )
        assets_ready = db.scalar(
            select(func.count(Asset.id)).where(
                Asset.is_active.is_(True),
                Asset.depreciation_method.is_not(None),
                Asset.is_fully_depreciated.is_(False),
                due_on(today),
            )
        )
    except SQLAlchemyError as e:
        logger.exception("Depreciation health check failed")
        return JSONResponse(status_code=503, content={"status": "unhealthy", "database": "unreachable", "error": str(e)})

    return {
        "status": "healthy",
        "database": "connected",
        "active_schedules": active_schedules,
        "executions_last_7_days": recent_executions,
        "assets_ready_for_depreciation": assets_ready,
        "timestamp": datetime.now().isoformat(),
    }
