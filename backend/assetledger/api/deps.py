from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session, sessionmaker

from assetledger.core.executor import DepreciationExecutor
from assetledger.core.permissions import Actor, require_business_unit_access
from assetledger.core.schedules import get_business_unit
from assetledger.db.database import get_db, get_session_factory
from assetledger.utils.settings_loader import EngineSettings, get_settings


def get_engine_settings() -> EngineSettings:
    return get_settings()


def get_actor(
    x_user_id: int | None = Header(None),
    x_user_role: str | None = Header(None),
    x_business_unit_id: int | None = Header(None),
) -> Actor:
    """Caller identity forwarded by the authenticating gateway."""
    if x_user_id is None or not x_user_role:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing user identity headers.")
    return Actor(user_id=x_user_id, role=x_user_role.upper(), business_unit_id=x_business_unit_id)


def get_business_unit_id(
    business_unit_id: int,
    actor: Actor = Depends(get_actor),
    settings: EngineSettings = Depends(get_engine_settings),
    db: Session = Depends(get_db),
) -> int:
    """The path's business unit, after checking the caller may see it and that it exists."""
    require_business_unit_access(actor, business_unit_id, settings)
    get_business_unit(db, business_unit_id)
    return business_unit_id


def get_executor(
    session_factory: sessionmaker = Depends(get_session_factory),
    settings: EngineSettings = Depends(get_engine_settings),
) -> DepreciationExecutor:
    return DepreciationExecutor(session_factory, settings=settings)
