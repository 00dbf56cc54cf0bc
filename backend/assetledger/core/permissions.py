from dataclasses import dataclass

from assetledger.core.exceptions import PermissionDeniedError
from assetledger.utils.settings_loader import EngineSettings


@dataclass(frozen=True)
class Actor:
    """Authenticated caller, as resolved by the external auth module."""

    user_id: int
    role: str
    business_unit_id: int | None = None


def require_admin(actor: Actor, settings: EngineSettings) -> None:
    if actor.role not in settings.admin_roles:
        raise PermissionDeniedError("Only administrators can manage depreciation schedules and runs")


def require_business_unit_access(actor: Actor, business_unit_id: int, settings: EngineSettings) -> None:
    # admins and accounting read every unit, everyone else only their own
    if actor.role in settings.cross_unit_roles:
        return
    if actor.business_unit_id is None:
        raise PermissionDeniedError("User is not assigned to any business unit")
    if actor.business_unit_id != business_unit_id:
        raise PermissionDeniedError(f"Access denied to business unit {business_unit_id}")


def can_see_due_work(actor: Actor, settings: EngineSettings) -> bool:
    return actor.role in settings.due_work_roles
