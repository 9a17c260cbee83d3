from typing import Dict
from uuid import UUID

from fastapi import Depends, HTTPException, status

from fee_ledger.auth.dependencies import get_current_user
from fee_ledger.auth.schemas import CurrentUser

ADMIN_ROLES = ("SUPER_ADMIN", "ADMIN")


def check_permission(module: str, action: str):
    """
    Dependency factory to enforce a specific permission.

    Example:
        Depends(check_permission("fees", "create"))
    """

    async def _checker(current_user: CurrentUser = Depends(get_current_user)) -> None:
        if current_user.role in ADMIN_ROLES:
            return
        permissions: Dict[str, Dict[str, bool]] = current_user.permissions or {}
        module_perms = permissions.get(module, {})
        if not module_perms.get(action, False):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )

    return _checker


def can_act_for_student(current_user: CurrentUser, student_id: UUID) -> bool:
    """Admins and staff with fee rights act for anyone; parents only for their own students."""
    if current_user.role in ADMIN_ROLES:
        return True
    if student_id in current_user.student_ids:
        return True
    return bool((current_user.permissions or {}).get("fees", {}).get("update", False))
