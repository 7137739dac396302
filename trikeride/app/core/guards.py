"""
Role guards for registry endpoints.

Passengers post and answer offers, drivers discover, claim and complete,
and any party may read or cancel a booking it takes part in.
"""

from fastapi import Depends, HTTPException, status
from trikeride.app.models.enums import UserRole
from trikeride.app.core.dependencies import get_current_user


def require_role(*allowed_roles: UserRole):
    """
    Dependency factory admitting only callers whose token role is listed.

    Usage:
        @router.get("/driver/bookings/nearby")
        async def nearby(current_user: dict = Depends(require_role(UserRole.DRIVER))):
            ...

    Raises:
        HTTPException 403 if the role is unknown or not allowed
    """
    allowed = frozenset(allowed_roles)

    async def role_checker(current_user: dict = Depends(get_current_user)) -> dict:
        try:
            role = UserRole(current_user["role"])
        except ValueError:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid role in token")

        if role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {', '.join(sorted(r.value for r in allowed))}"
            )
        return current_user

    return role_checker


require_driver = require_role(UserRole.DRIVER)
require_passenger = require_role(UserRole.PASSENGER)
require_any_party = require_role(UserRole.PASSENGER, UserRole.DRIVER, UserRole.ADMIN)
