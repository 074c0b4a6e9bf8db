from dataclasses import dataclass
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status

from microloans.core.context import set_actor_id
from microloans.schemas.loan import UserRole


@dataclass(frozen=True, slots=True)
class Actor:
    """The authenticated caller as resolved by the upstream identity gateway."""

    user_id: UUID
    role: UserRole


async def get_current_actor(
    user_id: str | None = Header(default=None, alias="X-User-Id"),
    user_role: str | None = Header(default=None, alias="X-User-Role"),
) -> Actor:
    if not user_id or not user_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing caller identity headers",
        )
    try:
        parsed_id = UUID(user_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid caller id") from exc
    try:
        role = UserRole(user_role.strip().upper())
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unknown caller role") from exc
    set_actor_id(str(parsed_id))
    return Actor(user_id=parsed_id, role=role)


def require_roles(*roles: UserRole):
    allowed = frozenset(roles)

    async def dependency(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "code": "forbidden",
                    "message": "Role not permitted for this operation",
                    "details": {"role": actor.role.value, "allowed": sorted(r.value for r in allowed)},
                },
            )
        return actor

    return dependency


STAFF_ROLES = (
    UserRole.LOAN_OFFICER,
    UserRole.BRANCH_MANAGER,
    UserRole.REGIONAL_MANAGER,
    UserRole.FINANCE_ADMIN,
)
