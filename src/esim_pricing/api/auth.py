"""
Caller identity for the API.

Authentication happens upstream; the gateway forwards the verified user id
and role in X-User-Id / X-User-Role headers.
"""
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header

from ..core.errors import ForbiddenError
from .state import AppState, get_state

ADMIN_ROLE = "admin"


@dataclass
class Caller:
    user_id: Optional[str] = None
    role: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return (self.role or '').strip().lower() == ADMIN_ROLE


def get_caller(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> Caller:
    return Caller(
        user_id=(x_user_id or '').strip() or None,
        role=(x_user_role or '').strip() or None,
    )


def require_admin(caller: Caller = Depends(get_caller)) -> Caller:
    if not caller.is_admin:
        raise ForbiddenError(message="Admin role required")
    return caller


def ensure_agent_access(caller: Caller, agent_id: str, state: AppState):
    """Allow admins, or the user that owns the agent account."""
    if caller.is_admin:
        return
    owner = state.agents.owner_of(agent_id)
    if caller.user_id and owner and caller.user_id == owner:
        return
    raise ForbiddenError(message="Not allowed to price for this agent", details={"agent_id": agent_id})
