"""Request-scoped collaborators: the calling actor, resolved from identity headers."""

from typing import Optional

from fastapi import Header, HTTPException

from support_chat.services.roles import Actor, SenderRole

HEADER_ROLES = {SenderRole.CUSTOMER.value, SenderRole.STAFF.value}


def get_current_actor(
    x_actor_id: Optional[str] = Header(default=None, alias="X-Actor-Id"),
    x_actor_name: Optional[str] = Header(default=None, alias="X-Actor-Name"),
    x_actor_email: Optional[str] = Header(default=None, alias="X-Actor-Email"),
    x_actor_role: Optional[str] = Header(default=None, alias="X-Actor-Role"),
) -> Actor:
    """The identity provider has already authenticated; we only require its headers."""
    if not x_actor_id or not x_actor_role:
        raise HTTPException(status_code=401, detail="Missing actor identity")

    role = x_actor_role.strip().lower()
    if role == SenderRole.SYSTEM.value:
        raise HTTPException(status_code=403, detail="System identity cannot be asserted by clients")
    if role not in HEADER_ROLES:
        raise HTTPException(status_code=422, detail=f"Unknown actor role '{x_actor_role}'")

    return Actor(
        id=x_actor_id,
        name=x_actor_name or x_actor_id,
        role=SenderRole(role),
        email=x_actor_email or "",
    )
