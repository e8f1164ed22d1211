"""
Request Dependencies — resolve the acting user from the upstream auth layer.

Authentication happens before requests reach this service; the gateway in
front of it forwards the resolved identity as x-actor-* headers.
"""
from typing import Optional

from fastapi import Depends, Header

from donation_core.errors import Forbidden
from donation_core.services.access import Actor, ADMIN, DONOR, require_admin

ACCEPTED_ROLES = (ADMIN, DONOR)


def get_actor(
    actor_id: str = Header(..., alias="x-actor-id"),
    actor_email: Optional[str] = Header(None, alias="x-actor-email"),
    actor_role: str = Header(DONOR, alias="x-actor-role"),
) -> Actor:
    role = actor_role.strip().lower()
    if role not in ACCEPTED_ROLES:
        raise Forbidden(f"Unknown role '{actor_role}'")
    return Actor(id=actor_id, role=role, email=actor_email.strip().lower() if actor_email else None)


def get_admin(actor: Actor = Depends(get_actor)) -> Actor:
    require_admin(actor, "access the admin console")
    return actor


def get_donor_email(actor: Actor = Depends(get_actor)) -> str:
    """Donor self-service views are scoped to the caller's email."""
    if not actor.email:
        raise Forbidden("An email address is required to view your donations")
    return actor.email
