"""
Access Rules — who may move money and who may touch a subscription.
Identity itself comes from the upstream auth layer; this module only decides.
"""
from dataclasses import dataclass
from typing import Optional

from donation_core.errors import Forbidden

ADMIN = "admin"
DONOR = "donor"
SYSTEM = "system"


@dataclass(frozen=True)
class Actor:
    """The caller of an operation, as resolved by the identity capability."""

    id: str
    role: str = DONOR
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role in (ADMIN, SYSTEM)

    def owns(self, donor_id: Optional[str], donor_email: Optional[str]) -> bool:
        if donor_id and self.id == donor_id:
            return True
        return bool(donor_email and self.email and self.email.lower() == donor_email.lower())


SYSTEM_ACTOR = Actor(id="system", role=SYSTEM)


def require_admin(actor: Actor, action: str) -> None:
    if not actor.is_admin:
        raise Forbidden(f"Only administrators can {action}")


def require_owner_or_admin(actor: Actor, donor_id: Optional[str], donor_email: Optional[str], action: str) -> None:
    if actor.is_admin or actor.owns(donor_id, donor_email):
        return
    raise Forbidden(f"You are not allowed to {action}")
