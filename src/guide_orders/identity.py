"""Acting user: a closed role plus identity, as supplied by the auth layer."""

from __future__ import annotations

from dataclasses import dataclass

from guide_orders.case_lifecycle import ActorRole, parse_role


@dataclass(frozen=True)
class Actor:
    role: ActorRole
    actor_id: str
    # Client or designer profile the actor acts as; None for admin/system.
    profile_id: int | None = None

    @classmethod
    def of(cls, role: str | ActorRole, actor_id: str, profile_id: int | None = None) -> Actor:
        return cls(role=parse_role(role), actor_id=actor_id, profile_id=profile_id)

    @property
    def is_client(self) -> bool:
        return self.role is ActorRole.CLIENT
