"""API key authentication and actor binding. Each key carries a role and optional profile id."""

from __future__ import annotations

import os
from dataclasses import dataclass

from fastapi import HTTPException
from starlette.requests import Request

from guide_orders.case_lifecycle import ACTOR_ROLE_VALUES, ActorRole
from guide_orders.identity import Actor

# When GUIDE_API_KEYS is empty or unset, we default to a single dev key (dev-only, not for production).
_DEFAULT_DEV_KEY = "dev_key"


@dataclass(frozen=True)
class KeyGrant:
    name: str
    role: ActorRole
    profile_id: int | None = None

    def to_actor(self) -> Actor:
        return Actor(role=self.role, actor_id=self.name, profile_id=self.profile_id)


def parse_api_keys_env() -> dict[str, KeyGrant]:
    """Parse GUIDE_API_KEYS into key -> grant.
    Format: 'name:key:role[:profile_id],...'; role defaults to admin, unknown roles are skipped."""
    raw = os.environ.get("GUIDE_API_KEYS", "").strip()
    grants: dict[str, KeyGrant] = {}
    for part in raw.split(","):
        parts = [p.strip() for p in part.strip().split(":")]
        if len(parts) < 2 or not parts[0] or not parts[1]:
            continue
        name, key = parts[0], parts[1]
        role = parts[2] if len(parts) > 2 and parts[2] else ActorRole.ADMIN.value
        if role not in ACTOR_ROLE_VALUES:
            continue
        profile_id = int(parts[3]) if len(parts) > 3 and parts[3].isdigit() else None
        grants[key] = KeyGrant(name=name, role=ActorRole(role), profile_id=profile_id)
    if not grants:
        grants[_DEFAULT_DEV_KEY] = KeyGrant(name="dev", role=ActorRole.ADMIN)
    return grants


def require_actor(request: Request) -> Actor:
    """Validate X-API-Key header; set audit actor; return the Actor.
    Raises 401 if header missing or key invalid."""
    from guide_orders.audit_context import set_actor

    api_key = request.headers.get("X-API-Key")
    if not api_key:
        raise HTTPException(status_code=401, detail="Missing X-API-Key")
    grant = parse_api_keys_env().get(api_key)
    if grant is None:
        raise HTTPException(status_code=401, detail="Invalid API key")
    set_actor(grant.name)
    return grant.to_actor()
