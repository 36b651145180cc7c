"""Case status lifecycle: states, actor roles and the role-tagged transition table."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]


class CaseStatus(StrEnum):
    SUBMITTED = "submitted"
    PENDING_STUDY_PAYMENT_VERIFICATION = "pending_study_payment_verification"
    STUDY_IN_PROGRESS = "study_in_progress"
    STUDY_COMPLETED = "study_completed"
    QUOTE_PENDING = "quote_pending"
    QUOTE_SENT = "quote_sent"
    QUOTE_ACCEPTED = "quote_accepted"
    QUOTE_REJECTED = "quote_rejected"
    PENDING_PRODUCTION_PAYMENT_VERIFICATION = "pending_production_payment_verification"
    IN_PRODUCTION = "in_production"
    PENDING_RESPONSE = "pending_response"
    PRODUCTION_COMPLETED = "production_completed"
    READY_FOR_PICKUP = "ready_for_pickup"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUND_REQUESTED = "refund_requested"
    REFUNDED = "refunded"


class ActorRole(StrEnum):
    CLIENT = "client"
    DESIGNER = "designer"
    ADMIN = "admin"
    SYSTEM = "system"


INITIAL_STATUS = CaseStatus.SUBMITTED
TERMINAL_STATUSES = frozenset(
    {CaseStatus.DELIVERED, CaseStatus.COMPLETED, CaseStatus.CANCELLED, CaseStatus.REFUNDED}
)
CASE_STATUS_VALUES = frozenset(s.value for s in CaseStatus)
ACTOR_ROLE_VALUES = frozenset(r.value for r in ActorRole)


def parse_status(value: str | CaseStatus) -> CaseStatus:
    """Return the CaseStatus for value; raise ValueError for unknown strings."""
    try:
        return CaseStatus(value)
    except ValueError:
        raise ValueError(
            f"Unknown status {value!r}. Must be one of {sorted(CASE_STATUS_VALUES)}"
        ) from None


def parse_role(value: str | ActorRole) -> ActorRole:
    try:
        return ActorRole(value)
    except ValueError:
        raise ValueError(
            f"Unknown role {value!r}. Must be one of {sorted(ACTOR_ROLE_VALUES)}"
        ) from None


def is_terminal(status: CaseStatus | str) -> bool:
    return CaseStatus(status) in TERMINAL_STATUSES


@dataclass(frozen=True)
class TransitionEdge:
    """One legal move from a source status, with the roles allowed to trigger it."""

    target: CaseStatus
    allowed_roles: frozenset[ActorRole]


@dataclass(frozen=True)
class TransitionPolicy:
    """Immutable transition table: source status -> outgoing role-tagged edges.

    Built once at startup and injected into the engine; tests can build their own.
    """

    edges: Mapping[CaseStatus, tuple[TransitionEdge, ...]]
    name: str = "default"
    _index: dict[tuple[CaseStatus, CaseStatus], frozenset[ActorRole]] = field(
        init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        index: dict[tuple[CaseStatus, CaseStatus], frozenset[ActorRole]] = {}
        for source, out in self.edges.items():
            for edge in out:
                index[(source, edge.target)] = edge.allowed_roles
        object.__setattr__(self, "_index", index)

    def targets_from(self, source: CaseStatus | str) -> list[CaseStatus]:
        """All targets reachable from source for any role, in table order."""
        return [e.target for e in self.edges.get(CaseStatus(source), ())]

    def targets_for(self, source: CaseStatus | str, role: ActorRole | str) -> list[CaseStatus]:
        """Targets reachable from source for the given role, in table order."""
        r = ActorRole(role)
        return [e.target for e in self.edges.get(CaseStatus(source), ()) if r in e.allowed_roles]

    def has_edge(self, source: CaseStatus | str, target: CaseStatus | str) -> bool:
        return (CaseStatus(source), CaseStatus(target)) in self._index

    def roles_for(self, source: CaseStatus | str, target: CaseStatus | str) -> frozenset[ActorRole]:
        return self._index.get((CaseStatus(source), CaseStatus(target)), frozenset())

    def to_dict(self) -> dict[str, list[dict[str, Any]]]:
        return {
            source.value: [
                {"target": e.target.value, "roles": sorted(r.value for r in e.allowed_roles)}
                for e in self.edges.get(source, ())
            ]
            for source in CaseStatus
        }

    def fingerprint(self) -> str:
        """SHA256 of the canonical table, for reproducibility."""
        canonical = json.dumps(self.to_dict(), sort_keys=True)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Iterable[Mapping[str, Any]]], name: str = "custom"):
        """Build a policy from {source: [{target, roles}, ...]}. Raises ValueError if invalid."""
        edges: dict[CaseStatus, tuple[TransitionEdge, ...]] = {}
        for source_raw, out_raw in raw.items():
            source = parse_status(source_raw)
            out: list[TransitionEdge] = []
            for item in out_raw or []:
                if "target" not in item:
                    raise ValueError(f"Edge from {source.value} is missing 'target'")
                roles = frozenset(parse_role(r) for r in item.get("roles") or [])
                out.append(TransitionEdge(parse_status(item["target"]), roles))
            edges[source] = tuple(out)
        policy = cls(edges=edges, name=name)
        validate_policy(policy)
        return policy


def validate_policy(policy: TransitionPolicy) -> None:
    """Raise ValueError if the table has self-loops, duplicate or role-less edges, or terminal exits."""
    for source, out in policy.edges.items():
        seen: set[CaseStatus] = set()
        for edge in out:
            if edge.target == source:
                raise ValueError(f"Self-transition not allowed: {source.value}")
            if edge.target in seen:
                raise ValueError(f"Duplicate edge: {source.value} -> {edge.target.value}")
            if not edge.allowed_roles:
                raise ValueError(f"Edge {source.value} -> {edge.target.value} has no roles")
            seen.add(edge.target)
        if out and source in TERMINAL_STATUSES:
            raise ValueError(f"Terminal status {source.value} cannot have outgoing edges")


def _edge(target: CaseStatus, *roles: ActorRole) -> TransitionEdge:
    return TransitionEdge(target, frozenset(roles))


_C, _D, _A, _S = ActorRole.CLIENT, ActorRole.DESIGNER, ActorRole.ADMIN, ActorRole.SYSTEM
_STAFF = (_D, _A)
_CANCEL = _edge(CaseStatus.CANCELLED, _C, _A)
# Refunds cover the production payment; the study fee is non-refundable.
_REFUND = _edge(CaseStatus.REFUND_REQUESTED, _C, _A)

DEFAULT_POLICY = TransitionPolicy(
    edges={
        CaseStatus.SUBMITTED: (
            _edge(CaseStatus.PENDING_STUDY_PAYMENT_VERIFICATION, *_STAFF, _S),
            _edge(CaseStatus.STUDY_IN_PROGRESS, *_STAFF),
            _CANCEL,
        ),
        CaseStatus.PENDING_STUDY_PAYMENT_VERIFICATION: (
            _edge(CaseStatus.STUDY_IN_PROGRESS, _A, _S),
            # payment rejected
            _edge(CaseStatus.SUBMITTED, _A, _S),
            _CANCEL,
        ),
        CaseStatus.STUDY_IN_PROGRESS: (
            _edge(CaseStatus.STUDY_COMPLETED, *_STAFF),
            _edge(CaseStatus.PENDING_RESPONSE, *_STAFF),
            _CANCEL,
        ),
        CaseStatus.STUDY_COMPLETED: (
            _edge(CaseStatus.QUOTE_PENDING, *_STAFF),
            _CANCEL,
        ),
        CaseStatus.QUOTE_PENDING: (
            _edge(CaseStatus.QUOTE_SENT, *_STAFF),
            _CANCEL,
        ),
        CaseStatus.QUOTE_SENT: (
            _edge(CaseStatus.QUOTE_ACCEPTED, _C),
            _edge(CaseStatus.QUOTE_REJECTED, _C),
            _CANCEL,
        ),
        CaseStatus.QUOTE_ACCEPTED: (
            _edge(CaseStatus.PENDING_PRODUCTION_PAYMENT_VERIFICATION, *_STAFF, _S),
            _CANCEL,
        ),
        CaseStatus.QUOTE_REJECTED: (
            _edge(CaseStatus.QUOTE_PENDING, *_STAFF),
            _CANCEL,
        ),
        CaseStatus.PENDING_PRODUCTION_PAYMENT_VERIFICATION: (
            _edge(CaseStatus.IN_PRODUCTION, _A, _S),
            # payment rejected
            _edge(CaseStatus.QUOTE_ACCEPTED, _A, _S),
            _CANCEL,
        ),
        CaseStatus.IN_PRODUCTION: (
            _edge(CaseStatus.PENDING_RESPONSE, *_STAFF),
            _edge(CaseStatus.PRODUCTION_COMPLETED, *_STAFF),
            _REFUND,
            _CANCEL,
        ),
        CaseStatus.PENDING_RESPONSE: (
            _edge(CaseStatus.IN_PRODUCTION, *_STAFF),
            _edge(CaseStatus.PRODUCTION_COMPLETED, *_STAFF),
            _REFUND,
            _CANCEL,
        ),
        CaseStatus.PRODUCTION_COMPLETED: (
            _edge(CaseStatus.READY_FOR_PICKUP, *_STAFF),
            _edge(CaseStatus.OUT_FOR_DELIVERY, *_STAFF),
            _REFUND,
            _CANCEL,
        ),
        CaseStatus.READY_FOR_PICKUP: (
            _edge(CaseStatus.DELIVERED, _C, *_STAFF),
            _REFUND,
            _CANCEL,
        ),
        CaseStatus.OUT_FOR_DELIVERY: (
            _edge(CaseStatus.DELIVERED, _C, *_STAFF),
            _REFUND,
            _CANCEL,
        ),
        CaseStatus.DELIVERED: (),
        CaseStatus.COMPLETED: (),
        CaseStatus.CANCELLED: (),
        # Approve, close without refund, or reject (production resumes).
        CaseStatus.REFUND_REQUESTED: (
            _edge(CaseStatus.REFUNDED, _A),
            _edge(CaseStatus.COMPLETED, *_STAFF),
            _edge(CaseStatus.IN_PRODUCTION, *_STAFF),
            _CANCEL,
        ),
        CaseStatus.REFUNDED: (),
    },
)
validate_policy(DEFAULT_POLICY)


def can_transition(
    from_status: CaseStatus | str,
    to_status: CaseStatus | str,
    role: ActorRole | str,
    policy: TransitionPolicy = DEFAULT_POLICY,
) -> bool:
    """Return whether role may move a case from from_status to to_status under policy."""
    return ActorRole(role) in policy.roles_for(from_status, to_status)


def load_policy(config: dict[str, Any]) -> TransitionPolicy:
    """Return the policy named by workflow.policy_path, else DEFAULT_POLICY."""
    path = (config.get("workflow") or {}).get("policy_path")
    if not path:
        return DEFAULT_POLICY
    p = Path(path)
    if not p.exists():
        raise ValueError(f"workflow.policy_path does not exist: {path}")
    with open(p, encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    transitions = raw.get("transitions", raw)
    if not isinstance(transitions, dict):
        raise ValueError("Policy file must map source status to a list of edges")
    return TransitionPolicy.from_mapping(transitions, name=str(raw.get("name") or p.stem))
