"""Shared test data: sample actors, intake payloads, dispatchers and a path helper."""

from __future__ import annotations

from guide_orders.engine import CaseStatusEngine
from guide_orders.identity import Actor

CLIENT = Actor.of("client", "clinic-1", profile_id=1)
OTHER_CLIENT = Actor.of("client", "clinic-2", profile_id=2)
DESIGNER = Actor.of("designer", "designer-1", profile_id=10)
ADMIN = Actor.of("admin", "admin-1")
SYSTEM = Actor.of("system", "payments")

STUDY_ONLY_CASE = {
    "procedure_category": "single_implant",
    "guide_type": "tooth_support",
    "required_service": "study_only",
    "patient_ref": "PT-0042",
    "teeth_numbers": [36],
    "clinical_notes": "Narrow ridge, CBCT attached",
}

FULL_SOLUTION_CASE = {
    "procedure_category": "full_arch",
    "guide_type": "bone_support",
    "required_service": "full_solution",
    "delivery_method": "pickup",
    "pickup_branch_id": 3,
}

# submitted -> quote_sent along the designer path
TO_QUOTE_SENT = [
    ("study_in_progress", DESIGNER),
    ("study_completed", DESIGNER),
    ("quote_pending", DESIGNER),
    ("quote_sent", DESIGNER),
]

# quote_sent -> in_production with a verified production payment
TO_IN_PRODUCTION = [
    ("quote_accepted", CLIENT),
    ("pending_production_payment_verification", SYSTEM),
    ("in_production", ADMIN),
]


class RecordingDispatcher:
    def __init__(self) -> None:
        self.events = []

    def publish(self, event) -> None:
        self.events.append(event)


class FailingDispatcher:
    def publish(self, event) -> None:
        raise ConnectionError("notification backend down")


def advance(engine: CaseStatusEngine, case_id: int, path) -> None:
    for target, actor in path:
        engine.request_transition(case_id, target, actor)
