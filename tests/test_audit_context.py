"""Tests for audit context (correlation_id and actor traceability)."""

from helpers import STUDY_ONLY_CASE

from guide_orders.audit_context import get_actor, get_correlation_id, set_actor, set_audit_context
from guide_orders.identity import Actor


def test_set_and_get_context() -> None:
    set_audit_context("corr-123", "clinic-portal")
    assert get_correlation_id() == "corr-123"
    assert get_actor() == "clinic-portal"
    set_actor("admin-1")
    assert get_actor() == "admin-1"
    assert get_correlation_id() == "corr-123"


def test_get_correlation_id_generated_when_unset() -> None:
    """When correlation_id is not set, get_correlation_id returns a generated UUID."""
    set_audit_context(None, "system")
    cid = get_correlation_id()
    assert len(cid) == 36
    assert cid.count("-") == 4
    assert get_correlation_id() == cid


def test_get_actor_default_system_when_unset() -> None:
    set_audit_context("x", None)
    assert get_actor() == "system"


def test_history_entries_carry_correlation_id(engine) -> None:
    set_audit_context("run-456", "cli")
    case = engine.submit_case(Actor.of("client", "clinic-1", 1), STUDY_ONLY_CASE)
    assert engine.get_history(case.id)[0].correlation_id == "run-456"


def test_blank_actor_id_falls_back_to_context_actor(engine) -> None:
    set_audit_context("run-789", "payments-webhook")
    case = engine.submit_case(Actor.of("client", "", 1), STUDY_ONLY_CASE)
    assert engine.get_history(case.id)[0].actor_id == "payments-webhook"
