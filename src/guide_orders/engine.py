"""Case status engine: legality- and role-checked transitions with an append-only history.

Every status write happens in one transaction together with its history row. The case row
is read FOR UPDATE (Postgres) and written with an optimistic version check, so two
concurrent requests on the same case cannot both commit.
"""

from __future__ import annotations

import logging
import secrets
import time
from collections.abc import Callable, Generator
from contextlib import AbstractContextManager, contextmanager
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from guide_orders.audit_context import get_actor, get_correlation_id
from guide_orders.case_lifecycle import (
    DEFAULT_POLICY,
    INITIAL_STATUS,
    ActorRole,
    CaseStatus,
    TransitionPolicy,
    is_terminal,
)
from guide_orders.db import session_scope
from guide_orders.errors import (
    CaseNotFoundError,
    ConflictError,
    ForbiddenError,
    IllegalTransitionError,
    WorkflowValidationError,
)
from guide_orders.identity import Actor
from guide_orders.models import Case, CaseAttachment, CaseComment, CaseStatusHistory
from guide_orders.notifications import CaseStatusEvent, NotificationDispatcher, publish_safely
from guide_orders.schemas import (
    AttachmentRequest,
    AttachmentResponse,
    CaseCreateRequest,
    CaseResponse,
    CommentRequest,
    CommentResponse,
    HistoryEntryResponse,
    TransitionResponse,
)

logger = logging.getLogger(__name__)

ENTRY_SUBMISSION = "submission"
ENTRY_TRANSITION = "transition"
ENTRY_OVERRIDE = "override"

# Postgres: serialization_failure, lock_not_available
_PG_CONFLICT_CODES = frozenset({"40001", "55P03"})


def _is_lock_contention(exc: OperationalError) -> bool:
    orig = getattr(exc, "orig", None)
    if getattr(orig, "pgcode", None) in _PG_CONFLICT_CODES:
        return True
    return "database is locked" in str(orig or exc).lower()


def _pydantic_errors(exc: PydanticValidationError) -> dict[str, str]:
    out: dict[str, str] = {}
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "body"
        out[loc] = err.get("msg", "invalid")
    return out


def _parse_target(target_status: str | CaseStatus) -> CaseStatus:
    try:
        return CaseStatus(target_status)
    except ValueError:
        raise WorkflowValidationError(
            f"Unknown target status {target_status!r}",
            errors={"target_status": f"must be one of {sorted(s.value for s in CaseStatus)}"},
        ) from None


class CaseStatusEngine:
    """Owns the authoritative status of every case.

    `policy` is the immutable transition table; `dispatcher` receives one event per
    committed change and may fail without affecting the change.
    """

    def __init__(
        self,
        policy: TransitionPolicy = DEFAULT_POLICY,
        dispatcher: NotificationDispatcher | None = None,
        session_factory: Callable[[], AbstractContextManager[Session]] = session_scope,
        case_number_prefix: str = "CASE",
    ) -> None:
        self.policy = policy
        self.dispatcher = dispatcher
        self._session_scope = session_factory
        self._case_number_prefix = case_number_prefix

    # --- helpers ---

    @contextmanager
    def _write_scope(self, case_id: int | None) -> Generator[Session, None, None]:
        """Session scope that turns concurrent-write failures into ConflictError."""
        try:
            with self._session_scope() as session:
                yield session
        except (StaleDataError, IntegrityError) as exc:
            logger.info("Concurrent update rejected for case_id=%s: %s", case_id, type(exc).__name__)
            raise ConflictError(
                f"Case {case_id} was modified concurrently; re-read and retry"
            ) from exc
        except OperationalError as exc:
            if _is_lock_contention(exc):
                logger.info("Lock contention for case_id=%s", case_id)
                raise ConflictError(f"Case {case_id} is locked by another update; retry") from exc
            raise

    def _load_case(self, session: Session, case_id: int, for_update: bool = False) -> Case:
        stmt = select(Case).where(Case.id == case_id)
        if for_update:
            stmt = stmt.with_for_update()
        case = session.execute(stmt).scalar_one_or_none()
        if case is None:
            raise CaseNotFoundError(case_id)
        return case

    @staticmethod
    def _check_access(case: Case, actor: Actor | None) -> None:
        """Clients only see and act on cases owned by their own profile."""
        if actor is not None and actor.is_client and case.client_profile_id != actor.profile_id:
            raise ForbiddenError("Access denied: case belongs to another client")

    def _new_case_number(self, session: Session) -> str:
        for _ in range(5):
            number = (
                f"{self._case_number_prefix}-{int(time.time() * 1000)}-{secrets.randbelow(1000):03d}"
            )
            exists = session.execute(
                select(Case.id).where(Case.case_number == number)
            ).scalar_one_or_none()
            if exists is None:
                return number
        raise ConflictError("Could not allocate a unique case number; retry")

    @staticmethod
    def _next_seq(session: Session, case_id: int) -> int:
        current = session.execute(
            select(func.max(CaseStatusHistory.seq)).where(CaseStatusHistory.case_id == case_id)
        ).scalar_one()
        return (current or 0) + 1

    def _append_history(
        self,
        session: Session,
        case: Case,
        from_status: str | None,
        actor: Actor,
        entry_type: str,
        notes: str | None,
    ) -> CaseStatusHistory:
        entry = CaseStatusHistory(
            case_id=case.id,
            seq=self._next_seq(session, case.id),
            from_status=from_status,
            to_status=case.status,
            changed_by=actor.role.value,
            actor_id=actor.actor_id or get_actor(),
            entry_type=entry_type,
            notes=notes,
            correlation_id=get_correlation_id(),
            created_at=datetime.now(UTC),
        )
        session.add(entry)
        return entry

    @staticmethod
    def _stamp_lifecycle(case: Case, target: CaseStatus) -> None:
        now = datetime.now(UTC)
        if target is CaseStatus.COMPLETED:
            case.completed_at = now
        elif target is CaseStatus.CANCELLED:
            case.cancelled_at = now

    def _commit_change(
        self,
        case_id: int,
        target: CaseStatus,
        actor: Actor,
        notes: str | None,
        entry_type: str,
        check: Callable[[Case], None],
        expected_version: int | None = None,
    ) -> TransitionResponse:
        with self._write_scope(case_id) as session:
            case = self._load_case(session, case_id, for_update=True)
            self._check_access(case, actor)
            if expected_version is not None and case.version != expected_version:
                raise ConflictError(
                    f"Case {case_id} is at version {case.version}, expected {expected_version}"
                )
            check(case)
            from_status = case.status
            case.status = target.value
            self._stamp_lifecycle(case, target)
            entry = self._append_history(session, case, from_status, actor, entry_type, notes)
            session.flush()
            result = TransitionResponse(
                case=CaseResponse.model_validate(case),
                history_entry=HistoryEntryResponse.model_validate(entry),
            )
        publish_safely(
            self.dispatcher,
            CaseStatusEvent(
                case_id=result.case.id,
                case_number=result.case.case_number,
                from_status=from_status,
                to_status=target.value,
                actor_role=actor.role.value,
                entry_type=entry_type,
                correlation_id=result.history_entry.correlation_id,
            ),
        )
        return result

    # --- operations ---

    def submit_case(self, actor: Actor, data: CaseCreateRequest | dict[str, Any]) -> CaseResponse:
        """Create a case in the initial status with its first history entry."""
        if isinstance(data, CaseCreateRequest):
            request = data
        else:
            try:
                request = CaseCreateRequest.model_validate(data)
            except PydanticValidationError as exc:
                raise WorkflowValidationError(
                    "Case data failed validation", errors=_pydantic_errors(exc)
                ) from exc
        if actor.role is ActorRole.CLIENT:
            if actor.profile_id is None:
                raise ForbiddenError("Client actor has no client profile")
            client_profile_id = actor.profile_id
            notes = "Case submitted by client"
        elif actor.role in (ActorRole.ADMIN, ActorRole.SYSTEM):
            if request.client_profile_id is None:
                raise WorkflowValidationError(
                    "client_profile_id is required when submitting on behalf of a client",
                    errors={"client_profile_id": "required"},
                )
            client_profile_id = request.client_profile_id
            notes = f"Case submitted on behalf of client by {actor.role.value}"
        else:
            raise ForbiddenError("Only clients can create cases")

        with self._write_scope(None) as session:
            case = Case(
                case_number=self._new_case_number(session),
                client_profile_id=client_profile_id,
                procedure_category=request.procedure_category,
                guide_type=request.guide_type,
                required_service=request.required_service,
                patient_ref=request.patient_ref,
                implant_system=request.implant_system,
                teeth_numbers=request.teeth_numbers,
                clinical_notes=request.clinical_notes,
                special_instructions=request.special_instructions,
                delivery_method=request.delivery_method,
                delivery_address_id=request.delivery_address_id,
                pickup_branch_id=request.pickup_branch_id,
                status=INITIAL_STATUS.value,
                submitted_at=datetime.now(UTC),
            )
            session.add(case)
            session.flush()
            entry = self._append_history(session, case, None, actor, ENTRY_SUBMISSION, notes)
            session.flush()
            response = CaseResponse.model_validate(case)
            correlation_id = entry.correlation_id
        logger.info("Case created case_id=%s case_number=%s", response.id, response.case_number)
        publish_safely(
            self.dispatcher,
            CaseStatusEvent(
                case_id=response.id,
                case_number=response.case_number,
                from_status=None,
                to_status=INITIAL_STATUS.value,
                actor_role=actor.role.value,
                entry_type=ENTRY_SUBMISSION,
                correlation_id=correlation_id,
            ),
        )
        return response

    def request_transition(
        self,
        case_id: int,
        target_status: str | CaseStatus,
        actor: Actor,
        notes: str | None = None,
        expected_version: int | None = None,
    ) -> TransitionResponse:
        """Move a case along a table edge the actor's role may trigger.

        Raises WorkflowValidationError, CaseNotFoundError, IllegalTransitionError,
        ForbiddenError or ConflictError; nothing is written unless all checks pass.
        """
        target = _parse_target(target_status)

        def check(case: Case) -> None:
            current = case.status
            if not self.policy.has_edge(current, target):
                allowed = [s.value for s in self.policy.targets_for(current, actor.role)]
                logger.info(
                    "Illegal transition case_id=%s %s -> %s by %s",
                    case_id,
                    current,
                    target.value,
                    actor.role.value,
                )
                raise IllegalTransitionError(current, target.value, allowed)
            if actor.role not in self.policy.roles_for(current, target):
                logger.info(
                    "Forbidden transition case_id=%s %s -> %s by %s",
                    case_id,
                    current,
                    target.value,
                    actor.role.value,
                )
                raise ForbiddenError(
                    f"Role {actor.role.value} may not move a case from {current} to {target.value}"
                )

        result = self._commit_change(
            case_id, target, actor, notes, ENTRY_TRANSITION, check, expected_version
        )
        logger.info(
            "Case status updated case_id=%s %s -> %s by %s",
            case_id,
            result.history_entry.from_status,
            target.value,
            actor.role.value,
        )
        return result

    def override_status(
        self, case_id: int, target_status: str | CaseStatus, actor: Actor, reason: str
    ) -> TransitionResponse:
        """Admin-only jump from any non-terminal status to any other status; reason required."""
        target = _parse_target(target_status)
        reason = (reason or "").strip()
        if not reason:
            raise WorkflowValidationError(
                "Reason is required for status override", errors={"reason": "required"}
            )
        def check(case: Case) -> None:
            if actor.role is not ActorRole.ADMIN:
                raise ForbiddenError("Only admins can override case status")
            current = case.status
            if is_terminal(current):
                raise IllegalTransitionError(current, target.value, [])
            if current == target.value:
                allowed = [s.value for s in CaseStatus if s.value != current]
                raise IllegalTransitionError(current, target.value, allowed)

        result = self._commit_change(case_id, target, actor, reason, ENTRY_OVERRIDE, check)
        logger.warning(
            "Case status overridden by admin case_id=%s %s -> %s actor=%s",
            case_id,
            result.history_entry.from_status,
            target.value,
            actor.actor_id,
        )
        return result

    def get_allowed_transitions(self, case_id: int, actor: Actor) -> list[str]:
        """Statuses the actor could move the case to right now, in table order."""
        with self._session_scope() as session:
            case = self._load_case(session, case_id)
            self._check_access(case, actor)
            return [s.value for s in self.policy.targets_for(case.status, actor.role)]

    def get_history(self, case_id: int, actor: Actor | None = None) -> list[HistoryEntryResponse]:
        """History entries for the case, oldest first."""
        with self._session_scope() as session:
            case = self._load_case(session, case_id)
            self._check_access(case, actor)
            rows = (
                session.execute(
                    select(CaseStatusHistory)
                    .where(CaseStatusHistory.case_id == case_id)
                    .order_by(CaseStatusHistory.seq)
                )
                .scalars()
                .all()
            )
            return [HistoryEntryResponse.model_validate(r) for r in rows]

    def get_case(self, case_id: int, actor: Actor | None = None) -> CaseResponse:
        with self._session_scope() as session:
            case = self._load_case(session, case_id)
            self._check_access(case, actor)
            return CaseResponse.model_validate(case)

    def list_cases(
        self,
        actor: Actor,
        status: str | None = None,
        client_profile_id: int | None = None,
        limit: int = 100,
    ) -> list[CaseResponse]:
        """List cases newest first. Clients only ever see their own."""
        if status is not None:
            _parse_target(status)
        with self._session_scope() as session:
            stmt = select(Case).order_by(Case.created_at.desc(), Case.id.desc()).limit(limit)
            if actor.is_client:
                stmt = stmt.where(Case.client_profile_id == actor.profile_id)
            elif client_profile_id is not None:
                stmt = stmt.where(Case.client_profile_id == client_profile_id)
            if status is not None:
                stmt = stmt.where(Case.status == status)
            return [CaseResponse.model_validate(c) for c in session.execute(stmt).scalars().all()]

    def add_comment(self, case_id: int, actor: Actor, body: CommentRequest) -> CommentResponse:
        if body.is_internal and actor.is_client:
            raise ForbiddenError("Clients cannot post internal comments")
        with self._session_scope() as session:
            case = self._load_case(session, case_id)
            self._check_access(case, actor)
            comment = CaseComment(
                case_id=case_id,
                comment=body.comment,
                author_role=actor.role.value,
                author_id=actor.actor_id,
                is_internal=body.is_internal,
                correlation_id=get_correlation_id(),
            )
            session.add(comment)
            session.flush()
            return CommentResponse.model_validate(comment)

    def list_comments(self, case_id: int, actor: Actor) -> list[CommentResponse]:
        with self._session_scope() as session:
            case = self._load_case(session, case_id)
            self._check_access(case, actor)
            stmt = select(CaseComment).where(CaseComment.case_id == case_id).order_by(CaseComment.id)
            if actor.is_client:
                stmt = stmt.where(CaseComment.is_internal.is_(False))
            return [CommentResponse.model_validate(c) for c in session.execute(stmt).scalars()]

    def add_attachment(
        self, case_id: int, actor: Actor, body: AttachmentRequest
    ) -> AttachmentResponse:
        """Record uploaded-file metadata against the case."""
        with self._session_scope() as session:
            case = self._load_case(session, case_id)
            self._check_access(case, actor)
            attachment = CaseAttachment(
                case_id=case_id,
                file_name=body.file_name,
                file_type=body.file_type,
                storage_key=body.storage_key,
                metadata_json=body.metadata_json,
                uploaded_by=actor.actor_id,
            )
            session.add(attachment)
            session.flush()
            return AttachmentResponse.model_validate(attachment)


def build_case_engine(config: dict[str, Any], dispatcher: NotificationDispatcher | None = None):
    """Construct the engine for a resolved config: policy loaded once, dispatcher wired."""
    from guide_orders.case_lifecycle import load_policy
    from guide_orders.notifications import (
        BackgroundNotificationDispatcher,
        LoggingNotificationDispatcher,
    )

    workflow = config.get("workflow") or {}
    inner = dispatcher or LoggingNotificationDispatcher()
    if workflow.get("async_notifications"):
        inner = BackgroundNotificationDispatcher(inner)
    return CaseStatusEngine(
        policy=load_policy(config),
        dispatcher=inner,
        case_number_prefix=(config.get("cases") or {}).get("number_prefix", "CASE"),
    )
