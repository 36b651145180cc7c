"""FastAPI app: case workflow endpoints, health and policy introspection."""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from guide_orders import ENGINE_VERSION, POLICY_VERSION, __version__
from guide_orders.audit_context import set_audit_context
from guide_orders.cases_api import cases_router
from guide_orders.config import get_config, get_config_hash
from guide_orders.db import init_db
from guide_orders.engine import build_case_engine
from guide_orders.errors import CaseWorkflowError
from guide_orders.logging_config import setup_logging

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    "NotFound": 404,
    "IllegalTransition": 400,
    "Forbidden": 403,
    "Conflict": 409,
    "ValidationError": 422,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = get_config()
    setup_logging(config.get("app", {}).get("log_level", "INFO"))
    db = config.get("database", {})
    init_db(
        db.get("url", "sqlite:///./data/guide_orders.db"),
        echo=db.get("echo", False),
        lock_timeout_seconds=float(db.get("lock_timeout_seconds", 5)),
    )
    app.state.config_hash = get_config_hash(config)
    app.state.case_engine = build_case_engine(config)
    yield
    shutdown = getattr(app.state.case_engine.dispatcher, "shutdown", None)
    if shutdown is not None:
        shutdown(wait=True)


app = FastAPI(title="Surgical Guide Orders API", version=__version__, lifespan=lifespan)


class AuditContextMiddleware(BaseHTTPMiddleware):
    """Set correlation_id per request; echo X-Correlation-ID in response.
    Actor is set by require_actor from the API key identity; unauthenticated routes stay anonymous.
    """

    async def dispatch(self, request: Request, call_next: Any) -> Any:
        correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
        set_audit_context(correlation_id, "anonymous")
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = correlation_id
        return response


app.add_middleware(AuditContextMiddleware)

app.include_router(cases_router)


@app.exception_handler(CaseWorkflowError)
async def workflow_error_handler(request: Request, exc: CaseWorkflowError) -> JSONResponse:
    return JSONResponse(status_code=ERROR_STATUS_CODES.get(exc.kind, 400), content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = {
        ".".join(str(p) for p in err.get("loc", ()) if p != "body") or "body": str(err.get("msg"))
        for err in exc.errors()
    }
    return JSONResponse(
        status_code=422,
        content={"kind": "ValidationError", "message": "Request failed validation", "errors": errors},
    )


@app.get("/health")
def health(request: Request) -> dict[str, Any]:
    """Liveness and version; db_status indicates DB connectivity."""
    from sqlalchemy import text

    from guide_orders.db import get_engine

    db_status = "unknown"
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        db_status = "ok"
    except Exception:
        logger.exception("Health check database query failed")
        db_status = "error"
    case_engine = getattr(request.app.state, "case_engine", None)
    return {
        "status": "ok",
        "engine_version": ENGINE_VERSION,
        "policy_version": POLICY_VERSION,
        "policy_fingerprint": case_engine.policy.fingerprint() if case_engine else None,
        "config_hash": getattr(request.app.state, "config_hash", None),
        "db_status": db_status,
    }


@app.get("/workflow/policy")
def workflow_policy(request: Request) -> dict[str, Any]:
    """The active transition table: source status -> [{target, roles}]."""
    policy = request.app.state.case_engine.policy
    return {"name": policy.name, "fingerprint": policy.fingerprint(), "transitions": policy.to_dict()}
