"""Typer CLI: init-db, submit-case, transition, override, allowed, history, verify-history, show-policy, serve-api."""

from __future__ import annotations

import json
import os
import uuid
from pathlib import Path

import typer
from sqlalchemy import select

from guide_orders.audit_context import set_audit_context
from guide_orders.case_lifecycle import load_policy
from guide_orders.config import get_config
from guide_orders.db import init_db, session_scope
from guide_orders.engine import CaseStatusEngine, build_case_engine
from guide_orders.errors import CaseWorkflowError
from guide_orders.history import check_status_consistency, verify_history_chain
from guide_orders.identity import Actor
from guide_orders.logging_config import setup_logging
from guide_orders.models import Case

app = typer.Typer(help="Surgical guide case workflow CLI")

ROLE_HELP = "Acting role: client | designer | admin | system"


def _ensure_db(config_path: str | None = None) -> dict:
    config = get_config(config_path)
    db = config.get("database", {})
    db_url = db.get("url", "sqlite:///./data/guide_orders.db")
    setup_logging(config.get("app", {}).get("log_level", "INFO"))
    init_db(
        db_url,
        echo=db.get("echo", False),
        lock_timeout_seconds=float(db.get("lock_timeout_seconds", 5)),
    )
    return config


def _engine(config_path: str | None) -> CaseStatusEngine:
    config = _ensure_db(config_path)
    set_audit_context(str(uuid.uuid4()), os.environ.get("GUIDE_ACTOR", "cli"))
    return build_case_engine(config)


def _actor(role: str, actor_id: str | None, profile_id: int | None) -> Actor:
    try:
        return Actor.of(role, actor_id or os.environ.get("GUIDE_ACTOR", "cli"), profile_id)
    except ValueError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1) from e


def _fail(err: CaseWorkflowError) -> None:
    typer.echo(json.dumps(err.to_dict()), err=True)
    raise typer.Exit(1)


@app.command("init-db")
def init_db_cmd(
    config: str | None = typer.Option(None, "--config", "-c", help="Config YAML path"),
) -> None:
    """Create tables (SQLite) or check connectivity (Postgres; use Alembic for schema)."""
    _ensure_db(config)
    typer.echo("Database ready.")


@app.command("submit-case")
def submit_case(
    path: str = typer.Argument(..., help="JSON file with the case intake fields"),
    role: str = typer.Option("client", "--role", help=ROLE_HELP),
    actor_id: str | None = typer.Option(None, "--actor-id"),
    profile_id: int | None = typer.Option(None, "--profile-id", help="Client profile id"),
    config: str | None = typer.Option(None, "--config", "-c", help="Config YAML path"),
) -> None:
    """Submit a new case from a JSON intake file."""
    p = Path(path)
    if not p.exists():
        typer.echo(f"File not found: {path}", err=True)
        raise typer.Exit(1)
    data = json.loads(p.read_text(encoding="utf-8"))
    engine = _engine(config)
    try:
        case = engine.submit_case(_actor(role, actor_id, profile_id), data)
    except CaseWorkflowError as e:
        _fail(e)
    typer.echo(f"Created case {case.id} ({case.case_number}) status={case.status}")


@app.command()
def transition(
    case_id: int = typer.Option(..., "--id", help="Case ID"),
    target: str = typer.Option(..., "--to", help="Target status"),
    role: str = typer.Option(..., "--role", help=ROLE_HELP),
    actor_id: str | None = typer.Option(None, "--actor-id"),
    profile_id: int | None = typer.Option(None, "--profile-id"),
    notes: str | None = typer.Option(None, "--notes"),
    config: str | None = typer.Option(None, "--config", "-c", help="Config YAML path"),
) -> None:
    """Request a normal workflow transition (audited)."""
    engine = _engine(config)
    try:
        result = engine.request_transition(
            case_id, target, _actor(role, actor_id, profile_id), notes=notes
        )
    except CaseWorkflowError as e:
        _fail(e)
    entry = result.history_entry
    typer.echo(f"Case {case_id}: {entry.from_status} -> {entry.to_status} (entry {entry.seq})")


@app.command()
def override(
    case_id: int = typer.Option(..., "--id", help="Case ID"),
    target: str = typer.Option(..., "--to", help="Target status"),
    reason: str = typer.Option(..., "--reason", help="Why the normal workflow is bypassed"),
    actor_id: str | None = typer.Option(None, "--actor-id"),
    config: str | None = typer.Option(None, "--config", "-c", help="Config YAML path"),
) -> None:
    """Admin override: move a non-terminal case to any status, with a reason."""
    engine = _engine(config)
    try:
        result = engine.override_status(case_id, target, _actor("admin", actor_id, None), reason)
    except CaseWorkflowError as e:
        _fail(e)
    entry = result.history_entry
    typer.echo(f"Case {case_id}: {entry.from_status} -> {entry.to_status} (override)")


@app.command()
def allowed(
    case_id: int = typer.Option(..., "--id", help="Case ID"),
    role: str = typer.Option(..., "--role", help=ROLE_HELP),
    profile_id: int | None = typer.Option(None, "--profile-id"),
    config: str | None = typer.Option(None, "--config", "-c", help="Config YAML path"),
) -> None:
    """List statuses the role may move the case to."""
    engine = _engine(config)
    try:
        statuses = engine.get_allowed_transitions(case_id, _actor(role, None, profile_id))
    except CaseWorkflowError as e:
        _fail(e)
    typer.echo(", ".join(statuses) if statuses else "(none)")


@app.command()
def history(
    case_id: int = typer.Option(..., "--id", help="Case ID"),
    config: str | None = typer.Option(None, "--config", "-c", help="Config YAML path"),
) -> None:
    """Print the status history of a case, oldest first."""
    engine = _engine(config)
    try:
        entries = engine.get_history(case_id)
    except CaseWorkflowError as e:
        _fail(e)
    for e in entries:
        typer.echo(
            f"{e.seq:>3} {e.created_at.isoformat()} {e.from_status or '-'} -> {e.to_status} "
            f"[{e.entry_type}] by {e.changed_by}" + (f": {e.notes}" if e.notes else "")
        )


@app.command("verify-history")
def verify_history(
    case_id: int | None = typer.Option(None, "--id", help="Case ID (default: all cases)"),
    config: str | None = typer.Option(None, "--config", "-c", help="Config YAML path"),
) -> None:
    """Check hash chains and that every case status matches its latest history entry."""
    _ensure_db(config)
    with session_scope() as session:
        problems = check_status_consistency(session, case_id)
        if case_id is not None:
            ids = [case_id]
        else:
            ids = list(session.execute(select(Case.id).order_by(Case.id)).scalars())
        for cid in ids:
            problems.extend(verify_history_chain(session, cid))
    if problems:
        for p in problems:
            typer.echo(f"case {p.case_id} seq {p.seq}: {p.problem}", err=True)
        raise typer.Exit(1)
    typer.echo(f"History OK for {len(ids)} case(s).")


@app.command("show-policy")
def show_policy(
    config: str | None = typer.Option(None, "--config", "-c", help="Config YAML path"),
) -> None:
    """Print the active transition table."""
    policy = load_policy(get_config(config))
    typer.echo(f"Policy {policy.name} ({policy.fingerprint()[:12]})")
    for source, edges in policy.to_dict().items():
        if not edges:
            typer.echo(f"  {source}: (no outgoing edges)")
            continue
        for edge in edges:
            typer.echo(f"  {source} -> {edge['target']} [{', '.join(edge['roles'])}]")


@app.command("serve-api")
def serve_api(
    config: str | None = typer.Option(None, "--config", "-c", help="Config YAML path"),
    host: str | None = typer.Option(None, "--host", "-h", help="Bind host"),
    port: int | None = typer.Option(None, "--port", "-p", help="Bind port"),
) -> None:
    """Start the FastAPI server."""
    if config:
        os.environ["GUIDE_CONFIG_PATH"] = config
    cfg = get_config(config)
    h = host or os.environ.get("GUIDE_API_HOST") or cfg.get("api", {}).get("host", "0.0.0.0")
    _pe = os.environ.get("GUIDE_API_PORT", "")
    p = (
        port
        if port is not None
        else (int(_pe) if _pe and _pe.isdigit() else None) or cfg.get("api", {}).get("port", 8000)
    )
    _ensure_db(config)
    import uvicorn

    uvicorn.run(
        "guide_orders.api:app",
        host=h,
        port=p,
        reload=False,
    )


if __name__ == "__main__":
    app()
