"""Pytest fixtures: file-backed SQLite DB, engine with a recording dispatcher, sample actors."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

# Ensure all tests use SQLite; ignore DATABASE_URL from the environment.
os.environ.pop("DATABASE_URL", None)
os.environ.pop("GUIDE_DATABASE_URL", None)

from guide_orders.db import init_db
from guide_orders.engine import CaseStatusEngine
from helpers import CLIENT, STUDY_ONLY_CASE, RecordingDispatcher


@pytest.fixture
def config_path(tmp_path: Path) -> str:
    """Return path to a temporary config dir with default.yaml."""
    cfg_dir = tmp_path / "config"
    cfg_dir.mkdir()
    (cfg_dir / "default.yaml").write_text(
        f"""
app:
  log_level: INFO
database:
  url: "sqlite:///{tmp_path / 'cfg.db'}"
  echo: false
cases:
  number_prefix: SG
workflow:
  async_notifications: false
"""
    )
    return str(cfg_dir / "default.yaml")


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    url = f"sqlite:///{tmp_path / 'guide.db'}"
    init_db(url, echo=False, lock_timeout_seconds=2)
    return url


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def engine(db_url: str, dispatcher: RecordingDispatcher) -> CaseStatusEngine:
    return CaseStatusEngine(dispatcher=dispatcher)


@pytest.fixture
def submitted_case(engine: CaseStatusEngine) -> int:
    return engine.submit_case(CLIENT, STUDY_ONLY_CASE).id
