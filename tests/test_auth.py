"""Tests for API key parsing and actor binding."""

import pytest
from fastapi import HTTPException
from starlette.requests import Request

from guide_orders.auth import KeyGrant, parse_api_keys_env, require_actor
from guide_orders.case_lifecycle import ActorRole


def _request(headers: dict[str, str]) -> Request:
    raw = [(k.lower().encode(), v.encode()) for k, v in headers.items()]
    return Request({"type": "http", "headers": raw})


def test_parse_keys_with_roles_and_profiles(monkeypatch) -> None:
    monkeypatch.setenv(
        "GUIDE_API_KEYS", "clinic-1:k1:client:1, designer-1:k2:designer ,ops:k3, bad:k4:janitor"
    )
    grants = parse_api_keys_env()
    assert grants["k1"] == KeyGrant("clinic-1", ActorRole.CLIENT, 1)
    assert grants["k2"] == KeyGrant("designer-1", ActorRole.DESIGNER, None)
    # role defaults to admin
    assert grants["k3"].role is ActorRole.ADMIN
    assert "k4" not in grants


def test_default_dev_key_when_unset(monkeypatch) -> None:
    monkeypatch.delenv("GUIDE_API_KEYS", raising=False)
    assert parse_api_keys_env() == {"dev_key": KeyGrant("dev", ActorRole.ADMIN)}


def test_require_actor(monkeypatch) -> None:
    monkeypatch.setenv("GUIDE_API_KEYS", "clinic-1:k1:client:1")
    actor = require_actor(_request({"X-API-Key": "k1"}))
    assert actor.role is ActorRole.CLIENT
    assert actor.actor_id == "clinic-1"
    assert actor.profile_id == 1
    assert actor.is_client


@pytest.mark.parametrize("headers,detail", [({}, "Missing X-API-Key"), ({"X-API-Key": "nope"}, "Invalid API key")])
def test_require_actor_rejects(monkeypatch, headers, detail) -> None:
    monkeypatch.setenv("GUIDE_API_KEYS", "clinic-1:k1:client:1")
    with pytest.raises(HTTPException) as exc_info:
        require_actor(_request(headers))
    assert exc_info.value.status_code == 401
    assert exc_info.value.detail == detail
