import hashlib
import hmac
import json
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from wchic.core.config import settings
from wchic.core.exceptions import BaseAPIException
from wchic.db.session import get_session
from wchic.main import api_exception_handler, app as wchic_app
from wchic.routes import auth, franchises, intake, leads, webhooks
from wchic.services.auth import ROLE_ADMIN, ROLE_DASHBOARD, create_access_token
from wchic.services.ibge import Municipality
from wchic.services.podio.client import PodioAPIError
from wchic.services.podio.status import StatusPushResult
from tests.fakes import FakeSession

CAMPINAS = Municipality(ibge_code="3509502", cidade="Campinas", estado="São Paulo", uf="SP")
ROUTING = {"franchise_id": 3, "franchise_name": "WChic Campinas", "podio_app_id": 10777978}


def _lead_row(created=True):
    return {
        "id": 7,
        "external_id": "wchic:wa:+5519999998888:2025-10-05",
        "phone_e164": "+5519999998888",
        "status": "new",
        "franchise_id": None,
        "created": created,
    }


def _build_app(session):
    app = FastAPI()
    app.add_exception_handler(BaseAPIException, api_exception_handler)
    for module in (auth, franchises, intake, leads, webhooks):
        app.include_router(module.router)

    async def _session():
        yield session

    app.dependency_overrides[get_session] = _session
    return app


def _bearer(role):
    return {"Authorization": f"Bearer {create_access_token('tester', role)}"}


# -- intake ----------------------------------------------------------------


def test_intake_routes_via_ibge_trigger():
    session = FakeSession({
        "INSERT INTO leads": [_lead_row()],
        "FROM leads l JOIN franchises": [ROUTING],
    })
    sync = AsyncMock()
    with patch.object(intake, "find_ibge_code", AsyncMock(return_value=CAMPINAS)), \
            patch.object(intake, "sync_lead_safely", sync):
        response = TestClient(_build_app(session)).post(
            "/gateway/intake",
            json={"telefone": "(19) 99999-8888", "cidade": "campinas", "estado": "SP",
                  "mensagem": "Quero um orçamento", "event_date": "2025-10-05"},
        )

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["lead_id"] == 7
    assert body["ibge_code"] == "3509502"
    assert body["routed_to"] == ROUTING

    event = session.statements("INSERT INTO lead_events")[0]
    assert (event["cidade"], event["estado"]) == ("Campinas", "São Paulo")
    assert session.statements("INSERT INTO lead_messages")[0]["stage"] == "intake"
    assert session.statements("franchise_territories") == []
    assert session.commits == 1
    sync.assert_awaited_once_with(7)


def test_intake_falls_back_to_territory_table():
    lookups = iter([[], [ROUTING]])
    session = FakeSession({
        "INSERT INTO leads": [_lead_row()],
        "FROM leads l JOIN franchises": lambda params: next(lookups),
        "franchise_territories": [{"id": 3, "franchise_name": "WChic Campinas", "podio_app_id": 10777978,
                                   "territory_status": "ativo"}],
    })
    with patch.object(intake, "find_ibge_code", AsyncMock(return_value=None)), \
            patch.object(intake, "sync_lead_safely", AsyncMock()):
        response = TestClient(_build_app(session)).post(
            "/gateway/intake", json={"telefone": "19999998888", "cidade": "Campinas", "estado": "SP"},
        )

    assert response.json()["routed_to"]["franchise_id"] == 3
    assert session.statements("territory_status = :territory_status") == [
        {"lead_id": 7, "franchise_id": 3, "territory_status": "ativo"}
    ]


def test_intake_unrouted_lead_is_not_synced():
    session = FakeSession({"INSERT INTO leads": [_lead_row()]})
    sync = AsyncMock()
    with patch.object(intake, "find_ibge_code", AsyncMock(return_value=None)), \
            patch.object(intake, "sync_lead_safely", sync):
        response = TestClient(_build_app(session)).post(
            "/gateway/intake", json={"telefone": "19999998888", "cidade": "Atlântida", "estado": "RS"},
        )

    assert response.status_code == 200
    assert response.json()["routed_to"] is None
    sync.assert_not_awaited()


@pytest.mark.parametrize(
    "payload, code",
    [
        ({"telefone": "abc-defg-hij", "cidade": "Campinas", "estado": "SP"}, "invalid_phone"),
        ({"telefone": "19999998888", "cidade": "Campinas", "estado": "SP", "event_date": "05/10/2025"},
         "invalid_event_date"),
    ],
)
def test_intake_rejects_bad_input(payload, code):
    session = FakeSession()
    response = TestClient(_build_app(session)).post("/gateway/intake", json=payload)

    assert response.status_code == 422
    assert response.json()["code"] == code
    assert session.executed == []


# -- WhatsApp webhook ------------------------------------------------------


def test_whatsapp_verify_echoes_challenge(monkeypatch):
    monkeypatch.setattr(settings, "whatsapp_verify_token", "verify-me")
    client = TestClient(_build_app(FakeSession()))

    ok = client.get("/webhook/whatsapp", params={"hub.mode": "subscribe", "hub.verify_token": "verify-me",
                                                 "hub.challenge": "1158201444"})
    denied = client.get("/webhook/whatsapp", params={"hub.mode": "subscribe", "hub.verify_token": "wrong",
                                                     "hub.challenge": "1158201444"})

    assert (ok.status_code, ok.text) == (200, "1158201444")
    assert denied.status_code == 403


def test_whatsapp_inbound_requires_valid_signature(monkeypatch):
    monkeypatch.setattr(settings, "whatsapp_app_secret", "s3cret")
    body = json.dumps({"entry": []}).encode()
    client = TestClient(_build_app(FakeSession()))

    response = client.post("/webhook/whatsapp", content=body, headers={"X-Hub-Signature-256": "sha256=bad"})

    assert response.status_code == 401
    assert response.json()["code"] == "invalid_signature"


def test_whatsapp_inbound_processes_text_in_background(monkeypatch):
    monkeypatch.setattr(settings, "whatsapp_app_secret", "s3cret")
    payload = {"entry": [{"changes": [{"value": {"messages": [
        {"from": "5519999998888", "id": "wamid.1", "type": "text", "text": {"body": "Oi"}},
    ]}}]}]}
    body = json.dumps(payload).encode()
    signature = "sha256=" + hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()
    handle = AsyncMock()

    with patch.object(webhooks, "handle_incoming_message", handle):
        response = TestClient(_build_app(FakeSession())).post(
            "/webhook/whatsapp", content=body, headers={"X-Hub-Signature-256": signature}
        )

    assert response.json() == {"ok": True}
    assert handle.await_args.args[0].message_id == "wamid.1"


# -- Podio webhook ---------------------------------------------------------


def test_podio_hook_verify(podio):
    with patch.object(webhooks, "get_podio_client", AsyncMock(return_value=podio)):
        response = TestClient(_build_app(FakeSession())).post(
            "/webhook/podio?workspace=campinas",
            data={"type": "hook.verify", "hook_id": "42", "code": "abc123"},
        )

    assert response.status_code == 200
    assert podio.calls == [("validate_hook", "campinas", 42, "abc123")]


def test_podio_hook_verify_requires_code(podio):
    response = TestClient(_build_app(FakeSession())).post("/webhook/podio", data={"type": "hook.verify"})
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "invalid_hook_verify"


def test_podio_hook_verify_failure_surfaces(podio):
    podio.fail_on["validate_hook"] = PodioAPIError("bad code", http_status=400)
    with patch.object(webhooks, "get_podio_client", AsyncMock(return_value=podio)):
        response = TestClient(_build_app(FakeSession())).post(
            "/webhook/podio", data={"type": "hook.verify", "hook_id": "42", "code": "nope"},
        )

    assert response.status_code == 502
    assert podio.calls == [("validate_hook", "franqueadora", 42, "nope")]


def test_podio_item_update_acknowledged_then_reconciled():
    process = AsyncMock()
    with patch.object(webhooks, "process_podio_hook", process):
        response = TestClient(_build_app(FakeSession())).post(
            "/webhook/podio?workspace=rio_bh",
            data={"type": "item.update", "item_id": "222", "item_revision_id": "3"},
        )

    assert response.json() == {"ok": True}
    payload, hint = process.await_args.args
    assert payload["item_id"] == "222"
    assert hint == "rio_bh"


# -- admin API -------------------------------------------------------------


def test_leads_require_token():
    response = TestClient(_build_app(FakeSession())).get("/leads")
    assert response.status_code == 401
    assert response.json()["code"] == "missing_token"


def test_leads_forbidden_for_dashboard_role():
    response = TestClient(_build_app(FakeSession())).get("/leads", headers=_bearer(ROLE_DASHBOARD))
    assert response.status_code == 403


def test_expired_token_rejected():
    token = create_access_token("tester", ROLE_ADMIN, expires_delta=timedelta(minutes=-5))
    response = TestClient(_build_app(FakeSession())).get("/leads", headers={"Authorization": f"Bearer {token}"})
    assert response.json()["code"] == "invalid_token"


def test_list_leads():
    session = FakeSession({"COUNT(*)": [{"total": 1}], "ORDER BY l.created_at DESC": [
        {"id": 7, "external_id": "wchic:wa:+5519999998888", "phone_e164": "+5519999998888", "status": "routed",
         "franchise_id": 3, "franchise_name": "WChic Campinas", "cidade": "Campinas"},
    ]})

    response = TestClient(_build_app(session)).get(
        "/leads", params={"cidade": "Campinas", "limit": 10}, headers=_bearer(ROLE_ADMIN)
    )

    assert response.status_code == 200
    body = response.json()
    assert (body["total"], body["limit"]) == (1, 10)
    assert body["items"][0]["franchise_name"] == "WChic Campinas"
    assert session.statements("COUNT(*)")[0]["cidade"] == "Campinas"


def test_unknown_lead_is_404():
    response = TestClient(_build_app(FakeSession())).get("/leads/99", headers=_bearer(ROLE_ADMIN))
    assert response.status_code == 404


def test_status_update_reports_each_workspace():
    results = [
        StatusPushResult(workspace_key="franqueadora", pushed=False, reason="unmapped_status", item_id=111),
        StatusPushResult(workspace_key="campinas", pushed=True, item_id=222),
    ]
    change = AsyncMock(return_value=results)
    with patch.object(leads, "change_lead_status", change):
        response = TestClient(_build_app(FakeSession())).patch(
            "/leads/7/status", json={"status": "quoted"}, headers=_bearer(ROLE_ADMIN)
        )

    assert response.status_code == 200, response.text
    assert response.json()["podio"][1] == {"workspace_key": "campinas", "pushed": True, "reason": None, "item_id": 222}
    assert change.await_args.args[1:] == (7, "quoted")


def test_status_update_rejects_unknown_status():
    response = TestClient(_build_app(FakeSession())).patch(
        "/leads/7/status", json={"status": "archived"}, headers=_bearer(ROLE_ADMIN)
    )
    assert response.status_code == 422


def test_franchise_with_unknown_podio_app_rejected():
    session = FakeSession()
    response = TestClient(_build_app(session)).post(
        "/franchises", json={"franchise_name": "WChic Sorocaba", "podio_app_id": 1}, headers=_bearer(ROLE_ADMIN)
    )

    assert response.status_code == 422
    assert response.json()["code"] == "unknown_podio_app"
    assert session.executed == []


def test_admin_login_without_configured_password(monkeypatch):
    monkeypatch.setattr(settings, "admin_password_hash", None)
    response = TestClient(_build_app(FakeSession())).post(
        "/auth/login", json={"username": "admin", "password": "whatever"}
    )
    assert response.status_code == 503
    assert response.json()["code"] == "auth_not_configured"


# -- application -----------------------------------------------------------


def test_root_echoes_request_id():
    response = TestClient(wchic_app).get("/", headers={"X-Request-ID": "req-123"})

    assert response.status_code == 200
    assert response.headers["X-Request-ID"] == "req-123"
    assert response.json()["name"] == "WChic API"


def test_request_id_from_traceparent():
    trace_id = "4bf92f3577b34da6a3ce929d0e0e4736"
    response = TestClient(wchic_app).get("/", headers={"traceparent": f"00-{trace_id}-00f067aa0ba902b7-01"})

    assert response.headers["X-Request-ID"] == trace_id
