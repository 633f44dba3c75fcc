import asyncio
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest

from wchic.core.config import settings
from wchic.services.alerts import LEAD_NOT_ROUTED, PODIO_SYNC_ERROR
from wchic.services.leads import LeadNotFoundError
from wchic.services.podio import sync as sync_module
from wchic.services.podio.client import PodioAPIError
from wchic.services.podio.sync import (
    NOT_ROUTED,
    PODIO_DISABLED,
    UNKNOWN_WORKSPACE,
    PodioSyncResult,
    sync_lead_safely,
    sync_lead_to_podio,
)
from tests.fakes import FakeSession

CAMPINAS_APP_ID = 10777978


def _lead_row(**overrides):
    row = {
        "id": 7,
        "external_id": "wchic:wa:+5519999998888:2025-10-05",
        "phone_e164": "+5519999998888",
        "status": "routed",
        "franchise_id": 3,
        "created_at": datetime(2025, 1, 10, 12, 0, tzinfo=timezone.utc),
        "cidade": "Campinas",
        "estado": "São Paulo",
        "ibge_code": "3509502",
        "event_start_date": date(2025, 10, 5),
        "event_end_date": None,
        "perfil_evento": "Casamento",
        "pessoas_estimadas": "150",
        "decisor": None,
        "franchise_name": "WChic Campinas",
        "podio_app_id": CAMPINAS_APP_ID,
    }
    row.update(overrides)
    return row


def _session(row):
    return FakeSession({"le.decisor": [row] if row else []})


@pytest.fixture(autouse=True)
def podio_credentials(monkeypatch):
    monkeypatch.setattr(settings, "podio_client_id", "client-id")
    monkeypatch.setattr(settings, "podio_client_secret", "client-secret")


def _sync(session, podio, registry):
    return asyncio.run(
        sync_lead_to_podio(session, 7, client=podio, registry=registry, today=date(2025, 1, 10))
    )


def test_disabled_without_credentials(monkeypatch, podio, registry):
    monkeypatch.setattr(settings, "podio_client_secret", None)
    session = _session(_lead_row())

    result = _sync(session, podio, registry)

    assert result == PodioSyncResult(ok=False, reason=PODIO_DISABLED)
    assert session.executed == []
    assert podio.calls == []


def test_unrouted_lead_is_a_noop(podio, registry):
    session = _session(_lead_row(franchise_id=None, podio_app_id=None))

    result = _sync(session, podio, registry)

    assert not result.ok
    assert result.reason == NOT_ROUTED
    assert podio.calls == []
    assert session.commits == 0


def test_unknown_workspace(podio, registry):
    session = _session(_lead_row(podio_app_id=1))

    result = _sync(session, podio, registry)

    assert result.reason == UNKNOWN_WORKSPACE
    assert "podio_app_id=1" in result.detail
    assert podio.calls == []


def test_missing_lead_raises(podio, registry):
    with pytest.raises(LeadNotFoundError):
        _sync(_session(None), podio, registry)


def test_dual_write_head_office_first(podio, registry):
    session = _session(_lead_row())

    result = _sync(session, podio, registry)

    assert result.ok
    assert [r.workspace_key for r in result.results] == ["franqueadora", "campinas"]
    assert [c[1] for c in podio.calls if c[0] == "create"] == ["franqueadora", "campinas"]

    head_office_item = session.statements("podio_item_id_franqueadora = :item_id")
    franchise_item = session.statements("podio_item_id_franquia = :item_id")
    assert head_office_item == [{"item_id": result.results[0].item_id, "lead_id": 7}]
    assert franchise_item == [{"item_id": result.results[1].item_id, "lead_id": 7}]
    assert session.commits == 2


def test_follow_up_jobs_scheduled_after_franchise_write(podio, registry):
    session = _session(_lead_row())

    _sync(session, podio, registry)

    jobs = session.statements("INSERT INTO jobs")
    assert sorted(j["type"] for j in jobs) == ["POST_EVENTO", "SLA_24H", "SLA_7D"]


def test_resync_updates_existing_items(podio, registry):
    first = _sync(_session(_lead_row()), podio, registry)
    second = _sync(_session(_lead_row()), podio, registry)

    assert [r.action for r in second.results] == ["updated", "updated"]
    assert [r.item_id for r in second.results] == [r.item_id for r in first.results]


def test_franchise_failure_keeps_head_office_item(podio, registry):
    podio.fail_on[("create_item", "campinas")] = PodioAPIError("campinas down", http_status=503)
    session = _session(_lead_row())

    with pytest.raises(PodioAPIError):
        _sync(session, podio, registry)

    assert len(session.statements("podio_item_id_franqueadora = :item_id")) == 1
    assert session.statements("podio_item_id_franquia = :item_id") == []
    assert session.commits == 1


def test_head_office_failure_blocks_franchise_write(podio, registry):
    podio.fail_on[("create_item", "franqueadora")] = PodioAPIError("head office down", http_status=503)
    session = _session(_lead_row())

    with pytest.raises(PodioAPIError):
        _sync(session, podio, registry)

    assert [call for call in podio.calls if call[1] == "campinas"] == []
    assert session.statements("podio_item_id_franqueadora = :item_id") == []
    assert session.statements("podio_item_id_franquia = :item_id") == []


def test_head_office_routed_lead_writes_once(podio, registry):
    session = _session(_lead_row(podio_app_id=registry.head_office.app_id))

    result = _sync(session, podio, registry)

    assert [r.workspace_key for r in result.results] == ["franqueadora"]
    assert session.statements("INSERT INTO jobs") == []


def test_result_to_dict(podio, registry):
    result = _sync(_session(_lead_row()), podio, registry)
    body = result.to_dict()

    assert body["ok"] is True
    assert body["action"] == "synced"
    assert body["results"][1]["workspace"] == "campinas"
    assert "area-da-franquia" in body["results"][1]["dropped"]


def _scope(session):
    @asynccontextmanager
    async def scope():
        yield session
    return scope


def test_sync_lead_safely_alerts_on_failure():
    alert = AsyncMock()
    with patch.object(sync_module, "session_scope", _scope(FakeSession())), \
            patch.object(sync_module, "sync_lead_to_podio", AsyncMock(side_effect=PodioAPIError("down"))), \
            patch.object(sync_module, "alert", alert):
        result = asyncio.run(sync_lead_safely(7))

    assert result is None
    assert alert.await_args.args[0] == PODIO_SYNC_ERROR
    assert alert.await_args.args[2]["lead_id"] == 7


def test_sync_lead_safely_alerts_when_not_routed():
    alert = AsyncMock()
    not_routed = PodioSyncResult(ok=False, reason=NOT_ROUTED)
    with patch.object(sync_module, "session_scope", _scope(FakeSession())), \
            patch.object(sync_module, "sync_lead_to_podio", AsyncMock(return_value=not_routed)), \
            patch.object(sync_module, "alert", alert):
        result = asyncio.run(sync_lead_safely(7))

    assert result is not_routed
    assert alert.await_args.args[0] == LEAD_NOT_ROUTED
