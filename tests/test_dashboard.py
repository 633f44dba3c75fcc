import asyncio

from wchic.services.dashboard import UNROUTED_LABEL, get_stats, list_dashboard_leads
from tests.fakes import FakeSession


def test_list_dashboard_leads_paginates():
    session = FakeSession({
        "COUNT(*)::int AS total FROM": [{"total": 51}],
        "ORDER BY l.created_at DESC": [{"id": 7, "franchise_name": UNROUTED_LABEL}],
    })

    page = asyncio.run(list_dashboard_leads(session, status="routed", q="campinas", page=3, limit=25))

    assert (page["total"], page["page"], page["total_pages"]) == (51, 3, 3)
    params = session.statements("ORDER BY l.created_at DESC")[0]
    assert (params["offset"], params["status"], params["q"]) == (50, "routed", "%campinas%")


def test_list_dashboard_leads_clamps_limit():
    session = FakeSession({"COUNT(*)::int AS total FROM": [{"total": 0}]})

    page = asyncio.run(list_dashboard_leads(session, page=0, limit=500))

    assert (page["page"], page["limit"], page["total_pages"]) == (1, 100, 0)
    assert "WHERE" not in session.executed[0][0]


def test_stats_groups_unrouted_leads():
    session = FakeSession({
        "AS total_leads": [{"total_leads": 3, "qualificados": 1}],
        "GROUP BY f.id": [{"franchise_name": UNROUTED_LABEL, "franchise_id": None, "total": 2, "qualificados": 0}],
    })

    stats = asyncio.run(get_stats(session))

    assert stats["totals"]["total_leads"] == 3
    assert stats["by_franchise"][0]["franchise_name"] == UNROUTED_LABEL
    assert session.statements("GROUP BY f.id") == [{"unrouted": UNROUTED_LABEL}]
    assert stats["daily"] == []
