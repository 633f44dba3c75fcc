from datetime import date, datetime

from wchic.services.podio.canonical import build_canonical, build_title, podio_date
from wchic.services.podio.translator import translate_fields

TODAY = date(2025, 1, 10)


def _row(**overrides):
    row = {
        "id": 42,
        "external_id": "wchic:wa:+5519999998888:2025-10-05",
        "phone_e164": "+5519999998888",
        "status": "routed",
        "cidade": "Campinas",
        "estado": "SP",
        "ibge_code": "3509502",
        "event_start_date": date(2025, 10, 5),
        "event_end_date": None,
        "perfil_evento": "Casamento",
        "pessoas_estimadas": "150",
        "decisor": None,
    }
    row.update(overrides)
    return row


def test_podio_date():
    assert podio_date(date(2025, 10, 5)) == {"start": "2025-10-05 00:00:00"}
    assert podio_date(datetime(2025, 10, 5, 14, 0)) == {"start": "2025-10-05 00:00:00"}
    assert podio_date("2025-10-05T14:00:00Z") == {"start": "2025-10-05 00:00:00"}


def test_build_title():
    assert build_title(_row()) == "Lead WA +5519999998888 — Campinas (2025-10-05)"
    assert build_title(_row(cidade=None, event_start_date=None)) == "Lead WA +5519999998888"
    assert build_title({}) == "Lead WA sem-telefone"


def test_franchise_lead_carries_routing_fields(registry):
    canonical = build_canonical(_row(), "campinas", registry, today=TODAY)
    fields = canonical.fields

    assert canonical.external_id == "wchic:wa:+5519999998888:2025-10-05"
    assert fields["status"] == "Novo"
    assert fields["area-da-franquia"] == "Franquia Campinas"
    assert fields["encaminhado"] == "Sim"
    assert fields["interesse"] == "Evento"
    assert fields["origem-do-contato"] == "WhatsApp"
    assert fields["data-do-contato"] == {"start": "2025-01-10 00:00:00"}


def test_aliases_written_for_every_workspace_key(registry):
    fields = build_canonical(_row(), "campinas", registry, today=TODAY).fields

    assert fields["cidade"] == fields["cidade-do-evento"] == "Campinas"
    assert fields["estado"] == fields["categoria"] == "São Paulo"
    assert fields["codigo-ibge-2"] == fields["codigo-ibge"] == "3509502"
    assert fields["perfil-do-evento-2"] == fields["4-perfil-do-evento-7-dias"] == "Casamento"
    assert fields["data-do-evento"] == {"start": "2025-10-05 00:00:00"}
    assert fields["data-do-1o-contato"] == {"start": "2025-01-10 00:00:00"}
    assert fields["publico-do-evento-qtde-pessoas"] == "150"
    assert "decisor" not in fields


def test_head_office_lead_has_no_area(registry):
    fields = build_canonical(_row(), "franqueadora", registry, today=TODAY).fields
    assert "area-da-franquia" not in fields
    assert "encaminhado" not in fields


def test_status_is_always_created_as_new(registry):
    """Later moves travel through push_status; the canonical record never carries them."""
    for status in ("routed", "quoted", "closed", "bogus", None):
        fields = build_canonical(_row(status=status), "campinas", registry, today=TODAY).fields
        assert fields["status"] == "Novo"


def test_decision_maker(registry):
    assert build_canonical(_row(decisor=True), "campinas", registry, today=TODAY).fields["decisor"] == "Sim"
    assert build_canonical(_row(decisor=False), "campinas", registry, today=TODAY).fields["decisor"] == "Não"


def test_campinas_scenario(registry):
    """A routed Campinas lead lands in both apps with resolved option ids."""
    canonical = build_canonical(_row(), "campinas", registry, today=TODAY)

    head_office = translate_fields(registry.head_office, canonical)
    assert head_office.fields["status"] == 1
    assert head_office.fields["area-da-franquia"] == 1
    assert head_office.fields["encaminhado"] == 1
    assert head_office.fields["perfil-do-evento-2"] == 1
    assert head_office.fields["codigo-ibge-2"] == "3509502"
    assert head_office.fields["title"] == "Lead WA +5519999998888 — Campinas (2025-10-05)"

    campinas = translate_fields(registry.get("campinas"), canonical)
    assert campinas.fields["nome-do-cliente"] == "Lead WA +5519999998888 — Campinas (2025-10-05)"
    assert campinas.fields["categoria"] == 1
    assert campinas.fields["4-perfil-do-evento-7-dias"] == 11
    assert campinas.fields["cidade-do-evento"] == "Campinas"
    assert campinas.fields["codigo-ibge"] == "3509502"
    assert "status-da-prospeccao" not in campinas.fields
    assert "area-da-franquia" in campinas.dropped_keys()
