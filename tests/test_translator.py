from wchic.services.podio.canonical import CanonicalLead
from wchic.services.podio.translator import (
    UNKNOWN_OPTION,
    UNMAPPED_FIELD,
    UNSUPPORTED_VALUE,
    title_fallback,
    translate_fields,
)


def test_category_labels_resolve_to_option_ids(registry):
    campinas = registry.get("campinas")
    canonical = CanonicalLead(
        external_id="wchic:wa:+5519999998888",
        fields={"4-perfil-do-evento-7-dias": "Casamento", "categoria": "São Paulo"},
    )
    result = translate_fields(campinas, canonical)

    assert result.fields["4-perfil-do-evento-7-dias"] == 11
    assert result.fields["categoria"] == 1
    assert result.dropped == []


def test_translation_is_deterministic(registry):
    campinas = registry.get("campinas")
    canonical = CanonicalLead(
        external_id="wchic:wa:+5519999998888",
        fields={"4-perfil-do-evento-7-dias": "Formatura", "cidade-do-evento": "Campinas"},
    )
    assert translate_fields(campinas, canonical) == translate_fields(campinas, canonical)


def test_unknown_label_is_dropped_not_raised(registry):
    campinas = registry.get("campinas")
    canonical = CanonicalLead(
        external_id="x",
        fields={"4-perfil-do-evento-7-dias": "Festa Junina", "telefone": "+5519999998888"},
    )
    result = translate_fields(campinas, canonical)

    assert "4-perfil-do-evento-7-dias" not in result.fields
    assert result.fields["telefone"] == "+5519999998888"
    assert [(d.key, d.reason, d.value) for d in result.dropped] == [
        ("4-perfil-do-evento-7-dias", UNKNOWN_OPTION, "Festa Junina")
    ]


def test_fields_missing_from_workspace_are_dropped(registry):
    campinas = registry.get("campinas")
    canonical = CanonicalLead(external_id="x", fields={"interesse": "Evento", "cidade-do-evento": "Campinas"})
    result = translate_fields(campinas, canonical)

    assert "interesse" not in result.fields
    assert result.fields["cidade-do-evento"] == "Campinas"
    assert result.dropped_keys() == ["interesse"]
    assert result.dropped[0].reason == UNMAPPED_FIELD


def test_option_ids_and_lists(registry):
    head_office = registry.head_office
    canonical = CanonicalLead(
        external_id="x",
        fields={"interesse": 2, "perfil-do-evento-2": ["Casamento", 3, "Baile"], "decisor": True},
    )
    result = translate_fields(head_office, canonical)

    assert result.fields["interesse"] == 2
    assert result.fields["perfil-do-evento-2"] == [1, 3]
    assert "decisor" not in result.fields
    reasons = {(d.key, d.reason) for d in result.dropped}
    assert ("perfil-do-evento-2", UNKNOWN_OPTION) in reasons
    assert ("decisor", UNSUPPORTED_VALUE) in reasons


def test_title_goes_to_the_workspace_title_field(registry):
    canonical = CanonicalLead(external_id="x", fields={"title": "Lead WA +5519999998888"})

    campinas = translate_fields(registry.get("campinas"), canonical)
    rio_bh = translate_fields(registry.get("rio_bh"), canonical)

    assert campinas.fields["nome-do-cliente"] == "Lead WA +5519999998888"
    assert rio_bh.fields["cliente"] == "Lead WA +5519999998888"
    assert "title" not in campinas.fields
    assert campinas.dropped == []


def test_title_fallback_when_missing(registry):
    canonical = CanonicalLead(external_id="wchic:wa:+5519999998888", fields={"title": "  "})
    result = translate_fields(registry.head_office, canonical)
    assert result.fields["title"] == title_fallback("wchic:wa:+5519999998888")
    assert result.fields["title"] == "Lead WhatsApp - wchic:wa:+5519999998888"
