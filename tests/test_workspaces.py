# tests/test_workspaces.py
import json
import shutil

import pytest

from wchic.services.podio.workspaces import (
    DATA_DIR,
    HEAD_OFFICE,
    WORKSPACE_KEYS,
    CanonicalStatus,
    WorkspaceConfigError,
    load_registry,
    parse_status,
)


@pytest.fixture
def registry():
    return load_registry(apply_env_overrides=False)


@pytest.fixture
def mapping_dir(tmp_path):
    for key in WORKSPACE_KEYS:
        shutil.copy(DATA_DIR / f"{key}.json", tmp_path / f"{key}.json")
    return tmp_path


def _edit(mapping_dir, key, change):
    path = mapping_dir / f"{key}.json"
    raw = json.loads(path.read_text(encoding="utf-8"))
    change(raw)
    path.write_text(json.dumps(raw, ensure_ascii=False), encoding="utf-8")


def test_packaged_mappings_load(registry):
    assert registry.keys() == list(WORKSPACE_KEYS)
    assert registry.head_office.workspace_key == HEAD_OFFICE
    assert HEAD_OFFICE in registry
    assert "sorocaba" not in registry


def test_lookup_by_app_id(registry):
    assert registry.by_app_id(10777978).workspace_key == "campinas"
    assert registry.by_app_id("10777978").workspace_key == "campinas"
    assert registry.by_app_id(1) is None
    assert registry.by_app_id("not-a-number") is None
    assert registry.by_app_id(None) is None


def test_unknown_workspace_key(registry):
    with pytest.raises(WorkspaceConfigError) as exc_info:
        registry.get("sorocaba")
    assert exc_info.value.code == "unknown_workspace"


def test_title_field_resolution(registry):
    assert registry.get("franqueadora").title_field_key == "title"
    # Labelled "Nome" rather than keyed "title".
    assert registry.get("campinas").title_field_key == "nome-do-cliente"
    # Neither: first required text field.
    assert registry.get("rio_bh").title_field_key == "cliente"


def test_status_tables_are_workspace_scoped(registry):
    campinas = registry.get("campinas")
    rio_bh = registry.get("rio_bh")

    assert campinas.outbound_status(CanonicalStatus.CONTACTED) == "Em contato"
    assert rio_bh.outbound_status("contacted") == "Encaminhado"
    # The same label means different things in different workspaces.
    assert rio_bh.inbound_status("Encaminhado") == CanonicalStatus.CONTACTED
    assert registry.head_office.inbound_status("Encaminhado") == CanonicalStatus.ROUTED
    assert campinas.inbound_status("Encaminhado") is None


def test_head_office_has_no_label_for_franchise_statuses(registry):
    assert registry.head_office.outbound_status(CanonicalStatus.CLOSED) is None


def test_option_lookup(registry):
    campinas = registry.get("campinas")
    assert campinas.option_id("status-da-prospeccao", "Fechado") == 7
    assert campinas.option_label("status-da-prospeccao", 7) == "Fechado"
    assert campinas.option_id("status-da-prospeccao", "Inexistente") is None
    assert campinas.options_for("telefone") == {}


def test_parse_status():
    assert parse_status("quoted") == CanonicalStatus.QUOTED
    assert parse_status("unknown") is None
    assert parse_status(None) is None


def test_outbound_label_must_be_an_option(mapping_dir):
    _edit(mapping_dir, "campinas", lambda raw: raw["status"]["outbound"].update({"closed": "Ganho"}))
    with pytest.raises(WorkspaceConfigError) as exc_info:
        load_registry(mapping_dir, apply_env_overrides=False)
    assert exc_info.value.code == "invalid_mapping"


def test_category_field_needs_options(mapping_dir):
    _edit(mapping_dir, "campinas", lambda raw: raw["categories"].pop("avaliacao-do-cliente"))
    with pytest.raises(WorkspaceConfigError) as exc_info:
        load_registry(mapping_dir, apply_env_overrides=False)
    assert exc_info.value.code == "invalid_mapping"


def test_area_label_must_exist_in_head_office(mapping_dir):
    _edit(mapping_dir, "campinas", lambda raw: raw.update({"area_label": "Franquia Sorocaba"}))
    with pytest.raises(WorkspaceConfigError) as exc_info:
        load_registry(mapping_dir, apply_env_overrides=False)
    assert exc_info.value.code == "unknown_area_label"


def test_duplicate_app_id_rejected(mapping_dir):
    _edit(mapping_dir, "rio_bh", lambda raw: raw.update({"app_id": 10777978}))
    with pytest.raises(WorkspaceConfigError) as exc_info:
        load_registry(mapping_dir, apply_env_overrides=False)
    assert exc_info.value.code == "duplicate_app_id"


def test_head_office_required(mapping_dir):
    with pytest.raises(WorkspaceConfigError) as exc_info:
        load_registry(mapping_dir, workspace_keys=("campinas",), apply_env_overrides=False)
    assert exc_info.value.code == "missing_head_office"


def test_unreadable_mapping(mapping_dir):
    (mapping_dir / "campinas.json").write_text("{not json", encoding="utf-8")
    with pytest.raises(WorkspaceConfigError) as exc_info:
        load_registry(mapping_dir, apply_env_overrides=False)
    assert exc_info.value.code == "unreadable_mapping"


def test_mappings_are_frozen(registry):
    campinas = registry.get("campinas")
    with pytest.raises(Exception):
        campinas.app_id = 1
