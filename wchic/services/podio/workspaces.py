# wchic/services/podio/workspaces.py
"""
Per-workspace Podio schema.

Each tenant workspace (head office plus one app per franchise) is described by
a JSON document under ``data/``: the external field keys of the app, their
types, the category option tables and the status vocabulary. Documents are
validated once at load time and exposed as frozen models; nothing mutates a
mapping after the registry is built.
"""
from __future__ import annotations

import json
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, ValidationError, model_validator

from wchic.core.config import settings
from wchic.core.logging import get_structlog_logger

logger = get_structlog_logger(__name__)

DATA_DIR = Path(__file__).parent / "data"

HEAD_OFFICE = "franqueadora"
WORKSPACE_KEYS: Tuple[str, ...] = ("franqueadora", "campinas", "litoral_norte", "rio_bh")

AREA_FIELD_KEY = "area-da-franquia"


class CanonicalStatus(str, Enum):
    NEW = "new"
    ROUTED = "routed"
    INCOMPLETE = "incomplete"
    ERROR = "error"
    ABANDONED = "abandoned"
    QUOTED = "quoted"
    NO_RESPONSE = "no_response"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    CONTACTED = "contacted"
    CLOSED = "closed"


def parse_status(value: Any) -> Optional[CanonicalStatus]:
    try:
        return CanonicalStatus(value)
    except ValueError:
        return None


class WorkspaceConfigError(Exception):
    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}


class FieldDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    field_id: int
    type: str
    label: str
    required: bool = False


class CategoryOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    options: Dict[str, int]


class StatusMapping(BaseModel):
    """Status vocabulary of one workspace.

    ``outbound`` and ``inbound`` are separate tables because they are not
    inverses: several canonical statuses may share one label (the label then
    reads back as a single canonical status), and some labels exist only on
    the inbound side (set by franchise operators, never pushed by us).
    """

    model_config = ConfigDict(frozen=True)

    field_key: str
    outbound: Dict[CanonicalStatus, str] = {}
    inbound: Dict[str, CanonicalStatus] = {}


def find_title_field(fields: Dict[str, FieldDescriptor]) -> Optional[str]:
    """Key of the field holding the item title.

    Probed in order: a field keyed ``title``, a text field labelled "Nome",
    the first required text field.
    """
    if "title" in fields:
        return "title"
    for key, descriptor in fields.items():
        if descriptor.type == "text" and descriptor.label.strip().lower() == "nome":
            return key
    for key, descriptor in fields.items():
        if descriptor.type == "text" and descriptor.required:
            return key
    return None


class WorkspaceMapping(BaseModel):
    model_config = ConfigDict(frozen=True)

    workspace_key: str
    workspace_name: str
    app_id: int
    area_label: Optional[str] = None
    fields: Dict[str, FieldDescriptor]
    categories: Dict[str, CategoryOptions] = {}
    status: StatusMapping
    post_event_fields: Tuple[str, ...] = ()

    @model_validator(mode="after")
    def _check_structure(self) -> "WorkspaceMapping":
        if find_title_field(self.fields) is None:
            raise ValueError("no title-capable field (title key, 'Nome' label or required text field)")

        for key, descriptor in self.fields.items():
            if descriptor.type == "category" and key not in self.categories:
                raise ValueError(f"category field '{key}' has no options table")
        for key in self.categories:
            descriptor = self.fields.get(key)
            if descriptor is None or descriptor.type != "category":
                raise ValueError(f"options table '{key}' does not belong to a category field")

        status_field = self.fields.get(self.status.field_key)
        if status_field is None or status_field.type != "category":
            raise ValueError(f"status field '{self.status.field_key}' is not a category field")
        options = self.categories[self.status.field_key].options
        for canonical, label in self.status.outbound.items():
            if label not in options:
                raise ValueError(f"outbound status '{canonical.value}' maps to unknown option '{label}'")
        for label in self.status.inbound:
            if label not in options:
                raise ValueError(f"inbound status label '{label}' is not an option of the status field")

        for key in self.post_event_fields:
            if key not in self.fields:
                raise ValueError(f"post-event field '{key}' is not mapped")
        return self

    @property
    def title_field_key(self) -> str:
        return find_title_field(self.fields)

    def options_for(self, field_key: str) -> Dict[str, int]:
        table = self.categories.get(field_key)
        return table.options if table else {}

    def option_id(self, field_key: str, label: str) -> Optional[int]:
        return self.options_for(field_key).get(label)

    def option_label(self, field_key: str, option_id: int) -> Optional[str]:
        for label, candidate in self.options_for(field_key).items():
            if candidate == option_id:
                return label
        return None

    def outbound_status(self, status: Union[CanonicalStatus, str]) -> Optional[str]:
        return self.status.outbound.get(CanonicalStatus(status))

    def inbound_status(self, label: str) -> Optional[CanonicalStatus]:
        return self.status.inbound.get(label)


class WorkspaceRegistry:
    """Lookup of workspace mappings by key and by Podio app id."""

    def __init__(self, mappings: Iterable[WorkspaceMapping]) -> None:
        self._by_key: Dict[str, WorkspaceMapping] = {}
        self._by_app_id: Dict[int, WorkspaceMapping] = {}

        for mapping in mappings:
            if mapping.workspace_key in self._by_key:
                raise WorkspaceConfigError(
                    "duplicate_workspace",
                    f"workspace '{mapping.workspace_key}' defined twice",
                )
            other = self._by_app_id.get(mapping.app_id)
            if other is not None:
                raise WorkspaceConfigError(
                    "duplicate_app_id",
                    f"app_id {mapping.app_id} used by '{other.workspace_key}' and '{mapping.workspace_key}'",
                )
            self._by_key[mapping.workspace_key] = mapping
            self._by_app_id[mapping.app_id] = mapping

        head_office = self._by_key.get(HEAD_OFFICE)
        if head_office is None:
            raise WorkspaceConfigError("missing_head_office", f"workspace '{HEAD_OFFICE}' is required")

        area_options = head_office.options_for(AREA_FIELD_KEY)
        for mapping in self._by_key.values():
            if mapping.area_label and area_options and mapping.area_label not in area_options:
                raise WorkspaceConfigError(
                    "unknown_area_label",
                    f"area label '{mapping.area_label}' of '{mapping.workspace_key}' "
                    f"is not an option of {HEAD_OFFICE}.{AREA_FIELD_KEY}",
                )

    def __iter__(self) -> Iterator[WorkspaceMapping]:
        return iter(self._by_key.values())

    def __contains__(self, workspace_key: object) -> bool:
        return workspace_key in self._by_key

    def keys(self) -> List[str]:
        return list(self._by_key)

    @property
    def head_office(self) -> WorkspaceMapping:
        return self._by_key[HEAD_OFFICE]

    def get(self, workspace_key: str) -> WorkspaceMapping:
        mapping = self._by_key.get(workspace_key)
        if mapping is None:
            raise WorkspaceConfigError(
                "unknown_workspace",
                f"no mapping for workspace '{workspace_key}'",
                details={"workspace_key": workspace_key},
            )
        return mapping

    def by_app_id(self, app_id: Union[int, str, None]) -> Optional[WorkspaceMapping]:
        if app_id is None or app_id == "":
            return None
        try:
            return self._by_app_id.get(int(app_id))
        except (TypeError, ValueError):
            return None


def load_workspace_file(path: Path) -> WorkspaceMapping:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise WorkspaceConfigError(
            "unreadable_mapping",
            f"cannot read workspace mapping {path.name}: {e}",
            details={"path": str(path)},
        ) from e

    try:
        return WorkspaceMapping.model_validate(raw)
    except ValidationError as e:
        raise WorkspaceConfigError(
            "invalid_mapping",
            f"invalid workspace mapping {path.name}",
            details={"path": str(path), "errors": e.errors(include_url=False)},
        ) from e


def load_registry(
    data_dir: Optional[Path] = None,
    *,
    workspace_keys: Iterable[str] = WORKSPACE_KEYS,
    apply_env_overrides: bool = True,
) -> WorkspaceRegistry:
    base = Path(data_dir) if data_dir else DATA_DIR
    mappings = []

    for key in workspace_keys:
        mapping = load_workspace_file(base / f"{key}.json")
        if mapping.workspace_key != key:
            raise WorkspaceConfigError(
                "workspace_key_mismatch",
                f"{key}.json declares workspace_key '{mapping.workspace_key}'",
            )

        if apply_env_overrides:
            app_id, _ = settings.podio_app_credentials(key)
            if app_id and app_id != mapping.app_id:
                logger.info(
                    "podio.workspace.app_id_override",
                    workspace=key,
                    mapped_app_id=mapping.app_id,
                    app_id=app_id,
                )
                mapping = mapping.model_copy(update={"app_id": app_id})
        mappings.append(mapping)

    registry = WorkspaceRegistry(mappings)
    logger.info("podio.workspaces.loaded", workspaces=registry.keys(), data_dir=str(base))
    return registry


@lru_cache(maxsize=1)
def get_registry() -> WorkspaceRegistry:
    """Process-wide registry, loaded on first use (and at app startup)."""
    data_dir = Path(settings.podio_mappings_dir) if settings.podio_mappings_dir else None
    return load_registry(data_dir)
