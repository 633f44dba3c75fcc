# cli/podio_admin.py
"""
Operator tasks against the Podio apps of every workspace.

- export the raw app definitions (``GET /app/{app_id}``) to disk
- regenerate the workspace mapping documents from those exports
- register the item.update webhook on every app

All functions return an ``AdminResult`` so the CLI can print them uniformly.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from wchic.core.config import settings
from wchic.core.logging import get_structlog_logger
from wchic.services.podio.client import PodioAPIError, PodioClient, get_podio_client
from wchic.services.podio.workspaces import (
    DATA_DIR,
    WORKSPACE_KEYS,
    WorkspaceRegistry,
    get_registry,
)

logger = get_structlog_logger(__name__)

EXPORT_SUFFIX = ".app.json"
HOOK_TYPE = "item.update"

# Hand-maintained sections that Podio knows nothing about.
PRESERVED_KEYS = ("area_label", "status", "post_event_fields")


@dataclass
class AdminResult:
    success: bool
    message: str
    data: Dict[str, Any] = field(default_factory=dict)


def _option_table(config: Dict[str, Any]) -> Dict[str, int]:
    settings_block = config.get("settings") or {}
    raw_options = settings_block.get("options") or settings_block.get("allowed_values") or []
    options: Dict[str, int] = {}
    for option in raw_options:
        if not isinstance(option, dict) or option.get("status") == "deleted":
            continue
        text = option.get("text")
        if text is None or option.get("id") is None:
            continue
        options[str(text)] = int(option["id"])
    return options


def generate_mapping(
    app_json: Dict[str, Any],
    workspace_key: str,
    existing: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Build a workspace mapping document from an exported Podio app.

    Field descriptors and category option tables come from the export;
    ``area_label``, ``status`` and ``post_event_fields`` are carried over from
    ``existing`` unchanged.
    """
    existing = existing or {}
    config = app_json.get("config") or {}
    raw_fields = app_json.get("fields") or config.get("fields") or []

    fields: Dict[str, Dict[str, Any]] = {}
    categories: Dict[str, Dict[str, Dict[str, int]]] = {}
    for raw in raw_fields:
        if raw.get("status") == "deleted":
            continue
        external_id = raw.get("external_id")
        if not external_id:
            continue
        field_config = raw.get("config") or {}
        fields[external_id] = {
            "field_id": int(raw["field_id"]),
            "type": raw.get("type"),
            "label": field_config.get("label") or raw.get("label") or external_id,
            "required": bool(field_config.get("required", False)),
        }
        if raw.get("type") == "category":
            categories[external_id] = {"options": _option_table(field_config)}

    mapping: Dict[str, Any] = {
        "workspace_key": workspace_key,
        "workspace_name": config.get("name") or existing.get("workspace_name") or workspace_key,
        "app_id": int(app_json.get("app_id") or existing.get("app_id")),
        "generated_at": (now or datetime.now(timezone.utc)).isoformat(),
        "fields": fields,
        "categories": categories,
    }
    for key in PRESERVED_KEYS:
        if key in existing:
            mapping[key] = existing[key]
    return mapping


async def export_apps(
    output_dir: Path,
    *,
    client: Optional[PodioClient] = None,
    registry: Optional[WorkspaceRegistry] = None,
) -> AdminResult:
    client = client or await get_podio_client()
    registry = registry or get_registry()
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    written: List[str] = []
    failures: List[Dict[str, Any]] = []
    for workspace in registry:
        try:
            app_json = await client.get_app(workspace)
        except PodioAPIError as e:
            logger.error("podio.export.failed", workspace=workspace.workspace_key, error=e.message)
            failures.append({"workspace": workspace.workspace_key, "error": e.message})
            continue
        path = output_dir / f"{workspace.workspace_key}{EXPORT_SUFFIX}"
        path.write_text(json.dumps(app_json, ensure_ascii=False, indent=2), encoding="utf-8")
        logger.info("podio.export.written", workspace=workspace.workspace_key, path=str(path))
        written.append(str(path))

    if failures:
        return AdminResult(False, f"Exported {len(written)} apps, {len(failures)} failed",
                           {"written": written, "failures": failures})
    return AdminResult(True, f"Exported {len(written)} apps to {output_dir}", {"written": written})


def generate_mappings(export_dir: Path, output_dir: Optional[Path] = None) -> AdminResult:
    export_dir = Path(export_dir)
    output_dir = Path(output_dir) if output_dir else DATA_DIR

    written: List[str] = []
    missing: List[str] = []
    for key in WORKSPACE_KEYS:
        source = export_dir / f"{key}{EXPORT_SUFFIX}"
        if not source.exists():
            missing.append(key)
            continue
        app_json = json.loads(source.read_text(encoding="utf-8"))

        target = output_dir / f"{key}.json"
        existing = json.loads(target.read_text(encoding="utf-8")) if target.exists() else {}
        mapping = generate_mapping(app_json, key, existing)

        target.write_text(json.dumps(mapping, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
        logger.info("podio.mapping.generated", workspace=key, fields=len(mapping["fields"]))
        written.append(str(target))

    if missing:
        return AdminResult(False, f"Missing exports for: {', '.join(missing)}",
                           {"written": written, "missing": missing})
    return AdminResult(True, f"Generated {len(written)} mappings in {output_dir}", {"written": written})


def webhook_url(workspace_key: str, base_url: Optional[str] = None) -> str:
    base = (base_url or settings.public_base_url).rstrip("/")
    return f"{base}/webhook/podio?workspace={workspace_key}"


async def register_webhooks(
    base_url: Optional[str] = None,
    *,
    client: Optional[PodioClient] = None,
    registry: Optional[WorkspaceRegistry] = None,
) -> AdminResult:
    """Create the item.update hook on every app that does not have it yet."""
    client = client or await get_podio_client()
    registry = registry or get_registry()

    outcomes: Dict[str, Dict[str, Any]] = {}
    failed = False
    for workspace in registry:
        key = workspace.workspace_key
        url = webhook_url(key, base_url)
        try:
            hooks = await client.list_hooks(workspace)
            existing = next(
                (h for h in hooks if h.get("url") == url and h.get("type") == HOOK_TYPE),
                None,
            )
            if existing is not None:
                outcomes[key] = {"action": "exists", "hook_id": existing.get("hook_id"), "url": url}
                continue
            hook_id = await client.create_hook(workspace, url, HOOK_TYPE)
        except PodioAPIError as e:
            logger.error("podio.hook.register_failed", workspace=key, error=e.message)
            outcomes[key] = {"action": "failed", "error": e.message, "url": url}
            failed = True
            continue
        logger.info("podio.hook.registered", workspace=key, hook_id=hook_id, url=url)
        outcomes[key] = {"action": "created", "hook_id": hook_id, "url": url}

    message = "Some webhooks could not be registered" if failed else "Webhooks registered"
    return AdminResult(not failed, message, {"workspaces": outcomes})
