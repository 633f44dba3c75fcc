# wchic/services/podio/client.py
from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import aiohttp

from wchic.core.config import settings
from wchic.core.exceptions import ExternalServiceError, ServiceUnavailableError
from wchic.core.logging import get_structlog_logger
from wchic.services.podio.workspaces import WorkspaceMapping
from wchic.services.redis import RedisCache, get_cache

logger = get_structlog_logger(__name__)

# Tokens are dropped from cache this long before Podio expires them.
TOKEN_EXPIRY_MARGIN_SECONDS = 300


class PodioAPIError(ExternalServiceError):
    """Failed Podio call. ``http_status`` is None for transport failures."""

    def __init__(
        self,
        message: str,
        *,
        http_status: Optional[int] = None,
        error: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, code="podio_api_error", details=details)
        self.http_status = http_status
        self.error = error

    @property
    def is_not_found(self) -> bool:
        return self.http_status == 404

    @classmethod
    def from_response(cls, status: int, method: str, path: str, body: str) -> "PodioAPIError":
        error = None
        description = body[:500]
        try:
            parsed = json.loads(body)
            if isinstance(parsed, dict):
                error = parsed.get("error")
                description = parsed.get("error_description") or description
        except json.JSONDecodeError:
            pass
        return cls(
            f"Podio {method} {path} failed with HTTP {status}",
            http_status=status,
            error=error,
            details={"status": status, "error": error, "error_description": description},
        )


class PodioClient:
    """Thin async client over the Podio REST API, authenticated per workspace app."""

    def __init__(
        self,
        *,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[int] = None,
        token_cache: Optional[RedisCache] = None,
    ) -> None:
        self.client_id = client_id or settings.podio_client_id
        self.client_secret = client_secret or settings.podio_client_secret
        self.base_url = (base_url or settings.podio_api_url).rstrip("/")
        self.timeout = timeout or settings.podio_timeout_seconds
        self.token_cache = token_cache

    async def _request(
        self,
        method: str,
        path: str,
        *,
        token: Optional[str] = None,
        payload: Any = None,
        form: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"OAuth2 {token}"

        try:
            async with aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as http:
                async with http.request(
                    method,
                    f"{self.base_url}{path}",
                    json=payload,
                    data=form,
                    params=params,
                    headers=headers,
                ) as response:
                    body = await response.text()
                    if response.status >= 400:
                        raise PodioAPIError.from_response(response.status, method, path, body)
                    if not body:
                        return None
                    try:
                        return json.loads(body)
                    except json.JSONDecodeError:
                        return body
        except asyncio.TimeoutError as e:
            raise PodioAPIError(
                f"Podio {method} {path} timed out",
                details={"timeout_seconds": self.timeout},
            ) from e
        except aiohttp.ClientError as e:
            raise PodioAPIError(
                f"Podio {method} {path} failed: {e}",
                details={"error": str(e)[:200]},
            ) from e

    # -- authentication -------------------------------------------------

    def _app_token(self, workspace: WorkspaceMapping) -> str:
        _, app_token = settings.podio_app_credentials(workspace.workspace_key)
        if not app_token or not self.client_id or not self.client_secret:
            raise PodioAPIError(
                f"Podio credentials missing for workspace '{workspace.workspace_key}'",
                error="missing_credentials",
                details={"workspace": workspace.workspace_key},
            )
        return app_token

    async def _grant(self, workspace: WorkspaceMapping) -> Dict[str, Any]:
        form = {
            "grant_type": "app",
            "app_id": str(workspace.app_id),
            "app_token": self._app_token(workspace),
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }
        data = await self._request("POST", "/oauth/token", form=form)
        if not isinstance(data, dict) or not data.get("access_token"):
            raise PodioAPIError(
                "Podio token response without access_token",
                error="invalid_token_response",
                details={"workspace": workspace.workspace_key},
            )
        return data

    async def access_token(self, workspace: WorkspaceMapping, *, refresh: bool = False) -> str:
        cache_key = f"{workspace.workspace_key}:{workspace.app_id}"

        if self.token_cache is not None and not refresh:
            cached = await self.token_cache.get(cache_key)
            if cached:
                return cached

        data = await self._grant(workspace)
        token = data["access_token"]

        if self.token_cache is not None:
            ttl = int(data.get("expires_in") or 0) - TOKEN_EXPIRY_MARGIN_SECONDS
            if ttl > 0:
                await self.token_cache.set(cache_key, token, expire=ttl)

        logger.debug("podio.token.granted", workspace=workspace.workspace_key)
        return token

    async def _call(self, workspace: WorkspaceMapping, method: str, path: str, **kwargs) -> Any:
        token = await self.access_token(workspace)
        try:
            return await self._request(method, path, token=token, **kwargs)
        except PodioAPIError as e:
            if e.http_status != 401 or self.token_cache is None:
                raise
            # A cached token revoked on Podio's side; grant once more.
            await self.token_cache.delete(f"{workspace.workspace_key}:{workspace.app_id}")
            token = await self.access_token(workspace, refresh=True)
            return await self._request(method, path, token=token, **kwargs)

    # -- items ----------------------------------------------------------

    async def get_item_by_external_id(self, workspace: WorkspaceMapping, external_id: str) -> Dict[str, Any]:
        path = f"/item/app/{workspace.app_id}/external_id/{quote(external_id, safe='')}"
        return await self._call(workspace, "GET", path)

    async def create_item(
        self,
        workspace: WorkspaceMapping,
        external_id: str,
        fields: Dict[str, Any],
    ) -> int:
        data = await self._call(
            workspace,
            "POST",
            f"/item/app/{workspace.app_id}/",
            payload={"external_id": external_id, "fields": fields},
        )
        return int(data["item_id"])

    async def update_item(
        self,
        workspace: WorkspaceMapping,
        item_id: int,
        external_id: str,
        fields: Dict[str, Any],
    ) -> None:
        await self._call(
            workspace,
            "PUT",
            f"/item/{item_id}",
            payload={"external_id": external_id, "fields": fields},
        )

    async def get_item(self, workspace: WorkspaceMapping, item_id: int) -> Dict[str, Any]:
        return await self._call(workspace, "GET", f"/item/{item_id}")

    async def update_item_field(
        self,
        workspace: WorkspaceMapping,
        item_id: int,
        field_key: str,
        value: Any,
    ) -> None:
        await self._call(
            workspace,
            "PUT",
            f"/item/{item_id}/value/{quote(field_key, safe='')}",
            payload=value,
        )

    # -- hooks and apps -------------------------------------------------

    async def validate_hook(self, workspace: WorkspaceMapping, hook_id: int, code: str) -> None:
        await self._call(workspace, "POST", f"/hook/{hook_id}/verify/validate", payload={"code": code})

    async def list_hooks(self, workspace: WorkspaceMapping) -> List[Dict[str, Any]]:
        return await self._call(workspace, "GET", f"/hook/app/{workspace.app_id}/") or []

    async def create_hook(
        self,
        workspace: WorkspaceMapping,
        url: str,
        hook_type: str = "item.update",
    ) -> int:
        data = await self._call(
            workspace,
            "POST",
            f"/hook/app/{workspace.app_id}/",
            payload={"url": url, "type": hook_type},
        )
        return int(data["hook_id"])

    async def get_app(self, workspace: WorkspaceMapping) -> Dict[str, Any]:
        return await self._call(workspace, "GET", f"/app/{workspace.app_id}")


def item_field_values(item: Dict[str, Any], field_key: str) -> List[Dict[str, Any]]:
    for item_field in item.get("fields") or []:
        if item_field.get("external_id") == field_key:
            return item_field.get("values") or []
    return []


def category_label(item: Dict[str, Any], field_key: str) -> Optional[str]:
    """Text of the first selected option of a category field, if any."""
    values = item_field_values(item, field_key)
    if not values:
        return None
    option = values[0].get("value")
    if isinstance(option, dict):
        return option.get("text")
    return None


def field_is_filled(item: Dict[str, Any], field_key: str) -> bool:
    for value in item_field_values(item, field_key):
        content = value.get("value", value.get("start"))
        if content not in (None, "", [], {}):
            return True
    return False


async def get_podio_client() -> PodioClient:
    """Client wired to the shared Redis token cache when it is reachable."""
    token_cache = None
    if settings.podio_token_cache_enabled:
        try:
            token_cache = await get_cache(prefix="podio:token")
        except ServiceUnavailableError as e:
            logger.warning("podio.token_cache.unavailable", error=e.message)
    return PodioClient(token_cache=token_cache)
