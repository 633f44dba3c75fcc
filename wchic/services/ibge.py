# wchic/services/ibge.py
"""
Municipality lookup against the public IBGE localities API.

Results (misses included) are kept in a bounded in-process LRU cache keyed by
folded city name and UF.
"""
from __future__ import annotations

import asyncio
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import aiohttp

from wchic.core.config import settings
from wchic.core.logging import get_structlog_logger
from wchic.services.normalization import fold

logger = get_structlog_logger(__name__)


@dataclass(frozen=True)
class Municipality:
    ibge_code: str
    cidade: str
    estado: str
    uf: str


_MISS = object()
_cache: "OrderedDict[str, Any]" = OrderedDict()


def _cache_get(key: str) -> Any:
    if key not in _cache:
        return _MISS
    _cache.move_to_end(key)
    return _cache[key]


def _cache_put(key: str, value: Optional[Municipality]) -> None:
    _cache[key] = value
    _cache.move_to_end(key)
    while len(_cache) > settings.ibge_cache_size:
        _cache.popitem(last=False)


def clear_cache() -> None:
    _cache.clear()


def _uf_of(entry: Dict[str, Any]) -> Dict[str, Any]:
    return ((entry.get("microrregiao") or {}).get("mesorregiao") or {}).get("UF") or {}


def match_municipality(municipios: List[Dict[str, Any]], cidade: str, uf: Optional[str] = None) -> Optional[Municipality]:
    """Exact folded-name match first, then the first substring match."""
    wanted = fold(cidade)
    if not wanted:
        return None
    wanted_uf = uf.strip().lower() if uf else None

    candidates = []
    for entry in municipios:
        name = fold(entry.get("nome") or "")
        if wanted_uf and str(_uf_of(entry).get("sigla") or "").lower() != wanted_uf:
            continue
        if name == wanted or wanted in name:
            candidates.append(entry)

    if not candidates:
        return None

    chosen = next((m for m in candidates if fold(m.get("nome") or "") == wanted), candidates[0])
    state = _uf_of(chosen)
    return Municipality(
        ibge_code=str(chosen["id"]),
        cidade=chosen.get("nome") or cidade,
        estado=state.get("nome") or "",
        uf=state.get("sigla") or "",
    )


async def _fetch_municipios() -> List[Dict[str, Any]]:
    async with aiohttp.ClientSession() as session:
        async with session.get(
            settings.ibge_api_url,
            params={"orderBy": "nome"},
            timeout=aiohttp.ClientTimeout(total=settings.ibge_timeout_seconds),
        ) as response:
            response.raise_for_status()
            return await response.json(content_type=None) or []


async def find_ibge_code(cidade: str, uf: Optional[str] = None) -> Optional[Municipality]:
    """Resolve a city to its IBGE municipality. Returns None on miss or lookup failure."""
    key = f"{fold(cidade)}:{(uf or '').strip().lower()}"
    cached = _cache_get(key)
    if cached is not _MISS:
        return cached

    try:
        municipios = await _fetch_municipios()
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        # Transport failures are not cached; the next call retries.
        logger.error("ibge.lookup.failed", cidade=cidade, uf=uf, error=str(e)[:200])
        return None

    result = match_municipality(municipios, cidade, uf)
    _cache_put(key, result)

    if result is None:
        logger.warning("ibge.lookup.not_found", cidade=cidade, uf=uf)
    else:
        logger.info("ibge.lookup.found", cidade=result.cidade, uf=result.uf, ibge_code=result.ibge_code)
    return result
