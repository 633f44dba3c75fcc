import asyncio
from unittest.mock import patch

import aiohttp
import pytest

from wchic.services import ibge
from wchic.services.ibge import find_ibge_code, match_municipality
from tests.fakes import FakeHttpSession, FakeResponse


def _municipio(ibge_id, nome, uf, estado):
    return {
        "id": ibge_id,
        "nome": nome,
        "microrregiao": {"mesorregiao": {"UF": {"sigla": uf, "nome": estado}}},
    }


MUNICIPIOS = [
    _municipio(3509502, "Campinas", "SP", "São Paulo"),
    _municipio(3509452, "Campina do Monte Alegre", "SP", "São Paulo"),
    _municipio(2504009, "Campina Grande", "PB", "Paraíba"),
    _municipio(3549904, "São José dos Campos", "SP", "São Paulo"),
    _municipio(3304557, "Rio de Janeiro", "RJ", "Rio de Janeiro"),
]


@pytest.fixture(autouse=True)
def empty_cache():
    ibge.clear_cache()
    yield
    ibge.clear_cache()


def test_exact_match_preferred_over_substring():
    found = match_municipality(MUNICIPIOS, "campinas")
    assert found.ibge_code == "3509502"
    assert (found.cidade, found.uf, found.estado) == ("Campinas", "SP", "São Paulo")


def test_match_ignores_accents_and_case():
    assert match_municipality(MUNICIPIOS, "SAO JOSE DOS CAMPOS").ibge_code == "3549904"


def test_match_filtered_by_uf():
    assert match_municipality(MUNICIPIOS, "Campina", "PB").ibge_code == "2504009"
    assert match_municipality(MUNICIPIOS, "Rio de Janeiro", "SP") is None


def test_no_match():
    assert match_municipality(MUNICIPIOS, "Atlântida") is None
    assert match_municipality(MUNICIPIOS, "  ") is None


def test_lookup_is_cached():
    http = FakeHttpSession(FakeResponse(200, body=MUNICIPIOS))
    with patch("aiohttp.ClientSession", http):
        first = asyncio.run(find_ibge_code("Campinas", "SP"))
        second = asyncio.run(find_ibge_code(" campinas ", "sp"))

    assert first == second
    assert first.ibge_code == "3509502"
    assert len(http.requests) == 1
    assert http.requests[0][2]["params"] == {"orderBy": "nome"}


def test_misses_are_cached():
    http = FakeHttpSession(FakeResponse(200, body=MUNICIPIOS))
    with patch("aiohttp.ClientSession", http):
        assert asyncio.run(find_ibge_code("Atlântida")) is None
        assert asyncio.run(find_ibge_code("Atlântida")) is None
    assert len(http.requests) == 1


def test_transport_failures_are_not_cached():
    failing = FakeHttpSession(error=aiohttp.ClientConnectionError("down"))
    with patch("aiohttp.ClientSession", failing):
        assert asyncio.run(find_ibge_code("Campinas", "SP")) is None

    http = FakeHttpSession(FakeResponse(200, body=MUNICIPIOS))
    with patch("aiohttp.ClientSession", http):
        assert asyncio.run(find_ibge_code("Campinas", "SP")).ibge_code == "3509502"


def test_http_error_returns_none():
    http = FakeHttpSession(FakeResponse(503), FakeResponse(200, body=MUNICIPIOS))
    with patch("aiohttp.ClientSession", http):
        assert asyncio.run(find_ibge_code("Campinas")) is None
        assert asyncio.run(find_ibge_code("Campinas")) is not None
    assert len(http.requests) == 2


def test_cache_is_bounded(monkeypatch):
    monkeypatch.setattr(ibge.settings, "ibge_cache_size", 2)
    http = FakeHttpSession(*[FakeResponse(200, body=MUNICIPIOS) for _ in range(4)])
    with patch("aiohttp.ClientSession", http):
        for city in ("Campinas", "Campina Grande", "Rio de Janeiro", "Campinas"):
            asyncio.run(find_ibge_code(city))
    # The first entry was evicted, so the last lookup went back to the API.
    assert len(http.requests) == 4
