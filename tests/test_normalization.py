from datetime import date, datetime

import pytest

from wchic.services.normalization import (
    NormalizationError,
    build_external_id,
    expand_state,
    fold,
    normalize_event_date,
    normalize_phone_br,
    uf_for_state,
)


def test_normalize_phone_br_adds_country_code():
    assert normalize_phone_br("(19) 99999-8888") == "+5519999998888"
    assert normalize_phone_br("19 99999 8888") == "+5519999998888"


def test_normalize_phone_br_keeps_existing_country_code():
    assert normalize_phone_br("5519999998888") == "+5519999998888"
    assert normalize_phone_br("+55 19 99999-8888") == "+5519999998888"


def test_normalize_phone_br_invalid():
    assert normalize_phone_br(None) is None
    assert normalize_phone_br("") is None
    assert normalize_phone_br("abc") is None
    assert normalize_phone_br("123") is None  # too short for E.164


def test_normalize_event_date():
    assert normalize_event_date("2025-10-05") == "2025-10-05"
    assert normalize_event_date(" 2025-10-05T18:00:00Z ") == "2025-10-05"
    assert normalize_event_date(date(2025, 10, 5)) == "2025-10-05"
    assert normalize_event_date(datetime(2025, 10, 5, 18, 30)) == "2025-10-05"
    assert normalize_event_date(None) is None
    assert normalize_event_date("") is None


def test_normalize_event_date_invalid():
    with pytest.raises(NormalizationError):
        normalize_event_date("05/10/2025")
    with pytest.raises(ValueError):
        normalize_event_date("2025-02-30")


def test_build_external_id():
    assert build_external_id("+5519999998888") == "wchic:wa:+5519999998888"
    assert build_external_id("+5519999998888", "2025-10-05") == "wchic:wa:+5519999998888:2025-10-05"
    assert build_external_id("+5519999998888", date(2025, 10, 5)) == "wchic:wa:+5519999998888:2025-10-05"


def test_expand_state():
    assert expand_state("sp") == "São Paulo"
    assert expand_state(" RJ ") == "Rio de Janeiro"
    assert expand_state(" Minas Gerais ") == "Minas Gerais"


def test_uf_for_state():
    assert uf_for_state("sp") == "SP"
    assert uf_for_state("sao paulo") == "SP"
    assert uf_for_state("Espírito Santo") == "ES"
    assert uf_for_state("Atlântida") is None
    assert uf_for_state(None) is None


def test_fold():
    assert fold(" São José dos Campos ") == "sao jose dos campos"
