# tests/conftest.py
import pytest

from tests.fakes import FakePodioClient
from wchic.services.podio.workspaces import load_registry


@pytest.fixture(scope="session")
def registry():
    return load_registry(apply_env_overrides=False)


@pytest.fixture
def podio():
    return FakePodioClient()
