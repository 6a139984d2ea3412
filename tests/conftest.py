from datetime import datetime, timezone

import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient

from echo_server.app import create_app
from echo_server.config import EchoSettings


@pytest.fixture(scope="session")
def rsa_key():
    """One 2048-bit key for the whole run; generation is slow."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def fixed_now():
    return datetime(2025, 3, 14, 15, 9, 26, tzinfo=timezone.utc)


@pytest.fixture
def settings():
    return EchoSettings()


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_client():
    """Build a client for custom settings."""
    clients = []

    def _make(**overrides):
        c = TestClient(create_app(EchoSettings(**overrides)))
        clients.append(c)
        return c

    yield _make
    for c in clients:
        c.close()
