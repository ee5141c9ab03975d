from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from pwauth.config import Settings
from pwauth.keys import derive_keypair
from pwauth.main import create_app
from pwauth.storage import InMemoryIdentityRegistry


ORIGIN = "https://example.test"
ADA_EMAIL = "ada@example.test"


# Derivation runs 200k PBKDF2 rounds, so keys are shared across the session.
@pytest.fixture(scope="session")
def ada_keys():
    return derive_keypair("p1", ORIGIN)


@pytest.fixture(scope="session")
def other_keys():
    return derive_keypair("p2", ORIGIN)


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(AUDIT_DIR=tmp_path / "audit")


@pytest.fixture()
def registry() -> InMemoryIdentityRegistry:
    return InMemoryIdentityRegistry()


@pytest.fixture()
def client(settings, registry) -> TestClient:
    return TestClient(create_app(settings=settings, registry=registry))


@pytest.fixture()
def post_jwt(client):
    def _post(path: str, assertion: str):
        return client.post(path, content=assertion, headers={"content-type": "application/jwt"})

    return _post
