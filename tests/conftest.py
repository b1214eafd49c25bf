from __future__ import annotations

import pytest

from fakes import NOW, FakeHttp, scripted_http
from libre_client import LibreLinkUpClient
from libre_credentials import CredentialStore

ENV = {
    "LLU_EMAIL": "jane.doe@example.com",
    "LLU_PASSWORD": "s3cret-pass",
    "LLU_REGION": "eu",
}


@pytest.fixture
def store() -> CredentialStore:
    return CredentialStore(environ=dict(ENV))


@pytest.fixture
def http() -> FakeHttp:
    return scripted_http()


@pytest.fixture
def client(store: CredentialStore, http: FakeHttp) -> LibreLinkUpClient:
    return LibreLinkUpClient(store=store, http=http, clock=lambda: NOW)
