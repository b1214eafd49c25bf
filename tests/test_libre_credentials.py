from __future__ import annotations

import hashlib

import pytest

from libre_credentials import CredentialStore, mask_email
from libre_errors import ConfigurationError
from libre_session import Session


def test_env_credentials_are_used_without_override(store: CredentialStore) -> None:
    creds = store.current_credentials()
    assert creds.email == "jane.doe@example.com"
    assert creds.password == "s3cret-pass"
    assert creds.region == "eu"
    assert creds.domain_suffix == "io"
    assert creds.preferred_unit == "mg/dL"
    assert store.source_name == "env"


def test_env_is_read_on_every_access() -> None:
    environ: dict[str, str] = {}
    store = CredentialStore(environ=environ)
    with pytest.raises(ConfigurationError):
        store.current_credentials()

    environ.update({"LLU_EMAIL": "a@b.io", "LLU_PASSWORD": "pw", "LLU_UNIT": "mmol"})
    assert store.current_credentials().email == "a@b.io"
    assert store.preferred_unit == "mmol/L"


@pytest.mark.parametrize("email,password", [("", "pw"), ("a@b.io", ""), (None, "pw")])
def test_configure_requires_email_and_password(store: CredentialStore, email, password) -> None:
    with pytest.raises(ConfigurationError):
        store.configure(email, password)
    assert store.source_name == "env"


def test_configure_keeps_previous_region_and_suffix(store: CredentialStore) -> None:
    creds = store.configure("new.user@example.org", "pw2")
    assert creds.region == "eu"
    assert creds.domain_suffix == "io"
    assert store.source_name == "inline"
    assert store.current_credentials().email == "new.user@example.org"


def test_configure_with_region_and_suffix(store: CredentialStore) -> None:
    store.configure("a@b.io", "pw", region="us", domain_suffix="com", unit="MMOL/L")
    assert store.base_url() == "https://api-us.libreview.com"
    assert store.preferred_unit == "mmol/L"


def test_base_url_without_region() -> None:
    store = CredentialStore(environ={"LLU_EMAIL": "a@b.io", "LLU_PASSWORD": "pw"})
    assert store.base_url() == "https://api.libreview.io"
    assert store.base_url("ap") == "https://api-ap.libreview.io"


def test_redirect_region_until_credentials_change(store: CredentialStore) -> None:
    store.remember_region("us")
    assert store.region == "us"
    assert store.base_url() == "https://api-us.libreview.io"

    store.configure("a@b.io", "pw", region="de")
    assert store.region == "de"


def test_status_is_redacted(store: CredentialStore) -> None:
    status = store.status()
    assert status.configured is True
    assert status.masked_email == "ja***@example.com"
    assert status.source == "env"
    assert status.region == "eu"
    assert status.unit == "mg/dL"
    assert "s3cret-pass" not in repr(status)
    assert "s3cret-pass" not in str(status.to_dict())
    assert "jane.doe" not in str(status.to_dict())


def test_status_when_unconfigured() -> None:
    status = CredentialStore(environ={}).status()
    assert status.configured is False
    assert status.masked_email == ""
    assert status.domain_suffix == "io"


def test_credentials_repr_hides_password(store: CredentialStore) -> None:
    assert "s3cret-pass" not in repr(store.current_credentials())


@pytest.mark.parametrize(
    "email,expected",
    [
        ("jane.doe@example.com", "ja***@example.com"),
        ("j@x.io", "j***@x.io"),
        ("no-at-sign", "***"),
        ("", ""),
        (None, ""),
    ],
)
def test_mask_email(email, expected: str) -> None:
    assert mask_email(email) == expected


# -- Session -------------------------------------------------------------


def test_token_validity_respects_buffer() -> None:
    session = Session()
    assert not session.is_token_valid(0)

    session.store_ticket("tok", 1000)
    assert session.is_token_valid(939)
    assert not session.is_token_valid(940)


def test_invalidate_clears_everything() -> None:
    session = Session(token="tok", token_expires=10**10, account_id="user-1", patient_id="p-1")
    session.invalidate()
    assert session == Session()


def test_account_id_hash_is_sha256_hex() -> None:
    session = Session(account_id="user-1")
    assert session.account_id_hash() == hashlib.sha256(b"user-1").hexdigest()
    assert Session().account_id_hash() is None
