"""
LinkupTracker — LibreLinkUp credential store.

Credentials come from an explicit override (set through configure()) or,
when none is set, from the LLU_* environment variables. The environment is
read on every access so a reloaded .env is picked up without a restart.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from glucose_units import normalize_unit
from libre_errors import ConfigurationError

DOMAIN = "libreview"
DEFAULT_TLD = "io"

ENV_EMAIL = "LLU_EMAIL"
ENV_PASSWORD = "LLU_PASSWORD"
ENV_REGION = "LLU_REGION"
ENV_TLD = "LLU_TLD"
ENV_UNIT = "LLU_UNIT"


@dataclass(frozen=True)
class Credentials:
    email: str
    password: str = field(repr=False)
    region: str = ""
    domain_suffix: str = DEFAULT_TLD
    preferred_unit: str = "mg/dL"


@dataclass(frozen=True)
class CredentialStatus:
    """Redacted view of the active credentials, safe to hand to a UI."""

    configured: bool
    masked_email: str
    region: str
    domain_suffix: str
    source: str
    unit: str

    def to_dict(self) -> dict:
        return {
            "configured": self.configured,
            "email": self.masked_email,
            "region": self.region,
            "domain_suffix": self.domain_suffix,
            "source": self.source,
            "unit": self.unit,
        }


def mask_email(email: Optional[str]) -> str:
    """Keep the first two characters of the local part: 'jane@x.io' -> 'ja***@x.io'."""
    if not email:
        return ""
    user, sep, domain = email.partition("@")
    if not sep or not domain:
        return "***"
    return f"{user[:2]}***@{domain}"


class CredentialStore:
    """Resolves the credentials, region and domain suffix used to log in."""

    def __init__(self, environ: Optional[Mapping[str, str]] = None) -> None:
        self._environ = environ if environ is not None else os.environ
        self._override: Optional[Credentials] = None
        # Region learned from a login redirect, kept until credentials change
        self._redirect_region: Optional[str] = None

    # ── Resolution ──────────────────────────────────────────────────

    def _env_credentials(self) -> Credentials:
        env = self._environ
        return Credentials(
            email=(env.get(ENV_EMAIL) or "").strip(),
            password=env.get(ENV_PASSWORD) or "",
            region=(env.get(ENV_REGION) or "").strip(),
            domain_suffix=(env.get(ENV_TLD) or "").strip() or DEFAULT_TLD,
            preferred_unit=normalize_unit(env.get(ENV_UNIT)),
        )

    def _source(self) -> Credentials:
        return self._override or self._env_credentials()

    @property
    def source_name(self) -> str:
        return "inline" if self._override else "env"

    @property
    def region(self) -> str:
        if self._redirect_region is not None:
            return self._redirect_region
        return self._source().region

    @property
    def domain_suffix(self) -> str:
        return self._source().domain_suffix or DEFAULT_TLD

    @property
    def preferred_unit(self) -> str:
        return self._source().preferred_unit

    def current_credentials(self) -> Credentials:
        """Return the active credentials.

        Raises:
            ConfigurationError: If neither the override nor the environment
                supplies both an email and a password.
        """
        creds = self._source()
        if not creds.email or not creds.password:
            raise ConfigurationError(
                f"LibreLinkUp credentials missing: set {ENV_EMAIL} and {ENV_PASSWORD}."
            )
        return creds

    # ── Mutation ────────────────────────────────────────────────────

    def configure(
        self,
        email: str,
        password: str,
        region: Optional[str] = None,
        domain_suffix: Optional[str] = None,
        unit: Optional[str] = None,
    ) -> Credentials:
        """Replace the active credentials with an explicit override.

        Region and domain suffix fall back to the values currently in effect
        when not given. The caller owning the session must invalidate it.
        """
        if not email or not password:
            raise ConfigurationError("Email and password are required to configure LibreLinkUp.")

        previous = self._source()
        new_region = region.strip() if region is not None else self.region
        new_tld = (domain_suffix or "").strip() or previous.domain_suffix or DEFAULT_TLD
        new_unit = normalize_unit(unit) if unit else previous.preferred_unit

        self._override = Credentials(
            email=email.strip(),
            password=password,
            region=new_region,
            domain_suffix=new_tld,
            preferred_unit=new_unit,
        )
        self._redirect_region = None
        return self._override

    def remember_region(self, region: str) -> None:
        """Record the region a login redirect pointed at."""
        self._redirect_region = region.strip()

    # ── Views ───────────────────────────────────────────────────────

    def base_url(self, region: Optional[str] = None) -> str:
        """Return https://api[-{region}].libreview.{tld}."""
        region = (region if region is not None else self.region).strip()
        tld = self.domain_suffix
        if region:
            return f"https://api-{region}.{DOMAIN}.{tld}"
        return f"https://api.{DOMAIN}.{tld}"

    def status(self) -> CredentialStatus:
        creds = self._source()
        return CredentialStatus(
            configured=bool(creds.email and creds.password),
            masked_email=mask_email(creds.email),
            region=self.region,
            domain_suffix=self.domain_suffix,
            source=self.source_name,
            unit=creds.preferred_unit,
        )
