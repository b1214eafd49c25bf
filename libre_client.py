"""
LinkupTracker — LibreLinkUp API client.

Logs in with the mobile-app protocol (including the "consent required"
sub-flow), resolves the followed patient and fetches glucose readings from
the graph endpoint. Readings are returned either as CanonicalMeasurement
(mg/dL) or projected into a display unit. Nothing is persisted here; the
caller decides what to store. Used by poller.py.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

import requests

from glucose_units import DisplayMeasurement, project
from libre_credentials import CredentialStatus, CredentialStore, Credentials, mask_email
from libre_errors import (
    AuthenticationError,
    ConsentRejectedError,
    ConsentRequiredError,
    PatientNotFoundError,
    TooManyConsentStepsError,
    TransportError,
    UpstreamProtocolError,
)
from libre_measurements import CanonicalMeasurement, extract_latest, extract_series
from libre_session import Session

logger = logging.getLogger("libre_client")

APP_PRODUCT = "llu.android"
APP_VERSION = "4.16.0"
DEFAULT_TIMEOUT = 15  # seconds

# Upstream "status" field values
STATUS_OK = 0
STATUS_CONSENT_REQUIRED = 4

# Consent rounds accepted per operation before giving up
MAX_CONSENT_STEPS = 2


class LibreLinkUpClient:
    """Single-patient LibreLinkUp follower client.

    Login, consent acceptance and patient resolution are serialized with one
    re-entrant lock; a caller that waited for an in-flight login reuses its
    token instead of logging in again. Data requests run concurrently.
    """

    def __init__(
        self,
        store: Optional[CredentialStore] = None,
        http: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
        clock: Callable[[], float] = time.time,
        max_consent_steps: int = MAX_CONSENT_STEPS,
    ) -> None:
        self.store = store or CredentialStore()
        self.session = Session()
        self.timeout = timeout
        self.max_consent_steps = max_consent_steps
        self._http = http or requests.Session()
        self._clock = clock
        self._lock = threading.RLock()

    # ── Credentials ─────────────────────────────────────────────────

    def configure_credentials(
        self,
        email: str,
        password: str,
        region: Optional[str] = None,
        domain_suffix: Optional[str] = None,
        unit: Optional[str] = None,
    ) -> Credentials:
        """Replace the credentials and drop the session so the next call logs in again."""
        with self._lock:
            creds = self.store.configure(email, password, region, domain_suffix, unit)
            self.session.invalidate()
        logger.info("LibreLinkUp credentials updated for %s", mask_email(creds.email))
        return creds

    def get_credential_status(self) -> CredentialStatus:
        return self.store.status()

    # ── HTTP plumbing ───────────────────────────────────────────────

    def build_headers(self, token: Optional[str] = None) -> dict[str, str]:
        headers = {
            "product": APP_PRODUCT,
            "version": APP_VERSION,
            "Accept": "application/json",
            "Content-Type": "application/json",
            "cache-control": "no-cache",
        }
        account_hash = self.session.account_id_hash()
        if account_hash:
            headers["Account-Id"] = account_hash
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _request(
        self,
        method: str,
        path: str,
        token: Optional[str] = None,
        payload: Optional[dict] = None,
    ) -> dict:
        """Send one request and return the decoded JSON object.

        Raises TransportError on network failure and UpstreamProtocolError
        when the body is not a JSON object.
        """
        url = f"{self.store.base_url()}{path}"
        try:
            resp = self._http.request(
                method,
                url,
                headers=self.build_headers(token),
                json=payload,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise TransportError(f"LibreLinkUp request to {path} failed: {exc}") from exc

        if resp.status_code == 401 and token:
            self._drop_token(token)
            raise AuthenticationError(f"LibreLinkUp rejected the session token for {path}", status=401)

        try:
            body = resp.json()
        except ValueError as exc:
            raise UpstreamProtocolError(
                f"LibreLinkUp returned non-JSON response: {resp.text[:200]}",
                status=resp.status_code,
            ) from exc
        if not isinstance(body, dict):
            raise UpstreamProtocolError(
                f"LibreLinkUp returned {type(body).__name__} instead of an object",
                status=resp.status_code,
            )
        return body

    def _drop_token(self, token: str) -> None:
        with self._lock:
            # another thread may already have logged in again
            if self.session.token == token:
                self.session.invalidate_token()

    # ── Authentication ──────────────────────────────────────────────

    def ensure_authenticated(self) -> None:
        """Log in unless the cached token is good for more than the expiry buffer."""
        if self.session.is_token_valid(self._clock()):
            return
        with self._lock:
            if self.session.is_token_valid(self._clock()):
                return
            self._login(redirected=False, consent_steps=0)

    def login(self) -> dict:
        """Log in unconditionally and return the raw login response."""
        with self._lock:
            return self._login(redirected=False, consent_steps=0)

    def _login(self, redirected: bool, consent_steps: int) -> dict:
        creds = self.store.current_credentials()
        logger.info("Logging in to LibreLinkUp (%s)", self.store.base_url())
        body = self._request(
            "POST",
            "/llu/auth/login",
            payload={"email": creds.email, "password": creds.password},
        )
        status = body.get("status")
        data = body.get("data") if isinstance(body.get("data"), dict) else {}

        if status == STATUS_OK:
            region = data.get("region")
            if data.get("redirect") and region:
                if not redirected:
                    logger.warning("LibreLinkUp redirected login to region %s", region)
                    self.store.remember_region(str(region))
                    return self._login(redirected=True, consent_steps=consent_steps)
                logger.warning("Ignoring second LibreLinkUp region redirect to %s", region)

            ticket = data.get("authTicket") or {}
            token = ticket.get("token")
            if not token:
                raise AuthenticationError("LibreLinkUp login returned no auth ticket", status=status)
            self.session.store_ticket(token, self._ticket_expiry(ticket))
            self._remember_account(data)
            logger.info("LibreLinkUp login succeeded, token expires at %s", self.session.token_expires)
            return body

        if status == STATUS_CONSENT_REQUIRED:
            self._complete_consent(data, consent_steps)
            return self._login(redirected=redirected, consent_steps=consent_steps + 1)

        raise AuthenticationError(f"LibreLinkUp login failed (status {status})", status=status)

    def _ticket_expiry(self, ticket: dict) -> int:
        expires = ticket.get("expires")
        if expires:
            return int(expires)
        duration_ms = ticket.get("duration")
        if duration_ms:
            return int(self._clock() + int(duration_ms) / 1000)
        return 0

    def _remember_account(self, data: dict) -> None:
        user = data.get("user")
        if isinstance(user, dict) and user.get("id"):
            self.session.account_id = str(user["id"])

    def _complete_consent(self, data: dict, consent_steps: int) -> None:
        """Accept the consent step named in a status-4 response.

        The temporary ticket is only used for the acceptance request; the
        session's own token is left untouched.
        """
        if consent_steps >= self.max_consent_steps:
            raise TooManyConsentStepsError(
                f"LibreLinkUp still requires consent after {consent_steps} accepted steps"
            )
        self._remember_account(data)
        step_type = (data.get("step") or {}).get("type")
        temp_token = (data.get("authTicket") or {}).get("token")
        if not step_type or not temp_token:
            raise ConsentRequiredError("LibreLinkUp requires consent before access can continue.")
        logger.warning("LibreLinkUp requires consent step '%s', accepting", step_type)
        self.accept_step(step_type, temp_token)

    def accept_step(self, step_type: str, token: Optional[str] = None) -> None:
        """POST /auth/continue/{step_type}; anything but status 0 is a rejection."""
        if not step_type:
            raise ConsentRequiredError("LibreLinkUp requires acceptance but no step type was provided.")
        with self._lock:
            try:
                body = self._request("POST", f"/auth/continue/{step_type}", token=token or self.session.token)
            except AuthenticationError as exc:
                if exc.status != 401:
                    raise
                raise ConsentRejectedError(step_type, 401) from exc
        status = body.get("status")
        if status != STATUS_OK:
            raise ConsentRejectedError(step_type, status)
        logger.info("Accepted LibreLinkUp consent step '%s'", step_type)

    def _authorized_get(self, path: str, what: str) -> dict:
        consent_steps = 0
        while True:
            self.ensure_authenticated()
            body = self._request("GET", path, token=self.session.token)
            status = body.get("status")
            if status == STATUS_CONSENT_REQUIRED:
                data = body.get("data") if isinstance(body.get("data"), dict) else {}
                with self._lock:
                    self._complete_consent(data, consent_steps)
                consent_steps += 1
                continue
            if status != STATUS_OK:
                raise UpstreamProtocolError(f"LibreLinkUp {what} failed (status {status})", status=status)
            return body

    # ── Patient ─────────────────────────────────────────────────────

    def ensure_patient_id(self) -> str:
        if self.session.patient_id:
            return self.session.patient_id
        with self._lock:
            if self.session.patient_id:
                return self.session.patient_id
            return self.fetch_connections()

    def fetch_connections(self) -> str:
        """Resolve and cache the patient id of the first connection.

        Raises:
            PatientNotFoundError: If the first connection has no identifier.
        """
        body = self._authorized_get("/llu/connections", "connections")
        data = body.get("data")
        if isinstance(data, dict) and "connections" in data:
            data = data["connections"]

        first = None
        if isinstance(data, list) and data:
            first = data[0]
        elif isinstance(data, dict):
            first = data

        patient_id = None
        if isinstance(first, dict):
            patient = first.get("patient") if isinstance(first.get("patient"), dict) else {}
            patient_id = first.get("patientId") or patient.get("id") or first.get("id")
        if not patient_id:
            raise PatientNotFoundError("LibreLinkUp patient identifier not found.")

        self.session.patient_id = str(patient_id)
        logger.info("Resolved LibreLinkUp patient")
        return self.session.patient_id

    # ── Readings ────────────────────────────────────────────────────

    def fetch_graph(self) -> dict:
        patient_id = self.ensure_patient_id()
        return self._authorized_get(f"/llu/connections/{patient_id}/graph", "graph")

    def fetch_latest_measurement(self) -> CanonicalMeasurement:
        return extract_latest(self.fetch_graph())

    def fetch_measurement_series(self) -> list[CanonicalMeasurement]:
        return extract_series(self.fetch_graph())

    def fetch_latest_reading(self, unit: Optional[str] = None) -> DisplayMeasurement:
        """Latest reading in `unit`, or the configured preferred unit when omitted."""
        return project(self.fetch_latest_measurement(), unit or self.store.preferred_unit)

    def fetch_glucose_series(self, unit: Optional[str] = None) -> list[DisplayMeasurement]:
        """All readings from the graph endpoint, oldest first, in `unit`."""
        target = unit or self.store.preferred_unit
        return [project(m, target) for m in self.fetch_measurement_series()]


_client: Optional[LibreLinkUpClient] = None
_client_lock = threading.Lock()


def get_client() -> LibreLinkUpClient:
    """Return the process-wide client, creating it on first use."""
    global _client
    with _client_lock:
        if _client is None:
            _client = LibreLinkUpClient()
        return _client
