"""LinkupTracker — LibreLinkUp client errors."""

from typing import Optional


class LibreLinkUpError(Exception):
    """Base class for every failure raised by the LibreLinkUp client."""


class ConfigurationError(LibreLinkUpError):
    """Credentials are missing or invalid."""


class AuthenticationError(LibreLinkUpError):
    """Login returned a status the client does not understand."""

    def __init__(self, message: str, status: Optional[object] = None) -> None:
        super().__init__(message)
        self.status = status


class ConsentRequiredError(LibreLinkUpError):
    """Upstream demands a consent step but did not say which one."""


class ConsentRejectedError(LibreLinkUpError):
    """Accepting a consent step did not return status 0."""

    def __init__(self, step_type: str, status: Optional[object]) -> None:
        super().__init__(f"LibreLinkUp acceptance of '{step_type}' failed (status {status})")
        self.step_type = step_type
        self.status = status


class TooManyConsentStepsError(LibreLinkUpError):
    """Upstream kept asking for consent after the retry cap was reached."""


class PatientNotFoundError(LibreLinkUpError):
    """The connections list did not contain a patient identifier."""


class MeasurementMissingError(LibreLinkUpError):
    """No known measurement field was found in a graph response."""


class UpstreamProtocolError(LibreLinkUpError):
    """The response body was not the JSON object the protocol expects."""

    def __init__(self, message: str, status: Optional[object] = None) -> None:
        super().__init__(message)
        self.status = status


class TransportError(LibreLinkUpError):
    """Network-level failure talking to LibreLinkUp."""
