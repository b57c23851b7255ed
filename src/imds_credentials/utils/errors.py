"""Error taxonomy and structured error reports for refresh failures."""

from __future__ import annotations


class MetadataError(Exception):
    """Base class for metadata service failures."""

    def __init__(self, message: str, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class TransportError(MetadataError):
    """The metadata service could not be reached (connection error, timeout)."""


class UnexpectedStatus(MetadataError):
    """The metadata service answered with a non-success status."""

    def __init__(self, status_code: int, url: str, body: str = "") -> None:
        detail = f": {body.strip()[:200]}" if body.strip() else ""
        super().__init__(f"Unexpected status (HTTP {status_code}) from {url}{detail}", url)
        self.status_code = status_code


class MalformedResponse(MetadataError):
    """A response body was missing a field or could not be parsed."""


class InitializationError(Exception):
    """The initial credential fetch failed; wraps the underlying cause."""

    def __init__(self, cause: BaseException) -> None:
        super().__init__(f"Initial credential fetch failed: {cause}")
        self.cause = cause


class CredentialsUnavailable(RuntimeError):
    """No snapshot has been committed yet."""


# Actionable hints keyed by error substring
_ERROR_HINTS: list[tuple[str, str]] = [
    ("http 404", "No IAM role attached to the instance, or the role name is stale"),
    (
        "http 401",
        "IMDSv2 session token missing, expired or revoked — set IMDS_CREDENTIALS_USE_TOKEN=true, "
        "or check IMDS_CREDENTIALS_TOKEN_TTL if it is already on",
    ),
    ("http 403", "Metadata access is disabled for this instance"),
    ("timeout", "Metadata request timed out — check IMDS_CREDENTIALS_TIMEOUT and hop limit"),
    ("timed out", "Metadata request timed out — check IMDS_CREDENTIALS_TIMEOUT and hop limit"),
    ("connect", "Metadata service unreachable — is this running on an EC2 instance?"),
    ("expiration", "Credential document has no usable Expiration"),
    ("json", "Metadata service returned a body that is not valid JSON"),
]


def _get_hint(error_message: str) -> str | None:
    """Match an error message to an actionable hint."""
    lower = error_message.lower()
    for pattern, hint in _ERROR_HINTS:
        if pattern.lower() in lower:
            return hint
    return None


def _error_code(error: BaseException) -> str:
    if isinstance(error, InitializationError):
        return "INITIALIZATION_ERROR"
    if isinstance(error, UnexpectedStatus):
        if error.status_code == 404:
            return "NO_ROLE"
        return "UNEXPECTED_STATUS"
    if isinstance(error, TransportError):
        return "TRANSPORT_ERROR"
    if isinstance(error, MalformedResponse):
        return "MALFORMED_RESPONSE"
    return "RUNTIME_ERROR"


def describe_error(error: BaseException) -> dict[str, object]:
    """Build a structured report for an error.

    {"error": true, "code": "TRANSPORT_ERROR", "message": "...", "hint": "..."}
    """
    message = str(error)
    report: dict[str, object] = {
        "error": True,
        "code": _error_code(error),
        "message": message,
    }
    url = getattr(error, "url", None)
    if url:
        report["url"] = url
    hint = _get_hint(message)
    if hint:
        report["hint"] = hint
    return report
