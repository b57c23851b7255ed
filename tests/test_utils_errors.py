"""Tests for utils/errors.py — error codes and hint matching."""
from imds_credentials.utils.errors import (
    InitializationError,
    MalformedResponse,
    TransportError,
    UnexpectedStatus,
    _get_hint,
    describe_error,
)

URL = "http://169.254.169.254/latest/meta-data/iam/security-credentials/"


# ── _get_hint tests ───────────────────────────────────────────────────

def test_hint_404():
    assert "role" in _get_hint("Unexpected status (HTTP 404) from x").lower()


def test_hint_401():
    assert "IMDSv2" in _get_hint("Unexpected status (HTTP 401) from x")


def test_hint_401_covers_expired_token():
    hint = _get_hint("Unexpected status (HTTP 401) from x")
    assert "expired" in hint
    assert "USE_TOKEN" in hint
    assert "TOKEN_TTL" in hint


def test_hint_timeout():
    assert "timed out" in _get_hint("Metadata request to x timed out").lower()


def test_hint_connection():
    assert "ec2" in _get_hint("Could not connect to metadata service").lower()


def test_hint_no_match():
    assert _get_hint("something else entirely") is None


# ── describe_error ───────────────────────────────────────────────────

def test_describe_no_role():
    report = describe_error(UnexpectedStatus(404, URL, "Not Found"))
    assert report["error"] is True
    assert report["code"] == "NO_ROLE"
    assert report["url"] == URL
    assert "hint" in report


def test_describe_unexpected_status():
    report = describe_error(UnexpectedStatus(500, URL))
    assert report["code"] == "UNEXPECTED_STATUS"
    assert "HTTP 500" in report["message"]


def test_describe_transport_error():
    report = describe_error(TransportError("Could not connect to metadata service", URL))
    assert report["code"] == "TRANSPORT_ERROR"


def test_describe_malformed():
    report = describe_error(MalformedResponse("Expiration: Field required"))
    assert report["code"] == "MALFORMED_RESPONSE"
    assert "url" not in report


def test_describe_initialization_error():
    cause = TransportError("timed out")
    error = InitializationError(cause)
    assert error.cause is cause
    assert describe_error(error)["code"] == "INITIALIZATION_ERROR"


def test_describe_unknown_error():
    report = describe_error(ValueError("boom"))
    assert report == {"error": True, "code": "RUNTIME_ERROR", "message": "boom"}


def test_unexpected_status_truncates_body():
    error = UnexpectedStatus(503, URL, "x" * 1000)
    assert len(str(error)) < 400
