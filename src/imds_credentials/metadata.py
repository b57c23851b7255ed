"""Instance metadata service client.

Discovers the instance role, fetches its temporary credentials and reads the
region from the instance identity document. Other than renewing a rejected
session token once, no retries happen here.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

import httpx
from pydantic import ValidationError

from imds_credentials.config import Config
from imds_credentials.models.credentials import IdentityDocument, RoleCredentials
from imds_credentials.utils.errors import MalformedResponse, TransportError, UnexpectedStatus

logger = logging.getLogger(__name__)


TOKEN_HEADER = "X-aws-ec2-metadata-token"
TOKEN_TTL_HEADER = "X-aws-ec2-metadata-token-ttl-seconds"
# Session tokens are renewed this many seconds before their TTL runs out
TOKEN_RENEW_LEEWAY = 60


class MetadataFetcher:
    """Reads role credentials and region from the instance metadata service."""

    def __init__(self, config: Config, clock: Callable[[], float] = time.monotonic) -> None:
        self._config = config
        self._clock = clock
        self._token: str | None = None
        self._token_expires_at = 0.0
        self._http = httpx.Client(timeout=config.settings.timeout)

    def fetch_role_name(self) -> str:
        """Return the name of the IAM role attached to the instance."""
        url = self._config.credentials_url()
        body = self._get(url).text
        names = [line.strip() for line in body.splitlines() if line.strip()]
        if not names:
            raise MalformedResponse(f"No role name listed at {url}", url)
        if len(names) > 1:
            logger.warning(f"Metadata service lists {len(names)} roles, using '{names[0]}'")
        return names[0]

    def fetch_credentials(self, role_name: str) -> RoleCredentials:
        """Fetch the temporary credentials of `role_name`.

        Raises:
            TransportError: The service could not be reached.
            UnexpectedStatus: The service answered with a non-200 status.
            MalformedResponse: A required field is missing or unparsable.
        """
        url = self._config.credentials_url(role_name)
        data = self._get_json(url)
        try:
            credentials = RoleCredentials.model_validate(data)
        except ValidationError as e:
            raise MalformedResponse(f"Credential document from {url} is malformed: {e}", url) from e

        if credentials.code != "Success":
            raise MalformedResponse(
                f"Credential document from {url} reports Code={credentials.code!r}", url
            )
        return credentials

    def fetch_identity_document(self) -> IdentityDocument:
        """Fetch the instance identity document."""
        url = self._config.identity_document_url
        data = self._get_json(url)
        try:
            return IdentityDocument.model_validate(data)
        except ValidationError as e:
            raise MalformedResponse(f"Identity document from {url} is malformed: {e}", url) from e

    def fetch_region(self) -> str:
        """Return the region the instance runs in."""
        return self.fetch_identity_document().region

    def _get_json(self, url: str) -> Any:
        response = self._get(url)
        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponse(f"Body from {url} is not valid JSON", url) from e
        if not isinstance(data, dict):
            raise MalformedResponse(f"Body from {url} is not a JSON object", url)
        return data

    def _get(self, url: str) -> httpx.Response:
        """GET a metadata resource, mapping failures onto the error taxonomy."""
        response = self._send_get(url)

        if response.status_code == 401 and self._config.settings.use_token:
            # Session token expired or was revoked server-side; retry once with a new one.
            logger.info("Metadata service rejected the session token, requesting a new one")
            self._token = None
            response = self._send_get(url)

        if response.status_code != 200:
            raise UnexpectedStatus(response.status_code, url, response.text)
        return response

    def _send_get(self, url: str) -> httpx.Response:
        headers = {}
        if self._config.settings.use_token:
            headers[TOKEN_HEADER] = self._session_token()

        logger.debug(f"GET {url}")
        return self._send("GET", url, headers)

    def _session_token(self) -> str:
        """Get an IMDSv2 session token, reusing the cached one until it nears its TTL."""
        if self._token and self._clock() < self._token_expires_at:
            return self._token

        url = self._config.token_url
        headers = {TOKEN_TTL_HEADER: str(self._config.settings.token_ttl)}
        logger.debug(f"PUT {url}")
        response = self._send("PUT", url, headers)
        if response.status_code != 200:
            raise UnexpectedStatus(response.status_code, url, response.text)

        token = response.text.strip()
        if not token:
            raise MalformedResponse(f"Empty session token from {url}", url)
        ttl = self._config.settings.token_ttl
        self._token = token
        self._token_expires_at = self._clock() + ttl - min(TOKEN_RENEW_LEEWAY, ttl / 2)
        return token

    def _send(self, method: str, url: str, headers: dict[str, str]) -> httpx.Response:
        try:
            return self._http.request(method, url, headers=headers)
        except httpx.TimeoutException as e:
            raise TransportError(f"Metadata request to {url} timed out: {e}", url) from e
        except httpx.HTTPError as e:
            raise TransportError(f"Could not connect to metadata service at {url}: {e}", url) from e

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._http.close()

    def __enter__(self) -> MetadataFetcher:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
