"""Async REST client for the Firebase Realtime Database holding samples and forecasts."""

import logging
import os
import time
from typing import Any

import httpx

from occupancy.store.credentials import (
    JWT_BEARER_GRANT,
    Credential,
    ServiceKey,
    build_assertion,
    credential_expired,
)

logger = logging.getLogger(__name__)

DATABASE_URL_ENV = "OCCUPANCY_DATABASE_URL"


class RemoteStoreError(Exception):
    """Raised when the remote store cannot be reached or rejects a request."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class AuthError(RemoteStoreError):
    """Raised when exchanging the service-account assertion for a token fails."""


class RemoteStore:
    """Thin wrapper around the Realtime Database REST API.

    Every path maps to ``{database_url}/{path}.json``. The client owns its
    ``Credential`` and refreshes it lazily: ``ensure_credential`` is cheap
    while the token is valid, so callers invoke it once before each batch
    of requests.
    """

    def __init__(
        self,
        service_key: ServiceKey,
        database_url: str | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.database_url = (database_url or os.environ.get(DATABASE_URL_ENV, "")).rstrip("/")
        if not self.database_url:
            raise RemoteStoreError(f"{DATABASE_URL_ENV} not set")
        self.service_key = service_key
        self.credential: Credential | None = None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self.client.aclose()

    async def ensure_credential(self, now: float | None = None) -> Credential:
        """Return a valid credential, exchanging a fresh assertion if needed."""
        if now is None:
            now = time.time()
        if self.credential is not None and not credential_expired(self.credential, now):
            return self.credential

        assertion = build_assertion(self.service_key, now)
        try:
            resp = await self.client.post(
                self.service_key.token_uri,
                data={"grant_type": JWT_BEARER_GRANT, "assertion": assertion},
            )
        except httpx.RequestError as e:
            logger.error("Token request failed: %s", e)
            raise AuthError(f"Token request failed: {e}") from e

        if resp.status_code >= 400:
            logger.error("Token endpoint %d: %s", resp.status_code, resp.text)
            raise AuthError(f"HTTP {resp.status_code}: {resp.text}", resp.status_code)

        try:
            self.credential = Credential.from_token_response(resp.json(), now)
        except ValueError as e:
            logger.error("Unusable token response: %s", e)
            raise AuthError(f"Unusable token response: {e}") from e

        logger.info(
            "Store credential refreshed, valid for %ds",
            self.credential.expires_at - now,
        )
        return self.credential

    async def _request(self, method: str, path: str, payload: Any = None) -> httpx.Response:
        credential = await self.ensure_credential()
        url = f"{self.database_url}/{path}.json"
        try:
            resp = await self.client.request(
                method,
                url,
                params={"access_token": credential.token},
                json=payload,
            )
        except httpx.RequestError as e:
            logger.error("Store request failed: %s %s -> %s", method, path, e)
            raise RemoteStoreError(f"Request failed: {e}") from e

        if resp.status_code >= 400:
            logger.error("Store %d: %s %s -> %s", resp.status_code, method, path, resp.text)
            raise RemoteStoreError(f"HTTP {resp.status_code}: {resp.text}", resp.status_code)

        logger.debug("Store %s %s -> %d", method, path, resp.status_code)
        return resp

    async def get(self, path: str) -> Any:
        """Fetch the JSON value at ``path``. Returns None for an empty node."""
        resp = await self._request("GET", path)
        try:
            return resp.json()
        except ValueError as e:
            raise RemoteStoreError(f"Invalid JSON at {path}: {e}") from e

    async def set(self, path: str, payload: Any) -> None:
        """Replace the value at ``path``."""
        await self._request("PUT", path, payload)

    async def update(self, path: str, patch: dict) -> None:
        """Merge ``patch`` into the object at ``path``."""
        await self._request("PATCH", path, patch)
