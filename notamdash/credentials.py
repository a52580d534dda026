"""Credential providers for the NOTAM gateway."""
import asyncio
import logging
import os
from abc import ABC, abstractmethod
from typing import Optional

import requests

from notamdash.config import Config

logger = logging.getLogger(__name__)


class CredentialProvider(ABC):
    """
    Supplies an opaque access token and refreshes it on demand.
    """

    @property
    @abstractmethod
    def token(self) -> Optional[str]:
        """Current access token, or None when unauthenticated."""

    @abstractmethod
    async def refresh_token(self) -> Optional[str]:
        """Obtain a new access token and return it."""


class StaticCredentialProvider(CredentialProvider):
    """
    Token taken from configuration (NOTAM_API_KEY).

    Refreshing re-reads the environment, so a rotated key is picked up
    without a restart.
    """

    def __init__(self, token: Optional[str] = None):
        self._token = token if token is not None else (Config.NOTAM_API_KEY or None)
        self.refresh_count = 0

    @property
    def token(self) -> Optional[str]:
        return self._token

    async def refresh_token(self) -> Optional[str]:
        self.refresh_count += 1
        self._token = os.getenv('NOTAM_API_KEY') or self._token
        logger.info("Reloaded API key from environment")
        return self._token


class TokenEndpointCredentialProvider(CredentialProvider):
    """
    Exchanges a refresh token for an access token at NOTAM_AUTH_URL.
    """

    def __init__(self, auth_url: Optional[str] = None, refresh_token: Optional[str] = None,
                 session: Optional[requests.Session] = None):
        self.config = Config()
        self.auth_url = auth_url or self.config.NOTAM_AUTH_URL
        self._refresh_token = refresh_token or self.config.NOTAM_REFRESH_TOKEN
        self._token: Optional[str] = self.config.NOTAM_API_KEY or None
        self.session = session or requests.Session()

    @property
    def token(self) -> Optional[str]:
        return self._token

    def _request_token(self) -> Optional[str]:
        response = self.session.post(
            self.auth_url,
            data={'grant_type': 'refresh_token', 'refresh_token': self._refresh_token},
            headers={'Accept': 'application/json'},
            timeout=self.config.REQUEST_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
        payload = response.json()
        # Some servers rotate the refresh token too
        self._refresh_token = payload.get('refresh_token', self._refresh_token)
        return payload.get('access_token')

    async def refresh_token(self) -> Optional[str]:
        """
        Refresh the access token.

        Raises:
            requests.exceptions.RequestException: token endpoint failure
        """
        loop = asyncio.get_running_loop()
        self._token = await loop.run_in_executor(None, self._request_token)
        logger.info("Access token refreshed")
        return self._token


def get_credential_provider() -> CredentialProvider:
    """
    Factory function to pick the credential provider from configuration.
    """
    if Config.NOTAM_AUTH_URL and Config.NOTAM_REFRESH_TOKEN:
        logger.info("Using token endpoint credentials")
        return TokenEndpointCredentialProvider()
    logger.info("Using static API key credentials")
    return StaticCredentialProvider()
