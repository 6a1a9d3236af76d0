"""Login and token refresh against the remote service."""

import logging
from typing import Optional

import httpx

from space_sync.errors import AuthExpired, RemoteUnavailable
from space_sync.models.config import RemoteConfig
from space_sync.models.remote import TokenSet
from space_sync.remote.client import build_http_client, raise_for_remote_status

logger = logging.getLogger(__name__)

LOGIN_PATH = "/token"
REFRESH_PATH = "/token/refresh"


class RemoteAuthClient:
    def __init__(self, config: RemoteConfig, http_client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._http = http_client or build_http_client(config)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _post(self, path: str, body: dict, action: str) -> TokenSet:
        try:
            response = await self._http.post(path, json=body)
        except httpx.HTTPError as exc:
            raise RemoteUnavailable(f"{action} failed: {exc}") from exc
        if response.status_code == 400:
            raise AuthExpired(f"{action} rejected: {response.text[:200]}")
        raise_for_remote_status(response, action)
        try:
            return TokenSet.from_response(response.json())
        except (KeyError, ValueError) as exc:
            raise RemoteUnavailable(f"{action} returned an unreadable token") from exc

    async def login(self) -> TokenSet:
        logger.info("Logging in company=%s cluster=%s", self.config.company, self.config.cluster)
        return await self._post(
            LOGIN_PATH,
            {"username": self.config.username, "password": self.config.password},
            "Login",
        )

    async def refresh(self, refresh_token: str) -> TokenSet:
        return await self._post(REFRESH_PATH, {"refreshToken": refresh_token}, "Token refresh")
