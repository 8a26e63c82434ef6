"""
Download hooks

A hook receives the outgoing ``requests.Request`` for a dataset and adds
whatever the provider needs to authenticate it. Each hook declares the
credentials it needs so missing configuration is caught before any download.
"""

import logging
from typing import Dict, List, Optional, Type

import requests

from transitnexus.config.config_main import credentials_config
from transitnexus.errors import FetchError

logger = logging.getLogger(__name__)


class DownloadHook:
    required_credentials: tuple = ()

    def __init__(self, credentials=credentials_config):
        self.credentials = credentials

    def missing_credentials(self) -> List[str]:
        return [name for name in self.required_credentials if not self.credentials.get(name)]

    def __call__(self, request: requests.Request):
        raise NotImplementedError


class BodsApiKeyHook(DownloadHook):
    """Bus Open Data Service: API key as a query parameter."""

    required_credentials = ("bods_api_key",)

    def __call__(self, request: requests.Request):
        request.params["api_key"] = self.credentials.get("bods_api_key")


class NetworkRailBasicAuthHook(DownloadHook):
    required_credentials = ("networkrail_username", "networkrail_password")

    def __call__(self, request: requests.Request):
        request.auth = (
            self.credentials.get("networkrail_username"),
            self.credentials.get("networkrail_password"),
        )


class NationalRailTokenHook(DownloadHook):
    """National Rail open data: log in for a token, send it as X-Auth-Token."""

    required_credentials = ("nationalrail_username", "nationalrail_password")

    def __init__(self, credentials=credentials_config, session: Optional[requests.Session] = None):
        super().__init__(credentials)
        self.session = session or requests.Session()

    def login(self) -> str:
        try:
            response = self.session.post(
                self.credentials.get("nationalrail_auth_url"),
                data={
                    "username": self.credentials.get("nationalrail_username"),
                    "password": self.credentials.get("nationalrail_password"),
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=30
            )
            response.raise_for_status()
            token = response.json().get("token")
        except (requests.RequestException, ValueError) as e:
            raise FetchError(f"National Rail authentication failed: {e}") from e

        if not token:
            raise FetchError("National Rail authentication returned no token")
        return token

    def __call__(self, request: requests.Request):
        request.headers["X-Auth-Token"] = self.login()


DOWNLOAD_HOOKS: Dict[str, Type[DownloadHook]] = {
    "bods-api-key": BodsApiKeyHook,
    "networkrail-basic-auth": NetworkRailBasicAuthHook,
    "nationalrail-token": NationalRailTokenHook,
}

