# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_identity

"""
Provider metadata component for fetching and caching the OpenID Provider discovery document.
"""

import threading
from typing import Any

import httpx

from coreason_oidc.exceptions import ConfigurationError, TransportError
from coreason_oidc.transport import parse_json_object, send_limited
from coreason_oidc.utils.logger import logger

WELL_KNOWN_SUFFIX = "/.well-known/openid-configuration"


def discovery_url(provider_uri: str) -> str:
    """
    Appends the discovery suffix to the provider URI unless it is already there.

    Args:
        provider_uri: The OpenID Provider base URI (e.g. https://idp.example.com/realms/demo).

    Returns:
        str: The discovery document URL.
    """
    url = provider_uri.rstrip("/")
    if not url.endswith(WELL_KNOWN_SUFFIX):
        url = url + WELL_KNOWN_SUFFIX
    return url


class ProviderMetadataResolver:
    """
    Fetches the Identity Provider's discovery document once per provider URI and caches it.

    The cache is process-wide for the lifetime of the resolver; there is no TTL and no retry.
    Discovery failures abort configuration resolution.

    Attributes:
        client (httpx.Client): The HTTP client used for discovery.
        timeout (float): Timeout in seconds for the discovery request.
    """

    def __init__(self, client: httpx.Client, timeout: float = 5.0) -> None:
        """
        Initialize the ProviderMetadataResolver.

        Args:
            client: The HTTP client to use for requests.
            timeout: Timeout in seconds for the discovery request. Defaults to 5.0.
        """
        self.client = client
        self.timeout = timeout
        self._documents: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def get_document(self, provider_uri: str) -> dict[str, Any]:
        """
        Returns the discovery document for the provider, fetching it on first use.

        An empty provider URI yields an empty document; every endpoint must then be configured explicitly.

        Args:
            provider_uri: The OpenID Provider base URI, with or without the discovery suffix.

        Returns:
            dict[str, Any]: The provider configuration document.

        Raises:
            ConfigurationError: If the document cannot be fetched or the provider answers with a non-200 status.
        """
        provider_uri = (provider_uri or "").strip()
        cached = self._documents.get(provider_uri)
        if cached is not None:
            return cached

        if not provider_uri:
            document: dict[str, Any] = {}
        else:
            document = self._fetch(discovery_url(provider_uri))

        # Racing threads may both fetch; the last identical write wins
        with self._lock:
            self._documents[provider_uri] = document
        return document

    def _fetch(self, url: str) -> dict[str, Any]:
        logger.debug(f"Fetching OpenID Provider configuration document from {url}")
        try:
            response = send_limited(
                self.client,
                "GET",
                url,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except TransportError as e:
            raise ConfigurationError(f"Unable to retrieve OpenID Provider's [{url}] configuration document: {e}") from e

        if response.status_code != 200:
            raise ConfigurationError(
                f"Unable to retrieve OpenID Provider's [{url}] configuration document, "
                f"HTTP response code : [{response.status_code}]"
            )

        try:
            return parse_json_object(response)
        except TransportError as e:
            raise ConfigurationError(f"Invalid OpenID Provider configuration document from {url}: {e}") from e

    def clear(self) -> None:
        """Drops every cached document."""
        with self._lock:
            self._documents.clear()
