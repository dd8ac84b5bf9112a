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
Redirects to the provider: the authentication request and RP-initiated logout.
"""

from urllib.parse import quote, urlencode

from coreason_oidc.configuration import OpenIdConfiguration
from coreason_oidc.http import HttpRequest, HttpResponse, RequestData, full_request_url
from coreason_oidc.models import AuthenticationStatus, OpenIdNonce, OpenIdState
from coreason_oidc.state import NonceController, StateController
from coreason_oidc.storage import get_storage
from coreason_oidc.utils.logger import logger

ORIGINAL_REQUEST_KEY = "oidc.original-request-url"
ORIGINAL_REQUEST_DATA_KEY = "oidc.original-request-data"


def append_query(url: str, params: list[tuple[str, str]]) -> str:
    """Appends query parameters to a URL that may already carry a query string."""
    if not params:
        return url
    query = urlencode(params, quote_via=quote)
    return f"{url}{'&' if '?' in url else '?'}{query}"


class AuthenticationController:
    """
    Builds the Authorization Endpoint redirect and the logout redirects.

    Attributes:
        configuration (OpenIdConfiguration): The relying party configuration.
        state_controller (StateController): Persists the expected state.
        nonce_controller (NonceController): Persists the raw nonce.
    """

    def __init__(
        self,
        configuration: OpenIdConfiguration,
        state_controller: StateController,
        nonce_controller: NonceController,
    ) -> None:
        self.configuration = configuration
        self.state_controller = state_controller
        self.nonce_controller = nonce_controller

    def authenticate_user(self, request: HttpRequest, response: HttpResponse) -> AuthenticationStatus:
        """
        Redirects the user agent to the Authorization Endpoint.

        A fresh state (and nonce, when enabled) is generated and stored together with the
        original request so the callback can be correlated.

        Returns:
            AuthenticationStatus: Always SEND_CONTINUE.
        """
        configuration = self.configuration
        params: list[tuple[str, str]] = [
            ("scope", configuration.scope),
            ("response_type", configuration.response_type),
            ("client_id", configuration.client_id),
            ("redirect_uri", configuration.build_redirect_uri(request)),
        ]

        state = OpenIdState.generate()
        params.append(("state", state.value))
        self.state_controller.store(state, request, response)

        self._store_request(request, response)

        if configuration.use_nonce:
            nonce = OpenIdNonce.generate()
            # Only the hash leaves the relying party
            params.append(("nonce", self.nonce_controller.get_nonce_hash(nonce)))
            self.nonce_controller.store(nonce, request, response)

        if configuration.response_mode:
            params.append(("response_mode", configuration.response_mode))
        if configuration.display:
            params.append(("display", configuration.display))
        if configuration.prompt:
            params.append(("prompt", configuration.prompt))
        params.extend(configuration.extra_parameters)

        auth_url = append_query(configuration.provider_metadata.authorization_endpoint, params)
        logger.debug(f"Redirecting for authentication to {configuration.provider_metadata.authorization_endpoint}")
        response.send_redirect(auth_url)
        return AuthenticationStatus.SEND_CONTINUE

    def _store_request(self, request: HttpRequest, response: HttpResponse) -> None:
        storage = get_storage(self.configuration, request, response)
        storage.store(ORIGINAL_REQUEST_KEY, full_request_url(request))
        if self.configuration.redirect_to_original_resource:
            storage.store(ORIGINAL_REQUEST_DATA_KEY, RequestData.of(request).to_json())

    def logout(self, request: HttpRequest, response: HttpResponse, id_token_hint: str | None) -> None:
        """
        Ends the local session and sends the user agent to the configured destination.

        In order of precedence: the provider's end-session endpoint (when notification is enabled and
        the provider has one), the configured logout redirect URI, or a new authentication request.
        """
        logout = self.configuration.logout_configuration

        session = request.get_session(create=False)
        if session is not None:
            session.invalidate()

        end_session_endpoint = self.configuration.provider_metadata.end_session_endpoint
        if logout.notify_provider and end_session_endpoint:
            params: list[tuple[str, str]] = []
            if id_token_hint:
                params.append(("id_token_hint", id_token_hint))
            if logout.redirect_uri:
                params.append(("post_logout_redirect_uri", logout.build_redirect_uri(request)))
            logger.info("Logging out, notifying the OpenID Provider")
            response.send_redirect(append_query(end_session_endpoint, params))
        elif logout.redirect_uri:
            logger.info("Logging out, redirecting to the logout redirect URI")
            response.send_redirect(logout.build_redirect_uri(request))
        else:
            logger.info("Logging out, starting a new authentication")
            self.authenticate_user(request, response)
