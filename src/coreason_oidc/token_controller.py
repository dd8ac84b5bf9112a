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
Token endpoint calls and the validation of the tokens they return.
"""

from typing import Any

import httpx
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import BaseModel, ConfigDict, Field

from coreason_oidc.configuration import OpenIdConfiguration
from coreason_oidc.http import HttpRequest, HttpResponse
from coreason_oidc.models import ErrorResponse, RefreshToken, TokenResponse
from coreason_oidc.state import NonceController
from coreason_oidc.tokens import AccessToken, IdentityToken
from coreason_oidc.transport import error_body, parse_json_object, send_limited
from coreason_oidc.utils.logger import logger
from coreason_oidc.validator import JwtValidator
from coreason_oidc.verifiers import (
    AccessTokenHashVerifier,
    ClaimsVerifierChain,
    IdTokenNonceVerifier,
    RefreshedIdTokenVerifier,
    StandardClaimsVerifier,
)

tracer = trace.get_tracer(__name__)


class TokenEndpointResponse(BaseModel):
    """
    Raw Token Endpoint answer: the HTTP status and the JSON body, uninterpreted.
    """

    model_config = ConfigDict(frozen=True)

    status_code: int
    body: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_ok(self) -> bool:
        return self.status_code == 200

    def tokens(self) -> TokenResponse:
        return TokenResponse.model_validate(self.body)

    def error(self) -> ErrorResponse:
        return ErrorResponse.from_body(self.body)


class TokenController:
    """
    Exchanges authorization codes and refresh tokens, and validates the resulting tokens.

    Attributes:
        configuration (OpenIdConfiguration): The relying party configuration.
        client (httpx.Client): The HTTP client used for the Token Endpoint.
        validator (JwtValidator): Signature and claims validation.
        nonce_controller (NonceController): Access to the stored nonce.
    """

    def __init__(
        self,
        configuration: OpenIdConfiguration,
        client: httpx.Client,
        validator: JwtValidator,
        nonce_controller: NonceController,
    ) -> None:
        self.configuration = configuration
        self.client = client
        self.validator = validator
        self.nonce_controller = nonce_controller

    def get_tokens(self, request: HttpRequest) -> TokenEndpointResponse:
        """
        Exchanges the authorization code received on the callback for tokens.

        The redirect URI sent is the one built for the current request, which must equal the one
        used in the authorization request.
        """
        form = {
            "client_id": self.configuration.client_id,
            "client_secret": self.configuration.client_secret.get_secret_value(),
            "grant_type": "authorization_code",
            "code": request.get_parameter("code") or "",
            "redirect_uri": self.configuration.build_redirect_uri(request),
        }
        return self._post(form, "authorization_code")

    def refresh_tokens(self, refresh_token: RefreshToken) -> TokenEndpointResponse:
        """Requests new tokens with a refresh token."""
        form = {
            "client_id": self.configuration.client_id,
            "client_secret": self.configuration.client_secret.get_secret_value(),
            "grant_type": "refresh_token",
            "refresh_token": refresh_token.get_token(),
        }
        return self._post(form, "refresh_token")

    def _post(self, form: dict[str, str], grant_type: str) -> TokenEndpointResponse:
        endpoint = self.configuration.provider_metadata.token_endpoint
        with tracer.start_as_current_span("token_exchange") as span:
            span.set_attribute("oauth.grant_type", grant_type)
            try:
                response = send_limited(
                    self.client,
                    "POST",
                    endpoint,
                    data=form,
                    headers={"Accept": "application/json"},
                    timeout=self.configuration.http_timeout,
                )
                body = parse_json_object(response) if response.status_code == 200 else error_body(response)
            except Exception as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise

            span.set_attribute("http.status_code", response.status_code)
            if response.status_code != 200:
                span.set_status(Status(StatusCode.ERROR, f"HTTP {response.status_code}"))
            logger.debug(f"Token endpoint answered {response.status_code} for grant {grant_type}")
            return TokenEndpointResponse(status_code=response.status_code, body=body)

    def _standard_verifier(self) -> StandardClaimsVerifier:
        metadata = self.configuration.provider_metadata
        return StandardClaimsVerifier(
            issuer=metadata.issuer,
            client_id=self.configuration.client_id,
            required_audience=self.configuration.required_audience,
            accepts_unsigned="none" in metadata.id_token_signing_algorithms_supported,
        )

    def validate_id_token(self, id_token: IdentityToken, request: HttpRequest, response: HttpResponse) -> dict[str, Any]:
        """
        Validates an ID Token from the authorization code exchange, including the nonce.

        The stored nonce is removed whatever the outcome.
        """
        expected_nonce_hash = None
        if self.configuration.use_nonce:
            expected_nonce = self.nonce_controller.get(request, response)
            if expected_nonce is not None:
                expected_nonce_hash = self.nonce_controller.get_nonce_hash(expected_nonce)

        try:
            return self.validator.validate(
                id_token.jwt,
                ClaimsVerifierChain(
                    self._standard_verifier(),
                    IdTokenNonceVerifier(expected_nonce_hash, self.configuration.use_nonce),
                ),
            )
        finally:
            self.nonce_controller.remove(request, response)

    def validate_refreshed_id_token(self, previous: IdentityToken, id_token: IdentityToken) -> dict[str, Any]:
        """Validates an ID Token obtained by refresh against the previously held one."""
        return self.validator.validate(
            id_token.jwt,
            ClaimsVerifierChain(self._standard_verifier(), RefreshedIdTokenVerifier(previous.claims)),
        )

    def validate_access_token(self, access_token: AccessToken, id_token_alg: str, id_token_claims: dict[str, Any]) -> None:
        """Checks the ID Token's `at_hash` claim, if any, against the access token."""
        AccessTokenHashVerifier(access_token.token, id_token_alg).verify(id_token_claims)
