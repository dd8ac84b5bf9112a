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
OpenIdAuthenticationMechanism component orchestrating the Authorization Code flow.
"""

from enum import StrEnum
from typing import Any

import httpx
from opentelemetry import trace
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.trace import Status, StatusCode

from coreason_oidc.authentication import ORIGINAL_REQUEST_DATA_KEY, ORIGINAL_REQUEST_KEY, AuthenticationController
from coreason_oidc.config import OpenIdDefinition
from coreason_oidc.configuration import ConfigurationController, OpenIdConfiguration
from coreason_oidc.context import OpenIdContext
from coreason_oidc.exceptions import InvalidTokenError, SessionUnavailableError
from coreason_oidc.http import HttpMessageContext, HttpRequest, HttpResponse, RequestData, RestoredRequest
from coreason_oidc.identity_mapper import IdentityMapper
from coreason_oidc.jwks import KeySelectorCache
from coreason_oidc.models import (
    INVALID_RESULT,
    NOT_VALIDATED_RESULT,
    AuthenticationStatus,
    CredentialValidationResult,
    OpenIdState,
    RefreshToken,
    TokenResponse,
)
from coreason_oidc.provider_metadata import ProviderMetadataResolver
from coreason_oidc.state import NonceController, StateController
from coreason_oidc.storage import get_storage
from coreason_oidc.token_controller import TokenController
from coreason_oidc.tokens import AccessToken, IdentityToken
from coreason_oidc.userinfo import UserInfoController
from coreason_oidc.utils.logger import anonymize, logger
from coreason_oidc.validator import JwtValidator

tracer = trace.get_tracer(__name__)


class FlowState(StrEnum):
    UNAUTHENTICATED = "unauthenticated"
    AWAITING_CALLBACK = "awaiting_callback"
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"
    LOGGED_OUT = "logged_out"


def _strip_query(url: str) -> str:
    return url.split("?", 1)[0]


class OpenIdAuthenticationMechanism:
    """
    OpenID Connect relying party driven by the host container once per request.

    Handles resources via context manager: an HTTP client created by the mechanism is closed on exit.

    Attributes:
        configuration (OpenIdConfiguration): The relying party configuration.
        key_selectors (KeySelectorCache): Cache of JWT key selectors.
    """

    def __init__(
        self,
        configuration: OpenIdConfiguration,
        client: httpx.Client | None = None,
        key_selectors: KeySelectorCache | None = None,
    ) -> None:
        """
        Initialize the OpenIdAuthenticationMechanism.

        Args:
            configuration: The resolved configuration.
            client: External HTTP client (optional). If not provided, one is created and owned by the mechanism.
            key_selectors: Shared key selector cache (optional).
        """
        self.configuration = configuration
        self._internal_client = client is None
        self._client = client if client is not None else httpx.Client(timeout=configuration.http_timeout)

        # Instrument the client for distributed tracing
        HTTPXClientInstrumentor().instrument_client(self._client)

        self.key_selectors = key_selectors or KeySelectorCache(self._client)
        self.state_controller = StateController(configuration)
        self.nonce_controller = NonceController(configuration)
        self.validator = JwtValidator(configuration, self.key_selectors)
        self.token_controller = TokenController(configuration, self._client, self.validator, self.nonce_controller)
        self.userinfo_controller = UserInfoController(self._client)
        self.authentication_controller = AuthenticationController(
            configuration, self.state_controller, self.nonce_controller
        )
        self.identity_mapper = IdentityMapper(configuration.claims_configuration)

    @classmethod
    def from_definition(
        cls,
        definition: OpenIdDefinition | None = None,
        client: httpx.Client | None = None,
        configuration_controller: ConfigurationController | None = None,
    ) -> "OpenIdAuthenticationMechanism":
        """
        Resolves the definition (environment variables when omitted) and builds the mechanism.

        Raises:
            ConfigurationError: If discovery fails or the configuration is invalid.
        """
        definition = definition or OpenIdDefinition()
        internal = client is None
        http_client = client if client is not None else httpx.Client(timeout=definition.http_timeout)
        try:
            controller = configuration_controller or ConfigurationController(
                ProviderMetadataResolver(http_client, timeout=definition.http_timeout)
            )
            configuration = controller.produce(definition)
        except Exception:
            if internal:
                http_client.close()
            raise

        mechanism = cls(configuration, http_client)
        mechanism._internal_client = internal
        return mechanism

    def __enter__(self) -> "OpenIdAuthenticationMechanism":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def close(self) -> None:
        if self._internal_client:
            self._client.close()

    def _anonymize(self, value: str | None) -> str:
        return anonymize(str(value), self.configuration.pii_salt.get_secret_value())

    def flow_state(self, request: HttpRequest, response: HttpResponse) -> FlowState:
        """Where the request's session currently stands in the authentication flow."""
        if request.user_principal is not None:
            return FlowState.AUTHENTICATED
        if self.state_controller.get(request, response) is not None:
            return FlowState.AWAITING_CALLBACK
        return FlowState.UNAUTHENTICATED

    def validate_request(self, http_context: HttpMessageContext) -> AuthenticationStatus:
        """
        Authenticates the current request.

        Emits an OpenTelemetry span `validate_request`.

        Returns:
            AuthenticationStatus: The status to report to the container.

        Raises:
            InvalidTokenError: If a received token fails validation.
            TransportError: If a call to the provider fails.
        """
        with tracer.start_as_current_span("validate_request") as span:
            request = http_context.request
            try:
                if request.user_principal is None:
                    logger.debug("UserPrincipal is not set, authenticate user using OpenId Connect protocol.")
                    status = self._authenticate(http_context)
                else:
                    status = self._validate_authenticated(http_context, request.user_principal)
            except Exception as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise

            span.set_attribute("oidc.authentication_status", str(status))
            return status

    def clean_subject(self, request: HttpRequest, response: HttpResponse) -> None:
        self.logout(request, response)

    def logout(self, request: HttpRequest, response: HttpResponse) -> None:
        """Invalidates the session and redirects according to the logout policy."""
        context = OpenIdContext.from_session(request.get_session(create=False))
        if context is not None:
            context.logout(request, response)
        else:
            self.authentication_controller.logout(request, response, None)
        trace.get_current_span().set_attribute("oidc.flow_state", str(FlowState.LOGGED_OUT))

    def _validate_authenticated(self, http_context: HttpMessageContext, principal: str) -> AuthenticationStatus:
        request, response = http_context.request, http_context.response

        # validate_request runs on every request, so the principal is re-registered each time
        http_context.register_principal(principal)

        context = OpenIdContext.from_session(request.get_session(create=False))
        if context is None or context.access_token is None or context.identity_token is None:
            logger.debug("UserPrincipal is set but the session holds no OpenID context")
            return AuthenticationStatus.SUCCESS

        access_token_expired = context.access_token.is_expired()
        identity_token_expired = context.identity_token.is_expired()

        if (access_token_expired or identity_token_expired) and self.configuration.token_auto_refresh:
            if access_token_expired:
                logger.debug("Access Token is expired. Request new Access Token with Refresh Token.")
            if identity_token_expired:
                logger.debug("Identity Token is expired. Request new Identity Token with Refresh Token.")
            return self._re_authenticate(http_context, context, context.access_token, context.identity_token)

        logout = self.configuration.logout_configuration
        if (logout.access_token_expiry and access_token_expired) or (
            logout.identity_token_expiry and identity_token_expired
        ):
            logger.info("Token expired, logging out")
            self.logout(request, response)
            return AuthenticationStatus.SEND_FAILURE

        return AuthenticationStatus.SUCCESS

    def _authenticate(self, http_context: HttpMessageContext) -> AuthenticationStatus:
        request, response = http_context.request, http_context.response
        received_state = OpenIdState.from_value(request.get_parameter("state"))

        if received_state is None:
            if http_context.is_protected:
                trace.get_current_span().set_attribute("oidc.flow_state", str(FlowState.AWAITING_CALLBACK))
                return self.authentication_controller.authenticate_user(request, response)
            return http_context.do_nothing()

        callback_url = self.configuration.build_redirect_uri(request)
        original_url = self._original_url(request, response)
        request_url = request.request_url

        accepted = [callback_url]
        if self.configuration.redirect_to_original_resource and original_url is not None:
            accepted.append(original_url)
        if request_url not in accepted:
            logger.info(f"OpenID request URL {request_url} not matched with callback {callback_url} or original URL {original_url}")
            return http_context.notify_container_about_login(NOT_VALIDATED_RESULT)

        expected_state = self.state_controller.get(request, response)
        if expected_state is None:
            logger.debug("Expected state not found")
            return http_context.notify_container_about_login(NOT_VALIDATED_RESULT)

        if expected_state != received_state:
            logger.debug("Inconsistent received state, value not matched")
            return http_context.notify_container_about_login(INVALID_RESULT)

        if (
            self.configuration.redirect_to_original_resource
            and original_url is not None
            and request_url != original_url
        ):
            return http_context.redirect(f"{original_url}?{request.query_string or ''}")

        return self._validate_authorization_code(http_context)

    def _original_url(self, request: HttpRequest, response: HttpResponse) -> str | None:
        original_url = get_storage(self.configuration, request, response).get(ORIGINAL_REQUEST_KEY)
        return _strip_query(original_url) if original_url else None

    def _request_data(self, request: HttpRequest, response: HttpResponse) -> RequestData | None:
        value = get_storage(self.configuration, request, response).get(ORIGINAL_REQUEST_DATA_KEY)
        return RequestData.from_json(value) if value else None

    def _validate_authorization_code(self, http_context: HttpMessageContext) -> AuthenticationStatus:
        request, response = http_context.request, http_context.response

        error = request.get_parameter("error")
        if error:
            error_description = request.get_parameter("error_description")
            logger.warning(f"Error occurred in receiving Authorization Code : {error} caused by {error_description}")
            return http_context.notify_container_about_login(INVALID_RESULT)

        self.state_controller.remove(request, response)

        logger.debug("Authorization Code received, now fetching Access token & Id token")
        result = self.token_controller.get_tokens(request)
        if not result.is_ok:
            token_error = result.error()
            logger.warning(
                f"Error occurred in validating Authorization Code : {token_error.error} "
                f"caused by {token_error.error_description}"
            )
            return http_context.notify_container_about_login(INVALID_RESULT)

        context = OpenIdContext(self.configuration, self.userinfo_controller, self.authentication_controller)
        try:
            validation_result = self._validate_tokens(http_context, context, result.tokens())
        finally:
            # The nonce is single-use, whether or not the token response is accepted
            self.nonce_controller.remove(request, response)

        session = request.get_session(create=True)
        if session is None:
            raise SessionUnavailableError("The container did not provide a session")
        context.bind(session)

        caller_name = validation_result.caller_name or ""
        http_context.set_register_session(caller_name, validation_result.caller_groups)

        if self.configuration.redirect_to_original_resource and self.configuration.restore_original_request:
            request_data = self._request_data(request, response)
            if request_data is not None:
                http_context.with_request(RestoredRequest(request, request_data))

        storage = get_storage(self.configuration, request, response)
        storage.remove(ORIGINAL_REQUEST_KEY)
        storage.remove(ORIGINAL_REQUEST_DATA_KEY)

        logger.info(f"Authenticated caller {self._anonymize(context.subject)}")
        trace.get_current_span().set_attribute("oidc.flow_state", str(FlowState.AUTHENTICATED))
        return http_context.notify_container_about_login(validation_result)

    def _re_authenticate(
        self,
        http_context: HttpMessageContext,
        context: OpenIdContext,
        access_token: AccessToken,
        identity_token: IdentityToken,
    ) -> AuthenticationStatus:
        request, response = http_context.request, http_context.response
        session = request.get_session(create=True)
        if session is None:
            raise SessionUnavailableError("The container did not provide a session")

        with session.lock:
            # Another request of the same session may have refreshed already
            if context.access_token is not access_token or context.identity_token is not identity_token:
                return AuthenticationStatus.SUCCESS
            if not (access_token.is_expired() or identity_token.is_expired()):
                return AuthenticationStatus.SUCCESS

            trace.get_current_span().set_attribute("oidc.flow_state", str(FlowState.REFRESHING))
            if context.refresh_token is None:
                status = AuthenticationStatus.SEND_FAILURE
            else:
                status = self._refresh_tokens(http_context, context, context.refresh_token)

            if status != AuthenticationStatus.SUCCESS:
                logger.debug("Failed to refresh token (Refresh Token might be invalid).")
                self.logout(request, response)
            return status

    def _refresh_tokens(
        self, http_context: HttpMessageContext, context: OpenIdContext, refresh_token: RefreshToken
    ) -> AuthenticationStatus:
        result = self.token_controller.refresh_tokens(refresh_token)
        if result.is_ok:
            validation_result = self._validate_tokens(http_context, context, result.tokens())
            # No set_register_session here: re-registering would reset the active session
            return http_context.notify_container_about_login(validation_result)

        token_error = result.error()
        logger.debug(
            f"Error occurred in refreshing Access Token and Refresh Token : {token_error.error} "
            f"caused by {token_error.error_description}"
        )
        return AuthenticationStatus.SEND_FAILURE

    def _validate_tokens(
        self, http_context: HttpMessageContext, context: OpenIdContext, tokens: TokenResponse
    ) -> CredentialValidationResult:
        """
        Validates a token response and stores the tokens in the context.

        The context is only modified once every token check has passed.
        """
        request, response = http_context.request, http_context.response
        min_validity = self.configuration.token_min_validity
        previous = context.identity_token

        if tokens.id_token:
            received = IdentityToken(tokens.id_token, min_validity)
            if previous is None:
                claims = self.token_controller.validate_id_token(received, request, response)
            else:
                # ID Token returned by a refresh
                claims = self.token_controller.validate_refreshed_id_token(previous, received)
            identity_token = received.with_claims(claims)
        elif previous is not None:
            identity_token = previous
        else:
            raise InvalidTokenError("Token response does not contain an id_token")

        access_token = context.access_token
        if tokens.access_token:
            access_token = AccessToken(
                tokens.access_token,
                token_type=tokens.token_type,
                expires_in=tokens.expires_in,
                scope=tokens.scope,
                min_validity=min_validity,
            )
            if tokens.id_token:
                self.token_controller.validate_access_token(access_token, identity_token.alg, identity_token.claims)
        elif access_token is None:
            raise InvalidTokenError("Token response does not contain an access_token")

        context.identity_token = identity_token
        context.access_token = access_token
        if tokens.token_type:
            context.token_type = tokens.token_type
        if tokens.refresh_token:
            context.refresh_token = RefreshToken(token=tokens.refresh_token)
        if tokens.expires_in is not None:
            context.expires_in = tokens.expires_in

        identity = self.identity_mapper.map_identity(
            identity_token.claims,
            access_token.claims,
            context.get_claims,
            context.subject or "",
        )
        context.caller_name = identity.caller_name
        context.caller_groups = identity.caller_groups
        logger.debug(f"Setting caller groups into the OpenID context: {sorted(identity.caller_groups)}")
        return CredentialValidationResult.valid(identity.caller_name, identity.caller_groups)
