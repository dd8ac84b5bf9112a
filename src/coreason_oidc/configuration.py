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
Resolution of an `OpenIdDefinition` into an immutable, validated `OpenIdConfiguration`.
"""

import threading
from typing import Any
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from coreason_oidc.config import BASE_URL_EXPRESSION, OpenIdDefinition
from coreason_oidc.exceptions import ConfigurationError
from coreason_oidc.http import HttpRequest
from coreason_oidc.provider_metadata import ProviderMetadataResolver
from coreason_oidc.utils.logger import logger

OPENID_SCOPE = "openid"

AUTHORIZATION_CODE_FLOW_TYPES = frozenset({"code"})
IMPLICIT_FLOW_TYPES = frozenset({"id_token", "id_token token"})
HYBRID_FLOW_TYPES = frozenset({"code id_token", "code token", "code id_token token"})


def base_url(request: HttpRequest) -> str:
    """
    Returns scheme://host[:port] followed by the context path of the request.
    """
    parts = urlsplit(request.request_url)
    return f"{parts.scheme}://{parts.netloc}{request.context_path}"


def resolve_base_url(template: str, request: HttpRequest) -> str:
    """Replaces the `${baseURL}` placeholder, if any, using the current request."""
    if BASE_URL_EXPRESSION in template:
        return template.replace(BASE_URL_EXPRESSION, base_url(request))
    return template


def normalize_response_type(response_type: str) -> str:
    """Lower-cases the response type tokens and sorts them (e.g. "Token CODE" -> "code token")."""
    return " ".join(sorted(part.lower() for part in response_type.split()))


class ProviderMetadata(BaseModel):
    """
    Resolved provider metadata: explicit values merged over the discovery document.
    """

    model_config = ConfigDict(frozen=True)

    document: dict[str, Any] = Field(default_factory=dict)
    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    userinfo_endpoint: str = ""
    end_session_endpoint: str = ""
    jwks_uri: str
    response_types_supported: tuple[str, ...] = ()
    subject_types_supported: tuple[str, ...] = ()
    id_token_signing_algorithms_supported: tuple[str, ...] = ()
    scopes_supported: tuple[str, ...] = ()


class ClaimsConfiguration(BaseModel):
    model_config = ConfigDict(frozen=True)

    caller_name_claim: str
    caller_groups_claim: str


class LogoutConfiguration(BaseModel):
    """Logout policy with the redirect URI template still unresolved."""

    model_config = ConfigDict(frozen=True)

    notify_provider: bool = False
    redirect_uri: str = ""
    access_token_expiry: bool = False
    identity_token_expiry: bool = False

    def build_redirect_uri(self, request: HttpRequest) -> str:
        return resolve_base_url(self.redirect_uri, request)


class OpenIdConfiguration(BaseModel):
    """
    Immutable per-application configuration of the relying party.

    Attributes:
        provider_metadata (ProviderMetadata): Resolved endpoints and capabilities of the provider.
        scopes (tuple[str, ...]): Requested scopes, `openid` always first.
        response_type (str): Normalized response type.
        prompt (str): Space separated prompt values, empty when none.
        extra_parameters (tuple[tuple[str, str], ...]): Additional authorization request parameters.
        required_audience (str): Audience the ID Token must contain; defaults to the client id.
        token_min_validity (int): Expiry margin in seconds.
    """

    model_config = ConfigDict(frozen=True)

    provider_metadata: ProviderMetadata
    client_id: str
    required_audience: str = ""
    client_secret: SecretStr
    redirect_uri: str
    redirect_to_original_resource: bool
    restore_original_request: bool
    scopes: tuple[str, ...]
    response_type: str
    response_mode: str
    display: str
    prompt: str
    extra_parameters: tuple[tuple[str, str], ...]
    use_nonce: bool
    use_session: bool
    jwks_connect_timeout: int
    jwks_read_timeout: int
    claims_configuration: ClaimsConfiguration
    logout_configuration: LogoutConfiguration
    token_auto_refresh: bool
    token_min_validity: int
    http_timeout: float
    pii_salt: SecretStr

    def build_redirect_uri(self, request: HttpRequest) -> str:
        """Returns the callback URI for the current request."""
        return resolve_base_url(self.redirect_uri, request)

    @property
    def scope(self) -> str:
        return " ".join(self.scopes)


def _split(value: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in value.split(",") if part.strip())


def _as_tuple(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    if isinstance(value, list | tuple):
        return tuple(str(v) for v in value)
    return ()


class ConfigurationController:
    """
    Builds `OpenIdConfiguration` objects and caches them by definition.

    Two equal definitions share a single configuration; the discovery document is fetched only
    once per provider URI through the resolver.
    """

    def __init__(self, resolver: ProviderMetadataResolver) -> None:
        self.resolver = resolver
        self._configurations: dict[OpenIdDefinition, OpenIdConfiguration] = {}
        self._lock = threading.Lock()

    def produce(self, definition: OpenIdDefinition) -> OpenIdConfiguration:
        """
        Returns the configuration for the definition, building it on first use.

        Raises:
            ConfigurationError: If discovery fails or the resulting configuration is invalid.
        """
        cached = self._configurations.get(definition)
        if cached is not None:
            return cached

        configuration = self.build(definition)
        with self._lock:
            return self._configurations.setdefault(definition, configuration)

    def build(self, definition: OpenIdDefinition) -> OpenIdConfiguration:
        document = self.resolver.get_document(definition.provider_uri)
        explicit = definition.provider_metadata
        errors: list[str] = []

        def pick(explicit_value: str, key: str) -> str:
            if explicit_value:
                return explicit_value
            value = document.get(key)
            return value if isinstance(value, str) else ""

        def supported(key: str, fallback: str) -> tuple[str, ...]:
            values = _as_tuple(document.get(key))
            return values if values else _split(fallback)

        provider_metadata = ProviderMetadata(
            document=document,
            issuer=pick(explicit.issuer, "issuer"),
            authorization_endpoint=pick(explicit.authorization_endpoint, "authorization_endpoint"),
            token_endpoint=pick(explicit.token_endpoint, "token_endpoint"),
            userinfo_endpoint=pick(explicit.userinfo_endpoint, "userinfo_endpoint"),
            end_session_endpoint=pick(explicit.end_session_endpoint, "end_session_endpoint"),
            jwks_uri=pick(explicit.jwks_uri, "jwks_uri"),
            response_types_supported=supported("response_types_supported", explicit.response_type_supported),
            subject_types_supported=supported("subject_types_supported", explicit.subject_type_supported),
            id_token_signing_algorithms_supported=supported(
                "id_token_signing_alg_values_supported", explicit.id_token_signing_algorithms_supported
            ),
            scopes_supported=_as_tuple(document.get("scopes_supported")),
        )

        scopes = [s for s in definition.scopes if s]
        if OPENID_SCOPE not in scopes:
            scopes.insert(0, OPENID_SCOPE)

        extra_parameters: list[tuple[str, str]] = []
        for entry in definition.extra_parameters:
            key, sep, value = entry.partition("=")
            if not sep or not key.strip():
                errors.append(f"Extra parameter [{entry}] must be in the form key=value")
                continue
            extra_parameters.append((key.strip(), value.strip()))

        configuration = OpenIdConfiguration(
            provider_metadata=provider_metadata,
            client_id=definition.client_id,
            required_audience=definition.required_audience or definition.client_id,
            client_secret=definition.client_secret,
            redirect_uri=definition.redirect_uri,
            redirect_to_original_resource=definition.redirect_to_original_resource,
            restore_original_request=definition.restore_original_request,
            scopes=tuple(scopes),
            response_type=normalize_response_type(definition.response_type),
            response_mode=definition.response_mode,
            display=str(definition.display),
            prompt=" ".join(str(p) for p in definition.prompt),
            extra_parameters=tuple(extra_parameters),
            use_nonce=definition.use_nonce,
            use_session=definition.use_session,
            jwks_connect_timeout=definition.jwks_connect_timeout,
            jwks_read_timeout=definition.jwks_read_timeout,
            claims_configuration=ClaimsConfiguration(
                caller_name_claim=definition.claims.caller_name_claim,
                caller_groups_claim=definition.claims.caller_groups_claim,
            ),
            logout_configuration=LogoutConfiguration(
                notify_provider=definition.logout.notify_provider,
                redirect_uri=definition.logout.redirect_uri,
                access_token_expiry=definition.logout.access_token_expiry,
                identity_token_expiry=definition.logout.identity_token_expiry,
            ),
            token_auto_refresh=definition.token_auto_refresh,
            token_min_validity=definition.token_min_validity,
            http_timeout=definition.http_timeout,
            pii_salt=definition.pii_salt,
        )

        errors.extend(validate_configuration(configuration))
        if errors:
            for error in errors:
                logger.error(f"OpenID configuration problem: {error}")
            raise ConfigurationError("Invalid OpenID configuration: " + "; ".join(errors))

        logger.debug(f"OpenID configuration resolved for client {configuration.client_id}")
        return configuration

    def clear(self) -> None:
        """Drops every cached configuration."""
        with self._lock:
            self._configurations.clear()


def validate_configuration(configuration: OpenIdConfiguration) -> list[str]:
    """
    Collects every problem of a configuration instead of stopping at the first one.

    Returns:
        list[str]: Human readable problems; empty when the configuration is valid.
    """
    errors: list[str] = []
    metadata = configuration.provider_metadata

    if not metadata.issuer:
        errors.append("issuer metadata is mandatory")
    if not metadata.authorization_endpoint:
        errors.append("authorization_endpoint metadata is mandatory")
    if not metadata.token_endpoint:
        errors.append("token_endpoint metadata is mandatory")
    if not metadata.jwks_uri:
        errors.append("jwks_uri metadata is mandatory")
    else:
        parts = urlsplit(metadata.jwks_uri)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            errors.append(f"jwks_uri metadata is malformed: {metadata.jwks_uri}")
    if not metadata.response_types_supported:
        errors.append("response_types_supported metadata is mandatory")
    if not metadata.subject_types_supported:
        errors.append("subject_types_supported metadata is mandatory")
    if not metadata.id_token_signing_algorithms_supported:
        errors.append("id_token_signing_alg_values_supported metadata is mandatory")

    if not configuration.client_id:
        errors.append("client_id request parameter is mandatory")
    if not configuration.redirect_uri:
        errors.append("redirect_uri request parameter is mandatory")
    if configuration.jwks_connect_timeout <= 0:
        errors.append("jwks_connect_timeout value is not valid")
    if configuration.jwks_read_timeout <= 0:
        errors.append("jwks_read_timeout value is not valid")

    response_type = configuration.response_type
    if not response_type:
        errors.append("The response type must contain at least one value")
    elif (
        response_type not in metadata.response_types_supported
        and response_type not in AUTHORIZATION_CODE_FLOW_TYPES
        and response_type not in IMPLICIT_FLOW_TYPES
        and response_type not in HYBRID_FLOW_TYPES
    ):
        errors.append(f"Unsupported OpenID Connect response type value : {response_type}")

    if metadata.scopes_supported:
        for scope in configuration.scopes:
            if scope not in metadata.scopes_supported:
                errors.append(
                    f"{scope} scope is not supported by {metadata.issuer} OpenId Connect provider"
                )

    return errors
