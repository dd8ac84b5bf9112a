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
Configuration for the coreason-oidc package.

`OpenIdDefinition` is the declarative source definition of one OpenID Connect client.
It is frozen so that two equal definitions resolve to the same cached `OpenIdConfiguration`.
"""

from enum import StrEnum
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

BASE_URL_EXPRESSION = "${baseURL}"


class DisplayType(StrEnum):
    PAGE = "page"
    POPUP = "popup"
    TOUCH = "touch"
    WAP = "wap"


class PromptType(StrEnum):
    NONE = "none"
    LOGIN = "login"
    CONSENT = "consent"
    SELECT_ACCOUNT = "select_account"


class ProviderMetadataDefinition(BaseModel):
    """
    Explicit provider metadata. Any non-empty value overrides the discovery document.

    The `*_supported` values are comma-separated fallbacks used when the document does not advertise them.
    """

    model_config = ConfigDict(frozen=True)

    issuer: str = ""
    authorization_endpoint: str = ""
    token_endpoint: str = ""
    userinfo_endpoint: str = ""
    end_session_endpoint: str = ""
    jwks_uri: str = ""
    response_type_supported: str = "code,id_token,token id_token"
    subject_type_supported: str = "public"
    id_token_signing_algorithms_supported: str = "RS256"


class ClaimsDefinition(BaseModel):
    """Names of the claims holding the caller name and the caller groups."""

    model_config = ConfigDict(frozen=True)

    caller_name_claim: str = "preferred_username"
    caller_groups_claim: str = "groups"


class LogoutDefinition(BaseModel):
    """
    Logout policy.

    Attributes:
        notify_provider (bool): Redirect to the provider's end-session endpoint on logout.
        redirect_uri (str): Post-logout redirect URI, may contain `${baseURL}`.
        access_token_expiry (bool): Log out when the access token expires.
        identity_token_expiry (bool): Log out when the identity token expires.
    """

    model_config = ConfigDict(frozen=True)

    notify_provider: bool = False
    redirect_uri: str = ""
    access_token_expiry: bool = False
    identity_token_expiry: bool = False


class OpenIdDefinition(BaseSettings):
    """
    Source definition of an OpenID Connect relying party.

    Values can be supplied directly or through environment variables prefixed with `COREASON_OIDC_`
    (nested sections use `__` as delimiter, e.g. `COREASON_OIDC_LOGOUT__NOTIFY_PROVIDER=true`).

    Attributes:
        provider_uri (str): Base URI of the OpenID Provider, used for discovery. May be empty.
        client_id (str): The OIDC Client ID.
        required_audience (str): Value the ID Token audience must contain. Empty means `client_id`.
        client_secret (SecretStr): The OIDC Client secret, also the HMAC key for HS* signed tokens.
        redirect_uri (str): Callback URI, supports the `${baseURL}` placeholder.
        scopes (tuple[str, ...]): Requested scopes; `openid` is always added.
        jwks_connect_timeout (int): JWKS connect timeout in milliseconds.
        jwks_read_timeout (int): JWKS read timeout in milliseconds.
        token_min_validity (int): Tokens are treated as expired this many seconds before `exp`.
        http_timeout (float): Timeout in seconds for discovery, token and userinfo calls.
        pii_salt (SecretStr): Salt for anonymizing subjects in logs/traces.
    """

    model_config = SettingsConfigDict(
        env_prefix="COREASON_OIDC_",
        env_nested_delimiter="__",
        case_sensitive=False,
        frozen=True,
    )

    provider_uri: str = ""
    provider_metadata: ProviderMetadataDefinition = ProviderMetadataDefinition()
    client_id: str = ""
    required_audience: str = ""
    client_secret: SecretStr = SecretStr("")
    redirect_uri: str = f"{BASE_URL_EXPRESSION}/callback"
    redirect_to_original_resource: bool = False
    restore_original_request: bool = True
    scopes: Annotated[tuple[str, ...], NoDecode] = ("openid", "email", "profile")
    response_type: str = "code"
    response_mode: str = ""
    display: DisplayType = DisplayType.PAGE
    prompt: tuple[PromptType, ...] = ()
    extra_parameters: Annotated[tuple[str, ...], NoDecode] = ()
    use_nonce: bool = True
    use_session: bool = True
    jwks_connect_timeout: int = 500
    jwks_read_timeout: int = 500
    claims: ClaimsDefinition = ClaimsDefinition()
    logout: LogoutDefinition = LogoutDefinition()
    token_auto_refresh: bool = False
    token_min_validity: int = Field(default=10, ge=0)
    http_timeout: float = Field(default=5.0, gt=0, description="Timeout in seconds for IdP network operations.")
    pii_salt: SecretStr = SecretStr("coreason-unsafe-default-salt")

    @field_validator("scopes", "extra_parameters", mode="before")
    @classmethod
    def split_string(cls, v: object) -> object:
        """
        Accepts a single space/comma separated string (handy for environment variables).
        """
        if isinstance(v, str):
            return tuple(part for part in v.replace(",", " ").split() if part)
        return v
