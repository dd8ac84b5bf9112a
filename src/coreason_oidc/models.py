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
Data models for the coreason-oidc package.
"""

import base64
import secrets
import uuid
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

DEFAULT_NONCE_BYTE_LENGTH = 32


class AuthenticationStatus(StrEnum):
    """Outcome reported to the host container for one request."""

    NOT_DONE = "not_done"
    SEND_CONTINUE = "send_continue"
    SUCCESS = "success"
    SEND_FAILURE = "send_failure"


class ValidationStatus(StrEnum):
    NOT_VALIDATED = "not_validated"
    INVALID = "invalid"
    VALID = "valid"


class CredentialValidationResult(BaseModel):
    """
    Result of validating the caller's credential.

    A VALID result carries the caller name and the caller groups.
    """

    model_config = ConfigDict(frozen=True)

    status: ValidationStatus
    caller_name: str | None = None
    caller_groups: frozenset[str] = Field(default_factory=frozenset)

    @classmethod
    def valid(cls, caller_name: str, caller_groups: set[str] | frozenset[str]) -> "CredentialValidationResult":
        return cls(status=ValidationStatus.VALID, caller_name=caller_name, caller_groups=frozenset(caller_groups))


NOT_VALIDATED_RESULT = CredentialValidationResult(status=ValidationStatus.NOT_VALIDATED)
INVALID_RESULT = CredentialValidationResult(status=ValidationStatus.INVALID)


class OpenIdState(BaseModel):
    """
    The CSRF `state` value of one authentication round trip. Compared by value.
    """

    model_config = ConfigDict(frozen=True)

    value: str = Field(..., min_length=1)

    @classmethod
    def generate(cls) -> "OpenIdState":
        """Creates a new state holding a random UUID."""
        return cls(value=str(uuid.uuid4()))

    @classmethod
    def from_value(cls, value: str | None) -> "OpenIdState | None":
        """
        Wraps a received value, or returns None when it is missing or blank.
        """
        if value is None or not value.strip():
            return None
        return cls(value=value.strip())

    def __str__(self) -> str:
        return self.value


class OpenIdNonce(BaseModel):
    """
    A random nonce, base64url encoded without padding.

    The raw value stays on the relying party side; only its hash is sent to the provider.
    """

    model_config = ConfigDict(frozen=True)

    value: str = Field(..., min_length=1)

    @classmethod
    def generate(cls, byte_length: int = DEFAULT_NONCE_BYTE_LENGTH) -> "OpenIdNonce":
        """
        Creates a nonce from `byte_length` random bytes.

        Raises:
            ValueError: If `byte_length` is smaller than one.
        """
        if byte_length < 1:
            raise ValueError("The byte length value must be greater than one")
        raw = secrets.token_bytes(byte_length)
        return cls(value=base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii"))

    def __str__(self) -> str:
        return self.value


class RefreshToken(BaseModel):
    """An opaque refresh token. Protected from logging."""

    model_config = ConfigDict(frozen=True)

    token: SecretStr

    def get_token(self) -> str:
        return self.token.get_secret_value()


class TokenResponse(BaseModel):
    """
    Successful Token Endpoint response.

    Attributes:
        id_token (str | None): The ID Token, mandatory for the authorization code exchange.
        access_token (str | None): The access token issued by the authorization server.
        token_type (str | None): The type of the token (e.g. "Bearer").
        expires_in (int | None): The lifetime in seconds of the access token.
        refresh_token (str | None): The refresh token, if issued.
        scope (str | None): The granted scopes.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    id_token: str | None = None
    access_token: str | None = None
    token_type: str | None = None
    expires_in: int | None = None
    refresh_token: str | None = None
    scope: str | None = None

    @field_validator("expires_in", mode="before")
    @classmethod
    def coerce_expires_in(cls, v: object) -> object:
        # Some providers send expires_in as a string
        if isinstance(v, str) and v.strip().isdigit():
            return int(v)
        return v


class ErrorResponse(BaseModel):
    """OAuth 2.0 error body returned by the provider."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    error: str = "Unknown Error"
    error_description: str = "Unknown"

    @classmethod
    def from_body(cls, body: dict[str, object]) -> "ErrorResponse":
        """Reads `error` / `error_description` from a JSON body, ignoring non-string values."""
        return cls.model_validate({k: v for k, v in body.items() if k in ("error", "error_description") and isinstance(v, str)})
