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
Custom exceptions for the coreason-oidc package.
"""


class CoreasonOidcError(Exception):
    """Base exception for all coreason-oidc errors."""


class ConfigurationError(CoreasonOidcError):
    """
    Raised when the OpenID Connect configuration cannot be built.
    Missing provider metadata, a malformed jwks_uri or bad extra parameters end up here.
    """


class ProtocolError(CoreasonOidcError):
    """Raised when the OpenID Provider answers with an `error` / `error_description` pair."""

    def __init__(self, message: str, error: str | None = None, error_description: str | None = None) -> None:
        super().__init__(message)
        self.error = error
        self.error_description = error_description


class SessionUnavailableError(CoreasonOidcError):
    """Raised when the host container cannot provide an HTTP session where one is required."""


class TransportError(CoreasonOidcError):
    """Raised when a call to the OpenID Provider fails at the network level."""


class OversizedResponseError(TransportError):
    """Raised when an HTTP response is too large."""


class InvalidTokenError(CoreasonOidcError):
    """
    Raised when a token is invalid (bad signature, wrong issuer, expired, etc.).
    Always fatal for the token at hand.
    """


class SignatureVerificationError(InvalidTokenError):
    """Raised when the token's signature cannot be verified."""


class UnsupportedTokenError(InvalidTokenError):
    """Raised for token formats or algorithms that are not supported (e.g. encrypted ID Tokens)."""


class TokenExpiredError(InvalidTokenError):
    """Raised when the token's timestamps (exp, iat, nbf) are out of range."""


class InvalidIssuerError(InvalidTokenError):
    """Raised when the token's issuer does not match the provider issuer."""


class InvalidAudienceError(InvalidTokenError):
    """Raised when the token's audience or authorized party does not match the client."""


class NonceMismatchError(InvalidTokenError):
    """Raised when the ID Token nonce does not match the hash of the stored nonce."""


class AccessTokenHashError(InvalidTokenError):
    """Raised when the at_hash claim does not match the access token."""


class SubjectMismatchError(InvalidTokenError):
    """Raised when a subject differs from the one of the authenticated caller."""
