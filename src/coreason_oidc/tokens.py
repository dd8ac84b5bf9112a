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
Token representations and the structural (unverified) JWT parser.

A JWT arrives in one of three shapes, modelled as a closed union:
`PlainJwt` (alg "none"), `SignedJwt` (JWS compact form) and `EncryptedJwt` (JWE compact form).
"""

import time
from typing import Any

from authlib.common.encoding import json_loads, to_bytes, urlsafe_b64decode
from pydantic import BaseModel, ConfigDict

from coreason_oidc.exceptions import InvalidTokenError

DEFAULT_ALGORITHM = "RS256"


class PlainJwt(BaseModel):
    model_config = ConfigDict(frozen=True)

    raw: str
    header: dict[str, Any]
    claims: dict[str, Any]

    @property
    def alg(self) -> str:
        return "none"


class SignedJwt(BaseModel):
    model_config = ConfigDict(frozen=True)

    raw: str
    header: dict[str, Any]
    claims: dict[str, Any]

    @property
    def alg(self) -> str:
        return str(self.header.get("alg") or DEFAULT_ALGORITHM)


class EncryptedJwt(BaseModel):
    """A JWE; only the protected header is readable without decryption."""

    model_config = ConfigDict(frozen=True)

    raw: str
    header: dict[str, Any]

    @property
    def alg(self) -> str:
        return str(self.header.get("alg") or "")


ParsedJwt = PlainJwt | SignedJwt | EncryptedJwt


def _decode_segment(segment: str, what: str) -> dict[str, Any]:
    try:
        value = json_loads(urlsafe_b64decode(to_bytes(segment)).decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as e:
        raise InvalidTokenError(f"Invalid JWT {what}: {e}") from e
    if not isinstance(value, dict):
        raise InvalidTokenError(f"Invalid JWT {what}: not a JSON object")
    return value


def parse_jwt(token: str) -> ParsedJwt:
    """
    Splits a compact serialized JWT and decodes its header (and claims when readable).

    No signature is checked here.

    Raises:
        InvalidTokenError: If the value is not a well formed JWT.
    """
    token = token.strip()
    parts = token.split(".")
    if len(parts) == 5:
        return EncryptedJwt(raw=token, header=_decode_segment(parts[0], "header"))
    if len(parts) != 3:
        raise InvalidTokenError("Invalid JWT serialization: missing dot delimiter(s)")

    header = _decode_segment(parts[0], "header")
    claims = _decode_segment(parts[1], "claims")
    if str(header.get("alg", "")).lower() == "none":
        return PlainJwt(raw=token, header=header, claims=claims)
    return SignedJwt(raw=token, header=header, claims=claims)


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list | tuple):
        return [str(v) for v in value]
    return []


class IdentityToken:
    """
    The ID Token held by an `OpenIdContext`.

    `claims` are the unverified claims until `with_claims` is called with the verified set.
    """

    def __init__(self, token: str, min_validity: int = 0, claims: dict[str, Any] | None = None) -> None:
        self.token = token
        self.min_validity = min_validity
        self.jwt = parse_jwt(token)
        if claims is not None:
            self.claims = dict(claims)
        elif isinstance(self.jwt, EncryptedJwt):
            self.claims = {}
        else:
            self.claims = dict(self.jwt.claims)

    @property
    def alg(self) -> str:
        return self.jwt.alg

    def with_claims(self, claims: dict[str, Any]) -> "IdentityToken":
        """Returns a copy carrying the verified claims."""
        return IdentityToken(self.token, self.min_validity, claims)

    def get_claim(self, name: str) -> Any:
        return self.claims.get(name)

    def get_string_claim(self, name: str) -> str | None:
        value = self.claims.get(name)
        return value if isinstance(value, str) else None

    def get_list_claim(self, name: str) -> list[str]:
        return _as_list(self.claims.get(name))

    @property
    def subject(self) -> str | None:
        return self.get_string_claim("sub")

    def is_expired(self, now: float | None = None) -> bool:
        """
        True when `exp` falls within `min_validity` seconds from now.

        Raises:
            InvalidTokenError: If the token carries no `exp` claim.
        """
        exp = self.claims.get("exp")
        if exp is None:
            raise InvalidTokenError("Missing expiration time (exp) claim in identity token")
        current = time.time() if now is None else now
        return current + self.min_validity > float(exp)

    def __repr__(self) -> str:
        return f"IdentityToken(alg={self.alg!r})"


class AccessToken:
    """
    An access token. It may or may not be a JWT; when it is, its claims are exposed unverified.

    Attributes:
        token (str): The raw token.
        token_type (str): Upper-cased token type, e.g. "BEARER".
        expires_in (int | None): Lifetime in seconds declared by the token endpoint.
        scope (tuple[str, ...]): The granted scopes.
        created_at (float): Epoch seconds when the token was received.
    """

    def __init__(
        self,
        token: str,
        token_type: str | None = "Bearer",
        expires_in: int | None = None,
        scope: str | None = None,
        min_validity: int = 0,
        created_at: float | None = None,
    ) -> None:
        self.token = token
        self.token_type = (token_type or "Bearer").upper()
        self.expires_in = expires_in
        self.scope = tuple((scope or "").split())
        self.min_validity = min_validity
        self.created_at = time.time() if created_at is None else created_at

        self.jwt: ParsedJwt | None
        try:
            self.jwt = parse_jwt(token)
        except InvalidTokenError:
            # Access tokens do not have to be JWTs
            self.jwt = None

        if isinstance(self.jwt, PlainJwt | SignedJwt):
            self.claims: dict[str, Any] = dict(self.jwt.claims)
        else:
            self.claims = {}

    @property
    def is_jwt(self) -> bool:
        return self.jwt is not None

    def get_claim(self, name: str) -> Any:
        return self.claims.get(name)

    def get_string_claim(self, name: str) -> str | None:
        value = self.claims.get(name)
        return value if isinstance(value, str) else None

    def get_list_claim(self, name: str) -> list[str]:
        return _as_list(self.claims.get(name))

    def is_expired(self, now: float | None = None) -> bool:
        """
        Uses `expires_in` relative to `created_at` when known, otherwise the `exp` claim.

        Raises:
            InvalidTokenError: If neither expiry source is available.
        """
        current = time.time() if now is None else now
        if self.expires_in is not None:
            return current + self.min_validity > self.created_at + self.expires_in
        exp = self.claims.get("exp")
        if exp is not None:
            return current + self.min_validity > float(exp)
        raise InvalidTokenError("Missing expiration time (exp) claim in access token")

    def __repr__(self) -> str:
        return f"AccessToken(type={self.token_type!r}, jwt={self.is_jwt})"
