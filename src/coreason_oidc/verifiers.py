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
Claims verifiers.

Every verifier implements `verify(claims)` and raises an `InvalidTokenError` subclass on the first
failed check. Verifiers are composed with `ClaimsVerifierChain`; the standard checks always run first.
"""

import base64
import hashlib
import time
from collections.abc import Callable
from typing import Any, Protocol

from authlib.jose import JWTClaims
from authlib.jose.errors import ExpiredTokenError, InvalidClaimError, MissingClaimError
from authlib.jose.errors import InvalidTokenError as JoseInvalidTokenError

from coreason_oidc.exceptions import (
    AccessTokenHashError,
    InvalidAudienceError,
    InvalidIssuerError,
    InvalidTokenError,
    NonceMismatchError,
    TokenExpiredError,
)

CLOCK_SKEW_SECONDS = 60


class ClaimsVerifier(Protocol):
    def verify(self, claims: dict[str, Any]) -> None: ...


def _audience(claims: dict[str, Any]) -> list[str]:
    aud = claims.get("aud")
    if aud is None:
        return []
    if isinstance(aud, str):
        return [aud]
    if isinstance(aud, list) and all(isinstance(a, str) for a in aud):
        return aud
    raise InvalidAudienceError(f"Invalid audience (aud) claim {aud}")


MISSING_CLAIM_ERRORS: dict[str, tuple[type[InvalidTokenError], str]] = {
    "iss": (InvalidIssuerError, "Missing issuer (iss) claim"),
    "sub": (InvalidTokenError, "Missing subject (sub) claim"),
    "aud": (InvalidAudienceError, "Missing audience (aud) claim"),
    "exp": (TokenExpiredError, "Missing expiration time (exp) claim"),
    "iat": (TokenExpiredError, "Missing issue time (iat) claim"),
}


class StandardClaimsVerifier:
    """
    Issuer, subject, audience, authorized party and timestamp checks shared by every ID Token.

    The registered claims are validated by authlib's `JWTClaims`; its errors are translated
    into the package hierarchy.

    Attributes:
        issuer (str): The provider issuer the `iss` claim must equal.
        client_id (str): The client the authorized party must equal.
        required_audience (str): The value the audience must contain. Defaults to `client_id`.
        accepts_unsigned (bool): Whether unsigned ("none") tokens may be accepted at all.
        clock (Callable[[], float]): Source of the current epoch time in seconds.
    """

    def __init__(
        self,
        issuer: str,
        client_id: str,
        accepts_unsigned: bool = False,
        clock: Callable[[], float] = time.time,
        required_audience: str | None = None,
    ) -> None:
        self.issuer = issuer
        self.client_id = client_id
        self.required_audience = required_audience or client_id
        self.accepts_unsigned = accepts_unsigned
        self.clock = clock

    def claims_options(self) -> dict[str, Any]:
        return {
            "iss": {"essential": True, "value": self.issuer},
            "sub": {"essential": True},
            "aud": {"essential": True, "value": self.required_audience},
            "exp": {"essential": True},
            "iat": {"essential": True},
            "nbf": {"essential": False},
        }

    def verify(self, claims: dict[str, Any]) -> None:
        now = int(self.clock())
        jwt_claims = JWTClaims(claims, {}, options=self.claims_options())
        try:
            jwt_claims.validate(now=now, leeway=CLOCK_SKEW_SECONDS)
        except MissingClaimError as e:
            error, message = MISSING_CLAIM_ERRORS.get(
                e.claim_name, (InvalidTokenError, f"Missing {e.claim_name} claim")
            )
            raise error(message) from e
        except InvalidClaimError as e:
            raise self._invalid_claim(e.claim_name, claims.get(e.claim_name)) from e
        except ExpiredTokenError as e:
            raise TokenExpiredError(f"Token is expired {claims.get('exp')}") from e
        except JoseInvalidTokenError as e:
            raise self._not_yet_valid(claims, now) from e

        self.assure_authorized_party(claims)
        if claims["iat"] - CLOCK_SKEW_SECONDS > now:
            raise TokenExpiredError(f"Issue time must be after current time {claims['iat']}")

    def _invalid_claim(self, name: str, value: Any) -> InvalidTokenError:
        if name == "iss":
            return InvalidIssuerError(f"Invalid issuer : {self.issuer}")
        if name == "aud":
            return InvalidAudienceError(f"Invalid audience (aud) claim {value}")
        if name in ("exp", "iat", "nbf"):
            return TokenExpiredError(f"Invalid {name} claim, expected a numeric date: {value!r}")
        return InvalidTokenError(f"Invalid {name} claim")

    @staticmethod
    def _not_yet_valid(claims: dict[str, Any], now: int) -> TokenExpiredError:
        nbf = claims.get("nbf")
        if nbf is not None and nbf - CLOCK_SKEW_SECONDS > now:
            return TokenExpiredError(f"Token is not valid before {nbf}")
        return TokenExpiredError(f"Issue time must be after current time {claims.get('iat')}")

    def assure_authorized_party(self, claims: dict[str, Any]) -> None:
        audience = _audience(claims)
        if len(audience) <= 1:
            return
        authorized_party = claims.get("azp")
        if authorized_party is None:
            raise InvalidAudienceError("Missing authorized party (azp) claim")
        if authorized_party != self.client_id:
            raise InvalidAudienceError(f"Invalid authorized party (azp) claim {authorized_party}")


class IdTokenNonceVerifier:
    """
    Binds an ID Token to the authentication request that produced it.

    With nonce usage disabled this verifier accepts everything.
    """

    def __init__(self, expected_nonce_hash: str | None, use_nonce: bool = True) -> None:
        self.expected_nonce_hash = expected_nonce_hash
        self.use_nonce = use_nonce

    def verify(self, claims: dict[str, Any]) -> None:
        if not self.use_nonce:
            return
        nonce = claims.get("nonce")
        if not nonce:
            raise NonceMismatchError("Missing nonce value")
        if not self.expected_nonce_hash:
            raise NonceMismatchError("Missing expected nonce value")
        if nonce != self.expected_nonce_hash:
            raise NonceMismatchError("Invalid nonce value")


class RefreshedIdTokenVerifier:
    """
    Checks that an ID Token obtained by refresh describes the same authentication as the previous one.
    """

    def __init__(self, previous_claims: dict[str, Any]) -> None:
        self.previous_claims = previous_claims

    def verify(self, claims: dict[str, Any]) -> None:
        previous = self.previous_claims

        issuer = claims.get("iss")
        if issuer is None or issuer != previous.get("iss"):
            raise InvalidIssuerError(
                "iss Claim Value MUST be the same as in the ID Token issued when the original authentication occurred."
            )

        subject = claims.get("sub")
        if subject is None or subject != previous.get("sub"):
            raise InvalidTokenError(
                "sub Claim Value MUST be the same as in the ID Token issued when the original authentication occurred."
            )

        audience = _audience(claims)
        if not audience or audience != _audience(previous):
            raise InvalidAudienceError(
                "aud Claim Value MUST be the same as in the ID Token issued when the original authentication occurred."
            )

        if claims.get("iat") is None:
            raise InvalidTokenError("iat Claim Value must not be null.")

        if claims.get("azp") != previous.get("azp"):
            raise InvalidAudienceError(
                "azp Claim Value MUST be the same as in the ID Token issued when the original authentication occurred."
            )

        auth_time = claims.get("auth_time")
        if auth_time is not None and previous.get("auth_time") is not None and auth_time != previous["auth_time"]:
            raise InvalidTokenError("auth_time Claim Value MUST represent the time of the original authentication.")


def access_token_hash(access_token: str, alg: str) -> str:
    """
    Computes `at_hash`: the left half of the digest matching `alg`, base64url encoded without padding.

    Raises:
        AccessTokenHashError: If no digest matches the algorithm.
    """
    digest_name = "sha" + alg[2:]
    try:
        digest = hashlib.new(digest_name, access_token.encode("ascii")).digest()
    except (ValueError, TypeError) as e:
        raise AccessTokenHashError(f"No message digest found for algorithm {alg}") from e
    left_half = digest[: len(digest) // 2]
    return base64.urlsafe_b64encode(left_half).rstrip(b"=").decode("ascii")


class AccessTokenHashVerifier:
    """
    Verifies the `at_hash` claim of the ID Token, when present, against the access token.
    """

    def __init__(self, access_token: str, id_token_alg: str) -> None:
        self.access_token = access_token
        self.id_token_alg = id_token_alg

    def verify(self, claims: dict[str, Any]) -> None:
        expected = claims.get("at_hash")
        if expected is None:
            return
        if access_token_hash(self.access_token, self.id_token_alg) != expected:
            raise AccessTokenHashError("Invalid access token hash (at_hash) value")


class ClaimsVerifierChain:
    """
    Runs verifiers in order; the first failure aborts.

    `accepts_unsigned` is taken from the first verifier exposing it.
    """

    def __init__(self, *verifiers: ClaimsVerifier) -> None:
        self.verifiers = verifiers

    @property
    def accepts_unsigned(self) -> bool:
        for verifier in self.verifiers:
            if isinstance(verifier, StandardClaimsVerifier):
                return verifier.accepts_unsigned
        return False

    def verify(self, claims: dict[str, Any]) -> None:
        for verifier in self.verifiers:
            verifier.verify(claims)
