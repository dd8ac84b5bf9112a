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
JwtValidator component for verifying JWT signatures and running claims verifiers.
"""

from typing import Any, cast

from authlib.jose import JsonWebToken
from authlib.jose.errors import BadSignatureError, DecodeError, JoseError
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from coreason_oidc.configuration import OpenIdConfiguration
from coreason_oidc.exceptions import (
    CoreasonOidcError,
    InvalidTokenError,
    SignatureVerificationError,
    UnsupportedTokenError,
)
from coreason_oidc.jwks import KeySelectorCache
from coreason_oidc.tokens import EncryptedJwt, ParsedJwt, PlainJwt, SignedJwt
from coreason_oidc.utils.logger import logger
from coreason_oidc.verifiers import ClaimsVerifierChain

tracer = trace.get_tracer(__name__)


class JwtValidator:
    """
    Produces a verified claim set from a parsed token, or fails.

    Attributes:
        configuration (OpenIdConfiguration): Supplies the JWKS location, timeouts and client secret.
        key_selectors (KeySelectorCache): The process-wide key selector cache.
    """

    def __init__(self, configuration: OpenIdConfiguration, key_selectors: KeySelectorCache) -> None:
        self.configuration = configuration
        self.key_selectors = key_selectors

    def validate(self, token: ParsedJwt, verifier: ClaimsVerifierChain) -> dict[str, Any]:
        """
        Verifies the token and runs the verifier on its claims.

        Emits an OpenTelemetry span `validate_jwt`.

        Args:
            token: The parsed token.
            verifier: The claims verifier chain to apply.

        Returns:
            dict[str, Any]: The verified claims.

        Raises:
            UnsupportedTokenError: For encrypted tokens and unsigned tokens the provider does not allow.
            SignatureVerificationError: If the signature is invalid or no key matches.
            InvalidTokenError: If a claim check fails.
            ConfigurationError: If the signing algorithm is unsupported.
        """
        with tracer.start_as_current_span("validate_jwt") as span:
            span.set_attribute("jwt.alg", token.alg)
            try:
                match token:
                    case PlainJwt():
                        if not verifier.accepts_unsigned:
                            raise UnsupportedTokenError("Unsigned JWTs are not accepted by this provider")
                        claims = dict(token.claims)
                    case SignedJwt():
                        claims = self._verify_signature(token)
                    case EncryptedJwt():
                        raise UnsupportedTokenError(f"Encrypted JWTs are not supported (alg {token.alg})")

                verifier.verify(claims)
                span.set_status(Status(StatusCode.OK))
                return claims

            except CoreasonOidcError as e:
                logger.warning(f"JWT validation failed: {e}")
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise

    def _verify_signature(self, token: SignedJwt) -> dict[str, Any]:
        alg = token.alg
        selector = self.key_selectors.get(
            alg,
            self.configuration.jwks_connect_timeout,
            self.configuration.jwks_read_timeout,
            self.configuration.provider_metadata.jwks_uri,
            self.configuration.client_secret.get_secret_value(),
        )

        # Restrict the decoder to the header's own algorithm so the key family always matches
        jwt = cast("Any", JsonWebToken([alg]))
        try:
            return dict(jwt.decode(token.raw, selector))
        except BadSignatureError as e:
            raise SignatureVerificationError(f"Invalid signature: {e}") from e
        except DecodeError as e:
            raise InvalidTokenError(f"Invalid JWT: {e}") from e
        except JoseError as e:
            raise InvalidTokenError(f"Token validation failed: {e}") from e
        except ValueError as e:
            raise SignatureVerificationError(f"Invalid signature or key not found: {e}") from e
