# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_identity

import base64
from typing import Any

import pytest
from support import id_token_claims, plain_jwt, segment, sign

from coreason_oidc.exceptions import InvalidTokenError
from coreason_oidc.tokens import AccessToken, EncryptedJwt, IdentityToken, PlainJwt, SignedJwt, parse_jwt


class TestParseJwt:
    def test_signed(self, rsa_key: Any) -> None:
        parsed = parse_jwt(sign(rsa_key, {"sub": "user-123"}))

        assert isinstance(parsed, SignedJwt)
        assert parsed.alg == "RS256"
        assert parsed.header["kid"] == "test-key"
        assert parsed.claims == {"sub": "user-123"}

    def test_plain(self) -> None:
        parsed = parse_jwt(plain_jwt({"sub": "user-123"}))

        assert isinstance(parsed, PlainJwt)
        assert parsed.alg == "none"
        assert parsed.claims["sub"] == "user-123"

    def test_encrypted(self) -> None:
        header = segment({"alg": "RSA-OAEP", "enc": "A256GCM"})
        parsed = parse_jwt(f"{header}.key.iv.ciphertext.tag")

        assert isinstance(parsed, EncryptedJwt)
        assert parsed.alg == "RSA-OAEP"

    @pytest.mark.parametrize("token", ["opaque", "a.b", "a.b.c.d", f"{segment({'alg': 'RS256'})}.%%%.sig"])
    def test_malformed(self, token: str) -> None:
        with pytest.raises(InvalidTokenError):
            parse_jwt(token)

    def test_header_must_be_an_object(self) -> None:
        token = f"{base64.urlsafe_b64encode(b'[1]').decode()}.{segment({})}.sig"

        with pytest.raises(InvalidTokenError, match="not a JSON object"):
            parse_jwt(token)


class TestIdentityToken:
    def test_claims_accessors(self, rsa_key: Any) -> None:
        token = IdentityToken(sign(rsa_key, id_token_claims(amr=["pwd", "otp"])))

        assert token.subject == "user-123"
        assert token.alg == "RS256"
        assert token.get_string_claim("preferred_username") == "alice"
        assert token.get_string_claim("exp") is None
        assert token.get_list_claim("amr") == ["pwd", "otp"]
        assert token.get_list_claim("aud") == ["my-client"]
        assert token.get_list_claim("missing") == []

    def test_with_claims_replaces_claims(self, rsa_key: Any) -> None:
        token = IdentityToken(sign(rsa_key, {"sub": "unverified", "exp": 10}), min_validity=5)
        verified = token.with_claims({"sub": "verified", "exp": 20})

        assert verified.subject == "verified"
        assert verified.token == token.token
        assert verified.min_validity == 5
        assert token.subject == "unverified"

    def test_expiry_honours_min_validity(self, rsa_key: Any) -> None:
        token = IdentityToken(sign(rsa_key, {"sub": "s", "exp": 1000}), min_validity=10)

        assert token.is_expired(now=980) is False
        assert token.is_expired(now=995) is True

    def test_missing_exp_is_invalid(self, rsa_key: Any) -> None:
        token = IdentityToken(sign(rsa_key, {"sub": "s"}))

        with pytest.raises(InvalidTokenError, match="exp"):
            token.is_expired()


class TestAccessToken:
    def test_opaque_token(self) -> None:
        token = AccessToken("opaque-value", token_type="bearer", expires_in=60, scope="openid email", created_at=1000)

        assert token.is_jwt is False
        assert token.claims == {}
        assert token.token_type == "BEARER"
        assert token.scope == ("openid", "email")
        assert token.is_expired(now=1050) is False
        assert token.is_expired(now=1061) is True

    def test_jwt_token_uses_exp_claim(self, rsa_key: Any) -> None:
        token = AccessToken(sign(rsa_key, {"sub": "s", "exp": 2000, "groups": ["g"]}), min_validity=10)

        assert token.is_jwt is True
        assert token.get_list_claim("groups") == ["g"]
        assert token.get_string_claim("sub") == "s"
        assert token.is_expired(now=1980) is False
        assert token.is_expired(now=1995) is True

    def test_unknown_expiry_is_invalid(self) -> None:
        with pytest.raises(InvalidTokenError):
            AccessToken("opaque").is_expired()

    def test_repr_does_not_leak_token(self) -> None:
        assert "secret-token" not in repr(AccessToken("secret-token"))
