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
In-memory stand-ins for the hosting container and the OpenID Provider.
"""

import base64
import itertools
import json
import threading
import time
from collections.abc import Iterable
from typing import Any
from urllib.parse import parse_qs, urlsplit

import httpx
from authlib.jose import jwt

from coreason_oidc.config import OpenIdDefinition
from coreason_oidc.models import AuthenticationStatus, CredentialValidationResult, ValidationStatus

ISSUER = "https://idp.example.com"
CLIENT_ID = "my-client"
CLIENT_SECRET = "a-sufficiently-long-client-secret-for-hs256-0123456789"
APP_BASE = "https://app.example.com/app"
CALLBACK_URL = f"{APP_BASE}/callback"
PROTECTED_URL = f"{APP_BASE}/protected"

_session_ids = itertools.count(1)


def discovery_document(**overrides: Any) -> dict[str, Any]:
    document = {
        "issuer": ISSUER,
        "authorization_endpoint": f"{ISSUER}/authorize",
        "token_endpoint": f"{ISSUER}/token",
        "userinfo_endpoint": f"{ISSUER}/userinfo",
        "end_session_endpoint": f"{ISSUER}/logout",
        "jwks_uri": f"{ISSUER}/jwks",
        "response_types_supported": ["code", "id_token", "id_token token"],
        "subject_types_supported": ["public"],
        "id_token_signing_alg_values_supported": ["RS256"],
        "scopes_supported": ["openid", "email", "profile", "offline_access"],
    }
    document.update(overrides)
    return document


def segment(value: dict[str, Any]) -> str:
    return base64.urlsafe_b64encode(json.dumps(value).encode()).rstrip(b"=").decode()


def plain_jwt(claims: dict[str, Any]) -> str:
    return f"{segment({'alg': 'none'})}.{segment(claims)}."


def sign(key: Any, claims: dict[str, Any], headers: dict[str, Any] | None = None) -> str:
    if headers is None:
        headers = {"alg": "RS256", "kid": key.as_dict()["kid"]}
    return jwt.encode(headers, claims, key).decode("utf-8")


def id_token_claims(nonce: str | None = None, **overrides: Any) -> dict[str, Any]:
    now = int(time.time())
    claims: dict[str, Any] = {
        "iss": ISSUER,
        "sub": "user-123",
        "aud": CLIENT_ID,
        "exp": now + 3600,
        "iat": now,
        "preferred_username": "alice",
        "groups": ["admins"],
    }
    if nonce is not None:
        claims["nonce"] = nonce
    claims.update(overrides)
    return {k: v for k, v in claims.items() if v is not None}


class FakeProvider:
    """
    An OpenID Provider served through `httpx.MockTransport`.

    `token_responses` is consumed in order; each entry is a (status, body) pair or a callable
    receiving the form and returning such a pair.
    """

    def __init__(self, key: Any, document: dict[str, Any] | None = None) -> None:
        self.key = key
        self.document = document if document is not None else discovery_document()
        self.jwks: dict[str, Any] = {"keys": [key.as_dict(is_private=False)]}
        self.token_responses: list[Any] = []
        self.userinfo: tuple[int, dict[str, Any], str] = (200, {"sub": "user-123"}, "application/json")
        self.requests: list[httpx.Request] = []

    def calls(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    def form(self, request: httpx.Request) -> dict[str, str]:
        return {k: v[0] for k, v in parse_qs(request.content.decode("utf-8")).items()}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/.well-known/openid-configuration":
            return httpx.Response(200, json=self.document)
        if path == "/jwks":
            return httpx.Response(200, json=self.jwks)
        if path == "/token":
            if not self.token_responses:
                return httpx.Response(400, json={"error": "invalid_grant"})
            entry = self.token_responses.pop(0)
            if callable(entry):
                entry = entry(self.form(request))
            status, body = entry
            return httpx.Response(status, json=body)
        if path == "/userinfo":
            status, body, content_type = self.userinfo
            return httpx.Response(status, content=json.dumps(body).encode(), headers={"Content-Type": content_type})
        return httpx.Response(404)

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))


class FakeSession:
    def __init__(self) -> None:
        self._id = f"session-{next(_session_ids)}"
        self._lock = threading.RLock()
        self.attributes: dict[str, Any] = {}
        self.invalidated = False

    @property
    def id(self) -> str:
        return self._id

    @property
    def lock(self) -> Any:
        return self._lock

    def get_attribute(self, name: str) -> Any:
        return self.attributes.get(name)

    def set_attribute(self, name: str, value: Any) -> None:
        self.attributes[name] = value

    def remove_attribute(self, name: str) -> None:
        self.attributes.pop(name, None)

    def invalidate(self) -> None:
        self.invalidated = True
        self.attributes.clear()


class Browser:
    """
    Carries the session and the cookies from one request to the next, like a user agent would.
    """

    def __init__(self) -> None:
        self.session: FakeSession | None = None
        self.cookies: dict[str, str] = {}

    def request(self, url: str, **kwargs: Any) -> "FakeRequest":
        return FakeRequest(url, browser=self, **kwargs)

    def accept(self, response: "FakeResponse") -> None:
        for name, (value, options) in response.cookies.items():
            if options.get("max_age") == 0:
                self.cookies.pop(name, None)
            else:
                self.cookies[name] = value


class FakeRequest:
    def __init__(
        self,
        url: str,
        browser: Browser | None = None,
        context_path: str = "/app",
        method: str = "GET",
        headers: dict[str, str] | None = None,
        form: dict[str, list[str]] | None = None,
        user_principal: str | None = None,
    ) -> None:
        parts = urlsplit(url)
        self.browser = browser or Browser()
        self.method = method
        self.request_url = f"{parts.scheme}://{parts.netloc}{parts.path}"
        self.request_uri = parts.path
        self.context_path = context_path
        self.query_string = parts.query or None
        self.headers = headers or {"User-Agent": "pytest"}
        self.cookies = dict(self.browser.cookies)
        self.parameters: dict[str, list[str]] = parse_qs(parts.query, keep_blank_values=True)
        for name, values in (form or {}).items():
            self.parameters.setdefault(name, []).extend(values)
        self.user_principal = user_principal

    def get_parameter(self, name: str) -> str | None:
        values = self.parameters.get(name)
        return values[0] if values else None

    def get_session(self, create: bool = True) -> FakeSession | None:
        session = self.browser.session
        if session is None or session.invalidated:
            if not create:
                return None
            session = FakeSession()
            self.browser.session = session
        return session


class FakeResponse:
    def __init__(self) -> None:
        self.redirects: list[str] = []
        self.cookies: dict[str, tuple[str, dict[str, Any]]] = {}

    @property
    def location(self) -> str | None:
        return self.redirects[-1] if self.redirects else None

    def send_redirect(self, location: str) -> None:
        self.redirects.append(location)

    def set_cookie(
        self,
        name: str,
        value: str,
        *,
        max_age: int | None = None,
        path: str = "/",
        secure: bool = True,
        http_only: bool = True,
    ) -> None:
        self.cookies[name] = (value, {"max_age": max_age, "path": path, "secure": secure, "http_only": http_only})


class FakeMessageContext:
    """Records what the mechanism asks of the container."""

    def __init__(self, request: Any, response: FakeResponse | None = None, is_protected: bool = True) -> None:
        self.request = request
        self.response = response or FakeResponse()
        self.is_protected = is_protected
        self.results: list[CredentialValidationResult] = []
        self.registered_sessions: list[tuple[str, frozenset[str]]] = []
        self.principals: list[str] = []
        self.restored_request: Any = None

    def redirect(self, location: str) -> AuthenticationStatus:
        self.response.send_redirect(location)
        return AuthenticationStatus.SEND_CONTINUE

    def do_nothing(self) -> AuthenticationStatus:
        return AuthenticationStatus.NOT_DONE

    def notify_container_about_login(self, result: CredentialValidationResult) -> AuthenticationStatus:
        self.results.append(result)
        if result.status == ValidationStatus.VALID:
            return AuthenticationStatus.SUCCESS
        if result.status == ValidationStatus.NOT_VALIDATED:
            return AuthenticationStatus.NOT_DONE
        return AuthenticationStatus.SEND_FAILURE

    def set_register_session(self, caller_name: str, caller_groups: Iterable[str]) -> None:
        self.registered_sessions.append((caller_name, frozenset(caller_groups)))

    def register_principal(self, principal: str) -> None:
        self.principals.append(principal)

    def with_request(self, request: Any) -> None:
        self.restored_request = request


def query_params(url: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlsplit(url).query, keep_blank_values=True).items()}


def make_definition(**overrides: Any) -> OpenIdDefinition:
    values: dict[str, Any] = {
        "provider_uri": ISSUER,
        "client_id": CLIENT_ID,
        "client_secret": CLIENT_SECRET,
    }
    values.update(overrides)
    return OpenIdDefinition(**values)
