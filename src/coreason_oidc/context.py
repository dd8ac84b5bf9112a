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
The session-scoped OpenID Connect context of an authenticated caller.
"""

from typing import Any

from coreason_oidc.authentication import AuthenticationController
from coreason_oidc.configuration import OpenIdConfiguration
from coreason_oidc.http import HttpRequest, HttpResponse, HttpSession
from coreason_oidc.models import RefreshToken
from coreason_oidc.storage import get_storage
from coreason_oidc.tokens import AccessToken, IdentityToken
from coreason_oidc.userinfo import UserInfoController

CONTEXT_KEY = "oidc.context"


class OpenIdContext:
    """
    Tokens and caller information of one session.

    Created on the first successful authentication of a session and updated in place on refresh.
    The UserInfo claims are fetched on first access only.

    Attributes:
        caller_name (str | None): The resolved caller name.
        caller_groups (frozenset[str]): The resolved caller groups.
        token_type (str | None): The token type declared by the Token Endpoint.
        access_token (AccessToken | None): The current access token.
        identity_token (IdentityToken | None): The current, verified ID Token.
        refresh_token (RefreshToken | None): The current refresh token, if any.
        expires_in (int | None): Access token lifetime declared by the Token Endpoint.
    """

    def __init__(
        self,
        configuration: OpenIdConfiguration,
        userinfo_controller: UserInfoController,
        authentication_controller: AuthenticationController,
    ) -> None:
        self.configuration = configuration
        self.userinfo_controller = userinfo_controller
        self.authentication_controller = authentication_controller

        self.caller_name: str | None = None
        self.caller_groups: frozenset[str] = frozenset()
        self.token_type: str | None = None
        self.access_token: AccessToken | None = None
        self.identity_token: IdentityToken | None = None
        self.refresh_token: RefreshToken | None = None
        self.expires_in: int | None = None
        self._claims: dict[str, Any] | None = None

    @classmethod
    def from_session(cls, session: HttpSession | None) -> "OpenIdContext | None":
        if session is None:
            return None
        context = session.get_attribute(CONTEXT_KEY)
        return context if isinstance(context, cls) else None

    def bind(self, session: HttpSession) -> None:
        session.set_attribute(CONTEXT_KEY, self)

    @property
    def subject(self) -> str | None:
        if self.identity_token is None:
            return None
        return self.identity_token.subject

    def get_claims(self) -> dict[str, Any]:
        """
        Returns the UserInfo claims, calling the UserInfo endpoint on first use.

        Without an access token or a UserInfo endpoint the claims are empty.
        """
        if self._claims is None:
            if self.access_token is not None and self.configuration.provider_metadata.userinfo_endpoint:
                self._claims = self.userinfo_controller.get_user_info(self.configuration, self.access_token, self.subject)
            else:
                self._claims = {}
        return self._claims

    @property
    def provider_metadata(self) -> dict[str, Any]:
        """The provider's discovery document."""
        return self.configuration.provider_metadata.document

    def get_stored_value(self, request: HttpRequest, response: HttpResponse, key: str) -> str | None:
        """Reads a value from the cross-request storage (session or cookie)."""
        return get_storage(self.configuration, request, response).get(key)

    def logout(self, request: HttpRequest, response: HttpResponse) -> None:
        """Invalidates the session and redirects according to the logout policy."""
        id_token_hint = self.identity_token.token if self.identity_token is not None else None
        self.authentication_controller.logout(request, response, id_token_hint)

    def __repr__(self) -> str:
        return f"OpenIdContext(token_type={self.token_type!r}, refresh_token={self.refresh_token is not None})"
