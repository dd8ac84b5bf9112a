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
Controllers persisting the `state` and `nonce` values between the redirect and the callback.
"""

import base64
import hashlib

from coreason_oidc.configuration import OpenIdConfiguration
from coreason_oidc.http import HttpRequest, HttpResponse
from coreason_oidc.models import OpenIdNonce, OpenIdState
from coreason_oidc.storage import get_storage

STATE_KEY = "oidc.state"
NONCE_KEY = "oidc.nonce"


class StateController:
    """Stores, reads and removes the expected `state` of the current round trip."""

    def __init__(self, configuration: OpenIdConfiguration) -> None:
        self.configuration = configuration

    def store(self, state: OpenIdState, request: HttpRequest, response: HttpResponse) -> None:
        get_storage(self.configuration, request, response).store(STATE_KEY, state.value)

    def get(self, request: HttpRequest, response: HttpResponse) -> OpenIdState | None:
        return OpenIdState.from_value(get_storage(self.configuration, request, response).get(STATE_KEY))

    def remove(self, request: HttpRequest, response: HttpResponse) -> None:
        get_storage(self.configuration, request, response).remove(STATE_KEY)


class NonceController:
    """
    Stores the raw nonce server side and derives the hash sent to the provider.
    """

    def __init__(self, configuration: OpenIdConfiguration) -> None:
        self.configuration = configuration

    def store(self, nonce: OpenIdNonce, request: HttpRequest, response: HttpResponse) -> None:
        get_storage(self.configuration, request, response).store(NONCE_KEY, nonce.value)

    def get(self, request: HttpRequest, response: HttpResponse) -> OpenIdNonce | None:
        value = get_storage(self.configuration, request, response).get(NONCE_KEY)
        if value is None or not value.strip():
            return None
        return OpenIdNonce(value=value)

    def remove(self, request: HttpRequest, response: HttpResponse) -> None:
        get_storage(self.configuration, request, response).remove(NONCE_KEY)

    @staticmethod
    def get_nonce_hash(nonce: OpenIdNonce) -> str:
        """
        Computes the value transmitted in the authorization request.

        Returns:
            str: base64url (unpadded) SHA-256 digest of the ASCII nonce value.
        """
        digest = hashlib.sha256(nonce.value.encode("ascii")).digest()
        return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
