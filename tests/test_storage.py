# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_identity

from unittest.mock import patch

import pytest
from support import PROTECTED_URL, Browser, FakeResponse

from coreason_oidc.configuration import OpenIdConfiguration
from coreason_oidc.exceptions import SessionUnavailableError
from coreason_oidc.storage import CookieStorage, HttpStorage, SessionStorage, get_storage


class TestSessionStorage:
    def test_store_get_remove(self) -> None:
        request = Browser().request(PROTECTED_URL)
        storage = SessionStorage(request)

        storage.store("key", "value")
        assert storage.get("key") == "value"

        storage.remove("key")
        assert storage.get("key") is None

    def test_reading_does_not_create_a_session(self) -> None:
        browser = Browser()
        storage = SessionStorage(browser.request(PROTECTED_URL))

        assert storage.get("key") is None
        storage.remove("key")
        assert browser.session is None

    def test_values_survive_across_requests(self) -> None:
        browser = Browser()
        SessionStorage(browser.request(PROTECTED_URL)).store("key", "value")

        assert SessionStorage(browser.request(PROTECTED_URL)).get("key") == "value"

    def test_store_without_container_session(self) -> None:
        request = Browser().request(PROTECTED_URL)

        with patch.object(request, "get_session", return_value=None):
            with pytest.raises(SessionUnavailableError, match="did not provide a session"):
                SessionStorage(request).store("key", "value")


class TestCookieStorage:
    def test_store_sets_protected_cookie(self) -> None:
        response = FakeResponse()
        storage = CookieStorage(Browser().request(PROTECTED_URL, context_path="/app"), response)

        storage.store("key", "value", max_age=60)

        value, options = response.cookies["key"]
        assert value == "value"
        assert options == {"max_age": 60, "path": "/app", "secure": True, "http_only": True}

    def test_root_context_uses_slash_path(self) -> None:
        response = FakeResponse()
        CookieStorage(Browser().request("https://app.example.com/page", context_path=""), response).store("k", "v")

        assert response.cookies["k"][1]["path"] == "/"

    def test_get_reads_request_cookies(self) -> None:
        browser = Browser()
        browser.cookies = {"key": "value", "blank": "  "}
        storage = CookieStorage(browser.request(PROTECTED_URL), FakeResponse())

        assert storage.get("key") == "value"
        assert storage.get("blank") is None
        assert storage.get("missing") is None

    def test_remove_expires_cookie(self) -> None:
        response = FakeResponse()
        CookieStorage(Browser().request(PROTECTED_URL), response).remove("key")

        value, options = response.cookies["key"]
        assert value == ""
        assert options["max_age"] == 0


def test_get_storage_follows_use_session(configuration: OpenIdConfiguration) -> None:
    request = Browser().request(PROTECTED_URL)
    response = FakeResponse()

    session_storage = get_storage(configuration, request, response)
    cookie_storage = get_storage(configuration.model_copy(update={"use_session": False}), request, response)

    assert isinstance(session_storage, SessionStorage)
    assert isinstance(cookie_storage, CookieStorage)
    assert isinstance(cookie_storage, HttpStorage)
