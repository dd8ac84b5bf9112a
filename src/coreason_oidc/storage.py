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
Cross-request storage for values that must survive the round trip to the provider.

Values are single-use: whoever consumes a value removes it.
"""

from typing import Protocol, runtime_checkable

from coreason_oidc.configuration import OpenIdConfiguration
from coreason_oidc.exceptions import SessionUnavailableError
from coreason_oidc.http import HttpRequest, HttpResponse


@runtime_checkable
class HttpStorage(Protocol):
    def store(self, name: str, value: str, max_age: int | None = None) -> None: ...

    def get(self, name: str) -> str | None: ...

    def remove(self, name: str) -> None: ...


class SessionStorage:
    """
    Keeps values as session attributes. `max_age` is ignored; values live as long as the session.
    """

    def __init__(self, request: HttpRequest) -> None:
        self.request = request

    def store(self, name: str, value: str, max_age: int | None = None) -> None:
        session = self.request.get_session(create=True)
        if session is None:
            raise SessionUnavailableError("The container did not provide a session")
        session.set_attribute(name, value)

    def get(self, name: str) -> str | None:
        session = self.request.get_session(create=False)
        if session is None:
            return None
        value = session.get_attribute(name)
        return None if value is None else str(value)

    def remove(self, name: str) -> None:
        session = self.request.get_session(create=False)
        if session is not None:
            session.remove_attribute(name)


class CookieStorage:
    """
    Keeps values in http-only, secure cookies scoped to the application context path.

    Blank cookie values are treated as absent. Removal expires the cookie immediately.
    """

    def __init__(self, request: HttpRequest, response: HttpResponse) -> None:
        self.request = request
        self.response = response

    @property
    def path(self) -> str:
        return self.request.context_path or "/"

    def store(self, name: str, value: str, max_age: int | None = None) -> None:
        self.response.set_cookie(
            name,
            value,
            max_age=max_age,
            path=self.path,
            secure=True,
            http_only=True,
        )

    def get(self, name: str) -> str | None:
        value = self.request.cookies.get(name)
        if value is None or not value.strip():
            return None
        return value

    def remove(self, name: str) -> None:
        self.store(name, "", 0)


def get_storage(configuration: OpenIdConfiguration, request: HttpRequest, response: HttpResponse) -> HttpStorage:
    """Selects the session or the cookie storage according to `use_session`."""
    if configuration.use_session:
        return SessionStorage(request)
    return CookieStorage(request, response)
