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
Boundary with the hosting web container.

The engine never talks to a web framework directly. The host adapts its request, response,
session and authentication callbacks to the protocols below.
"""

from collections.abc import Iterable, Mapping
from contextlib import AbstractContextManager
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from coreason_oidc.models import AuthenticationStatus, CredentialValidationResult


@runtime_checkable
class HttpSession(Protocol):
    """
    A server side session.

    `lock` is a per-session mutex owned by the session store; it serializes token refreshes.
    """

    @property
    def id(self) -> str: ...

    @property
    def lock(self) -> AbstractContextManager[Any]: ...

    def get_attribute(self, name: str) -> Any: ...

    def set_attribute(self, name: str, value: Any) -> None: ...

    def remove_attribute(self, name: str) -> None: ...

    def invalidate(self) -> None: ...


@runtime_checkable
class HttpRequest(Protocol):
    """
    An inbound request.

    Attributes:
        method (str): HTTP method.
        request_url (str): Scheme, host, port and path, without the query string.
        request_uri (str): Path part of the URL, including the context path.
        context_path (str): Root path of the application ("" for the root context).
        query_string (str | None): Raw query string, without the leading "?".
        headers (Mapping[str, str]): Request headers.
        cookies (Mapping[str, str]): Request cookies.
        parameters (Mapping[str, list[str]]): Query and form parameters.
        user_principal (str | None): The principal already established for this request.
    """

    method: str
    request_url: str
    request_uri: str
    context_path: str
    query_string: str | None
    headers: Mapping[str, str]
    cookies: Mapping[str, str]
    parameters: Mapping[str, list[str]]
    user_principal: str | None

    def get_parameter(self, name: str) -> str | None: ...

    def get_session(self, create: bool = True) -> HttpSession | None: ...


@runtime_checkable
class HttpResponse(Protocol):
    def send_redirect(self, location: str) -> None: ...

    def set_cookie(
        self,
        name: str,
        value: str,
        *,
        max_age: int | None = None,
        path: str = "/",
        secure: bool = True,
        http_only: bool = True,
    ) -> None: ...


@runtime_checkable
class HttpMessageContext(Protocol):
    """
    Per-request handle on the container's authentication machinery.
    """

    request: HttpRequest
    response: HttpResponse
    is_protected: bool

    def redirect(self, location: str) -> AuthenticationStatus: ...

    def do_nothing(self) -> AuthenticationStatus: ...

    def notify_container_about_login(self, result: CredentialValidationResult) -> AuthenticationStatus: ...

    def set_register_session(self, caller_name: str, caller_groups: Iterable[str]) -> None: ...

    def register_principal(self, principal: str) -> None: ...

    def with_request(self, request: HttpRequest) -> None: ...


def full_request_url(request: HttpRequest) -> str:
    """Returns the request URL including its query string."""
    if request.query_string:
        return f"{request.request_url}?{request.query_string}"
    return request.request_url


class RequestData(BaseModel):
    """
    Snapshot of a request taken before redirecting to the provider, stored as JSON.
    """

    model_config = ConfigDict(frozen=True)

    method: str = "GET"
    request_url: str
    query_string: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    cookies: dict[str, str] = Field(default_factory=dict)
    parameters: dict[str, list[str]] = Field(default_factory=dict)

    @classmethod
    def of(cls, request: HttpRequest) -> "RequestData":
        return cls(
            method=request.method,
            request_url=request.request_url,
            query_string=request.query_string,
            headers=dict(request.headers),
            cookies=dict(request.cookies),
            parameters={k: list(v) for k, v in request.parameters.items()},
        )

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, value: str) -> "RequestData":
        return cls.model_validate_json(value)

    @property
    def full_url(self) -> str:
        if self.query_string:
            return f"{self.request_url}?{self.query_string}"
        return self.request_url


class RestoredRequest:
    """
    Presents the original request in place of the callback request once authentication completes.

    Restoration is GET-style: parameters and headers come from the snapshot, the body is not replayed
    and the method is always reported as GET. Session, principal and paths are those of the live request.
    """

    def __init__(self, request: HttpRequest, data: RequestData) -> None:
        self._request = request
        self.data = data
        self.method = "GET"
        self.request_url = data.request_url
        self.query_string = data.query_string
        self.headers: Mapping[str, str] = data.headers
        self.cookies: Mapping[str, str] = {**request.cookies, **data.cookies}
        self.parameters: Mapping[str, list[str]] = data.parameters

    @property
    def request_uri(self) -> str:
        return self._request.request_uri

    @property
    def context_path(self) -> str:
        return self._request.context_path

    @property
    def user_principal(self) -> str | None:
        return self._request.user_principal

    def get_parameter(self, name: str) -> str | None:
        values = self.parameters.get(name)
        return values[0] if values else None

    def get_session(self, create: bool = True) -> HttpSession | None:
        return self._request.get_session(create)
