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
Size-limited HTTP helpers shared by every call made to the OpenID Provider.
"""

import json
from typing import Any

import httpx

from coreason_oidc.exceptions import OversizedResponseError, TransportError
from coreason_oidc.utils.logger import logger

MAX_RESPONSE_BYTES = 1_000_000


def build_timeout(connect_ms: int, read_ms: int) -> httpx.Timeout:
    """
    Builds an httpx timeout from millisecond values (the unit used by the JWKS settings).
    """
    return httpx.Timeout(read_ms / 1000, connect=connect_ms / 1000)


def send_limited(
    client: httpx.Client,
    method: str,
    url: str,
    max_bytes: int = MAX_RESPONSE_BYTES,
    **kwargs: Any,
) -> httpx.Response:
    """
    Sends a request and reads the body, refusing bodies larger than `max_bytes`.

    The status code is NOT checked; callers decide how to interpret it.

    Args:
        client: The HTTP client to use.
        method: The HTTP method.
        url: The target URL.
        max_bytes: Maximum accepted body size in bytes.
        **kwargs: Passed through to `httpx.Client.stream` (headers, data, timeout...).

    Returns:
        httpx.Response: A fully read response.

    Raises:
        OversizedResponseError: If the body exceeds `max_bytes`.
        TransportError: If the request fails at the network level.
    """
    try:
        with client.stream(method, url, **kwargs) as response:
            content_length = response.headers.get("Content-Length")
            if content_length:
                try:
                    if int(content_length) > max_bytes:
                        raise OversizedResponseError(f"Response from {url} too large ({content_length} bytes)")
                except ValueError:
                    pass

            content = bytearray()
            for chunk in response.iter_bytes():
                content.extend(chunk)
                if len(content) > max_bytes:
                    raise OversizedResponseError(f"Response from {url} too large")

            # The body is already decoded
            headers = [
                (k, v)
                for k, v in response.headers.multi_items()
                if k.lower() not in ("content-encoding", "content-length")
            ]
            return httpx.Response(
                status_code=response.status_code,
                headers=headers,
                content=bytes(content),
                request=response.request,
            )
    except httpx.HTTPError as e:
        logger.error(f"{method} {url} failed: {e}")
        raise TransportError(f"{method} {url} failed: {e}") from e


def parse_json_object(response: httpx.Response) -> dict[str, Any]:
    """
    Parses a response body as a JSON object.

    Raises:
        TransportError: If the body is not a JSON object.
    """
    try:
        data = json.loads(response.content) if response.content else {}
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise TransportError(f"Invalid JSON received from {response.request.url}: {e}") from e
    if not isinstance(data, dict):
        raise TransportError(f"Expected a JSON object from {response.request.url}")
    return data


def safe_json_fetch(
    client: httpx.Client,
    url: str,
    method: str = "GET",
    **kwargs: Any,
) -> dict[str, Any]:
    """
    Fetches a JSON object, failing on any non-success status.

    Raises:
        TransportError: On network errors, non-2xx statuses or invalid JSON.
        OversizedResponseError: If the body is too large.
    """
    headers = {"Accept": "application/json", **kwargs.pop("headers", {})}
    response = send_limited(client, method, url, headers=headers, **kwargs)
    if not response.is_success:
        raise TransportError(f"{method} {url} returned HTTP {response.status_code}")
    return parse_json_object(response)


def error_body(response: httpx.Response) -> dict[str, Any]:
    """
    Parses an error response body. Error bodies are only used for logging, so a non-JSON body reads as empty.
    """
    try:
        return parse_json_object(response)
    except TransportError:
        return {}
