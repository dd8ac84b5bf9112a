# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_identity

from typing import Any
from unittest.mock import patch

import httpx
import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode, Tracer
from support import CALLBACK_URL, ISSUER, Browser, FakeProvider, id_token_claims, sign

from coreason_oidc.configuration import OpenIdConfiguration
from coreason_oidc.exceptions import InvalidIssuerError
from coreason_oidc.jwks import KeySelectorCache
from coreason_oidc.state import NonceController
from coreason_oidc.token_controller import TokenController
from coreason_oidc.tokens import parse_jwt
from coreason_oidc.validator import JwtValidator
from coreason_oidc.verifiers import ClaimsVerifierChain, StandardClaimsVerifier


@pytest.fixture
def telemetry_setup() -> tuple[InMemorySpanExporter, Tracer]:
    """Sets up an OpenTelemetry tracer with an in-memory exporter."""
    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    return exporter, provider.get_tracer("test_tracer")


@pytest.fixture
def validator(configuration: OpenIdConfiguration, http_client: httpx.Client) -> JwtValidator:
    return JwtValidator(configuration, KeySelectorCache(http_client))


def chain() -> ClaimsVerifierChain:
    return ClaimsVerifierChain(StandardClaimsVerifier(ISSUER, "my-client"))


def test_validation_success_span(
    telemetry_setup: tuple[InMemorySpanExporter, Tracer], validator: JwtValidator, rsa_key: Any
) -> None:
    exporter, tracer = telemetry_setup

    with patch("coreason_oidc.validator.tracer", tracer):
        validator.validate(parse_jwt(sign(rsa_key, id_token_claims())), chain())

    spans = exporter.get_finished_spans()
    assert len(spans) == 1
    assert spans[0].name == "validate_jwt"
    assert spans[0].attributes is not None
    assert spans[0].attributes["jwt.alg"] == "RS256"
    assert spans[0].status.status_code == StatusCode.OK


def test_validation_failure_span(
    telemetry_setup: tuple[InMemorySpanExporter, Tracer], validator: JwtValidator, rsa_key: Any
) -> None:
    exporter, tracer = telemetry_setup

    with patch("coreason_oidc.validator.tracer", tracer):
        with pytest.raises(InvalidIssuerError):
            validator.validate(parse_jwt(sign(rsa_key, id_token_claims(iss="https://evil.example.com"))), chain())

    span = exporter.get_finished_spans()[0]
    assert span.status.status_code == StatusCode.ERROR
    assert "Invalid issuer" in (span.status.description or "")
    assert any(event.name == "exception" for event in span.events)


def test_token_exchange_span(
    telemetry_setup: tuple[InMemorySpanExporter, Tracer],
    configuration: OpenIdConfiguration,
    http_client: httpx.Client,
    validator: JwtValidator,
    provider: FakeProvider,
) -> None:
    exporter, tracer = telemetry_setup
    provider.token_responses.append((400, {"error": "invalid_grant"}))
    controller = TokenController(configuration, http_client, validator, NonceController(configuration))

    with patch("coreason_oidc.token_controller.tracer", tracer):
        controller.get_tokens(Browser().request(f"{CALLBACK_URL}?code=c"))

    span = exporter.get_finished_spans()[0]
    assert span.name == "token_exchange"
    assert span.attributes is not None
    assert span.attributes["oauth.grant_type"] == "authorization_code"
    assert span.attributes["http.status_code"] == 400
    assert span.status.status_code == StatusCode.ERROR
