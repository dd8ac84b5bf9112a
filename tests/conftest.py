# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_identity

import os
from collections.abc import Generator
from typing import Any

import httpx
import pytest
from authlib.jose import JsonWebKey
from support import FakeProvider, make_definition

from coreason_oidc.config import OpenIdDefinition
from coreason_oidc.configuration import ConfigurationController, OpenIdConfiguration
from coreason_oidc.provider_metadata import ProviderMetadataResolver


@pytest.fixture(scope="session")
def rsa_key() -> Any:
    return JsonWebKey.generate_key("RSA", 2048, is_private=True, options={"kid": "test-key"})


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keeps COREASON_OIDC_* variables of the developer's shell out of the definitions under test."""
    for name in list(os.environ):
        if name.upper().startswith("COREASON_OIDC_"):
            monkeypatch.delenv(name)


@pytest.fixture
def provider(rsa_key: Any) -> FakeProvider:
    return FakeProvider(rsa_key)


@pytest.fixture
def http_client(provider: FakeProvider) -> Generator[httpx.Client, None, None]:
    client = provider.client()
    yield client
    client.close()


@pytest.fixture
def definition() -> OpenIdDefinition:
    return make_definition()


@pytest.fixture
def configuration_controller(http_client: httpx.Client) -> ConfigurationController:
    return ConfigurationController(ProviderMetadataResolver(http_client))


@pytest.fixture
def configuration(
    configuration_controller: ConfigurationController, definition: OpenIdDefinition
) -> OpenIdConfiguration:
    return configuration_controller.produce(definition)
