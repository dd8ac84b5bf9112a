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
OpenID Connect relying party engine: Authorization Code flow, token validation, refresh and logout.
"""

__version__ = "0.1.0"
__author__ = "Gowtham A Rao"
__email__ = "gowtham.rao@coreason.ai"

from .config import OpenIdDefinition
from .configuration import ConfigurationController, OpenIdConfiguration
from .context import OpenIdContext
from .exceptions import ConfigurationError, CoreasonOidcError, InvalidTokenError
from .mechanism import FlowState, OpenIdAuthenticationMechanism
from .models import AuthenticationStatus, CredentialValidationResult, ValidationStatus
from .provider_metadata import ProviderMetadataResolver

__all__ = [
    "AuthenticationStatus",
    "ConfigurationController",
    "ConfigurationError",
    "CoreasonOidcError",
    "CredentialValidationResult",
    "FlowState",
    "InvalidTokenError",
    "OpenIdAuthenticationMechanism",
    "OpenIdConfiguration",
    "OpenIdContext",
    "OpenIdDefinition",
    "ProviderMetadataResolver",
    "ValidationStatus",
]
