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
IdentityMapper component for resolving the caller name and groups from the token claims.
"""

from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from coreason_oidc.configuration import ClaimsConfiguration
from coreason_oidc.exceptions import CoreasonOidcError
from coreason_oidc.utils.logger import logger


class CallerClaims(BaseModel):
    """
    Internal model to normalize the caller name and groups found in one claim source.

    Attributes:
        name (str | None): Value of the caller name claim, when it is a non-empty string.
        groups (list[str]): Value of the caller groups claim as a list of strings.
    """

    model_config = ConfigDict(frozen=True)

    name: str | None = None
    groups: list[str] = Field(default_factory=list)

    @field_validator("name", mode="before")
    @classmethod
    def ensure_string(cls, v: Any) -> str | None:
        if isinstance(v, str) and v.strip():
            return v
        return None

    @field_validator("groups", mode="before")
    @classmethod
    def ensure_list_of_strings(cls, v: Any) -> list[str]:
        """Ensures the value is a list of strings, filtering out None values."""
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        if isinstance(v, list | tuple):
            return [str(item) for item in v if item is not None]
        return []

    @classmethod
    def of(cls, claims: dict[str, Any], configuration: ClaimsConfiguration) -> "CallerClaims":
        return cls(
            name=claims.get(configuration.caller_name_claim),
            groups=claims.get(configuration.caller_groups_claim),
        )


class CallerIdentity(BaseModel):
    model_config = ConfigDict(frozen=True)

    caller_name: str
    caller_groups: frozenset[str] = Field(default_factory=frozenset)


class IdentityMapper:
    """
    Resolves who the caller is.

    The caller name is taken from the ID Token, then the access token, then UserInfo, then the subject.
    The caller groups are taken from the access token, then the ID Token, then UserInfo.
    UserInfo is only fetched when the tokens do not carry the claim.
    """

    def __init__(self, configuration: ClaimsConfiguration) -> None:
        self.configuration = configuration

    def map_identity(
        self,
        id_token_claims: dict[str, Any],
        access_token_claims: dict[str, Any],
        user_info: Callable[[], dict[str, Any]],
        subject: str,
    ) -> CallerIdentity:
        """
        Args:
            id_token_claims: Verified ID Token claims.
            access_token_claims: Claims of the access token, empty when it is not a JWT.
            user_info: Supplier of the UserInfo claims, called at most once.
            subject: The subject of the ID Token, last resort for the caller name.

        Returns:
            CallerIdentity: The caller name and groups.

        Raises:
            CoreasonOidcError: If fetching the UserInfo claims fails.
        """
        id_claims = CallerClaims.of(id_token_claims, self.configuration)
        access_claims = CallerClaims.of(access_token_claims, self.configuration)

        cached: list[CallerClaims] = []

        def user_info_claims() -> CallerClaims:
            if not cached:
                cached.append(CallerClaims.of(user_info(), self.configuration))
            return cached[0]

        try:
            caller_name = id_claims.name or access_claims.name or user_info_claims().name or subject
            caller_groups = access_claims.groups or id_claims.groups or user_info_claims().groups
        except CoreasonOidcError:
            logger.warning("Unable to resolve the caller identity from the UserInfo endpoint")
            raise

        logger.debug(f"Resolved {len(caller_groups)} caller group(s) for the OpenID context")
        return CallerIdentity(caller_name=caller_name, caller_groups=frozenset(caller_groups))
