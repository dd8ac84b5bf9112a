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
UserInfo endpoint client.
"""

from typing import Any

import httpx

from coreason_oidc.configuration import OpenIdConfiguration
from coreason_oidc.exceptions import ProtocolError, SubjectMismatchError, TransportError, UnsupportedTokenError
from coreason_oidc.models import ErrorResponse
from coreason_oidc.tokens import AccessToken
from coreason_oidc.transport import error_body, parse_json_object, send_limited
from coreason_oidc.utils.logger import anonymize, logger

APPLICATION_JSON = "application/json"
APPLICATION_JWT = "application/jwt"


class UserInfoController:
    """
    Fetches the UserInfo claims of the authenticated caller.
    """

    def __init__(self, client: httpx.Client) -> None:
        self.client = client

    def get_user_info(self, configuration: OpenIdConfiguration, access_token: AccessToken, subject: str | None) -> dict[str, Any]:
        """
        Calls the UserInfo endpoint with the access token as Bearer credential.

        Args:
            configuration: The relying party configuration.
            access_token: The current access token.
            subject: The `sub` of the current ID Token; the response must carry the same subject.

        Returns:
            dict[str, Any]: The UserInfo claims.

        Raises:
            UnsupportedTokenError: If the provider answers with a signed/encrypted (application/jwt) response.
            ProtocolError: If the provider answers with an error status.
            TransportError: On network failures or an unexpected content type.
            SubjectMismatchError: If the `sub` claim differs from the caller's subject.
        """
        endpoint = configuration.provider_metadata.userinfo_endpoint
        logger.debug(f"Sending the request to the userinfo endpoint {endpoint}")
        response = send_limited(
            self.client,
            "GET",
            endpoint,
            headers={"Accept": APPLICATION_JSON, "Authorization": f"Bearer {access_token.token}"},
            timeout=configuration.http_timeout,
        )

        content_type = response.headers.get("Content-Type")
        if response.status_code == 200:
            if content_type and APPLICATION_JSON in content_type:
                user_info = parse_json_object(response)
            elif content_type and APPLICATION_JWT in content_type:
                raise UnsupportedTokenError("application/jwt content-type not supported for userinfo endpoint")
            else:
                raise TransportError(f"Invalid response received from userinfo endpoint with content-type : {content_type}")
        else:
            error = ErrorResponse.from_body(error_body(response))
            logger.warning(f"Error occurred in fetching user info: {error.error} caused by {error.error_description}")
            raise ProtocolError(
                "Error occurred in fetching user info",
                error=error.error,
                error_description=error.error_description,
            )

        if user_info.get("sub") != subject:
            salt = configuration.pii_salt.get_secret_value()
            logger.warning(f"UserInfo subject does not match the ID Token subject {anonymize(str(subject), salt)}")
            raise SubjectMismatchError("UserInfo Response is invalid as sub claim must match with the sub Claim in the ID Token")
        return user_info
