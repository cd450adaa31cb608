"""
Wrapper around boto3 Cognito Identity Provider admin APIs.

Provides a stable, exception-friendly interface for the reconciler to call
without leaking boto3-specific errors up the stack.
"""
from __future__ import annotations

import logging
from typing import Mapping

from botocore.client import BaseClient
from botocore.exceptions import ClientError


logger = logging.getLogger(__name__)

USER_ID_ATTRIBUTE = "custom:dreamup_id"


class CognitoClientError(Exception):
    """Raised when Cognito returns an error."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


def _translate_error(exc: ClientError) -> CognitoClientError:
    error = exc.response.get("Error", {})
    code = error.get("Code", "CognitoClientError")
    message = error.get("Message", str(exc))
    return CognitoClientError(code=code, message=message)


class CognitoAdminClient:
    def __init__(self, client: BaseClient, user_pool_id: str) -> None:
        self.client = client
        self.user_pool_id = user_pool_id

    def set_user_attributes(self, username: str, attributes: Mapping[str, str]) -> None:
        """Call Cognito AdminUpdateUserAttributes."""
        try:
            self.client.admin_update_user_attributes(
                UserPoolId=self.user_pool_id,
                Username=username,
                UserAttributes=[{"Name": name, "Value": str(value)} for name, value in attributes.items()],
            )
        except ClientError as exc:
            raise _translate_error(exc) from exc
        logger.info("Updated Cognito attributes %s for %s", ", ".join(attributes), username)

    def set_user_id(self, username: str, user_id: str) -> None:
        self.set_user_attributes(username, {USER_ID_ATTRIBUTE: user_id})
