"""
Pydantic schemas for the Cognito PostConfirmation trigger callback.

The Lambda forwards the trigger event as-is, so unknown fields are kept
(and are part of the signed body).
"""
from __future__ import annotations

from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr


class CognitoUserAttributes(BaseModel):
    model_config = ConfigDict(extra="allow")

    sub: Union[str, int]
    email: EmailStr


class CognitoTriggerRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    userAttributes: CognitoUserAttributes


class CognitoTriggerPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    version: Optional[str] = None
    region: Optional[str] = None
    userPoolId: str
    userName: Optional[str] = None
    triggerSource: str
    request: CognitoTriggerRequest
