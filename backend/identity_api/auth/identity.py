# identity_api/auth/identity.py
"""
Canonical authenticated principal.

A ``Principal`` is what the session gate attaches to ``request.state`` once a
session token has been validated. Downstream handlers reason about "who is
this user?" through it without inspecting raw tokens or cookies.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

CredentialSource = Literal["bearer", "cookie"]


@dataclass(frozen=True)
class Principal:
    """
    Attributes:
        user_id: Canonical user id (the ``userId`` claim of the session token).
        session_id: Session id the token was minted for.
        source: Where the credential came from (``"bearer"`` or ``"cookie"``).
        expires_at: Token expiry as epoch seconds.
    """

    user_id: str
    session_id: str
    source: CredentialSource
    expires_at: int
