# identity_api/auth/__init__.py
"""
Authentication modules for the identity service.

This package contains:
- identity.py: Canonical authenticated principal (userId + sessionId)
- sessions.py: Session token issuance and validation (RS256)
- session_gate.py: Cookie / bearer session authentication for user routes
- sources.py: Signed-request authentication for trusted machine senders
"""
from identity_api.auth.identity import Principal

__all__ = ["Principal"]
