"""Opaque token and record-id generation."""

from __future__ import annotations

import secrets
from uuid import uuid4

TOKEN_BYTES = 32  # 256 bits -> 64 hex chars


class SecureTokenGenerator:
    """Produce unpredictable refresh/handoff token values from the OS CSPRNG."""

    def generate(self) -> str:
        """Return 64 lowercase hex characters."""
        return secrets.token_hex(TOKEN_BYTES)

    def new_id(self) -> str:
        """Return a fresh record id; ids are never recycled."""
        return uuid4().hex
