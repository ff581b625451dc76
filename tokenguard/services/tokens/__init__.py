"""Refresh-token lifecycle: issuance, rotation, revocation, cleanup."""

from tokenguard.services._shared.ports import TokenStatistics

from .dto import TokenConfig, TokenMetadata, TokenPair, UserTokenStats
from .engine import TokenEngine
from .generator import SecureTokenGenerator
from .handoff import HandoffTokenService
from .inspector import TokenInspector
from .issuer import TokenIssuer
from .janitor import TokenJanitor
from .revoker import TokenRevoker
from .rotator import TokenRotator

__all__ = [
    "TokenConfig",
    "TokenMetadata",
    "TokenPair",
    "UserTokenStats",
    "TokenStatistics",
    "TokenEngine",
    "SecureTokenGenerator",
    "HandoffTokenService",
    "TokenInspector",
    "TokenIssuer",
    "TokenJanitor",
    "TokenRevoker",
    "TokenRotator",
]
