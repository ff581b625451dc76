"""Service layer public API.

Re-exports
----------
- Base primitives (from ``tokenguard.services._shared.base``)
    * :class:`BaseService`
    * :class:`ServiceContext`

- Token services (from ``tokenguard.services.tokens``)
    * :class:`TokenEngine` facade
    * DTOs: :class:`TokenConfig`, :class:`TokenMetadata`, :class:`TokenPair`,
      :class:`UserTokenStats`
"""

from __future__ import annotations

from tokenguard.services._shared.base import BaseService, ServiceContext
from tokenguard.services.tokens import (
    TokenConfig,
    TokenEngine,
    TokenMetadata,
    TokenPair,
    UserTokenStats,
)

__all__ = [
    "BaseService",
    "ServiceContext",
    "TokenConfig",
    "TokenEngine",
    "TokenMetadata",
    "TokenPair",
    "UserTokenStats",
]
