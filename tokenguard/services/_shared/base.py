# tokenguard/services/_shared/base.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from tokenguard.core import errors as api_errors
from tokenguard.services._shared.errors import (
    RefreshTokenError,
    RotationTimeoutError,
    ServiceError,
)
from tokenguard.services._shared.ports.clock import Clock, SystemClock

log = logging.getLogger(__name__)

# Uniform client-facing message: never reveal which check failed.
SESSION_EXPIRED_MESSAGE = "Session expired, please sign in again."


@dataclass(slots=True)
class ServiceContext:
    """
    Carry cross-cutting request-scoped data (tracing, actor).

    :param actor_id: Authenticated user identifier, when known.
    :param request_id: Correlation id for logging/tracing.
    """

    actor_id: str | None = None
    request_id: str | None = None


class BaseService:
    """
    Base class for token services.

    Responsibilities
    ----------------
    * Own the injectable clock so expiry logic is deterministic in tests.
    * Centralize error translation towards the HTTP boundary.
    * Keep services thin and free of web/ORM leakage.
    """

    def __init__(self, *, clock: Clock | None = None, ctx: ServiceContext | None = None) -> None:
        """
        Initialize the base service.

        :param clock: Time source; defaults to the system clock.
        :type clock: Clock | None
        :param ctx: Optional request-scoped context.
        :type ctx: ServiceContext | None
        """
        self.clock = clock or SystemClock()
        self.ctx = ctx or ServiceContext()

    def now_utc(self) -> datetime:
        """Return the current instant from the injected clock."""
        return self.clock.now()

    def log_extra(self, **fields: object) -> dict[str, object]:
        """Build a structured ``extra`` mapping tagged with the request id."""
        extra: dict[str, object] = {"request_id": self.ctx.request_id}
        extra.update(fields)
        return extra

    # -------------------------- Error handling ------------------------------

    def translate_exceptions(self, exc: Exception) -> Exception:
        """
        Map service-level errors to API-level (HTTP) errors.

        :param exc: Exception raised within the service.
        :type exc: Exception
        :returns: Translated exception ready to be re-raised.
        :rtype: Exception
        """
        if isinstance(exc, RefreshTokenError):
            # → 401, reason stays in the audit log only
            log.info("auth.rejected", extra=self.log_extra(reason=exc.reason.value))
            return api_errors.Unauthorized(SESSION_EXPIRED_MESSAGE)

        if isinstance(exc, RotationTimeoutError):
            # → 503 Service Unavailable
            return api_errors.ServiceUnavailable(str(exc))

        # Any other ServiceError subclass (e.g. collisions) → 500
        if isinstance(exc, ServiceError):
            return api_errors.APIError(
                message="Internal error",
                status_code=500,
                code="internal_server_error",
            )

        # Fallback: return untouched (will bubble up to Flask handler)
        return exc
