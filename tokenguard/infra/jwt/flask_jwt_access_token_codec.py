# tokenguard/infra/jwt/flask_jwt_access_token_codec.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, cast

from tokenguard.services._shared.ports import AccessClaims, AccessTokenCodec


@dataclass(slots=True)
class FlaskJWTAccessTokenCodec(AccessTokenCodec):
    """
    Adapter for Flask-JWT-Extended.

    Identity claims travel as ``additional_claims``; the subject is the user id.

    .. note::
       Requires an active Flask app context with ``JWT_SECRET_KEY`` configured.
    """

    def encode(self, claims: AccessClaims, *, expires_delta: timedelta) -> str:
        from flask_jwt_extended import create_access_token as _create_access

        return cast(
            str,
            _create_access(
                identity=claims.subject,
                additional_claims=claims.as_additional_claims(),
                expires_delta=expires_delta,
            ),
        )

    def decode(self, token: str) -> dict[str, Any]:
        from flask_jwt_extended import decode_token

        return cast(dict[str, Any], decode_token(token))
