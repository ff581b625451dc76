from tokenguard.repositories.refresh_token import RefreshTokenRepository

__all__ = ["RefreshTokenRepository"]
