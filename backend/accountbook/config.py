"""Application settings and validation."""

import os
from pathlib import Path

BASE = Path(__file__).resolve().parent.parent
DEFAULT_JWT_SECRET = "change_me_for_prod_change_me_for_prod"


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    ENV: str
    DATABASE_URL: str
    SQL_LOG: bool
    JWT_SECRET: str
    JWT_ALGORITHM: str
    JWT_EXPIRE_SECONDS: int
    JWT_REFRESH_EXPIRE_SECONDS: int
    ALLOW_INSECURE_JWT: bool
    CORS_ALLOWED_ORIGINS: list
    CATEGORY_CACHE_TTL_SECONDS: int
    CATEGORY_CACHE_MAX_SIZE: int
    INVITATION_DEFAULT_EXPIRATION_HOURS: int
    EXPOSE_ERROR_DEBUG: bool
    LOG_LEVEL: str

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'accountbook.db'}")
        self.SQL_LOG = _as_bool(os.getenv("SQL_LOG", "false"))
        self.JWT_SECRET = os.getenv("JWT_SECRET", DEFAULT_JWT_SECRET)
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        self.JWT_EXPIRE_SECONDS = int(os.getenv("JWT_EXPIRE_SECONDS", str(24 * 3600)))  # 24 hours
        self.JWT_REFRESH_EXPIRE_SECONDS = int(os.getenv("JWT_REFRESH_EXPIRE_SECONDS", str(14 * 24 * 3600)))
        self.ALLOW_INSECURE_JWT = _as_bool(os.getenv("ALLOW_INSECURE_JWT", "false"))
        default_origins = "*" if self.ENV == "dev" else ""
        raw_origins = os.getenv("CORS_ALLOWED_ORIGINS", default_origins)
        self.CORS_ALLOWED_ORIGINS = [o.strip() for o in raw_origins.split(",") if o.strip()]
        self.CATEGORY_CACHE_TTL_SECONDS = int(os.getenv("CATEGORY_CACHE_TTL_SECONDS", "3600"))
        self.CATEGORY_CACHE_MAX_SIZE = int(os.getenv("CATEGORY_CACHE_MAX_SIZE", "500"))
        self.INVITATION_DEFAULT_EXPIRATION_HOURS = int(os.getenv("INVITATION_DEFAULT_EXPIRATION_HOURS", "72"))
        self.EXPOSE_ERROR_DEBUG = _as_bool(os.getenv("EXPOSE_ERROR_DEBUG", "true" if self.ENV == "dev" else "false"))
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self._validate()

    def _validate(self):
        if self.ENV != "dev" and not self.ALLOW_INSECURE_JWT and self.JWT_SECRET == DEFAULT_JWT_SECRET:
            raise RuntimeError("JWT_SECRET must be set to a non-default value in non-dev environments")
        if self.CATEGORY_CACHE_MAX_SIZE <= 0:
            raise RuntimeError("CATEGORY_CACHE_MAX_SIZE must be positive")
        if self.INVITATION_DEFAULT_EXPIRATION_HOURS < 1:
            raise RuntimeError("INVITATION_DEFAULT_EXPIRATION_HOURS must be at least 1")


settings = Settings()
