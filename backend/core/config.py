import json
from typing import List, Optional

from pydantic_settings import BaseSettings

# Values some deploy dashboards put in ALLOW_ORIGINS when it is "unset"
_NULL_ORIGINS = {"null", "none", "undefined", "false", "0"}


class Settings(BaseSettings):
    # CORS: raw string, see cors_origins()
    ALLOW_ORIGINS: Optional[str] = None

    # Auth/JWT (tokens are issued by the intranet login, we only decode them)
    AUTH_SECRET_KEY: str = "change-me"       # set via ENV in production
    AUTH_ALGORITHM: str = "HS256"

    # EasyVerein API
    EASYVEREIN_API_BASE: str = "https://easyverein.com/api/v2.0"
    EASYVEREIN_API_TOKEN: Optional[str] = None
    # .env file whose EASYVEREIN_API_TOKEN line is rewritten when the DB is unavailable
    EASYVEREIN_ENV_FILE: str = ".env"
    EASYVEREIN_PAGE_LIMIT: int = 100
    # Seconds a token held in memory is trusted before system_settings is read again
    EASYVEREIN_TOKEN_MEMORY_TTL: int = 60

    HTTP_CONNECT_TIMEOUT: float = 10.0
    HTTP_READ_TIMEOUT: float = 30.0

    # Item cache
    ITEM_CACHE_TTL: int = 300
    ITEM_CACHE_DIR: Optional[str] = None     # defaults to the system temp dir

    # none | process | advisory
    RENTAL_LOCK_STRATEGY: str = "none"

    APP_TIMEZONE: str = "Europe/Berlin"

    # DB: content (rental requests, settings, inventory mirror)
    CONTENT_DB_HOST: Optional[str] = None
    CONTENT_DB_PORT: Optional[int] = None
    CONTENT_DB_NAME: Optional[str] = None
    CONTENT_DB_USER: Optional[str] = None
    CONTENT_DB_PASSWORD: Optional[str] = None

    # DB: users (member directory)
    USER_DB_HOST: Optional[str] = None
    USER_DB_PORT: Optional[int] = None
    USER_DB_NAME: Optional[str] = None
    USER_DB_USER: Optional[str] = None
    USER_DB_PASSWORD: Optional[str] = None

    # Alert mails
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_FROM: Optional[str] = None
    INVENTORY_BOARD_EMAIL: Optional[str] = None

    # Inventory mirror sync (0 disables the scheduled job)
    INVENTORY_SYNC_INTERVAL_MINUTES: int = 60

    LOG_LEVEL: str = "INFO"

    class Config:
        # Environment variables provided directly - no .env file needed in production
        case_sensitive = False

    def cors_origins(self) -> List[str]:
        """ALLOW_ORIGINS as a list; accepts a JSON array or a comma-separated string."""
        raw = (self.ALLOW_ORIGINS or "").strip()
        if not raw:
            return []
        parts = None
        if raw.startswith("["):
            try:
                parts = [str(p) for p in json.loads(raw)]
            except (ValueError, TypeError):
                parts = None
        if parts is None:
            parts = raw.split(",")
        origins = [p.strip().rstrip("/") for p in parts]
        return [o for o in origins if o and o.lower() not in _NULL_ORIGINS]


settings = Settings()
