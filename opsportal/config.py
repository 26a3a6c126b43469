from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Dict
from functools import lru_cache
import json


# Column headers used in the head-office planning sheet, mapped to branch slugs
DEFAULT_BRANCH_ALIASES: Dict[str, str] = {
    "Soufouh": "isc-soufouh",
    "DIP": "isc-dip",
    "Sharja": "isc-sharja",
    "AlJada": "isc-aljada",
    "Ajman": "isc-ajman",
    "UEQ": "isc-ueq",
    "RAK": "isc-rak",
    "YAS": "sabis-yas",
    "Ruwais": "sis-ruwais",
    "Ain": "isc-ain",
    "Khalifa": "isc-khalifa",
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # JWT Settings (tokens are issued by the auth service)
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # App Settings
    APP_NAME: str = "Catering Operations Portal"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Dispatch workflow
    DISPATCH_STRICT_RECONCILIATION: bool = False  # Require every item accounted for before packed/received
    DISPATCH_DEFAULT_UNIT: str = "KG"  # Unit used when an item name has no special mapping
    DISPATCH_BRANCH_ALIASES: Dict[str, str] = DEFAULT_BRANCH_ALIASES

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(',')]
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin for origin in self.CORS_ORIGINS if origin]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
