import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Tuple

APP_NAME = "Tragard Backend"
SERVICE_NAME = "Tragard Email Service"
VERSION = "1.0.0"

# Frontends allowed to call the API. Not configurable per deployment.
ALLOWED_ORIGINS: Tuple[str, ...] = (
    "https://aquamarine-dragon-83c610.netlify.app",
    "http://localhost:5173",
)
ALLOWED_METHODS: Tuple[str, ...] = ("GET", "POST", "PUT", "DELETE")


@dataclass(frozen=True)
class Settings:
    environment: str = "development"
    port: int = 8080
    verify_mail_on_startup: bool = True

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            environment=os.getenv("ENVIRONMENT", "development"),
            port=int(os.getenv("PORT", "8080")),
            verify_mail_on_startup=os.getenv("MAIL_VERIFY_ON_STARTUP", "true").lower() in ("1", "true", "yes"),
        )

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
