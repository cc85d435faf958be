from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    APP_NAME: str = "AFIP Credentials"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Tax authority operating environment
    AFIP_ENVIRONMENT: Literal["homologacion", "produccion"] = "homologacion"
    AFIP_WSAA_URL_HOMOLOGACION: str = "https://wsaahomo.afip.gov.ar/ws/services/LoginCms"
    AFIP_WSAA_URL_PRODUCCION: str = "https://wsaa.afip.gov.ar/ws/services/LoginCms"

    # Storage
    CERTS_PATH: Path = Path("certs")
    TICKET_CACHE_PATH: Path = Path("cache")

    # Access tickets
    DEFAULT_SERVICE: str = "wsfe"
    WSAA_TIMEOUT_SECONDS: float = 30.0
    TICKET_SAFETY_MARGIN_MINUTES: int = 5
    SIGNING_REQUEST_TTL_HOURS: int = 12

    # Fernet key used to encrypt stored certificate passphrases (optional)
    CERT_ENCRYPTION_KEY: Optional[str] = None

    @property
    def is_production(self) -> bool:
        return self.AFIP_ENVIRONMENT == "produccion"

    @property
    def wsaa_url(self) -> str:
        """WSAA endpoint for the configured operating environment."""
        if self.is_production:
            return self.AFIP_WSAA_URL_PRODUCCION
        return self.AFIP_WSAA_URL_HOMOLOGACION


settings = Settings()
