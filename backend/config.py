from typing import Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()

AZURE_LOGIN_HOST = "https://login.microsoftonline.com"


class Settings(BaseSettings):
    """Process-wide configuration, read once from the environment."""

    # Azure AD
    tenant_id: Optional[str] = Field(default=None, alias="AZURE_TENANT_ID")
    client_id: Optional[str] = Field(default=None, alias="AZURE_CLIENT_ID")
    app_id_uri: Optional[str] = Field(default=None, alias="AZURE_APP_ID_URI")
    required_scope: Optional[str] = Field(default=None, alias="AZURE_REQUIRED_SCOPE")
    jwks_timeout: float = Field(default=10.0, alias="JWKS_TIMEOUT")

    database_url: str = Field(default="sqlite:///./survey.db", alias="DATABASE_URL")
    port: int = Field(default=4000, alias="PORT")
    origins: str = Field(default="http://localhost:5173", alias="ORIGINS")  # comma separated
    public_base_url: str = Field(default="http://localhost:5173", alias="PUBLIC_BASE_URL")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    @field_validator("tenant_id", "client_id", "app_id_uri", "required_scope", mode="before")
    @classmethod
    def blank_is_unset(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @field_validator("public_base_url")
    @classmethod
    def strip_trailing_slash(cls, v):
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def upper_level(cls, v):
        return v.upper()

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.origins.split(",") if o.strip()]

    @property
    def issuer(self) -> Optional[str]:
        if not self.tenant_id:
            return None
        return f"{AZURE_LOGIN_HOST}/{self.tenant_id}/v2.0"

    @property
    def jwks_url(self) -> Optional[str]:
        # issuer already ends in /v2.0; the key set lives under discovery/
        if not self.tenant_id:
            return None
        return f"{AZURE_LOGIN_HOST}/{self.tenant_id}/discovery/v2.0/keys"

    @property
    def audiences(self) -> list[str]:
        """Accepted `aud` values: the client id and, if set, the App ID URI."""
        return [a for a in (self.client_id, self.app_id_uri) if a]


def load_settings() -> Settings:
    return Settings()


settings = load_settings()
