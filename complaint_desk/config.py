from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Session token issued by the sign-in front end
    AUTH_JWT_SECRET: str | None = None
    AUTH_JWT_AUDIENCE: str = "complaint-desk"
    AUTH_JWT_ALGORITHM: str = "HS256"

    # Google service account
    GOOGLE_SA_CLIENT_EMAIL: str | None = None
    GOOGLE_SA_PRIVATE_KEY: str | None = None
    GOOGLE_SA_DELEGATED_USER: str | None = None

    # Spreadsheets
    GOOGLE_SHEETS_ID: str | None = None
    GOOGLE_SHEETS_COMPLAINTS_ID: str | None = None
    GOOGLE_USERS_TAB: str = "users"
    GOOGLE_DEPARTMENTS_TAB: str = "departments"
    GOOGLE_COMPLAINTS_TAB: str = "database"

    # Outgoing mail
    MAIL_FROM: str | None = None
    APP_URL: str | None = None

    # Directory snapshot cache (optional)
    REDIS_URL: str | None = None
    DIRECTORY_CACHE_TTL_SECONDS: int = 60

    # Statistics
    COMPLAINT_SLA_DAYS: int = 7

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def private_key(self) -> str:
        """Service account key with escaped newlines restored."""
        key = self.GOOGLE_SA_PRIVATE_KEY or ""
        return key.replace("\\n", "\n") if "\\n" in key else key

    def sheets_configured(self) -> bool:
        return bool(
            self.GOOGLE_SA_CLIENT_EMAIL
            and self.GOOGLE_SA_PRIVATE_KEY
            and self.GOOGLE_SHEETS_COMPLAINTS_ID
        )

    def app_link(self, path: str) -> str:
        """Absolute link into the web front end; relative when APP_URL is unset."""
        if not self.APP_URL:
            return path
        return f"{self.APP_URL.rstrip('/')}/{path.lstrip('/')}"


settings = Settings()
