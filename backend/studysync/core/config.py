from datetime import datetime
from typing import Annotated, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)

    # Application settings
    APP_NAME: str = "StudySync"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database settings
    DATABASE_URL: str = "sqlite+aiosqlite:///./studysync.db"
    DATABASE_ECHO: bool = False

    # Fernet key for the credential vault; a throwaway key is generated when empty
    CREDENTIALS_KEY: str = ""
    # Alternative to CREDENTIALS_KEY: a passphrase plus a fixed base64 salt
    CREDENTIALS_PASSPHRASE: str = ""
    CREDENTIALS_SALT: str = ""

    # Portal routes
    PORTAL_LOGIN_URL: str = "https://web.spaggiari.eu/home/app/default/login.php"
    PORTAL_MENU_URL: str = "https://web.spaggiari.eu/home/app/default/menu_webinfoschool_studenti.php"
    PORTAL_AGENDA_URL: str = "https://web.spaggiari.eu/fml/app/default/agenda_studenti.php"
    PORTAL_LESSONS_URL: str = "https://web.spaggiari.eu/fml/app/default/regclasse_lezioni_xstudenti.php"
    PORTAL_LOGOUT_URL: str = "https://web.spaggiari.eu/home/app/default/logout.php"

    # Login form
    PORTAL_USERNAME_SELECTOR: str = "#login"
    PORTAL_PASSWORD_SELECTOR: str = "#password"
    PORTAL_SUBMIT_SELECTOR: str = '#loginbutton, button[type="submit"], input[type="submit"]'
    PORTAL_LOGIN_ROUTE_MARKER: str = "login"
    PORTAL_SUCCESS_MARKERS: Annotated[List[str], NoDecode] = ["menu", "cvv/app", "home"]
    PORTAL_SUCCESS_DOM_MARKER: str = "menu_webinfoschool"

    # Session and timeouts
    SESSION_TTL_HOURS: int = 24
    NAVIGATION_TIMEOUT_SECONDS: float = 30.0
    SELECTOR_TIMEOUT_SECONDS: float = 10.0
    BROWSER_HEADLESS: bool = True

    # Notifications
    NOTIFY_WEBHOOK_URL: str = ""

    # Sync defaults
    DEFAULT_SYNC_TIME: str = "08:00"
    DATE_FALLBACK_DAYS: int = Field(default=7, ge=0)

    @field_validator("PORTAL_SUCCESS_MARKERS", mode="before")
    @classmethod
    def parse_markers(cls, v):
        if isinstance(v, str):
            return [marker.strip() for marker in v.split(",") if marker.strip()]
        return v

    @field_validator("DATABASE_URL")
    @classmethod
    def validate_database_url(cls, v):
        if not v:
            raise ValueError("DATABASE_URL is required")
        return v

    @field_validator("DEFAULT_SYNC_TIME")
    @classmethod
    def validate_sync_time(cls, v):
        try:
            datetime.strptime(v, "%H:%M")
        except ValueError:
            raise ValueError("DEFAULT_SYNC_TIME must be in HH:MM format")
        return v


settings = Settings()
