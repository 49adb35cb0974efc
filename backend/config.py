from pydantic_settings import BaseSettings
from pathlib import Path


class Settings(BaseSettings):
    ENVIRONMENT: str = "development"  # development | test | staging | production
    APP_NAME: str = "75 Tracker"
    SECRET_KEY: str = "change-me-in-production"
    DATABASE_URL: str = "sqlite:///data/tracker.db"
    DATA_DIR: Path = Path("data")
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "https://localhost:3000",
    ]
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRY_HOURS: int = 72
    AUTH_COOKIE_NAME: str = "tracker_session"
    AUTH_COOKIE_SECURE: bool = False
    AUTH_COOKIE_HTTPONLY: bool = True
    AUTH_COOKIE_SAMESITE: str = "lax"  # strict | lax | none
    AUTH_COOKIE_DOMAIN: str | None = None
    AUTH_COOKIE_PATH: str = "/"
    SECURITY_HEADERS_ENABLED: bool = True
    SECURITY_CSP: str = (
        "default-src 'self'; "
        "img-src 'self' data: blob:; "
        "style-src 'self' 'unsafe-inline'; "
        "script-src 'self'; "
        "connect-src 'self' https:; "
        "frame-ancestors 'none'; "
        "base-uri 'self';"
    )

    DEFAULT_TIMEZONE: str = "America/New_York"
    CHALLENGE_DURATION_DAYS: int = 75
    TASKS_PER_DAY: int = 6
    WATER_DAILY_GOAL_OZ: float = 128.0

    CRON_SECRET: str = "change-me-in-production"
    PUSH_RELAY_URL: str = "http://localhost:8787/push"
    PUSH_RELAY_API_KEY: str = "internal-key"
    PUSH_TIMEOUT_SECONDS: int = 10
    NOTIFICATION_MATCH_WINDOW_MINUTES: int = 5
    WATER_REMINDER_START_HOUR: int = 7
    WATER_REMINDER_END_HOUR: int = 21

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def is_production_like(self) -> bool:
        return (self.ENVIRONMENT or "").strip().lower() in {"production", "prod", "staging"}

    def validate_security_configuration(self) -> None:
        if not self.is_production_like:
            return

        errors: list[str] = []
        if self.SECRET_KEY == "change-me-in-production":
            errors.append("SECRET_KEY must be changed from the default value")
        if self.CRON_SECRET == "change-me-in-production":
            errors.append("CRON_SECRET must be changed from the default value")
        if self.PUSH_RELAY_API_KEY == "internal-key":
            errors.append("PUSH_RELAY_API_KEY must be changed from the default value")
        if not self.AUTH_COOKIE_SECURE:
            errors.append("AUTH_COOKIE_SECURE must be true in production-like environments")
        if (self.AUTH_COOKIE_SAMESITE or "").strip().lower() == "none" and not self.AUTH_COOKIE_SECURE:
            errors.append("AUTH_COOKIE_SAMESITE=none requires AUTH_COOKIE_SECURE=true")
        if self.CHALLENGE_DURATION_DAYS <= 0:
            errors.append("CHALLENGE_DURATION_DAYS must be positive")
        if errors:
            joined = "; ".join(errors)
            raise RuntimeError(f"Insecure production configuration: {joined}")


settings = Settings()
settings.DATA_DIR.mkdir(parents=True, exist_ok=True)
