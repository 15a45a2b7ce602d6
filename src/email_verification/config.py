"""Configuration loaded from the environment."""

from datetime import timedelta

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, loaded from .env or environment variables."""

    # ── App ───────────────────────────────────────────────
    app_name: str = "Email Verification Service"
    debug: bool = False
    environment: str = "development"
    secret_key: str = "change-me"

    # ── Database ──────────────────────────────────────────
    database_url: str = "sqlite+aiosqlite:///./email_verification.db"

    # ── Verification policy ───────────────────────────────
    code_length: int = 6
    code_ttl_seconds: int = 15 * 60
    max_verification_attempts: int = 5
    rate_limit_window_seconds: int = 60 * 60
    rate_limit_max_requests: int = 5
    sweep_interval_seconds: int = 5 * 60

    # ── Development magic code (off unless explicitly enabled) ──
    magic_code_enabled: bool = False
    magic_verification_code: str = "111111"
    allow_magic_code_hosts: str = "localhost,127.0.0.1"

    # ── Email delivery ────────────────────────────────────
    email_provider: str = "smtp"  # smtp | sendgrid | console
    email_from: str = "noreply@example.com"
    email_from_name: str = "BlessBox"
    email_max_attempts: int = 3
    email_retry_backoff_seconds: float = 1.0

    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_start_tls: bool = True

    sendgrid_api_key: str = ""
    sendgrid_api_url: str = "https://api.sendgrid.com/v3/mail/send"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def code_ttl(self) -> timedelta:
        return timedelta(seconds=self.code_ttl_seconds)

    @property
    def rate_limit_window(self) -> timedelta:
        return timedelta(seconds=self.rate_limit_window_seconds)

    @property
    def magic_code_hosts(self) -> set[str]:
        """Hosts allowed to use the magic code, lower-cased."""
        return {
            host.strip().lower()
            for host in self.allow_magic_code_hosts.split(",")
            if host.strip()
        }


# Singleton settings instance
settings = Settings()
