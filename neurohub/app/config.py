"""
app/config.py - Application configuration.

This module defines a Pydantic BaseSettings class that loads configuration from the
environment (or a `.env` file). Firebase Admin SDK initialization lives in
`app/core/firebase.py` and reads its credentials from here.
All other modules can import `settings` (or call `get_settings()` for a fresh copy).
"""
from typing import FrozenSet, List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""
    firebase_cred_file: str = 'firebase_service_account.json'
    firebase_project_id: str = ''

    # Firebase credentials from environment variables (for Cloud Run)
    firebase_private_key_id: Optional[str] = None
    firebase_private_key: Optional[str] = None
    firebase_client_email: Optional[str] = None
    firebase_client_id: Optional[str] = None
    firebase_auth_uri: Optional[str] = None
    firebase_token_uri: Optional[str] = None
    firebase_auth_provider_x509_cert_url: Optional[str] = None
    firebase_client_x509_cert_url: Optional[str] = None
    firebase_web_api_key: str = ''

    debug: bool = False
    log_level: str = 'INFO'
    allowed_origins: str = '*'  # Comma-separated list or '*' for all

    # Emails that always resolve to the admin role (comma-separated)
    privileged_emails: str = ''

    # Server-mediated profile API (first tier of the reconciliation cascade)
    # empty disables the tier (the API is usually this same service)
    profile_api_base_url: str = ''
    profile_api_timeout_seconds: float = 10.0
    service_api_key: Optional[str] = None

    # Local durable cache (uid -> profile JSON blobs)
    local_cache_path: str = '.neurohub/local_store.json'

    # Network probe against the remote profile store
    network_probe_interval_seconds: int = 30
    network_probe_timeout_seconds: float = 5.0

    # Transient tier failures are retried this many times before falling through
    tier_retry_attempts: int = 1
    tier_retry_delay_seconds: float = 3.0

    # Custom fallback verification tokens
    app_base_url: str = 'http://localhost:5173'
    verification_token_ttl_seconds: int = 24 * 60 * 60

    smtp_host: str = "localhost"
    smtp_port: int = 465
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_from: Optional[str] = None
    smtp_use_starttls: bool = False  # true for 587

    def model_post_init(self, __context):
        """Validate Firebase Web API Key format"""
        if self.firebase_web_api_key and not self.firebase_web_api_key.startswith('AIza'):
            raise ValueError("FIREBASE_WEB_API_KEY must be a valid Firebase Web API Key starting with 'AIza'")

    @property
    def privileged_email_set(self) -> FrozenSet[str]:
        """Normalized allowlist of privileged emails."""
        return frozenset(
            e.strip().lower() for e in self.privileged_emails.split(',') if e.strip()
        )

    @property
    def allowed_origin_list(self) -> List[str]:
        if not self.allowed_origins:
            return ["*"]
        return [origin.strip() for origin in self.allowed_origins.split(',')]

    @property
    def smtp_configured(self) -> bool:
        return bool(
            self.smtp_host and self.smtp_port and self.smtp_user
            and self.smtp_password and (self.smtp_from or self.smtp_user)
        )

    class Config:
        env_file = ".env"
        case_sensitive = False


def get_settings() -> Settings:
    return Settings()


# Load settings from environment (.env file, etc.)
settings = get_settings()
