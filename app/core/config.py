from __future__ import annotations

import os
from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseAppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    APP_NAME: str = "AD-ID SSO Bridge"
    ENV: str = "dev"
    DATABASE_URL: str | None = None
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_SSL_CERT_REQS: str | None = "required"
    REDIS_SSL_CA_CERTS: str | None = None

    # Signing secret for sessions (jwt transport) and service tokens
    JWT_SECRET: str = "change_me"
    JWT_ISSUER: str = "australian-disability-ltd"

    FRONTEND_URL: str = "https://ad.id"
    BACKEND_URL: str = "https://api.ad.id"
    # Browser flows land here with ?error=... on failure
    AUTH_ERROR_URL: str = "https://ad.id/login/error"
    # Extra hosts accepted as post-login redirect targets (subdomains included)
    ALLOWED_REDIRECT_HOSTS: list[str] = []

    CORS_ALLOW_ORIGINS: list[str] = ["*"]
    CORS_ALLOW_METHODS: list[str] = ["*"]
    CORS_ALLOW_HEADERS: list[str] = ["*"]
    CORS_ALLOW_CREDENTIALS: bool = True
    HSTS_SECONDS: int = 31_536_000
    CONTENT_SECURITY_POLICY: str = "default-src 'none'; frame-ancestors 'none'"
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "plain"
    SENTRY_DSN: str | None = None
    # Append-only JSON lines of security events; empty disables the file sink
    AUDIT_LOG_FILE: str = "storage/audit.log"
    RATE_LIMIT_ENABLED: bool = True

    # OAuth 2.0 / SSO providers
    GOOGLE_CLIENT_ID: str | None = None
    GOOGLE_CLIENT_SECRET: str | None = None
    MICROSOFT_CLIENT_ID: str | None = None
    MICROSOFT_CLIENT_SECRET: str | None = None
    MICROSOFT_TENANT_ID: str = "common"
    FACEBOOK_CLIENT_ID: str | None = None
    FACEBOOK_CLIENT_SECRET: str | None = None

    # Generic OAuth2 provider, configured purely by URL/scope
    OAUTH2_CLIENT_ID: str | None = None
    OAUTH2_CLIENT_SECRET: str | None = None
    OAUTH2_AUTHORIZATION_URL: str | None = None
    OAUTH2_TOKEN_URL: str | None = None
    OAUTH2_USERINFO_URL: str | None = None
    OAUTH2_SCOPE: str = "openid,profile,email"

    OAUTH_HTTP_TIMEOUT_SECONDS: float = 10.0
    OAUTH_STATE_TTL_SECONDS: int = 600
    OAUTH_STATE_COOKIE_NAME: str = "adid.oauth_state"

    # Session bridge
    SESSION_TRANSPORT: str = "cookie"  # cookie | jwt
    SESSION_COOKIE_NAME: str = "adid.session"
    SESSION_TTL_SECONDS: int = 7 * 24 * 3600
    DEFAULT_USER_ROLES: list[str] = ["participant"]

    # Downstream service catalog
    SERVICE_REGISTRY_PATH: str | None = None
    DISABLED_SERVICES: list[str] = []
    AD_ID_DOMAIN: str = "https://ad.id"
    MAPABLE_CALLBACK_URL: str | None = None
    ACCESSIBOOKS_CALLBACK_URL: str | None = None
    DISAPEDIA_CALLBACK_URL: str | None = None
    MEDIAWIKI_CALLBACK_URL: str | None = None
    CURSOR_REPLIT_CALLBACK_URL: str | None = None

    @field_validator("SESSION_TRANSPORT")
    @classmethod
    def _check_transport(cls, v: str) -> str:
        value = v.lower()
        if value not in {"cookie", "jwt"}:
            raise ValueError("SESSION_TRANSPORT must be 'cookie' or 'jwt'")
        return value

    @property
    def is_production(self) -> bool:
        return self.ENV.lower() in {"prod", "production"}

    @model_validator(mode="after")
    def _validate_required_fields(self) -> BaseAppSettings:
        # Convert Heroku's postgres:// URL to postgresql://
        if self.DATABASE_URL and self.DATABASE_URL.startswith("postgres://"):
            self.DATABASE_URL = self.DATABASE_URL.replace("postgres://", "postgresql://", 1)

        required_in_prod = ("DATABASE_URL", "JWT_SECRET", "REDIS_URL")
        if self.ENV.lower() == "prod":
            missing = [name for name in required_in_prod if not getattr(self, name)]
            if missing:
                raise ValueError(f"Missing required production settings: {', '.join(missing)}")
            if self.JWT_SECRET == "change_me":
                raise ValueError("Insecure default secrets in production: JWT_SECRET uses default placeholder")
        return self


class DevSettings(BaseAppSettings):
    ENV: str = "dev"
    DATABASE_URL: str = "sqlite:///./storage/dev.db"
    FRONTEND_URL: str = "http://localhost:3000"
    BACKEND_URL: str = "http://localhost:8000"
    AUTH_ERROR_URL: str = "http://localhost:3000/login/error"


class TestSettings(BaseAppSettings):
    ENV: str = "test"
    DATABASE_URL: str = "sqlite:///:memory:"
    JWT_SECRET: str = "test-jwt-secret-for-sso-bridge"
    FRONTEND_URL: str = "https://app.example.com"
    BACKEND_URL: str = "https://api.example.com"
    AUTH_ERROR_URL: str = "https://app.example.com/login/error"
    RATE_LIMIT_ENABLED: bool = False
    AUDIT_LOG_FILE: str = ""
    GOOGLE_CLIENT_ID: str | None = "test-google-client"
    GOOGLE_CLIENT_SECRET: str | None = "test-google-secret"
    MICROSOFT_CLIENT_ID: str | None = "test-microsoft-client"
    MICROSOFT_CLIENT_SECRET: str | None = "test-microsoft-secret"


class ProdSettings(BaseAppSettings):
    ENV: str = "prod"
    CORS_ALLOW_ORIGINS: list[str] = [
        "https://ad.id",
        "https://www.ad.id",
        "https://mapable.com.au",
        "https://accessibooks.com.au",
        "https://disapedia.au",
    ]
    CORS_ALLOW_CREDENTIALS: bool = True
    LOG_FORMAT: str = "json"


_ENV_TO_SETTINGS: dict[str, type[BaseAppSettings]] = {
    "dev": DevSettings,
    "development": DevSettings,
    "test": TestSettings,
    "testing": TestSettings,
    "prod": ProdSettings,
    "production": ProdSettings,
}


@lru_cache
def get_settings() -> BaseAppSettings:
    env_name = os.getenv("APP_ENV") or os.getenv("ENV") or "dev"
    env = env_name.lower()
    settings_cls = _ENV_TO_SETTINGS.get(env, DevSettings)
    return settings_cls()


settings = get_settings()
