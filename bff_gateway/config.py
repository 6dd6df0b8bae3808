"""
Configuration module for the Backend-for-Frontend gateway.

This module uses Pydantic Settings to load and validate environment variables
for the identity provider (OAuth2/OIDC), the backend API gateway, session
management and server settings.

Environment variables are loaded from .env file or system environment. The
resulting ``Settings`` value is assembled once at startup and handed to every
component; nothing else in the package reads the environment.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_SESSION_SECRET = "change-me"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Every field has a default so the gateway starts against a local
    Keycloak realm and API gateway without any configuration.
    """

    # =========================================================================
    # Identity Provider (OAuth2 / OIDC)
    # =========================================================================

    IDP_BASE_URL: str = Field(
        default="http://localhost:8080/realms/poc",
        description="Realm base URL of the identity provider",
        min_length=1,
    )

    IDP_CLIENT_ID: str = Field(
        default="bff-client",
        description="OAuth client id registered for this gateway",
        min_length=1,
    )

    IDP_CLIENT_SECRET: Optional[str] = Field(
        default=None,
        description="Client secret (only sent when configured, i.e. confidential clients)",
    )

    IDP_AUTHORIZE_URL: Optional[str] = Field(
        default=None,
        description="Authorization endpoint (defaults to <base>/protocol/openid-connect/auth)",
    )

    IDP_TOKEN_URL: Optional[str] = Field(
        default=None,
        description="Token endpoint (defaults to <base>/protocol/openid-connect/token)",
    )

    IDP_END_SESSION_URL: Optional[str] = Field(
        default=None,
        description="End-session endpoint (defaults to <base>/protocol/openid-connect/logout)",
    )

    IDP_SCOPES: str = Field(
        default="openid profile email",
        description="Space separated scopes requested at login",
        min_length=1,
    )

    IDP_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Timeout for code exchange, refresh and end-session calls",
        gt=0,
        le=120,
    )

    BFF_REDIRECT_URI: Optional[str] = Field(
        default=None,
        description="Callback URL registered at the IdP (derived from the request when unset)",
    )

    POST_LOGIN_REDIRECT: str = Field(
        default="/",
        description="Where the browser is sent after a successful callback",
    )

    # =========================================================================
    # Backend API Gateway
    # =========================================================================

    GATEWAY_URL: str = Field(
        default="http://localhost:8082",
        description="Backend API gateway base URL",
        min_length=1,
    )

    GATEWAY_PROFILE_PATH: str = Field(
        default="/api/users/me",
        description="Gateway path returning the signed-in user's profile",
    )

    GATEWAY_TIMEOUT_SECONDS: float = Field(
        default=30.0,
        description="Timeout for proxied gateway calls",
        gt=0,
        le=600,
    )

    # =========================================================================
    # Session Management
    # =========================================================================

    SESSION_SECRET: str = Field(
        default=DEFAULT_SESSION_SECRET,
        description="Secret used to sign the session cookie",
        min_length=1,
    )

    SESSION_COOKIE_NAME: str = Field(
        default="bff_session",
        description="Name of the HTTP-only session cookie",
        min_length=1,
    )

    SESSION_COOKIE_SECURE: bool = Field(
        default=False,
        description="Mark the session cookie Secure (enable in production)",
    )

    SESSION_COOKIE_SAMESITE: str = Field(
        default="lax",
        description="SameSite policy of the session cookie (lax or strict)",
    )

    SESSION_TTL_SECONDS: int = Field(
        default=60 * 60 * 4,
        description="Idle lifetime of a session in the store and of the cookie",
        ge=60,
        le=60 * 60 * 24 * 7,
    )

    SESSION_STORE_URL: Optional[str] = Field(
        default=None,
        description="redis:// URL of the shared session store (in-memory when unset)",
    )

    SESSION_LOCK_TIMEOUT_SECONDS: float = Field(
        default=15.0,
        description="Upper bound for holding and waiting on a per-session lock",
        gt=0,
        le=300,
    )

    TOKEN_REFRESH_SKEW_SECONDS: int = Field(
        default=5,
        description="Refresh access tokens this many seconds before they expire",
        ge=0,
        le=300,
    )

    # =========================================================================
    # Server Configuration
    # =========================================================================

    BFF_HOST: str = Field(
        default="0.0.0.0",
        description="Host to bind the gateway server",
    )

    BFF_PORT: int = Field(
        default=8081,
        description="Port to bind the gateway server",
        ge=1,
        le=65535,
    )

    ALLOWED_ORIGINS: Optional[str] = Field(
        default=None,
        description="Comma-separated list of allowed CORS origins (leave empty for no CORS)",
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level",
    )

    # =========================================================================
    # Pydantic Settings Configuration
    # =========================================================================

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def idp_base_url_str(self) -> str:
        """Identity provider base URL without trailing slash."""
        return self.IDP_BASE_URL.rstrip("/")

    @property
    def authorize_url(self) -> str:
        return self.IDP_AUTHORIZE_URL or f"{self.idp_base_url_str}/protocol/openid-connect/auth"

    @property
    def token_url(self) -> str:
        return self.IDP_TOKEN_URL or f"{self.idp_base_url_str}/protocol/openid-connect/token"

    @property
    def end_session_url(self) -> str:
        return self.IDP_END_SESSION_URL or f"{self.idp_base_url_str}/protocol/openid-connect/logout"

    @property
    def gateway_url_str(self) -> str:
        """
        Get gateway URL as string (for HTTP client usage).

        Returns:
            Gateway URL without trailing slash.
        """
        return self.GATEWAY_URL.rstrip("/")

    @property
    def allowed_origins_list(self) -> List[str]:
        """
        Parse and return ALLOWED_ORIGINS as a list.

        Returns:
            List of allowed origin URLs, or empty list if not configured.
        """
        if not self.ALLOWED_ORIGINS:
            return []

        return [
            origin.strip()
            for origin in self.ALLOWED_ORIGINS.split(",")
            if origin.strip()
        ]

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("IDP_BASE_URL", "GATEWAY_URL")
    @classmethod
    def validate_http_url(cls, v: str) -> str:
        """
        Validate that base URLs use http or https.

        Raises:
            ValueError: If the scheme is missing or unsupported
        """
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Expected an http(s) URL, got: {v}")
        return v

    @field_validator("SESSION_COOKIE_SAMESITE")
    @classmethod
    def validate_samesite(cls, v: str) -> str:
        """
        Only restrictive SameSite policies are accepted.

        ``none`` would send the session cookie on cross-site subrequests.
        """
        value = v.strip().lower()
        allowed = ["lax", "strict"]
        if value not in allowed:
            raise ValueError(f"SESSION_COOKIE_SAMESITE must be one of {allowed}, got: {v}")
        return value

    @field_validator("GATEWAY_PROFILE_PATH", "POST_LOGIN_REDIRECT")
    @classmethod
    def validate_absolute_path(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError(f"Expected a path starting with '/', got: {v}")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        value = v.upper()
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if value not in allowed:
            raise ValueError(f"LOG_LEVEL must be one of {allowed}, got: {v}")
        return value


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    This function is cached so that the settings are loaded only once
    during the application lifecycle.

    Returns:
        Settings instance with all configuration loaded and validated.

    Raises:
        ValidationError: If environment variables are invalid.
    """
    return Settings()


# =============================================================================
# Configuration Helpers
# =============================================================================

def validate_configuration(settings: Settings) -> dict:
    """
    Validate critical configuration settings and return a status report.

    Called during application startup; warnings are logged, errors are
    reported but do not stop the service.

    Returns:
        Dictionary with validation status and any warnings.

    Example:
        >>> status = validate_configuration(get_settings())
        >>> if not status["valid"]:
        ...     print(status["errors"])
    """
    errors = []
    warnings = []

    if settings.SESSION_SECRET == DEFAULT_SESSION_SECRET:
        warnings.append("SESSION_SECRET uses the built-in default; set a strong secret")
    elif len(settings.SESSION_SECRET) < 32:
        warnings.append("SESSION_SECRET is shorter than recommended (32+ chars)")

    if not settings.SESSION_COOKIE_SECURE:
        warnings.append("SESSION_COOKIE_SECURE is disabled (enable behind HTTPS)")

    if not settings.SESSION_STORE_URL:
        warnings.append("SESSION_STORE_URL is not set; sessions are process-local")

    if settings.BFF_REDIRECT_URI and not settings.BFF_REDIRECT_URI.startswith(("http://", "https://")):
        errors.append("BFF_REDIRECT_URI must be an absolute http(s) URL")

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
        "session_store": "redis" if settings.SESSION_STORE_URL else "memory",
        "session_ttl_seconds": settings.SESSION_TTL_SECONDS,
    }
