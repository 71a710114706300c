"""
Application configuration using Pydantic Settings.

All configuration is loaded from environment variables, with an optional .env file
as a fallback. This pattern keeps secrets out of source code — the .env file is
gitignored, and .env.example provides a safe template for operators.

Pydantic Settings automatically:
  1. Reads from environment variables (highest priority)
  2. Falls back to .env file values
  3. Uses defaults defined here (lowest priority)

Usage:
    from app.config import settings
    print(settings.JWT_SECRET)

Tests build their own Settings(...) instance and pass it to create_app(),
so nothing here needs to be monkeypatched.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central configuration for the OpenVPN Manager API.

    Required fields (no defaults) MUST be set in .env or environment:
      - JWT_SECRET: Used to sign bearer tokens
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # --- Application ---
    APP_NAME: str = "OpenVPN Manager API"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # --- Database ---
    # SQLite for single-host installs; swap to a postgresql+asyncpg URL for production
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/openvpn_mng.db"

    # --- Authentication ---
    # REQUIRED: No default — forces the operator to set a real secret
    JWT_SECRET: str
    JWT_ALGORITHM: str = "HS256"
    TOKEN_EXPIRE_HOURS: int = 24
    # Browser session cookie lifetime, independent of the token lifetime
    SESSION_EXPIRE_HOURS: int = 8
    COOKIE_SECURE: bool = False

    # --- Login rate limiting (token bucket per client IP) ---
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_REQUESTS: int = 5    # requests per window
    RATE_LIMIT_WINDOW: int = 60     # window in seconds
    RATE_LIMIT_BURST: int = 10      # bucket capacity

    # --- Account lockout ---
    # 0 disables lockout entirely (unbounded retries)
    LOCKOUT_MAX_ATTEMPTS: int = 5
    LOCKOUT_DURATION_MINUTES: int = 15

    # --- VPN ---
    # CIDR of the tunnel network, e.g. "10.8.0.0/24". Empty means not configured.
    VPN_NETWORK: str = ""
    # Address reserved for the OpenVPN server itself, e.g. "10.8.0.1"
    VPN_SERVER_IP: str = ""
    # Shared secret the OpenVPN server sends in X-VPN-Token. Empty disables /vpn-auth.
    VPN_TOKEN: str = ""

    # --- CORS ---
    ALLOWED_ORIGINS: list[str] = ["http://localhost:3000"]


# Singleton: import this instance everywhere instead of creating new Settings()
settings = Settings()
