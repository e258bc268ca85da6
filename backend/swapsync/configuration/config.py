from __future__ import annotations

import os


def _as_bool(value: str | None, default: bool = False) -> bool:
    """Parse a truthy/falsey string into a boolean."""
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


class Settings:
    # API
    API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
    API_PORT: int = int(os.getenv("API_PORT", "8000"))
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173")

    # Funkit asset API
    FUNKIT_BASE_URL: str = os.getenv("FUNKIT_BASE_URL", "https://api.fun.xyz/v1")
    FUNKIT_API_KEY: str = os.getenv("FUNKIT_API_KEY", "")
    FUNKIT_HTTP_TIMEOUT_SECONDS: float = float(os.getenv("FUNKIT_HTTP_TIMEOUT_SECONDS", "12"))
    FUNKIT_DEFAULT_DECIMALS: int = int(os.getenv("FUNKIT_DEFAULT_DECIMALS", "18"))

    # Resource cache policy
    CACHE_STALE_TIME_SECONDS: float = float(os.getenv("CACHE_STALE_TIME_SECONDS", "30"))
    CACHE_TIME_SECONDS: float = float(os.getenv("CACHE_TIME_SECONDS", "300"))
    CACHE_MAX_ATTEMPTS: int = int(os.getenv("CACHE_MAX_ATTEMPTS", "3"))
    CACHE_RETRY_BASE_DELAY_SECONDS: float = float(os.getenv("CACHE_RETRY_BASE_DELAY_SECONDS", "1.0"))
    CACHE_RETRY_MAX_DELAY_SECONDS: float = float(os.getenv("CACHE_RETRY_MAX_DELAY_SECONDS", "30.0"))

    # Amount input
    AMOUNT_DEBOUNCE_MS: int = int(os.getenv("AMOUNT_DEBOUNCE_MS", "300"))

    # Initial swap state (read once per session)
    DEFAULT_SOURCE_SYMBOL: str = os.getenv("DEFAULT_SOURCE_SYMBOL", "USDC").upper()
    DEFAULT_TARGET_SYMBOL: str = os.getenv("DEFAULT_TARGET_SYMBOL", "ETH").upper()
    DEFAULT_SOURCE_AMOUNT: str = os.getenv("DEFAULT_SOURCE_AMOUNT", "100")
    DEFAULT_SLIPPAGE_TOLERANCE_PCT: float = float(os.getenv("DEFAULT_SLIPPAGE_TOLERANCE_PCT", "0.5"))

    # Debug / logging
    NO_COLOR: bool = _as_bool(os.getenv("NO_COLOR"), False)
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "WARNING").upper()
    LOG_LEVEL_SWAPSYNC: str = os.getenv("LOG_LEVEL_SWAPSYNC", "DEBUG").upper()
    LOG_LEVEL_LIB_WEBSOCKETS: str = os.getenv("LOG_LEVEL_LIB_WEBSOCKETS", "WARNING").upper()
    LOG_LEVEL_LIB_HTTPX: str = os.getenv("LOG_LEVEL_LIB_HTTPX", "WARNING").upper()
    LOG_LEVEL_LIB_HTTPCORE: str = os.getenv("LOG_LEVEL_LIB_HTTPCORE", "WARNING").upper()
    LOG_LEVEL_LIB_ASYNCIO: str = os.getenv("LOG_LEVEL_LIB_ASYNCIO", "WARNING").upper()
    LOG_LEVEL_LIB_ANYIO: str = os.getenv("LOG_LEVEL_LIB_ANYIO", "WARNING").upper()


settings = Settings()
