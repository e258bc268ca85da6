from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from swapsync.api.http.http_api import router as http_router
from swapsync.api.websocket.ws_hub import router as ws_router
from swapsync.api.websocket.ws_manager import ws_manager
from swapsync.configuration.config import settings
from swapsync.core.cache.resource_cache import CachePolicy, ResourceCache
from swapsync.core.structures.structures import PriceRecord, TokenRecord
from swapsync.core.tokens.token_catalog import TokenCatalog
from swapsync.integrations.base import TokenDataProvider
from swapsync.integrations.funkit.funkit_client import FunkitClient
from swapsync.logging.logger import get_logger

log = get_logger(__name__)


def _parse_allowed_origins(env_value: str) -> List[str]:
    """Parse a comma-separated CORS origins string into a clean list."""
    return [origin.strip() for origin in env_value.split(",") if origin.strip()]


def create_app(
        provider: Optional[TokenDataProvider] = None,
        catalog: Optional[TokenCatalog] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        provider: Upstream token/price source. Defaults to a `FunkitClient` built from settings,
            created at startup and closed at shutdown.
        catalog: Supported tokens. Defaults to the built-in catalog.

    Returns:
        FastAPI: Configured SwapSync API application.
    """
    app = FastAPI(title="SwapSync API")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_parse_allowed_origins(settings.CORS_ORIGINS),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # One token cache and one price cache shared by every websocket session.
    policy = CachePolicy.from_settings(settings)
    app.state.catalog = catalog or TokenCatalog()
    app.state.provider = provider
    app.state.token_cache = ResourceCache[TokenRecord]("tokens", policy)
    app.state.price_cache = ResourceCache[PriceRecord]("prices", policy)
    owns_provider = provider is None

    @app.on_event("startup")
    async def on_startup() -> None:
        """Create the Funkit client on the server loop unless a provider was injected."""
        if app.state.provider is None:
            app.state.provider = FunkitClient(
                base_url=settings.FUNKIT_BASE_URL,
                api_key=settings.FUNKIT_API_KEY,
                timeout_seconds=settings.FUNKIT_HTTP_TIMEOUT_SECONDS,
                default_decimals=settings.FUNKIT_DEFAULT_DECIMALS,
            )
        log.info("SwapSync startup: %d supported token(s), policy=%s", len(app.state.catalog.tokens()), policy)

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        """Cancel pending fetches and release the upstream client."""
        await app.state.token_cache.close()
        await app.state.price_cache.close()
        if owns_provider and isinstance(app.state.provider, FunkitClient):
            await app.state.provider.aclose()
            app.state.provider = None
        log.info("SwapSync shutdown complete.")

    @app.get("/api/status")
    def api_status() -> Dict[str, Any]:
        """Return a minimal status payload for the UI."""
        return {
            "ok": True,
            "status": {
                "connections": ws_manager.active_count,
                "tokenCacheEntries": len(app.state.token_cache),
                "priceCacheEntries": len(app.state.price_cache),
            },
        }

    app.include_router(ws_router)
    app.include_router(http_router)

    return app
