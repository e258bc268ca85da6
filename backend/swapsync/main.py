from __future__ import annotations

from swapsync.logging.logger import get_logger, init_logging

init_logging()

import uvicorn

from swapsync.configuration.config import settings

log = get_logger(__name__)


def main() -> None:
    log.info("Starting SwapSync API on %s:%d (Funkit at %s)", settings.API_HOST, settings.API_PORT, settings.FUNKIT_BASE_URL)
    # log_config=None keeps the handlers installed by init_logging()
    uvicorn.run(
        "swapsync.api.app:create_app",
        factory=True,
        host=settings.API_HOST,
        port=settings.API_PORT,
        log_config=None,
    )


if __name__ == "__main__":
    main()
