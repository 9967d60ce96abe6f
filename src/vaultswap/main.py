"""Main entry point - runs the API server."""

import logging
from pathlib import Path

import uvicorn

from vaultswap.config import get_settings

logger = logging.getLogger(__name__)


def configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def ensure_data_dir(database_url: str) -> None:
    """Create the directory holding a file-backed SQLite database."""
    prefix = "sqlite+aiosqlite:///"
    if not database_url.startswith(prefix):
        return
    path = database_url[len(prefix):]
    if path and path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)


def run():
    """Main entry point."""
    settings = get_settings()
    configure_logging(settings.debug)
    ensure_data_dir(settings.database_url)

    logger.info("Starting Vaultswap...")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Swap backend: {settings.swap_backend.value}, wallets: {settings.wallet_chain.value}")

    uvicorn.run(
        "vaultswap.api.app:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level="debug" if settings.debug else "info",
    )


if __name__ == "__main__":
    run()
