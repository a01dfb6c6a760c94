"""Main entry point for the appdoki service.

1. Loads and validates configuration
2. Sets up structured logging
3. Serves the HTTP API with uvicorn (SIGTERM/SIGINT handled by uvicorn)
"""

import logging
import sys
from urllib.parse import urlparse

import uvicorn

from appdoki import __version__
from appdoki.cli import load_config_from_cli
from appdoki.config import Settings
from appdoki.infra.observability import setup_logging


def sanitize_database_url(url: str) -> str:
    """Sanitize database URL by redacting password.

    Args:
        url: Database URL that may contain credentials

    Returns:
        Sanitized URL with password redacted
    """
    try:
        parsed = urlparse(url)
    except ValueError:
        return "***REDACTED***"

    if not parsed.password:
        return url

    netloc = f"{parsed.username or ''}:***"
    if parsed.hostname:
        netloc += f"@{parsed.hostname}"
    if parsed.port:
        netloc += f":{parsed.port}"
    return parsed._replace(netloc=netloc).geturl()


def print_startup_banner(settings: Settings) -> None:  # pragma: no cover
    """Log startup banner with configuration information (secrets redacted)."""
    logger = logging.getLogger(__name__)

    logger.info("=" * 60)
    logger.info("appdoki")
    logger.info(f"Version: {__version__}")
    logger.info("=" * 60)
    logger.info("Configuration:")
    logger.info(f"  Environment: {settings.environment}")
    logger.info(f"  Debug: {settings.debug}")
    logger.info(f"  Log Level: {settings.log_level}")
    logger.info(f"  HTTP: {settings.http_host}:{settings.http_port}")
    logger.info(f"  Database: {sanitize_database_url(settings.database_url)}")
    logger.info("Identity provider:")
    logger.info(f"  Name: {settings.oidc_provider_name}")
    logger.info(f"  Issuer: {settings.oidc_issuer}")
    logger.info(f"  Client ID: {settings.oidc_client_id}")
    logger.info(f"  Redirect URL: {settings.redirect_url}")
    logger.info("=" * 60)

    if settings.debug:
        logger.warning("Debug mode enabled - not for production use")


def main() -> int:  # pragma: no cover
    """Main entry point for the appdoki service.

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    try:
        settings = load_config_from_cli()
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    setup_logging(level=settings.log_level, json_format=settings.log_format == "json")
    print_startup_banner(settings)

    logger = logging.getLogger(__name__)

    # Import here so configuration errors are reported before app construction
    from appdoki.api.http import create_http_app

    try:
        app = create_http_app(settings)
    except ValueError as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return 1

    uvicorn.run(
        app,
        host=settings.http_host,
        port=settings.http_port,
        log_config=None,
        proxy_headers=True,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
