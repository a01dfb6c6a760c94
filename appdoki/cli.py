"""Command-line interface for the appdoki service.

Configuration precedence, lowest to highest: built-in defaults, ``APPDOKI_*``
environment variables, config file (``--config``), command-line flags.
The client secret is deliberately not accepted as a flag; set it through the
environment or the config file.
"""

import argparse
from pathlib import Path

from appdoki import __version__
from appdoki.config import Settings, load_settings_from_file

# argparse dest -> Settings field, for flags that override a setting verbatim
CLI_OVERRIDES = {
    "environment": "environment",
    "log_level": "log_level",
    "log_format": "log_format",
    "host": "http_host",
    "port": "http_port",
    "database_url": "database_url",
    "provider_name": "oidc_provider_name",
    "oidc_issuer": "oidc_issuer",
    "oidc_client_id": "oidc_client_id",
    "redirect_url": "oidc_redirect_url",
}


def create_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="appdoki",
        description="appdoki - OIDC login and identity resolution service",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--config", "-c", type=Path, help="Path to configuration file (YAML or TOML)"
    )
    parser.add_argument(
        "--environment", choices=["lab", "staging", "prod"], help="Deployment environment"
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level",
    )
    parser.add_argument("--log-format", choices=["json", "text"], help="Log output format")

    server = parser.add_argument_group("HTTP server")
    server.add_argument("--host", help="HTTP server bind address")
    server.add_argument("--port", type=int, help="HTTP server port")

    storage = parser.add_argument_group("user directory")
    storage.add_argument("--database-url", help="Database connection URL (SQLite or PostgreSQL)")

    provider = parser.add_argument_group("identity provider")
    provider.add_argument(
        "--provider-name", help="Provider name used in /auth/{provider}/callback"
    )
    provider.add_argument("--oidc-issuer", help="OIDC issuer URL")
    provider.add_argument("--oidc-client-id", help="OAuth client ID")
    provider.add_argument("--redirect-url", help="Redirect URL registered with the provider")

    parser.add_argument("--version", "-v", action="version", version=f"%(prog)s {__version__}")

    return parser


def load_config_from_cli(args: list[str] | None = None) -> Settings:
    """Build Settings from the config file, environment and CLI flags.

    Args:
        args: Command-line arguments (defaults to sys.argv[1:])

    Raises:
        FileNotFoundError: If --config names a missing file
        ValueError: If the merged configuration fails validation
    """
    parsed_args = create_argument_parser().parse_args(args)

    settings = load_settings_from_file(parsed_args.config) if parsed_args.config else Settings()

    cli_overrides = {
        field: getattr(parsed_args, dest)
        for dest, field in CLI_OVERRIDES.items()
        if getattr(parsed_args, dest) is not None
    }
    if parsed_args.debug:
        cli_overrides["debug"] = True

    if not cli_overrides:
        return settings
    return Settings(**{**settings.model_dump(), **cli_overrides})
