"""Prometheus metrics for observability.

Counts login attempts by outcome, bearer credential checks, signing key
refreshes and user records created by identity resolution.
"""

import logging

from prometheus_client import (
    CollectorRegistry,
    Counter,
    generate_latest,
)

logger = logging.getLogger(__name__)

# Global registry for metrics
_registry = CollectorRegistry()


auth_checks_total = Counter(
    "appdoki_auth_checks_total",
    "Total number of bearer credential checks",
    ["result"],
    registry=_registry,
)

login_attempts_total = Counter(
    "appdoki_login_attempts_total",
    "Total number of completed login attempts by outcome",
    ["outcome"],
    registry=_registry,
)

users_created_total = Counter(
    "appdoki_users_created_total",
    "Total number of user records created by identity resolution",
    registry=_registry,
)

jwks_refresh_total = Counter(
    "appdoki_jwks_refresh_total",
    "Total number of signing key refreshes from the identity provider",
    ["status"],
    registry=_registry,
)


def get_metrics_text() -> str:
    """Get metrics in Prometheus text format.

    Returns:
        Metrics in Prometheus exposition format
    """
    return generate_latest(_registry).decode("utf-8")


def record_auth_check(success: bool) -> None:
    """Record a bearer credential check.

    Args:
        success: Whether the credential was accepted
    """
    auth_checks_total.labels(result="success" if success else "failure").inc()


def record_login_attempt(outcome: str) -> None:
    """Record the terminal outcome of a login attempt.

    Args:
        outcome: "success" or the failure kind (e.g. "state_mismatch")
    """
    login_attempts_total.labels(outcome=outcome).inc()


def record_user_created() -> None:
    """Record creation of a new user record."""
    users_created_total.inc()


def record_jwks_refresh(success: bool) -> None:
    """Record a signing key refresh.

    Args:
        success: Whether the keys were fetched and parsed
    """
    jwks_refresh_total.labels(status="success" if success else "failure").inc()


__all__ = [
    "get_metrics_text",
    "record_auth_check",
    "record_login_attempt",
    "record_user_created",
    "record_jwks_refresh",
]
