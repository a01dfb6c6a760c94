"""Observability infrastructure for appdoki.

Provides structured logging and Prometheus metrics.
"""

from appdoki.infra.observability.logging import (
    CorrelationIDFilter,
    JSONFormatter,
    RedactionFilter,
    correlation_id_var,
    redact_secrets,
    set_correlation_id,
    setup_logging,
)
from appdoki.infra.observability.metrics import (
    get_metrics_text,
    record_auth_check,
    record_jwks_refresh,
    record_login_attempt,
    record_user_created,
)

__all__ = [
    # Logging
    "correlation_id_var",
    "set_correlation_id",
    "CorrelationIDFilter",
    "JSONFormatter",
    "RedactionFilter",
    "redact_secrets",
    "setup_logging",
    # Metrics
    "get_metrics_text",
    "record_auth_check",
    "record_login_attempt",
    "record_user_created",
    "record_jwks_refresh",
]
