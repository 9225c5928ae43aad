"""Per-run structured logging and correlation context."""

from maintenance_orchestrator.observability.logging import (
    LoggingConfig,
    RunLogHandle,
    configure_structlog,
    correlation_scope,
    current_correlation,
    flush_logging,
    get_active_logging_handle,
    setup_logging,
    shutdown_logging,
    start_run_logging,
)

__all__ = [
    "LoggingConfig",
    "RunLogHandle",
    "configure_structlog",
    "correlation_scope",
    "current_correlation",
    "flush_logging",
    "get_active_logging_handle",
    "setup_logging",
    "shutdown_logging",
    "start_run_logging",
]
