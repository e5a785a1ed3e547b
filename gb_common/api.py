"""Public API surface for gb_common."""

from gb_common.errors import GBError, error_to_payload
from gb_common.logging import (
    bind_run_context,
    clear_run_context,
    configure_logging,
    phase_logger,
)

__all__ = [
    "GBError",
    "bind_run_context",
    "clear_run_context",
    "configure_logging",
    "error_to_payload",
    "phase_logger",
]
