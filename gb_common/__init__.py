"""Shared helpers for grid-bench."""

from gb_common.api import configure_logging

__all__ = ["configure_logging"]
