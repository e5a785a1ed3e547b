"""Provisioning lifecycle for grid-bench: reserve, await, and release grid resources."""

from gb_common.api import configure_logging as _configure_logging

_configure_logging()

from gb_provisioner.api import (  # noqa: E402,F401
    CleanupStack,
    RegistryClient,
    ReservationID,
    ResilientInvoker,
    ResourceManager,
)

__all__ = [
    "CleanupStack",
    "RegistryClient",
    "ReservationID",
    "ResilientInvoker",
    "ResourceManager",
]
