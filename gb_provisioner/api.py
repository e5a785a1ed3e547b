"""Public provisioning API surface."""

from gb_provisioner.engine.cancel import CancelToken
from gb_provisioner.engine.cleanup import CleanupAction, CleanupStack, require_stack
from gb_provisioner.engine.manager import RESOURCE_PREFIX, ResourceManager, parse_reservation
from gb_provisioner.models.types import (
    ContainerPayload,
    NetworkPayload,
    Node,
    ReservationID,
    ReservationPayload,
    ReservationResult,
    ReservationState,
    SchemaFile,
    StorageShard,
    ZdbPayload,
    format_shards,
)
from gb_provisioner.services.commands import CommandRunner
from gb_provisioner.services.registry import (
    NodeFilter,
    RegistryClient,
    has_min_capacity,
    has_public_connectivity,
    is_recently_active,
    pick_public_node,
    shuffle_nodes,
)
from gb_provisioner.services.retry import InvocationResult, ResilientInvoker, RetryPolicy

__all__ = [
    "CancelToken",
    "CleanupAction",
    "CleanupStack",
    "CommandRunner",
    "ContainerPayload",
    "InvocationResult",
    "NetworkPayload",
    "Node",
    "NodeFilter",
    "RESOURCE_PREFIX",
    "RegistryClient",
    "ReservationID",
    "ReservationPayload",
    "ReservationResult",
    "ReservationState",
    "ResilientInvoker",
    "ResourceManager",
    "RetryPolicy",
    "SchemaFile",
    "StorageShard",
    "ZdbPayload",
    "format_shards",
    "has_min_capacity",
    "has_public_connectivity",
    "is_recently_active",
    "parse_reservation",
    "pick_public_node",
    "require_stack",
    "shuffle_nodes",
]
