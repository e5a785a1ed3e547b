"""Provision network, shards and storage server, then run the trials."""

from __future__ import annotations

import logging
import random
from pathlib import Path
from typing import Callable, List, Optional, TypeVar

from pydantic import ValidationError

from gb_common.errors import (
    BenchmarkStepError,
    ExecutionError,
    GBError,
    InsufficientNodesError,
    ProvisionError,
)
from gb_common.logging import TEARDOWN_PHASE, phase_logger
from gb_provisioner.engine.cleanup import CleanupStack, require_stack
from gb_provisioner.engine.manager import ResourceManager
from gb_provisioner.models.types import (
    ReservationID,
    ReservationResult,
    SchemaFile,
    StorageShard,
    ZdbPayload,
    format_shards,
)
from gb_provisioner.services.commands import CommandRunner
from gb_provisioner.services.registry import (
    RegistryClient,
    has_min_capacity,
    is_recently_active,
    shuffle_nodes,
)

from gb_bench.config import BenchConfig
from gb_bench.results import TrialStatistics
from gb_bench.trials import TrialRunner

logger = logging.getLogger(__name__)
teardown_logger = phase_logger(__name__, TEARDOWN_PHASE)

T = TypeVar("T")

NETWORK_SCHEMA = "network.json"
ZDB_SCHEMA = "zdb.json"
CONTAINER_SCHEMA = "container.json"


class BenchmarkDriver:
    """Sequence the whole run on one cleanup stack.

    Order: identity, network, tunnel, storage shards, storage server, trials.
    Each acquisition registers its release as soon as the provisioning call
    returns, so a reservation that never converges is still deleted. Leaving
    `run()` (normally or not) unwinds the stack newest-first.
    """

    def __init__(
        self,
        config: BenchConfig,
        manager: ResourceManager,
        registry: RegistryClient,
        trials: TrialRunner,
        workdir: Path,
        *,
        runner: Optional[CommandRunner] = None,
        rng: Optional[random.Random] = None,
        stack_factory: Callable[[], CleanupStack] = CleanupStack,
    ) -> None:
        self.config = config
        self.manager = manager
        self.registry = registry
        self.trials = trials
        self.workdir = workdir
        self._runner = runner or CommandRunner()
        self._rng = rng
        self._stack_factory = stack_factory

    @property
    def node(self) -> str:
        if not self.config.node:
            raise ProvisionError("no target node configured")
        return self.config.node

    def run(self) -> List[TrialStatistics]:
        logger.info("Benchmarking storage on node %s with %d zdbs", self.node, self.config.zdbs)
        with self._stack_factory() as stack:
            self._step("failed to create user", self.manager.create_identity)
            self._step("failed to create network", lambda: self.provision_network(stack))
            self._step("failed to bring tunnel up", lambda: self.bring_up_tunnel(stack))
            shards = self._step("failed to deploy zdbs", lambda: self.provision_shards(stack))
            self._step("failed to deploy minio", lambda: self.provision_server(stack, shards))
            return self._step(
                "failed to run storage trials",
                lambda: self.trials.run(self.config.sizes_mb, cancel=stack.cancel_token),
            )

    @staticmethod
    def _step(message: str, func: Callable[[], T]) -> T:
        # Local file writes (schemas, wireguard config, trial files) fail with OSError.
        try:
            return func()
        except (GBError, OSError, ValidationError) as exc:
            raise BenchmarkStepError(message, exc) from exc

    def _schema(self, name: str) -> SchemaFile:
        return SchemaFile(self.workdir / name)

    def provision_network(self, stack: CleanupStack) -> ReservationID:
        """Generate the network schema and wireguard config, then provision."""
        stack = require_stack(stack)
        net = self.config.network
        schema = self.manager.generate(
            self._schema(NETWORK_SCHEMA),
            "gen", "network", "create",
            "--name", net.name,
            "--cidr", net.cidr,
        )
        self.manager.tool_output(
            "gen", "--schema", str(schema),
            "network", "add-node",
            "--node", self.node,
            "--subnet", net.subnet,
        )
        self.manager.generate(
            SchemaFile(net.wireguard_dir / f"{net.interface}.conf"),
            "gen", "--schema", str(schema),
            "network", "add-access",
            "--node", self.node,
            "--subnet", net.access_subnet,
            "--ip4",
        )

        reservation = self.manager.provision(schema, self.node)
        stack.register(
            lambda: self.manager.release_quietly([reservation], what="network"),
            label=f"network {reservation.id}",
        )
        return reservation

    def bring_up_tunnel(self, stack: CleanupStack) -> None:
        stack = require_stack(stack)
        interface = self.config.network.interface
        self._runner.run("wg-quick", ["up", interface])

        def _down() -> None:
            try:
                self._runner.run("wg-quick", ["down", interface])
            except ExecutionError as exc:
                teardown_logger.error("Failed to clean up wireguard setup: %s", exc)

        stack.register(_down, label=f"wireguard {interface}")

    def provision_shards(self, stack: CleanupStack) -> List[StorageShard]:
        """Provision the storage shards as one all-or-nothing set."""
        stack = require_stack(stack)
        cfg = self.config.shards
        count = self.config.zdbs
        nodes = self.registry.list_nodes(
            is_recently_active(), has_min_capacity("sru", cfg.min_sru)
        )
        if len(nodes) < count:
            raise InsufficientNodesError(
                f"number of online nodes is not sufficient (required at least: {count})",
                context={"required": count, "available": len(nodes)},
            )

        schema = self.manager.generate(
            self._schema(ZDB_SCHEMA),
            "generate", "storage", "zdb",
            "--size", str(cfg.size_gb),
            "--type", cfg.disk_type,
            "--mode", cfg.mode,
            "--password", cfg.password,
        )
        shuffle_nodes(nodes, self._rng)
        logger.info("Provisioning %d zdbs out of %d eligible nodes", count, len(nodes))

        reservations = self.manager.provision_set(
            schema, [node.node_id for node in nodes[:count]]
        )
        stack.register(
            lambda: self.manager.release_quietly(reservations, what="zdb set"),
            label=f"zdb set ({len(reservations)})",
        )

        results = self._await(stack, reservations)
        return [
            StorageShard.from_payload(result.payload(ZdbPayload), cfg.password)
            for result in results
        ]

    def provision_server(self, stack: CleanupStack, shards: List[StorageShard]) -> ReservationResult:
        """Deploy the object-storage container on the target node."""
        stack = require_stack(stack)
        server = self.config.server
        net = self.config.network
        data, parity = self.config.distribution()
        schema = self.manager.generate(
            self._schema(CONTAINER_SCHEMA),
            "generate", "container",
            "--flist", server.flist,
            "--entrypoint", server.entrypoint,
            "--envs", f"SHARDS={format_shards(shards)}",
            "--envs", f"DATA={data}",
            "--envs", f"PARITY={parity}",
            "--envs", f"ACCESS_KEY={server.access_key}",
            "--envs", f"SECRET_KEY={server.secret_key}",
            "--cpu", str(server.cpu),
            "--memory", str(server.memory_mb),
            "--ip", server.ip,
            "--network", net.name,
        )

        reservation = self.manager.provision(schema, self.node)
        stack.register(
            lambda: self.manager.release_quietly([reservation], what="minio container"),
            label=f"container {reservation.id}",
        )
        return self._await(stack, [reservation])[0]

    def _await(
        self, stack: CleanupStack, reservations: List[ReservationID]
    ) -> List[ReservationResult]:
        results = self.registry.await_all(
            reservations,
            poll_interval=self.config.poll.interval_seconds,
            max_polls=self.config.poll.max_polls,
            cancel=stack.cancel_token,
        )
        for result in results:
            if not result.ok:
                raise ProvisionError(
                    f"reservation '{result.id}' has status: {result.state.value}",
                    context={"reservation": result.id, "error": result.error_message},
                )
        return results
