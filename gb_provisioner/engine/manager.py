"""Issue and release reservations through the provisioning tool."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Sequence

from gb_common.errors import (
    DeprovisionError,
    ExecutionError,
    ProvisionError,
    ProvisionParseError,
)
from gb_common.logging import TEARDOWN_PHASE, phase_logger

from gb_provisioner.models.types import ReservationID, SchemaFile
from gb_provisioner.services.commands import CommandRunner

logger = logging.getLogger(__name__)
teardown_logger = phase_logger(__name__, TEARDOWN_PHASE)

RESOURCE_PREFIX = "Resource: "
DEFAULT_DURATION = "1h"
DEFAULT_SEED_FILE = "user.seed"


def parse_reservation(output: str) -> ReservationID | None:
    """Return the reservation on the first non-empty ``Resource: `` line, if any."""
    for line in output.splitlines():
        if not line.startswith(RESOURCE_PREFIX):
            continue
        uri = line[len(RESOURCE_PREFIX):].strip()
        if uri:
            return ReservationID(uri)
    return None


class ResourceManager:
    """Phase one of provisioning: request a reservation and get its ID back.

    Convergence of the reservation to ``ok``/``error`` is tracked separately
    through `RegistryClient.await_all`.
    """

    def __init__(
        self,
        runner: CommandRunner | None = None,
        tool: str = "tfuser",
        *,
        seed_file: str = DEFAULT_SEED_FILE,
        duration: str = DEFAULT_DURATION,
    ) -> None:
        self._runner = runner or CommandRunner()
        self.tool = tool
        self.seed_file = seed_file
        self.duration = duration

    def tool_output(self, *args: str) -> str:
        return self._runner.run(self.tool, args)

    def create_identity(self) -> None:
        """Create the user identity and seed file."""
        self.tool_output("id")

    def generate(self, target: SchemaFile | Path | str, *args: str) -> SchemaFile:
        """Run a schema generation command and store its output in ``target``."""
        schema = target if isinstance(target, SchemaFile) else SchemaFile(Path(target))
        return schema.write(self.tool_output(*args))

    def provision(self, schema: SchemaFile | Path | str, node: str) -> ReservationID:
        """Submit ``schema`` for ``node`` and return the new reservation."""
        try:
            out = self.tool_output(
                "provision",
                "--schema", str(schema),
                "--duration", self.duration,
                "--seed", self.seed_file,
                "--node", node,
            )
        except ExecutionError as exc:
            raise ProvisionError(
                f"failed to provision '{schema}'",
                context={"schema": str(schema), "node": node},
                cause=exc,
            ) from exc

        reservation = parse_reservation(out)
        if reservation is None:
            raise ProvisionParseError(
                f"failed to extract resource URI from reservation ({schema})",
                context={"schema": str(schema), "node": node, "output": out},
            )
        logger.info("Provisioned %s on node %s as %s", schema, node, reservation.id)
        return reservation

    def deprovision(self, *reservations: ReservationID) -> None:
        """Delete reservations in order, stopping at the first failure."""
        for index, reservation in enumerate(reservations):
            teardown_logger.debug("De-provisioning %s", reservation.id)
            try:
                self.tool_output("delete", "--id", reservation.id)
            except ExecutionError as exc:
                remaining = [r.id for r in reservations[index + 1:]]
                raise DeprovisionError(
                    f"failed to delete reservation {reservation.id}",
                    context={"reservation": reservation.id, "not_attempted": remaining},
                    cause=exc,
                ) from exc

    def provision_set(
        self, schema: SchemaFile | Path | str, nodes: Sequence[str]
    ) -> List[ReservationID]:
        """Provision one reservation per node as an all-or-nothing set.

        If any reservation fails, the ones already issued are deleted before
        the error propagates.
        """
        reservations: List[ReservationID] = []
        try:
            for node in nodes:
                reservations.append(self.provision(schema, node))
        except Exception:
            self.release_quietly(reservations, what="partial reservation set")
            raise
        return reservations

    def release_quietly(self, reservations: Sequence[ReservationID], *, what: str) -> None:
        """Deprovision and log, never raise; used on teardown paths."""
        if not reservations:
            return
        try:
            self.deprovision(*reservations)
        except DeprovisionError as exc:
            teardown_logger.error("Failed to de-provision %s: %s", what, exc)
