"""Shared provisioning types and value objects."""

from __future__ import annotations

import posixpath
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, ClassVar, Dict, Optional, Sequence, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from gb_common.errors import PayloadMismatch


@dataclass(frozen=True)
class ReservationID:
    """Resource URI printed by the provisioning tool."""

    uri: str

    @property
    def id(self) -> str:
        """Last path segment of the URI, as the registry knows it."""
        return posixpath.basename(self.uri.rstrip("/"))

    def __str__(self) -> str:
        return self.uri


class ReservationState(str, Enum):
    """States a reservation moves through in the registry.

    Anything the registry reports outside the known values, including an
    empty state on a freshly submitted reservation, is `UNKNOWN`.
    """

    UNKNOWN = "unknown"
    PENDING = "pending"
    DEPLOY = "deploy"
    OK = "ok"
    ERROR = "error"

    @property
    def terminal(self) -> bool:
        return self in (ReservationState.OK, ReservationState.ERROR)


class ReservationPayload(BaseModel):
    """Base for typed views over a reservation's ``data`` field."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    kind: ClassVar[str] = ""


class ZdbPayload(ReservationPayload):
    """Storage namespace details of a ``zdb`` reservation."""

    kind: ClassVar[str] = "zdb"

    namespace: str = Field(alias="Namespace")
    ip: str = Field(alias="IP")
    port: int = Field(alias="Port")


class ContainerPayload(ReservationPayload):
    kind: ClassVar[str] = "container"

    id: Optional[str] = None
    ipv4: Optional[str] = None
    ipv6: Optional[str] = None


class NetworkPayload(ReservationPayload):
    kind: ClassVar[str] = "network"

    name: Optional[str] = None


P = TypeVar("P", bound=ReservationPayload)


class ReservationResult(BaseModel):
    """Registry view of one reservation."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = ""
    kind: str = Field(default="", alias="type")
    state: ReservationState = ReservationState.UNKNOWN
    error_message: str = Field(default="", alias="error")
    data: Any = None

    @field_validator("state", mode="before")
    @classmethod
    def _coerce_state(cls, value: Any) -> Any:
        if isinstance(value, ReservationState):
            return value
        try:
            return ReservationState(str(value or "").strip().lower())
        except ValueError:
            return ReservationState.UNKNOWN

    @field_validator("id", "kind", "error_message", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @property
    def ok(self) -> bool:
        return self.state is ReservationState.OK

    def payload(self, model: Type[P]) -> P:
        """Decode ``data`` as ``model``, which must match this reservation kind."""
        if model.kind and self.kind and model.kind != self.kind:
            raise PayloadMismatch(
                f"reservation {self.id} is a '{self.kind}', not a '{model.kind}'",
                context={"reservation": self.id, "kind": self.kind, "requested": model.kind},
            )
        if self.data is None:
            raise PayloadMismatch(
                f"reservation {self.id} carries no data",
                context={"reservation": self.id, "kind": self.kind},
            )
        try:
            return model.model_validate(self.data)
        except ValidationError as exc:
            raise PayloadMismatch(
                f"reservation {self.id} data does not decode as {model.__name__}",
                context={"reservation": self.id, "kind": self.kind},
                cause=exc,
            ) from exc


class Node(BaseModel):
    """Read-only snapshot of a grid node."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    node_id: str
    updated: int = 0
    total_resources: Dict[str, int] = Field(default_factory=dict)
    public_config: Optional[Dict[str, Any]] = None

    @property
    def has_public_connectivity(self) -> bool:
        return self.public_config is not None

    def capacity(self, kind: str) -> int:
        return int(self.total_resources.get(kind, 0))


@dataclass(frozen=True)
class SchemaFile:
    """A schema or config file fed by provisioning tool output."""

    path: Path

    def write(self, output: str) -> "SchemaFile":
        """Store captured tool output in the file and return self."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(output, encoding="utf-8")
        return self

    def __str__(self) -> str:
        return str(self.path)


@dataclass(frozen=True)
class StorageShard:
    """One provisioned storage namespace plus the password it was created with."""

    namespace: str
    ip: str
    port: int
    password: str

    @classmethod
    def from_payload(cls, payload: ZdbPayload, password: str) -> "StorageShard":
        return cls(
            namespace=payload.namespace,
            ip=payload.ip,
            port=payload.port,
            password=password,
        )

    @property
    def reservation(self) -> ReservationID:
        return ReservationID(posixpath.join("reservations", self.namespace))

    def __str__(self) -> str:
        return f"{self.namespace}:{self.password}@[{self.ip}]:{self.port}"


def format_shards(shards: Sequence[StorageShard]) -> str:
    """Render a shard set the way the storage server expects it."""
    return ",".join(str(shard) for shard in shards)
