"""Benchmark configuration model."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, List, Mapping, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError, field_validator

from gb_common.config.env import (
    parse_float_env,
    parse_int_env,
    parse_int_list_env,
)
from gb_common.errors import ConfigurationError

DEFAULT_EXPLORER_URL = "https://explorer.devnet.grid.tf"


class NetworkConfig(BaseModel):
    """Private network the storage server and the local tunnel share."""

    name: str = Field(default="minio", description="Network name in the reservation schema")
    cidr: str = Field(default="172.10.0.0/16", description="Full network range")
    subnet: str = Field(default="172.10.1.0/24", description="Subnet assigned to the target node")
    access_subnet: str = Field(default="10.1.0.0/24", description="Subnet for the local access peer")
    interface: str = Field(default="miniotest", description="Local wireguard interface name")
    wireguard_dir: Path = Field(default=Path("/etc/wireguard"), description="Where wg-quick looks for configs")


class StorageServerConfig(BaseModel):
    """Object-storage container settings."""

    flist: str = Field(default="https://hub.grid.tf/azmy.3bot/minio.flist")
    entrypoint: str = Field(default="/bin/entrypoint")
    ip: str = Field(default="172.10.1.100", description="Container address inside the private network")
    port: int = Field(default=9000, gt=0)
    cpu: int = Field(default=2, gt=0)
    memory_mb: int = Field(default=4096, gt=0)
    access_key: str = Field(default="minio")
    secret_key: str = Field(default="passwordpassword")


class ShardConfig(BaseModel):
    size_gb: int = Field(default=10, gt=0)
    disk_type: str = Field(default="SSD")
    mode: str = Field(default="seq")
    password: str = Field(default="password")
    min_sru: int = Field(default=10, ge=0, description="Nodes must offer more SRU than this")


class PollConfig(BaseModel):
    interval_seconds: float = Field(default=1.0, ge=0)
    max_polls: int = Field(default=20, gt=0)


class RetryConfig(BaseModel):
    """Backoff for storage-client calls."""

    max_attempts: int = Field(default=10, gt=0)
    base_delay: float = Field(default=0.5, ge=0)
    max_delay: float = Field(default=10.0, ge=0)
    multiplier: float = Field(default=1.5, ge=1.0)
    jitter: float = Field(default=0.5, ge=0, le=1)


class BenchConfig(BaseModel):
    """Everything one benchmark run needs."""

    tfuser_bin: str = Field(default="tfuser", description="Provisioning tool binary")
    mc_bin: str = Field(default="mc", description="Storage client binary")
    node: Optional[str] = Field(default=None, description="Target node; discovered when unset")
    zdbs: int = Field(default=3, gt=0, description="Number of storage shards")
    data_parity: str = Field(default="2/1", description="Data/parity distribution as D/P")
    explorer_url: str = Field(default=DEFAULT_EXPLORER_URL)
    duration: str = Field(default="1h", description="Lease duration of every reservation")
    seed_file: str = Field(default="user.seed")
    bucket: str = Field(default="test/bucket")
    sizes_mb: List[int] = Field(default_factory=lambda: [10, 100, 1024])
    output: Path = Field(default=Path("statistics.json"))
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    server: StorageServerConfig = Field(default_factory=StorageServerConfig)
    shards: ShardConfig = Field(default_factory=ShardConfig)
    poll: PollConfig = Field(default_factory=PollConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)

    @field_validator("data_parity")
    @classmethod
    def _check_distribution(cls, value: str) -> str:
        parse_distribution(value)
        return value

    @field_validator("explorer_url")
    @classmethod
    def _check_explorer_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("explorer_url must be an http(s) URL")
        return value.rstrip("/")

    @field_validator("sizes_mb")
    @classmethod
    def _check_sizes(cls, value: List[int]) -> List[int]:
        if not value or any(size <= 0 for size in value):
            raise ValueError("trial sizes must be positive")
        return value

    def distribution(self) -> Tuple[int, int]:
        return parse_distribution(self.data_parity)

    @classmethod
    def from_env(
        cls, environ: Mapping[str, str] | None = None, **overrides: Any
    ) -> "BenchConfig":
        """Build a config from ``GB_*`` variables; explicit overrides win."""
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for key, var in (
            ("tfuser_bin", "GB_TFUSER"),
            ("mc_bin", "GB_MC"),
            ("node", "GB_NODE"),
            ("data_parity", "GB_DIST"),
            ("explorer_url", "GB_EXPLORER_URL"),
        ):
            if env.get(var):
                values[key] = env[var]
        zdbs = parse_int_env(env.get("GB_ZDBS"))
        if zdbs is not None:
            values["zdbs"] = zdbs
        sizes = parse_int_list_env(env.get("GB_SIZES_MB"))
        if sizes is not None:
            values["sizes_mb"] = sizes
        poll: dict[str, Any] = {}
        interval = parse_float_env(env.get("GB_POLL_INTERVAL"))
        if interval is not None:
            poll["interval_seconds"] = interval
        max_polls = parse_int_env(env.get("GB_MAX_POLLS"))
        if max_polls is not None:
            poll["max_polls"] = max_polls
        if poll:
            values["poll"] = PollConfig(**poll)
        values.update({k: v for k, v in overrides.items() if v is not None})
        try:
            return cls(**values)
        except ValidationError as exc:
            raise ConfigurationError(
                f"invalid configuration: {exc.error_count()} error(s)",
                context={
                    "errors": [
                        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                        for err in exc.errors()
                    ]
                },
                cause=exc,
            ) from exc


def parse_distribution(value: str) -> Tuple[int, int]:
    """Parse ``D/P`` into ``(data, parity)``; neither may be zero."""
    parts = value.split("/")
    if len(parts) != 2:
        raise ValueError("invalid data parity format expecting D/P")
    try:
        data, parity = int(parts[0]), int(parts[1])
    except ValueError as exc:
        raise ValueError("invalid data parity format expecting D/P") from exc
    if data <= 0 or parity <= 0:
        raise ValueError("data nor parity can be zero")
    return data, parity
