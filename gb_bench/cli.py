"""
Command-line interface for grid-bench.

Provisions a private network, storage shards and an object-storage server on
the grid, measures upload/download throughput, then tears everything down.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import List, NoReturn, Optional

import typer
from rich.console import Console
from rich.table import Table

from gb_common.api import bind_run_context, clear_run_context, configure_logging
from gb_common.errors import ConfigurationError, GBError, error_to_payload
from gb_provisioner.engine.cancel import CancelToken
from gb_provisioner.engine.cleanup import CleanupStack
from gb_provisioner.engine.manager import ResourceManager
from gb_provisioner.services.registry import (
    RegistryClient,
    has_min_capacity,
    has_public_connectivity,
    is_recently_active,
    pick_public_node,
)
from gb_provisioner.services.retry import ResilientInvoker, RetryPolicy

from gb_bench.config import BenchConfig
from gb_bench.driver import BenchmarkDriver
from gb_bench.results import TrialStatistics, write_statistics
from gb_bench.trials import StorageClient, TrialRunner

logger = logging.getLogger(__name__)
console = Console(stderr=True)

app = typer.Typer(
    help="Benchmark object storage on freshly provisioned grid resources.",
    no_args_is_help=True,
)


def _absolute(binary: Optional[str]) -> Optional[str]:
    if not binary:
        return None
    return str(Path(binary).absolute())


def _fail(message: str) -> NoReturn:
    console.print(f"[bold red]{message}[/bold red]")
    raise typer.Exit(1)


def _load_config(**overrides) -> BenchConfig:
    try:
        return BenchConfig.from_env(**overrides)
    except ConfigurationError as exc:
        for detail in exc.context.get("errors", []):
            logger.error("Invalid setting %s", detail)
        _fail(f"Invalid configuration: {exc}")


def build_driver(config: BenchConfig, workdir: Path, token: CancelToken) -> BenchmarkDriver:
    """Wire the driver with real collaborators rooted at ``workdir``."""
    retry = config.retry
    invoker = ResilientInvoker(
        policy=RetryPolicy(
            max_attempts=retry.max_attempts,
            base_delay=retry.base_delay,
            max_delay=retry.max_delay,
            multiplier=retry.multiplier,
            jitter=retry.jitter,
        )
    )
    storage = StorageClient(
        invoker,
        config.mc_bin,
        workdir / "mc",
        server_url=f"http://{config.server.ip}:{config.server.port}",
        access_key=config.server.access_key,
        secret_key=config.server.secret_key,
    )
    return BenchmarkDriver(
        config,
        ResourceManager(
            tool=config.tfuser_bin,
            seed_file=config.seed_file,
            duration=config.duration,
        ),
        RegistryClient(config.explorer_url),
        TrialRunner(storage, config.bucket, workdir),
        workdir,
        stack_factory=lambda: CleanupStack(cancel=token.child()),
    )


def render_statistics(stats: List[TrialStatistics]) -> Table:
    table = Table(title="Storage trials", show_header=True, header_style="bold magenta")
    table.add_column("Size (MB)", justify="right", style="cyan")
    table.add_column("Upload (s)", justify="right")
    table.add_column("Download (s)", justify="right")
    table.add_column("Upload MB/s", justify="right", style="green")
    table.add_column("Download MB/s", justify="right", style="green")
    table.add_column("Hash", justify="center")
    for entry in stats:
        up = entry.upload_ns / 1e9
        down = entry.download_ns / 1e9
        table.add_row(
            str(entry.size_mb),
            f"{up:.2f}",
            f"{down:.2f}",
            f"{entry.size_mb / up:.2f}" if up else "-",
            f"{entry.size_mb / down:.2f}" if down else "-",
            "[green]match[/green]" if entry.hash_match else "[red]MISMATCH[/red]",
        )
    return table


@app.command("run")
def run_command(
    tfuser: Optional[str] = typer.Option(
        None, "--tfuser", help="Path to the provisioning tool. Defaults to $PATH."
    ),
    mc: Optional[str] = typer.Option(
        None, "--mc", help="Path to the storage client. Defaults to $PATH."
    ),
    node: Optional[str] = typer.Option(
        None, "--node", help="Node to install minio on. It must have a public interface."
    ),
    zdbs: Optional[int] = typer.Option(
        None, "--zdbs", help="Number of zdb namespaces to deploy (default 3)."
    ),
    dist: Optional[str] = typer.Option(
        None, "--dist", help="Distribution of data/parity in the format Data/Parity (default 2/1)."
    ),
    explorer: Optional[str] = typer.Option(
        None, "--explorer", help="Registry base URL."
    ),
    sizes: Optional[List[int]] = typer.Option(
        None, "--size", help="Trial file size in MB; repeat for several trials."
    ),
    output: Path = typer.Option(
        Path("statistics.json"), "--output", "-o", help="Where to write per-trial statistics."
    ),
    workdir: Optional[Path] = typer.Option(
        None, "--workdir", help="Working directory; a temporary one is used by default."
    ),
    keep_workdir: bool = typer.Option(
        False, "--keep-workdir", help="Do not delete the working directory afterwards."
    ),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging."),
    log_json: bool = typer.Option(False, "--log-json", help="Emit JSON log lines."),
) -> None:
    """Provision, benchmark, and tear down."""
    configure_logging(debug=debug, json=log_json or None, force=True)

    config = _load_config(
        tfuser_bin=_absolute(tfuser),
        mc_bin=_absolute(mc),
        node=node,
        zdbs=zdbs,
        data_parity=dist,
        explorer_url=explorer,
        sizes_mb=sizes or None,
        output=output.absolute(),
    )

    if not config.node:
        try:
            found = pick_public_node(RegistryClient(config.explorer_url))
        except GBError as exc:
            _fail(f"Failed to find node: {exc}")
        config = config.model_copy(update={"node": found})
    logger.info("Using node %s", config.node)
    bind_run_context(node=config.node)

    root = workdir.absolute() if workdir else Path(tempfile.mkdtemp(prefix="minio-perf"))
    root.mkdir(parents=True, exist_ok=True)
    cwd = Path.cwd()
    logger.info("Changing into test root %s", root)
    os.chdir(root)
    try:
        with CancelToken(enable_signals=True) as token:
            stats = build_driver(config, root, token).run()
    except GBError as exc:
        logger.error("Run failed", extra=error_to_payload(exc), exc_info=debug)
        _fail(f"Failed to execute tests: {exc}")
    finally:
        os.chdir(cwd)
        clear_run_context()
        if workdir is None and not keep_workdir:
            shutil.rmtree(root, ignore_errors=True)

    path = write_statistics(config.output, stats)
    console.print(render_statistics(stats))
    console.print(f"Statistics written to {path}")


@app.command("nodes")
def nodes_command(
    explorer: Optional[str] = typer.Option(None, "--explorer", help="Registry base URL."),
    public: bool = typer.Option(False, "--public", help="Only nodes with a public interface."),
    min_sru: Optional[int] = typer.Option(
        None, "--min-sru", help="Only nodes with more SRU than this."
    ),
) -> None:
    """List recently active nodes known to the registry."""
    configure_logging(force=True)
    config = _load_config(explorer_url=explorer)
    filters = [is_recently_active()]
    if public:
        filters.append(has_public_connectivity())
    if min_sru is not None:
        filters.append(has_min_capacity("sru", min_sru))
    try:
        nodes = RegistryClient(config.explorer_url).list_nodes(*filters)
    except GBError as exc:
        _fail(f"Failed to list nodes: {exc}")

    table = Table(title=f"{len(nodes)} nodes", show_header=True, header_style="bold magenta")
    table.add_column("Node", style="cyan")
    table.add_column("Public", justify="center")
    table.add_column("SRU", justify="right")
    table.add_column("CRU", justify="right")
    table.add_column("MRU", justify="right")
    for item in nodes:
        table.add_row(
            item.node_id,
            "yes" if item.has_public_connectivity else "no",
            str(item.capacity("sru")),
            str(item.capacity("cru")),
            str(item.capacity("mru")),
        )
    Console().print(table)


def main() -> None:
    """Console script entrypoint (Typer app)."""
    app()


if __name__ == "__main__":
    main()
