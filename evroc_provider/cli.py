"""Main CLI entry point for the evroc provider."""

import signal
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from evroc_provider.config import ManagerConfig
from evroc_provider.exceptions import ConfigurationError
from evroc_provider.logging_config import get_logger, setup_logging

app = typer.Typer(
    name="evroc-provider",
    help="Cluster API infrastructure provider for the evroc cloud",
    add_completion=False,
)

console = Console()
logger = get_logger(__name__)


# Global callback to set up logging
@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    log_file: str | None = typer.Option(None, "--log-file", help="Path to log file"),
):
    """Global options for all commands."""
    log_path = Path(log_file) if log_file else None
    setup_logging(verbose=verbose, log_file=log_path)
    ctx.obj = {"verbose": verbose, "log_file": log_path}
    logger.debug("Logging initialized")


def load_config(config_path: str | None) -> ManagerConfig:
    if config_path is None:
        return ManagerConfig()
    return ManagerConfig.load(config_path)


def build_store(kubeconfig: str | None):
    """Connect to the management cluster.

    Falls back to the in-cluster service account when no kubeconfig is found.
    """
    from kubernetes import client, config

    from evroc_provider.registry import build_management_registry
    from evroc_provider.store import KubernetesObjectStore

    try:
        config.load_kube_config(config_file=kubeconfig)
    except config.ConfigException:
        if kubeconfig:
            raise
        logger.debug("No kubeconfig found, using in-cluster configuration")
        config.load_incluster_config()
    return KubernetesObjectStore(client.ApiClient(), build_management_registry())


@app.command()
def version() -> None:
    """Show version information."""
    from evroc_provider import __version__

    typer.echo(f"evroc-provider version {__version__}")


@app.command()
def run(
    ctx: typer.Context,
    config_path: str | None = typer.Option(None, "--config", "-c", help="Path to YAML config file"),
    kubeconfig: str | None = typer.Option(
        None, "--kubeconfig", help="Kubeconfig of the management cluster"
    ),
    namespace: str | None = typer.Option(
        None, "--namespace", "-n", help="Only reconcile objects in this namespace"
    ),
    workers: int | None = typer.Option(None, "--workers", "-w", help="Number of reconcile workers"),
) -> None:
    """
    Run the EvrocCluster and EvrocMachine controllers.

    Watches the management cluster and reconciles until interrupted with Ctrl-C.

    Examples:
        # Run against the current kubeconfig context
        evroc-provider run

        # Run with a config file, limited to one namespace
        evroc-provider run --config provider.yaml --namespace capi-clusters
    """
    from evroc_provider.controllers import EvrocClusterReconciler, EvrocMachineReconciler
    from evroc_provider.manager import Manager
    from evroc_provider.registry import build_evroc_registry

    try:
        cfg = load_config(config_path).merge(
            kubeconfig=kubeconfig, namespace=namespace, workers=workers
        )
    except ConfigurationError as e:
        console.print(f"[red]Configuration Error:[/red] {e.message}")
        if e.details:
            console.print(f"\n{e.details}")
        raise typer.Exit(code=1)
    except ValueError as e:
        console.print(f"[red]Configuration Error:[/red] {e}")
        raise typer.Exit(code=1)

    options = ctx.obj or {}
    setup_logging(
        level=cfg.log_level,
        log_file=options.get("log_file"),
        verbose=options.get("verbose", False),
    )

    try:
        store = build_store(cfg.kubeconfig)
    except Exception as e:
        console.print(f"[red]Error:[/red] Failed to load kubeconfig: {e}")
        console.print("\nMake sure:")
        console.print("  1. A kubeconfig for the management cluster is available")
        console.print("  2. Or the provider runs inside the cluster with a service account")
        raise typer.Exit(code=1)

    evroc_registry = build_evroc_registry()
    manager = Manager(
        cfg,
        store,
        [
            EvrocClusterReconciler(store, evroc_registry),
            EvrocMachineReconciler(store, evroc_registry),
        ],
    )

    signal.signal(signal.SIGTERM, lambda signum, frame: manager.stop())
    manager.start()
    console.print(
        f"[green]✓[/green] Controllers running with {cfg.workers} workers"
        + (f" in namespace {cfg.namespace}" if cfg.namespace else "")
    )
    try:
        manager.wait()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted, shutting down[/yellow]")
    finally:
        manager.stop()


def _condition_summary(obj) -> str:
    """Reason of the Ready condition, or of the first false condition."""
    from evroc_provider import conditions
    from evroc_provider.models.condition import READY

    ready = conditions.get(obj, READY)
    if ready is not None and ready.status == "True":
        return ""
    if ready is not None and ready.reason:
        return ready.reason
    for condition in obj.status.conditions:
        if condition.status == "False" and condition.reason:
            return condition.reason
    return ""


@app.command()
def status(
    kubeconfig: str | None = typer.Option(
        None, "--kubeconfig", help="Kubeconfig of the management cluster"
    ),
    namespace: str | None = typer.Option(
        None, "--namespace", "-n", help="Filter objects by namespace"
    ),
) -> None:
    """
    Show EvrocCluster and EvrocMachine readiness.

    Examples:
        # Show all objects
        evroc-provider status

        # Show objects in one namespace
        evroc-provider status --namespace capi-clusters
    """
    from kubernetes.client.exceptions import ApiException

    from evroc_provider.models.cluster import EvrocCluster
    from evroc_provider.models.machine import EXTERNAL_IP, INTERNAL_IP, EvrocMachine

    try:
        store = build_store(kubeconfig)
    except Exception as e:
        console.print(f"[red]Error:[/red] Failed to load kubeconfig: {e}")
        raise typer.Exit(code=1)

    try:
        clusters = store.list(EvrocCluster, namespace)
        machines = store.list(EvrocMachine, namespace)
    except ApiException as e:
        console.print(f"[red]Error:[/red] Failed to list objects: ({e.status}) {e.reason}")
        raise typer.Exit(code=1)

    if not clusters and not machines:
        console.print("[yellow]No EvrocClusters or EvrocMachines found[/yellow]")
        raise typer.Exit(code=0)

    console.print(f"\n[bold cyan]EvrocClusters ({len(clusters)}):[/bold cyan]")
    clusters_table = Table()
    clusters_table.add_column("Namespace")
    clusters_table.add_column("Name", style="cyan")
    clusters_table.add_column("Project", style="magenta")
    clusters_table.add_column("Ready", style="green")
    clusters_table.add_column("Endpoint", style="yellow")
    clusters_table.add_column("Reason")

    for cluster in sorted(clusters, key=lambda c: (c.namespace, c.name)):
        endpoint = cluster.spec.control_plane_endpoint
        clusters_table.add_row(
            cluster.namespace,
            cluster.name,
            cluster.spec.project,
            "✓ Ready" if cluster.status.ready else "✗ Not Ready",
            "" if endpoint.is_zero else f"{endpoint.host}:{endpoint.port}",
            _condition_summary(cluster),
        )
    console.print(clusters_table)

    console.print(f"\n[bold cyan]EvrocMachines ({len(machines)}):[/bold cyan]")
    machines_table = Table()
    machines_table.add_column("Namespace")
    machines_table.add_column("Name", style="cyan")
    machines_table.add_column("Ready", style="green")
    machines_table.add_column("State", style="blue")
    machines_table.add_column("Internal IP", style="yellow")
    machines_table.add_column("External IP", style="yellow")
    machines_table.add_column("Reason")

    for machine in sorted(machines, key=lambda m: (m.namespace, m.name)):
        addresses = {address.type: address.address for address in machine.status.addresses}
        machines_table.add_row(
            machine.namespace,
            machine.name,
            "✓ Ready" if machine.status.ready else "✗ Not Ready",
            machine.status.instance_state or "",
            addresses.get(INTERNAL_IP, ""),
            addresses.get(EXTERNAL_IP, ""),
            _condition_summary(machine),
        )
    console.print(machines_table)

    ready_machines = sum(1 for m in machines if m.status.ready)
    console.print("\n[bold]Summary:[/bold]")
    console.print(f"  Ready Clusters: {sum(1 for c in clusters if c.status.ready)}/{len(clusters)}")
    console.print(f"  Ready Machines: {ready_machines}/{len(machines)}")


@app.command()
def init_config(
    path: str = typer.Argument("evroc-provider.yaml", help="Where to write the config file"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing file"),
) -> None:
    """Write a config file with the default settings."""
    config_path = Path(path)
    if config_path.exists() and not force:
        console.print(f"[red]Error:[/red] Config file already exists: {config_path}")
        console.print("Use --force to overwrite it")
        raise typer.Exit(code=1)

    ManagerConfig().save(config_path)
    console.print(f"[green]✓[/green] Wrote default configuration to {config_path}")


if __name__ == "__main__":
    app()
