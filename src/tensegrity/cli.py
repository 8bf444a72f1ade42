"""Command line entry point for the Tensegrity controller."""
from __future__ import annotations

import logging
import signal
from pathlib import Path
from typing import List, Optional

import typer
from rich import box
from rich import print as rich_print
from rich.logging import RichHandler
from rich.table import Table

from .config import ConsumeSource, ControllerConfig
from .controller import Controller
from .errors import SpecValidationError
from .kube import TensegrityAPI
from .manifest_editor import ManifestDefaulter, is_tensegrity_document, load_documents
from .operations.pipeline import ResourceReconciler
from .resources.base import ObjectKey
from .resources.tensegrity import TensegrityResource

app = typer.Typer(help="Resolve produced and consumed configuration keys between workloads.")


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, log_time_format="%X")],
    )


def _load_config(
    config_path: Optional[Path],
    namespace: Optional[str],
    kube_context: Optional[str],
    kubeconfig: Optional[Path],
) -> ControllerConfig:
    controller_config = ControllerConfig.from_file(config_path) if config_path else ControllerConfig()
    if namespace:
        controller_config.cluster.namespace = namespace
    if kube_context:
        controller_config.cluster.context = kube_context
    if kubeconfig:
        controller_config.cluster.kubeconfig = str(kubeconfig)
    return controller_config


def _create_api(controller_config: ControllerConfig) -> TensegrityAPI:
    return TensegrityAPI(controller_config.cluster, controller_config.retry)


def _status_table(resource: TensegrityResource) -> Table:
    table = Table(title=f"{resource.kind} {resource.namespace}/{resource.name}", box=box.SIMPLE_HEAVY)
    table.add_column("Direction")
    table.add_column("Key")
    table.add_column("Env")
    table.add_column("Source")
    table.add_column("Status")
    table.add_column("Detail")
    for produced in resource.status.produced_keys:
        source = f"{produced.kind or '-'}/{produced.name or '-'}"
        detail = produced.reason or ("(sensitive)" if produced.sensitive else produced.value or "")
        colour = "green" if produced.status == "Success" else "red"
        table.add_row("produce", produced.key, "", source, f"[{colour}]{produced.status}[/{colour}]", detail)
    for consumed in resource.status.consumed_keys:
        delegate = consumed.delegate.name if consumed.delegate else "-"
        source = f"{consumed.kind}/{consumed.name} via {delegate}"
        colour = "green" if consumed.status == "Success" else "red"
        table.add_row(
            "consume",
            consumed.key,
            consumed.env,
            source,
            f"[{colour}]{consumed.status}[/{colour}]",
            consumed.reason or "",
        )
    return table


@app.command("run")
def run(
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to the controller configuration file."),
    namespace: Optional[str] = typer.Option(None, help="Only watch resources in this namespace."),
    kube_context: Optional[str] = typer.Option(None, "--context", help="Override kubeconfig context."),
    kubeconfig: Optional[Path] = typer.Option(None, help="Path to kubeconfig file."),
    workers: Optional[int] = typer.Option(None, help="Number of concurrent reconcile workers."),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
) -> None:
    """Run the controller until interrupted."""

    _configure_logging(verbose)
    controller_config = _load_config(config_path, namespace, kube_context, kubeconfig)
    if workers:
        controller_config.workers = workers
    controller = Controller(_create_api(controller_config), controller_config)

    def _stop(*_: object) -> None:
        controller.stop()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)
    controller.run()


@app.command("sync")
def sync(
    api_version: str = typer.Argument(..., help="API version of the resource, e.g. k8s.tensegrity.fastforge.io/v1alpha1."),
    kind: str = typer.Argument(..., help="Kind of the resource, e.g. Deployment."),
    name: str = typer.Argument(..., help="Name of the resource."),
    namespace: str = typer.Option("default", "--namespace", "-n", help="Namespace of the resource."),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to the controller configuration file."),
    kube_context: Optional[str] = typer.Option(None, "--context", help="Override kubeconfig context."),
    kubeconfig: Optional[Path] = typer.Option(None, help="Path to kubeconfig file."),
    consume_source: Optional[ConsumeSource] = typer.Option(None, help="Read consumed keys from status or objects."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Compute status without writing anything."),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
) -> None:
    """Reconcile a single resource once and show its key statuses."""

    _configure_logging(verbose)
    controller_config = _load_config(config_path, None, kube_context, kubeconfig)
    if consume_source:
        controller_config.engine.consume_source = consume_source
    reconciler = ResourceReconciler(_create_api(controller_config), controller_config.engine)
    try:
        resource = reconciler.reconcile(ObjectKey(api_version, kind, namespace, name), dry_run=dry_run)
    except SpecValidationError as exc:
        for error in exc.errors:
            rich_print(f"[red]{error}[/red]")
        raise typer.Exit(code=1)
    if resource is None:
        raise typer.Exit(f"{kind} {namespace}/{name} not found.")
    rich_print(_status_table(resource))
    for condition in resource.status.conditions:
        rich_print(f"{condition.type}={condition.status} ({condition.reason}): {condition.message}")


@app.command("validate")
def validate(
    paths: List[Path] = typer.Argument(..., help="Manifest files to validate."),
) -> None:
    """Validate Tensegrity manifests the way the admission webhook does."""

    failures = 0
    checked = 0
    for path in paths:
        for document in load_documents(path):
            if not is_tensegrity_document(document):
                continue
            checked += 1
            resource = TensegrityResource.from_dict(dict(document))
            for error in resource.spec.validate_spec():
                failures += 1
                rich_print(f"[red]{path}[/red] {resource.kind}/{resource.name}: {error}")
    if failures:
        raise typer.Exit(code=1)
    rich_print(f"[green]{checked} manifest(s) are valid.[/green]")


@app.command("default")
def default(
    path: Path = typer.Argument(..., help="Manifest file or directory to update in place."),
    namespace: Optional[str] = typer.Option(None, help="Namespace to assume when a manifest has none."),
) -> None:
    """Write admission defaults into manifests."""

    updated = ManifestDefaulter(path, default_namespace=namespace).apply_defaults()
    if not updated:
        rich_print("No manifests needed defaults.")
        return
    for manifest in updated:
        rich_print(f"[green]Updated[/green] {manifest}")


def main() -> None:
    app()
