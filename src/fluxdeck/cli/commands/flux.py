"""CLI commands for Flux CD resources.

``state`` prints every Flux resource; ``reconcile``, ``suspend`` and
``resume`` drive the FluxOperations state machine and report its result.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Annotated

import typer

from fluxdeck.cli.commands.base import (
    NamespaceOption,
    OutputOption,
    console,
    handle_k8s_error,
)
from fluxdeck.cli.commands.services import print_services
from fluxdeck.cli.formatters import OutputFormat, get_formatter
from fluxdeck.integrations.kubernetes.exceptions import KubernetesError
from fluxdeck.services.kubernetes.flux_operations import (
    FLUX_KINDS,
    KIND_ALIASES,
    Operation,
    get_kind,
)

if TYPE_CHECKING:
    from fluxdeck.integrations.kubernetes.models.flux import FluxResourceSummary
    from fluxdeck.services.kubernetes.flux_manager import FluxManager
    from fluxdeck.services.kubernetes.flux_operations import FluxOperations
    from fluxdeck.services.kubernetes.service_aggregator import ServiceAggregator

# =============================================================================
# Column Definitions
# =============================================================================

FLUX_COLUMNS = [
    ("name", "Name"),
    ("namespace", "Namespace"),
    ("ready", "Ready"),
    ("suspended", "Suspended"),
    ("interval", "Interval"),
    ("status_message", "Message"),
]

KIND_HELP = "Resource kind: " + ", ".join(sorted([*FLUX_KINDS, *KIND_ALIASES]))


def _print_section(resources: Sequence[FluxResourceSummary], title: str) -> None:
    if resources:
        get_formatter(OutputFormat.TABLE, console).format_list(resources, FLUX_COLUMNS, title=title)


# =============================================================================
# Command Registration
# =============================================================================


def register_flux_commands(
    app: typer.Typer,
    get_manager: Callable[[], FluxManager],
    get_operations: Callable[[], FluxOperations],
    get_aggregator: Callable[[], ServiceAggregator],
) -> None:
    """Register Flux CD CLI commands."""

    @app.command("state")
    def show_state(output: OutputOption = OutputFormat.TABLE) -> None:
        """Show every Flux source, applier and controller Service.

        Examples:
            fluxdeck state
            fluxdeck state -o yaml
        """
        try:
            state = get_manager().get_state(get_aggregator())
        except KubernetesError as e:
            handle_k8s_error(e)
            return

        if output is not OutputFormat.TABLE:
            get_formatter(output, console).format_dict(
                state.model_dump(mode="json", exclude_none=True)
            )
            return

        _print_section(state.git_repositories, "GitRepositories")
        _print_section(state.oci_repositories, "OCIRepositories")
        _print_section(state.buckets, "Buckets")
        _print_section(state.helm_repositories, "HelmRepositories")
        _print_section(state.kustomizations, "Kustomizations")
        _print_section(state.helm_releases, "HelmReleases")
        _print_section(state.terraforms, "Terraforms")
        if state.flux_services:
            print_services(state.flux_services, OutputFormat.TABLE, "Flux controllers")

    def run_operation(
        operation: Operation,
        kind: str,
        name: str,
        namespace: str | None,
        output: OutputFormat,
    ) -> None:
        try:
            adapter = get_kind(kind)
        except KeyError as e:
            console.print(f"[red]Error:[/red] {e.args[0]}")
            raise typer.Exit(1) from None

        try:
            operations = get_operations()
            target_namespace = operations.resolve_namespace(namespace)
            if output is OutputFormat.TABLE and operation is not Operation.SUSPEND:
                console.print(
                    f"[dim]{operation} {adapter.kind} {target_namespace}/{name}, "
                    "waiting for the controller...[/dim]"
                )
            result = operations.execute(operation, adapter, target_namespace, name)
        except KubernetesError as e:
            handle_k8s_error(e)
            return
        except KeyboardInterrupt:
            console.print("\n[yellow]Cancelled[/yellow]")
            raise typer.Exit(130) from None

        if output is not OutputFormat.TABLE:
            get_formatter(output, console).format_dict(result.model_dump(mode="json"))
        elif result.succeeded:
            console.print(f"[green]✔[/green] {result.message}")
        else:
            console.print(f"[red]✗ {result.phase}:[/red] {result.message}")

        if not result.succeeded:
            raise typer.Exit(1)

    @app.command("reconcile")
    def reconcile(
        kind: Annotated[str, typer.Argument(help=KIND_HELP)],
        name: Annotated[str, typer.Argument(help="Resource name")],
        namespace: NamespaceOption = None,
        output: OutputOption = OutputFormat.TABLE,
    ) -> None:
        """Ask Flux to reconcile a resource now and wait for the result.

        Examples:
            fluxdeck reconcile ks apps
            fluxdeck reconcile helmrelease podinfo -n podinfo
        """
        run_operation(Operation.RECONCILE, kind, name, namespace, output)

    @app.command("suspend")
    def suspend(
        kind: Annotated[str, typer.Argument(help=KIND_HELP)],
        name: Annotated[str, typer.Argument(help="Resource name")],
        namespace: NamespaceOption = None,
        output: OutputOption = OutputFormat.TABLE,
    ) -> None:
        """Suspend reconciliation of a resource.

        Examples:
            fluxdeck suspend source flux-system
        """
        run_operation(Operation.SUSPEND, kind, name, namespace, output)

    @app.command("resume")
    def resume(
        kind: Annotated[str, typer.Argument(help=KIND_HELP)],
        name: Annotated[str, typer.Argument(help="Resource name")],
        namespace: NamespaceOption = None,
        output: OutputOption = OutputFormat.TABLE,
    ) -> None:
        """Resume a suspended resource and wait until it is ready.

        Examples:
            fluxdeck resume hr podinfo -n podinfo
        """
        run_operation(Operation.RESUME, kind, name, namespace, output)
