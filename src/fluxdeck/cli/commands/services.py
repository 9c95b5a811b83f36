"""CLI commands for Flux-managed Services.

Provides ``services`` (one-shot listing), ``watch`` (live updates from
watch streams) and ``logs`` (follow every container of a Service).
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Annotated, Any

import typer
from rich.text import Text

from fluxdeck.cli.commands.base import (
    DurationOption,
    NamespaceOption,
    OutputOption,
    console,
    handle_k8s_error,
    wait_until_interrupted,
)
from fluxdeck.cli.formatters import OutputFormat, get_formatter
from fluxdeck.integrations.kubernetes.exceptions import KubernetesError
from fluxdeck.services.kubernetes.live_state import LiveStateDispatcher, LiveStateStore

if TYPE_CHECKING:
    from fluxdeck.integrations.kubernetes.models.services import Service
    from fluxdeck.services.kubernetes.flux_manager import FluxManager
    from fluxdeck.services.kubernetes.service_aggregator import ServiceAggregator
    from fluxdeck.services.kubernetes.streaming_manager import (
        PodLogMessage,
        ResourceWatcher,
        StreamingManager,
    )

# =============================================================================
# Column Definitions
# =============================================================================

SERVICE_COLUMNS = [
    ("namespace", "Namespace"),
    ("name", "Name"),
    ("deployment", "Deployment"),
    ("pods", "Pods"),
    ("running", "Running"),
    ("urls", "Ingress"),
    ("helm_release", "HelmRelease"),
]


def service_row(service: Service) -> dict[str, Any]:
    """Flatten a Service record into a table row."""
    return {
        "namespace": service.namespace or "",
        "name": service.name,
        "deployment": service.deployment.name if service.deployment else None,
        "pods": len(service.pods),
        "running": sum(1 for p in service.pods if p.is_running),
        "urls": [i.url for i in service.ingresses if i.url],
        "helm_release": service.helm_release,
    }


def print_services(services: list[Service], output: OutputFormat, title: str) -> None:
    formatter = get_formatter(output, console)
    if output is OutputFormat.TABLE:
        formatter.format_list([service_row(s) for s in services], SERVICE_COLUMNS, title=title)
    else:
        formatter.format_list(services, SERVICE_COLUMNS, title=title)


def load_services(
    flux_manager: FluxManager,
    aggregator: ServiceAggregator,
    namespace: str | None = None,
) -> list[Service]:
    """Aggregate the Services owned by every Kustomization and HelmRelease."""
    services = aggregator.aggregate(
        flux_manager.list_kustomizations(), flux_manager.list_helm_releases()
    )
    if namespace:
        services = [s for s in services if s.namespace == namespace]
    return services


def _change_line(key: str, row: dict[str, Any] | None) -> Text:
    if row is None:
        return Text.assemble((key, "cyan"), " ", ("deleted", "red"))
    urls = ", ".join(row["urls"]) or "-"
    return Text.assemble(
        (key, "cyan"),
        f"  deployment={row['deployment'] or '-'}",
        f"  pods={row['running']}/{row['pods']}",
        f"  ingress={urls}",
    )


# =============================================================================
# Command Registration
# =============================================================================


def register_service_commands(
    app: typer.Typer,
    get_flux_manager: Callable[[], FluxManager],
    get_aggregator: Callable[[], ServiceAggregator],
    get_streaming_manager: Callable[[], StreamingManager],
    get_watcher: Callable[[LiveStateDispatcher], ResourceWatcher],
) -> None:
    """Register Service commands.

    Args:
        app: Parent Typer app.
        get_flux_manager: Factory returning a FluxManager.
        get_aggregator: Factory returning a ServiceAggregator.
        get_streaming_manager: Factory returning a StreamingManager.
        get_watcher: Factory returning a ResourceWatcher feeding a dispatcher.
    """

    @app.command("services")
    def list_services(
        namespace: NamespaceOption = None,
        output: OutputOption = OutputFormat.TABLE,
    ) -> None:
        """List Services owned by Flux with their workloads.

        Examples:
            fluxdeck services
            fluxdeck services -n podinfo -o json
        """
        try:
            services = load_services(get_flux_manager(), get_aggregator(), namespace)
            print_services(services, output, "Services")
        except KubernetesError as e:
            handle_k8s_error(e)

    @app.command("watch")
    def watch_services(
        namespace: NamespaceOption = None,
        duration: DurationOption = None,
    ) -> None:
        """Follow live changes to Flux-owned Services.

        Examples:
            fluxdeck watch
            fluxdeck watch -n podinfo --for 10m
        """
        try:
            services = load_services(get_flux_manager(), get_aggregator(), namespace)
        except KubernetesError as e:
            handle_k8s_error(e)
            return

        print_services(services, OutputFormat.TABLE, "Services")
        owned = {s.key for s in services}
        last = {s.key: service_row(s) for s in services}

        def on_change(snapshot: list[Service]) -> None:
            seen: set[str] = set()
            for service in snapshot:
                if service.key not in owned:
                    continue
                seen.add(service.key)
                row = service_row(service)
                if last.get(service.key) != row:
                    last[service.key] = row
                    console.print(_change_line(service.key, row))
            for key in [k for k in last if k not in seen]:
                del last[key]
                console.print(_change_line(key, None))

        store = LiveStateStore(services)
        unsubscribe = store.subscribe(on_change)
        dispatcher = LiveStateDispatcher(store)
        watcher = get_watcher(dispatcher)
        dispatcher.start()
        watcher.start()
        try:
            wait_until_interrupted(duration)
        finally:
            watcher.stop()
            dispatcher.stop()
            unsubscribe()

    @app.command("logs")
    def service_logs(
        service: Annotated[str, typer.Argument(help="Service name")],
        namespace: NamespaceOption = None,
        duration: DurationOption = None,
    ) -> None:
        """Follow the logs of every container behind a Service.

        Examples:
            fluxdeck logs podinfo -n podinfo
            fluxdeck logs podinfo --for 1m
        """
        try:
            services = load_services(get_flux_manager(), get_aggregator(), namespace)
        except KubernetesError as e:
            handle_k8s_error(e)
            return

        matches = [s for s in services if s.name == service]
        if not matches:
            console.print(f"[red]Error:[/red] Service '{service}' is not managed by Flux")
            raise typer.Exit(1)
        namespaces = {s.namespace for s in matches}
        if len(namespaces) > 1:
            console.print(
                f"[red]Error:[/red] Service '{service}' exists in several namespaces: "
                f"{', '.join(sorted(ns or '' for ns in namespaces))}. Pass --namespace."
            )
            raise typer.Exit(1)
        target_namespace = matches[0].namespace or ""

        def sink(message: PodLogMessage) -> None:
            console.print(
                Text.assemble(
                    (f"{message.pod}/{message.container} ", "cyan"),
                    message.message,
                ),
                soft_wrap=True,
            )

        manager = get_streaming_manager()
        started = manager.stream_service_logs(target_namespace, service, services, sink)
        if not started:
            console.print(f"[yellow]No containers to follow for '{service}'[/yellow]")
            return

        try:
            wait_until_interrupted(duration)
        finally:
            manager.stop_all_logs()
