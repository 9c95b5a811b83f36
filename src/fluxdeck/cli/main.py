"""Main CLI entry point using Typer."""

from __future__ import annotations

import structlog
import typer
from rich.console import Console

from fluxdeck import __version__
from fluxdeck.cli.commands import (
    register_event_commands,
    register_flux_commands,
    register_service_commands,
)
from fluxdeck.integrations.kubernetes.client import KubernetesClient
from fluxdeck.integrations.kubernetes.config import FluxdeckConfig
from fluxdeck.integrations.kubernetes.helm_client import HelmBinaryNotFoundError, HelmClient
from fluxdeck.logging.config import configure_logging
from fluxdeck.services.kubernetes.event_manager import EventManager
from fluxdeck.services.kubernetes.flux_manager import FluxManager
from fluxdeck.services.kubernetes.flux_operations import FluxOperations
from fluxdeck.services.kubernetes.inventory import InventoryResolver
from fluxdeck.services.kubernetes.live_state import LiveStateDispatcher
from fluxdeck.services.kubernetes.service_aggregator import ServiceAggregator
from fluxdeck.services.kubernetes.streaming_manager import ResourceWatcher, StreamingManager

logger = structlog.get_logger()

app = typer.Typer(
    name="fluxdeck",
    help="Operator console for FluxCD-managed clusters.",
    add_completion=True,
    no_args_is_help=True,
)

console = Console()


class Session:
    """Lazily built client and managers shared by one CLI invocation."""

    def __init__(self) -> None:
        self._config: FluxdeckConfig | None = None
        self._client: KubernetesClient | None = None

    @property
    def config(self) -> FluxdeckConfig:
        if self._config is None:
            self._config = FluxdeckConfig.from_env()
        return self._config

    @property
    def client(self) -> KubernetesClient:
        if self._client is None:
            self._client = KubernetesClient(self.config)
        return self._client

    def flux_manager(self) -> FluxManager:
        return FluxManager(self.client)

    def operations(self) -> FluxOperations:
        return FluxOperations(self.client, self.config.operations)

    def aggregator(self) -> ServiceAggregator:
        try:
            helm: HelmClient | None = HelmClient()
        except HelmBinaryNotFoundError:
            logger.warning("helm_binary_not_found", detail="HelmRelease services are skipped")
            helm = None
        return ServiceAggregator(self.client, InventoryResolver(helm))

    def event_manager(self) -> EventManager:
        return EventManager(self.client)

    def streaming_manager(self) -> StreamingManager:
        return StreamingManager(self.client)

    def watcher(self, dispatcher: LiveStateDispatcher) -> ResourceWatcher:
        return ResourceWatcher(self.client, dispatcher)


session = Session()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"fluxdeck version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose output.",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug mode.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Render log lines as JSON.",
    ),
) -> None:
    """fluxdeck - inspect and drive FluxCD from the terminal."""
    configure_logging(verbose=verbose, debug=debug, json_output=json_logs)


register_flux_commands(app, session.flux_manager, session.operations, session.aggregator)
register_service_commands(
    app,
    session.flux_manager,
    session.aggregator,
    session.streaming_manager,
    session.watcher,
)
register_event_commands(app, session.event_manager)


if __name__ == "__main__":
    app()
