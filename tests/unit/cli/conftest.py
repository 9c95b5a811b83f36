"""Shared fixtures for CLI command tests."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from unittest.mock import MagicMock, patch

import pytest
import typer

from fluxdeck.cli.commands import (
    register_event_commands,
    register_flux_commands,
    register_service_commands,
)
from fluxdeck.integrations.kubernetes.models.networking import IngressSummary, ServiceSummary
from fluxdeck.integrations.kubernetes.models.services import Service
from fluxdeck.integrations.kubernetes.models.workloads import DeploymentSummary, PodSummary


def make_service(name: str = "web", namespace: str = "default") -> Service:
    selector = {"app": name}
    return Service(
        svc=ServiceSummary(name=name, namespace=namespace, selector=selector),
        deployment=DeploymentSummary(name=name, namespace=namespace, selector=selector),
        pods=[
            PodSummary(
                name=f"{name}-1",
                namespace=namespace,
                labels=selector,
                phase="Running",
                container_names=["app"],
            )
        ],
        ingresses=[
            IngressSummary(name="public", namespace=namespace, url=f"{name}.example.com")
        ],
    )


@pytest.fixture
def service_factory() -> Callable[..., Service]:
    """Build a Flux-owned Service with one Pod and one Ingress."""
    return make_service


@pytest.fixture(autouse=True)
def _no_sleep() -> Iterator[MagicMock]:
    """Long-running commands return at once."""
    with patch("fluxdeck.cli.commands.base.time.sleep") as mock_sleep:
        yield mock_sleep


@pytest.fixture
def mock_flux_manager() -> MagicMock:
    """Create a mock FluxManager with empty listings."""
    manager = MagicMock()
    manager.list_kustomizations.return_value = []
    manager.list_helm_releases.return_value = []
    return manager


@pytest.fixture
def mock_operations() -> MagicMock:
    """Create a mock FluxOperations resolving to the Flux namespace."""
    operations = MagicMock()
    operations.resolve_namespace.side_effect = lambda ns: ns or "flux-system"
    return operations


@pytest.fixture
def mock_aggregator() -> MagicMock:
    """Create a mock ServiceAggregator returning one Service."""
    aggregator = MagicMock()
    aggregator.aggregate.return_value = [make_service()]
    aggregator.services_in_namespace.return_value = []
    return aggregator


@pytest.fixture
def mock_streaming_manager() -> MagicMock:
    return MagicMock()


@pytest.fixture
def mock_watcher() -> MagicMock:
    return MagicMock()


@pytest.fixture
def mock_event_manager() -> MagicMock:
    manager = MagicMock()
    manager.list_flux_events.return_value = []
    return manager


@pytest.fixture
def get_watcher(mock_watcher: MagicMock) -> Callable[..., MagicMock]:
    """Factory that records the dispatcher it was handed."""

    def factory(dispatcher: object) -> MagicMock:
        mock_watcher.dispatcher = dispatcher
        return mock_watcher

    return factory


@pytest.fixture
def app(
    mock_flux_manager: MagicMock,
    mock_operations: MagicMock,
    mock_aggregator: MagicMock,
    mock_streaming_manager: MagicMock,
    mock_event_manager: MagicMock,
    get_watcher: Callable[..., MagicMock],
) -> typer.Typer:
    """Create a Typer app with every command registered."""
    test_app = typer.Typer()

    @test_app.callback()
    def main() -> None:
        pass

    register_flux_commands(
        test_app,
        lambda: mock_flux_manager,
        lambda: mock_operations,
        lambda: mock_aggregator,
    )
    register_service_commands(
        test_app,
        lambda: mock_flux_manager,
        lambda: mock_aggregator,
        lambda: mock_streaming_manager,
        get_watcher,
    )
    register_event_commands(test_app, lambda: mock_event_manager)
    return test_app
