"""CLI commands for the Flux event feed."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Annotated, Any

import typer

from fluxdeck.cli.commands.base import (
    NamespaceOption,
    OutputOption,
    console,
    handle_k8s_error,
)
from fluxdeck.cli.formatters import OutputFormat, get_formatter
from fluxdeck.integrations.kubernetes.exceptions import KubernetesError
from fluxdeck.services.kubernetes.event_manager import EventFeed, last_seen

if TYPE_CHECKING:
    from fluxdeck.integrations.kubernetes.models.events import FluxEvent
    from fluxdeck.services.kubernetes.event_manager import EventManager

EVENT_COLUMNS = [
    ("last_seen", "Last Seen"),
    ("type", "Type"),
    ("namespace", "Namespace"),
    ("object", "Object"),
    ("reason", "Reason"),
    ("message", "Message"),
]


def event_row(event: FluxEvent, now: datetime) -> dict[str, Any]:
    return {
        "last_seen": last_seen(event, now),
        "type": event.type,
        "namespace": event.namespace,
        "object": f"{event.kind}/{event.name}",
        "reason": event.reason,
        "message": event.message,
    }


def register_event_commands(
    app: typer.Typer,
    get_manager: Callable[[], EventManager],
) -> None:
    """Register the ``events`` command."""

    @app.command("events")
    def list_events(
        namespace: NamespaceOption = None,
        involved: Annotated[
            str | None,
            typer.Option(
                "--object",
                help="Only events about KIND/NAME (needs --namespace)",
            ),
        ] = None,
        warnings: Annotated[
            bool,
            typer.Option("--warnings", help="Only the newest warnings"),
        ] = False,
        output: OutputOption = OutputFormat.TABLE,
    ) -> None:
        """List Kubernetes events about Flux resources, newest first.

        Examples:
            fluxdeck events
            fluxdeck events -n flux-system --object Kustomization/apps
            fluxdeck events --warnings
        """
        kind = name = None
        if involved:
            kind, sep, name = involved.partition("/")
            if not sep or not kind or not name:
                raise typer.BadParameter("expected KIND/NAME", param_hint="--object")
            if not namespace:
                raise typer.BadParameter("--object needs --namespace", param_hint="--object")

        try:
            events = get_manager().list_flux_events(namespace)
        except KubernetesError as e:
            handle_k8s_error(e)
            return

        feed = EventFeed()
        feed.update(events)
        if kind and name and namespace:
            shown = feed.for_object(kind, namespace, name)
        elif warnings:
            shown = feed.toasts()
        else:
            shown = feed.events()

        formatter = get_formatter(output, console)
        if output is OutputFormat.TABLE:
            now = datetime.now(UTC)
            formatter.format_list([event_row(e, now) for e in shown], EVENT_COLUMNS, title="Events")
        else:
            formatter.format_list(shown, EVENT_COLUMNS, title="Events")
