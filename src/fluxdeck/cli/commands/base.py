"""Options, error output and the wait loop shared by fluxdeck commands."""

from __future__ import annotations

import re
import time
from typing import Annotated

import typer
from rich.console import Console

from fluxdeck.cli.formatters import OutputFormat
from fluxdeck.integrations.kubernetes.exceptions import (
    AlreadySuspendedError,
    KubernetesAuthError,
    KubernetesConflictError,
    KubernetesConnectionError,
    KubernetesError,
    KubernetesNotFoundError,
    KubernetesTimeoutError,
    KubernetesValidationError,
    ReadinessFailedError,
)

console = Console()

_DURATION_UNITS = {"h": 3600, "m": 60, "s": 1}
_DURATION_RE = re.compile(r"(?:\d+[hms])+")

OutputOption = Annotated[
    OutputFormat,
    typer.Option(
        "--output", "-o", help="Output format: table, json, or yaml", case_sensitive=False
    ),
]
NamespaceOption = Annotated[
    str | None,
    typer.Option("--namespace", "-n", help="Kubernetes namespace"),
]
DurationOption = Annotated[
    str | None,
    typer.Option(
        "--for",
        help="Stop after this long (e.g. 30s, 5m, 1h); runs until Ctrl+C when omitted",
    ),
]

# First match wins, so subclasses come before their parents.
_ERROR_HEADLINES: list[tuple[type[KubernetesError], str, str | None]] = [
    (
        KubernetesConnectionError,
        "Cannot connect to Kubernetes cluster",
        "Check that your kubeconfig is valid and the cluster is reachable.",
    ),
    (KubernetesAuthError, "Authentication/authorization failed", "Check your credentials or RBAC."),
    (KubernetesNotFoundError, "Resource not found", None),
    (KubernetesValidationError, "Validation failed", None),
    (KubernetesConflictError, "Resource conflict", None),
    (
        KubernetesTimeoutError,
        "Operation timed out",
        "Raise the ceiling with FLUXDECK_RECONCILE_TIMEOUT.",
    ),
    (AlreadySuspendedError, "Resource is suspended", "Run `fluxdeck resume` first."),
    (ReadinessFailedError, "Reconciliation failed", None),
]


def handle_k8s_error(error: KubernetesError) -> None:
    """Print ``error`` for a human and exit with status 1."""
    for error_type, headline, hint in _ERROR_HEADLINES:
        if isinstance(error, error_type):
            break
    else:
        headline, hint = error.message, None

    console.print(f"[red]Error:[/red] {headline}")
    if headline != error.message:
        console.print(f"  {error.message}")
    if error.location:
        console.print(f"  Object: {error.location}")

    cause = getattr(error, "original_error", None)
    if cause is not None:
        console.print(f"  Cause: {cause}")
    for field, problem in getattr(error, "validation_errors", {}).items():
        console.print(f"    - {field}: {problem}")
    if hint is None and error.status_code:
        console.print(f"  HTTP Status: {error.status_code}")
    if hint:
        console.print(f"\n[dim]Hint: {hint}[/dim]")

    raise typer.Exit(1)


def parse_duration(duration: str) -> int:
    """Seconds in a duration such as ``90s``, ``5m`` or ``1h30m``.

    Raises:
        typer.BadParameter: If the text is not a positive duration.
    """
    text = duration.strip()
    if not _DURATION_RE.fullmatch(text):
        raise typer.BadParameter(
            f"Invalid duration '{duration}'. Use format like '1h', '30m', '5s', or '1h30m'."
        )
    total = sum(
        int(amount) * _DURATION_UNITS[unit] for amount, unit in re.findall(r"(\d+)([hms])", text)
    )
    if total <= 0:
        raise typer.BadParameter("Duration must be greater than zero.")
    return total


def wait_until_interrupted(duration: str | None = None) -> None:
    """Block for ``duration``, or until Ctrl+C when it is None."""
    seconds = parse_duration(duration) if duration else None
    try:
        if seconds is not None:
            time.sleep(seconds)
            return
        console.print("[dim]Press Ctrl+C to stop.[/dim]")
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("\n[dim]Stopping...[/dim]")
