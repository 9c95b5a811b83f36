"""CLI command groups."""

from fluxdeck.cli.commands.events import register_event_commands
from fluxdeck.cli.commands.flux import register_flux_commands
from fluxdeck.cli.commands.services import register_service_commands

__all__ = [
    "register_event_commands",
    "register_flux_commands",
    "register_service_commands",
]
