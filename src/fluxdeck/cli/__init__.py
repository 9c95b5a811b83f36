"""Command line interface for fluxdeck."""
