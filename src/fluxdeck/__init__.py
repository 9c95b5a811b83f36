"""fluxdeck - Flux CD resource correlation and live-state engine."""

__version__ = "0.1.0"
