"""Helm release data models.

Dataclasses for structured data returned by the Helm CLI
(``helm history -o json`` and ``helm get manifest``).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class HelmRevision:
    """A single revision from ``helm history``."""

    revision: int
    updated: str
    status: str
    chart: str
    app_version: str
    description: str

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> HelmRevision:
        """Parse one entry of ``helm history -o json`` output."""
        return cls(
            revision=int(data.get("revision", 0)),
            updated=data.get("updated", ""),
            status=data.get("status", ""),
            chart=data.get("chart", ""),
            app_version=data.get("app_version", ""),
            description=data.get("description", ""),
        )


@dataclass
class HelmReleaseRecord:
    """A stored release revision together with its rendered manifest."""

    name: str
    namespace: str
    version: int
    status: str
    manifest: str
