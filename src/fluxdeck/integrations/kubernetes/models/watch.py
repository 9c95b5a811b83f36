"""Watch event envelope delivered to the live state store."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict

from fluxdeck.integrations.kubernetes.models.networking import (
    IngressSummary,
    ServiceSummary,
)
from fluxdeck.integrations.kubernetes.models.workloads import (
    DeploymentSummary,
    PodSummary,
)


class ResourceKind(StrEnum):
    SERVICE = "service"
    DEPLOYMENT = "deployment"
    POD = "pod"
    INGRESS = "ingress"


class EventType(StrEnum):
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    DELETED = "DELETED"

    @classmethod
    def from_watch_type(cls, watch_type: str) -> EventType:
        """Map a Kubernetes watch type (ADDED/MODIFIED/DELETED)."""
        return {
            "ADDED": cls.CREATED,
            "MODIFIED": cls.UPDATED,
            "DELETED": cls.DELETED,
        }[watch_type]


WatchObject = ServiceSummary | DeploymentSummary | PodSummary | IngressSummary


class WatchEvent(BaseModel):
    """One create/update/delete notification.

    DELETED events carry only ``key`` (``namespace/name``).
    """

    model_config = ConfigDict(frozen=True)

    resource: ResourceKind
    type: EventType
    key: str
    obj: WatchObject | None = None
