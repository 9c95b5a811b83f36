"""Kubernetes Event models for the Flux event feed."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from fluxdeck.integrations.kubernetes.models.base import _safe_get


class EventSeries(BaseModel):
    """``series`` block of a recurring event."""

    count: int = 0
    last_observed_time: datetime | None = None


class FluxEvent(BaseModel):
    """A Kubernetes Event about a Flux-managed object."""

    model_config = ConfigDict(extra="ignore")

    kind: str = Field(description="Involved object kind")
    namespace: str = Field(default="", description="Involved object namespace")
    name: str = Field(description="Involved object name")
    type: str = Field(default="Normal", description="Normal or Warning")
    reason: str = ""
    message: str = ""
    event_time: datetime | None = None
    first_timestamp: datetime | None = None
    last_timestamp: datetime | None = None
    count: int = 0
    series: EventSeries | None = None

    @classmethod
    def from_k8s_object(cls, obj: Any) -> FluxEvent:
        """Create from a kubernetes CoreV1Event object."""
        series = getattr(obj, "series", None)
        return cls(
            kind=_safe_get(obj, "involved_object", "kind", default=""),
            namespace=_safe_get(obj, "involved_object", "namespace", default=""),
            name=_safe_get(obj, "involved_object", "name", default=""),
            type=getattr(obj, "type", None) or "Normal",
            reason=getattr(obj, "reason", None) or "",
            message=getattr(obj, "message", None) or "",
            event_time=getattr(obj, "event_time", None),
            first_timestamp=getattr(obj, "first_timestamp", None),
            last_timestamp=getattr(obj, "last_timestamp", None),
            count=getattr(obj, "count", None) or 0,
            series=(
                EventSeries(
                    count=getattr(series, "count", None) or 0,
                    last_observed_time=getattr(series, "last_observed_time", None),
                )
                if series is not None
                else None
            ),
        )

    @property
    def first_seen(self) -> datetime | None:
        return self.event_time or self.first_timestamp

    @property
    def sort_time(self) -> datetime | None:
        """Most recent occurrence of the event."""
        if self.series is not None and self.series.last_observed_time is not None:
            return self.series.last_observed_time
        return self.last_timestamp or self.event_time

    def identity(self) -> tuple[str, str, str, str, str]:
        return (self.kind, self.namespace, self.name, self.reason, self.message)
