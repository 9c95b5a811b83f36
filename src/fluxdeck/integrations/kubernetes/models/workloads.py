"""Pod and Deployment models attached to aggregated Services."""

from __future__ import annotations

from typing import Any, ClassVar

from pydantic import Field

from fluxdeck.integrations.kubernetes.models.base import (
    K8sEntityBase,
    _metadata_fields,
    _safe_get,
)


class PodSummary(K8sEntityBase):
    """A Pod behind a Service."""

    _entity_name: ClassVar[str] = "pod"

    phase: str = Field(default="Unknown", description="Pod phase")
    ready: bool = Field(default=False, description="Every app container is ready")
    restarts: int = Field(default=0, description="Total container restarts")
    waiting_reason: str | None = Field(
        default=None, description="First waiting reason, e.g. CrashLoopBackOff"
    )
    container_names: list[str] = Field(
        default_factory=list, description="Init and app container names, in start order"
    )

    @property
    def is_running(self) -> bool:
        return self.phase == "Running"

    @classmethod
    def from_k8s_object(cls, obj: Any) -> PodSummary:
        """Create from a kubernetes V1Pod object."""
        statuses = _safe_get(obj, "status", "container_statuses") or []
        init_containers = _safe_get(obj, "spec", "init_containers") or []
        containers = _safe_get(obj, "spec", "containers") or []
        waiting = [
            reason
            for cs in statuses
            if (reason := _safe_get(cs, "state", "waiting", "reason")) is not None
        ]

        return cls(
            **_metadata_fields(obj),
            phase=_safe_get(obj, "status", "phase", default="Unknown"),
            ready=bool(statuses) and all(getattr(cs, "ready", False) for cs in statuses),
            restarts=sum(getattr(cs, "restart_count", 0) or 0 for cs in statuses),
            waiting_reason=waiting[0] if waiting else None,
            container_names=[c.name for c in [*init_containers, *containers]],
        )


class DeploymentSummary(K8sEntityBase):
    """The Deployment serving a Service."""

    _entity_name: ClassVar[str] = "deployment"

    replicas: int = Field(default=0, description="Desired replicas")
    ready_replicas: int = Field(default=0, description="Ready replicas")
    selector: dict[str, str] | None = Field(
        default=None, description="spec.selector.matchLabels"
    )

    @property
    def ready(self) -> str:
        """``ready/desired`` replica count."""
        return f"{self.ready_replicas}/{self.replicas}"

    @classmethod
    def from_k8s_object(cls, obj: Any) -> DeploymentSummary:
        """Create from a kubernetes V1Deployment object."""
        match_labels = _safe_get(obj, "spec", "selector", "match_labels")
        return cls(
            **_metadata_fields(obj),
            replicas=_safe_get(obj, "spec", "replicas", default=0),
            ready_replicas=_safe_get(obj, "status", "ready_replicas", default=0),
            selector=dict(match_labels) if match_labels else None,
        )
