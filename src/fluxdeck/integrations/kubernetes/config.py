"""fluxdeck configuration: clusters, API retries and Flux operation timing.

Values come from an optional base mapping and are overridden by
``FLUXDECK_*`` environment variables; see :meth:`FluxdeckConfig.from_env`.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# variable -> (section or None for top level, key, type)
ENV_OVERRIDES: dict[str, tuple[str | None, str, type]] = {
    "FLUXDECK_K8S_CONTEXT": (None, "active_cluster", str),
    "FLUXDECK_FLUX_NAMESPACE": (None, "flux_namespace", str),
    "FLUXDECK_K8S_RETRY_ATTEMPTS": ("defaults", "retry_attempts", int),
    "FLUXDECK_POLL_INTERVAL": ("operations", "poll_interval", float),
    "FLUXDECK_RECONCILE_TIMEOUT": ("operations", "timeout", float),
}


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ClusterConfig(_Section):
    """A named kubeconfig context and the namespace commands default to."""

    context: str = ""
    kubeconfig: str = Field(default="~/.kube/config", validate_default=True)
    namespace: str = "default"

    @field_validator("kubeconfig")
    @classmethod
    def expand_kubeconfig(cls, v: str) -> str:
        return str(Path(v).expanduser())


class KubernetesDefaultsConfig(_Section):
    retry_attempts: int = Field(default=3, ge=1, description="Attempts per transient API failure")


class FluxOperationsConfig(_Section):
    """Timing for reconcile, suspend and resume."""

    poll_interval: float = Field(default=2.0, gt=0)
    timeout: float = Field(default=300.0, gt=0, description="Readiness polling ceiling")
    conflict_attempts: int = Field(default=4, ge=1, description="Patch attempts on 409")


class FluxdeckConfig(_Section):
    """Complete fluxdeck configuration."""

    clusters: dict[str, ClusterConfig] = {}
    active_cluster: str | None = None
    flux_namespace: str = "flux-system"
    defaults: KubernetesDefaultsConfig = KubernetesDefaultsConfig()
    operations: FluxOperationsConfig = FluxOperationsConfig()

    @classmethod
    def from_env(cls, base_config: dict[str, Any] | None = None) -> FluxdeckConfig:
        """Build from ``base_config`` with ``FLUXDECK_*`` overrides applied.

        Besides :data:`ENV_OVERRIDES`, ``FLUXDECK_K8S_KUBECONFIG`` and
        ``FLUXDECK_K8S_NAMESPACE`` are applied to every configured cluster.
        ``base_config`` itself is not modified.
        """
        data = dict(base_config or {})
        for section in ("defaults", "operations"):
            data[section] = dict(data.get(section) or {})

        for var, (section, key, cast) in ENV_OVERRIDES.items():
            raw = os.environ.get(var)
            if not raw:
                continue
            target = data[section] if section else data
            target[key] = cast(raw)

        instance = cls.model_validate(data)

        kubeconfig = os.environ.get("FLUXDECK_K8S_KUBECONFIG")
        namespace = os.environ.get("FLUXDECK_K8S_NAMESPACE")
        for cluster in instance.clusters.values():
            if kubeconfig:
                cluster.kubeconfig = str(Path(kubeconfig).expanduser())
            if namespace:
                cluster.namespace = namespace
        return instance

    @property
    def cluster(self) -> ClusterConfig | None:
        """The active cluster, or the first configured one."""
        if self.active_cluster:
            return self.clusters.get(self.active_cluster)
        return next(iter(self.clusters.values()), None)

    @property
    def active_context(self) -> str | None:
        """Context of :attr:`cluster`.

        An ``active_cluster`` naming no configured cluster is taken as a raw
        kubeconfig context.
        """
        if self.cluster is not None:
            return self.cluster.context
        return self.active_cluster

    @property
    def active_kubeconfig(self) -> str | None:
        """Kubeconfig of :attr:`cluster`; None means the client's default."""
        return self.cluster.kubeconfig if self.cluster is not None else None

    @property
    def active_namespace(self) -> str:
        return self.cluster.namespace if self.cluster is not None else "default"
