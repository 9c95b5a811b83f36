"""Service aggregate: a Kubernetes Service with its correlated workloads."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from fluxdeck.integrations.kubernetes.models.base import object_key
from fluxdeck.integrations.kubernetes.models.networking import (
    IngressSummary,
    ServiceSummary,
)
from fluxdeck.integrations.kubernetes.models.workloads import (
    DeploymentSummary,
    PodSummary,
)


class OwnedService(BaseModel):
    """Identity of a Service owned by a Flux applier."""

    model_config = ConfigDict(frozen=True)

    namespace: str
    name: str
    helm_release: str | None = Field(
        default=None, description="HelmRelease the service was discovered through"
    )

    @property
    def key(self) -> str:
        return object_key(self.namespace, self.name)


class Service(BaseModel):
    """A Service with the Deployment, Pods and Ingresses that serve it.

    Records are never mutated once published. Live-state handlers derive a
    new record with ``model_copy(update=...)``.
    """

    model_config = ConfigDict(extra="ignore")

    svc: ServiceSummary
    deployment: DeploymentSummary | None = None
    pods: list[PodSummary] = Field(default_factory=list)
    ingresses: list[IngressSummary] = Field(default_factory=list)
    helm_release: str | None = None

    @property
    def key(self) -> str:
        return self.svc.key

    @property
    def namespace(self) -> str | None:
        return self.svc.namespace

    @property
    def name(self) -> str:
        return self.svc.name

    @property
    def selector(self) -> dict[str, str]:
        return self.svc.selector or {}

    def has_pod(self, key: str) -> bool:
        return any(p.key == key for p in self.pods)

    def has_ingress(self, key: str) -> bool:
        return any(i.key == key for i in self.ingresses)
