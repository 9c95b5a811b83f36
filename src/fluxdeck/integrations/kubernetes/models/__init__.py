"""Display and view models for Kubernetes and Flux resources."""

from fluxdeck.integrations.kubernetes.models.base import K8sEntityBase, object_key
from fluxdeck.integrations.kubernetes.models.events import EventSeries, FluxEvent
from fluxdeck.integrations.kubernetes.models.flux import (
    BucketSummary,
    FluxCondition,
    FluxResourceSummary,
    FluxState,
    GitRepositorySummary,
    HelmReleaseSummary,
    HelmRepositorySummary,
    KustomizationSummary,
    OCIRepositorySummary,
    TerraformSummary,
)
from fluxdeck.integrations.kubernetes.models.helm import HelmReleaseRecord, HelmRevision
from fluxdeck.integrations.kubernetes.models.networking import (
    IngressRule,
    IngressSummary,
    ServicePort,
    ServiceSummary,
)
from fluxdeck.integrations.kubernetes.models.services import OwnedService, Service
from fluxdeck.integrations.kubernetes.models.watch import (
    EventType,
    ResourceKind,
    WatchEvent,
    WatchObject,
)
from fluxdeck.integrations.kubernetes.models.workloads import (
    DeploymentSummary,
    PodSummary,
)

__all__ = [
    "BucketSummary",
    "DeploymentSummary",
    "EventSeries",
    "EventType",
    "FluxCondition",
    "FluxEvent",
    "FluxResourceSummary",
    "FluxState",
    "GitRepositorySummary",
    "HelmReleaseRecord",
    "HelmReleaseSummary",
    "HelmRepositorySummary",
    "HelmRevision",
    "IngressRule",
    "IngressSummary",
    "K8sEntityBase",
    "KustomizationSummary",
    "OCIRepositorySummary",
    "OwnedService",
    "PodSummary",
    "ResourceKind",
    "Service",
    "ServicePort",
    "ServiceSummary",
    "TerraformSummary",
    "WatchEvent",
    "WatchObject",
    "object_key",
]
