"""Flux resource models.

Flux kinds are read through ``CustomObjectsApi``, which returns plain dicts
in camelCase, so these models are built with :func:`_dig` rather than the
attribute access the core models use.
"""

from __future__ import annotations

from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field

from fluxdeck.integrations.kubernetes.models.base import K8sEntityBase
from fluxdeck.integrations.kubernetes.models.services import Service  # noqa: TC001


def _dig(data: dict[str, Any] | None, *keys: str, default: Any = None) -> Any:
    """``data[k1][k2]...``; ``default`` where a level is missing or null."""
    for key in keys:
        if not isinstance(data, dict):
            return default
        data = data.get(key)
    return default if data is None else data


class FluxCondition(BaseModel):
    """One entry of ``.status.conditions``."""

    model_config = ConfigDict(extra="ignore")

    type: str = Field(default="", description="Ready, Reconciling, Stalled, ...")
    status: str = Field(default="Unknown", description="True, False or Unknown")
    reason: str = ""
    message: str | None = None
    observed_generation: int = Field(default=0, description="Generation the condition refers to")
    last_transition_time: str | None = None

    @classmethod
    def from_k8s_object(cls, obj: dict[str, Any]) -> FluxCondition:
        return cls(
            type=obj.get("type", ""),
            status=obj.get("status", "Unknown"),
            reason=obj.get("reason", ""),
            message=obj.get("message"),
            observed_generation=obj.get("observedGeneration") or 0,
            last_transition_time=obj.get("lastTransitionTime"),
        )

    @property
    def is_true(self) -> bool:
        return self.status == "True"


def find_condition(conditions: list[FluxCondition], type_: str) -> FluxCondition | None:
    """The first condition of ``type_``, if any."""
    return next((c for c in conditions if c.type == type_), None)


def _common_fields(obj: dict[str, Any]) -> dict[str, Any]:
    """:class:`FluxResourceSummary` fields of a raw Flux object."""
    raw_conditions = _dig(obj, "status", "conditions", default=[])
    conditions = [FluxCondition.from_k8s_object(c) for c in raw_conditions]
    ready = find_condition(conditions, "Ready")
    reconciling = find_condition(conditions, "Reconciling")
    return {
        "name": _dig(obj, "metadata", "name", default=""),
        "namespace": _dig(obj, "metadata", "namespace"),
        "labels": _dig(obj, "metadata", "labels") or None,
        "generation": _dig(obj, "metadata", "generation", default=0),
        "interval": _dig(obj, "spec", "interval", default=""),
        "suspended": bool(_dig(obj, "spec", "suspend", default=False)),
        "ready": ready is not None and ready.is_true,
        "reconciling": reconciling is not None and reconciling.is_true,
        "status_message": ready.message if ready else None,
        "observed_generation": _dig(obj, "status", "observedGeneration", default=0),
        "last_handled_reconcile_at": _dig(obj, "status", "lastHandledReconcileAt"),
        "conditions": conditions,
    }


class FluxResourceSummary(K8sEntityBase):
    """State every reconcilable Flux object reports."""

    _entity_name: ClassVar[str] = "flux_resource"

    interval: str = Field(default="", description="Reconciliation interval")
    suspended: bool = Field(default=False, description="spec.suspend")
    ready: bool = Field(default=False, description="Ready condition is True")
    reconciling: bool = Field(default=False, description="Reconciling condition is True")
    status_message: str | None = Field(default=None, description="Ready condition message")
    generation: int = Field(default=0, description="metadata.generation")
    observed_generation: int = Field(default=0, description="status.observedGeneration")
    last_handled_reconcile_at: str | None = Field(
        default=None, description="Last reconcile request the controller handled"
    )
    conditions: list[FluxCondition] = Field(default_factory=list)


# =============================================================================
# Sources
# =============================================================================


class SourceSummary(FluxResourceSummary):
    """A source-controller object; its output is a versioned artifact."""

    artifact_revision: str | None = Field(default=None, description="Latest artifact revision")

    @staticmethod
    def _source_fields(obj: dict[str, Any]) -> dict[str, Any]:
        return {
            **_common_fields(obj),
            "artifact_revision": _dig(obj, "status", "artifact", "revision"),
        }


class GitRepositorySummary(SourceSummary):
    _entity_name: ClassVar[str] = "flux_git_repository"

    url: str = ""
    ref_branch: str | None = None
    ref_tag: str | None = None
    ref_semver: str | None = None
    ref_commit: str | None = None

    @classmethod
    def from_k8s_object(cls, obj: dict[str, Any]) -> GitRepositorySummary:
        ref = _dig(obj, "spec", "ref", default={})
        return cls(
            **cls._source_fields(obj),
            url=_dig(obj, "spec", "url", default=""),
            ref_branch=ref.get("branch"),
            ref_tag=ref.get("tag"),
            ref_semver=ref.get("semver"),
            ref_commit=ref.get("commit"),
        )


class OCIRepositorySummary(SourceSummary):
    _entity_name: ClassVar[str] = "flux_oci_repository"

    url: str = ""
    ref_tag: str | None = None
    ref_semver: str | None = None
    ref_digest: str | None = None

    @classmethod
    def from_k8s_object(cls, obj: dict[str, Any]) -> OCIRepositorySummary:
        ref = _dig(obj, "spec", "ref", default={})
        return cls(
            **cls._source_fields(obj),
            url=_dig(obj, "spec", "url", default=""),
            ref_tag=ref.get("tag"),
            ref_semver=ref.get("semver"),
            ref_digest=ref.get("digest"),
        )


class BucketSummary(SourceSummary):
    _entity_name: ClassVar[str] = "flux_bucket"

    bucket_name: str = Field(default="", description="Bucket name at the provider")
    endpoint: str = ""
    provider: str = "generic"

    @classmethod
    def from_k8s_object(cls, obj: dict[str, Any]) -> BucketSummary:
        return cls(
            **cls._source_fields(obj),
            bucket_name=_dig(obj, "spec", "bucketName", default=""),
            endpoint=_dig(obj, "spec", "endpoint", default=""),
            provider=_dig(obj, "spec", "provider", default="generic"),
        )


class HelmRepositorySummary(SourceSummary):
    _entity_name: ClassVar[str] = "flux_helm_repository"

    url: str = ""
    repo_type: str = Field(default="default", description="default or oci")

    @classmethod
    def from_k8s_object(cls, obj: dict[str, Any]) -> HelmRepositorySummary:
        return cls(
            **cls._source_fields(obj),
            url=_dig(obj, "spec", "url", default=""),
            repo_type=_dig(obj, "spec", "type", default="default"),
        )


# =============================================================================
# Appliers
# =============================================================================


class AppliedSummary(FluxResourceSummary):
    """An object that applies a source revision to the cluster."""

    target_namespace: str | None = Field(default=None, description="spec.targetNamespace")
    last_applied_revision: str | None = None
    last_attempted_revision: str | None = None

    @staticmethod
    def _applier_fields(obj: dict[str, Any]) -> dict[str, Any]:
        return {
            **_common_fields(obj),
            "target_namespace": _dig(obj, "spec", "targetNamespace"),
            "last_applied_revision": _dig(obj, "status", "lastAppliedRevision"),
            "last_attempted_revision": _dig(obj, "status", "lastAttemptedRevision"),
        }


class KustomizationSummary(AppliedSummary):
    _entity_name: ClassVar[str] = "flux_kustomization"

    source_kind: str = ""
    source_name: str = ""
    path: str = Field(default="./", description="Path within the source")
    inventory: list[str] = Field(
        default_factory=list, description="Inventory entry ids (namespace_name_group_kind)"
    )

    @classmethod
    def from_k8s_object(cls, obj: dict[str, Any]) -> KustomizationSummary:
        entries = _dig(obj, "status", "inventory", "entries", default=[])
        return cls(
            **cls._applier_fields(obj),
            source_kind=_dig(obj, "spec", "sourceRef", "kind", default=""),
            source_name=_dig(obj, "spec", "sourceRef", "name", default=""),
            path=_dig(obj, "spec", "path", default="./"),
            inventory=[entry.get("id", "") for entry in entries],
        )


class HelmReleaseSummary(AppliedSummary):
    """A HelmRelease; ``release_name`` and ``storage_namespace`` are overrides."""

    _entity_name: ClassVar[str] = "flux_helm_release"

    chart_name: str = ""
    chart_source_kind: str = ""
    chart_source_name: str = ""
    storage_namespace: str | None = None
    release_name: str | None = None

    @classmethod
    def from_k8s_object(cls, obj: dict[str, Any]) -> HelmReleaseSummary:
        chart = _dig(obj, "spec", "chart", "spec", default={})
        return cls(
            **cls._applier_fields(obj),
            chart_name=chart.get("chart", ""),
            chart_source_kind=_dig(chart, "sourceRef", "kind", default=""),
            chart_source_name=_dig(chart, "sourceRef", "name", default=""),
            storage_namespace=_dig(obj, "spec", "storageNamespace"),
            release_name=_dig(obj, "spec", "releaseName"),
        )


class TerraformSummary(AppliedSummary):
    """A tf-controller Terraform object."""

    _entity_name: ClassVar[str] = "flux_terraform"

    source_kind: str = ""
    source_name: str = ""
    path: str = ""
    approve_plan: str | None = Field(default=None, description="Plan approval mode")

    @classmethod
    def from_k8s_object(cls, obj: dict[str, Any]) -> TerraformSummary:
        return cls(
            **cls._applier_fields(obj),
            source_kind=_dig(obj, "spec", "sourceRef", "kind", default=""),
            source_name=_dig(obj, "spec", "sourceRef", "name", default=""),
            path=_dig(obj, "spec", "path", default=""),
            approve_plan=_dig(obj, "spec", "approvePlan"),
        )


class FluxState(BaseModel):
    """Every Flux object on the cluster at one point in time."""

    model_config = ConfigDict(extra="ignore")

    git_repositories: list[GitRepositorySummary] = Field(default_factory=list)
    oci_repositories: list[OCIRepositorySummary] = Field(default_factory=list)
    buckets: list[BucketSummary] = Field(default_factory=list)
    helm_repositories: list[HelmRepositorySummary] = Field(default_factory=list)
    kustomizations: list[KustomizationSummary] = Field(default_factory=list)
    helm_releases: list[HelmReleaseSummary] = Field(default_factory=list)
    terraforms: list[TerraformSummary] = Field(default_factory=list)
    flux_services: list[Service] = Field(
        default_factory=list, description="Services of the Flux controllers"
    )
