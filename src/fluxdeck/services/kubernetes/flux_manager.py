"""Flux CD resource manager.

Lists Flux sources, appliers and Terraform resources through the
Kubernetes ``CustomObjectsApi`` and assembles the ``FluxState`` snapshot.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, TypeVar

from fluxdeck.integrations.kubernetes.exceptions import KubernetesNotFoundError
from fluxdeck.integrations.kubernetes.models.flux import (
    BucketSummary,
    FluxResourceSummary,
    FluxState,
    GitRepositorySummary,
    HelmReleaseSummary,
    HelmRepositorySummary,
    KustomizationSummary,
    OCIRepositorySummary,
    TerraformSummary,
)
from fluxdeck.services.kubernetes.base import K8sBaseManager

if TYPE_CHECKING:
    from fluxdeck.services.kubernetes.service_aggregator import ServiceAggregator

S = TypeVar("S", bound=FluxResourceSummary)

# =============================================================================
# CRD Coordinates
# =============================================================================

# Source CRDs
SOURCE_GROUP = "source.toolkit.fluxcd.io"
SOURCE_VERSION = "v1"
SOURCE_BETA_VERSION = "v1beta2"
GIT_REPOSITORY_PLURAL = "gitrepositories"
OCI_REPOSITORY_PLURAL = "ocirepositories"
BUCKET_PLURAL = "buckets"
HELM_REPOSITORY_PLURAL = "helmrepositories"

# Kustomization CRD
KUSTOMIZE_GROUP = "kustomize.toolkit.fluxcd.io"
KUSTOMIZE_VERSION = "v1"
KUSTOMIZATION_PLURAL = "kustomizations"

# HelmRelease CRD
HELM_GROUP = "helm.toolkit.fluxcd.io"
HELM_VERSION = "v2"
HELM_RELEASE_PLURAL = "helmreleases"

# tf-controller CRD
TERRAFORM_GROUP = "infra.contrib.fluxcd.io"
TERRAFORM_VERSION = "v1alpha2"
TERRAFORM_PLURAL = "terraforms"


class FluxManager(K8sBaseManager):
    """Manager for Flux CD resources.

    Lists are cluster-wide unless a namespace is given. A kind whose CRD is
    not installed lists as empty.
    """

    _entity_name = "flux"

    def _list(
        self,
        model: type[S],
        kind: str,
        group: str,
        version: str,
        plural: str,
        namespace: str | None,
    ) -> list[S]:
        self._log.debug("listing_flux_resources", kind=kind, namespace=namespace or "*")
        custom = self._client.custom_objects

        def call() -> dict[str, Any]:
            if namespace:
                return custom.list_namespaced_custom_object(group, version, namespace, plural)
            return custom.list_cluster_custom_object(group, version, plural)

        try:
            result = self._api_call(call, kind, None, namespace)
        except KubernetesNotFoundError:
            self._log.debug("flux_crd_not_installed", kind=kind, group=group, version=version)
            return []

        items: list[dict[str, Any]] = result.get("items", [])
        resources = [model.from_k8s_object(item) for item in items]  # type: ignore[attr-defined]
        self._log.debug("listed_flux_resources", kind=kind, count=len(resources))
        return resources

    # =========================================================================
    # Sources
    # =========================================================================

    def list_git_repositories(self, namespace: str | None = None) -> list[GitRepositorySummary]:
        return self._list(
            GitRepositorySummary,
            "GitRepository",
            SOURCE_GROUP,
            SOURCE_VERSION,
            GIT_REPOSITORY_PLURAL,
            namespace,
        )

    def list_oci_repositories(self, namespace: str | None = None) -> list[OCIRepositorySummary]:
        return self._list(
            OCIRepositorySummary,
            "OCIRepository",
            SOURCE_GROUP,
            SOURCE_BETA_VERSION,
            OCI_REPOSITORY_PLURAL,
            namespace,
        )

    def list_buckets(self, namespace: str | None = None) -> list[BucketSummary]:
        return self._list(
            BucketSummary, "Bucket", SOURCE_GROUP, SOURCE_BETA_VERSION, BUCKET_PLURAL, namespace
        )

    def list_helm_repositories(self, namespace: str | None = None) -> list[HelmRepositorySummary]:
        return self._list(
            HelmRepositorySummary,
            "HelmRepository",
            SOURCE_GROUP,
            SOURCE_VERSION,
            HELM_REPOSITORY_PLURAL,
            namespace,
        )

    # =========================================================================
    # Appliers
    # =========================================================================

    def list_kustomizations(self, namespace: str | None = None) -> list[KustomizationSummary]:
        return self._list(
            KustomizationSummary,
            "Kustomization",
            KUSTOMIZE_GROUP,
            KUSTOMIZE_VERSION,
            KUSTOMIZATION_PLURAL,
            namespace,
        )

    def list_helm_releases(self, namespace: str | None = None) -> list[HelmReleaseSummary]:
        return self._list(
            HelmReleaseSummary,
            "HelmRelease",
            HELM_GROUP,
            HELM_VERSION,
            HELM_RELEASE_PLURAL,
            namespace,
        )

    def list_terraforms(self, namespace: str | None = None) -> list[TerraformSummary]:
        return self._list(
            TerraformSummary,
            "Terraform",
            TERRAFORM_GROUP,
            TERRAFORM_VERSION,
            TERRAFORM_PLURAL,
            namespace,
        )

    # =========================================================================
    # Snapshot
    # =========================================================================

    def get_state(self, aggregator: ServiceAggregator | None = None) -> FluxState:
        """Fetch every Flux resource and the Flux controllers' Services.

        Args:
            aggregator: Used to build ``flux_services``; omitted means none.
        """
        flux_services = (
            aggregator.services_in_namespace(self._client.flux_namespace) if aggregator else []
        )
        state = FluxState(
            git_repositories=self.list_git_repositories(),
            oci_repositories=self.list_oci_repositories(),
            buckets=self.list_buckets(),
            helm_repositories=self.list_helm_repositories(),
            kustomizations=self.list_kustomizations(),
            helm_releases=self.list_helm_releases(),
            terraforms=self.list_terraforms(),
            flux_services=flux_services,
        )
        self._log.info(
            "fetched_flux_state",
            kustomizations=len(state.kustomizations),
            helm_releases=len(state.helm_releases),
            flux_services=len(state.flux_services),
        )
        return state
