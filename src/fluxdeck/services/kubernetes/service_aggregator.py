"""Service aggregation.

Builds ``Service`` records for Flux-owned Services from batch listings of
Services, Deployments, Pods and Ingresses. The correlation rules are the
module-level functions below; the live state store applies the same rules
incrementally.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

from fluxdeck.integrations.kubernetes.models.networking import (
    IngressSummary,
    ServiceSummary,
)
from fluxdeck.integrations.kubernetes.models.services import OwnedService, Service
from fluxdeck.integrations.kubernetes.models.workloads import (
    DeploymentSummary,
    PodSummary,
)
from fluxdeck.services.kubernetes.base import K8sBaseManager
from fluxdeck.services.kubernetes.selectors import (
    labels_satisfy_selector,
    selectors_equal,
)

if TYPE_CHECKING:
    from fluxdeck.integrations.kubernetes.client import KubernetesClient
    from fluxdeck.integrations.kubernetes.models.flux import (
        HelmReleaseSummary,
        KustomizationSummary,
    )
    from fluxdeck.services.kubernetes.inventory import InventoryResolver


# =============================================================================
# Correlation rules
# =============================================================================


def deployment_serves(deployment: DeploymentSummary, svc: ServiceSummary) -> bool:
    """Deployment in the Service's namespace with an identical selector."""
    return (
        bool(svc.selector)
        and deployment.namespace == svc.namespace
        and selectors_equal(deployment.selector, svc.selector)
    )


def pick_deployment(
    deployments: Iterable[DeploymentSummary], svc: ServiceSummary
) -> DeploymentSummary | None:
    """The serving Deployment; the smallest name wins when several match."""
    candidates = [d for d in deployments if deployment_serves(d, svc)]
    if not candidates:
        return None
    return min(candidates, key=lambda d: d.name)


def pod_serves(pod: PodSummary, svc: ServiceSummary) -> bool:
    """Pod in the Service's namespace whose labels satisfy its selector."""
    return (
        bool(svc.selector)
        and pod.namespace == svc.namespace
        and labels_satisfy_selector(pod.labels, svc.selector)
    )


def ingress_for_service(ingress: IngressSummary, svc: ServiceSummary) -> IngressSummary | None:
    """The ingress with ``url`` set for ``svc``, or None if it never routes there."""
    if ingress.namespace != svc.namespace or svc.name not in ingress.backend_services():
        return None
    return ingress.model_copy(update={"url": ingress.url_for(svc.name)})


def correlate(
    svc: ServiceSummary,
    deployments: Iterable[DeploymentSummary],
    pods: Iterable[PodSummary],
    ingresses: Iterable[IngressSummary],
    *,
    helm_release: str | None = None,
) -> Service:
    """Build one ``Service`` record from candidate workloads."""
    attached_ingresses = [
        attached
        for ingress in ingresses
        if (attached := ingress_for_service(ingress, svc)) is not None
    ]
    return Service(
        svc=svc,
        deployment=pick_deployment(deployments, svc),
        pods=[p for p in pods if pod_serves(p, svc)],
        ingresses=attached_ingresses,
        helm_release=helm_release,
    )


# =============================================================================
# Aggregator
# =============================================================================


class ServiceAggregator(K8sBaseManager):
    """Builds the Service view from Flux ownership plus cluster listings.

    Every listing is issued once: Services, Deployments and Ingresses per
    distinct namespace, Pods once cluster-wide. Any listing failure aborts
    the whole aggregation.
    """

    _entity_name = "service"

    def __init__(self, client: KubernetesClient, resolver: InventoryResolver) -> None:
        super().__init__(client)
        self._resolver = resolver

    def aggregate(
        self,
        kustomizations: Iterable[KustomizationSummary],
        helm_releases: Iterable[HelmReleaseSummary],
    ) -> list[Service]:
        """Services owned by the given Kustomizations and HelmReleases."""
        owned = self._resolver.resolve(kustomizations, helm_releases)
        return self.build(owned)

    def build(self, owned: list[OwnedService]) -> list[Service]:
        """Correlate resolved Service identities with live objects.

        Identities whose Service does not exist are skipped.
        """
        namespaces = _distinct(o.namespace for o in owned)
        live: dict[str, ServiceSummary] = {}
        for ns in namespaces:
            for svc in self.list_services(ns):
                live[svc.key] = svc

        matched: list[tuple[ServiceSummary, str | None]] = []
        for identity in owned:
            svc = live.get(identity.key)
            if svc is None:
                self._log.debug(
                    "owned_service_not_found", namespace=identity.namespace, name=identity.name
                )
                continue
            matched.append((svc, identity.helm_release))

        return self._correlate_all(matched)

    def services_in_namespace(self, namespace: str) -> list[Service]:
        """Every Service in ``namespace`` with its workloads attached."""
        return self._correlate_all([(svc, None) for svc in self.list_services(namespace)])

    def _correlate_all(self, matched: list[tuple[ServiceSummary, str | None]]) -> list[Service]:
        if not matched:
            return []

        namespaces = _distinct(svc.namespace or "" for svc, _ in matched)
        deployments = [d for ns in namespaces for d in self.list_deployments(ns)]
        ingresses = [i for ns in namespaces for i in self.list_ingresses(ns)]
        pods = self.list_all_pods()

        services = [
            correlate(svc, deployments, pods, ingresses, helm_release=tag) for svc, tag in matched
        ]
        self._log.info("aggregated_services", count=len(services))
        return services

    # =========================================================================
    # Listings
    # =========================================================================

    def list_services(self, namespace: str) -> list[ServiceSummary]:
        self._log.debug("listing_services", namespace=namespace)
        result = self._api_call(
            lambda: self._client.core_v1.list_namespaced_service(namespace=namespace),
            "Service",
            None,
            namespace,
        )
        return [ServiceSummary.from_k8s_object(item) for item in result.items]

    def list_deployments(self, namespace: str) -> list[DeploymentSummary]:
        self._log.debug("listing_deployments", namespace=namespace)
        result = self._api_call(
            lambda: self._client.apps_v1.list_namespaced_deployment(namespace=namespace),
            "Deployment",
            None,
            namespace,
        )
        return [DeploymentSummary.from_k8s_object(item) for item in result.items]

    def list_ingresses(self, namespace: str) -> list[IngressSummary]:
        self._log.debug("listing_ingresses", namespace=namespace)
        result = self._api_call(
            lambda: self._client.networking_v1.list_namespaced_ingress(namespace=namespace),
            "Ingress",
            None,
            namespace,
        )
        return [IngressSummary.from_k8s_object(item) for item in result.items]

    def list_all_pods(self) -> list[PodSummary]:
        self._log.debug("listing_pods_all_namespaces")
        result = self._api_call(
            lambda: self._client.core_v1.list_pod_for_all_namespaces(),
            "Pod",
        )
        return [PodSummary.from_k8s_object(item) for item in result.items]


def _distinct(values: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(values))
