"""Ownership resolution for Flux-managed Services.

Two independent sources name the Services a Flux applier owns:

- a Kustomization's ``status.inventory.entries[].id``, in cli-utils
  ``ObjMetadata`` form (``<namespace>_<name>_<group>_<kind>``);
- the rendered manifest of a HelmRelease's latest stored Helm revision.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, NamedTuple, Protocol

import structlog
import yaml

from fluxdeck.integrations.kubernetes.exceptions import KubernetesValidationError
from fluxdeck.integrations.kubernetes.models.services import OwnedService

if TYPE_CHECKING:
    from collections.abc import Iterable

    from fluxdeck.integrations.kubernetes.models.flux import (
        HelmReleaseSummary,
        KustomizationSummary,
    )
    from fluxdeck.integrations.kubernetes.models.helm import HelmReleaseRecord

logger = structlog.get_logger()

FIELD_SEPARATOR = "_"
COLON_TRANSCODED = "__"

# Label helm-controller stamps on every object it renders
HELM_RELEASE_NAME_LABEL = "helm.toolkit.fluxcd.io/name"


class ObjMetadata(NamedTuple):
    """Parsed inventory entry."""

    namespace: str
    name: str
    group: str
    kind: str


class HelmBackend(Protocol):
    def latest_release(self, namespace: str, release_name: str) -> HelmReleaseRecord | None: ...


def parse_inventory_entry(entry_id: str) -> ObjMetadata:
    """Parse a ``<namespace>_<name>_<group>_<kind>`` inventory id.

    The namespace is everything before the first separator, the kind is
    after the last one and the group after the one before it. A ``__``
    left inside the name is a transcoded ``:``.

    Raises:
        KubernetesValidationError: If the id does not have four fields.
    """
    index = entry_id.find(FIELD_SEPARATOR)
    if index == -1:
        raise _invalid(entry_id)
    namespace = entry_id[:index]
    rest = entry_id[index + 1 :]

    index = rest.rfind(FIELD_SEPARATOR)
    if index == -1:
        raise _invalid(entry_id)
    kind = rest[index + 1 :]
    rest = rest[:index]

    index = rest.rfind(FIELD_SEPARATOR)
    if index == -1:
        raise _invalid(entry_id)
    group = rest[index + 1 :]

    name = rest[:index].replace(COLON_TRANSCODED, ":")
    if FIELD_SEPARATOR in name:
        raise _invalid(entry_id)

    return ObjMetadata(namespace=namespace, name=name, group=group, kind=kind)


def _invalid(entry_id: str) -> KubernetesValidationError:
    return KubernetesValidationError(message=f"too many fields within: {entry_id}")


def helm_release_name(release: HelmReleaseSummary) -> str:
    """Name helm-controller stores the release under."""
    if release.release_name:
        return release.release_name
    if release.target_namespace:
        return f"{release.target_namespace}-{release.name}"
    return release.name


def helm_storage_namespace(release: HelmReleaseSummary) -> str:
    return release.storage_namespace or release.namespace or ""


class InventoryResolver:
    """Resolves Flux appliers to the Services they own."""

    def __init__(self, helm: HelmBackend | None = None) -> None:
        self._helm = helm
        self._log = logger.bind(entity="inventory")

    def from_kustomizations(
        self, kustomizations: Iterable[KustomizationSummary]
    ) -> list[OwnedService]:
        """Services listed in the inventories, in inventory order.

        Raises:
            KubernetesValidationError: On the first unparseable entry.
        """
        owned: list[OwnedService] = []
        for kustomization in kustomizations:
            for entry_id in kustomization.inventory:
                meta = parse_inventory_entry(entry_id)
                if meta.kind == "Service" and meta.group == "":
                    owned.append(OwnedService(namespace=meta.namespace, name=meta.name))
        self._log.debug("resolved_inventory_services", count=len(owned))
        return owned

    def from_helm_releases(
        self, helm_releases: Iterable[HelmReleaseSummary]
    ) -> list[OwnedService]:
        """Services rendered by the latest stored revision of each release.

        Releases without stored history are skipped.

        Raises:
            HelmError: If a history lookup fails.
        """
        if self._helm is None:
            return []

        owned: list[OwnedService] = []
        for release in helm_releases:
            name = helm_release_name(release)
            storage_ns = helm_storage_namespace(release)
            latest = self._helm.latest_release(storage_ns, name)
            if latest is None:
                self._log.warning(
                    "helm_release_without_history",
                    helm_release=release.name,
                    release_name=name,
                    namespace=storage_ns,
                )
                continue

            owned.extend(self._manifest_services(latest.manifest, release))

        self._log.debug("resolved_helm_services", count=len(owned))
        return owned

    def resolve(
        self,
        kustomizations: Iterable[KustomizationSummary],
        helm_releases: Iterable[HelmReleaseSummary],
    ) -> list[OwnedService]:
        """Inventory-owned then Helm-owned Services.

        The two sources are concatenated as-is; a Service named by both
        appears twice.
        """
        return [
            *self.from_kustomizations(kustomizations),
            *self.from_helm_releases(helm_releases),
        ]

    @staticmethod
    def _manifest_services(manifest: str, release: HelmReleaseSummary) -> list[OwnedService]:
        owned: list[OwnedService] = []
        for doc in yaml.safe_load_all(manifest):
            if not isinstance(doc, dict):
                continue
            if doc.get("apiVersion") != "v1" or doc.get("kind") != "Service":
                continue

            metadata = doc.get("metadata") or {}
            labels = metadata.get("labels") or {}
            namespace = (
                metadata.get("namespace") or release.target_namespace or release.namespace or ""
            )
            owned.append(
                OwnedService(
                    namespace=namespace,
                    name=metadata.get("name", ""),
                    helm_release=labels.get(HELM_RELEASE_NAME_LABEL) or release.name,
                )
            )
        return owned
