"""Service and Ingress models.

An ingress only matters to fluxdeck through the Services its rules route
to, so rules keep the backend service name of each path.
"""

from __future__ import annotations

from typing import Any, ClassVar

from pydantic import BaseModel, Field

from fluxdeck.integrations.kubernetes.models.base import (
    K8sEntityBase,
    _metadata_fields,
    _safe_get,
)


class ServicePort(BaseModel):
    name: str | None = None
    port: int
    target_port: str | None = Field(default=None, description="Number or named container port")
    protocol: str = "TCP"

    @classmethod
    def from_k8s_object(cls, obj: Any) -> ServicePort:
        target = getattr(obj, "target_port", None)
        return cls(
            name=getattr(obj, "name", None),
            port=getattr(obj, "port", 0),
            target_port=None if target is None else str(target),
            protocol=getattr(obj, "protocol", None) or "TCP",
        )


class ServiceSummary(K8sEntityBase):
    """A core/v1 Service."""

    _entity_name: ClassVar[str] = "service"

    type: str = Field(default="ClusterIP", description="Service type")
    cluster_ip: str | None = Field(default=None, description="Cluster IP")
    ports: list[ServicePort] = Field(default_factory=list)
    selector: dict[str, str] | None = Field(default=None, description="Pod selector")

    @classmethod
    def from_k8s_object(cls, obj: Any) -> ServiceSummary:
        selector = _safe_get(obj, "spec", "selector")
        return cls(
            **_metadata_fields(obj),
            type=_safe_get(obj, "spec", "type", default="ClusterIP"),
            cluster_ip=_safe_get(obj, "spec", "cluster_ip"),
            ports=[ServicePort.from_k8s_object(p) for p in _safe_get(obj, "spec", "ports") or []],
            selector=dict(selector) if selector else None,
        )


class IngressRule(BaseModel):
    """One host of an ingress; a rule without a host matches any."""

    host: str | None = None
    paths: list[str] = Field(default_factory=list)
    backend_services: list[str] = Field(
        default_factory=list, description="Service name per path, where the path has one"
    )

    @classmethod
    def from_k8s_object(cls, obj: Any) -> IngressRule:
        rule = cls(host=getattr(obj, "host", None))
        for http_path in _safe_get(obj, "http", "paths") or []:
            rule.paths.append(getattr(http_path, "path", None) or "/")
            if service := _safe_get(http_path, "backend", "service", "name"):
                rule.backend_services.append(service)
        return rule


class IngressSummary(K8sEntityBase):
    """A networking/v1 Ingress.

    ``url`` stays empty on a listed ingress; it is filled in on the copy
    attached to a Service with the host routing to that Service.
    """

    _entity_name: ClassVar[str] = "ingress"

    class_name: str | None = Field(default=None, description="Ingress class")
    rules: list[IngressRule] = Field(default_factory=list)
    url: str | None = Field(default=None, description="Host serving the attached service")

    @classmethod
    def from_k8s_object(cls, obj: Any) -> IngressSummary:
        return cls(
            **_metadata_fields(obj),
            class_name=_safe_get(obj, "spec", "ingress_class_name"),
            rules=[IngressRule.from_k8s_object(r) for r in _safe_get(obj, "spec", "rules") or []],
        )

    @property
    def hosts(self) -> list[str]:
        return [rule.host for rule in self.rules if rule.host]

    def backend_services(self) -> set[str]:
        """Names of every service referenced by a rule path."""
        return {svc for rule in self.rules for svc in rule.backend_services}

    def url_for(self, service_name: str) -> str | None:
        """Host of the first rule that routes to ``service_name``."""
        return next(
            (r.host for r in self.rules if r.host and service_name in r.backend_services),
            None,
        )
