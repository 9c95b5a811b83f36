"""Base model and SDK helpers shared by the display models.

Records are identified across live state by ``namespace/name``; see
:func:`object_key`.
"""

from __future__ import annotations

from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field


def object_key(namespace: str | None, name: str) -> str:
    """``namespace/name``; cluster-scoped objects get an empty namespace."""
    return f"{namespace or ''}/{name}"


class K8sEntityBase(BaseModel):
    """Identity and labels of a namespaced Kubernetes object."""

    model_config = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    name: str = Field(description="Resource name")
    namespace: str | None = Field(default=None, description="Resource namespace")
    labels: dict[str, str] | None = Field(default=None, description="Resource labels")

    _entity_name: ClassVar[str] = "entity"

    @property
    def key(self) -> str:
        return object_key(self.namespace, self.name)


def _safe_get(obj: Any, *attrs: str, default: Any = None) -> Any:
    """Follow ``attrs`` on an SDK object; ``default`` if any step is None."""
    for attr in attrs:
        if obj is None:
            return default
        obj = getattr(obj, attr, None)
    return default if obj is None else obj


def _metadata_fields(obj: Any) -> dict[str, Any]:
    """``K8sEntityBase`` fields from an SDK object's ``metadata``.

    Empty label maps become None so "no labels" has one spelling.
    """
    metadata = getattr(obj, "metadata", None)
    labels = _safe_get(metadata, "labels")
    return {
        "name": _safe_get(metadata, "name", default=""),
        "namespace": _safe_get(metadata, "namespace"),
        "labels": dict(labels) if labels else None,
    }
