"""Base models for normalized Kubernetes resources.

Every watched resource is converted once, right after it is fetched, into a
single canonical pydantic model. Typed objects from the kubernetes client and
raw dictionaries returned by ``CustomObjectsApi`` (CRDs, legacy API versions)
go through the same path: they are first serialized to their wire form and
then parsed, so no caller ever has to care which API version produced them.
"""

from __future__ import annotations

from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field


class K8sResource(BaseModel):
    """Base class for all normalized Kubernetes resources."""

    model_config = ConfigDict(
        extra="ignore",
        frozen=True,
        str_strip_whitespace=True,
    )

    name: str = Field(description="Resource name")
    namespace: str = Field(default="", description="Resource namespace, empty when cluster scoped")
    uid: str | None = Field(default=None, description="Kubernetes UID")
    resource_version: str = Field(default="", description="Resource version")
    labels: dict[str, str] = Field(default_factory=dict, description="Resource labels")
    annotations: dict[str, str] = Field(default_factory=dict, description="Resource annotations")

    _entity_name: ClassVar[str] = "resource"

    @property
    def key(self) -> str:
        """Cache key in the ``namespace/name`` form (``name`` if cluster scoped)."""
        return f"{self.namespace}/{self.name}" if self.namespace else self.name

    @classmethod
    def _metadata_fields(cls, data: dict[str, Any]) -> dict[str, Any]:
        metadata = data.get("metadata") or {}
        return {
            "name": metadata.get("name") or "",
            "namespace": metadata.get("namespace") or "",
            "uid": metadata.get("uid"),
            "resource_version": metadata.get("resourceVersion") or "",
            "labels": dict(metadata.get("labels") or {}),
            "annotations": dict(metadata.get("annotations") or {}),
        }


def to_wire_dict(obj: Any) -> dict[str, Any]:
    """Serialize a kubernetes client object to its camelCase wire form.

    Dictionaries are returned unchanged.
    """
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return obj

    from kubernetes.client import ApiClient

    result = ApiClient().sanitize_for_serialization(obj)
    return result if isinstance(result, dict) else {}


def _safe_get(data: dict[str, Any] | None, *keys: str, default: Any = None) -> Any:
    """Safely traverse nested keys of a wire dictionary."""
    current: Any = data
    for key in keys:
        if not isinstance(current, dict):
            return default
        current = current.get(key)
    return current if current is not None else default
