"""Normalized Secret resource."""

from __future__ import annotations

from typing import Any, ClassVar

from pydantic import Field

from cert_agent.integrations.kubernetes.models.base import K8sResource, to_wire_dict


class Secret(K8sResource):
    """Secret metadata as seen by the certificate controller.

    Payload values are kept base64 encoded, exactly as the API returns them.
    """

    _entity_name: ClassVar[str] = "secret"

    type: str = Field(default="Opaque", description="Secret type")
    data: dict[str, str] = Field(default_factory=dict, description="Base64 encoded payload")

    @classmethod
    def from_k8s_object(cls, obj: Any) -> Secret:
        """Create from a V1Secret object or a Secret dictionary."""
        data = to_wire_dict(obj)
        return cls(
            **cls._metadata_fields(data),
            type=data.get("type") or "Opaque",
            data=dict(data.get("data") or {}),
        )
