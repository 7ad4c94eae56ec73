"""Normalized networking resources: Ingresses, IngressRoutes and IngressClasses."""

from __future__ import annotations

from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field

from cert_agent.integrations.kubernetes.models.base import (
    K8sResource,
    _safe_get,
    to_wire_dict,
)

# Annotation set on an IngressClass to mark it as the cluster default.
ANNOTATION_DEFAULT_INGRESS_CLASS = "ingressclass.kubernetes.io/is-default-class"


class IngressTLS(BaseModel):
    """TLS block of an Ingress."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    hosts: list[str] = Field(default_factory=list, description="Hostnames covered by the secret")
    secret_name: str = Field(default="", description="Target TLS secret")


class Ingress(K8sResource):
    """Ingress in its canonical shape.

    Built from networking.k8s.io/v1 and v1beta1 Ingresses alike; only the
    fields common to both versions are kept.
    """

    _entity_name: ClassVar[str] = "ingress"

    ingress_class_name: str | None = Field(default=None, description="spec.ingressClassName")
    tls: list[IngressTLS] = Field(default_factory=list, description="TLS blocks")

    @classmethod
    def from_k8s_object(cls, obj: Any) -> Ingress:
        """Create from a V1Ingress object or a v1/v1beta1 Ingress dictionary."""
        data = to_wire_dict(obj)
        tls = [
            IngressTLS(
                hosts=[h for h in (t.get("hosts") or []) if h],
                secret_name=t.get("secretName") or "",
            )
            for t in _safe_get(data, "spec", "tls", default=[])
            if isinstance(t, dict)
        ]
        return cls(
            **cls._metadata_fields(data),
            ingress_class_name=_safe_get(data, "spec", "ingressClassName") or None,
            tls=tls,
        )

    @property
    def secret_names(self) -> list[str]:
        """Secret names referenced by the TLS blocks."""
        return [t.secret_name for t in self.tls if t.secret_name]


class IngressClass(K8sResource):
    """IngressClass from networking.k8s.io v1/v1beta1 or the platform CRD."""

    _entity_name: ClassVar[str] = "ingressclass"

    controller: str = Field(default="", description="spec.controller")

    @classmethod
    def from_k8s_object(cls, obj: Any) -> IngressClass:
        """Create from a typed IngressClass or an IngressClass dictionary."""
        data = to_wire_dict(obj)
        return cls(
            **cls._metadata_fields(data),
            controller=_safe_get(data, "spec", "controller", default=""),
        )

    @property
    def is_default(self) -> bool:
        """Whether the class is annotated as the cluster default."""
        return self.annotations.get(ANNOTATION_DEFAULT_INGRESS_CLASS) == "true"


class RouteDomain(BaseModel):
    """Domain block of an IngressRoute TLS configuration."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    main: str = ""
    sans: list[str] = Field(default_factory=list)


class IngressRouteTLS(BaseModel):
    """TLS configuration of an IngressRoute."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    secret_name: str = ""
    domains: list[RouteDomain] = Field(default_factory=list)


class IngressRoute(K8sResource):
    """Traefik IngressRoute (traefik.containo.us/v1alpha1)."""

    _entity_name: ClassVar[str] = "ingressroute"

    tls: IngressRouteTLS | None = Field(default=None, description="spec.tls")
    matches: list[str] = Field(default_factory=list, description="spec.routes[].match")

    @classmethod
    def from_k8s_object(cls, obj: Any) -> IngressRoute:
        """Create from an IngressRoute custom object dictionary."""
        data = to_wire_dict(obj)
        raw_tls = _safe_get(data, "spec", "tls")
        tls = None
        if isinstance(raw_tls, dict):
            tls = IngressRouteTLS(
                secret_name=raw_tls.get("secretName") or "",
                domains=[
                    RouteDomain(main=d.get("main") or "", sans=list(d.get("sans") or []))
                    for d in raw_tls.get("domains") or []
                    if isinstance(d, dict)
                ],
            )
        matches = [
            r.get("match") or ""
            for r in _safe_get(data, "spec", "routes", default=[])
            if isinstance(r, dict)
        ]
        return cls(**cls._metadata_fields(data), tls=tls, matches=matches)

    @property
    def secret_name(self) -> str:
        """The TLS secret name, empty when TLS is not configured."""
        return self.tls.secret_name if self.tls else ""
