"""Canonical models for the Kubernetes resources watched by the agent."""

from cert_agent.integrations.kubernetes.models.base import K8sResource, to_wire_dict
from cert_agent.integrations.kubernetes.models.networking import (
    Ingress,
    IngressClass,
    IngressRoute,
    IngressRouteTLS,
    IngressTLS,
    RouteDomain,
)
from cert_agent.integrations.kubernetes.models.secret import Secret

__all__ = [
    "Ingress",
    "IngressClass",
    "IngressRoute",
    "IngressRouteTLS",
    "IngressTLS",
    "K8sResource",
    "RouteDomain",
    "Secret",
    "to_wire_dict",
]
