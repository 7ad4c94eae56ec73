"""Kubernetes integration.

Provides the API client, normalized resource models and the list-then-watch
caches the certificate controller runs on.
"""

from cert_agent.integrations.kubernetes.client import KubernetesClient
from cert_agent.integrations.kubernetes.config import KubernetesConfig
from cert_agent.integrations.kubernetes.exceptions import (
    KubernetesAuthError,
    KubernetesConflictError,
    KubernetesConnectionError,
    KubernetesError,
    KubernetesNotFoundError,
    KubernetesTimeoutError,
    KubernetesValidationError,
)
from cert_agent.integrations.kubernetes.informer import (
    DeletedFinalStateUnknown,
    FilteringEventHandler,
    Informer,
    InformerFactory,
    ResourceEventHandler,
    ResourceEventHandlerFuncs,
)

__all__ = [
    "DeletedFinalStateUnknown",
    "FilteringEventHandler",
    "Informer",
    "InformerFactory",
    "KubernetesAuthError",
    "KubernetesClient",
    "KubernetesConfig",
    "KubernetesConflictError",
    "KubernetesConnectionError",
    "KubernetesError",
    "KubernetesNotFoundError",
    "KubernetesTimeoutError",
    "KubernetesValidationError",
    "ResourceEventHandler",
    "ResourceEventHandlerFuncs",
]
