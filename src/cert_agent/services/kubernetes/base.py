"""Base class for Kubernetes services.

Provides shared infrastructure for the certificate controller and manager,
including client access, structured logging and error translation.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, NoReturn

import structlog

if TYPE_CHECKING:
    from cert_agent.integrations.kubernetes.client import KubernetesClient

logger = structlog.get_logger()


class K8sBaseService:
    """Base class for Kubernetes services.

    Provides shared concerns:
    - Client reference and API group access
    - Structured logging with entity binding
    - Consistent API error translation

    Subclasses set ``_entity_name`` for structured log context.

    Example:
        >>> class CertificateController(K8sBaseService):
        ...     _entity_name = "certificate_controller"
    """

    _entity_name: str = ""

    def __init__(self, client: KubernetesClient) -> None:
        """Initialize the service.

        Args:
            client: Kubernetes API client instance.
        """
        self._client = client
        self._log = logger.bind(entity=self._entity_name)

    def _handle_api_error(
        self,
        e: Exception,
        resource_type: str | None = None,
        resource_name: str | None = None,
        namespace: str | None = None,
    ) -> NoReturn:
        """Translate a Kubernetes API exception and re-raise.

        Raises:
            KubernetesError: Always raises an appropriate subclass.
        """
        raise self._client.translate_api_exception(
            e,
            resource_type=resource_type,
            resource_name=resource_name,
            namespace=namespace,
        )
