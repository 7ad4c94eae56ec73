"""Kubernetes API client wrapper.

Wraps the official kubernetes Python client with lazy API group
initialization, API discovery helpers, retry logic, and consistent error
translation.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from cert_agent.integrations.kubernetes.exceptions import (
    KubernetesAuthError,
    KubernetesConflictError,
    KubernetesConnectionError,
    KubernetesError,
    KubernetesNotFoundError,
    KubernetesValidationError,
)

if TYPE_CHECKING:
    from kubernetes.client import (
        CoreV1Api,
        CustomObjectsApi,
        NetworkingV1Api,
        VersionApi,
    )

    from cert_agent.integrations.kubernetes.config import KubernetesConfig

logger = structlog.get_logger()


class KubernetesClient:
    """Kubernetes API client.

    Wraps the official kubernetes Python client with:
    - kubeconfig loading with in-cluster fallback
    - Lazy API group initialization
    - API discovery (server version, served resources)
    - Automatic retry with tenacity for transient errors
    - Consistent error translation to custom exceptions

    Example:
        ```python
        from cert_agent.integrations.kubernetes import KubernetesClient, KubernetesConfig

        with KubernetesClient(KubernetesConfig()) as client:
            secrets = client.core_v1.list_namespaced_secret("default")
        ```
    """

    def __init__(self, config: KubernetesConfig) -> None:
        """Initialize the client and load cluster credentials.

        Args:
            config: Cluster connection settings.
        """
        self._config = config
        self._retries = config.retry_attempts
        self._current_context: str | None = None

        self._core_v1: CoreV1Api | None = None
        self._networking_v1: NetworkingV1Api | None = None
        self._custom_objects: CustomObjectsApi | None = None
        self._version_api: VersionApi | None = None

        self._load_config()

        logger.info("Kubernetes client initialized", context=self._current_context)

    def _load_config(self) -> None:
        """Load Kubernetes configuration from kubeconfig or in-cluster."""
        from kubernetes import config
        from kubernetes.config import ConfigException

        try:
            config.load_kube_config(
                config_file=self._config.kubeconfig,
                context=self._config.context,
            )
            self._current_context = self._config.context or "default"
            logger.debug(
                "loaded_kubeconfig",
                context=self._config.context,
                kubeconfig=self._config.kubeconfig,
            )
        except ConfigException:
            try:
                config.load_incluster_config()
                self._current_context = "in-cluster"
                logger.debug("loaded_incluster_config")
            except ConfigException as e:
                raise KubernetesConnectionError(
                    message="Cannot load Kubernetes configuration. "
                    "Ensure kubeconfig exists or running inside a cluster.",
                    original_error=e,
                ) from e

        self._invalidate_api_cache()

    def _invalidate_api_cache(self) -> None:
        """Clear cached API group instances."""
        self._core_v1 = None
        self._networking_v1 = None
        self._custom_objects = None
        self._version_api = None

    # =========================================================================
    # Lazy API Group Accessors
    # =========================================================================

    @property
    def core_v1(self) -> CoreV1Api:
        """Get CoreV1Api instance (secrets)."""
        if self._core_v1 is None:
            from kubernetes.client import CoreV1Api

            self._core_v1 = CoreV1Api()
        return self._core_v1

    @property
    def networking_v1(self) -> NetworkingV1Api:
        """Get NetworkingV1Api instance (ingresses, ingress classes)."""
        if self._networking_v1 is None:
            from kubernetes.client import NetworkingV1Api

            self._networking_v1 = NetworkingV1Api()
        return self._networking_v1

    @property
    def custom_objects(self) -> CustomObjectsApi:
        """Get CustomObjectsApi instance (CRDs and legacy API versions)."""
        if self._custom_objects is None:
            from kubernetes.client import CustomObjectsApi

            self._custom_objects = CustomObjectsApi()
        return self._custom_objects

    @property
    def version_api(self) -> VersionApi:
        """Get VersionApi instance for cluster version info."""
        if self._version_api is None:
            from kubernetes.client import VersionApi

            self._version_api = VersionApi()
        return self._version_api

    # =========================================================================
    # Discovery
    # =========================================================================

    def get_server_version(self) -> str:
        """Get the Kubernetes server git version (e.g. "v1.28.3").

        Connection failures are retried up to ``retry_attempts`` times.

        Raises:
            KubernetesConnectionError: If the cluster is unreachable.
        """

        @self.make_retry_decorator()
        def _get_code() -> str:
            try:
                return str(self.version_api.get_code().git_version)
            except Exception as e:
                raise KubernetesConnectionError(
                    message="Failed to get cluster version",
                    original_error=e,
                ) from e

        return _get_code()

    def has_api_resource(self, group: str, version: str, kind: str) -> bool:
        """Check whether the server serves the given kind in a group version.

        A group version unknown to the server is reported as absent.
        Connection failures are retried up to ``retry_attempts`` times.

        Raises:
            KubernetesConnectionError: If the cluster is unreachable.
            KubernetesError: On any other discovery failure.
        """
        from kubernetes.client import ApiException

        @self.make_retry_decorator()
        def _get_api_resources() -> Any:
            try:
                return self.custom_objects.get_api_resources(group, version)
            except ApiException:
                raise
            except Exception as e:
                raise KubernetesConnectionError(
                    message=f"Failed to discover {group}/{version}",
                    original_error=e,
                ) from e

        try:
            resources = _get_api_resources()
        except ApiException as e:
            if e.status == 404:
                return False
            raise self.translate_api_exception(e, resource_type="APIResourceList") from e

        api_resources = getattr(resources, "resources", None) or []
        return any(r.kind == kind for r in api_resources)

    # =========================================================================
    # Error Translation
    # =========================================================================

    @staticmethod
    def translate_api_exception(
        e: Exception,
        resource_type: str | None = None,
        resource_name: str | None = None,
        namespace: str | None = None,
    ) -> KubernetesError:
        """Translate a kubernetes ApiException to a custom exception.

        Args:
            e: The original ApiException.
            resource_type: Type of resource being operated on.
            resource_name: Name of the resource.
            namespace: Namespace of the resource.

        Returns:
            An appropriate KubernetesError subclass.
        """
        from kubernetes.client import ApiException

        if isinstance(e, KubernetesError):
            return e

        if not isinstance(e, ApiException):
            return KubernetesError(
                message=str(e),
                resource_type=resource_type,
                resource_name=resource_name,
                namespace=namespace,
            )

        error = _translate_status(e, resource_type, resource_name, namespace)
        error.causes = _status_causes(e)
        return error

    # =========================================================================
    # Retry Decorator
    # =========================================================================

    def make_retry_decorator(self) -> Any:
        """Create a retry decorator for transient connection errors.

        Returns:
            A tenacity retry decorator configured with exponential backoff.
        """
        return retry(
            retry=retry_if_exception_type(KubernetesConnectionError),
            stop=stop_after_attempt(self._retries),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            reraise=True,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def get_current_context(self) -> str:
        """Get the current context name, or 'in-cluster' inside a pod."""
        return self._current_context or "unknown"

    def close(self) -> None:
        """Close the client and release resources."""
        self._invalidate_api_cache()
        logger.debug("Kubernetes client closed")

    def __enter__(self) -> KubernetesClient:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


def _translate_status(
    e: Any,
    resource_type: str | None,
    resource_name: str | None,
    namespace: str | None,
) -> KubernetesError:
    """Map an ApiException status code to an exception."""
    status = e.status

    if status in (401, 403):
        return KubernetesAuthError(
            message=e.reason or "Authentication/authorization failed",
            status_code=status,
            reason=e.reason,
        )

    if status == 404:
        return KubernetesNotFoundError(
            resource_type=resource_type,
            resource_name=resource_name,
            namespace=namespace,
        )

    if status == 409:
        return KubernetesConflictError(
            resource_type=resource_type,
            resource_name=resource_name,
            namespace=namespace,
        )

    if status in (400, 422):
        return KubernetesValidationError(
            message=e.reason or "Validation failed",
            status_code=status,
        )

    return KubernetesError(
        message=e.reason or f"Kubernetes API error: {status}",
        status_code=status,
        resource_type=resource_type,
        resource_name=resource_name,
        namespace=namespace,
    )


def _status_causes(e: Any) -> list[str]:
    """Extract the status detail cause types from an ApiException body."""
    body = getattr(e, "body", None)
    if not body:
        return []
    try:
        status = json.loads(body)
    except (TypeError, ValueError):
        return []
    if not isinstance(status, dict):
        return []
    details = status.get("details") or {}
    return [c.get("reason", "") for c in details.get("causes") or [] if isinstance(c, dict)]
