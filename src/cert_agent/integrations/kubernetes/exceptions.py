"""Kubernetes integration custom exceptions."""

from __future__ import annotations


class KubernetesError(Exception):
    """Base exception for Kubernetes operations.

    Attributes:
        message: Human-readable error message.
        status_code: HTTP status code from the Kubernetes API (if applicable).
        resource_type: Kind of the resource involved (e.g. "Secret").
        resource_name: Name of the resource involved.
        namespace: Namespace of the resource (if applicable).
        causes: Reasons listed in the API status details, e.g. "NamespaceTerminating".
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        resource_type: str | None = None,
        resource_name: str | None = None,
        namespace: str | None = None,
        causes: list[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.resource_type = resource_type
        self.resource_name = resource_name
        self.namespace = namespace
        self.causes = causes or []

    def __str__(self) -> str:
        parts = [self.message]
        if self.status_code:
            parts.append(f"(status: {self.status_code})")
        if self.resource_type and self.resource_name:
            loc = f"[{self.resource_type}/{self.resource_name}"
            if self.namespace:
                loc += f" in {self.namespace}"
            loc += "]"
            parts.append(loc)
        return " ".join(parts)

    def has_cause(self, cause: str) -> bool:
        """Return whether the API status details carry the given cause type."""
        return cause in self.causes


class KubernetesConnectionError(KubernetesError):
    """Raised when the cluster cannot be reached or kubeconfig cannot be loaded."""

    def __init__(
        self,
        message: str = "Failed to connect to Kubernetes cluster",
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message=message)
        self.original_error = original_error


class KubernetesAuthError(KubernetesError):
    """Raised on 401/403 responses (invalid token, RBAC denial)."""

    def __init__(
        self,
        message: str = "Kubernetes authentication/authorization failed",
        status_code: int | None = 401,
        reason: str | None = None,
    ) -> None:
        super().__init__(message=message, status_code=status_code)
        self.reason = reason


class KubernetesNotFoundError(KubernetesError):
    """Raised when a requested resource does not exist (404)."""

    def __init__(
        self,
        message: str = "Kubernetes resource not found",
        resource_type: str | None = None,
        resource_name: str | None = None,
        namespace: str | None = None,
    ) -> None:
        if resource_type and resource_name:
            message = f"{resource_type} '{resource_name}' not found"
            if namespace:
                message += f" in namespace '{namespace}'"
        super().__init__(
            message=message,
            status_code=404,
            resource_type=resource_type,
            resource_name=resource_name,
            namespace=namespace,
        )


class KubernetesConflictError(KubernetesError):
    """Raised when a resource already exists or was modified concurrently (409)."""

    def __init__(
        self,
        message: str = "Resource conflict",
        resource_type: str | None = None,
        resource_name: str | None = None,
        namespace: str | None = None,
    ) -> None:
        if resource_type and resource_name:
            message = f"{resource_type} '{resource_name}' already exists"
            if namespace:
                message += f" in namespace '{namespace}'"
        super().__init__(
            message=message,
            status_code=409,
            resource_type=resource_type,
            resource_name=resource_name,
            namespace=namespace,
        )


class KubernetesValidationError(KubernetesError):
    """Raised when the API rejects a resource body (400/422)."""

    def __init__(
        self,
        message: str = "Invalid resource specification",
        status_code: int | None = 422,
    ) -> None:
        super().__init__(message=message, status_code=status_code)


class KubernetesTimeoutError(KubernetesError):
    """Raised when waiting on the cluster exceeds its deadline.

    The agent raises it when the informer caches do not finish their initial
    sync in time, which is fatal for the run loop.
    """

    def __init__(
        self,
        message: str = "Kubernetes operation timed out",
        timeout_seconds: float | None = None,
    ) -> None:
        if timeout_seconds:
            message = f"{message} (after {timeout_seconds}s)"
        super().__init__(message=message)
        self.timeout_seconds = timeout_seconds
