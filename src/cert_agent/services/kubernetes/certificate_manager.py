"""Certificate issuance manager.

Serializes certificate requests per secret, admits them against the quota,
resolves them from the certificate authority and stores the result as a
managed TLS secret. Managed secrets nearing expiry are renewed periodically.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Protocol

from cert_agent.integrations.kubernetes.exceptions import (
    KubernetesConflictError,
    KubernetesError,
    KubernetesTimeoutError,
)
from cert_agent.integrations.platform.certificates import (
    Certificate,
    CertificatePendingError,
)
from cert_agent.services.kubernetes.base import K8sBaseService
from cert_agent.services.kubernetes.domains import sanitize_domains
from cert_agent.services.kubernetes.secrets import (
    build_managed_secret,
    get_certificate_domains,
    get_certificate_not_after,
    is_managed_secret,
)
from cert_agent.services.kubernetes.workqueue import RateLimitingQueue
from cert_agent.services.quota.quota import Quota, QuotaError

if TYPE_CHECKING:
    from cert_agent.integrations.kubernetes.client import KubernetesClient
    from cert_agent.integrations.kubernetes.informer import Informer
    from cert_agent.integrations.kubernetes.models import Secret

NAMESPACE_TERMINATING_CAUSE = "NamespaceTerminating"


class CertificateAuthority(Protocol):
    """Resolves domains into a signed certificate."""

    def obtain(self, domains: list[str]) -> Certificate: ...


@dataclass(frozen=True)
class CertificateRequest:
    """Request for a certificate stored in a given secret.

    Domains are sanitized on construction.
    """

    domains: tuple[str, ...]
    namespace: str
    secret_name: str
    _key: str = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "domains", tuple(sanitize_domains(self.domains)))
        object.__setattr__(self, "_key", f"{self.secret_name}@{self.namespace}")

    @property
    def key(self) -> str:
        """Identity of the target secret, ``secret@namespace``."""
        return self._key


class CertificateManager(K8sBaseService):
    """Deduplicating certificate issuance pipeline.

    Example:
        ```python
        manager = CertificateManager(client, authority, Quota(100), secrets)
        manager.obtain_certificate(
            CertificateRequest(("example.com",), "default", "example-tls")
        )
        manager.run(stop)
        ```
    """

    _entity_name = "certificate_manager"

    def __init__(
        self,
        client: KubernetesClient,
        authority: CertificateAuthority,
        quota: Quota,
        secrets: Informer[Secret],
        *,
        renew_before: timedelta = timedelta(days=30),
        renew_interval: float = 24 * 60 * 60,
        max_retries: int = 10,
        pending_retry_after: float = 10.0,
        workers: int = 1,
        queue: RateLimitingQueue | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            client: Kubernetes API client instance.
            authority: Certificate authority client.
            quota: Admission quota.
            secrets: Secret cache shared with the controller.
            renew_before: Renew certificates whose remaining validity is shorter.
            renew_interval: Seconds between two renewal scans.
            max_retries: Attempts per request before it is dropped.
            pending_retry_after: Seconds before a pending issuance is polled again.
            workers: Number of concurrent issuance workers.
            queue: Work queue, created when omitted.
            now: Clock returning an aware datetime.
        """
        super().__init__(client)
        self._authority = authority
        self._quota = quota
        self._secrets = secrets
        self._renew_before = renew_before
        self._renew_interval = renew_interval
        self._max_retries = max_retries
        self._pending_retry_after = pending_retry_after
        self._workers = max(1, workers)
        self._queue = queue or RateLimitingQueue()
        self._now = now or (lambda: datetime.now(UTC))

        self._requests_lock = threading.Lock()
        self._requests: dict[str, CertificateRequest] = {}

    @property
    def queue(self) -> RateLimitingQueue:
        return self._queue

    def pending_request(self, key: str) -> CertificateRequest | None:
        """The latest request submitted for a secret key, if still pending."""
        with self._requests_lock:
            return self._requests.get(key)

    # =========================================================================
    # Request intake
    # =========================================================================

    def obtain_certificate(self, request: CertificateRequest) -> None:
        """Submit a request, replacing any request pending for the same secret."""
        with self._requests_lock:
            self._requests[request.key] = request
        self._queue.add(request.key)
        self._log.debug(
            "certificate_requested",
            namespace=request.namespace,
            secret=request.secret_name,
            domains=list(request.domains),
        )

    def release_certificate(self, namespace: str, secret_name: str) -> None:
        """Give back the quota acquired for a secret that no longer exists."""
        key = CertificateRequest((), namespace, secret_name).key
        if not self._quota.acquired(key):
            return
        try:
            self._quota.tx(key, 0).commit()
        except QuotaError as e:
            self._log.warning(
                "Unable to release quota", namespace=namespace, secret=secret_name, error=str(e)
            )
            return
        self._log.debug("certificate_released", namespace=namespace, secret=secret_name)

    # =========================================================================
    # Worker
    # =========================================================================

    def process_next_work_item(self, timeout: float | None = None) -> bool:
        """Process one queued secret key.

        Returns:
            False once the queue is shut down, True otherwise.
        """
        key, shutdown = self._queue.get(timeout)
        if shutdown:
            return False
        if key is None:
            return True

        try:
            self._process(str(key))
        finally:
            self._queue.done(key)
        return True

    def _process(self, key: str) -> None:
        with self._requests_lock:
            request = self._requests.get(key)

        if request is None:
            self._queue.forget(key)
            return

        log = self._log.bind(
            namespace=request.namespace,
            secret=request.secret_name,
            domains=list(request.domains),
        )

        try:
            self.resolve_and_store_certificate(request)
        except CertificatePendingError:
            log.debug("certificate_pending", retry_after=self._pending_retry_after)
            self._queue.add_after(key, self._pending_retry_after)
            return
        except QuotaError as e:
            log.warning("certificate_request_rejected", error=str(e))
        except Exception as e:
            terminating = isinstance(e, KubernetesError) and e.has_cause(
                NAMESPACE_TERMINATING_CAUSE
            )
            if not terminating and self._queue.num_requeues(key) < self._max_retries:
                log.error("Unable to obtain certificate", error=str(e))
                self._queue.add_rate_limited(key)
                return
            log.error("certificate_request_dropped", error=str(e))

        self._drop(key, request)

    def _drop(self, key: str, request: CertificateRequest) -> None:
        with self._requests_lock:
            # A newer request submitted meanwhile stays pending.
            if self._requests.get(key) is request:
                del self._requests[key]
        self._queue.forget(key)

    def resolve_and_store_certificate(self, request: CertificateRequest) -> None:
        """Admit, obtain and store the certificate of a request.

        The quota is reserved for the number of requested domains before the
        authority is called, rolled back if issuance or storage fails, and
        committed once the secret is written.

        Raises:
            QuotaError: The reservation was rejected; the authority is not called.
            CertificatePendingError: Issuance is in progress.
            PlatformClientError: The authority failed.
            KubernetesError: The secret could not be written.
        """
        tx = self._quota.tx(request.key, len(request.domains))
        try:
            cert = self._authority.obtain(list(request.domains))
            self._store_secret(request, cert)
        except Exception:
            tx.rollback()
            raise
        tx.commit()

        self._log.info(
            "certificate_stored",
            namespace=request.namespace,
            secret=request.secret_name,
            domains=list(request.domains),
            not_after=cert.not_after.isoformat(),
        )

    def _store_secret(self, request: CertificateRequest, cert: Certificate) -> None:
        """Create the managed secret, updating it in place if it exists."""
        body = build_managed_secret(
            request.namespace, request.secret_name, list(request.domains), cert
        )
        core_v1 = self._client.core_v1
        try:
            core_v1.create_namespaced_secret(request.namespace, body)
            return
        except Exception as e:
            error = self._client.translate_api_exception(
                e,
                resource_type="Secret",
                resource_name=request.secret_name,
                namespace=request.namespace,
            )
            if not isinstance(error, KubernetesConflictError):
                raise error from e

        try:
            core_v1.replace_namespaced_secret(request.secret_name, request.namespace, body)
        except Exception as e:
            self._handle_api_error(e, "Secret", request.secret_name, request.namespace)

    def run_worker(self) -> None:
        """Process queued keys until the queue is shut down."""
        while self.process_next_work_item():
            pass

    # =========================================================================
    # Renewal
    # =========================================================================

    def renew_expiring_certificates(self) -> list[CertificateRequest]:
        """Resubmit managed secrets whose remaining validity is below the threshold.

        Returns:
            The renewal requests submitted.
        """
        now = self._now()
        renewed: list[CertificateRequest] = []

        for secret in self._secrets.list(predicate=is_managed_secret):
            try:
                not_after = get_certificate_not_after(secret)
            except (ValueError, OverflowError, OSError) as e:
                self._log.error(
                    "Unable to parse notAfter timestamp",
                    namespace=secret.namespace,
                    secret=secret.name,
                    error=str(e),
                )
                continue

            if not_after - now >= self._renew_before:
                continue

            request = request_from_secret(secret)
            self.obtain_certificate(request)
            renewed.append(request)

        if renewed:
            self._log.info("certificates_renewing", count=len(renewed))
        return renewed

    def run_renewer(self, stop: threading.Event) -> None:
        """Scan for expiring certificates now and then at every interval."""
        while True:
            try:
                self.renew_expiring_certificates()
            except Exception:
                self._log.exception("Unable to renew expiring certificates")
            if stop.wait(self._renew_interval):
                return

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def run(self, stop: threading.Event, cache_sync_timeout: float = 120) -> None:
        """Run workers and the renewer until ``stop`` is set.

        Raises:
            KubernetesTimeoutError: The secret cache did not sync in time.
        """
        if not self._wait_for_secrets(stop, cache_sync_timeout):
            if stop.is_set():
                return
            raise KubernetesTimeoutError(
                "timed out waiting for secret cache to sync",
                timeout_seconds=cache_sync_timeout,
            )

        threads: list[threading.Thread] = [
            threading.Thread(target=self.run_worker, name=f"cert-worker-{i}", daemon=True)
            for i in range(self._workers)
        ]
        threads.append(
            threading.Thread(
                target=self.run_renewer, args=(stop,), name="cert-renewer", daemon=True
            )
        )
        for thread in threads:
            thread.start()
        self._log.info("certificate_manager_started", workers=self._workers)

        stop.wait()
        self._queue.shut_down()
        for thread in threads:
            thread.join()
        self._log.info("certificate_manager_stopped")

    def _wait_for_secrets(self, stop: threading.Event, timeout: float) -> bool:
        waited = 0.0
        while not self._secrets.wait_for_sync(0.5):
            waited += 0.5
            if stop.is_set() or waited >= timeout:
                return False
        return True


def request_from_secret(secret: Secret) -> CertificateRequest:
    """Rebuild the request a managed secret was issued for."""
    return CertificateRequest(
        domains=tuple(get_certificate_domains(secret)),
        namespace=secret.namespace,
        secret_name=secret.name,
    )
