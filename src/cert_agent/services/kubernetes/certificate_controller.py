"""Certificate controller.

Watches Ingresses, IngressRoutes and managed secrets, turns their changes into
certificate requests and reclaims managed secrets no opted-in resource
references anymore.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Any, Protocol

from cert_agent.integrations.kubernetes.exceptions import (
    KubernetesNotFoundError,
    KubernetesTimeoutError,
)
from cert_agent.integrations.kubernetes.informer import (
    DeletedFinalStateUnknown,
    FilteringEventHandler,
    Informer,
    InformerFactory,
    ResourceEventHandlerFuncs,
)
from cert_agent.integrations.kubernetes.models import (
    Ingress,
    IngressClass,
    IngressRoute,
    Secret,
)
from cert_agent.integrations.kubernetes.versions import (
    supports_net_v1_ingress_classes,
    supports_net_v1_ingresses,
    supports_net_v1beta1_ingress_classes,
)
from cert_agent.services.kubernetes.base import K8sBaseService
from cert_agent.services.kubernetes.certificate_manager import (
    CertificateRequest,
    request_from_secret,
)
from cert_agent.services.kubernetes.domains import parse_host_rule_domains, sanitize_domains
from cert_agent.services.kubernetes.ingress_class import IngressClassResolver
from cert_agent.services.kubernetes.secrets import (
    get_certificate_domains,
    is_acme_enabled,
    is_managed_secret,
)
from cert_agent.services.kubernetes.sync_gate import CacheSyncGate, GatedEventHandler

if TYPE_CHECKING:
    from cert_agent.integrations.kubernetes.client import KubernetesClient

PLATFORM_GROUP = "hub.traefik.io"
PLATFORM_VERSION = "v1alpha1"
TRAEFIK_GROUP = "traefik.containo.us"
TRAEFIK_VERSION = "v1alpha1"
NETWORKING_GROUP = "networking.k8s.io"

SECRETS = "secrets"
INGRESSES = "ingresses"
INGRESS_CLASSES_V1 = "ingressclasses.v1"
INGRESS_CLASSES_V1BETA1 = "ingressclasses.v1beta1"
PLATFORM_INGRESS_CLASSES = "ingressclasses.hub"
INGRESS_ROUTES = "ingressroutes"


class CertificateIssuer(Protocol):
    """Receiver of certificate requests and quota releases."""

    def obtain_certificate(self, request: CertificateRequest) -> None: ...

    def release_certificate(self, namespace: str, secret_name: str) -> None: ...


def register_secret_informer(
    client: KubernetesClient, factory: InformerFactory
) -> Informer[Secret]:
    """Return the cluster-wide secret cache shared by controller and manager."""
    return factory.informer(
        SECRETS, Secret.from_k8s_object, client.core_v1.list_secret_for_all_namespaces
    )


def _unwrap(obj: Any) -> Any:
    return obj.obj if isinstance(obj, DeletedFinalStateUnknown) else obj


class CertificateController(K8sBaseService):
    """Reconciles certificate demand from Ingress-like resources.

    Event handlers stay inert until every cache completed its initial sync,
    so no reconciliation ever sees a partially populated view.
    """

    _entity_name = "certificate_controller"

    def __init__(
        self,
        client: KubernetesClient,
        issuer: CertificateIssuer,
        factory: InformerFactory,
        stop: threading.Event | None = None,
        gate: CacheSyncGate | None = None,
    ) -> None:
        """Initialize the controller and register its informers.

        Args:
            client: Kubernetes API client instance.
            issuer: Receives certificate requests, usually the certificate manager.
            factory: Informer factory shared with the manager.
            stop: Lifetime of the agent; gated handlers give up once it is set.
            gate: Startup barrier, created when omitted.

        Raises:
            KubernetesError: Server version or API discovery failed.
        """
        super().__init__(client)
        self._issuer = issuer
        self._factory = factory
        self._stop = stop or threading.Event()
        self.gate = gate or CacheSyncGate()

        server_version = client.get_server_version()
        self._log.debug("server_version", version=server_version)

        self._secrets = register_secret_informer(client, factory)
        self._secrets.add_event_handler(
            self._gated(
                is_managed_secret,
                ResourceEventHandlerFuncs(delete_func=self.secret_deleted),
            )
        )

        v1_classes = None
        v1beta1_classes = None
        if supports_net_v1_ingress_classes(server_version):
            v1_classes = factory.informer(
                INGRESS_CLASSES_V1,
                IngressClass.from_k8s_object,
                client.networking_v1.list_ingress_class,
            )
        elif supports_net_v1beta1_ingress_classes(server_version):
            v1beta1_classes = factory.informer(
                INGRESS_CLASSES_V1BETA1,
                IngressClass.from_k8s_object,
                client.custom_objects.list_cluster_custom_object,
                NETWORKING_GROUP,
                "v1beta1",
                "ingressclasses",
            )

        platform_classes = None
        if client.has_api_resource(PLATFORM_GROUP, PLATFORM_VERSION, "IngressClass"):
            platform_classes = factory.informer(
                PLATFORM_INGRESS_CLASSES,
                IngressClass.from_k8s_object,
                client.custom_objects.list_cluster_custom_object,
                PLATFORM_GROUP,
                PLATFORM_VERSION,
                "ingressclasses",
            )

        self._resolver = IngressClassResolver(platform_classes, v1_classes, v1beta1_classes)

        if supports_net_v1_ingresses(server_version):
            self._ingresses: Informer[Ingress] = factory.informer(
                INGRESSES,
                Ingress.from_k8s_object,
                client.networking_v1.list_ingress_for_all_namespaces,
            )
        else:
            self._ingresses = factory.informer(
                INGRESSES,
                Ingress.from_k8s_object,
                client.custom_objects.list_cluster_custom_object,
                NETWORKING_GROUP,
                "v1beta1",
                "ingresses",
            )
        self._ingresses.add_event_handler(
            self._gated(
                lambda ing: is_acme_enabled(ing.annotations)
                and self.is_supported_ingress_controller(ing),
                ResourceEventHandlerFuncs(
                    add_func=self.ingress_created,
                    update_func=self.ingress_updated,
                    delete_func=self.ingress_deleted,
                ),
            )
        )

        self._ingress_routes: Informer[IngressRoute] | None = None
        if client.has_api_resource(TRAEFIK_GROUP, TRAEFIK_VERSION, "IngressRoute"):
            self._ingress_routes = factory.informer(
                INGRESS_ROUTES,
                IngressRoute.from_k8s_object,
                client.custom_objects.list_cluster_custom_object,
                TRAEFIK_GROUP,
                TRAEFIK_VERSION,
                "ingressroutes",
            )
            self._ingress_routes.add_event_handler(
                self._gated(
                    lambda route: is_acme_enabled(route.annotations),
                    ResourceEventHandlerFuncs(
                        add_func=self.ingress_route_created,
                        update_func=self.ingress_route_updated,
                        delete_func=self.ingress_route_deleted,
                    ),
                )
            )
        else:
            self._log.info("ingressroute_crd_not_found")

    def _gated(self, predicate: Any, handler: ResourceEventHandlerFuncs) -> GatedEventHandler:
        return GatedEventHandler(self.gate, FilteringEventHandler(predicate, handler), self._stop)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def run(self, stop: threading.Event, cache_sync_timeout: float = 120) -> None:
        """Start the caches, open the gate once synced and block until ``stop``.

        Raises:
            KubernetesTimeoutError: A cache did not complete its initial sync in time.
        """
        self.gate.start_syncing()
        self._factory.start(stop)

        synced = self._factory.wait_for_cache_sync(cache_sync_timeout, stop)
        if stop.is_set():
            return
        for kind, ok in synced.items():
            if not ok:
                raise KubernetesTimeoutError(
                    f"timed out waiting for {kind} cache to sync",
                    timeout_seconds=cache_sync_timeout,
                )

        self.gate.mark_ready()
        self._log.info("certificate_controller_started", caches=sorted(synced))

        stop.wait()
        self._factory.stop()
        self._log.info("certificate_controller_stopped")

    # =========================================================================
    # Ingress class
    # =========================================================================

    def is_supported_ingress_controller(self, ingress: Ingress) -> bool:
        """Whether the Ingress is served by a supported ingress controller."""
        return self._resolver.is_supported_ingress_controller(ingress)

    # =========================================================================
    # Ingresses
    # =========================================================================

    def ingress_created(self, obj: Ingress) -> None:
        self.sync_ingress(obj)

    def ingress_updated(self, old: Ingress, new: Ingress) -> None:
        # Resync: nothing changed.
        if old.resource_version == new.resource_version:
            return

        self.sync_ingress(new)
        self.delete_unused_secrets(old.namespace, *old.secret_names)

    def ingress_deleted(self, obj: Ingress | DeletedFinalStateUnknown) -> None:
        ingress: Ingress = _unwrap(obj)
        self.delete_unused_secrets(ingress.namespace, *ingress.secret_names)

    def sync_ingress(self, ingress: Ingress) -> None:
        """Request a certificate for every TLS block whose secret is missing or stale."""
        for tls in ingress.tls:
            if not tls.hosts or not tls.secret_name:
                continue
            self._sync_secret(
                ingress.namespace,
                tls.secret_name,
                sanitize_domains(tls.hosts),
                ingress=ingress.name,
            )

    # =========================================================================
    # IngressRoutes
    # =========================================================================

    def ingress_route_created(self, obj: IngressRoute) -> None:
        self.sync_ingress_route(obj)

    def ingress_route_updated(self, old: IngressRoute, new: IngressRoute) -> None:
        if old.resource_version == new.resource_version:
            return

        self.sync_ingress_route(new)
        if old.secret_name:
            self.delete_unused_secrets(old.namespace, old.secret_name)

    def ingress_route_deleted(self, obj: IngressRoute | DeletedFinalStateUnknown) -> None:
        route: IngressRoute = _unwrap(obj)
        if route.secret_name:
            self.delete_unused_secrets(route.namespace, route.secret_name)

    def sync_ingress_route(self, route: IngressRoute) -> None:
        """Request a certificate for the route's TLS secret when missing or stale.

        Domains come from the TLS domain blocks, or from the ``Host`` rules of
        the routes when no domain block is given.
        """
        if route.tls is None or not route.secret_name:
            return

        domains: list[str] = []
        for domain in route.tls.domains:
            domains.append(domain.main)
            domains.extend(domain.sans)

        if not any(domains):
            domains = [d for match in route.matches for d in parse_host_rule_domains(match)]

        sanitized = sanitize_domains(domains)
        if not sanitized:
            return

        self._sync_secret(route.namespace, route.secret_name, sanitized, ingressroute=route.name)

    # =========================================================================
    # Secrets
    # =========================================================================

    def _sync_secret(
        self,
        namespace: str,
        secret_name: str,
        domains: list[str],
        **context: str,
    ) -> None:
        log = self._log.bind(namespace=namespace, secret=secret_name, **context)

        secret = self._secrets.get(namespace, secret_name)
        if secret is not None and not is_managed_secret(secret):
            log.debug("secret_not_managed")
            return

        if secret is not None and get_certificate_domains(secret) == domains:
            return

        self._issuer.obtain_certificate(
            CertificateRequest(domains=tuple(domains), namespace=namespace, secret_name=secret_name)
        )

    def secret_deleted(self, obj: Secret | DeletedFinalStateUnknown) -> None:
        """Re-request a managed secret deleted while still in use."""
        secret = _unwrap(obj)
        if not isinstance(secret, Secret):
            self._log.error("Tombstone contained object that is not a secret", object=repr(obj))
            return

        if not self.is_secret_used(secret):
            return

        if not get_certificate_domains(secret):
            self._log.error(
                "Deleted secret has no certificate domains",
                namespace=secret.namespace,
                secret=secret.name,
            )
            return

        self._log.info(
            "managed_secret_deleted_while_used", namespace=secret.namespace, secret=secret.name
        )
        self._issuer.obtain_certificate(request_from_secret(secret))

    def delete_unused_secrets(self, namespace: str, *names: str) -> None:
        """Delete the named managed secrets no opted-in resource references."""
        for name in names:
            if not name:
                continue

            log = self._log.bind(namespace=namespace, secret=name)

            secret = self._secrets.get(namespace, name)
            if secret is None or not is_managed_secret(secret):
                continue
            if self.is_secret_used(secret):
                continue

            try:
                self._client.core_v1.delete_namespaced_secret(name, namespace)
            except Exception as e:
                error = self._client.translate_api_exception(
                    e, resource_type="Secret", resource_name=name, namespace=namespace
                )
                if not isinstance(error, KubernetesNotFoundError):
                    log.error("Unable to delete secret", error=str(error))
                    continue
            else:
                log.info("unused_secret_deleted")

            self._issuer.release_certificate(namespace, name)

    def is_secret_used(self, secret: Secret) -> bool:
        """Whether an opted-in Ingress or IngressRoute references the secret."""
        for ingress in self._ingresses.list(secret.namespace):
            if is_acme_enabled(ingress.annotations) and secret.name in ingress.secret_names:
                return True

        if self._ingress_routes is not None:
            for route in self._ingress_routes.list(secret.namespace):
                if is_acme_enabled(route.annotations) and route.secret_name == secret.name:
                    return True

        return False
