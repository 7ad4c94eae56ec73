"""Unit tests for CertificateController."""

from __future__ import annotations

import queue
import threading
from collections.abc import Callable
from typing import Any
from unittest.mock import MagicMock

import pytest
from kubernetes.client import ApiException

from cert_agent.integrations.kubernetes.exceptions import KubernetesTimeoutError
from cert_agent.integrations.kubernetes.informer import (
    DeletedFinalStateUnknown,
    Informer,
    InformerFactory,
)
from cert_agent.integrations.kubernetes.models import Ingress, IngressRoute, Secret
from cert_agent.services.kubernetes.certificate_controller import (
    INGRESS_CLASSES_V1,
    INGRESS_CLASSES_V1BETA1,
    INGRESS_ROUTES,
    INGRESSES,
    NETWORKING_GROUP,
    PLATFORM_INGRESS_CLASSES,
    SECRETS,
    CertificateController,
    register_secret_informer,
)
from cert_agent.services.kubernetes.certificate_manager import (
    CertificateManager,
    CertificateRequest,
)
from cert_agent.services.kubernetes.ingress_class import CONTROLLER_TRAEFIK
from cert_agent.services.kubernetes.sync_gate import SyncState
from cert_agent.services.quota import Quota


def _list(*items: dict[str, Any]) -> dict[str, Any]:
    return {"items": list(items), "metadata": {"resourceVersion": "1"}}


def _seed(factory: InformerFactory, name: str, *items: dict[str, Any]) -> Informer[Any]:
    informer = factory.get(name)
    assert informer is not None
    informer._list_func = MagicMock(return_value=_list(*items))
    informer._list_args = ()
    informer.relist()
    return informer


def _drain(informer: Informer[Any]) -> None:
    while True:
        try:
            kind, first, second = informer._events.get_nowait()
        except queue.Empty:
            return
        informer.dispatch(kind, first, second)


def _ingress(
    name: str = "web",
    *,
    hosts: tuple[str, ...] = ("foo.com",),
    secret: str = "mysecret",
    acme: bool = True,
    class_name: str | None = "traefik",
    version: str = "1",
    namespace: str = "default",
) -> dict[str, Any]:
    spec: dict[str, Any] = {"tls": [{"hosts": list(hosts), "secretName": secret}]}
    if class_name:
        spec["ingressClassName"] = class_name
    return {
        "metadata": {
            "name": name,
            "namespace": namespace,
            "resourceVersion": version,
            "annotations": {"hub.traefik.io/enable-acme": "true"} if acme else {},
        },
        "spec": spec,
    }


def _route(
    name: str = "api",
    *,
    secret: str = "route-tls",
    domains: list[dict[str, Any]] | None = None,
    match: str = "Host(`api.foo.com`)",
    acme: bool = True,
    version: str = "1",
) -> dict[str, Any]:
    tls: dict[str, Any] = {"secretName": secret}
    if domains is not None:
        tls["domains"] = domains
    return {
        "metadata": {
            "name": name,
            "namespace": "default",
            "resourceVersion": version,
            "annotations": {"hub.traefik.io/enable-acme": "true"} if acme else {},
        },
        "spec": {"routes": [{"match": match}], "tls": tls},
    }


TRAEFIK_CLASS = {
    "metadata": {"name": "traefik"},
    "spec": {"controller": CONTROLLER_TRAEFIK},
}


@pytest.fixture
def factory() -> InformerFactory:
    return InformerFactory()


@pytest.fixture
def issuer() -> MagicMock:
    return MagicMock()


@pytest.fixture
def controller(
    mock_k8s_client: MagicMock,
    issuer: MagicMock,
    factory: InformerFactory,
    stop_event: threading.Event,
) -> CertificateController:
    mock_k8s_client.has_api_resource.side_effect = (
        lambda group, version, kind: kind == "IngressRoute"
    )
    controller = CertificateController(mock_k8s_client, issuer, factory, stop=stop_event)
    _seed(factory, INGRESS_CLASSES_V1, TRAEFIK_CLASS)
    return controller


@pytest.mark.unit
@pytest.mark.kubernetes
class TestInformerRegistration:
    """Tests for the caches registered by the controller."""

    def test_current_cluster(
        self, mock_k8s_client: MagicMock, issuer: MagicMock, factory: InformerFactory
    ) -> None:
        CertificateController(mock_k8s_client, issuer, factory)

        assert set(factory.informers) == {SECRETS, INGRESS_CLASSES_V1, INGRESSES}
        assert (
            factory.get(INGRESSES)._list_func
            is mock_k8s_client.networking_v1.list_ingress_for_all_namespaces
        )

    def test_custom_resources_detected(
        self, mock_k8s_client: MagicMock, issuer: MagicMock, factory: InformerFactory
    ) -> None:
        mock_k8s_client.has_api_resource.return_value = True

        CertificateController(mock_k8s_client, issuer, factory)

        assert {PLATFORM_INGRESS_CLASSES, INGRESS_ROUTES} <= set(factory.informers)

    def test_legacy_cluster(
        self, mock_k8s_client: MagicMock, issuer: MagicMock, factory: InformerFactory
    ) -> None:
        mock_k8s_client.get_server_version.return_value = "v1.18.4"

        CertificateController(mock_k8s_client, issuer, factory)

        assert set(factory.informers) == {SECRETS, INGRESS_CLASSES_V1BETA1, INGRESSES}
        assert factory.get(INGRESSES)._list_args == (NETWORKING_GROUP, "v1beta1", "ingresses")


@pytest.mark.unit
@pytest.mark.kubernetes
class TestSyncIngress:
    """Tests for Ingress reconciliation."""

    def test_new_ingress_requests_certificate(
        self, controller: CertificateController, factory: InformerFactory, issuer: MagicMock
    ) -> None:
        """An opted-in Ingress with no secret triggers exactly one request."""
        _seed(factory, SECRETS)
        ingresses = _seed(factory, INGRESSES, _ingress())
        controller.gate.mark_ready()

        _drain(factory.get(SECRETS))
        _drain(ingresses)

        issuer.obtain_certificate.assert_called_once_with(
            CertificateRequest(("foo.com",), "default", "mysecret")
        )

    def test_unsupported_controller_is_ignored(
        self, controller: CertificateController, factory: InformerFactory, issuer: MagicMock
    ) -> None:
        ingresses = _seed(factory, INGRESSES, _ingress(class_name="custom"))
        controller.gate.mark_ready()

        _drain(ingresses)

        issuer.obtain_certificate.assert_not_called()

    def test_not_opted_in_is_ignored(
        self, controller: CertificateController, factory: InformerFactory, issuer: MagicMock
    ) -> None:
        ingresses = _seed(factory, INGRESSES, _ingress(acme=False))
        controller.gate.mark_ready()

        _drain(ingresses)

        issuer.obtain_certificate.assert_not_called()

    def test_events_are_held_until_ready(
        self,
        controller: CertificateController,
        factory: InformerFactory,
        issuer: MagicMock,
        stop_event: threading.Event,
    ) -> None:
        ingresses = _seed(factory, INGRESSES, _ingress())
        assert controller.gate.state is SyncState.UNINITIALIZED
        stop_event.set()

        _drain(ingresses)

        issuer.obtain_certificate.assert_not_called()

    def test_foreign_secret_is_never_overwritten(
        self,
        controller: CertificateController,
        factory: InformerFactory,
        issuer: MagicMock,
        make_secret: Callable[..., dict[str, Any]],
    ) -> None:
        _seed(factory, SECRETS, make_secret("mysecret", managed=False))

        controller.sync_ingress(Ingress.from_k8s_object(_ingress()))

        issuer.obtain_certificate.assert_not_called()

    def test_matching_secret_is_left_alone(
        self,
        controller: CertificateController,
        factory: InformerFactory,
        issuer: MagicMock,
        make_secret: Callable[..., dict[str, Any]],
    ) -> None:
        _seed(factory, SECRETS, make_secret("mysecret", domains="foo.com,www.foo.com"))

        controller.sync_ingress(
            Ingress.from_k8s_object(_ingress(hosts=("WWW.foo.com", "foo.com", "foo.com")))
        )

        issuer.obtain_certificate.assert_not_called()

    def test_stale_secret_is_reissued(
        self,
        controller: CertificateController,
        factory: InformerFactory,
        issuer: MagicMock,
        make_secret: Callable[..., dict[str, Any]],
    ) -> None:
        _seed(factory, SECRETS, make_secret("mysecret", domains="foo.com"))

        controller.sync_ingress(Ingress.from_k8s_object(_ingress(hosts=("foo.com", "bar.com"))))

        issuer.obtain_certificate.assert_called_once_with(
            CertificateRequest(("bar.com", "foo.com"), "default", "mysecret")
        )

    def test_tls_blocks_without_hosts_or_secret_are_skipped(
        self, controller: CertificateController, issuer: MagicMock
    ) -> None:
        controller.sync_ingress(Ingress.from_k8s_object(_ingress(hosts=())))
        controller.sync_ingress(Ingress.from_k8s_object(_ingress(secret="")))

        issuer.obtain_certificate.assert_not_called()


@pytest.mark.unit
@pytest.mark.kubernetes
class TestIngressLifecycle:
    """Tests for Ingress updates and deletions."""

    def test_resync_update_is_ignored(
        self, controller: CertificateController, issuer: MagicMock, mock_k8s_client: MagicMock
    ) -> None:
        ingress = Ingress.from_k8s_object(_ingress())

        controller.ingress_updated(ingress, ingress)

        issuer.obtain_certificate.assert_not_called()
        mock_k8s_client.core_v1.delete_namespaced_secret.assert_not_called()

    def test_update_reclaims_secret_of_old_spec(
        self,
        controller: CertificateController,
        factory: InformerFactory,
        issuer: MagicMock,
        mock_k8s_client: MagicMock,
        make_secret: Callable[..., dict[str, Any]],
    ) -> None:
        _seed(factory, SECRETS, make_secret("old", domains="foo.com"))
        new = _ingress(secret="new", version="2")
        _seed(factory, INGRESSES, new)

        controller.ingress_updated(
            Ingress.from_k8s_object(_ingress(secret="old")), Ingress.from_k8s_object(new)
        )

        issuer.obtain_certificate.assert_called_once_with(
            CertificateRequest(("foo.com",), "default", "new")
        )
        mock_k8s_client.core_v1.delete_namespaced_secret.assert_called_once_with("old", "default")

    def test_delete_reclaims_unused_secret(
        self,
        controller: CertificateController,
        factory: InformerFactory,
        issuer: MagicMock,
        mock_k8s_client: MagicMock,
        make_secret: Callable[..., dict[str, Any]],
    ) -> None:
        _seed(factory, SECRETS, make_secret("mysecret", domains="foo.com"))
        _seed(factory, INGRESSES)

        controller.ingress_deleted(Ingress.from_k8s_object(_ingress()))

        mock_k8s_client.core_v1.delete_namespaced_secret.assert_called_once_with(
            "mysecret", "default"
        )
        issuer.release_certificate.assert_called_once_with("default", "mysecret")

    def test_delete_with_tombstone(
        self,
        controller: CertificateController,
        factory: InformerFactory,
        mock_k8s_client: MagicMock,
        make_secret: Callable[..., dict[str, Any]],
    ) -> None:
        _seed(factory, SECRETS, make_secret("mysecret", domains="foo.com"))
        ingress = Ingress.from_k8s_object(_ingress())

        controller.ingress_deleted(DeletedFinalStateUnknown(ingress.key, ingress))

        mock_k8s_client.core_v1.delete_namespaced_secret.assert_called_once()

    def test_secret_still_used_is_kept(
        self,
        controller: CertificateController,
        factory: InformerFactory,
        mock_k8s_client: MagicMock,
        make_secret: Callable[..., dict[str, Any]],
    ) -> None:
        _seed(factory, SECRETS, make_secret("mysecret", domains="foo.com"))
        _seed(factory, INGRESSES, _ingress(name="other"))

        controller.ingress_deleted(Ingress.from_k8s_object(_ingress()))

        mock_k8s_client.core_v1.delete_namespaced_secret.assert_not_called()

    def test_unmanaged_or_missing_secret_is_kept(
        self,
        controller: CertificateController,
        factory: InformerFactory,
        mock_k8s_client: MagicMock,
        make_secret: Callable[..., dict[str, Any]],
    ) -> None:
        _seed(factory, SECRETS, make_secret("user", managed=False))

        controller.delete_unused_secrets("default", "user", "missing", "")

        mock_k8s_client.core_v1.delete_namespaced_secret.assert_not_called()

    def test_delete_releases_quota(
        self,
        mock_k8s_client: MagicMock,
        factory: InformerFactory,
        make_secret: Callable[..., dict[str, Any]],
        stop_event: threading.Event,
    ) -> None:
        """Reclaiming a secret gives its acquired units back to the quota."""
        quota = Quota(10)
        manager = CertificateManager(
            mock_k8s_client, MagicMock(), quota, register_secret_informer(mock_k8s_client, factory)
        )
        controller = CertificateController(mock_k8s_client, manager, factory, stop=stop_event)
        _seed(factory, SECRETS, make_secret("mysecret", domains="foo.com"))
        _seed(factory, INGRESSES)
        quota.tx("mysecret@default", 1).commit()
        quota.tx("other@default", 2).commit()

        controller.ingress_deleted(Ingress.from_k8s_object(_ingress()))

        assert quota.acquired("mysecret@default") == 0
        assert quota.used() == 2
        manager.queue.shut_down()

    @pytest.mark.parametrize(("status", "released"), [(404, 2), (500, 0)])
    def test_delete_errors_are_not_raised(
        self,
        controller: CertificateController,
        factory: InformerFactory,
        issuer: MagicMock,
        mock_k8s_client: MagicMock,
        make_secret: Callable[..., dict[str, Any]],
        status: int,
        released: int,
    ) -> None:
        """Secrets already gone still release their quota; failed deletes keep it."""
        _seed(factory, SECRETS, make_secret("a"), make_secret("b"))
        mock_k8s_client.core_v1.delete_namespaced_secret.side_effect = ApiException(status=status)

        controller.delete_unused_secrets("default", "a", "b")

        assert mock_k8s_client.core_v1.delete_namespaced_secret.call_count == 2
        assert issuer.release_certificate.call_count == released


@pytest.mark.unit
@pytest.mark.kubernetes
class TestSyncIngressRoute:
    """Tests for IngressRoute reconciliation."""

    def test_domains_from_tls_blocks(
        self, controller: CertificateController, issuer: MagicMock
    ) -> None:
        route = IngressRoute.from_k8s_object(
            _route(domains=[{"main": "Foo.com", "sans": ["www.foo.com", "foo.com"]}])
        )

        controller.sync_ingress_route(route)

        issuer.obtain_certificate.assert_called_once_with(
            CertificateRequest(("foo.com", "www.foo.com"), "default", "route-tls")
        )

    def test_domains_from_host_rules(
        self, controller: CertificateController, issuer: MagicMock
    ) -> None:
        route = IngressRoute.from_k8s_object(
            _route(match="Host(`b.foo.com`,`a.foo.com`) || Host(`c.foo.com`)")
        )

        controller.sync_ingress_route(route)

        issuer.obtain_certificate.assert_called_once_with(
            CertificateRequest(("a.foo.com", "b.foo.com", "c.foo.com"), "default", "route-tls")
        )

    def test_no_domains(self, controller: CertificateController, issuer: MagicMock) -> None:
        controller.sync_ingress_route(IngressRoute.from_k8s_object(_route(match="PathPrefix(`/`)")))
        controller.sync_ingress_route(IngressRoute.from_k8s_object(_route(secret="")))

        issuer.obtain_certificate.assert_not_called()

    def test_route_events_flow_through_gate(
        self, controller: CertificateController, factory: InformerFactory, issuer: MagicMock
    ) -> None:
        _seed(factory, SECRETS)
        routes = _seed(factory, INGRESS_ROUTES, _route(), _route("hidden", acme=False))
        controller.gate.mark_ready()

        _drain(routes)

        issuer.obtain_certificate.assert_called_once_with(
            CertificateRequest(("api.foo.com",), "default", "route-tls")
        )

    def test_route_delete_reclaims_secret(
        self,
        controller: CertificateController,
        factory: InformerFactory,
        mock_k8s_client: MagicMock,
        make_secret: Callable[..., dict[str, Any]],
    ) -> None:
        _seed(factory, SECRETS, make_secret("route-tls", domains="api.foo.com"))

        controller.ingress_route_deleted(IngressRoute.from_k8s_object(_route()))

        mock_k8s_client.core_v1.delete_namespaced_secret.assert_called_once_with(
            "route-tls", "default"
        )

    def test_secret_used_by_route_is_kept(
        self,
        controller: CertificateController,
        factory: InformerFactory,
        mock_k8s_client: MagicMock,
        make_secret: Callable[..., dict[str, Any]],
    ) -> None:
        _seed(factory, SECRETS, make_secret("route-tls", domains="api.foo.com"))
        _seed(factory, INGRESS_ROUTES, _route(name="other"))

        controller.delete_unused_secrets("default", "route-tls")

        mock_k8s_client.core_v1.delete_namespaced_secret.assert_not_called()


@pytest.mark.unit
@pytest.mark.kubernetes
class TestSecretDeleted:
    """Tests for managed secrets deleted externally."""

    def test_used_secret_is_reissued(
        self,
        controller: CertificateController,
        factory: InformerFactory,
        issuer: MagicMock,
        make_secret: Callable[..., dict[str, Any]],
    ) -> None:
        _seed(factory, INGRESSES, _ingress())
        secret = Secret.from_k8s_object(make_secret("mysecret", domains="foo.com"))

        controller.secret_deleted(DeletedFinalStateUnknown(secret.key, secret))

        issuer.obtain_certificate.assert_called_once_with(
            CertificateRequest(("foo.com",), "default", "mysecret")
        )

    def test_unused_secret_is_not_reissued(
        self,
        controller: CertificateController,
        issuer: MagicMock,
        make_secret: Callable[..., dict[str, Any]],
    ) -> None:
        controller.secret_deleted(
            Secret.from_k8s_object(make_secret("mysecret", domains="foo.com"))
        )

        issuer.obtain_certificate.assert_not_called()

    def test_used_secret_without_domains_is_skipped(
        self,
        controller: CertificateController,
        factory: InformerFactory,
        issuer: MagicMock,
        make_secret: Callable[..., dict[str, Any]],
    ) -> None:
        _seed(factory, INGRESSES, _ingress())

        controller.secret_deleted(Secret.from_k8s_object(make_secret("mysecret")))

        issuer.obtain_certificate.assert_not_called()

    def test_tombstone_with_unexpected_object(
        self, controller: CertificateController, issuer: MagicMock
    ) -> None:
        controller.secret_deleted(DeletedFinalStateUnknown("default/x", object()))

        issuer.obtain_certificate.assert_not_called()


@pytest.mark.unit
@pytest.mark.kubernetes
class TestCertificateControllerRun:
    """Tests for the controller lifecycle."""

    def test_cache_sync_timeout_is_fatal(
        self,
        controller: CertificateController,
        factory: InformerFactory,
        stop_event: threading.Event,
        mocker: Any,
    ) -> None:
        mocker.patch("kubernetes.watch.Watch")
        for informer in factory.informers.values():
            informer._synced.clear()
            informer._list_func = MagicMock(side_effect=ApiException(status=500))

        with pytest.raises(KubernetesTimeoutError):
            controller.run(stop_event, cache_sync_timeout=0.2)

        assert not controller.gate.is_ready

    def test_gate_opens_after_sync(
        self,
        controller: CertificateController,
        factory: InformerFactory,
        stop_event: threading.Event,
        mocker: Any,
    ) -> None:
        watcher = MagicMock()
        watcher.stream.side_effect = lambda *args, **kwargs: iter([])
        mocker.patch("kubernetes.watch.Watch", return_value=watcher)
        for informer in factory.informers.values():
            informer._list_func = MagicMock(return_value=_list())
            informer._list_args = ()

        thread = threading.Thread(target=controller.run, args=(stop_event,))
        thread.start()

        assert controller.gate.wait(5)
        assert controller.gate.state is SyncState.READY
        stop_event.set()
        thread.join(5)
        assert not thread.is_alive()
