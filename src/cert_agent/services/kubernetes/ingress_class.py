"""Ingress controller resolution.

Decides which ingress controller serves an Ingress, looking at the legacy
class annotation, the class name and the cluster default class.
"""

from __future__ import annotations

from collections.abc import Sequence

from cert_agent.integrations.kubernetes.informer import Informer
from cert_agent.integrations.kubernetes.models import Ingress, IngressClass

ANNOTATION_INGRESS_CLASS = "kubernetes.io/ingress.class"

# Legacy class annotation values of the supported controllers.
DEFAULT_ANNOTATION_CLASSES = frozenset({"haproxy", "nginx", "traefik"})

CONTROLLER_HAPROXY_COMMUNITY = "haproxy-ingress.github.io/controller"
CONTROLLER_NGINX_OFFICIAL = "nginx.org/ingress-controller"
CONTROLLER_NGINX_COMMUNITY = "k8s.io/ingress-nginx"
CONTROLLER_TRAEFIK = "traefik.io/ingress-controller"

SUPPORTED_CONTROLLERS = frozenset(
    {
        CONTROLLER_HAPROXY_COMMUNITY,
        CONTROLLER_NGINX_OFFICIAL,
        CONTROLLER_NGINX_COMMUNITY,
        CONTROLLER_TRAEFIK,
    }
)


def is_supported_controller(controller: str) -> bool:
    """Whether a controller identifier is in the allow-list."""
    return controller in SUPPORTED_CONTROLLERS


def has_default_ingress_class_annotation(ingress: Ingress) -> bool:
    """Whether the legacy class annotation names a supported default class."""
    return ingress.annotations.get(ANNOTATION_INGRESS_CLASS) in DEFAULT_ANNOTATION_CLASSES


class IngressClassResolver:
    """Looks IngressClasses up in their caches.

    Sources are searched in order: platform classes, then networking v1, then
    networking v1beta1. Missing sources are skipped.
    """

    def __init__(
        self,
        platform_classes: Informer[IngressClass] | None = None,
        v1_classes: Informer[IngressClass] | None = None,
        v1beta1_classes: Informer[IngressClass] | None = None,
    ) -> None:
        self._sources: Sequence[Informer[IngressClass]] = [
            s for s in (platform_classes, v1_classes, v1beta1_classes) if s is not None
        ]

    def get_ingress_class_controller(self, name: str) -> str:
        """Controller of the named class, empty when no source knows it."""
        for source in self._sources:
            ingress_class = source.get("", name)
            if ingress_class is not None:
                return ingress_class.controller
        return ""

    def get_default_ingress_class_controller(self) -> str:
        """Controller of the first class marked as default, empty if none."""
        for source in self._sources:
            for ingress_class in source.list():
                if ingress_class.is_default:
                    return ingress_class.controller
        return ""

    def is_supported_ingress_controller(self, ingress: Ingress) -> bool:
        """Whether the Ingress is served by a supported controller."""
        if has_default_ingress_class_annotation(ingress):
            return True

        if not ingress.ingress_class_name:
            controller = self.get_default_ingress_class_controller()
        else:
            controller = self.get_ingress_class_controller(ingress.ingress_class_name)

        return is_supported_controller(controller)
