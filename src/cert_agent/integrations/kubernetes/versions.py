"""Kubernetes server version checks.

Decide which API versions of networking resources the cluster serves.
"""

from __future__ import annotations

import re

_VERSION_RE = re.compile(r"^v?(\d+)\.(\d+)")


def parse_server_version(version: str) -> tuple[int, int]:
    """Parse a server git version such as ``v1.21.3-gke.1`` into (major, minor).

    Raises:
        ValueError: If the version cannot be parsed.
    """
    match = _VERSION_RE.match(version.strip())
    if match is None:
        raise ValueError(f"invalid Kubernetes version {version!r}")
    return int(match.group(1)), int(match.group(2))


def _at_least(version: str, minimum: tuple[int, int]) -> bool:
    return parse_server_version(version) >= minimum


def supports_net_v1_ingresses(version: str) -> bool:
    """networking.k8s.io/v1 Ingresses are served from 1.19."""
    return _at_least(version, (1, 19))


def supports_net_v1_ingress_classes(version: str) -> bool:
    """networking.k8s.io/v1 IngressClasses are served from 1.19."""
    return _at_least(version, (1, 19))


def supports_net_v1beta1_ingress_classes(version: str) -> bool:
    """networking.k8s.io/v1beta1 IngressClasses are served from 1.18."""
    return _at_least(version, (1, 18))
