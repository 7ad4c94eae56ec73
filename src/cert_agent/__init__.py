"""Automatic TLS certificate provisioning for Kubernetes Ingress resources."""

__version__ = "0.1.0"
