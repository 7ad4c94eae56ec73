"""Agent services: certificate provisioning and quota management."""
