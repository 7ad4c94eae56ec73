"""Logging configuration for cert_agent."""

from cert_agent.logging.config import configure_logging, get_logger

__all__ = ["configure_logging", "get_logger"]
