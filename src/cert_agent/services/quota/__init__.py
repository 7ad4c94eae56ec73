"""Secured routes quota: admission control and usage reporting."""

from cert_agent.services.quota.quota import (
    PendingTransactionError,
    Quota,
    QuotaDisabledError,
    QuotaError,
    QuotaExceededError,
    QuotaTransaction,
    ReadWriteLock,
)
from cert_agent.services.quota.reporter import QuotaReporter, UsageReportingClient

__all__ = [
    "PendingTransactionError",
    "Quota",
    "QuotaDisabledError",
    "QuotaError",
    "QuotaExceededError",
    "QuotaReporter",
    "QuotaTransaction",
    "ReadWriteLock",
    "UsageReportingClient",
]
