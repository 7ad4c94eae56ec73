"""Periodic reporting of quota usage to the platform."""

from __future__ import annotations

import threading
from typing import Protocol

import structlog

from cert_agent.integrations.platform.base import PlatformClientError
from cert_agent.services.quota.quota import Quota

logger = structlog.get_logger()


class UsageReportingClient(Protocol):
    """Platform client able to receive quota usage."""

    def report_secured_routes_in_use(self, count: int) -> None: ...


class QuotaReporter:
    """Forwards the quota usage to the platform.

    Usage is reported once at start, then at every interval only when it
    changed since the last successful report. Failures are logged and the
    loop carries on.
    """

    def __init__(self, client: UsageReportingClient, quota: Quota, interval: float) -> None:
        self._client = client
        self._quota = quota
        self._interval = interval
        self._last_reported: int | None = None
        self._log = logger.bind(entity="quota_reporter")

    def report(self, force: bool = False) -> bool:
        """Report the current usage if it changed.

        Returns:
            Whether a report was sent successfully.
        """
        used = self._quota.used()
        if not force and used == self._last_reported:
            return False

        try:
            self._client.report_secured_routes_in_use(used)
        except PlatformClientError as e:
            self._log.error(
                "Unable to report secured routes in use to the platform",
                used=used,
                error=str(e),
            )
            return False

        self._log.debug("secured_routes_reported", used=used)
        self._last_reported = used
        return True

    def run(self, stop: threading.Event) -> None:
        """Report until ``stop`` is set."""
        self.report(force=True)
        while not stop.wait(self._interval):
            self.report()
