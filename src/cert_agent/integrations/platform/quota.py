"""Quota reporting client."""

from __future__ import annotations

from cert_agent.integrations.platform.base import BasePlatformClient


class QuotaClient(BasePlatformClient):
    """Reports quota consumption to the platform."""

    @property
    def client_name(self) -> str:
        return "Platform quota"

    def report_secured_routes_in_use(self, count: int) -> None:
        """Report the number of secured routes currently in use.

        Raises:
            PlatformAPIError: The platform rejected the report.
            PlatformConnectionError: The platform could not be reached.
        """
        response = self._make_retry_request(
            "POST",
            "/secured-routes-in-use",
            json={"securedRoutesInUse": count},
        )
        self._raise_for_status(response)
