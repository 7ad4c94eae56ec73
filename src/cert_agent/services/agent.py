"""Agent runner.

Wires the clients, the quota, the certificate manager, the controller and the
quota reporter together and runs them on threads sharing one stop event.
"""

from __future__ import annotations

import signal
import threading
from collections.abc import Callable
from datetime import timedelta
from types import FrameType
from typing import Any

import structlog

from cert_agent.core.config import AgentConfig
from cert_agent.integrations.kubernetes.client import KubernetesClient
from cert_agent.integrations.kubernetes.informer import InformerFactory
from cert_agent.integrations.platform.certificates import CertificateClient
from cert_agent.integrations.platform.quota import QuotaClient
from cert_agent.services.kubernetes.certificate_controller import (
    CertificateController,
    register_secret_informer,
)
from cert_agent.services.kubernetes.certificate_manager import CertificateManager
from cert_agent.services.quota.quota import Quota
from cert_agent.services.quota.reporter import QuotaReporter

logger = structlog.get_logger()

# Grace period for components to return once stopped.
SHUTDOWN_TIMEOUT_SECONDS = 15


class Agent:
    """Certificate provisioning agent.

    Example:
        ```python
        agent = Agent(load_config(path))
        agent.run()
        ```
    """

    def __init__(
        self,
        config: AgentConfig,
        kube_client: KubernetesClient | None = None,
        authority: CertificateClient | None = None,
        quota_client: QuotaClient | None = None,
    ) -> None:
        self._config = config
        self._log = logger.bind(entity="agent")

        platform = config.platform
        self.kube_client = kube_client or KubernetesClient(config.kubernetes)
        self.authority = authority or CertificateClient(
            platform.url, platform.token, timeout=platform.timeout, retries=platform.retries
        )
        self.quota_client = quota_client or QuotaClient(
            platform.url, platform.token, timeout=platform.timeout, retries=platform.retries
        )

        self.stop_event = threading.Event()
        self.quota = Quota(config.max_secured_routes)
        self.factory = InformerFactory(resync_seconds=config.resync_seconds)

        self.manager = CertificateManager(
            self.kube_client,
            self.authority,
            self.quota,
            register_secret_informer(self.kube_client, self.factory),
            renew_before=timedelta(days=config.renew_before_days),
            renew_interval=config.renew_interval_seconds,
            max_retries=config.max_retries,
            pending_retry_after=config.pending_retry_after_seconds,
            workers=config.workers,
        )
        self.controller = CertificateController(
            self.kube_client, self.manager, self.factory, stop=self.stop_event
        )
        self.reporter = QuotaReporter(
            self.quota_client, self.quota, config.report_interval_seconds
        )

        self._errors: list[BaseException] = []
        self._errors_lock = threading.Lock()

    def _component(self, name: str, target: Callable[[], Any]) -> threading.Thread:
        def _run() -> None:
            try:
                target()
            except Exception as e:
                self._log.error("component_failed", component=name, error=str(e))
                with self._errors_lock:
                    self._errors.append(e)
                self.stop_event.set()

        return threading.Thread(target=_run, name=name, daemon=True)

    def run(self) -> None:
        """Run every component until the stop event is set.

        Raises:
            Exception: The first error a component failed with.
        """
        timeout = self._config.cache_sync_timeout_seconds
        threads = [
            self._component("controller", lambda: self.controller.run(self.stop_event, timeout)),
            self._component("manager", lambda: self.manager.run(self.stop_event, timeout)),
            self._component("reporter", lambda: self.reporter.run(self.stop_event)),
        ]
        for thread in threads:
            thread.start()
        self._log.info("agent_started", max_secured_routes=self.quota.max)

        try:
            while not self.stop_event.wait(0.5):
                pass
        finally:
            self.stop_event.set()
            for thread in threads:
                thread.join(SHUTDOWN_TIMEOUT_SECONDS)
            self.close()

        with self._errors_lock:
            if self._errors:
                raise self._errors[0]
        self._log.info("agent_stopped")

    def stop(self) -> None:
        self.stop_event.set()

    def close(self) -> None:
        """Release HTTP and API clients."""
        self.authority.close()
        self.quota_client.close()
        self.kube_client.close()


def install_signal_handlers(stop: threading.Event) -> None:
    """Set ``stop`` on SIGINT and SIGTERM. Must run on the main thread."""

    def _handle(signum: int, frame: FrameType | None) -> None:
        logger.info("signal_received", signal=signal.Signals(signum).name)
        stop.set()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)
