"""Glue between the renderers and a :class:`~vip_operator.publisher.Publisher`."""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Sequence

from .config import OperatorConfig, ServiceRecord
from .keepalived import KeepalivedConfigRenderer, KeepalivedRenderResult
from .nginx import NginxConfigRenderer, RenderResult
from .publisher import Publisher
from .store import Allocation, ServiceKey
from .vrid import VRIDPair

LOG = logging.getLogger(__name__)


class ApplianceClient:
    """Push NGINX and keepalived configuration to the appliance."""

    def __init__(
        self,
        publisher: Publisher,
        config: OperatorConfig,
        *,
        nginx_renderer: Optional[NginxConfigRenderer] = None,
        keepalived_renderer: Optional[KeepalivedConfigRenderer] = None,
    ) -> None:
        self._publisher = publisher
        self._config = config
        self._nginx = nginx_renderer or NginxConfigRenderer(config)
        self._keepalived = keepalived_renderer or KeepalivedConfigRenderer(config)

    @property
    def publisher(self) -> Publisher:
        return self._publisher

    def service_config_path(self, key: ServiceKey) -> str:
        return self._nginx.remote_path(key)

    def publish_service(
        self,
        service: ServiceRecord,
        allocation: Allocation,
        endpoints: Sequence[str],
    ) -> RenderResult:
        result = self._nginx.render(service, allocation, endpoints)
        self._publisher.push_file(result.remote_path, result.config_text)
        self._publisher.run_command(self._config.nginx_reload_command)
        LOG.info("Published NGINX config %s", result.remote_path)
        return result

    def remove_service(self, key: ServiceKey, *, only_if_present: bool = False) -> bool:
        """Remove the service snippet and reload NGINX.

        With ``only_if_present`` nothing happens when the snippet is already
        gone.  Returns whether the appliance was touched.
        """

        path = self._nginx.remote_path(key)
        if only_if_present and not self._publisher.fetch_file(path):
            LOG.debug("NGINX config %s already absent", path)
            return False
        self._publisher.remove_file(path)
        self._publisher.run_command(self._config.nginx_reload_command)
        LOG.info("Removed NGINX config %s", path)
        return True

    def publish_redundancy(
        self,
        vrids: VRIDPair,
        addresses: Iterable[str],
        *,
        only_if_changed: bool = False,
    ) -> KeepalivedRenderResult:
        result = self._keepalived.render(vrids, addresses)
        if only_if_changed and self._redundancy_current(result):
            LOG.debug("keepalived config %s already current", result.primary_path)
            return result
        self._publisher.push_file(result.primary_path, result.primary_text)
        self._publisher.push_file(result.secondary_path, result.secondary_text)
        self._publisher.run_command(self._config.keepalived_restart_command)
        LOG.info(
            "Published keepalived config %s (vrids=%s)", result.primary_path, vrids
        )
        return result

    def _redundancy_current(self, result: KeepalivedRenderResult) -> bool:
        return (
            self._publisher.fetch_file(result.primary_path) == result.primary_text
            and self._publisher.fetch_file(result.secondary_path) == result.secondary_text
        )
