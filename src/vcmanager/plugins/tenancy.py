""" Tenancy plugin: VirtualCluster and ClusterVersion management.
"""

import logging

from vcmanager.config import OperatorConfig
from .base import PluginBase

logger = logging.getLogger(__name__)


class TenancyPlugin(PluginBase):
    """Provisions per-tenant control planes from VirtualCluster objects."""

    def __init__(self):
        super().__init__()
        self.host = None
        self.manager = None

    @property
    def name(self):
        return "tenancy"

    @property
    def version(self):
        return "0.1.0"

    @property
    def description(self):
        return "Provisions virtual control planes (etcd, apiserver, controller-manager) per VirtualCluster"

    @property
    def models(self):
        from vcmanager.models.tenancy import ClusterVersionSpec, VirtualClusterSpec

        return [ClusterVersionSpec, VirtualClusterSpec]

    def _initialise_plugin(self):
        from vcmanager.controller import ControllerManager, Reconciler
        from vcmanager.services.host_client import HostClient

        if self.config is None:
            self.config = OperatorConfig.from_env()

        self.host = HostClient(field_manager=self.config.field_manager)
        reconciler = Reconciler(self.host, config=self.config)
        self.manager = ControllerManager(reconciler, self.host, self.config)
        logger.info(
            f"Tenancy controller ready (workers={self.config.worker_limit}, "
            f"resync={self.config.resync_period}s)"
        )

    async def start(self):
        await self.manager.start()

    async def stop(self):
        await self.manager.stop()

    def _shutdown_plugin(self):
        self.manager = None

    def register_handlers(self):
        logger.info("Registering tenancy handlers...")
        from vcmanager.handlers import virtualcluster_handler  # noqa: F401
