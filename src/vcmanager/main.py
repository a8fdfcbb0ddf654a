import kopf
import logging
import kubernetes

from vcmanager.config import OperatorConfig
from vcmanager.crd.generator import CRDManager
from vcmanager.plugins.registry import PluginRegistry

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Global plugin registry instance
plugin_registry = None


def load_kube_config():
    """Prefer in-cluster credentials, fall back to the local kubeconfig."""
    try:
        kubernetes.config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes config")
    except kubernetes.config.ConfigException:
        kubernetes.config.load_kube_config()
        logger.info("Loaded local Kubernetes config")


def apply_crds(config):
    crd_manager = CRDManager()
    if config.generate_crd_files:
        logger.info("Generating CRD files and applying to cluster")
        crd_manager.generate_all_crds(force=True)
    else:
        logger.info("Applying CRDs in memory-only mode (no YAML files)")

    if crd_manager.apply_crds_to_cluster():
        logger.info("CRDs applied to cluster successfully")
    else:
        logger.warning("No CRDs were applied to cluster")


@kopf.on.startup()
async def startup_fn(settings: kopf.OperatorSettings, **kwargs):
    """Configure the operator and start the reconcile workers."""
    global plugin_registry

    config = OperatorConfig.from_env()
    logging.getLogger().setLevel(config.log_level)
    logger.info("VirtualCluster operator is starting up...")

    load_kube_config()

    if config.manage_crds:
        try:
            apply_crds(config)
        except Exception as e:
            logger.error(f"Failed to apply CRDs to cluster: {e}")

    plugin_registry = PluginRegistry()

    if plugin_registry.discover_plugins() == 0:
        logger.error("No plugins discovered - operator will have no functionality")
        raise RuntimeError("No plugins available")

    init_results = plugin_registry.initialise_all_plugins(config)
    if not any(init_results.values()):
        logger.error("No plugins initialised successfully")
        raise RuntimeError("Plugin initialisation failed")

    plugin_registry.register_all_handlers()

    settings.batching.worker_limit = config.worker_limit
    settings.posting.enabled = config.posting_enabled
    settings.watching.server_timeout = config.server_timeout

    await plugin_registry.start_all_plugins()

    logger.info(f"Initialised plugins: {list(init_results.keys())}")
    logger.info(f"Worker limit: {config.worker_limit}")
    logger.info(f"Posting enabled: {config.posting_enabled}")
    logger.info("VirtualCluster operator startup complete")


@kopf.on.cleanup()
async def cleanup_fn(**kwargs):
    logger.info("VirtualCluster operator is shutting down...")

    if plugin_registry:
        await plugin_registry.stop_all_plugins()
        plugin_registry.shutdown_all_plugins()

    logger.info("VirtualCluster operator shutdown complete")


def main():
    try:
        kopf.run()
    except KeyboardInterrupt:
        logger.info("Operator stopped by user")
    except Exception as e:
        logger.error(f"Operator failed: {e}")
        raise


if __name__ == "__main__":
    main()
