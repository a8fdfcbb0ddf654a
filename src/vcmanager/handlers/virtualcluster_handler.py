""" Watch handlers that feed the VirtualCluster work queue.

Every handler only enqueues a key; the reconcile itself runs on the
controller's workers. Child objects are mapped back to their owner through
the vcnamespace/vcname labels stamped on them.
"""

import logging

import kopf

from vcmanager.constants import (
    CLUSTERVERSION_PLURAL,
    GROUP,
    LABEL_VC_NAME,
    LABEL_VC_NAMESPACE,
    VERSION,
    VIRTUALCLUSTER_PLURAL,
)
from vcmanager.plugins.registry import PluginRegistry

logger = logging.getLogger(__name__)

OWNED = {LABEL_VC_NAME: kopf.PRESENT, LABEL_VC_NAMESPACE: kopf.PRESENT}


def get_controller():
    """ Get the ControllerManager owned by the tenancy plugin.
    """
    plugin = PluginRegistry().get_plugin("tenancy")
    if plugin is None or plugin.manager is None:
        logger.error("Tenancy plugin not initialised, dropping event")
        return None
    return plugin.manager


def owner_key(meta):
    labels = meta.get("labels") or {}
    name = labels.get(LABEL_VC_NAME)
    if not name:
        return None
    return labels.get(LABEL_VC_NAMESPACE), name


def enqueue_owner(meta, kind):
    key = owner_key(meta)
    controller = get_controller()
    if key is None or controller is None:
        return
    logger.debug(f"{kind} {meta.get('namespace')}/{meta.get('name')} changed, enqueue {key}")
    controller.enqueue(*key)


@kopf.on.event(GROUP, VERSION, VIRTUALCLUSTER_PLURAL)
async def virtualcluster_event(meta, type, **kwargs):
    controller = get_controller()
    if controller is None:
        return
    logger.debug(f"VirtualCluster {meta.get('namespace')}/{meta['name']} event {type}")
    controller.enqueue(meta.get("namespace"), meta["name"])


@kopf.on.event(GROUP, VERSION, CLUSTERVERSION_PLURAL)
async def clusterversion_event(meta, type, **kwargs):
    """ A ClusterVersion change re-evaluates every VirtualCluster that uses it.
    """
    controller = get_controller()
    if controller is None:
        return
    count = await controller.enqueue_all(cluster_version=meta["name"])
    logger.info(f"ClusterVersion {meta['name']} {type or 'listed'}: enqueued {count} VirtualClusters")


@kopf.on.event("v1", "namespaces", labels=OWNED)
async def namespace_event(meta, **kwargs):
    enqueue_owner(meta, "Namespace")


@kopf.on.event("v1", "secrets", labels=OWNED)
async def secret_event(meta, **kwargs):
    enqueue_owner(meta, "Secret")


@kopf.on.event("v1", "services", labels=OWNED)
async def service_event(meta, **kwargs):
    enqueue_owner(meta, "Service")


@kopf.on.event("apps", "v1", "statefulsets", labels=OWNED)
async def statefulset_event(meta, **kwargs):
    enqueue_owner(meta, "StatefulSet")
