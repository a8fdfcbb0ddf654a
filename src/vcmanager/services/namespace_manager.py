""" Root namespace manager for VirtualCluster control planes.
"""

import hashlib
import logging

from vcmanager.constants import (
    LABEL_VC_ROOT,
    LABEL_VC_UID,
    MAX_NAMESPACE_LENGTH,
)
from vcmanager.errors import NamespaceCollision
from vcmanager.services.template_resolver import owner_labels

logger = logging.getLogger(__name__)


def get_root_namespace(vc):
    """ Compute the root namespace name for a VirtualCluster.

    The uid hash keeps names distinct when a VirtualCluster is deleted and
    re-created under the same name. Dots, legal in object names but not in
    namespace names, become dashes.

    Args:
        vc: VirtualCluster object
    """
    meta = vc["metadata"]
    digest = hashlib.sha256(meta["uid"].encode()).hexdigest()[:6]
    name = f"{meta.get('namespace', 'default')}-{digest}-{meta['name']}".replace(".", "-")
    return name[:MAX_NAMESPACE_LENGTH].rstrip("-")


def ensure_root_namespace(host, vc, ns_name):
    """ Create the root namespace, or verify that the existing one is ours.

    Args:
        host: HostClient
        vc: VirtualCluster object
        ns_name: Root namespace name recorded in the VirtualCluster status

    Raises:
        NamespaceCollision: the namespace belongs to someone else
    """
    uid = vc["metadata"]["uid"]
    existing = host.get("Namespace", None, ns_name)

    if existing is not None:
        labels = (existing.get("metadata") or {}).get("labels") or {}
        if labels.get(LABEL_VC_UID) != uid:
            raise NamespaceCollision(ns_name, labels.get(LABEL_VC_UID, "unknown"))
        return {"status": "exists", "namespace": ns_name}

    ns_body = {
        "apiVersion": "v1",
        "kind": "Namespace",
        "metadata": {
            "name": ns_name,
            "labels": {**owner_labels(vc), LABEL_VC_ROOT: "true"},
        },
    }
    host.create("Namespace", ns_body)
    logger.info(f"Created root namespace: {ns_name}")
    return {"status": "created", "namespace": ns_name}


def del_root_namespace(host, ns_name):
    """ Delete the root namespace; children go with it.

    Args:
        host: HostClient
        ns_name: Root namespace name
    """
    if host.delete("Namespace", None, ns_name):
        logger.info(f"Deleted namespace: {ns_name}")
        return {"status": "deleted", "namespace": ns_name}
    logger.info(f"Namespace {ns_name} not found")
    return {"status": "not_found", "namespace": ns_name}
