"""Finalizer-gated teardown of a VirtualCluster."""

import logging
from dataclasses import dataclass, field

from vcmanager.constants import FINALIZER, VIRTUALCLUSTER_PLURAL
from vcmanager.services.namespace_manager import del_root_namespace

logger = logging.getLogger(__name__)


@dataclass
class TeardownResult:
    namespace_status: str = "skipped"
    finalizer_removed: bool = False
    hooks_run: list = field(default_factory=list)


class FinalizerGatedDeleter:
    """Deletes the root namespace, runs cleanup hooks, then drops the finalizer.

    Cleanup hooks are callables ``hook(vc)`` for cross-namespace state that
    the namespace cascade does not cover. A hook that raises keeps the
    finalizer in place so the pass is retried.
    """

    def __init__(self, host, cleanup_hooks=None):
        self.host = host
        self.cleanup_hooks = list(cleanup_hooks or [])

    def teardown(self, vc):
        meta = vc["metadata"]
        namespace, name = meta.get("namespace"), meta["name"]
        finalizers = list(meta.get("finalizers") or [])
        result = TeardownResult()

        if FINALIZER not in finalizers:
            logger.debug(f"{namespace}/{name} has no finalizer, nothing to tear down")
            return result

        root_ns = ((vc.get("status") or {}).get("clusterNamespace")) or None
        if root_ns:
            result.namespace_status = del_root_namespace(self.host, root_ns)["status"]

        for hook in self.cleanup_hooks:
            hook(vc)
            result.hooks_run.append(getattr(hook, "__name__", repr(hook)))

        remaining = [f for f in finalizers if f != FINALIZER]
        body = {
            "metadata": {
                "resourceVersion": meta.get("resourceVersion"),
                "finalizers": remaining,
            }
        }
        self.host.patch_custom(VIRTUALCLUSTER_PLURAL, namespace, name, body)
        result.finalizer_removed = True
        logger.info(f"Removed finalizer from VirtualCluster {namespace}/{name}")
        return result


def add_finalizer(host, vc):
    """Add the finalizer; a no-op when it is already present."""
    meta = vc["metadata"]
    finalizers = list(meta.get("finalizers") or [])
    if FINALIZER in finalizers:
        return vc
    body = {
        "metadata": {
            "resourceVersion": meta.get("resourceVersion"),
            "finalizers": finalizers + [FINALIZER],
        }
    }
    updated = host.patch_custom(
        VIRTUALCLUSTER_PLURAL, meta.get("namespace"), meta["name"], body
    )
    logger.info(f"Added finalizer to VirtualCluster {meta.get('namespace')}/{meta['name']}")
    return updated
