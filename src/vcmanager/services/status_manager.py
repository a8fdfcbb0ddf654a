"""VirtualCluster status writes through the status subresource."""

import logging

from vcmanager.constants import VIRTUALCLUSTER_PLURAL
from vcmanager.errors import TransientError
from vcmanager.models.tenancy import VirtualClusterStatus

logger = logging.getLogger(__name__)

MAX_CONFLICT_RETRIES = 3


def load_status(vc):
    return VirtualClusterStatus.model_validate((vc or {}).get("status") or {})


def _comparable(status):
    data = status.model_dump(mode="json", exclude_none=True)
    for condition in data.get("conditions", []):
        condition.pop("lastTransitionTime", None)
    return data


class StatusManager:
    """Persists status with optimistic concurrency.

    Each write carries the resourceVersion it was computed from. On a
    conflict the object is re-read and the same changes are applied to the
    fresh status before retrying.
    """

    def __init__(self, host):
        self.host = host

    def update(self, vc, mutate):
        """Apply ``mutate(status)`` and persist when something changed.

        Args:
            vc: VirtualCluster as read at the start of the pass
            mutate: callable receiving a VirtualClusterStatus to modify in place

        Returns:
            dict: the VirtualCluster after the write (or unchanged input)
        """
        meta = vc["metadata"]
        namespace, name = meta.get("namespace"), meta["name"]

        for attempt in range(1, MAX_CONFLICT_RETRIES + 1):
            before = load_status(vc)
            after = load_status(vc)
            mutate(after)

            # clusterNamespace is write-once
            if before.clusterNamespace and after.clusterNamespace != before.clusterNamespace:
                logger.warning(
                    f"Refusing to change clusterNamespace of {namespace}/{name} "
                    f"from {before.clusterNamespace} to {after.clusterNamespace}"
                )
                after.clusterNamespace = before.clusterNamespace

            if _comparable(before) == _comparable(after):
                return vc

            body = {
                "metadata": {"resourceVersion": vc["metadata"].get("resourceVersion")},
                # None values serialize as null, which clears them under merge patch
                "status": after.model_dump(mode="json"),
            }
            try:
                updated = self.host.patch_custom_status(
                    VIRTUALCLUSTER_PLURAL, namespace, name, body
                )
                if before.phase != after.phase:
                    logger.info(
                        f"VirtualCluster {namespace}/{name} phase "
                        f"{before.phase or '<none>'} -> {after.phase}"
                    )
                return updated
            except TransientError as e:
                if e.status != 409 or attempt == MAX_CONFLICT_RETRIES:
                    raise
                logger.info(
                    f"Status conflict on {namespace}/{name}, re-reading (attempt {attempt})"
                )
                fresh = self.host.get_custom(VIRTUALCLUSTER_PLURAL, namespace, name)
                if fresh is None:
                    return vc
                vc = fresh
        return vc
