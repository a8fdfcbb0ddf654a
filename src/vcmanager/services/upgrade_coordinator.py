"""Decides when a ClusterVersion change may be rolled out to a VirtualCluster.

Change detection compares the content hash of the ClusterVersion spec with
``status.appliedClusterVersionHash``, the hash of the spec last applied in
full. A rollout needs both a changed hash and the ready-for-upgrade label.
"""

import logging
from dataclasses import dataclass

from vcmanager.constants import (
    LABEL_VC_READY_FOR_UPGRADE,
    TRUTHY_LABEL_VALUES,
    VIRTUALCLUSTER_PLURAL,
)
from vcmanager.services.phase import Phase

logger = logging.getLogger(__name__)

# Phases in which an armed upgrade may start
UPGRADABLE_PHASES = (Phase.RUNNING, Phase.UPGRADING, Phase.ERROR)


@dataclass(frozen=True)
class UpgradePlan:
    # Patch existing children; False means only missing objects are created
    patch_existing: bool
    # A rollout of a new ClusterVersion spec starts this pass
    upgrade: bool
    # Remove the trigger label once the bundle is applied
    consume_label: bool
    # A newer ClusterVersion spec is waiting for the trigger label
    upgrade_available: bool
    content_hash: str


def upgrade_requested(vc):
    labels = (vc.get("metadata") or {}).get("labels") or {}
    value = labels.get(LABEL_VC_READY_FOR_UPGRADE, "")
    return str(value).strip().lower() in TRUTHY_LABEL_VALUES


def plan_upgrade(vc, bundle, applied_hash, phase):
    """Pure decision for one pass.

    Args:
        vc: VirtualCluster object
        bundle: DesiredBundle resolved from the current ClusterVersion
        applied_hash: hash recorded in status, None before the first apply
        phase: current Phase
    """
    requested = upgrade_requested(vc)
    changed = applied_hash is not None and applied_hash != bundle.content_hash

    if not changed:
        # First provisioning or drift correction against the applied spec
        return UpgradePlan(
            patch_existing=True,
            upgrade=False,
            consume_label=requested,
            upgrade_available=False,
            content_hash=bundle.content_hash,
        )

    if requested and phase in UPGRADABLE_PHASES:
        logger.info(
            f"Upgrading {vc['metadata'].get('namespace')}/{vc['metadata']['name']} "
            f"to ClusterVersion {bundle.cluster_version_name} ({bundle.content_hash[:12]})"
        )
        return UpgradePlan(
            patch_existing=True,
            upgrade=True,
            consume_label=True,
            upgrade_available=False,
            content_hash=bundle.content_hash,
        )

    return UpgradePlan(
        patch_existing=False,
        upgrade=False,
        consume_label=False,
        upgrade_available=True,
        content_hash=bundle.content_hash,
    )


def consume_trigger_label(host, vc):
    """Remove the ready-for-upgrade label with a JSON merge patch."""
    meta = vc["metadata"]
    body = {"metadata": {"labels": {LABEL_VC_READY_FOR_UPGRADE: None}}}
    host.patch_custom(VIRTUALCLUSTER_PLURAL, meta.get("namespace"), meta["name"], body)
    logger.info(f"Consumed upgrade trigger on {meta.get('namespace')}/{meta['name']}")
