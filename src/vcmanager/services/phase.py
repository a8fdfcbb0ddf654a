"""VirtualCluster lifecycle phases.

The phase is re-derived from observed state on every reconcile pass.
``derive_phase`` computes where the object should be; ``step_toward``
moves along the allowed transitions one hop at a time, so a status that
fell behind (missed events, operator restart) catches up over a few
passes instead of jumping through an invalid edge.
"""

import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum

from vcmanager.constants import FINALIZER

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    PENDING = "Pending"
    CREATING = "Creating"
    RUNNING = "Running"
    UPGRADING = "Upgrading"
    TERMINATING = "Terminating"
    ERROR = "Error"

    @classmethod
    def parse(cls, value):
        if not value:
            return cls.PENDING
        try:
            return cls(value)
        except ValueError:
            logger.warning(f"Unknown phase {value!r}, treating as Pending")
            return cls.PENDING


ALLOWED_TRANSITIONS = {
    Phase.PENDING: {Phase.CREATING, Phase.TERMINATING, Phase.ERROR},
    Phase.CREATING: {Phase.RUNNING, Phase.TERMINATING, Phase.ERROR},
    # Running -> Creating when a ready control plane loses readiness
    Phase.RUNNING: {Phase.UPGRADING, Phase.CREATING, Phase.TERMINATING, Phase.ERROR},
    Phase.UPGRADING: {Phase.RUNNING, Phase.TERMINATING, Phase.ERROR},
    # Left only after an operator fixes the spec or ClusterVersion
    Phase.ERROR: {
        Phase.PENDING,
        Phase.CREATING,
        Phase.RUNNING,
        Phase.UPGRADING,
        Phase.TERMINATING,
    },
    Phase.TERMINATING: set(),
}


@dataclass(frozen=True)
class PhaseInputs:
    """Everything the phase depends on, observed in one pass."""

    deleting: bool = False
    has_finalizer: bool = False
    namespace_assigned: bool = False
    secrets_present: bool = False
    services_present: bool = False
    components_ready: bool = False
    upgrade_applied: bool = False
    failed: bool = False

    @property
    def ready(self):
        return self.secrets_present and self.services_present and self.components_ready


def observe_inputs(vc, **observed):
    """PhaseInputs with the lifecycle markers read from ``vc`` itself.

    ``observed`` carries what the pass learned about child objects
    (secrets_present, components_ready, ...) or ``failed=True``, and
    overrides a marker that is about to be written.
    """
    meta = vc.get("metadata") or {}
    status = vc.get("status") or {}
    fields = {
        "deleting": bool(meta.get("deletionTimestamp")),
        "has_finalizer": FINALIZER in (meta.get("finalizers") or []),
        "namespace_assigned": bool(status.get("clusterNamespace")),
    }
    fields.update(observed)
    return PhaseInputs(**fields)


def is_allowed(current, target):
    return current == target or target in ALLOWED_TRANSITIONS[current]


def derive_phase(inputs, current):
    """Target phase for the observed inputs. Deletion wins over everything."""
    if inputs.deleting:
        return Phase.TERMINATING
    if inputs.failed:
        return Phase.ERROR
    if not inputs.has_finalizer or not inputs.namespace_assigned:
        return Phase.PENDING
    if inputs.upgrade_applied:
        return Phase.UPGRADING
    if current == Phase.UPGRADING:
        return Phase.RUNNING if inputs.ready else Phase.UPGRADING
    return Phase.RUNNING if inputs.ready else Phase.CREATING


def step_toward(current, target):
    """Next phase on the shortest allowed path from ``current`` to ``target``.

    Returns ``current`` when ``target`` is unreachable; the rejected
    transition is logged rather than raised.
    """
    if is_allowed(current, target):
        return target

    parents = {current: None}
    queue = deque([current])
    while queue:
        phase = queue.popleft()
        for nxt in sorted(ALLOWED_TRANSITIONS[phase], key=lambda p: p.value):
            if nxt in parents:
                continue
            parents[nxt] = phase
            if nxt == target:
                while parents[nxt] != current:
                    nxt = parents[nxt]
                return nxt
            # Error is only ever a destination, never a hop
            if nxt != Phase.ERROR:
                queue.append(nxt)

    logger.warning(f"Rejected phase transition {current.value} -> {target.value}")
    return current


def next_phase(inputs, current):
    """One validated step from ``current`` toward the phase ``inputs`` call for."""
    return step_toward(current, derive_phase(inputs, current))


def statefulset_ready(statefulset, desired):
    """True when ``readyReplicas == replicas == desired`` and the spec asks for ``desired``.

    A status whose observedGeneration lags the object generation describes
    the previous template and does not count.
    """
    if not statefulset:
        return False
    spec = statefulset.get("spec") or {}
    status = statefulset.get("status") or {}
    meta = statefulset.get("metadata") or {}

    observed_generation = status.get("observedGeneration")
    generation = meta.get("generation")
    if observed_generation is not None and generation is not None:
        if observed_generation < generation:
            return False

    spec_replicas = spec.get("replicas", 1)
    replicas = status.get("replicas") or 0
    ready_replicas = status.get("readyReplicas") or 0
    return spec_replicas == desired and replicas == desired and ready_replicas == desired
