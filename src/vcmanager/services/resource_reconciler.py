"""Idempotent create-or-patch of the objects in a DesiredBundle."""

import logging
from dataclasses import dataclass, field

from vcmanager.constants import COMPONENTS
from vcmanager.errors import HostAPIError, MalformedTemplate
from vcmanager.services.diff import compute_patch
from vcmanager.services.phase import statefulset_ready
from vcmanager.services.template_resolver import desired_replicas

logger = logging.getLogger(__name__)

# Spec fields the API server rejects changes to once the object exists
IMMUTABLE_SPEC_FIELDS = {
    "StatefulSet": ("selector", "serviceName", "volumeClaimTemplates", "podManagementPolicy"),
    "Service": ("clusterIP", "clusterIPs"),
}

CREATED = "created"
PATCHED = "patched"
UNCHANGED = "unchanged"

_UNREAD = object()


@dataclass
class ApplyResult:
    created: list = field(default_factory=list)
    patched: list = field(default_factory=list)
    unchanged: list = field(default_factory=list)
    # Components whose StatefulSet creation waits on a predecessor
    waiting: list = field(default_factory=list)
    # Component -> StatefulSet as last observed or written
    statefulsets: dict = field(default_factory=dict)
    # Component -> readiness of its StatefulSet
    ready: dict = field(default_factory=dict)
    # Service name -> object as last observed or written
    services: dict = field(default_factory=dict)
    services_expected: int = 0

    @property
    def writes(self):
        return len(self.created) + len(self.patched)

    @property
    def services_present(self):
        return len(self.services) == self.services_expected

    @property
    def all_ready(self):
        return not self.waiting and all(self.ready.get(c, False) for c in COMPONENTS)

    def unready(self):
        return [c for c in COMPONENTS if not self.ready.get(c, False)]


class ResourceReconciler:
    """Converges child objects of one root namespace to a desired bundle."""

    def __init__(self, host, gate_on_readiness=True):
        self.host = host
        self.gate_on_readiness = gate_on_readiness

    def apply(self, kind, desired, observed=_UNREAD):
        """Create ``desired`` if absent, patch owned fields if drifted.

        ``observed`` may be passed when the caller already read the object.

        Returns:
            tuple: (outcome, object) where outcome is created, patched or unchanged
        """
        meta = desired["metadata"]
        namespace, name = meta.get("namespace"), meta["name"]

        try:
            if observed is _UNREAD:
                observed = self.host.get(kind, namespace, name)
            if observed is None:
                return CREATED, self.host.create(kind, desired)

            patch = compute_patch(desired, observed, IMMUTABLE_SPEC_FIELDS.get(kind, ()))
            if not patch:
                logger.debug(f"{kind} {namespace}/{name} up to date")
                return UNCHANGED, observed

            logger.info(f"Patching {kind} {namespace}/{name}: {sorted(patch)}")
            return PATCHED, self.host.patch(kind, namespace, name, patch)
        except HostAPIError as e:
            if e.status in (400, 422):
                raise MalformedTemplate(
                    f"{kind} {name} rejected by the API server: {e.message}",
                    kind=kind, namespace=namespace, name=name,
                ) from e
            raise

    def _record(self, result, outcome, label):
        getattr(result, outcome).append(label)

    def apply_bundle(self, bundle, patch_existing=True):
        """Apply services, then StatefulSets in bring-up order.

        With ``patch_existing`` False only missing objects are created; objects
        that already exist are left as they are.

        With readiness gating, a missing StatefulSet is created only once the
        previous component reports ready. Existing StatefulSets are never
        gated, so an upgrade reaches every component in one pass.
        """
        result = ApplyResult(services_expected=len(bundle.services))

        for svc in bundle.services:
            name = svc["metadata"]["name"]
            observed = self.host.get("Service", bundle.namespace, name)
            if observed is not None and not patch_existing:
                outcome, current = UNCHANGED, observed
            else:
                outcome, current = self.apply("Service", svc, observed)
            self._record(result, outcome, f"Service/{name}")
            if current is not None:
                result.services[name] = current

        predecessor_ready = True
        for component in COMPONENTS:
            desired = bundle.statefulsets.get(component)
            if desired is None:
                continue
            name = desired["metadata"]["name"]
            observed = self.host.get("StatefulSet", bundle.namespace, name)

            if observed is None and self.gate_on_readiness and not predecessor_ready:
                logger.info(
                    f"Waiting for predecessor of {component} before creating it "
                    f"in {bundle.namespace}"
                )
                result.waiting.append(component)
                predecessor_ready = False
                continue

            if observed is not None and not patch_existing:
                outcome, current = UNCHANGED, observed
            else:
                outcome, current = self.apply("StatefulSet", desired, observed)
            self._record(result, outcome, f"StatefulSet/{name}")
            result.statefulsets[component] = current
            target = desired if patch_existing else current
            result.ready[component] = outcome != CREATED and statefulset_ready(
                current, desired_replicas(target)
            )
            predecessor_ready = result.ready[component]

        return result
